# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Constants, workload defaults loading, and default_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import TypeVar

import yaml

T = TypeVar("T")

DEFAULTS_FILE = Path(__file__).resolve().parent / "defaults.yaml"


def load_defaults(path: Path = DEFAULTS_FILE) -> dict[str, dict]:
    """Load the ``cluster`` and ``workload`` sections of defaults.yaml.

    An empty file yields no sections.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


DEFAULTS = load_defaults()


def default_value(section: str, key: str, default: T, defaults: dict[str, dict] | None = None) -> T:
    """Look up ``<section>.<key>`` in defaults.yaml, typed like *default*.

    Args:
        section: Top-level section, e.g. ``"workload"``.
        key: Key inside the section.
        default: Fallback when the key is absent; its type is the expected type.
        defaults: Parsed defaults, :data:`DEFAULTS` when omitted.

    Returns:
        The configured value, or *default*. Integers are widened to float
        when the default is a float.

    Raises:
        TypeError: If the configured value has a different type than *default*.
    """
    table = (DEFAULTS if defaults is None else defaults).get(section) or {}
    value = table.get(key)
    if value is None:
        return default
    if isinstance(default, float) and isinstance(value, int) and not isinstance(value, bool):
        value = float(value)
    if not isinstance(value, type(default)):
        raise TypeError(
            f"defaults.yaml {section}.{key} must be {type(default).__name__}, got {type(value).__name__}"
        )
    return value


# -- Stage names (skip toggles are SKIP_<name>) --
STAGE_COPY_TEMPLATE = "copy_template"
STAGE_CREATE_OPTIONS = "create_options"
STAGE_CLEANUP = "cleanup"
STAGE_PROVISION = "provision"
STAGE_CONFIGURE_ACCESS = "configure_access"
STAGE_WAIT_FOR_WORKERS = "wait_for_workers"
STAGE_DEPLOY_AND_VALIDATE = "deploy_and_validate"

STAGE_NAMES = (
    STAGE_COPY_TEMPLATE,
    STAGE_CREATE_OPTIONS,
    STAGE_CLEANUP,
    STAGE_PROVISION,
    STAGE_CONFIGURE_ACCESS,
    STAGE_WAIT_FOR_WORKERS,
    STAGE_DEPLOY_AND_VALIDATE,
)

# -- External commands each stage shells out to --
STAGE_COMMANDS = {
    STAGE_CLEANUP: ("terraform",),
    STAGE_PROVISION: ("terraform",),
    STAGE_CONFIGURE_ACCESS: ("gcloud",),
    STAGE_WAIT_FOR_WORKERS: ("kubectl",),
    STAGE_DEPLOY_AND_VALIDATE: ("helm", "kubectl"),
}

SKIP_ENV_PREFIX = "SKIP_"
FALSY_FLAG_VALUES = ("false", "0", "", "no", "n", "none")

# -- Stage store keys --
KEY_MODULE_PATH = "terraformModulePath"
KEY_UNIQUE_ID = "uniqueID"
KEY_PROJECT = "project"
KEY_REGION = "region"
KEY_TERRAFORM_OPTIONS = "terraformOptions"
KEY_KUBECTL_OPTIONS = "kubectlOptions"
KEY_CLUSTER_OUTPUTS = "clusterOutputs"

STATE_DIR_NAME = ".test-data"

# -- Project resolution, first set wins --
PROJECT_ENV_VARS = ("GOOGLE_CLOUD_PROJECT", "GOOGLE_PROJECT", "GCLOUD_PROJECT", "CLOUDSDK_CORE_PROJECT")

# -- Terraform --
TF_OUTPUT_CLUSTER_NAME = "cluster_name"
TF_OUTPUT_CLUSTER_ENDPOINT = "cluster_endpoint"
TF_VAR_PROJECT = "project"
TF_VAR_REGION = "location"
TF_VAR_CLUSTER_NAME = "cluster_name"
TF_COPY_IGNORE = (
    ".git",
    ".venv",
    "__pycache__",
    ".pytest_cache",
    STATE_DIR_NAME,
    ".terraform",
    "*.tfstate",
    "*.tfstate.backup",
    ".terraform.lock.hcl",
)
TF_MAX_RETRIES = 3
TF_RETRY_WAIT_SECONDS = 5
TF_RETRYABLE_ERRORS = {
    r".*unable to verify signature.*": "Failed to retrieve plugin due to transient network error.",
    r".*Error installing provider.*": "Failed to retrieve plugin due to transient network error.",
    r".*connection reset by peer.*": "Transient network error.",
    r".*Error 409.*is not ready.*": "Cluster operation conflicted with an in-progress one.",
}

# -- Kubernetes --
NS_DEFAULT = "default"
RESOURCE_TYPE_POD = "pod"
KUBECONFIG_ENV = "KUBECONFIG"
NODE_READY_CONDITION = "Ready"
KUBECTL_TIMEOUT_SECONDS = 30
TUNNEL_OPEN_TIMEOUT_SECONDS = 30
TUNNEL_POLL_INTERVAL_SECONDS = 0.5
TUNNEL_CONNECT_TIMEOUT_SECONDS = 1
TUNNEL_CLOSE_TIMEOUT_SECONDS = 5
TUNNEL_LOCALHOST = "127.0.0.1"

# -- Helm value keys --
HELM_KEY_IMAGE = "image"
HELM_KEY_FULLNAME_OVERRIDE = "fullnameOverride"

# -- HTTP validation --
HTTP_OK = 200
HTTP_REQUEST_TIMEOUT_SECONDS = 10

# -- Run defaults --
DEFAULT_WORK_DIR = "stages/gke_workload"
DEFAULT_TEMPLATE_ROOT = "."
DEFAULT_MODULE_PATH = default_value("cluster", "module", default="examples/gke-basic-tiller")
DEFAULT_CLUSTER_NAME_PREFIX = default_value("cluster", "name_prefix", default="gke-cluster")
DEFAULT_REGIONS = default_value("cluster", "regions", default=["us-central1"])
DEFAULT_MODULE_VARIABLES = default_value("cluster", "variables", default={})

# -- Readiness defaults --
DEFAULT_NODE_RETRIES = 30
DEFAULT_NODE_SLEEP_SECONDS = 10

# -- Workload defaults --
DEFAULT_CHART_PATH = default_value("workload", "chart", default="charts/minimal-pod")
DEFAULT_WORKLOAD_IMAGE = default_value("workload", "image", default="nginx:1.15.8")
DEFAULT_EXPECTED_BODY = default_value("workload", "expected_body", default="Welcome to nginx")
DEFAULT_RELEASE_PREFIX = default_value("workload", "release_prefix", default="nginx")
DEFAULT_RESOURCE_SUFFIX = default_value("workload", "resource_suffix", default="minimal-pod")
DEFAULT_REMOTE_PORT = default_value("workload", "port", default=80)
DEFAULT_WORKLOAD_RETRIES = 15
DEFAULT_WORKLOAD_SLEEP_SECONDS = 5

UNIQUE_ID_LENGTH = 6
UNIQUE_ID_ALPHABET = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
