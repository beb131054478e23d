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

"""Settings classes, persisted option bundles, and the run context."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import AliasChoices, BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from stage_harness import store
from stage_harness.constants import (
    DEFAULT_CHART_PATH,
    DEFAULT_CLUSTER_NAME_PREFIX,
    DEFAULT_EXPECTED_BODY,
    DEFAULT_MODULE_PATH,
    DEFAULT_MODULE_VARIABLES,
    DEFAULT_NODE_RETRIES,
    DEFAULT_NODE_SLEEP_SECONDS,
    DEFAULT_REGIONS,
    DEFAULT_RELEASE_PREFIX,
    DEFAULT_REMOTE_PORT,
    DEFAULT_RESOURCE_SUFFIX,
    DEFAULT_TEMPLATE_ROOT,
    DEFAULT_WORK_DIR,
    DEFAULT_WORKLOAD_IMAGE,
    DEFAULT_WORKLOAD_RETRIES,
    DEFAULT_WORKLOAD_SLEEP_SECONDS,
    KEY_PROJECT,
    KEY_REGION,
    KEY_UNIQUE_ID,
    NS_DEFAULT,
    PROJECT_ENV_VARS,
    TF_OUTPUT_CLUSTER_ENDPOINT,
    TF_OUTPUT_CLUSTER_NAME,
)


# ============================================================================
# Configuration classes
# ============================================================================

class RunConfig(BaseSettings):
    """Run layout and cloud scope, auto-loaded from E2E_* env vars.

    Attributes:
        work_dir: Per-run directory holding persisted stage state.
        template_root: Root of the tree copied into a private temp dir.
        module_path: Terraform module, relative to *template_root*.
        cluster_name_prefix: Prefix of the generated cluster name.
        regions: Regions to pick the run's region from.
        project: GCP project, read from the usual Google env vars.
        module_variables: Extra Terraform variables passed through untouched.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_", extra="ignore", populate_by_name=True)

    work_dir: Path = Path(DEFAULT_WORK_DIR)
    template_root: Path = Path(DEFAULT_TEMPLATE_ROOT)
    module_path: str = DEFAULT_MODULE_PATH
    cluster_name_prefix: str = Field(default=DEFAULT_CLUSTER_NAME_PREFIX, pattern=r"^[a-z]([-a-z0-9]*[a-z0-9])?$")
    regions: list[str] = Field(default_factory=lambda: list(DEFAULT_REGIONS), min_length=1)
    project: str | None = Field(
        default=None,
        validation_alias=AliasChoices(*PROJECT_ENV_VARS, "E2E_PROJECT"),
    )
    module_variables: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_MODULE_VARIABLES))


class ReadinessConfig(BaseSettings):
    """Worker readiness polling budget, auto-loaded from E2E_* env vars.

    Attributes:
        node_retries: Maximum node status polls.
        node_sleep_seconds: Fixed delay between polls.
        expected_nodes: Minimum node count, or None to accept any non-empty set.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_", extra="ignore")

    node_retries: int = Field(default=DEFAULT_NODE_RETRIES, ge=1)
    node_sleep_seconds: float = Field(default=DEFAULT_NODE_SLEEP_SECONDS, ge=0)
    expected_nodes: int | None = Field(default=None, ge=1)


class WorkloadConfig(BaseSettings):
    """Chart, image and validation budget, auto-loaded from E2E_* env vars.

    Attributes:
        chart_path: Helm chart to install.
        image: Container image passed as the ``image`` chart value.
        namespace: Kubernetes namespace for the release.
        expected_body: Marker the HTTP response body must contain.
        release_prefix: Prefix for the generated release name.
        resource_suffix: Suffix appended to the release name for the pod name.
        retries: Maximum polls for both pod availability and HTTP validation.
        sleep_seconds: Fixed delay between polls.
        remote_port: Container port the tunnel forwards to.
        helm_env: Extra environment for the helm process.
    """

    model_config = SettingsConfigDict(env_prefix="E2E_", extra="ignore")

    chart_path: Path = Path(DEFAULT_CHART_PATH)
    image: str = DEFAULT_WORKLOAD_IMAGE
    namespace: str = NS_DEFAULT
    expected_body: str = DEFAULT_EXPECTED_BODY
    release_prefix: str = Field(default=DEFAULT_RELEASE_PREFIX, pattern=r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
    resource_suffix: str = DEFAULT_RESOURCE_SUFFIX
    retries: int = Field(default=DEFAULT_WORKLOAD_RETRIES, ge=1)
    sleep_seconds: float = Field(default=DEFAULT_WORKLOAD_SLEEP_SECONDS, ge=0)
    remote_port: int = Field(default=DEFAULT_REMOTE_PORT, ge=1, le=65535)
    helm_env: dict[str, str] = Field(default_factory=dict)


@dataclass(frozen=True)
class HarnessSettings:
    """All settings for one pipeline run."""

    run: RunConfig
    readiness: ReadinessConfig
    workload: WorkloadConfig

    @classmethod
    def from_env(cls) -> HarnessSettings:
        return cls(run=RunConfig(), readiness=ReadinessConfig(), workload=WorkloadConfig())


# ============================================================================
# Persisted option bundles
# ============================================================================

class ProvisionOptions(BaseModel):
    """Everything Terraform needs to apply and later destroy the cluster.

    Attributes:
        module_dir: Materialized (temporary) module directory.
        unique_id: Per-run suffix used in resource names.
        project: GCP project.
        region: GCP region.
        cluster_name: Name given to the cluster.
        variables: Module-specific variables, passed through as ``-var``.
        no_color: Whether to pass ``-no-color`` to Terraform.
    """

    module_dir: Path
    unique_id: str
    project: str
    region: str
    cluster_name: str
    variables: dict[str, str] = Field(default_factory=dict)
    no_color: bool = True


class ProvisionOutputs(BaseModel):
    """Typed view of ``terraform output``.

    Attributes:
        cluster_name: Name of the provisioned cluster.
        cluster_endpoint: API endpoint, when the module exports one.
        raw: Every output, stringified.
    """

    cluster_name: str
    cluster_endpoint: str | None = None
    raw: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_terraform(cls, outputs: dict[str, Any], fallback_cluster_name: str) -> ProvisionOutputs:
        """Parse raw Terraform output values.

        Args:
            outputs: Output name to value, as decoded from ``terraform output -json``.
            fallback_cluster_name: Used when the module exports no cluster name.

        Returns:
            Parsed outputs.
        """
        raw = {name: value if isinstance(value, str) else json.dumps(value) for name, value in outputs.items()}
        return cls(
            cluster_name=raw.get(TF_OUTPUT_CLUSTER_NAME) or fallback_cluster_name,
            cluster_endpoint=raw.get(TF_OUTPUT_CLUSTER_ENDPOINT),
            raw=raw,
        )


class AccessHandle(BaseModel):
    """Kubeconfig file plus the context and namespace used to address the cluster."""

    config_path: Path
    context: str = ""
    namespace: str = NS_DEFAULT


# ============================================================================
# Run context
# ============================================================================

@dataclass(frozen=True)
class RunContext:
    """Identity of one test run.

    Attributes:
        work_dir: Directory holding this run's persisted state.
        unique_id: Suffix that keeps cloud and workload names from colliding.
        region: Target region.
        project: Target project.
    """

    work_dir: Path
    unique_id: str
    region: str
    project: str

    def save(self) -> None:
        store.save_string(self.work_dir, KEY_UNIQUE_ID, self.unique_id)
        store.save_string(self.work_dir, KEY_PROJECT, self.project)
        store.save_string(self.work_dir, KEY_REGION, self.region)

    @classmethod
    def load(cls, work_dir: Path) -> RunContext:
        """Reload the context saved by an earlier stage, possibly in another process.

        Raises:
            MissingState: If the options stage never ran for this directory.
        """
        return cls(
            work_dir=work_dir,
            unique_id=store.load_string(work_dir, KEY_UNIQUE_ID),
            region=store.load_string(work_dir, KEY_REGION),
            project=store.load_string(work_dir, KEY_PROJECT),
        )
