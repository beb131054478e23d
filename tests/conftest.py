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

"""Shared fixtures: in-memory fakes for every external tool."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

import pytest
import yaml

from stage_harness.config import AccessHandle, HarnessSettings, ProvisionOptions, ReadinessConfig, RunConfig, WorkloadConfig
from stage_harness.orchestrator import HarnessTools


class Script:
    """Hand out scripted values in order, repeating the last one.

    Exception instances in the script are raised instead of returned.
    """

    def __init__(self, *items):
        self.items = list(items)
        self.calls = 0

    def next(self):
        item = self.items[min(self.calls, len(self.items) - 1)]
        self.calls += 1
        if isinstance(item, BaseException):
            raise item
        return item


class FakeProvisioner:
    def __init__(self, outputs=None, apply_error=None, destroy_error=None):
        self.outputs = {"cluster_name": "c-123"} if outputs is None else outputs
        self.apply_error = apply_error
        self.destroy_error = destroy_error
        self.applied: list[ProvisionOptions] = []
        self.destroyed: list[ProvisionOptions] = []

    def init_and_apply(self, options):
        self.applied.append(options)
        if self.apply_error is not None:
            raise self.apply_error
        return dict(self.outputs)

    def destroy(self, options):
        self.destroyed.append(options)
        if self.destroy_error is not None:
            raise self.destroy_error


class FakeIssuer:
    """Writes a minimal kubeconfig with a current-context, like gcloud does."""

    def __init__(self, context="gke_test-project_us-central1_c-123", error=None):
        self.context = context
        self.error = error
        self.calls: list[tuple] = []

    def get_credentials(self, config_path, cluster_name, region, project):
        self.calls.append((Path(config_path), cluster_name, region, project))
        if self.error is not None:
            raise self.error
        Path(config_path).write_text(yaml.safe_dump({"apiVersion": "v1", "current-context": self.context}))


class FakeInstaller:
    def __init__(self, error=None):
        self.error = error
        self.installs: list[tuple[AccessHandle, Path, str, dict]] = []

    def install(self, handle, chart_path, release_name, values: Mapping[str, str]):
        self.installs.append((handle, Path(chart_path), release_name, dict(values)))
        if self.error is not None:
            raise self.error


class FakeTunnel:
    def __init__(self, endpoint="127.0.0.1:9999", open_error=None):
        self._endpoint = endpoint
        self.open_error = open_error
        self.open_calls = 0
        self.close_calls = 0

    @property
    def endpoint(self):
        return self._endpoint

    @property
    def closed(self):
        return self.close_calls > 0

    def open(self):
        self.open_calls += 1
        if self.open_error is not None:
            raise self.open_error

    def close(self):
        self.close_calls += 1


class FakeClusterClient:
    def __init__(self, node_states=None, pod_available=None, tunnel=None):
        self.node_states = node_states or Script([True, True])
        self.pod_available = pod_available or Script(True)
        self.fake_tunnel = tunnel or FakeTunnel()
        self.tunnel_requests: list[tuple] = []
        self.pod_queries: list[str] = []

    def node_ready_states(self, handle):
        return self.node_states.next()

    def is_pod_available(self, handle, pod_name):
        self.pod_queries.append(pod_name)
        return self.pod_available.next()

    def tunnel(self, handle, resource_type, resource_name, local_port, remote_port):
        self.tunnel_requests.append((resource_type, resource_name, local_port, remote_port))
        return self.fake_tunnel


class FakeHttpGet:
    def __init__(self, *responses):
        self.script = Script(*responses)
        self.urls: list[str] = []

    def __call__(self, url):
        self.urls.append(url)
        return self.script.next()


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture(autouse=True)
def no_home_kubeconfig(tmp_path, monkeypatch):
    """Keep tests away from the developer's real kubeconfig."""
    monkeypatch.setenv("KUBECONFIG", str(tmp_path / "no-such-kubeconfig"))


@pytest.fixture
def template_root(tmp_path) -> Path:
    root = tmp_path / "repo"
    module = root / "examples" / "gke-basic-tiller"
    module.mkdir(parents=True)
    (module / "main.tf").write_text('module "gke" { source = "../../modules/gke-cluster" }\n')
    (module / "terraform.tfstate").write_text("{}")
    (module / ".terraform").mkdir()
    (module / ".terraform" / "cache").write_text("provider cache")
    modules = root / "modules" / "gke-cluster"
    modules.mkdir(parents=True)
    (modules / "main.tf").write_text("# cluster\n")
    return root


@pytest.fixture
def work_dir(tmp_path) -> Path:
    return tmp_path / "stages" / "run"


@pytest.fixture
def settings(template_root, work_dir, tmp_path) -> HarnessSettings:
    return HarnessSettings(
        run=RunConfig(
            work_dir=work_dir,
            template_root=template_root,
            project="test-project",
            regions=["us-central1"],
        ),
        readiness=ReadinessConfig(node_retries=3, node_sleep_seconds=0.01),
        workload=WorkloadConfig(chart_path=tmp_path / "charts" / "minimal-pod", retries=5, sleep_seconds=0.01),
    )


@pytest.fixture
def fake_provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def fake_issuer() -> FakeIssuer:
    return FakeIssuer()


@pytest.fixture
def fake_installer() -> FakeInstaller:
    return FakeInstaller()


@pytest.fixture
def fake_tunnel() -> FakeTunnel:
    return FakeTunnel()


@pytest.fixture
def fake_cluster_client(fake_tunnel) -> FakeClusterClient:
    return FakeClusterClient(tunnel=fake_tunnel)


@pytest.fixture
def fake_http_get() -> FakeHttpGet:
    return FakeHttpGet((200, "<h1>Welcome to nginx!</h1>"))


@pytest.fixture
def tools(fake_provisioner, fake_issuer, fake_installer, fake_cluster_client, fake_http_get) -> HarnessTools:
    return HarnessTools(
        provisioner=fake_provisioner,
        credential_issuer=fake_issuer,
        installer=fake_installer,
        cluster_client=fake_cluster_client,
        http_get=fake_http_get,
    )


@pytest.fixture
def handle(tmp_path) -> AccessHandle:
    config_path = tmp_path / "kubeconfig"
    config_path.write_text("")
    return AccessHandle(config_path=config_path)
