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

from __future__ import annotations

import pytest
import sh

from stage_harness import deploy
from stage_harness.deploy import HelmInstaller, WorkloadDeployer, release_name_for, resource_name_for
from stage_harness.errors import DeployFailed


def test_release_and_resource_names():
    assert release_name_for("nginx", "A8Xq2Z") == "nginx-a8xq2z"
    assert resource_name_for("nginx-a8xq2z", "minimal-pod") == "nginx-a8xq2z-minimal-pod"


def test_release_name_is_lowercase_and_fresh():
    first = release_name_for("nginx")
    second = release_name_for("nginx")
    assert first.startswith("nginx-")
    assert first == first.lower()
    assert first != second


def test_deploy_passes_values(fake_installer, handle, tmp_path):
    chart = tmp_path / "charts" / "minimal-pod"
    values = {"image": "nginx:1.15.8", "fullnameOverride": "nginx-abc-minimal-pod"}

    assert WorkloadDeployer(fake_installer).deploy(handle, chart, "nginx-abc", values) == "nginx-abc"
    assert fake_installer.installs == [(handle, chart, "nginx-abc", values)]


def test_deploy_failure(fake_installer, handle, tmp_path):
    fake_installer.error = sh.ErrorReturnCode_1("helm install", b"", b"Error: chart not found")
    with pytest.raises(DeployFailed, match="chart not found") as exc_info:
        WorkloadDeployer(fake_installer).deploy(handle, tmp_path / "chart", "nginx-abc", {})
    assert isinstance(exc_info.value.__cause__, sh.ErrorReturnCode)


def test_helm_installer_command_line(monkeypatch, handle, tmp_path):
    calls = []

    def fake_helm(*args, **kwargs):
        calls.append((args, kwargs))

    monkeypatch.setattr(deploy.sh, "helm", fake_helm, raising=False)
    handle = handle.model_copy(update={"context": "gke_ctx", "namespace": "apps"})
    HelmInstaller(env={"HELM_TLS_VERIFY": "true"}).install(
        handle, tmp_path / "chart", "nginx-abc", {"image": "nginx:1.15.8"}
    )

    (args, kwargs), = calls
    assert args == (
        "install", "nginx-abc", str(tmp_path / "chart"),
        "--namespace", "apps",
        "--kubeconfig", str(handle.config_path),
        "--kube-context", "gke_ctx",
        "--set", "image=nginx:1.15.8",
    )
    assert kwargs["_env"]["HELM_TLS_VERIFY"] == "true"
