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
import requests
import sh

from conftest import FakeHttpGet, Script
from stage_harness import deploy, orchestrator, store, utils
from stage_harness.config import AccessHandle, ProvisionOptions, ProvisionOutputs, RunContext
from stage_harness.constants import STAGE_NAMES
from stage_harness.errors import CleanupFailed, DeployFailed, HarnessError, MissingState
from stage_harness.orchestrator import GkeWorkloadPipeline, check_prerequisites
from stage_harness.stages import StageRunner

WELCOME = "<h1>Welcome to nginx!</h1>"


@pytest.fixture(autouse=True)
def fixed_ids(monkeypatch):
    monkeypatch.setattr(orchestrator, "unique_id", lambda: "C123xy")
    monkeypatch.setattr(deploy, "unique_id", lambda: "ABC")


def _skip(*names):
    return StageRunner({name: True for name in names})


def test_full_run(settings, tools, fake_provisioner, fake_issuer, fake_installer, fake_cluster_client, fake_tunnel):
    fake_cluster_client.pod_available = Script(False, True)
    tools.http_get = FakeHttpGet(requests.ConnectionError("refused"), (503, "starting"), (200, WELCOME))
    runner = StageRunner()

    GkeWorkloadPipeline(settings, tools, runner).run()

    assert runner.executed == [
        "copy_template",
        "create_options",
        "provision",
        "configure_access",
        "wait_for_workers",
        "deploy_and_validate",
        "cleanup",
    ]
    assert sorted(runner.executed) == sorted(STAGE_NAMES)

    (applied,) = fake_provisioner.applied
    assert applied.cluster_name == "gke-cluster-c123xy"
    assert applied.project == "test-project"
    assert applied.region == "us-central1"
    assert (applied.module_dir / "main.tf").is_file()
    assert settings.run.template_root not in applied.module_dir.parents
    assert fake_provisioner.destroyed == [applied]

    assert fake_issuer.calls[0][1:] == ("c-123", "us-central1", "test-project")

    (handle, chart, release, values) = fake_installer.installs[0]
    assert release == "nginx-abc"
    assert values == {"image": "nginx:1.15.8", "fullnameOverride": "nginx-abc-minimal-pod"}
    assert chart == settings.workload.chart_path
    assert handle.context == fake_issuer.context

    assert fake_cluster_client.tunnel_requests == [("pod", "nginx-abc-minimal-pod", 0, 80)]
    assert tools.http_get.urls == ["http://127.0.0.1:9999"] * 3
    assert fake_tunnel.close_calls == 1
    assert not handle.config_path.exists()


def test_full_run_persists_state(settings, tools):
    GkeWorkloadPipeline(settings, tools).run()
    work_dir = settings.run.work_dir

    context = RunContext.load(work_dir)
    assert (context.unique_id, context.region, context.project) == ("C123xy", "us-central1", "test-project")
    assert store.load_bundle(work_dir, "clusterOutputs", ProvisionOutputs).cluster_name == "c-123"
    assert store.load_bundle(work_dir, "kubectlOptions", AccessHandle).context != ""
    assert store.is_saved(work_dir, "terraformModulePath")


def test_cleanup_runs_after_deploy_failure(settings, tools, fake_provisioner, fake_installer, fake_tunnel):
    fake_installer.error = sh.ErrorReturnCode_1("helm install", b"", b"Error: chart not found")
    runner = StageRunner()

    with pytest.raises(DeployFailed):
        GkeWorkloadPipeline(settings, tools, runner).run()

    assert runner.executed[-2:] == ["deploy_and_validate", "cleanup"]
    assert len(fake_provisioner.destroyed) == 1
    handle = store.load_bundle(settings.run.work_dir, "kubectlOptions", AccessHandle)
    assert not handle.config_path.exists()
    assert fake_tunnel.close_calls == 0


def test_cleanup_failure_after_success_surfaces(settings, tools, fake_provisioner):
    fake_provisioner.destroy_error = sh.ErrorReturnCode_1("terraform destroy", b"", b"Error: quota")
    with pytest.raises(CleanupFailed):
        GkeWorkloadPipeline(settings, tools).run()
    handle = store.load_bundle(settings.run.work_dir, "kubectlOptions", AccessHandle)
    assert not handle.config_path.exists()


def test_deploy_error_wins_over_cleanup_error(settings, tools, fake_provisioner, fake_installer):
    fake_installer.error = sh.ErrorReturnCode_1("helm install", b"", b"Error: chart not found")
    fake_provisioner.destroy_error = sh.ErrorReturnCode_1("terraform destroy", b"", b"Error: quota")
    with pytest.raises(DeployFailed):
        GkeWorkloadPipeline(settings, tools).run()


def test_resume_skips_setup_stages(settings, tools, fake_provisioner, fake_installer):
    # First process: provision and configure, keep the cluster.
    first = _skip("wait_for_workers", "deploy_and_validate", "cleanup")
    GkeWorkloadPipeline(settings, tools, first).run()
    assert first.executed == ["copy_template", "create_options", "provision", "configure_access"]
    assert fake_provisioner.destroyed == []

    # Second process: only the workload stages and cleanup.
    second = _skip("copy_template", "create_options", "provision", "configure_access")
    GkeWorkloadPipeline(settings, tools, second).run()
    assert second.executed == ["wait_for_workers", "deploy_and_validate", "cleanup"]
    assert len(fake_provisioner.applied) == 1
    assert fake_provisioner.destroyed == fake_provisioner.applied
    assert len(fake_installer.installs) == 1


def test_skipping_everything_runs_nothing(settings, tools, fake_provisioner):
    runner = _skip(*STAGE_NAMES)
    GkeWorkloadPipeline(settings, tools, runner).run()
    assert runner.executed == []
    assert runner.skipped == list(STAGE_NAMES[:2]) + list(STAGE_NAMES[3:]) + ["cleanup"]
    assert fake_provisioner.applied == []


def test_skipping_without_saved_state_fails(settings, tools):
    runner = _skip("copy_template", "create_options", "cleanup")
    with pytest.raises(MissingState) as exc_info:
        GkeWorkloadPipeline(settings, tools, runner).run()
    assert exc_info.value.key == "terraformOptions"


def test_missing_project(settings, tools, fake_provisioner):
    run = settings.run.model_copy(update={"project": None})
    settings = type(settings)(run=run, readiness=settings.readiness, workload=settings.workload)
    with pytest.raises(HarnessError, match="project"):
        GkeWorkloadPipeline(settings, tools, _skip("cleanup")).run()
    assert fake_provisioner.applied == []


def test_module_variables_pass_through(settings, tools, fake_provisioner):
    run = settings.run.model_copy(update={"module_variables": {"machine_type": "e2-small"}})
    settings = type(settings)(run=run, readiness=settings.readiness, workload=settings.workload)
    GkeWorkloadPipeline(settings, tools).run()
    options = store.load_bundle(settings.run.work_dir, "terraformOptions", ProvisionOptions)
    assert options.variables == {"machine_type": "e2-small"}


def test_cleanup_destroys_even_without_saved_kubeconfig(settings, tools, fake_provisioner):
    GkeWorkloadPipeline(settings, tools, _skip("wait_for_workers", "deploy_and_validate", "cleanup")).run()
    (store.state_dir(settings.run.work_dir) / "kubectlOptions.json").unlink()

    only_cleanup = _skip(*[name for name in STAGE_NAMES if name != "cleanup"])
    with pytest.raises(CleanupFailed) as exc_info:
        GkeWorkloadPipeline(settings, tools, only_cleanup).run()

    assert isinstance(exc_info.value.__cause__, MissingState)
    assert exc_info.value.__cause__.key == "kubectlOptions"
    assert fake_provisioner.destroyed == fake_provisioner.applied


# =============================================================================
# Prerequisites
# =============================================================================

@pytest.fixture
def required(monkeypatch):
    calls = []
    monkeypatch.setattr(orchestrator, "require_commands", lambda *cmds: calls.append(cmds))
    return calls


def test_prerequisites_for_every_stage(required):
    assert check_prerequisites() == ["gcloud", "helm", "kubectl", "terraform"]
    assert required == [("gcloud", "helm", "kubectl", "terraform")]


def test_prerequisites_only_for_remaining_stages(required):
    runner = _skip(*[name for name in STAGE_NAMES if name != "deploy_and_validate"])
    assert check_prerequisites(runner) == ["helm", "kubectl"]
    assert required == [("helm", "kubectl")]


def test_prerequisites_when_every_stage_is_skipped(required):
    assert check_prerequisites(_skip(*STAGE_NAMES)) == []
    assert required == []


def test_prerequisites_missing_tool(monkeypatch):
    monkeypatch.setattr(utils.sh, "which", lambda cmd: None if cmd == "terraform" else f"/usr/bin/{cmd}", raising=False)
    with pytest.raises(RuntimeError, match="terraform"):
        check_prerequisites(_skip("configure_access", "wait_for_workers", "deploy_and_validate"))
