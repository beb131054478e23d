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

"""The GKE workload pipeline: fixed stages wired to concrete components.

Every stage reloads what it needs from the stage store rather than from
instance state, so any prefix of stages can be skipped in a later process as
long as an earlier run in the same work directory saved their outputs.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from pathlib import Path

from rich.panel import Panel

from stage_harness import console, logger, store
from stage_harness.access import ClusterAccess, GcloudCredentialIssuer
from stage_harness.config import (
    AccessHandle,
    HarnessSettings,
    ProvisionOptions,
    ProvisionOutputs,
    RunContext,
)
from stage_harness.constants import (
    HELM_KEY_FULLNAME_OVERRIDE,
    HELM_KEY_IMAGE,
    KEY_CLUSTER_OUTPUTS,
    KEY_KUBECTL_OPTIONS,
    KEY_MODULE_PATH,
    KEY_TERRAFORM_OPTIONS,
    STAGE_CLEANUP,
    STAGE_COMMANDS,
    STAGE_CONFIGURE_ACCESS,
    STAGE_COPY_TEMPLATE,
    STAGE_CREATE_OPTIONS,
    STAGE_DEPLOY_AND_VALIDATE,
    STAGE_PROVISION,
    STAGE_WAIT_FOR_WORKERS,
)
from stage_harness.deploy import HelmInstaller, WorkloadDeployer, release_name_for, resource_name_for
from stage_harness.errors import HarnessError
from stage_harness.interfaces import (
    ClusterClient,
    CredentialIssuer,
    HttpGet,
    PackageInstaller,
    Provisioner,
)
from stage_harness.kubectl import KubectlClient
from stage_harness.provisioning import ResourceLifecycle, TerraformProvisioner
from stage_harness.readiness import ReadinessPoller
from stage_harness.stages import StagePipeline, StageRunner
from stage_harness.utils import require_commands, unique_id
from stage_harness.validation import NetworkValidator, requests_get


# ============================================================================
# Tooling
# ============================================================================

@dataclass
class HarnessTools:
    """External-tool collaborators used by the pipeline's components."""

    provisioner: Provisioner
    credential_issuer: CredentialIssuer
    installer: PackageInstaller
    cluster_client: ClusterClient
    http_get: HttpGet

    @classmethod
    def real(cls, helm_env: dict[str, str] | None = None) -> HarnessTools:
        """Wire the terraform, gcloud, helm, kubectl and requests implementations."""
        return cls(
            provisioner=TerraformProvisioner(),
            credential_issuer=GcloudCredentialIssuer(),
            installer=HelmInstaller(env=helm_env),
            cluster_client=KubectlClient(),
            http_get=requests_get,
        )


def check_prerequisites(runner: StageRunner | None = None) -> list[str]:
    """Check the CLI tools needed by the stages *runner* will not skip.

    Args:
        runner: Runner carrying the skip flags; None checks for every stage.

    Returns:
        The commands that were checked, sorted.

    Raises:
        RuntimeError: If any of them is missing.
    """
    runner = runner or StageRunner()
    commands = sorted(
        {cmd for stage, cmds in STAGE_COMMANDS.items() if not runner.should_skip(stage) for cmd in cmds}
    )
    console.print(Panel.fit("Checking prerequisites", style="bold blue"))
    if not commands:
        console.print("[yellow]\u2139\ufe0f  No external tools needed by the remaining stages[/yellow]")
        return commands
    require_commands(*commands)
    console.print(f"[green]\u2705 Required tools available: {', '.join(commands)}[/green]")
    return commands


# ============================================================================
# Pipeline
# ============================================================================

class GkeWorkloadPipeline:
    """Provision a GKE cluster, deploy a workload, check it over HTTP, tear down.

    Args:
        settings: Run, readiness and workload settings.
        tools: External-tool collaborators.
        runner: Stage runner carrying the skip flags.
    """

    def __init__(self, settings: HarnessSettings, tools: HarnessTools, runner: StageRunner | None = None) -> None:
        self.settings = settings
        self.tools = tools
        self.runner = runner or StageRunner()
        self.work_dir = Path(settings.run.work_dir)

        self.lifecycle = ResourceLifecycle(tools.provisioner)
        self.access = ClusterAccess(tools.credential_issuer)
        self.poller = ReadinessPoller(
            tools.cluster_client,
            settings.readiness.node_retries,
            settings.readiness.node_sleep_seconds,
            settings.readiness.expected_nodes,
        )
        self.deployer = WorkloadDeployer(tools.installer)
        self.validator = NetworkValidator(
            tools.cluster_client,
            tools.http_get,
            settings.workload.retries,
            settings.workload.sleep_seconds,
            settings.workload.remote_port,
        )

    def run(self) -> None:
        """Run every stage in order; cleanup runs on every exit path once deferred."""
        logger.info("Running pipeline in %s", self.work_dir)
        with StagePipeline(self.runner) as pipeline:
            pipeline.run(STAGE_COPY_TEMPLATE, self.copy_template)
            pipeline.run(STAGE_CREATE_OPTIONS, self.create_options)
            pipeline.defer(STAGE_CLEANUP, self.cleanup)
            pipeline.run(STAGE_PROVISION, self.provision)
            pipeline.run(STAGE_CONFIGURE_ACCESS, self.configure_access)
            pipeline.run(STAGE_WAIT_FOR_WORKERS, self.wait_for_workers)
            pipeline.run(STAGE_DEPLOY_AND_VALIDATE, self.deploy_and_validate)

    # -- stages --

    def copy_template(self) -> None:
        run = self.settings.run
        module_dir = self.lifecycle.materialize(run.template_root, run.module_path)
        store.save_string(self.work_dir, KEY_MODULE_PATH, str(module_dir))

    def create_options(self) -> None:
        """Fix the run's identity and save the option bundles later stages reload.

        Raises:
            MissingState: If the template copy was never saved.
            HarnessError: If no GCP project is configured.
        """
        run = self.settings.run
        module_dir = Path(store.load_string(self.work_dir, KEY_MODULE_PATH))
        if not run.project:
            raise HarnessError("No GCP project set; export GOOGLE_CLOUD_PROJECT or E2E_PROJECT")

        handle = self.access.prepare()
        uid = unique_id()
        region = random.choice(run.regions)
        context = RunContext(work_dir=self.work_dir, unique_id=uid, region=region, project=run.project)
        context.save()

        options = ProvisionOptions(
            module_dir=module_dir,
            unique_id=uid,
            project=run.project,
            region=region,
            cluster_name=f"{run.cluster_name_prefix}-{uid.lower()}",
            variables=dict(run.module_variables),
        )
        store.save_bundle(self.work_dir, KEY_TERRAFORM_OPTIONS, options)
        store.save_bundle(self.work_dir, KEY_KUBECTL_OPTIONS, handle)
        console.print(f"[green]\u2705 Run {uid}: project {run.project}, region {region}[/green]")

    def cleanup(self) -> None:
        """Destroy the cluster, then delete the kubeconfig.

        The kubeconfig is deleted even when destroy fails; the destroy error
        takes precedence.
        """
        options = store.load_bundle(self.work_dir, KEY_TERRAFORM_OPTIONS, ProvisionOptions)
        try:
            self.lifecycle.destroy(options)
        except Exception:
            self._release_after_failed_destroy()
            raise
        self._release_access()

    def _release_access(self) -> None:
        handle = store.load_bundle(self.work_dir, KEY_KUBECTL_OPTIONS, AccessHandle)
        self.access.release(handle)

    def _release_after_failed_destroy(self) -> None:
        try:
            self._release_access()
        except HarnessError as err:
            logger.error("Kubeconfig release failed after destroy error: %s", err, exc_info=err)

    def provision(self) -> None:
        options = store.load_bundle(self.work_dir, KEY_TERRAFORM_OPTIONS, ProvisionOptions)
        outputs = self.lifecycle.apply(options)
        store.save_bundle(self.work_dir, KEY_CLUSTER_OUTPUTS, outputs)

    def configure_access(self) -> None:
        context = RunContext.load(self.work_dir)
        outputs = store.load_bundle(self.work_dir, KEY_CLUSTER_OUTPUTS, ProvisionOutputs)
        handle = store.load_bundle(self.work_dir, KEY_KUBECTL_OPTIONS, AccessHandle)
        handle = self.access.exchange_credentials(handle, outputs.cluster_name, context.region, context.project)
        store.save_bundle(self.work_dir, KEY_KUBECTL_OPTIONS, handle)

    def wait_for_workers(self) -> None:
        handle = store.load_bundle(self.work_dir, KEY_KUBECTL_OPTIONS, AccessHandle)
        self.poller.wait_for_workers_ready(handle)

    def deploy_and_validate(self) -> None:
        """Install the chart under a fresh release name and check the pod it creates."""
        workload = self.settings.workload
        handle = store.load_bundle(self.work_dir, KEY_KUBECTL_OPTIONS, AccessHandle)
        handle = handle.model_copy(update={"namespace": workload.namespace})

        release_name = release_name_for(workload.release_prefix)
        pod_name = resource_name_for(release_name, workload.resource_suffix)
        values = {
            HELM_KEY_IMAGE: workload.image,
            HELM_KEY_FULLNAME_OVERRIDE: pod_name,
        }
        self.deployer.deploy(handle, workload.chart_path, release_name, values)
        self.validator.verify(handle, pod_name, workload.expected_body)
