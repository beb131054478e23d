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

"""Helm install of the smoke-test workload."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

import sh
from rich.panel import Panel

from stage_harness import console, logger
from stage_harness.config import AccessHandle
from stage_harness.errors import DeployFailed
from stage_harness.interfaces import PackageInstaller
from stage_harness.utils import command_error_output, unique_id


def release_name_for(prefix: str, uid: str | None = None) -> str:
    """Build a release name unique to this deploy, e.g. ``nginx-a8xq2z``."""
    return f"{prefix}-{(uid or unique_id()).lower()}"


def resource_name_for(release_name: str, suffix: str) -> str:
    """Name of the resource the chart creates for *release_name*."""
    return f"{release_name}-{suffix}"


class HelmInstaller:
    """Install charts with the helm CLI.

    Args:
        env: Extra environment for the helm process, layered over ``os.environ``.
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self.env = dict(env or {})

    def install(
        self,
        handle: AccessHandle,
        chart_path: Path,
        release_name: str,
        values: Mapping[str, str],
    ) -> None:
        args = [
            "install", release_name, str(chart_path),
            "--namespace", handle.namespace,
            "--kubeconfig", str(handle.config_path),
        ]
        if handle.context:
            args += ["--kube-context", handle.context]
        for key, value in values.items():
            args += ["--set", f"{key}={value}"]
        logger.info("helm %s", " ".join(args))
        sh.helm(*args, _env={**os.environ, **self.env})


class WorkloadDeployer:
    """Deploy the workload chart into the cluster."""

    def __init__(self, installer: PackageInstaller) -> None:
        self.installer = installer

    def deploy(
        self,
        handle: AccessHandle,
        chart_path: Path,
        release_name: str,
        parameters: Mapping[str, str],
    ) -> str:
        """Install *chart_path* with *parameters* as chart values.

        Args:
            handle: Cluster access.
            chart_path: Chart directory.
            release_name: Release name, unique per deploy.
            parameters: Chart values, passed as ``--set key=value``.

        Returns:
            The release name.

        Raises:
            DeployFailed: If the install command fails.
        """
        console.print(Panel.fit(f"Installing release '{release_name}' from {chart_path}", style="bold blue"))
        try:
            self.installer.install(handle, chart_path, release_name, parameters)
        except sh.ErrorReturnCode as err:
            raise DeployFailed(f"helm install of '{release_name}' failed: {command_error_output(err)}") from err
        console.print(f"[green]\u2705 Release '{release_name}' installed[/green]")
        return release_name
