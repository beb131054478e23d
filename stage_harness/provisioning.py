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

"""Terraform workspace materialization, apply, and destroy."""

from __future__ import annotations

import json
import re
import shutil
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

import sh
from rich.panel import Panel
from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt, wait_fixed

from stage_harness import console, logger
from stage_harness.config import ProvisionOptions, ProvisionOutputs
from stage_harness.constants import (
    TF_COPY_IGNORE,
    TF_MAX_RETRIES,
    TF_RETRY_WAIT_SECONDS,
    TF_RETRYABLE_ERRORS,
    TF_VAR_CLUSTER_NAME,
    TF_VAR_PROJECT,
    TF_VAR_REGION,
)
from stage_harness.interfaces import Provisioner
from stage_harness.utils import command_error_output


# ============================================================================
# Terraform CLI
# ============================================================================

def _retry_reason(err: BaseException | None) -> str | None:
    """Return why a failed terraform call is worth retrying, or None if it is not."""
    if not isinstance(err, sh.ErrorReturnCode):
        return None
    output = command_error_output(err, limit=10000)
    for pattern, reason in TF_RETRYABLE_ERRORS.items():
        if re.search(pattern, output):
            return reason
    return None


def _is_retryable(err: BaseException) -> bool:
    return _retry_reason(err) is not None


def _announce_retry(retry_state: RetryCallState) -> None:
    reason = _retry_reason(retry_state.outcome.exception())
    logger.warning("Retrying terraform after attempt %d: %s", retry_state.attempt_number, reason)
    console.print(f"[yellow]\u26a0\ufe0f  {reason} Retrying terraform...[/yellow]")


class TerraformProvisioner:
    """Drive the terraform CLI in a materialized module directory."""

    def __init__(self, max_retries: int = TF_MAX_RETRIES, retry_wait_seconds: float = TF_RETRY_WAIT_SECONDS) -> None:
        self.max_retries = max_retries
        self.retry_wait_seconds = retry_wait_seconds

    @staticmethod
    def var_args(options: ProvisionOptions) -> list[str]:
        """Build ``-var`` arguments from the typed options and the open variable set.

        Args:
            options: Provisioning options.

        Returns:
            Flat list such as ``["-var", "project=p", "-var", "location=r", ...]``.
        """
        variables = {
            TF_VAR_PROJECT: options.project,
            TF_VAR_REGION: options.region,
            TF_VAR_CLUSTER_NAME: options.cluster_name,
            **options.variables,
        }
        return [item for key, value in variables.items() for item in ("-var", f"{key}={value}")]

    def _terraform(self, options: ProvisionOptions, command: str, *args: str) -> str:
        flags = [*args, "-no-color"] if options.no_color else list(args)
        logger.info("terraform %s (in %s)", command, options.module_dir)
        return str(sh.terraform(command, *flags, _cwd=str(options.module_dir)))

    def _with_retries(self, fn: Callable[[], None]) -> None:
        @retry(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_fixed(self.retry_wait_seconds),
            retry=retry_if_exception(_is_retryable),
            before_sleep=_announce_retry,
            reraise=True,
        )
        def _attempt() -> None:
            fn()

        _attempt()

    def init_and_apply(self, options: ProvisionOptions) -> dict[str, Any]:
        """Run ``terraform init`` and ``apply``, then return output values by name."""
        def _init_and_apply() -> None:
            self._terraform(options, "init", "-input=false")
            self._terraform(options, "apply", "-auto-approve", "-input=false", *self.var_args(options))

        self._with_retries(_init_and_apply)
        outputs = json.loads(self._terraform(options, "output", "-json"))
        return {name: entry.get("value") for name, entry in outputs.items()}

    def destroy(self, options: ProvisionOptions) -> None:
        self._with_retries(
            lambda: self._terraform(options, "destroy", "-auto-approve", "-input=false", *self.var_args(options))
        )


# ============================================================================
# Resource lifecycle
# ============================================================================

class ResourceLifecycle:
    """Materialize, apply and destroy the cluster's infrastructure."""

    def __init__(self, provisioner: Provisioner) -> None:
        self.provisioner = provisioner

    @staticmethod
    def materialize(template_root: Path, module_path: str, tmp_dir: Path | None = None) -> Path:
        """Copy *template_root* into a fresh temp directory.

        The whole root is copied so relative module sources keep resolving;
        local state and provider caches are left behind.

        Args:
            template_root: Tree containing the module and anything it references.
            module_path: Module directory relative to *template_root*.
            tmp_dir: Parent for the temp directory, defaults to the system one.

        Returns:
            Path of the module inside the copy.

        Raises:
            FileNotFoundError: If the module does not exist under *template_root*.
        """
        template_root = Path(template_root).resolve()
        if not (template_root / module_path).is_dir():
            raise FileNotFoundError(f"Terraform module '{module_path}' not found under {template_root}")

        copy_root = Path(tempfile.mkdtemp(prefix=f"{template_root.name}-", dir=tmp_dir)) / template_root.name
        shutil.copytree(template_root, copy_root, ignore=shutil.ignore_patterns(*TF_COPY_IGNORE))
        module_dir = copy_root / module_path
        console.print(f"[green]\u2705 Copied {template_root} to {copy_root}[/green]")
        logger.info("Terraform module path: %s", module_dir)
        return module_dir

    def apply(self, options: ProvisionOptions) -> ProvisionOutputs:
        """Apply the module and parse its outputs.

        Raises:
            sh.ErrorReturnCode: If terraform fails with a non-retryable error.
        """
        console.print(Panel.fit(f"Provisioning cluster '{options.cluster_name}'", style="bold blue"))
        console.print(f"[yellow]Project: {options.project}  Region: {options.region}[/yellow]")
        raw = self.provisioner.init_and_apply(options)
        outputs = ProvisionOutputs.from_terraform(raw, options.cluster_name)
        console.print(f"[green]\u2705 Cluster '{outputs.cluster_name}' provisioned[/green]")
        return outputs

    def destroy(self, options: ProvisionOptions) -> None:
        """Destroy everything :meth:`apply` created. Failures propagate."""
        console.print(f"[yellow]\u2139\ufe0f  Destroying cluster '{options.cluster_name}'...[/yellow]")
        self.provisioner.destroy(options)
        console.print(f"[green]\u2705 Cluster '{options.cluster_name}' destroyed[/green]")
