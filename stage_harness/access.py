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

"""Private kubeconfig preparation, gcloud credential exchange, and release."""

from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Mapping
from pathlib import Path

import sh
import yaml
from rich.panel import Panel

from stage_harness import console, logger
from stage_harness.config import AccessHandle
from stage_harness.constants import KUBECONFIG_ENV
from stage_harness.errors import CleanupFailed, CredentialExchangeFailed
from stage_harness.interfaces import CredentialIssuer
from stage_harness.utils import command_error_output


class GcloudCredentialIssuer:
    """Fetch GKE credentials with ``gcloud container clusters get-credentials``."""

    def get_credentials(self, config_path: Path, cluster_name: str, region: str, project: str) -> None:
        logger.info("gcloud get-credentials %s (region=%s, project=%s) -> %s", cluster_name, region, project, config_path)
        sh.gcloud(
            "container", "clusters", "get-credentials", cluster_name,
            "--region", region,
            "--project", project,
            _env={**os.environ, KUBECONFIG_ENV: str(config_path)},
        )


def home_kubeconfig_path(environ: Mapping[str, str] | None = None) -> Path:
    """Resolve the developer's kubeconfig: first ``$KUBECONFIG`` entry, else ``~/.kube/config``."""
    if environ is None:
        environ = os.environ
    configured = environ.get(KUBECONFIG_ENV, "")
    if configured:
        return Path(configured.split(os.pathsep)[0]).expanduser()
    return Path.home() / ".kube" / "config"


def current_context(config_path: Path) -> str:
    """Read ``current-context`` from a kubeconfig, or "" if unset."""
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    return data.get("current-context") or ""


class ClusterAccess:
    """Own the run's kubeconfig from creation to deletion."""

    def __init__(self, issuer: CredentialIssuer) -> None:
        self.issuer = issuer

    def prepare(self, tmp_dir: Path | None = None, source: Path | None = None) -> AccessHandle:
        """Copy the developer's kubeconfig to a private temp file.

        Isolates the run from local kubectl state. A missing source yields an
        empty file that the credential exchange fills in.

        Args:
            tmp_dir: Parent directory for the copy, defaults to the system temp dir.
            source: Kubeconfig to copy, defaults to :func:`home_kubeconfig_path`.

        Returns:
            Handle to the copy with an empty context.
        """
        source = home_kubeconfig_path() if source is None else Path(source)
        fd, tmp_name = tempfile.mkstemp(prefix="kubeconfig-", dir=tmp_dir)
        os.close(fd)
        config_path = Path(tmp_name)
        if source.is_file():
            shutil.copyfile(source, config_path)
            logger.info("Copied kubeconfig %s to %s", source, config_path)
        else:
            logger.info("No kubeconfig at %s, starting from an empty file at %s", source, config_path)
        config_path.chmod(0o600)
        return AccessHandle(config_path=config_path)

    def exchange_credentials(self, handle: AccessHandle, cluster_name: str, region: str, project: str) -> AccessHandle:
        """Write cluster credentials into the handle's kubeconfig.

        Returns:
            A copy of *handle* whose context is the kubeconfig's current context.

        Raises:
            CredentialExchangeFailed: If the credential command exits non-zero.
        """
        console.print(Panel.fit(f"Fetching credentials for cluster '{cluster_name}'", style="bold blue"))
        try:
            self.issuer.get_credentials(handle.config_path, cluster_name, region, project)
        except sh.ErrorReturnCode as err:
            raise CredentialExchangeFailed(
                f"Failed to get credentials for cluster '{cluster_name}': {command_error_output(err)}"
            ) from err

        updated = handle.model_copy(update={"context": current_context(handle.config_path)})
        console.print(f"[green]\u2705 kubeconfig {updated.config_path} (context: {updated.context or 'default'})[/green]")
        return updated

    def release(self, handle: AccessHandle) -> None:
        """Delete the kubeconfig.

        Raises:
            CleanupFailed: If the file is already gone or cannot be removed.
        """
        try:
            handle.config_path.unlink()
        except OSError as err:
            raise CleanupFailed(f"Failed to delete kubeconfig {handle.config_path}: {err}") from err
        console.print(f"[green]\u2705 Deleted kubeconfig {handle.config_path}[/green]")
