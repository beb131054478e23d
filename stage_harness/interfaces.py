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

"""Narrow capability interfaces for the external tools the harness drives.

Components depend on these protocols only. The concrete implementations shell
out to terraform, gcloud, helm and kubectl; tests substitute in-memory fakes.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Any, Protocol

from stage_harness.config import AccessHandle, ProvisionOptions


class Provisioner(Protocol):
    def init_and_apply(self, options: ProvisionOptions) -> dict[str, Any]:
        """Apply the module and return its output values by name."""
        ...

    def destroy(self, options: ProvisionOptions) -> None:
        ...


class CredentialIssuer(Protocol):
    def get_credentials(self, config_path: Path, cluster_name: str, region: str, project: str) -> None:
        """Write cluster credentials into *config_path*.

        Raises:
            sh.ErrorReturnCode: If the command exits non-zero.
        """
        ...


class PackageInstaller(Protocol):
    def install(
        self,
        handle: AccessHandle,
        chart_path: Path,
        release_name: str,
        values: Mapping[str, str],
    ) -> None:
        """Install *chart_path* as *release_name*.

        Raises:
            sh.ErrorReturnCode: If the command exits non-zero.
        """
        ...


class Tunnel(Protocol):
    @property
    def endpoint(self) -> str:
        """``host:port`` of the local end, valid once opened."""
        ...

    @property
    def closed(self) -> bool:
        ...

    def open(self) -> None:
        ...

    def close(self) -> None:
        ...


class ClusterClient(Protocol):
    def node_ready_states(self, handle: AccessHandle) -> list[bool]:
        """Return one entry per node, True when its Ready condition is True."""
        ...

    def is_pod_available(self, handle: AccessHandle, pod_name: str) -> bool:
        ...

    def tunnel(
        self,
        handle: AccessHandle,
        resource_type: str,
        resource_name: str,
        local_port: int,
        remote_port: int,
    ) -> Tunnel:
        """Create an unopened tunnel; a local_port of 0 means pick a free one."""
        ...


class HttpGet(Protocol):
    def __call__(self, url: str) -> tuple[int, str]:
        """Return (status code, body)."""
        ...
