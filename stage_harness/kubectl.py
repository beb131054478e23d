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

"""kubectl-backed cluster queries and port-forward tunnels."""

from __future__ import annotations

import json
import socket
import subprocess

from tenacity import RetryError, retry, retry_if_exception_type, stop_after_delay, wait_fixed

from stage_harness import console, logger
from stage_harness.config import AccessHandle
from stage_harness.constants import (
    KUBECTL_TIMEOUT_SECONDS,
    NODE_READY_CONDITION,
    TUNNEL_CLOSE_TIMEOUT_SECONDS,
    TUNNEL_CONNECT_TIMEOUT_SECONDS,
    TUNNEL_LOCALHOST,
    TUNNEL_OPEN_TIMEOUT_SECONDS,
    TUNNEL_POLL_INTERVAL_SECONDS,
)
from stage_harness.errors import TunnelOpenFailed
from stage_harness.utils import find_free_port


def kubectl_args(handle: AccessHandle, *args: str) -> list[str]:
    """Prefix *args* with the kubeconfig, context and namespace of *handle*."""
    base = ["--kubeconfig", str(handle.config_path)]
    if handle.context:
        base += ["--context", handle.context]
    if handle.namespace:
        base += ["--namespace", handle.namespace]
    return [*base, *args]


def run_kubectl(handle: AccessHandle, *args: str, timeout: float = KUBECTL_TIMEOUT_SECONDS) -> tuple[bool, str, str]:
    """Run kubectl against the cluster addressed by *handle*.

    Failure to start or a timeout is reported like a non-zero exit.

    Returns:
        Tuple of (success, stdout, stderr).
    """
    cmd = ["kubectl", *kubectl_args(handle, *args)]
    logger.debug("%s", " ".join(cmd))
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except (subprocess.SubprocessError, OSError) as exc:
        return False, "", str(exc)
    return result.returncode == 0, result.stdout, result.stderr


def node_is_ready(node: dict) -> bool:
    """True when the node's Ready condition reports status True."""
    for condition in node.get("status", {}).get("conditions", []):
        if condition.get("type") == NODE_READY_CONDITION:
            return condition.get("status") == "True"
    return False


def pod_is_available(pod: dict) -> bool:
    """True when the pod is Running and every container is started and ready."""
    status = pod.get("status", {})
    for container in status.get("containerStatuses", []):
        if not container.get("ready") or "running" not in container.get("state", {}):
            return False
    return status.get("phase") == "Running"


class KubectlTunnel:
    """``kubectl port-forward`` from a local port to a resource in the cluster.

    Nothing is started until :meth:`open`. :meth:`close` is idempotent and
    safe to call on a tunnel that was never opened.
    """

    def __init__(
        self,
        handle: AccessHandle,
        resource_type: str,
        resource_name: str,
        local_port: int,
        remote_port: int,
        open_timeout: float = TUNNEL_OPEN_TIMEOUT_SECONDS,
        poll_interval: float = TUNNEL_POLL_INTERVAL_SECONDS,
    ) -> None:
        self.handle = handle
        self.resource_type = resource_type
        self.resource_name = resource_name
        self.local_port = local_port
        self.remote_port = remote_port
        self.open_timeout = open_timeout
        self.poll_interval = poll_interval
        self._proc: subprocess.Popen | None = None
        self._closed = False

    @property
    def endpoint(self) -> str:
        return f"{TUNNEL_LOCALHOST}:{self.local_port}"

    @property
    def closed(self) -> bool:
        return self._closed

    def open(self) -> None:
        """Start port-forwarding and wait until the local port accepts connections.

        Raises:
            TunnelOpenFailed: If kubectl cannot start, exits early, or the port
                never accepts connections within ``open_timeout``.
        """
        if self._closed:
            raise TunnelOpenFailed("Tunnel already closed")
        if self.local_port == 0:
            self.local_port = find_free_port()

        target = f"{self.resource_type}/{self.resource_name}"
        cmd = ["kubectl", *kubectl_args(self.handle, "port-forward", target, f"{self.local_port}:{self.remote_port}")]
        logger.info("Opening tunnel %s -> %s:%d", self.endpoint, target, self.remote_port)
        try:
            self._proc = subprocess.Popen(
                cmd,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
        except OSError as err:
            raise TunnelOpenFailed(f"Failed to start kubectl port-forward: {err}") from err

        @retry(
            stop=stop_after_delay(self.open_timeout),
            wait=wait_fixed(self.poll_interval),
            retry=retry_if_exception_type(OSError),
        )
        def _port_accepts() -> None:
            if self._proc.poll() is not None:
                stderr = self._proc.stderr.read() if self._proc.stderr else ""
                raise TunnelOpenFailed(f"kubectl port-forward to {target} exited: {stderr.strip()[:200]}")
            with socket.create_connection((TUNNEL_LOCALHOST, self.local_port), timeout=TUNNEL_CONNECT_TIMEOUT_SECONDS):
                pass

        try:
            _port_accepts()
        except TunnelOpenFailed:
            self._terminate()
            raise
        except RetryError as err:
            self._terminate()
            raise TunnelOpenFailed(
                f"kubectl port-forward to {target} not ready after {self.open_timeout}s"
            ) from err

        console.print(f"[green]\u2705 Tunnel ready: {self.endpoint} -> {target}:{self.remote_port}[/green]")

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._proc is not None:
            self._terminate()
            logger.info("Closed tunnel %s", self.endpoint)

    def _terminate(self) -> None:
        proc = self._proc
        if proc is None:
            return
        if proc.poll() is None:
            proc.terminate()
            try:
                proc.wait(timeout=TUNNEL_CLOSE_TIMEOUT_SECONDS)
            except subprocess.TimeoutExpired:
                proc.kill()
                proc.wait()
        if proc.stderr:
            proc.stderr.close()


class KubectlClient:
    """Cluster queries through the kubectl binary."""

    def __init__(self, timeout: float = KUBECTL_TIMEOUT_SECONDS) -> None:
        self.timeout = timeout

    def node_ready_states(self, handle: AccessHandle) -> list[bool]:
        """Return the Ready state of every node.

        Raises:
            RuntimeError: If kubectl fails.
        """
        ok, stdout, stderr = run_kubectl(handle, "get", "nodes", "-o", "json", timeout=self.timeout)
        if not ok:
            raise RuntimeError(f"kubectl get nodes failed: {stderr[:200]}")
        return [node_is_ready(node) for node in json.loads(stdout).get("items", [])]

    def is_pod_available(self, handle: AccessHandle, pod_name: str) -> bool:
        ok, stdout, stderr = run_kubectl(handle, "get", "pod", pod_name, "-o", "json", timeout=self.timeout)
        if not ok:
            logger.info("Pod %s not found yet: %s", pod_name, stderr.strip()[:200])
            return False
        return pod_is_available(json.loads(stdout))

    def tunnel(
        self,
        handle: AccessHandle,
        resource_type: str,
        resource_name: str,
        local_port: int,
        remote_port: int,
    ) -> KubectlTunnel:
        return KubectlTunnel(handle, resource_type, resource_name, local_port, remote_port)
