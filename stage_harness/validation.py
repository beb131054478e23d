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

"""Reach the deployed workload through a tunnel and check its HTTP response."""

from __future__ import annotations

import requests
from rich.panel import Panel
from tenacity import RetryError, retry, retry_if_result, stop_after_attempt, wait_fixed

from stage_harness import console, logger
from stage_harness.config import AccessHandle
from stage_harness.constants import (
    DEFAULT_REMOTE_PORT,
    HTTP_OK,
    HTTP_REQUEST_TIMEOUT_SECONDS,
    RESOURCE_TYPE_POD,
)
from stage_harness.errors import ResourceNotAvailable, TunnelOpenFailed, ValidationTimeout
from stage_harness.interfaces import ClusterClient, HttpGet, Tunnel


def response_matches(status: int, body: str, expected: str) -> bool:
    """Accept only HTTP 200 whose body contains *expected*."""
    return status == HTTP_OK and expected in body


def requests_get(url: str, timeout: float = HTTP_REQUEST_TIMEOUT_SECONDS) -> tuple[int, str]:
    """Plain GET returning (status code, body text)."""
    response = requests.get(url, timeout=timeout)
    return response.status_code, response.text


class NetworkValidator:
    """Validate a workload over a short-lived tunnel.

    Args:
        client: Cluster client used for availability checks and tunnels.
        http_get: Callable performing one GET.
        retries: Maximum polls for availability and for the HTTP check.
        sleep_seconds: Fixed delay between polls.
        remote_port: Port on the workload the tunnel forwards to.
    """

    def __init__(
        self,
        client: ClusterClient,
        http_get: HttpGet,
        retries: int,
        sleep_seconds: float,
        remote_port: int = DEFAULT_REMOTE_PORT,
    ) -> None:
        self.client = client
        self.http_get = http_get
        self.retries = retries
        self.sleep_seconds = sleep_seconds
        self.remote_port = remote_port

    def verify(self, handle: AccessHandle, resource_name: str, expected_substring: str) -> None:
        """Wait for the pod, open a tunnel to it and poll until the response matches.

        The tunnel is closed exactly once before returning, whichever step fails.

        Args:
            handle: Cluster access.
            resource_name: Pod to validate.
            expected_substring: Marker the response body must contain.

        Raises:
            ResourceNotAvailable: If the pod never becomes available.
            TunnelOpenFailed: If the tunnel cannot be opened.
            ValidationTimeout: If no matching response is seen in time.
        """
        console.print(Panel.fit(f"Validating {RESOURCE_TYPE_POD}/{resource_name}", style="bold blue"))
        tunnel = self.client.tunnel(handle, RESOURCE_TYPE_POD, resource_name, 0, self.remote_port)
        try:
            self._wait_until_available(handle, resource_name)
            self._open(tunnel)
            self._poll_http(tunnel, expected_substring)
        finally:
            tunnel.close()

    def _wait_until_available(self, handle: AccessHandle, resource_name: str) -> None:
        @retry(
            stop=stop_after_attempt(self.retries),
            wait=wait_fixed(self.sleep_seconds),
            retry=retry_if_result(lambda available: not available),
        )
        def _poll() -> bool:
            available = self.client.is_pod_available(handle, resource_name)
            logger.info("Pod %s available: %s", resource_name, available)
            return available

        try:
            _poll()
        except RetryError as err:
            raise ResourceNotAvailable(
                f"Pod '{resource_name}' not available after {self.retries} attempts"
            ) from err
        console.print(f"[green]\u2705 Pod '{resource_name}' is available[/green]")

    @staticmethod
    def _open(tunnel: Tunnel) -> None:
        try:
            tunnel.open()
        except TunnelOpenFailed:
            raise
        except (RuntimeError, OSError) as err:
            raise TunnelOpenFailed(f"Failed to open tunnel: {err}") from err

    def _poll_http(self, tunnel: Tunnel, expected: str) -> None:
        url = f"http://{tunnel.endpoint}"
        last_outcome = "no attempt made"

        @retry(
            stop=stop_after_attempt(self.retries),
            wait=wait_fixed(self.sleep_seconds),
            retry=retry_if_result(lambda matched: not matched),
        )
        def _attempt() -> bool:
            nonlocal last_outcome
            try:
                status, body = self.http_get(url)
            except (requests.RequestException, OSError) as err:
                last_outcome = f"request error: {err}"
                logger.info("GET %s failed: %s", url, err)
                return False
            last_outcome = f"status {status}, body {body[:100]!r}"
            logger.info("GET %s -> %s", url, status)
            return response_matches(status, body, expected)

        try:
            _attempt()
        except RetryError as err:
            raise ValidationTimeout(
                f"No response from {url} containing {expected!r} after {self.retries} attempts ({last_outcome})"
            ) from err
        console.print(f"[green]\u2705 {url} returned {HTTP_OK} with {expected!r}[/green]")
