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

"""Worker node readiness polling.

Worker nodes join some time after the apply finishes. Polls until every
node reports Ready.
"""

from __future__ import annotations

from tenacity import RetryError, retry, retry_if_result, stop_after_attempt, wait_fixed

from stage_harness import console, logger
from stage_harness.config import AccessHandle
from stage_harness.errors import ClusterNotReady
from stage_harness.interfaces import ClusterClient


class ReadinessPoller:
    """Poll node status until every worker reports Ready.

    Args:
        client: Cluster client used for node queries.
        retries: Maximum number of polls.
        sleep_seconds: Fixed delay between polls.
        expected_nodes: Minimum node count, or None to accept any non-empty set.
    """

    def __init__(
        self,
        client: ClusterClient,
        retries: int,
        sleep_seconds: float,
        expected_nodes: int | None = None,
    ) -> None:
        self.client = client
        self.retries = retries
        self.sleep_seconds = sleep_seconds
        self.expected_nodes = expected_nodes

    def workers_ready(self, states: list[bool]) -> bool:
        if not states:
            return False
        if self.expected_nodes is not None and len(states) < self.expected_nodes:
            return False
        return all(states)

    def wait_for_workers_ready(self, handle: AccessHandle) -> list[bool]:
        """Block until the readiness predicate holds.

        Query errors count as a not-ready poll.

        Returns:
            The node states observed on the successful poll.

        Raises:
            ClusterNotReady: If the retry budget is exhausted.
        """
        console.print("[yellow]\u2139\ufe0f  Waiting for worker nodes to be ready...[/yellow]")
        last_states: list[bool] = []

        @retry(
            stop=stop_after_attempt(self.retries),
            wait=wait_fixed(self.sleep_seconds),
            retry=retry_if_result(lambda ready: not ready),
        )
        def _poll() -> bool:
            nonlocal last_states
            try:
                last_states = self.client.node_ready_states(handle)
            except (RuntimeError, OSError, ValueError) as err:
                logger.info("Node query failed: %s", err)
                return False
            logger.info("Nodes ready: %d/%d", sum(last_states), len(last_states))
            return self.workers_ready(last_states)

        try:
            _poll()
        except RetryError as err:
            raise ClusterNotReady(
                f"Worker nodes not ready after {self.retries} attempts "
                f"({sum(last_states)}/{len(last_states)} ready on last poll)"
            ) from err

        console.print(f"[green]\u2705 All {len(last_states)} nodes are ready[/green]")
        return last_states
