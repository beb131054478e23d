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

"""Exception hierarchy for harness stages."""

from __future__ import annotations


class HarnessError(RuntimeError):
    """Base class for every error raised by a harness stage."""


class MissingState(HarnessError):
    """A stage asked for persisted state that no earlier stage saved.

    Usually means a stage was skipped before any run in the same working
    directory produced its outputs.
    """

    def __init__(self, run_dir: str, key: str, reason: str = "never saved") -> None:
        self.run_dir = run_dir
        self.key = key
        super().__init__(f"No persisted state for '{key}' in {run_dir} ({reason})")


class CredentialExchangeFailed(HarnessError):
    """The cloud credential command exited non-zero."""


class ClusterNotReady(HarnessError):
    """Worker nodes did not become ready within the retry budget."""


class DeployFailed(HarnessError):
    """The package install command exited non-zero."""


class ResourceNotAvailable(HarnessError):
    """The deployed workload resource never became available."""


class TunnelOpenFailed(HarnessError):
    """A port-forward tunnel to the workload could not be established."""


class ValidationTimeout(HarnessError):
    """No acceptable HTTP response was seen within the retry budget."""


class CleanupFailed(HarnessError):
    """Tearing down run resources failed."""
