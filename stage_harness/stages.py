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

"""Skippable stages and a pipeline that always runs its deferred stages.

A stage is a named, no-argument action. Whether it runs is decided once,
before it starts, from a name-to-bool mapping handed to the runner. Only the
outermost entry point turns ``SKIP_<stage>`` environment variables into that
mapping (see :func:`skip_flags_from_env`).
"""

from __future__ import annotations

import os
from collections.abc import Callable, Iterable, Mapping
from types import TracebackType

from rich.panel import Panel

from stage_harness import console, logger
from stage_harness.constants import SKIP_ENV_PREFIX
from stage_harness.errors import CleanupFailed
from stage_harness.utils import resolve_bool_flag

StageAction = Callable[[], None]


def skip_flags_from_env(stage_names: Iterable[str], environ: Mapping[str, str] | None = None) -> dict[str, bool]:
    """Read ``SKIP_<stage>`` variables into a skip mapping.

    Args:
        stage_names: Stages to look up.
        environ: Environment to read, defaults to ``os.environ``.

    Returns:
        Mapping of stage name to whether it should be skipped.
    """
    if environ is None:
        environ = os.environ
    return {name: resolve_bool_flag(environ.get(f"{SKIP_ENV_PREFIX}{name}")) for name in stage_names}


class StageRunner:
    """Run named stages unless flagged for skipping.

    Attributes:
        executed: Names of stages whose action was invoked, in order.
        skipped: Names of stages that were skipped, in order.
    """

    def __init__(self, skip_flags: Mapping[str, bool] | None = None) -> None:
        self._skip_flags = dict(skip_flags or {})
        self.executed: list[str] = []
        self.skipped: list[str] = []

    def should_skip(self, name: str) -> bool:
        return bool(self._skip_flags.get(name, False))

    def run_stage(self, name: str, action: StageAction) -> None:
        """Run *action* unless *name* is flagged; its exceptions propagate unchanged."""
        if self.should_skip(name):
            console.print(f"[yellow]\u2139\ufe0f  {SKIP_ENV_PREFIX}{name} is set, skipping stage '{name}'[/yellow]")
            self.skipped.append(name)
            return

        console.print(Panel.fit(f"Stage: {name}", style="bold blue"))
        logger.info("Running stage '%s'", name)
        self.executed.append(name)
        action()
        console.print(f"[green]\u2705 Stage '{name}' complete[/green]")


class StagePipeline:
    """Context manager sequencing stages with guaranteed deferred stages.

    Deferred stages run on every exit path, most recently deferred first, and
    still go through the runner so they can be skipped. If the body failed its
    error wins and deferred failures are logged; otherwise the first deferred
    failure is raised as :class:`CleanupFailed`.
    """

    def __init__(self, runner: StageRunner) -> None:
        self.runner = runner
        self._deferred: list[tuple[str, StageAction]] = []

    def run(self, name: str, action: StageAction) -> None:
        self.runner.run_stage(name, action)

    def defer(self, name: str, action: StageAction) -> None:
        logger.debug("Deferring stage '%s'", name)
        self._deferred.append((name, action))

    def __enter__(self) -> StagePipeline:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        deferred_error = self._run_deferred()
        if deferred_error is None:
            return False
        if exc is not None:
            logger.error("Deferred stage failed after pipeline error: %s", deferred_error, exc_info=deferred_error)
            return False
        if isinstance(deferred_error, CleanupFailed):
            raise deferred_error
        raise CleanupFailed(f"Deferred stage failed: {deferred_error}") from deferred_error

    def _run_deferred(self) -> Exception | None:
        first_error: Exception | None = None
        while self._deferred:
            name, action = self._deferred.pop()
            try:
                self.runner.run_stage(name, action)
            except Exception as err:
                console.print(f"[red]\u274c Deferred stage '{name}' failed: {err}[/red]")
                if first_error is None:
                    first_error = err
        return first_error
