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

"""stage-harness - run the staged GKE workload end-to-end test.

Every stage can be skipped by exporting SKIP_<stage>=true, which lets a
developer provision once and iterate on later stages in new processes.

Stages, in order:
    copy_template, create_options, cleanup (deferred, runs last),
    provision, configure_access, wait_for_workers, deploy_and_validate

Examples:
    # Full run
    stage-harness run

    # Keep the cluster around for another iteration
    SKIP_cleanup=true stage-harness run

    # Re-run only the workload against the cluster kept above
    SKIP_copy_template=true SKIP_create_options=true SKIP_provision=true \\
        SKIP_configure_access=true SKIP_cleanup=true stage-harness run

    # Inspect or reset persisted stage state
    stage-harness state
    stage-harness clean-state
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import typer

from stage_harness import console, store
from stage_harness.config import HarnessSettings
from stage_harness.constants import SKIP_ENV_PREFIX, STAGE_NAMES
from stage_harness.orchestrator import GkeWorkloadPipeline, HarnessTools, check_prerequisites
from stage_harness.stages import StageRunner, skip_flags_from_env

app = typer.Typer(
    help="Staged, resumable GKE workload end-to-end test.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


def _settings(work_dir: Path | None) -> HarnessSettings:
    settings = HarnessSettings.from_env()
    if work_dir is None:
        return settings
    return HarnessSettings(
        run=settings.run.model_copy(update={"work_dir": work_dir}),
        readiness=settings.readiness,
        workload=settings.workload,
    )


@app.command("run")
def run(
    work_dir: Path | None = typer.Option(None, "--work-dir", help="Directory holding persisted stage state"),
    skip_prereq_check: bool = typer.Option(False, "--skip-prereq-check", help="Do not check for CLI tools"),
) -> None:
    """Run every stage not disabled through a SKIP_<stage> variable."""
    settings = _settings(work_dir)
    runner = StageRunner(skip_flags_from_env(STAGE_NAMES))
    try:
        if not skip_prereq_check:
            check_prerequisites(runner)
        pipeline = GkeWorkloadPipeline(settings, HarnessTools.real(helm_env=settings.workload.helm_env), runner)
        pipeline.run()
    except Exception as err:
        console.print(f"[red]\u274c {err}[/red]")
        sys.exit(1)

    console.print(f"[green]\u2705 Ran: {', '.join(runner.executed) or 'nothing'}[/green]")
    if runner.skipped:
        console.print(f"[yellow]Skipped ({SKIP_ENV_PREFIX}*): {', '.join(runner.skipped)}[/yellow]")


@app.command("state")
def state(
    work_dir: Path | None = typer.Option(None, "--work-dir", help="Directory holding persisted stage state"),
) -> None:
    """List the state keys persisted for a run."""
    settings = _settings(work_dir)
    keys = store.saved_keys(settings.run.work_dir)
    if not keys:
        console.print(f"[yellow]No persisted state in {settings.run.work_dir}[/yellow]")
        return
    for key in keys:
        typer.echo(key)


@app.command("clean-state")
def clean_state(
    work_dir: Path | None = typer.Option(None, "--work-dir", help="Directory holding persisted stage state"),
) -> None:
    """Remove the persisted stage state of a run. Cloud resources are left alone."""
    settings = _settings(work_dir)
    store.clear(settings.run.work_dir)
    console.print(f"[green]\u2705 Cleared persisted state in {settings.run.work_dir}[/green]")


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
