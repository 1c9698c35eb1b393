"""Run coordinator for ralphex.

Ties one run together:
1. Check preconditions (plan file required in full mode)
2. Open the progress log
3. Drive the phase state machine to Done, cancellation or a fatal error
4. Close the progress log on every path and report the terminal status

The coordinator builds the run context and owns its cancellation token. Signal
handlers installed by the CLI only call RunCoordinator.cancel(); every blocking
point (reading agent output, waiting between iterations) polls the token.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path

from ralphex.config import RalphexConfig
from ralphex.executor import CommandExecutor
from ralphex.iteration import IterationController, PhaseError, PhaseOutcome, PhaseResult
from ralphex.logging_config import get_logger
from ralphex.phases import Mode, Phase, requires_plan
from ralphex.progress import ProgressLogError, ProgressRecorder, format_elapsed, progress_filename
from ralphex.prompts import PromptError, build_prompts
from ralphex.ui import display_run_summary
from ralphex.workflow import PhaseStateMachine

logger = get_logger()


@dataclass(frozen=True)
class RunContext:
    """Process-wide run context, read-only after construction.

    Attributes:
        plan_file: Absolute plan path, None for review-only runs without a plan
        branch: Git branch the run works on
        started_at: Run start time
        cancel_event: Cancellation token
    """

    plan_file: Path | None
    branch: str
    started_at: datetime = field(default_factory=datetime.now)
    cancel_event: threading.Event = field(default_factory=threading.Event, compare=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        """Request cancellation of the run."""
        self.cancel_event.set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to seconds, waking early on cancellation.

        Returns:
            True if the run was cancelled
        """
        if seconds <= 0:
            return self.cancelled
        return self.cancel_event.wait(seconds)


class RunStatus(str, Enum):
    """Terminal status of a run."""

    SUCCESS = "success"
    INCOMPLETE = "incomplete"
    CANCELLED = "cancelled"
    FATAL = "fatal"

    @property
    def exit_code(self) -> int:
        return _EXIT_CODES[self]

    @property
    def closing_label(self) -> str:
        """Keyword of the progress log's closing line."""
        return _CLOSING_LABELS[self]


_EXIT_CODES = {
    RunStatus.SUCCESS: 0,
    RunStatus.FATAL: 1,
    RunStatus.INCOMPLETE: 2,
    RunStatus.CANCELLED: 130,
}

_CLOSING_LABELS = {
    RunStatus.SUCCESS: "Completed",
    RunStatus.INCOMPLETE: "Completed",
    RunStatus.CANCELLED: "Cancelled",
    RunStatus.FATAL: "Failed",
}


@dataclass(frozen=True)
class RunResult:
    """What a run reports to its caller."""

    status: RunStatus
    elapsed: float
    progress_path: Path | None
    phases: tuple[PhaseResult, ...] = ()
    error: str | None = None


def aggregate_status(results: Sequence[PhaseResult], cancelled: bool = False) -> RunStatus:
    """Overall status reflecting the worst phase outcome."""
    outcomes = {r.outcome for r in results}
    if cancelled or PhaseOutcome.CANCELLED in outcomes:
        return RunStatus.CANCELLED
    if PhaseOutcome.INCOMPLETE in outcomes:
        return RunStatus.INCOMPLETE
    return RunStatus.SUCCESS


class RunCoordinator:
    """Runs one complete ralphex pipeline.

    Attributes:
        config: Run configuration
        mode: Run mode
        context: Run context, built here; holds the cancellation token
        executor: Subprocess executor used by every phase
    """

    def __init__(
        self,
        config: RalphexConfig,
        mode: Mode,
        plan_file: Path | None,
        branch: str,
        executor: CommandExecutor | None = None,
        prompts: Mapping[Phase, str] | None = None,
        progress_path: Path | None = None,
        echo_output: bool = True,
    ) -> None:
        """Initialize the coordinator.

        Args:
            config: Run configuration
            mode: Run mode
            plan_file: Absolute plan path, None for review runs without a plan
            branch: Git branch the run works on
            executor: Executor (default: CommandExecutor in the current directory)
            prompts: Pre-rendered prompts; rendered from templates when None
            progress_path: Progress log path; derived from plan and mode when None
            echo_output: Print agent output to the console
        """
        self.config = config
        self.mode = mode
        self.context = RunContext(plan_file=plan_file, branch=branch)
        self.executor = executor or CommandExecutor()
        self.prompts = prompts
        self.progress_path = progress_path or (
            config.progress_dir / progress_filename(plan_file, mode)
        )
        self.echo_output = echo_output

    def cancel(self) -> None:
        """Ask the running pipeline to stop at its next blocking point."""
        self.context.cancel()

    def run(self) -> RunResult:
        """Run the pipeline and report its terminal status.

        Fatal errors are reported in the result, not raised.
        """
        if requires_plan(self.mode) and self.context.plan_file is None:
            return self._fatal("plan file required for task execution", None)

        try:
            recorder = ProgressRecorder(
                self.progress_path,
                self.context.plan_file,
                self.context.branch,
                self.mode,
                started_at=self.context.started_at,
            )
        except ProgressLogError as e:
            return self._fatal(str(e), None)

        logger.info(f"progress log: {self.progress_path}")

        status = RunStatus.FATAL
        results: list[PhaseResult] = []
        error: str | None = None
        try:
            prompts = self.prompts or build_prompts(
                self.config, self.context.plan_file, self.progress_path
            )
            controller = IterationController(
                self.executor,
                recorder,
                self.context,
                on_line=logger.agent_output if self.echo_output else None,
            )
            machine = PhaseStateMachine(self.mode, self.config, prompts, controller)
            results = machine.run()
            status = aggregate_status(results, self.context.cancelled)
        except PhaseError as e:
            error = e.message
            logger.error(f"{e.phase.label} failed at iteration {e.iteration}: {e.message}")
        except (ProgressLogError, PromptError) as e:
            error = str(e)
            logger.error(error)
        finally:
            try:
                recorder.close(status.closing_label)
            except ProgressLogError as e:
                status, error = RunStatus.FATAL, error or str(e)
                logger.error(str(e))

        elapsed = self._elapsed()
        result = RunResult(
            status=status,
            elapsed=elapsed,
            progress_path=self.progress_path,
            phases=tuple(results),
            error=error,
        )
        self._report(result)
        return result

    def _fatal(self, message: str, progress_path: Path | None) -> RunResult:
        logger.error(message)
        return RunResult(
            status=RunStatus.FATAL,
            elapsed=self._elapsed(),
            progress_path=progress_path,
            error=message,
        )

    def _elapsed(self) -> float:
        return (datetime.now() - self.context.started_at).total_seconds()

    def _report(self, result: RunResult) -> None:
        elapsed = format_elapsed(result.elapsed)
        if result.status == RunStatus.SUCCESS:
            logger.success(f"completed in {elapsed}")
        elif result.status == RunStatus.INCOMPLETE:
            logger.warning(f"finished with incomplete phases in {elapsed}")
        elif result.status == RunStatus.CANCELLED:
            logger.warning(f"cancelled after {elapsed}")
        display_run_summary(
            result.status.value, elapsed, str(result.progress_path), result.phases
        )
