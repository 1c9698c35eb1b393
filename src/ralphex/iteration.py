"""Iteration controller: the bounded retry loop around a phase's agent invocations.

For each phase the controller keeps invoking the agent until one of:
- the agent prints the phase's expected marker (success)
- the phase's iteration limit is used up (incomplete, the run goes on)
- the agent reports FAILED more often in a row than the retry budget allows
  (incomplete, the run goes on)
- the run is cancelled

Counting rules:
- every invocation is an attempt, and attempts never exceed max_iterations
- a FAILED marker is retried while the retry budget lasts; a FAILED with no
  retry left ends the phase right away
- any other outcome (UNRESOLVED, an unexpected marker) starts the next
  iteration and restores the full retry budget
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from ralphex.executor import CommandExecutor, ExecutorBinding, ExecutorError, InvocationResult
from ralphex.logging_config import get_logger
from ralphex.phases import Phase
from ralphex.progress import ProgressRecorder, format_elapsed
from ralphex.signals import Signal

if TYPE_CHECKING:
    from ralphex.config import PhaseSettings
    from ralphex.runner import RunContext

logger = get_logger()

CANCELLED_STATUS = "CANCELLED"


class PhaseError(Exception):
    """Fatal error inside a phase; aborts the whole run.

    Attributes:
        message: Human-readable error message
        phase: Phase that was running
        iteration: Attempt number that failed (1-based)
    """

    def __init__(self, message: str, phase: Phase, iteration: int) -> None:
        super().__init__(message)
        self.message = message
        self.phase = phase
        self.iteration = iteration


class PhaseOutcome(str, Enum):
    """How a phase ended."""

    SUCCESS = "success"
    INCOMPLETE = "incomplete"  # iteration limit reached or too many FAILED signals
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PhaseResult:
    """Result of running one phase."""

    phase: Phase
    outcome: PhaseOutcome
    attempts: int
    last_signal: Signal | None = None


@dataclass
class IterationState:
    """Counters for one phase. Created fresh for every phase."""

    max_iterations: int
    retry_budget: int
    attempts: int = 0
    retries_used: int = 0  # consecutive FAILED signals retried so far
    gave_up: bool = False  # FAILED arrived with no retry left

    @property
    def retries_remaining(self) -> int:
        return self.retry_budget - self.retries_used

    @property
    def exhausted(self) -> bool:
        """True once no further invocation is allowed."""
        return self.gave_up or self.attempts >= self.max_iterations

    def record_attempt(self, signal: Signal, expected: Signal) -> bool:
        """Count one invocation.

        Args:
            signal: Signal the invocation produced
            expected: Marker that completes the phase

        Returns:
            True if the next attempt is a retry after FAILED
        """
        self.attempts += 1
        if signal == Signal.FAILED:
            if self.retries_remaining > 0:
                self.retries_used += 1
                return True
            self.gave_up = True
            return False
        self.retries_used = 0
        return False


class IterationController:
    """Drives one phase at a time through the executor.

    Attributes:
        executor: Runs individual invocations
        recorder: Progress log, one entry per attempt
        context: Run context (cancellation token)
    """

    def __init__(
        self,
        executor: CommandExecutor,
        recorder: ProgressRecorder,
        context: RunContext,
        on_line: Callable[[str], None] | None = None,
    ) -> None:
        self.executor = executor
        self.recorder = recorder
        self.context = context
        self.on_line = on_line

    def run_phase(
        self,
        phase: Phase,
        binding: ExecutorBinding,
        prompt: str,
        settings: PhaseSettings,
    ) -> PhaseResult:
        """Run a phase until success, exhaustion or cancellation.

        Raises:
            PhaseError: If the agent command cannot be run
        """
        state = IterationState(
            max_iterations=settings.max_iterations, retry_budget=settings.retry_count
        )
        expected = phase.expected_signal
        last_signal: Signal | None = None
        retrying = False

        while not state.exhausted:
            if self.context.cancelled:
                return PhaseResult(phase, PhaseOutcome.CANCELLED, state.attempts, last_signal)

            attempt = state.attempts + 1
            suffix = f" (retry {state.retries_used}/{state.retry_budget})" if retrying else ""
            logger.phase(phase.label, f"iteration {attempt}/{state.max_iterations}{suffix}")

            try:
                result = self.executor.run(binding, prompt, self.context, on_line=self._emit)
            except ExecutorError as e:
                raise PhaseError(
                    f"{phase.label} iteration {attempt}: {e.message}", phase, attempt
                ) from e

            last_signal = result.signal
            if result.cancelled:
                self._record(phase, attempt, state, CANCELLED_STATUS, result, retrying)
                logger.warning(f"{phase.label} cancelled during iteration {attempt}")
                state.attempts += 1
                return PhaseResult(phase, PhaseOutcome.CANCELLED, state.attempts, last_signal)

            self._record(phase, attempt, state, result.signal.value, result, retrying)
            retrying = state.record_attempt(result.signal, expected)

            if result.signal == expected:
                logger.success(f"{phase.label} finished: {result.signal.value}")
                return PhaseResult(phase, PhaseOutcome.SUCCESS, state.attempts, last_signal)

            self._report_miss(phase, result, expected)
            if state.exhausted:
                break

            delay = settings.delay_ms / 1000.0
            if delay > 0:
                logger.debug(f"Waiting {delay:.1f}s before next iteration")
            if self.context.wait(delay):
                return PhaseResult(phase, PhaseOutcome.CANCELLED, state.attempts, last_signal)

        if state.gave_up:
            logger.warning(
                f"{phase.label} gave up after {state.retries_used + 1} consecutive FAILED signals"
            )
            return PhaseResult(phase, PhaseOutcome.INCOMPLETE, state.attempts, last_signal)

        logger.warning(
            f"{phase.label} reached max iterations ({state.max_iterations}) "
            f"without {expected.value}"
        )
        return PhaseResult(phase, PhaseOutcome.INCOMPLETE, state.attempts, last_signal)

    def _emit(self, line: str) -> None:
        self.recorder.raw(line)
        if self.on_line is not None:
            self.on_line(line)

    def _record(
        self,
        phase: Phase,
        attempt: int,
        state: IterationState,
        status: str,
        result: InvocationResult,
        retrying: bool,
    ) -> None:
        annotation = f"exit {result.exit_code}, {format_elapsed(result.duration)}"
        if retrying:
            annotation += f", retry {state.retries_used}/{state.retry_budget}"
        self.recorder.record(phase, attempt, state.max_iterations, status, annotation)

    @staticmethod
    def _report_miss(phase: Phase, result: InvocationResult, expected: Signal) -> None:
        if result.signal == Signal.FAILED:
            logger.warning(f"{phase.label}: agent reported FAILED")
        elif result.signal == Signal.UNRESOLVED:
            logger.warning(
                f"{phase.label}: agent exited with code {result.exit_code} "
                f"without a completion marker"
            )
        else:
            logger.warning(
                f"{phase.label}: unexpected {result.signal.value}, waiting for {expected.value}"
            )
