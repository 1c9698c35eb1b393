"""Phase state machine for ralphex.

Walks the phases selected by the run mode in order:

    Start -> TASK_LOOP -> FIRST_REVIEW -> CODEX_LOOP -> SECOND_REVIEW -> Done

Each phase is handed to the iteration controller exactly once. A phase that
runs out of iterations is logged and the next phase still runs, since a review
is useful even when the work before it is unfinished. Cancellation stops the
walk; a PhaseError from the controller aborts it.
"""

from __future__ import annotations

from collections.abc import Mapping

from ralphex.config import RalphexConfig
from ralphex.iteration import IterationController, PhaseOutcome, PhaseResult
from ralphex.logging_config import get_logger
from ralphex.phases import Mode, Phase, phases_for_mode
from ralphex.ui import display_phase_header

logger = get_logger()


class PhaseStateMachine:
    """Sequences the phases of one run.

    Attributes:
        mode: Run mode, fixed for the whole run
        config: Run configuration (limits and executor bindings)
        prompts: Prompt per phase, already rendered
        controller: Iteration controller shared by all phases
        phases: Ordered phases this run will execute
    """

    def __init__(
        self,
        mode: Mode,
        config: RalphexConfig,
        prompts: Mapping[Phase, str],
        controller: IterationController,
    ) -> None:
        self.mode = mode
        self.config = config
        self.prompts = prompts
        self.controller = controller
        self.phases = phases_for_mode(mode, codex_enabled=config.codex_enabled)
        self.completed: list[Phase] = []
        self.current: Phase | None = None

    def run(self) -> list[PhaseResult]:
        """Run all phases of the mode in order.

        Returns:
            One result per phase that started. The list ends early if the run
            was cancelled.

        Raises:
            PhaseError: If a phase hits a fatal executor error
        """
        results: list[PhaseResult] = []
        skipped = [p for p in Phase if p not in self.phases]
        for phase in skipped:
            logger.debug(f"Skipping {phase.label} ({self.mode.value} mode)")

        for index, phase in enumerate(self.phases, start=1):
            result = self._run_phase(phase, index)
            results.append(result)

            if result.outcome == PhaseOutcome.CANCELLED:
                logger.warning("Run cancelled - remaining phases skipped")
                break
            if result.outcome == PhaseOutcome.INCOMPLETE:
                logger.warning(f"{phase.label} incomplete after {result.attempts} attempts")

        self.current = None
        return results

    def _run_phase(self, phase: Phase, index: int) -> PhaseResult:
        if phase in self.completed:
            raise RuntimeError(f"phase {phase.label} already completed")

        self.current = phase
        settings = self.config.phase_settings(phase)
        display_phase_header(phase, index, len(self.phases), settings.max_iterations)

        result = self.controller.run_phase(
            phase=phase,
            binding=self.config.binding_for(phase),
            prompt=self.prompts[phase],
            settings=settings,
        )
        self.completed.append(phase)
        return result
