"""Tests for the phase state machine."""

from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from ralphex.config import RalphexConfig
from ralphex.executor import CommandExecutor, ExecutorBinding, InvocationResult
from ralphex.iteration import IterationController, PhaseOutcome, PhaseResult
from ralphex.phases import Mode, Phase
from ralphex.progress import ProgressRecorder
from ralphex.runner import RunContext
from ralphex.signals import Signal
from ralphex.workflow import PhaseStateMachine

PROMPTS = {phase: f"prompt for {phase.label}" for phase in Phase}


def _config(**overrides: Any) -> RalphexConfig:
    return RalphexConfig(
        claude_command="claude-bin",
        codex_command="codex-bin",
        iteration_delay_ms=0,
        max_iterations=5,
        review_max_iterations=2,
        **overrides,
    )


def _succeeding_executor() -> MagicMock:
    """Executor that answers each binding with the marker its phase expects."""
    executor = MagicMock(spec=CommandExecutor)

    def fake_run(binding: ExecutorBinding, prompt: str, ctx: Any, on_line: Any = None) -> Any:
        if prompt == PROMPTS[Phase.TASK_LOOP] or binding.command == "codex-bin":
            signal = Signal.COMPLETED
        else:
            signal = Signal.REVIEW_DONE
        return InvocationResult(signal=signal, exit_code=0, duration=0.1)

    executor.run.side_effect = fake_run
    return executor


@pytest.fixture
def context() -> RunContext:
    """Fresh run context."""
    return RunContext(plan_file=None, branch="feature")


@pytest.fixture
def recorder(tmp_path: Path) -> Any:
    """Progress recorder writing into tmp_path."""
    rec = ProgressRecorder(tmp_path / "progress.txt", None, "feature", Mode.FULL)
    yield rec
    rec.close()


class TestPhaseOrder:
    """Tests for the order of phases per mode."""

    @pytest.mark.parametrize(
        ("mode", "expected"),
        [
            (
                Mode.FULL,
                [Phase.TASK_LOOP, Phase.FIRST_REVIEW, Phase.CODEX_LOOP, Phase.SECOND_REVIEW],
            ),
            (Mode.REVIEW, [Phase.FIRST_REVIEW, Phase.CODEX_LOOP, Phase.SECOND_REVIEW]),
            (Mode.CODEX_ONLY, [Phase.CODEX_LOOP, Phase.SECOND_REVIEW]),
        ],
    )
    def test_phases_run_in_order(
        self,
        mode: Mode,
        expected: list[Phase],
        recorder: ProgressRecorder,
        context: RunContext,
    ) -> None:
        """Test each mode runs its phases once, in pipeline order."""
        controller = IterationController(_succeeding_executor(), recorder, context)
        machine = PhaseStateMachine(mode, _config(), PROMPTS, controller)
        results = machine.run()

        assert [r.phase for r in results] == expected
        assert all(r.outcome == PhaseOutcome.SUCCESS for r in results)
        assert machine.completed == expected
        assert machine.current is None

    def test_codex_disabled_skips_codex_loop(
        self, recorder: ProgressRecorder, context: RunContext
    ) -> None:
        """Test the codex phase is dropped when codex is disabled."""
        controller = IterationController(_succeeding_executor(), recorder, context)
        machine = PhaseStateMachine(
            Mode.FULL, _config(codex_enabled=False), PROMPTS, controller
        )
        results = machine.run()

        assert Phase.CODEX_LOOP not in [r.phase for r in results]


class TestBindings:
    """Tests for which agent each phase launches."""

    def test_codex_only_never_launches_claude_for_codex_loop(
        self, recorder: ProgressRecorder, context: RunContext
    ) -> None:
        """Test the codex phase uses the codex binding and the task loop never runs."""
        executor = _succeeding_executor()
        controller = IterationController(executor, recorder, context)
        PhaseStateMachine(Mode.CODEX_ONLY, _config(), PROMPTS, controller).run()

        calls = [(c.args[0].command, c.args[1]) for c in executor.run.call_args_list]
        assert calls == [
            ("codex-bin", PROMPTS[Phase.CODEX_LOOP]),
            ("claude-bin", PROMPTS[Phase.SECOND_REVIEW]),
        ]
        assert all(prompt != PROMPTS[Phase.TASK_LOOP] for _, prompt in calls)

    def test_phase_limits_from_config(self, context: RunContext) -> None:
        """Test each phase gets its own iteration limit."""
        controller = MagicMock(spec=IterationController)
        controller.run_phase.side_effect = lambda phase, **kw: PhaseResult(
            phase, PhaseOutcome.SUCCESS, 1
        )
        config = _config(codex_max_iterations=7)
        PhaseStateMachine(Mode.FULL, config, PROMPTS, controller).run()

        limits = {
            c.kwargs["phase"]: c.kwargs["settings"].max_iterations
            for c in controller.run_phase.call_args_list
        }
        assert limits == {
            Phase.TASK_LOOP: 5,
            Phase.FIRST_REVIEW: 2,
            Phase.CODEX_LOOP: 7,
            Phase.SECOND_REVIEW: 2,
        }


class TestOutcomes:
    """Tests for how phase outcomes affect the walk."""

    def test_incomplete_phase_does_not_stop_the_run(self, context: RunContext) -> None:
        """Test the next phase still runs after an exhausted one."""
        controller = MagicMock(spec=IterationController)
        outcomes = {
            Phase.FIRST_REVIEW: PhaseOutcome.INCOMPLETE,
            Phase.CODEX_LOOP: PhaseOutcome.SUCCESS,
            Phase.SECOND_REVIEW: PhaseOutcome.SUCCESS,
        }
        controller.run_phase.side_effect = lambda phase, **kw: PhaseResult(
            phase, outcomes[phase], 2
        )
        results = PhaseStateMachine(Mode.REVIEW, _config(), PROMPTS, controller).run()

        assert [r.outcome for r in results] == [
            PhaseOutcome.INCOMPLETE,
            PhaseOutcome.SUCCESS,
            PhaseOutcome.SUCCESS,
        ]

    def test_cancellation_stops_the_walk(self, context: RunContext) -> None:
        """Test no phase starts after a cancelled one."""
        controller = MagicMock(spec=IterationController)
        controller.run_phase.side_effect = lambda phase, **kw: PhaseResult(
            phase, PhaseOutcome.CANCELLED, 1
        )
        machine = PhaseStateMachine(Mode.FULL, _config(), PROMPTS, controller)
        results = machine.run()

        assert len(results) == 1
        assert results[0].phase == Phase.TASK_LOOP
        assert controller.run_phase.call_count == 1

    def test_phase_cannot_run_twice(self, context: RunContext) -> None:
        """Test a completed phase is never re-entered."""
        controller = MagicMock(spec=IterationController)
        controller.run_phase.side_effect = lambda phase, **kw: PhaseResult(
            phase, PhaseOutcome.SUCCESS, 1
        )
        machine = PhaseStateMachine(Mode.CODEX_ONLY, _config(), PROMPTS, controller)
        machine.run()

        with pytest.raises(RuntimeError, match="already completed"):
            machine._run_phase(Phase.CODEX_LOOP, 1)
