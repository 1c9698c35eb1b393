"""Phase and mode definitions for the ralphex pipeline.

Phases run in a fixed order:
1. TASK_LOOP: execute the plan's tasks until the agent reports COMPLETED
2. FIRST_REVIEW: review the branch's changes until REVIEW_DONE
3. CODEX_LOOP: external review by a second agent, fixes until COMPLETED
4. SECOND_REVIEW: final review pass until REVIEW_DONE

Modes select which phases run:
- FULL: all four phases
- REVIEW: skips TASK_LOOP (reviews existing changes, no plan needed)
- CODEX_ONLY: skips TASK_LOOP and FIRST_REVIEW
"""

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Literal

from ralphex.signals import Signal


class Mode(str, Enum):
    """Run-wide selection of phases. Chosen once at startup."""

    FULL = "full"
    REVIEW = "review"
    CODEX_ONLY = "codex-only"


class Phase(IntEnum):
    """Pipeline phases, valued in execution order."""

    TASK_LOOP = 1
    FIRST_REVIEW = 2
    CODEX_LOOP = 3
    SECOND_REVIEW = 4

    @property
    def label(self) -> str:
        """Short label used in logs, e.g. "task-loop"."""
        return PHASE_METADATA[self].label

    @property
    def expected_signal(self) -> Signal:
        """Marker that ends this phase successfully."""
        return PHASE_METADATA[self].expected_signal

    @property
    def agent(self) -> Literal["claude", "codex"]:
        """Which executor binding this phase uses."""
        return PHASE_METADATA[self].agent

    @property
    def limit(self) -> Literal["task", "review", "codex"]:
        """Which iteration limit from the configuration applies."""
        return PHASE_METADATA[self].limit


@dataclass(frozen=True)
class PhaseMetadata:
    """Fixed properties of a phase."""

    label: str
    description: str
    expected_signal: Signal
    agent: Literal["claude", "codex"]
    limit: Literal["task", "review", "codex"]


PHASE_METADATA: dict[Phase, PhaseMetadata] = {
    Phase.TASK_LOOP: PhaseMetadata(
        label="task-loop",
        description="Execute plan tasks",
        expected_signal=Signal.COMPLETED,
        agent="claude",
        limit="task",
    ),
    Phase.FIRST_REVIEW: PhaseMetadata(
        label="first-review",
        description="Review changes and fix issues",
        expected_signal=Signal.REVIEW_DONE,
        agent="claude",
        limit="review",
    ),
    Phase.CODEX_LOOP: PhaseMetadata(
        label="codex-loop",
        description="External review by codex",
        expected_signal=Signal.COMPLETED,
        agent="codex",
        limit="codex",
    ),
    Phase.SECOND_REVIEW: PhaseMetadata(
        label="second-review",
        description="Final review pass",
        expected_signal=Signal.REVIEW_DONE,
        agent="claude",
        limit="review",
    ),
}


MODE_PHASES: dict[Mode, tuple[Phase, ...]] = {
    Mode.FULL: (Phase.TASK_LOOP, Phase.FIRST_REVIEW, Phase.CODEX_LOOP, Phase.SECOND_REVIEW),
    Mode.REVIEW: (Phase.FIRST_REVIEW, Phase.CODEX_LOOP, Phase.SECOND_REVIEW),
    Mode.CODEX_ONLY: (Phase.CODEX_LOOP, Phase.SECOND_REVIEW),
}


def determine_mode(review: bool = False, codex_only: bool = False) -> Mode:
    """Resolve the run mode from command-line flags.

    Codex-only takes precedence over review when both are given.
    """
    if codex_only:
        return Mode.CODEX_ONLY
    if review:
        return Mode.REVIEW
    return Mode.FULL


def phases_for_mode(mode: Mode, codex_enabled: bool = True) -> tuple[Phase, ...]:
    """Get the ordered phases a mode runs.

    Args:
        mode: Run mode
        codex_enabled: When False the CODEX_LOOP phase is dropped. Ignored in
            CODEX_ONLY mode, which always runs it.

    Returns:
        Phases in execution order
    """
    phases = MODE_PHASES[mode]
    if not codex_enabled and mode != Mode.CODEX_ONLY:
        phases = tuple(p for p in phases if p != Phase.CODEX_LOOP)
    return phases


def requires_plan(mode: Mode) -> bool:
    """Whether a plan file is mandatory for the mode."""
    return Phase.TASK_LOOP in MODE_PHASES[mode]
