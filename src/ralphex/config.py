"""Configuration management for ralphex.

This module handles environment variables, defaults, and configuration validation.
All configuration is immutable after creation; CLI flags produce a new instance
through with_overrides().
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

from ralphex.executor import ExecutorBinding
from ralphex.phases import Phase

DEFAULT_CLAUDE_ARGS: tuple[str, ...] = ("--dangerously-skip-permissions", "--print")
DEFAULT_CODEX_ARGS: tuple[str, ...] = ("exec", "--full-auto", "-")

_TRUE_VALUES = ("true", "1", "yes")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in _TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    value = _env_optional_int(name)
    return default if value is None else value


def _env_optional_int(name: str) -> int | None:
    value = os.getenv(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {value!r}") from e


def _env_args(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None:
        return default
    return tuple(shlex.split(value))


@dataclass(frozen=True)
class PhaseSettings:
    """Limits applied to one phase by the iteration controller."""

    max_iterations: int
    retry_count: int
    delay_ms: int


@dataclass(frozen=True)
class RalphexConfig:
    """Configuration for a ralphex run.

    Loaded once at startup and never mutated.
    """

    # Iteration limits
    max_iterations: int = 50  # task loop
    review_max_iterations: int = 3  # each review phase
    codex_max_iterations: int | None = None  # None = derived from max_iterations
    task_retry_count: int = 1  # consecutive FAILED signals tolerated per phase
    iteration_delay_ms: int = 2000

    # Agent commands
    claude_command: str = "claude"
    claude_args: tuple[str, ...] = DEFAULT_CLAUDE_ARGS
    codex_command: str = "codex"
    codex_args: tuple[str, ...] = DEFAULT_CODEX_ARGS
    codex_enabled: bool = True

    # Locations
    plans_dir: Path = Path("docs/plans")
    prompts_dir: Path | None = None
    progress_dir: Path = Path(".")

    @classmethod
    def from_environment(cls) -> RalphexConfig:
        """Load configuration from RALPHEX_* environment variables with defaults.

        Returns:
            Immutable RalphexConfig instance.

        Raises:
            ValueError: If a numeric variable is not an integer
        """
        prompts_dir_env = os.getenv("RALPHEX_PROMPTS_DIR")
        prompts_dir = (
            Path(prompts_dir_env)
            if prompts_dir_env
            else Path.home() / ".config" / "ralphex" / "prompts"
        )

        return cls(
            max_iterations=_env_int("RALPHEX_MAX_ITERATIONS", 50),
            review_max_iterations=_env_int("RALPHEX_REVIEW_MAX_ITERATIONS", 3),
            codex_max_iterations=_env_optional_int("RALPHEX_CODEX_MAX_ITERATIONS"),
            task_retry_count=_env_int("RALPHEX_TASK_RETRY_COUNT", 1),
            iteration_delay_ms=_env_int("RALPHEX_ITERATION_DELAY_MS", 2000),
            claude_command=os.getenv("RALPHEX_CLAUDE_COMMAND", "claude"),
            claude_args=_env_args("RALPHEX_CLAUDE_ARGS", DEFAULT_CLAUDE_ARGS),
            codex_command=os.getenv("RALPHEX_CODEX_COMMAND", "codex"),
            codex_args=_env_args("RALPHEX_CODEX_ARGS", DEFAULT_CODEX_ARGS),
            codex_enabled=_env_bool("RALPHEX_CODEX_ENABLED", True),
            plans_dir=Path(os.getenv("RALPHEX_PLANS_DIR", "docs/plans")),
            prompts_dir=prompts_dir,
            progress_dir=Path(os.getenv("RALPHEX_PROGRESS_DIR", ".")),
        )

    def with_overrides(self, **overrides: Any) -> RalphexConfig:
        """Return a copy with the given non-None fields replaced."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **changes) if changes else self

    @property
    def effective_codex_max_iterations(self) -> int:
        """Codex loop limit; defaults to a fifth of the task limit, at least 3."""
        if self.codex_max_iterations is not None:
            return self.codex_max_iterations
        return max(3, self.max_iterations // 5)

    def phase_settings(self, phase: Phase) -> PhaseSettings:
        """Get the iteration limits for a phase."""
        if phase.limit == "task":
            max_iterations = self.max_iterations
        elif phase.limit == "codex":
            max_iterations = self.effective_codex_max_iterations
        else:
            max_iterations = self.review_max_iterations
        return PhaseSettings(
            max_iterations=max_iterations,
            retry_count=self.task_retry_count,
            delay_ms=self.iteration_delay_ms,
        )

    def binding_for(self, phase: Phase) -> ExecutorBinding:
        """Get the executor binding a phase launches."""
        if phase.agent == "codex":
            return ExecutorBinding(command=self.codex_command, args=self.codex_args)
        return ExecutorBinding(command=self.claude_command, args=self.claude_args)

    def required_commands(self, phases: tuple[Phase, ...]) -> list[str]:
        """Commands that must be on PATH for the given phases."""
        commands: list[str] = []
        for phase in phases:
            command = self.binding_for(phase).command
            if command not in commands:
                commands.append(command)
        return commands

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            ValueError: If any configuration value is invalid
        """
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be > 0, got {self.max_iterations}")

        if self.review_max_iterations <= 0:
            raise ValueError(
                f"review_max_iterations must be > 0, got {self.review_max_iterations}"
            )

        if self.codex_max_iterations is not None and self.codex_max_iterations <= 0:
            raise ValueError(
                f"codex_max_iterations must be > 0, got {self.codex_max_iterations}"
            )

        if self.task_retry_count < 0:
            raise ValueError(f"task_retry_count must be >= 0, got {self.task_retry_count}")

        if self.iteration_delay_ms < 0:
            raise ValueError(
                f"iteration_delay_ms must be >= 0, got {self.iteration_delay_ms}"
            )

