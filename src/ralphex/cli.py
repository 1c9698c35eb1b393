"""CLI entry point for ralphex.

This module provides the Click-based command-line interface: it resolves the
mode and plan, prepares the git branch, installs the interrupt handlers and
hands the run to the RunCoordinator.
"""

import logging
import signal
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import click

from ralphex.config import RalphexConfig
from ralphex.executor import ExecutorError, check_dependencies
from ralphex.git_utils import (
    PROGRESS_GITIGNORE_PATTERN,
    GitError,
    create_branch_if_needed,
    ensure_gitignore,
    get_current_branch,
    move_plan_to_completed,
)
from ralphex.logging_config import get_logger, set_log_level
from ralphex.phases import Mode, determine_mode, phases_for_mode, requires_plan
from ralphex.plans import PlanError, prepare_plan_file
from ralphex.runner import RunCoordinator, RunStatus

logger = get_logger()


@click.command()
@click.argument(
    "plan_file",
    required=False,
    type=click.Path(dir_okay=False, path_type=Path),
)
@click.option(
    "-m",
    "--max-iterations",
    type=int,
    envvar="RALPHEX_MAX_ITERATIONS",
    help="Maximum task iterations (env: RALPHEX_MAX_ITERATIONS, default: 50)",
)
@click.option(
    "-r",
    "--review",
    is_flag=True,
    help="Skip task execution, run the full review pipeline",
)
@click.option(
    "-c",
    "--codex-only",
    is_flag=True,
    help="Skip tasks and first review, run only the codex loop and final review",
)
@click.option(
    "-d",
    "--debug",
    is_flag=True,
    envvar="RALPHEX_DEBUG",
    help="Enable debug logging (env: RALPHEX_DEBUG)",
)
@click.version_option(version="0.1.0", prog_name="ralphex")
@click.pass_context
def main(
    ctx: click.Context,
    plan_file: Path | None,
    max_iterations: int | None,
    review: bool,
    codex_only: bool,
    debug: bool,
) -> None:
    """ralphex: autonomous plan execution with Claude Code.

    PLAN_FILE is a markdown plan. When omitted, a plan is picked from
    docs/plans (with fzf when there is more than one). Review modes can run
    without a plan.

    \b
    Examples:
      ralphex docs/plans/2026-01-15-add-auth.md
      ralphex                           # pick a plan from docs/plans
      ralphex --review                  # review the current branch
      ralphex --codex-only              # codex review and final pass only
      ralphex -m 20 docs/plans/fix.md

    \b
    Exit codes:
      0    all phases finished
      1    fatal error
      2    a phase ran out of iterations
      130  interrupted
    """
    if debug:
        set_log_level(logging.DEBUG)

    mode = determine_mode(review=review, codex_only=codex_only)

    try:
        config = _build_config(max_iterations=max_iterations, mode=mode)
        status = _execute_run(config, mode, plan_file)
    except (ValueError, ExecutorError, PlanError, GitError) as e:
        message = e.message if isinstance(e, ExecutorError) else str(e)
        click.echo(f"error: {message}", err=True)
        ctx.exit(RunStatus.FATAL.exit_code)
    except KeyboardInterrupt:
        # Ctrl-C before the run's own handlers are installed (fzf, git)
        click.echo("error: interrupted", err=True)
        ctx.exit(RunStatus.CANCELLED.exit_code)

    ctx.exit(status.exit_code)


def _build_config(max_iterations: int | None, mode: Mode) -> RalphexConfig:
    """Build configuration with CLI overrides.

    Raises:
        ValueError: If a value is invalid
    """
    config = RalphexConfig.from_environment().with_overrides(max_iterations=max_iterations)
    if mode == Mode.CODEX_ONLY and not config.codex_enabled:
        logger.debug("codex-only mode requested, enabling codex")
        config = config.with_overrides(codex_enabled=True)
    config.validate()
    return config


def _execute_run(config: RalphexConfig, mode: Mode, plan_arg: Path | None) -> RunStatus:
    """Prepare the repository and run the pipeline.

    Args:
        config: Validated configuration
        mode: Run mode
        plan_arg: Plan path from the command line, if any

    Returns:
        Terminal status of the run

    Raises:
        ExecutorError: If a required command is missing
        PlanError: If no plan can be selected
        GitError: If branch or .gitignore handling fails
    """
    phases = phases_for_mode(mode, codex_enabled=config.codex_enabled)
    check_dependencies([*config.required_commands(phases), "git"])

    plan_file = prepare_plan_file(plan_arg, not requires_plan(mode), config.plans_dir)
    if plan_file is None and requires_plan(mode):
        raise PlanError("plan file required for task execution")

    if plan_file is not None:
        created = create_branch_if_needed(plan_file)
        if created:
            logger.info(f"switched to branch: {created}")

    if ensure_gitignore():
        logger.info(f"added {PROGRESS_GITIGNORE_PATTERN} to .gitignore")

    branch = get_current_branch() or "(detached)"
    coordinator = RunCoordinator(config, mode, plan_file, branch)

    logger.summary_panel(
        "Starting ralphex",
        {
            "Plan": str(plan_file) if plan_file else "(no plan)",
            "Branch": branch,
            "Mode": mode.value,
            "Max iterations": config.max_iterations,
        },
        style="cyan",
    )

    with _cancel_on_signals(coordinator):
        result = coordinator.run()

    if result.status == RunStatus.SUCCESS and mode == Mode.FULL and plan_file is not None:
        try:
            moved = move_plan_to_completed(plan_file)
            logger.info(f"plan moved to {moved}")
        except GitError as e:
            logger.warning(f"could not move plan to completed: {e}")

    return result.status


@contextmanager
def _cancel_on_signals(coordinator: RunCoordinator) -> Iterator[None]:
    """Route SIGINT/SIGTERM to the coordinator while it runs.

    The handlers only request cancellation; the coordinator notices it at its
    next blocking point and shuts down cleanly.
    """

    def _handler(signum: int, frame: object) -> None:
        if not coordinator.context.cancelled:
            logger.warning(f"received {signal.Signals(signum).name}, stopping...")
        coordinator.cancel()

    previous = {
        sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)


if __name__ == "__main__":
    main()
