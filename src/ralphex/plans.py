"""Plan file selection for ralphex.

A plan is a markdown file, usually under docs/plans/. When no plan is given on
the command line, one is picked from the plans directory: a single plan is
selected automatically, otherwise fzf is used for interactive selection.
"""

import shutil
import subprocess
from pathlib import Path

from ralphex.logging_config import get_logger

logger = get_logger()


class PlanError(Exception):
    """Raised when no usable plan file can be determined."""

    pass


def find_plans(plans_dir: Path) -> list[Path]:
    """List plan files directly in plans_dir (completed/ is not searched)."""
    return sorted(p for p in plans_dir.glob("*.md") if p.is_file())


def select_plan_with_fzf(plans_dir: Path) -> Path:
    """Pick a plan from plans_dir.

    Raises:
        PlanError: If the directory or fzf is missing, no plans exist, or
            nothing was selected
    """
    if not plans_dir.is_dir():
        raise PlanError(f"plans directory not found: {plans_dir}")

    if shutil.which("fzf") is None:
        raise PlanError("fzf not found, please provide plan file as argument")

    plans = find_plans(plans_dir)
    if not plans:
        raise PlanError(f"no plans found in {plans_dir}")

    if len(plans) == 1:
        logger.info(f"auto-selected: {plans[0]}")
        return plans[0]

    result = subprocess.run(
        [
            "fzf",
            "--prompt=select plan: ",
            "--preview=head -50 {}",
            "--preview-window=right:60%",
        ],
        input="\n".join(str(p) for p in plans),
        stdout=subprocess.PIPE,
        text=True,
        check=False,
    )
    selected = result.stdout.strip()
    if result.returncode != 0 or not selected:
        raise PlanError("no plan selected")
    return Path(selected)


def select_plan(plan_file: Path | None, optional: bool, plans_dir: Path) -> Path | None:
    """Determine the plan for this run.

    Args:
        plan_file: Plan given on the command line, if any
        optional: True in modes that can run without a plan
        plans_dir: Directory searched when no plan was given

    Returns:
        The plan path, or None when the plan is optional and none was given

    Raises:
        PlanError: If the given plan does not exist or selection fails
    """
    if plan_file is not None:
        if not plan_file.exists():
            raise PlanError(f"plan file not found: {plan_file}")
        return plan_file

    if optional:
        return None

    return select_plan_with_fzf(plans_dir)


def prepare_plan_file(
    plan_file: Path | None, optional: bool, plans_dir: Path
) -> Path | None:
    """Select the plan and resolve it to an absolute path.

    The path is resolved once at startup so later moves (completed/) and
    directory changes by agents do not affect it.
    """
    selected = select_plan(plan_file, optional, plans_dir)
    if selected is None:
        return None
    return selected.resolve()
