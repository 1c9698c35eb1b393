"""Prompt templates for each ralphex phase.

Every phase has a built-in template. A file named after the phase label in the
prompts directory (e.g. ~/.config/ralphex/prompts/task-loop.txt) replaces it.

Templates use {{NAME}} placeholders:
- {{PLAN_FILE}}: absolute plan path, or a note that there is no plan
- {{PROGRESS_FILE}}: progress log path
- {{GOAL}}: one-line description of what the run is for

Unknown placeholders are left untouched.
"""

import re
from collections.abc import Mapping
from pathlib import Path

from ralphex.config import RalphexConfig
from ralphex.phases import Phase

PLACEHOLDER_PATTERN = re.compile(r"\{\{([A-Z_]+)\}\}")


class PromptError(Exception):
    """Raised when a prompt override cannot be read."""

    pass


TASK_LOOP_PROMPT = """Read the plan at {{PLAN_FILE}}.
Goal: {{GOAL}}

Find the first task that is not marked [x]. Implement it completely, run the
project's tests and linters, fix what fails, mark the task [x] in the plan and
commit the change. Work on ONE task per invocation.

Progress of earlier iterations is logged in {{PROGRESS_FILE}}.

When you are done, print one marker word on a line by itself: COMPLETED if
every task in the plan is marked [x], FAILED if you hit an error you cannot
resolve.
If tasks remain after this one, just stop without printing a marker.
"""

REVIEW_PROMPT = """Review all changes on the current branch against the default branch.
Goal: {{GOAL}}
Plan (if any): {{PLAN_FILE}}

Look for bugs, missing tests, error handling gaps and deviations from the
project's conventions. Fix every real issue you find, run the tests and commit
the fixes.

When the review finds nothing left to fix, print the word REVIEW_DONE on a
line by itself.
If you fixed issues, stop without a marker so another pass runs.
If you cannot continue, print FAILED on a line by itself.
"""

CODEX_PROMPT = """Review the changes on the current branch against the default branch.
Goal: {{GOAL}}
Plan (if any): {{PLAN_FILE}}

Report and fix correctness bugs, security problems and missing error handling.
Ignore style-only issues. Run the tests after each fix.

When there is nothing left to fix, print the word COMPLETED on a line by itself.
If you cannot continue, print FAILED on a line by itself.
"""

DEFAULT_TEMPLATES: dict[Phase, str] = {
    Phase.TASK_LOOP: TASK_LOOP_PROMPT,
    Phase.FIRST_REVIEW: REVIEW_PROMPT,
    Phase.CODEX_LOOP: CODEX_PROMPT,
    Phase.SECOND_REVIEW: REVIEW_PROMPT,
}


def render_prompt(template: str, variables: Mapping[str, str]) -> str:
    """Substitute {{NAME}} placeholders.

    Args:
        template: Template text
        variables: Values keyed by placeholder name

    Returns:
        Rendered prompt
    """

    def _replace(match: re.Match[str]) -> str:
        return variables.get(match.group(1), match.group(0))

    return PLACEHOLDER_PATTERN.sub(_replace, template)


def load_template(phase: Phase, prompts_dir: Path | None) -> str:
    """Get the template for a phase, preferring an override file.

    Raises:
        PromptError: If an override exists but cannot be read
    """
    if prompts_dir is not None:
        override = prompts_dir / f"{phase.label}.txt"
        if override.is_file():
            try:
                return override.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                raise PromptError(f"failed to read prompt {override}: {e}") from e
    return DEFAULT_TEMPLATES[phase]


def build_prompts(
    config: RalphexConfig,
    plan_file: Path | None,
    progress_path: Path,
) -> dict[Phase, str]:
    """Render the prompt for every phase.

    Args:
        config: Run configuration (for the prompts directory)
        plan_file: Plan path, None in review-only runs
        progress_path: Progress log path

    Returns:
        Rendered prompt per phase
    """
    if plan_file is not None:
        goal = f"implement the plan in {plan_file.name}"
        plan_value = str(plan_file)
    else:
        goal = "review and fix the existing changes on this branch"
        plan_value = "(no plan - review the branch changes)"

    variables = {
        "PLAN_FILE": plan_value,
        "PROGRESS_FILE": str(progress_path),
        "GOAL": goal,
    }
    return {
        phase: render_prompt(load_template(phase, config.prompts_dir), variables)
        for phase in Phase
    }
