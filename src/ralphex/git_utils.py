"""Git utilities used around a ralphex run.

- Current branch lookup
- Feature branch creation from the plan file name
- Keeping progress logs out of git (.gitignore)
- Moving a finished plan into the completed/ directory
"""

import re
import subprocess
from pathlib import Path

DEFAULT_BRANCHES = ("main", "master")

# Pattern added to .gitignore so progress logs never get committed
PROGRESS_GITIGNORE_PATTERN = "progress-*.txt"
COMPLETED_PLANS_DIR_NAME = "completed"

# Sample file name checked with `git check-ignore` to see if the pattern is active
_IGNORE_SAMPLE = "progress-test.txt"


class GitError(Exception):
    """Raised when git operations fail."""

    pass


def _git_cmd(path: Path | None, *args: str) -> list[str]:
    cmd = ["git"]
    if path:
        cmd.extend(["-C", str(path)])
    cmd.extend(args)
    return cmd


def _run_git(path: Path | None, *args: str, action: str) -> str:
    """Run a git command that must succeed.

    Args:
        path: Repository path (None = current directory)
        *args: git arguments
        action: Description used in the error message

    Returns:
        Stripped stdout

    Raises:
        GitError: If git fails or is missing
    """
    try:
        result = subprocess.run(
            _git_cmd(path, *args),
            capture_output=True,
            text=True,
            check=True,
        )
    except subprocess.CalledProcessError as e:
        raise GitError(f"Failed to {action}: {e.stderr.strip()}") from e
    except FileNotFoundError as e:
        raise GitError("git command not found") from e
    return result.stdout.strip()


def is_git_repo(path: Path | None = None) -> bool:
    """Check if the given path (or current directory) is in a git repository."""
    try:
        result = subprocess.run(
            _git_cmd(path, "rev-parse", "--git-dir"),
            capture_output=True,
            text=True,
            check=False,
        )
        return result.returncode == 0
    except FileNotFoundError:
        return False


def get_current_branch(path: Path | None = None) -> str | None:
    """Get the current git branch name.

    Returns:
        Branch name, or None if not in a repo or on a detached HEAD.
    """
    try:
        result = subprocess.run(
            _git_cmd(path, "branch", "--show-current"),
            capture_output=True,
            text=True,
            check=True,
        )
    except (subprocess.CalledProcessError, FileNotFoundError):
        return None
    return result.stdout.strip() or None


def branch_name_from_plan(plan_file: Path) -> str:
    """Derive a branch name from a plan file name.

    A leading date prefix is dropped.

    Examples:
        >>> branch_name_from_plan(Path("docs/plans/2024-01-15-add-feature.md"))
        'add-feature'
        >>> branch_name_from_plan(Path("2024-01-15.md"))
        '2024-01-15'
    """
    name = plan_file.name
    if name.endswith(".md"):
        name = name[: -len(".md")]
    branch = re.sub(r"^[\d-]+", "", name).lstrip("-")
    return branch or name


def branch_exists(branch_name: str, path: Path | None = None) -> bool:
    """Check if a local git branch exists."""
    try:
        result = subprocess.run(
            _git_cmd(path, "rev-parse", "--verify", "--quiet", f"refs/heads/{branch_name}"),
            capture_output=True,
            text=True,
            check=False,
        )
        return result.returncode == 0
    except FileNotFoundError:
        return False


def create_branch_if_needed(plan_file: Path, path: Path | None = None) -> str | None:
    """Switch to a feature branch named after the plan when on main/master.

    If the branch already exists it is checked out instead of created.

    Returns:
        The branch switched to, or None when already on a feature branch

    Raises:
        GitError: If the current branch cannot be read or the checkout fails
    """
    current = _run_git(path, "branch", "--show-current", action="get current branch")
    if current not in DEFAULT_BRANCHES:
        return None

    branch = branch_name_from_plan(plan_file)
    if branch_exists(branch, path):
        _run_git(path, "checkout", branch, action=f"switch to branch {branch}")
    else:
        _run_git(path, "checkout", "-b", branch, action=f"create branch {branch}")
    return branch


def ensure_gitignore(path: Path | None = None) -> bool:
    """Make sure progress logs are ignored by git.

    Returns:
        True if the pattern was added, False if it was already ignored

    Raises:
        GitError: If .gitignore cannot be written
    """
    try:
        check = subprocess.run(
            _git_cmd(path, "check-ignore", "-q", _IGNORE_SAMPLE),
            capture_output=True,
            check=False,
        )
        if check.returncode == 0:
            return False
    except FileNotFoundError as e:
        raise GitError("git command not found") from e

    gitignore = (path or Path.cwd()) / ".gitignore"
    try:
        with open(gitignore, "a", encoding="utf-8") as f:
            f.write(f"\n# ralphex progress logs\n{PROGRESS_GITIGNORE_PATTERN}\n")
    except OSError as e:
        raise GitError(f"Failed to write {gitignore}: {e}") from e
    return True


def is_tracked(file_path: Path, path: Path | None = None) -> bool:
    """Check whether a file is tracked by git."""
    try:
        result = subprocess.run(
            _git_cmd(path, "ls-files", "--error-unmatch", str(file_path)),
            capture_output=True,
            text=True,
            check=False,
        )
        return result.returncode == 0
    except FileNotFoundError:
        return False


def move_plan_to_completed(plan_file: Path, path: Path | None = None) -> Path:
    """Move a finished plan into a completed/ directory next to it.

    Tracked plans are moved with git and the move is committed; untracked
    plans are simply renamed.

    Returns:
        New location of the plan

    Raises:
        GitError: If the move or commit fails
    """
    completed_dir = plan_file.parent / COMPLETED_PLANS_DIR_NAME
    completed_dir.mkdir(parents=True, exist_ok=True)
    destination = completed_dir / plan_file.name

    if is_tracked(plan_file, path):
        _run_git(path, "mv", str(plan_file), str(destination), action="move plan")
        _run_git(
            path,
            "commit",
            "-m",
            f"move completed plan: {plan_file.name}",
            action="commit plan move",
        )
    else:
        try:
            plan_file.rename(destination)
        except OSError as e:
            raise GitError(f"Failed to move plan to {destination}: {e}") from e
    return destination
