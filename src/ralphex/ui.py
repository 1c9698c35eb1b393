"""UI components for ralphex using the Rich library.

- Phase headers with a progress indicator
- End-of-run summary table
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import TYPE_CHECKING

from rich.table import Table

from ralphex.logging_config import get_logger

if TYPE_CHECKING:
    from ralphex.iteration import PhaseResult
    from ralphex.phases import Phase

_STATUS_STYLES = {
    "success": "green",
    "incomplete": "yellow",
    "cancelled": "yellow",
    "fatal": "red",
}


def render_phase_progress(index: int, total: int) -> str:
    """Render phase progress as a visual indicator (●●○○)."""
    return "●" * index + "○" * (total - index)


def display_phase_header(phase: Phase, index: int, total: int, max_iterations: int) -> None:
    """Display a rule announcing a phase.

    Args:
        phase: Phase about to run
        index: Position of the phase in this run (1-based)
        total: Number of phases in this run
        max_iterations: Iteration limit for the phase
    """
    console = get_logger().console
    progress = render_phase_progress(index, total)
    timestamp = datetime.now().strftime("%H:%M:%S")

    header = (
        f"[bold yellow]{phase.label} | "
        f"Progress: {progress} | "
        f"max {max_iterations} iterations | "
        f"{timestamp}[/bold yellow]"
    )

    console.rule(header, style="yellow")
    console.print()


def display_run_summary(
    status: str,
    elapsed: str,
    progress_path: str,
    phases: Sequence[PhaseResult],
) -> None:
    """Display the end-of-run summary table.

    Args:
        status: Terminal run status value
        elapsed: Formatted elapsed time
        progress_path: Path of the progress log
        phases: Results of the phases that ran
    """
    style = _STATUS_STYLES.get(status, "white")
    table = Table(title="ralphex run summary", show_header=True, header_style="bold cyan")
    table.add_column("Phase", style="cyan", width=16)
    table.add_column("Outcome", style=style, width=12)
    table.add_column("Attempts", justify="right", width=10)
    table.add_column("Last signal", width=14)

    for result in phases:
        table.add_row(
            result.phase.label,
            result.outcome.value,
            str(result.attempts),
            result.last_signal.value if result.last_signal else "-",
        )

    console = get_logger().console
    console.print()
    console.print(table)
    console.print(f"[{style}]status: {status}[/{style}]  elapsed: {elapsed}")
    console.print(f"progress log: {progress_path}")
