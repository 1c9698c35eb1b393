"""Logging configuration for ralphex using rich for colored console output.

Provides the process-wide logger used by every component. Status messages get
a colored level prefix, streamed agent output is printed dimmed so it is easy
to tell apart from orchestrator messages.
"""

import logging
from typing import Any

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

RALPHEX_THEME = Theme(
    {
        "info": "blue",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "debug": "dim",
        "agent": "grey70",
        # Phase-specific colors
        "phase.task_loop": "green",
        "phase.first_review": "cyan",
        "phase.codex_loop": "magenta",
        "phase.second_review": "cyan bold",
        "signal": "red",
    }
)


PHASE_COLORS = {
    "task-loop": "phase.task_loop",
    "first-review": "phase.first_review",
    "codex-loop": "phase.codex_loop",
    "second-review": "phase.second_review",
}


def get_phase_color(phase_label: str) -> str:
    """Get the color style for a phase label, falling back to info."""
    return PHASE_COLORS.get(phase_label, "info")


class RalphexLogger:
    """Logger with colored console output using rich."""

    def __init__(self, name: str = "ralphex", level: int = logging.INFO) -> None:
        """Initialize logger with rich console handler.

        Args:
            name: Logger name (default: "ralphex")
            level: Logging level (default: INFO)
        """
        self.console = Console(theme=RALPHEX_THEME)
        self.logger = logging.getLogger(name)
        self.logger.setLevel(level)

        # Remove existing handlers to avoid duplicates
        self.logger.handlers.clear()

        handler = RichHandler(
            console=self.console,
            show_time=False,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        self.logger.addHandler(handler)

    def info(self, message: str, *args: Any, **kwargs: Any) -> None:
        """Log info message with blue [INFO] prefix."""
        self.console.print(f"[info][INFO][/info] {message}", *args, **kwargs)

    def success(self, message: str, *args: Any, **kwargs: Any) -> None:
        """Log success message with green [SUCCESS] prefix."""
        self.console.print(f"[success][SUCCESS][/success] {message}", *args, **kwargs)

    def warning(self, message: str, *args: Any, **kwargs: Any) -> None:
        """Log warning message with yellow [WARNING] prefix."""
        self.console.print(f"[warning][WARNING][/warning] {message}", *args, **kwargs)

    def error(self, message: str, *args: Any, **kwargs: Any) -> None:
        """Log error message with red bold [ERROR] prefix."""
        self.console.print(f"[error][ERROR][/error] {message}", *args, **kwargs)

    def debug(self, message: str, *args: Any, **kwargs: Any) -> None:
        """Log debug message with dim [DEBUG] prefix, only at DEBUG level."""
        if self.logger.level <= logging.DEBUG:
            self.console.print(f"[debug][DEBUG][/debug] {message}", *args, **kwargs)

    def phase(self, phase_label: str, message: str) -> None:
        """Log message prefixed with the phase label in its color.

        Args:
            phase_label: Phase label such as "task-loop"
            message: Message to log
        """
        color = get_phase_color(phase_label)
        self.console.print(f"[{color}][{phase_label}][/{color}] {message}")

    def agent_output(self, line: str) -> None:
        """Print one line of streamed agent output.

        Agent output is arbitrary text, so markup in it is escaped and
        highlighting is turned off.
        """
        self.console.print(f"[agent]{escape(line)}[/agent]", highlight=False)

    def summary_panel(
        self,
        title: str,
        data: dict[str, Any],
        style: str = "green",
    ) -> None:
        """Display a summary panel with key-value data.

        Args:
            title: Panel title
            data: Dictionary of key-value pairs to display
            style: Border style (default: green)
        """
        table = Table(show_header=False, box=None, padding=(0, 2))
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            table.add_row(key, str(value))

        panel = Panel(
            table,
            title=f"[bold]{title}[/bold]",
            border_style=style,
            padding=(1, 2),
        )
        self.console.print(panel)


_logger_instance: RalphexLogger | None = None


def get_logger(name: str = "ralphex", level: int = logging.INFO) -> RalphexLogger:
    """Get or create the global ralphex logger instance.

    Args:
        name: Logger name (default: "ralphex")
        level: Logging level (default: INFO)

    Returns:
        RalphexLogger instance
    """
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = RalphexLogger(name=name, level=level)
    return _logger_instance


def set_log_level(level: int) -> None:
    """Set the logging level for the global logger.

    Args:
        level: Logging level (e.g., logging.DEBUG, logging.INFO)
    """
    logger = get_logger()
    logger.logger.setLevel(level)
