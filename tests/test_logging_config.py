"""Tests for logging configuration module."""

import logging
from io import StringIO
from unittest.mock import patch

import pytest
from rich.console import Console

import ralphex.logging_config
from ralphex.logging_config import (
    RALPHEX_THEME,
    RalphexLogger,
    get_logger,
    get_phase_color,
    set_log_level,
)


def _capturing_logger(level: int = logging.INFO) -> tuple[RalphexLogger, StringIO]:
    """Logger whose console writes into a buffer."""
    buffer = StringIO()
    logger = RalphexLogger(name="ralphex-test", level=level)
    logger.console = Console(
        file=buffer, theme=RALPHEX_THEME, force_terminal=True, legacy_windows=False
    )
    return logger, buffer


class TestRalphexLogger:
    """Test RalphexLogger class."""

    def test_logger_initialization(self) -> None:
        """Test that logger initializes with correct defaults."""
        logger = RalphexLogger()
        assert logger.logger.name == "ralphex"
        assert logger.logger.level == logging.INFO
        assert isinstance(logger.console, Console)

    @pytest.mark.parametrize(
        ("method", "prefix"),
        [
            ("info", "[info][INFO][/info]"),
            ("success", "[success][SUCCESS][/success]"),
            ("warning", "[warning][WARNING][/warning]"),
            ("error", "[error][ERROR][/error]"),
        ],
    )
    def test_level_prefixes(self, method: str, prefix: str) -> None:
        """Test each level prints its styled prefix."""
        logger = RalphexLogger()
        with patch.object(logger.console, "print") as mock_print:
            getattr(logger, method)("progress log: progress.txt")
            mock_print.assert_called_once_with(f"{prefix} progress log: progress.txt")

    def test_debug_hidden_at_info(self) -> None:
        """Test debug output is suppressed unless enabled."""
        logger = RalphexLogger(level=logging.INFO)
        with patch.object(logger.console, "print") as mock_print:
            logger.debug("Executing: claude --print")
            mock_print.assert_not_called()

    def test_debug_shown_at_debug(self) -> None:
        """Test debug output appears at DEBUG level."""
        logger = RalphexLogger(level=logging.DEBUG)
        with patch.object(logger.console, "print") as mock_print:
            logger.debug("Executing: claude --print")
            mock_print.assert_called_once_with("[debug][DEBUG][/debug] Executing: claude --print")

    def test_phase_message_uses_phase_color(self) -> None:
        """Test phase messages are prefixed with the colored label."""
        logger = RalphexLogger()
        with patch.object(logger.console, "print") as mock_print:
            logger.phase("codex-loop", "iteration 1/10")
            mock_print.assert_called_once_with(
                "[phase.codex_loop][codex-loop][/phase.codex_loop] iteration 1/10"
            )

    def test_agent_output_escapes_markup(self) -> None:
        """Test agent text with brackets is printed literally."""
        logger, buffer = _capturing_logger()
        logger.agent_output("- [x] task one [bold]done[/bold]")
        output = buffer.getvalue()
        assert "[x] task one" in output
        assert "[bold]done[/bold]" in output

    def test_no_duplicate_handlers(self) -> None:
        """Test that re-creating a logger doesn't stack handlers."""
        RalphexLogger(name="test_dup")
        logger = RalphexLogger(name="test_dup")
        assert len(logger.logger.handlers) == 1

    def test_summary_panel(self) -> None:
        """Test the summary panel renders keys and values."""
        logger, buffer = _capturing_logger()
        logger.summary_panel("Run", {"status": "success", "attempts": 3})
        output = buffer.getvalue()
        assert "status" in output
        assert "success" in output
        assert "3" in output


class TestPhaseColors:
    """Test phase color lookup."""

    def test_known_phases(self) -> None:
        """Test every phase label has its own style."""
        assert get_phase_color("task-loop") == "phase.task_loop"
        assert get_phase_color("first-review") == "phase.first_review"
        assert get_phase_color("codex-loop") == "phase.codex_loop"
        assert get_phase_color("second-review") == "phase.second_review"

    def test_unknown_phase_falls_back(self) -> None:
        """Test unknown labels use the info style."""
        assert get_phase_color("other") == "info"


class TestGlobalLogger:
    """Test global logger functions."""

    def test_get_logger_singleton(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that get_logger returns one shared instance."""
        monkeypatch.setattr(ralphex.logging_config, "_logger_instance", None)
        assert get_logger() is get_logger()

    def test_set_log_level(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test changing log level on the global logger."""
        monkeypatch.setattr(ralphex.logging_config, "_logger_instance", None)
        logger = get_logger(level=logging.INFO)

        set_log_level(logging.DEBUG)
        assert logger.logger.level == logging.DEBUG

        set_log_level(logging.INFO)
        assert logger.logger.level == logging.INFO


class TestRealOutput:
    """Test actual console output."""

    def test_multiple_levels(self) -> None:
        """Test every level reaches the console with its prefix."""
        logger, buffer = _capturing_logger(level=logging.DEBUG)

        logger.info("Info test")
        logger.success("Success test")
        logger.warning("Warning test")
        logger.error("Error test")
        logger.debug("Debug test")

        output = buffer.getvalue()
        for word in ("INFO", "SUCCESS", "WARNING", "ERROR", "DEBUG"):
            assert word in output
        assert "Debug test" in output
