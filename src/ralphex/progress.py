"""Append-only progress log for a ralphex run.

Layout of a progress log:

    Plan: /abs/path/docs/plans/2026-01-15-add-feature.md
    Branch: add-feature
    Mode: full
    Started: 2026-01-15 10:00:00
    ------------------------------------------------------------
    [2026-01-15 10:00:31.204] task-loop 1/50: FAILED - exit 0, 31s
    [2026-01-15 10:01:40.871] task-loop 2/50: COMPLETED - exit 0, 1m7s
    ...
    ------------------------------------------------------------
    Completed: 2026-01-15 10:42:10 (42m10s)

One event line is written per agent invocation. The closing line is
"Completed:" for finished runs, "Cancelled:" or "Failed:" otherwise. Lines are
flushed as they are written so the log is readable while the run is going and
after a crash. Raw agent output goes to a separate transcript file next to the
log, never into the log itself.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import TextIO

from ralphex.phases import Mode, Phase

SEPARATOR = "-" * 60
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
NO_PLAN = "(no plan - review only)"


class ProgressLogError(Exception):
    """Raised when the progress log cannot be opened or written."""

    pass


def format_elapsed(seconds: float) -> str:
    """Format a duration as 45s, 3m12s or 1h2m3s."""
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        return f"{minutes}m{secs}s"
    hours, mins = divmod(minutes, 60)
    return f"{hours}h{mins}m{secs}s"


def progress_filename(plan_file: Path | None, mode: Mode) -> str:
    """Name of the progress log for a plan and mode.

    Examples:
        >>> progress_filename(Path("docs/plans/add-auth.md"), Mode.FULL)
        'progress-add-auth.txt'
        >>> progress_filename(None, Mode.CODEX_ONLY)
        'progress-codex.txt'
    """
    suffix = {Mode.FULL: "", Mode.REVIEW: "-review", Mode.CODEX_ONLY: "-codex"}[mode]
    if plan_file is not None:
        return f"progress-{plan_file.stem}{suffix}.txt"
    if mode == Mode.FULL:
        return "progress.txt"
    return f"progress{suffix}.txt"


def transcript_path_for(log_path: Path) -> Path:
    """Path of the raw output transcript kept next to a progress log."""
    return log_path.with_name(f"{log_path.stem}-output{log_path.suffix}")


@dataclass(frozen=True)
class ProgressEntry:
    """One recorded invocation. Never modified after it is written."""

    timestamp: datetime
    phase: Phase
    iteration: int
    max_iterations: int
    status: str
    annotation: str = ""

    def format(self) -> str:
        """Render the entry as a single log line."""
        ts = self.timestamp.strftime(TIMESTAMP_FORMAT)
        millis = self.timestamp.microsecond // 1000
        line = (
            f"[{ts}.{millis:03d}] {self.phase.label} "
            f"{self.iteration}/{self.max_iterations}: {self.status}"
        )
        if self.annotation:
            line += f" - {self.annotation}"
        return line


class ProgressRecorder:
    """Owns the progress log file for the lifetime of a run.

    The header is written when the recorder is created and the footer when it
    is closed. Only this class writes to the log.

    Usage:
        with ProgressRecorder(path, plan_file, "main", Mode.FULL) as recorder:
            recorder.record(Phase.TASK_LOOP, 1, 50, "COMPLETED")
    """

    def __init__(
        self,
        path: Path,
        plan_file: Path | None,
        branch: str,
        mode: Mode,
        started_at: datetime | None = None,
        clock: Callable[[], datetime] = datetime.now,
        transcript: bool = True,
    ) -> None:
        """Open the log for append and write the header.

        Args:
            path: Progress log path
            plan_file: Plan being executed, None in review-only runs
            branch: Current git branch
            mode: Run mode
            started_at: Run start time (defaults to now)
            clock: Source of wall-clock time
            transcript: Also open the raw output transcript

        Raises:
            ProgressLogError: If the log cannot be opened or written
        """
        self.path = path
        self._clock = clock
        self.started_at = started_at or clock()
        self._last_timestamp: datetime | None = None
        self._closed = False
        self.entries: list[ProgressEntry] = []

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self._file: TextIO = open(path, "a", encoding="utf-8", buffering=1)
        except OSError as e:
            raise ProgressLogError(f"failed to open progress log {path}: {e}") from e

        self.transcript_path: Path | None = None
        self._transcript: TextIO | None = None
        if transcript:
            self.transcript_path = transcript_path_for(path)
            try:
                self._transcript = open(
                    self.transcript_path, "a", encoding="utf-8", buffering=1
                )
            except OSError as e:
                self._file.close()
                raise ProgressLogError(
                    f"failed to open output transcript {self.transcript_path}: {e}"
                ) from e

        try:
            self._write(f"Plan: {plan_file if plan_file is not None else NO_PLAN}")
            self._write(f"Branch: {branch}")
            self._write(f"Mode: {mode.value}")
            self._write(f"Started: {self.started_at.strftime(TIMESTAMP_FORMAT)}")
            self._write(SEPARATOR)
        except ProgressLogError:
            self._release()
            raise

    def __enter__(self) -> ProgressRecorder:
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close("Failed" if exc_type is not None else "Completed")

    @property
    def closed(self) -> bool:
        return self._closed

    def record(
        self,
        phase: Phase,
        iteration: int,
        max_iterations: int,
        status: str,
        annotation: str = "",
    ) -> ProgressEntry:
        """Append one event line.

        Returns:
            The entry as written
        """
        entry = ProgressEntry(
            timestamp=self._next_timestamp(),
            phase=phase,
            iteration=iteration,
            max_iterations=max_iterations,
            status=status,
            annotation=annotation,
        )
        self._write(entry.format())
        self.entries.append(entry)
        return entry

    def raw(self, line: str) -> None:
        """Append one line of agent output to the transcript."""
        if self._transcript is None or self._transcript.closed:
            return
        try:
            self._transcript.write(line + "\n")
        except OSError as e:
            raise ProgressLogError(f"failed to write output transcript: {e}") from e

    def close(self, label: str = "Completed") -> None:
        """Write the footer and release the files. Safe to call twice.

        Args:
            label: Closing line keyword: "Completed", "Cancelled" or "Failed"
        """
        if self._closed:
            return
        self._closed = True
        ended_at = self._clock()
        elapsed = (ended_at - self.started_at).total_seconds()
        try:
            self._write(SEPARATOR)
            self._write(
                f"{label}: {ended_at.strftime(TIMESTAMP_FORMAT)} ({format_elapsed(elapsed)})"
            )
        finally:
            self._release()

    def _release(self) -> None:
        self._closed = True
        self._file.close()
        if self._transcript is not None:
            self._transcript.close()

    def _next_timestamp(self) -> datetime:
        """Current time at millisecond precision, strictly after the last entry."""
        now = self._clock()
        now = now.replace(microsecond=(now.microsecond // 1000) * 1000)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(milliseconds=1)
        self._last_timestamp = now
        return now

    def _write(self, line: str) -> None:
        if self._file.closed:
            raise ProgressLogError(f"progress log already closed: {self.path}")
        try:
            self._file.write(line + "\n")
        except OSError as e:
            raise ProgressLogError(f"failed to write progress log {self.path}: {e}") from e
