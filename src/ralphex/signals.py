"""Signal detection for streamed agent output.

The agent reports the end of an invocation by printing a marker on a line of
its own. Recognized markers:

    COMPLETED     the unit of work is finished
    FAILED        the agent hit an error it could not recover from
    REVIEW_DONE   a review pass found nothing left to fix

A marker only counts when it is the entire line after trimming whitespace and
matches exactly (case-sensitive), so an agent writing "the task is completed"
in prose is never mistaken for a terminal signal. The first marker seen wins;
anything printed afterwards is ignored for classification.
"""

from collections import deque
from collections.abc import Iterable
from enum import Enum

# Number of trailing output lines kept for diagnostics
DEFAULT_TAIL_LINES = 50


class Signal(str, Enum):
    """Terminal classification of one agent invocation."""

    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REVIEW_DONE = "REVIEW_DONE"
    UNRESOLVED = "UNRESOLVED"  # process exited without emitting a marker

    @property
    def is_marker(self) -> bool:
        """Whether this signal can appear in agent output."""
        return self is not Signal.UNRESOLVED


MARKERS: dict[str, Signal] = {
    signal.value: signal for signal in Signal if signal.is_marker
}


def classify_line(line: str) -> Signal | None:
    """Classify a single output line.

    Args:
        line: One line of agent output, with or without trailing newline

    Returns:
        The marker signal if the trimmed line is exactly a marker, else None
    """
    return MARKERS.get(line.strip())


class SignalScanner:
    """Incremental classifier fed one output line at a time.

    Keeps a bounded tail of the output for error reporting; the full stream is
    never retained.
    """

    def __init__(self, tail_lines: int = DEFAULT_TAIL_LINES) -> None:
        self._signal: Signal | None = None
        self._tail: deque[str] = deque(maxlen=tail_lines)
        self.lines_seen = 0

    @property
    def signal(self) -> Signal | None:
        """The first marker seen so far, or None."""
        return self._signal

    @property
    def tail(self) -> str:
        """Most recent output lines joined with newlines."""
        return "\n".join(self._tail)

    def feed(self, line: str) -> Signal | None:
        """Consume one line and return the signal if one has been found.

        Once a marker has been recognized it stays fixed; later lines are only
        added to the tail.
        """
        self.lines_seen += 1
        self._tail.append(line.rstrip("\r\n"))
        if self._signal is None:
            self._signal = classify_line(line)
        return self._signal

    def finish(self) -> Signal:
        """Final classification once the stream has ended."""
        return self._signal if self._signal is not None else Signal.UNRESOLVED


def scan_lines(lines: Iterable[str]) -> Signal:
    """Classify a complete stream of lines.

    Stops pulling from the iterator as soon as a marker is found.
    """
    scanner = SignalScanner()
    for line in lines:
        if scanner.feed(line) is not None:
            break
    return scanner.finish()
