"""Subprocess executor for agent invocations.

Runs one external command per invocation, feeds it the prompt, and streams its
combined stdout/stderr line by line. Each line is handed to the caller (for
display and the output transcript) and to a SignalScanner. The call returns as
soon as a terminal marker is seen or the process exits on its own; in both
cases the child, and anything it left running in its process group, is gone
before this module returns.

The child runs in its own session so that an interrupt from the terminal
reaches only the orchestrator, which then terminates the whole process group
itself.
"""

from __future__ import annotations

import os
import queue
import shutil
import signal
import subprocess
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import IO, TYPE_CHECKING, Literal, cast

from ralphex.logging_config import get_logger
from ralphex.signals import Signal, SignalScanner

if TYPE_CHECKING:
    from ralphex.runner import RunContext

logger = get_logger()

PromptMode = Literal["stdin", "arg"]


class ExecutorError(Exception):
    """Raised when an agent command cannot be run at all.

    Attributes:
        message: Human-readable error message
        is_retryable: Whether retrying the invocation could help
        original_error: The underlying exception if any
    """

    def __init__(
        self,
        message: str,
        is_retryable: bool = False,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.is_retryable = is_retryable
        self.original_error = original_error


@dataclass(frozen=True)
class ExecutorBinding:
    """How to launch the agent for a phase.

    Attributes:
        command: Executable name or path
        args: Arguments placed before the prompt
        prompt_mode: "stdin" writes the prompt to the child's standard input,
            "arg" appends it as the last argument
    """

    command: str
    args: tuple[str, ...] = ()
    prompt_mode: PromptMode = "stdin"

    def build_command(self, prompt: str) -> list[str]:
        """Build the argv for one invocation."""
        cmd = [self.command, *self.args]
        if self.prompt_mode == "arg":
            cmd.append(prompt)
        return cmd


@dataclass(frozen=True)
class InvocationResult:
    """Outcome of one agent invocation.

    Attributes:
        signal: Terminal signal, UNRESOLVED if no marker was seen
        exit_code: Process return code (negative when killed by a signal)
        duration: Wall-clock seconds from start to cleanup
        cancelled: True if the run's cancellation token stopped the invocation
        output_tail: Last lines of output, for diagnostics
    """

    signal: Signal
    exit_code: int | None
    duration: float
    cancelled: bool = False
    output_tail: str = ""


def is_available(command: str) -> bool:
    """Check whether a command can be found on PATH (or is an executable path)."""
    return shutil.which(command) is not None


def check_dependencies(commands: Sequence[str]) -> None:
    """Fail fast when a required external command is missing.

    Raises:
        ExecutorError: Naming the first missing command
    """
    for command in commands:
        if not is_available(command):
            raise ExecutorError(f"{command} not found in PATH", is_retryable=False)


def _pump_lines(stream: IO[str], lines: queue.Queue[str | None]) -> None:
    """Reader thread body: move lines from the child's stdout into a queue.

    A partial final line (no trailing newline) is delivered as-is at EOF.
    A None sentinel marks the end of the stream.
    """
    try:
        for line in stream:
            lines.put(line)
    except (OSError, ValueError) as e:
        # stream closed underneath us while the child was being terminated
        logger.debug(f"Output reader stopped: {e}")
    finally:
        lines.put(None)


def _feed_prompt(stream: IO[str], prompt: str) -> None:
    """Writer thread body: send the prompt and close stdin."""
    try:
        stream.write(prompt)
        stream.close()
    except (BrokenPipeError, OSError, ValueError) as e:
        # child exited before reading its input; its output tells the story
        logger.debug(f"Could not write prompt to agent stdin: {e}")


class CommandExecutor:
    """Launches agent commands and streams their output.

    Attributes:
        cwd: Working directory for the child process (None = current)
        poll_interval: Seconds to wait for output before re-checking cancellation
        terminate_timeout: Seconds to wait after SIGTERM before SIGKILL
        exit_grace: Seconds of silence after the child exits before its output
            is abandoned
    """

    def __init__(
        self,
        cwd: Path | None = None,
        poll_interval: float = 0.2,
        terminate_timeout: float = 5.0,
        exit_grace: float = 1.0,
    ) -> None:
        self.cwd = cwd
        self.poll_interval = poll_interval
        self.terminate_timeout = terminate_timeout
        self.exit_grace = exit_grace

    def run(
        self,
        binding: ExecutorBinding,
        prompt: str,
        context: RunContext,
        on_line: Callable[[str], None] | None = None,
    ) -> InvocationResult:
        """Run one invocation to a terminal signal or process exit.

        Args:
            binding: Command to launch
            prompt: Prompt payload for the agent
            context: Run context whose cancellation token is polled
            on_line: Called with every output line (newline stripped)

        Returns:
            InvocationResult describing the invocation

        Raises:
            ExecutorError: If the command cannot be started (not retryable)
        """
        started = time.monotonic()
        cmd = binding.build_command(prompt)
        logger.debug(f"Executing: {binding.command} {' '.join(binding.args)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE if binding.prompt_mode == "stdin" else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
                cwd=self.cwd,
                start_new_session=True,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ExecutorError(
                f"command not found: {binding.command}",
                is_retryable=False,
                original_error=e,
            ) from e
        except OSError as e:
            raise ExecutorError(
                f"failed to start {binding.command}: {e}",
                is_retryable=False,
                original_error=e,
            ) from e

        logger.debug(f"Agent subprocess started (PID: {process.pid})")

        # both pipes were requested above
        stdout = cast(IO[str], process.stdout)
        lines: queue.Queue[str | None] = queue.Queue()
        reader = threading.Thread(
            target=_pump_lines, args=(stdout, lines), daemon=True
        )
        reader.start()

        if binding.prompt_mode == "stdin" and process.stdin is not None:
            threading.Thread(
                target=_feed_prompt, args=(process.stdin, prompt), daemon=True
            ).start()

        scanner = SignalScanner()
        cancelled = False
        try:
            for line in self._iter_lines(lines, context, process):
                if on_line is not None:
                    on_line(line.rstrip("\r\n"))
                if scanner.feed(line) is not None:
                    logger.debug(f"Signal detected: {scanner.signal.value}")
                    break
            cancelled = context.cancelled
        finally:
            exit_code = self._stop(process, graceful=scanner.signal is None and not cancelled)
            reader.join(timeout=self.terminate_timeout)
            # flush whatever the reader collected before the pipe closed
            for line in self._drain(lines):
                if on_line is not None:
                    on_line(line.rstrip("\r\n"))
                scanner.feed(line)
            if not reader.is_alive():
                stdout.close()

        result = InvocationResult(
            signal=scanner.finish(),
            exit_code=exit_code,
            duration=time.monotonic() - started,
            cancelled=cancelled,
            output_tail=scanner.tail,
        )
        logger.debug(
            f"Agent subprocess finished: signal={result.signal.value} "
            f"exit={result.exit_code} cancelled={result.cancelled}"
        )
        return result

    def _iter_lines(
        self,
        lines: queue.Queue[str | None],
        context: RunContext,
        process: subprocess.Popen[str],
    ) -> Iterator[str]:
        """Pull lines until EOF, cancellation or the child's exit.

        Wakes up every poll_interval. Once the child has exited, reading goes
        on for at most exit_grace seconds, so a background process that
        inherited the pipe cannot hold the phase open. Lines still queued at
        that point are picked up by the caller's drain.
        """
        exited_at: float | None = None
        while not context.cancelled:
            if exited_at is None and process.poll() is not None:
                exited_at = time.monotonic()
            if exited_at is not None and time.monotonic() - exited_at >= self.exit_grace:
                logger.debug(f"Agent exited (PID: {process.pid}) but its output is still open")
                return
            try:
                line = lines.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            if line is None:
                return
            yield line

    @staticmethod
    def _drain(lines: queue.Queue[str | None]) -> Iterator[str]:
        """Yield lines already queued without blocking."""
        while True:
            try:
                line = lines.get_nowait()
            except queue.Empty:
                return
            if line is not None:
                yield line

    def _stop(self, process: subprocess.Popen[str], graceful: bool) -> int | None:
        """Make sure the child and its process group are gone.

        Args:
            process: Child process
            graceful: True when the stream ended on its own, so the child is
                given time to exit before being signalled

        Returns:
            The child's return code
        """
        exit_code: int | None = None
        if graceful:
            try:
                exit_code = process.wait(timeout=self.terminate_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(
                    f"Agent closed its output but did not exit (PID: {process.pid}), terminating"
                )

        if exit_code is None:
            self._signal_group(process, signal.SIGTERM)
            try:
                exit_code = process.wait(timeout=self.terminate_timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"Killing agent process group (PID: {process.pid})")
                self._signal_group(process, signal.SIGKILL)
                exit_code = process.wait()

        self._reap_group(process)
        return exit_code

    def _reap_group(self, process: subprocess.Popen[str]) -> None:
        """Stop whatever the child left running in its process group."""
        if not self._group_alive(process):
            return
        logger.debug(f"Terminating leftover processes in group {process.pid}")
        self._signal_group(process, signal.SIGTERM)
        deadline = time.monotonic() + self.terminate_timeout
        while self._group_alive(process):
            if time.monotonic() >= deadline:
                logger.warning(f"Killing leftover processes in group {process.pid}")
                self._signal_group(process, signal.SIGKILL)
                return
            time.sleep(self.poll_interval)

    @staticmethod
    def _group_alive(process: subprocess.Popen[str]) -> bool:
        try:
            os.killpg(process.pid, 0)
        except (ProcessLookupError, PermissionError):
            return False
        return True

    @staticmethod
    def _signal_group(process: subprocess.Popen[str], sig: signal.Signals) -> None:
        try:
            os.killpg(process.pid, sig)
        except (ProcessLookupError, PermissionError):
            # group already gone
            pass
