"""Persistent shell session with marker-based completion detection.

One long-lived ``bash`` process serves every command of a run, so shell-local
state (working directory, exported variables, functions) carries over from
one command to the next. Each command is followed by a unique marker written
to both stdout and stderr; the session reads both streams until it sees the
marker, which is how it knows the command finished.

Usage:
    session = PersistentShellSession(timeout_sec=30)
    session.execute("export X=1")
    session.execute("echo $X").stdout  # "1"
    session.stop()
"""

from __future__ import annotations

import logging
import os
import queue
import signal
import subprocess
import threading
import time
import uuid
from enum import Enum
from typing import Dict, List, Optional, Tuple

from terminal_assistant.errors import (
    CommandTimeoutError,
    ErrorContext,
    SessionUnavailableError,
)
from terminal_assistant.tools.base import ShellOutput, combine_streams
from terminal_assistant.tools.sanitize import TRUNCATION_NOTE, redact_secrets

logger = logging.getLogger(__name__)

MARKER_PREFIX = "__TA_END_"


class SessionState(Enum):
    """Lifecycle of the shell process."""
    NOT_STARTED = "not_started"
    RUNNING = "running"
    TIMEOUT = "timeout"
    CRASHED = "crashed"
    RESTARTING = "restarting"
    STOPPED = "stopped"


def _pump(stream, sink: "queue.Queue[Optional[bytes]]") -> None:
    """Copy lines from a pipe into a queue; None marks end of stream."""

    try:
        for line in iter(stream.readline, b""):
            sink.put(line)
    except (OSError, ValueError):
        pass
    finally:
        sink.put(None)


class _StreamBuffer:
    """Accumulates decoded lines up to a size cap, counting what is dropped."""

    def __init__(self, max_size: int) -> None:
        self.max_size = max_size
        self.parts: List[str] = []
        self.size = 0
        self.total = 0

    def add(self, text: str) -> None:
        self.total += len(text)
        if self.max_size <= 0 or self.size < self.max_size:
            self.parts.append(text)
            self.size += len(text)

    def text(self) -> Tuple[str, bool]:
        joined = "".join(self.parts).rstrip("\n")
        if self.max_size > 0 and len(joined) > self.max_size:
            omitted = max(self.total - self.max_size, len(joined) - self.max_size)
            return joined[: self.max_size] + TRUNCATION_NOTE.format(omitted=omitted), True
        return joined, False


class PersistentShellSession:
    """Long-lived shell that runs one command at a time."""

    name = "session"

    def __init__(
        self,
        shell_path: str = "/bin/bash",
        timeout_sec: float = 30.0,
        max_output_size: int = 100000,
        working_dir: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        kill_grace_sec: float = 2.0,
    ) -> None:
        self.shell_path = shell_path
        self.timeout_sec = timeout_sec
        self.max_output_size = max_output_size
        self.working_dir = working_dir or None
        self.env = dict(env or {})
        self.kill_grace_sec = kill_grace_sec
        self.state = SessionState.NOT_STARTED
        self._process: Optional[subprocess.Popen] = None
        self._stdout: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._stderr: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._lock = threading.Lock()
        self._interrupted = False

    # --- lifecycle -------------------------------------------------------

    def start(self) -> None:
        """Spawn the shell process if it is not already running."""

        if self.state == SessionState.RUNNING and self._alive():
            return
        self._spawn()

    def restart(self) -> None:
        """Kill and respawn the shell, discarding all shell-local state."""

        logger.info("Restarting shell session (state=%s)", self.state.value)
        self.state = SessionState.RESTARTING
        self._terminate()
        self._spawn()

    def stop(self) -> None:
        """Terminate the shell. The session cannot be used until restarted."""

        self._terminate()
        self.state = SessionState.STOPPED

    def close(self) -> None:
        self.stop()

    def interrupt(self) -> None:
        """Kill the running command from another thread.

        A blocked wait on the completion marker cannot be interrupted
        cooperatively, so the whole process group is killed. The pending
        ``execute`` call then fails with CommandTimeoutError and the caller
        restarts the session. With no command in flight the shell is killed
        and respawned here, so the next caller finds a usable session.
        """

        self._interrupted = True
        if not self._lock.acquire(blocking=False):
            self._terminate()
            return
        try:
            if self._process is not None:
                self.restart()
        finally:
            self._lock.release()

    def _alive(self) -> bool:
        return self._process is not None and self._process.poll() is None

    def _spawn(self) -> None:
        env = os.environ.copy()
        env.update(self.env)
        env.setdefault("TERM", "dumb")
        self._process = subprocess.Popen(
            [self.shell_path, "--noprofile", "--norc"],
            stdin=subprocess.PIPE,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=self.working_dir,
            env=env,
            start_new_session=True,
        )
        self._stdout = queue.Queue()
        self._stderr = queue.Queue()
        for stream, sink in ((self._process.stdout, self._stdout), (self._process.stderr, self._stderr)):
            threading.Thread(target=_pump, args=(stream, sink), daemon=True).start()
        self._interrupted = False
        self.state = SessionState.RUNNING
        logger.debug("Shell session started pid=%s", self._process.pid)

    def _terminate(self) -> None:
        process = self._process
        if process is None:
            return
        if process.poll() is None:
            try:
                os.killpg(process.pid, signal.SIGTERM)
            except (ProcessLookupError, PermissionError):
                process.terminate()
            try:
                process.wait(timeout=self.kill_grace_sec)
            except subprocess.TimeoutExpired:
                try:
                    os.killpg(process.pid, signal.SIGKILL)
                except (ProcessLookupError, PermissionError):
                    process.kill()
                process.wait()
        for pipe in (process.stdin, process.stdout, process.stderr):
            try:
                if pipe:
                    pipe.close()
            except OSError:
                pass
        self._process = None

    # --- execution -------------------------------------------------------

    def _check_syntax(self, command: str) -> Optional[str]:
        """Return a bash syntax error message, or None when the command parses.

        An unbalanced quote or brace would otherwise swallow the marker lines
        and leave the session waiting until the timeout.
        """

        try:
            completed = subprocess.run(
                [self.shell_path, "-n", "-c", command],
                capture_output=True,
                text=True,
                timeout=5,
            )
        except subprocess.TimeoutExpired:
            return None
        if completed.returncode != 0:
            return completed.stderr.strip() or "syntax error"
        return None

    def _ensure_usable(self, command: str) -> None:
        context = ErrorContext(command=command, backend=self.name, recoverable=False)
        if self.state == SessionState.NOT_STARTED:
            self._spawn()
            return
        if self.state == SessionState.CRASHED:
            raise SessionUnavailableError("session unavailable: shell exited, restart required", context)
        if self.state == SessionState.TIMEOUT:
            raise SessionUnavailableError("session unavailable: previous command timed out, restart required", context)
        if self.state == SessionState.STOPPED:
            raise SessionUnavailableError("session unavailable: session stopped", context)
        if not self._alive():
            self.state = SessionState.CRASHED
            raise SessionUnavailableError("session unavailable: shell exited, restart required", context)

    def execute(self, command: str) -> ShellOutput:
        """Run one command and return its sanitized output."""

        with self._lock:
            self._ensure_usable(command)
            syntax_error = self._check_syntax(command)
            if syntax_error:
                stderr = redact_secrets(syntax_error)
                return ShellOutput(stdout="", stderr=stderr, combined=stderr, exit_code=2)
            return self._execute_locked(command)

    run = execute

    def _execute_locked(self, command: str) -> ShellOutput:
        marker = f"{MARKER_PREFIX}{uuid.uuid4().hex}__"
        script = (
            f"{{ {command}\n}} </dev/null\n"
            "__ta_rc=$?\n"
            f"printf '\\n%s:%s\\n' '{marker}' \"$__ta_rc\"\n"
            f"printf '\\n%s\\n' '{marker}' >&2\n"
        )
        started = time.monotonic()
        deadline = started + self.timeout_sec
        logger.debug("session exec: %r timeout=%s", command, self.timeout_sec)
        if self._process is None:
            self._on_eof(command)
        try:
            self._process.stdin.write(script.encode("utf-8"))
            self._process.stdin.flush()
        except (BrokenPipeError, OSError) as exc:
            self.state = SessionState.CRASHED
            raise SessionUnavailableError(
                f"session unavailable: {exc}",
                ErrorContext(command=command, backend=self.name, recoverable=False),
            ) from exc

        stdout_buf = _StreamBuffer(self.max_output_size)
        stderr_buf = _StreamBuffer(self.max_output_size)
        exit_code = self._read_until_marker(self._stdout, marker, stdout_buf, deadline, command)
        self._read_until_marker(self._stderr, marker, stderr_buf, deadline, command)

        stdout, out_truncated = stdout_buf.text()
        stderr, err_truncated = stderr_buf.text()
        stdout = redact_secrets(stdout)
        stderr = redact_secrets(stderr)
        duration = time.monotonic() - started
        logger.debug("session exec rc=%s stdout_len=%s stderr_len=%s", exit_code, len(stdout), len(stderr))
        return ShellOutput(
            stdout=stdout,
            stderr=stderr,
            combined=combine_streams(stdout, stderr),
            exit_code=exit_code if exit_code is not None else -1,
            truncated=out_truncated or err_truncated,
            duration_sec=duration,
        )

    def _read_until_marker(
        self,
        source: "queue.Queue[Optional[bytes]]",
        marker: str,
        buffer: _StreamBuffer,
        deadline: float,
        command: str,
    ) -> Optional[int]:
        """Drain one stream until the marker line; return the exit code if present."""

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._on_timeout(command)
            try:
                raw = source.get(timeout=remaining)
            except queue.Empty:
                self._on_timeout(command)
            if raw is None:
                self._on_eof(command)
            line = raw.decode("utf-8", errors="replace")
            if line.startswith(marker):
                tail = line[len(marker):].strip()
                if tail.startswith(":"):
                    try:
                        return int(tail[1:])
                    except ValueError:
                        return None
                return None
            buffer.add(line)

    def _on_timeout(self, command: str) -> None:
        self.state = SessionState.TIMEOUT
        logger.warning("Command timed out after %ss: %s", self.timeout_sec, command)
        raise CommandTimeoutError(
            f"command timed out after {self.timeout_sec}s",
            ErrorContext(command=command, backend=self.name),
        )

    def _on_eof(self, command: str) -> None:
        if self._interrupted:
            self.state = SessionState.TIMEOUT
            raise CommandTimeoutError(
                "command interrupted",
                ErrorContext(command=command, backend=self.name),
            )
        self.state = SessionState.CRASHED
        logger.warning("Shell process exited unexpectedly while running: %s", command)
        raise SessionUnavailableError(
            "session unavailable: shell exited unexpectedly",
            ErrorContext(command=command, backend=self.name, recoverable=False),
        )
