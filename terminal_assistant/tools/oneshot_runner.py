"""Spawn-per-command backend.

Each command runs in a fresh ``bash -c`` process. Nothing carries over between
commands, in exchange for exact per-command exit status without markers.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from typing import Dict, Optional

from terminal_assistant.errors import CommandTimeoutError, ErrorContext
from terminal_assistant.tools.base import ShellOutput, combine_streams
from terminal_assistant.tools.sanitize import redact_secrets, truncate_output

logger = logging.getLogger(__name__)


class OneShotRunner:
    """Run every command in its own short-lived shell."""

    name = "oneshot"

    def __init__(
        self,
        shell_path: str = "/bin/bash",
        timeout_sec: float = 30.0,
        max_output_size: int = 100000,
        working_dir: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        self.shell_path = shell_path
        self.timeout_sec = timeout_sec
        self.max_output_size = max_output_size
        self.working_dir = working_dir or None
        self.env = dict(env or {})

    def run(self, command: str) -> ShellOutput:
        env = os.environ.copy()
        env.update(self.env)
        started = time.monotonic()
        logger.debug("oneshot exec: %r timeout=%s", command, self.timeout_sec)
        try:
            completed = subprocess.run(
                [self.shell_path, "-c", command],
                stdin=subprocess.DEVNULL,
                capture_output=True,
                cwd=self.working_dir,
                env=env,
                timeout=self.timeout_sec,
            )
        except subprocess.TimeoutExpired as exc:
            logger.warning("Command timed out after %ss: %s", self.timeout_sec, command)
            raise CommandTimeoutError(
                f"command timed out after {self.timeout_sec}s",
                ErrorContext(command=command, backend=self.name),
            ) from exc

        stdout, out_truncated = truncate_output(
            completed.stdout.decode("utf-8", errors="replace").rstrip("\n"), self.max_output_size
        )
        stderr, err_truncated = truncate_output(
            completed.stderr.decode("utf-8", errors="replace").rstrip("\n"), self.max_output_size
        )
        stdout = redact_secrets(stdout)
        stderr = redact_secrets(stderr)
        return ShellOutput(
            stdout=stdout,
            stderr=stderr,
            combined=combine_streams(stdout, stderr),
            exit_code=completed.returncode,
            truncated=out_truncated or err_truncated,
            duration_sec=time.monotonic() - started,
        )

    def restart(self) -> None:
        """Nothing to respawn; every command already gets a fresh shell."""

    def close(self) -> None:
        """Nothing to release."""
