"""Remote command backend over SSH (Paramiko).

Commands run one at a time on a single connected client. Like the one-shot
runner, each exec gets a fresh remote shell, so no shell state persists.
"""

from __future__ import annotations

import logging
import socket
import time
from pathlib import Path
from typing import Optional

import paramiko

from terminal_assistant.errors import BackendConnectionError, CommandTimeoutError, ErrorContext
from terminal_assistant.tools.base import ShellOutput, combine_streams
from terminal_assistant.tools.sanitize import redact_secrets, truncate_output

logger = logging.getLogger(__name__)


def _exec_command_with_status(
    client: paramiko.SSHClient,
    command: str,
    timeout_sec: float,
) -> tuple[str, str, int]:
    """Execute a command and return (stdout, stderr, exit_code)."""

    logger.debug("ssh exec_command: %r timeout=%s", command, timeout_sec)
    stdin, stdout, stderr = client.exec_command(command, timeout=timeout_sec)
    stdin.close()
    output = stdout.read().decode("utf-8", errors="replace").rstrip("\n")
    error_text = stderr.read().decode("utf-8", errors="replace").rstrip("\n")
    exit_code = stdout.channel.recv_exit_status()
    logger.debug("ssh exec_command output_len=%s error_len=%s rc=%s", len(output), len(error_text), exit_code)
    return output, error_text, exit_code


class SSHRunner:
    """Run commands on a remote host through one Paramiko client."""

    name = "ssh"

    def __init__(
        self,
        host: str,
        user: str = "",
        port: int = 22,
        key_path: str = "",
        password: str = "",
        timeout_sec: float = 30.0,
        max_output_size: int = 100000,
    ) -> None:
        self.host = host
        self.user = user or None
        self.port = port
        self.key_path = key_path
        self.password = password or None
        self.timeout_sec = timeout_sec
        self.max_output_size = max_output_size
        self._client: Optional[paramiko.SSHClient] = None

    def _connect(self) -> paramiko.SSHClient:
        if self._client is not None:
            return self._client
        key_filename = None
        if self.key_path:
            key_file = Path(self.key_path).expanduser()
            if key_file.exists():
                key_filename = str(key_file)
            elif not self.password:
                raise BackendConnectionError(
                    f"SSH key not found at {key_file}. Set TA_SSH_KEY_PATH or TA_SSH_PASSWORD.",
                    ErrorContext(backend=self.name, recoverable=False),
                )
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self.user,
                password=self.password,
                key_filename=key_filename,
                timeout=self.timeout_sec,
                auth_timeout=self.timeout_sec,
                banner_timeout=self.timeout_sec,
                allow_agent=True,
                look_for_keys=key_filename is None,
            )
        except (paramiko.SSHException, socket.error) as exc:
            client.close()
            raise BackendConnectionError(
                f"SSH connection to {self.host}:{self.port} failed: {exc}",
                ErrorContext(backend=self.name),
            ) from exc
        self._client = client
        return client

    def run(self, command: str) -> ShellOutput:
        client = self._connect()
        started = time.monotonic()
        try:
            output, error_text, exit_code = _exec_command_with_status(client, command, self.timeout_sec)
        except socket.timeout as exc:
            logger.warning("SSH command timed out after %ss: %s", self.timeout_sec, command)
            raise CommandTimeoutError(
                f"command timed out after {self.timeout_sec}s",
                ErrorContext(command=command, backend=self.name),
            ) from exc
        except paramiko.SSHException as exc:
            self.close()
            raise BackendConnectionError(
                f"SSH channel failed: {exc}",
                ErrorContext(command=command, backend=self.name),
            ) from exc

        stdout, out_truncated = truncate_output(output, self.max_output_size)
        stderr, err_truncated = truncate_output(error_text, self.max_output_size)
        stdout = redact_secrets(stdout)
        stderr = redact_secrets(stderr)
        return ShellOutput(
            stdout=stdout,
            stderr=stderr,
            combined=combine_streams(stdout, stderr),
            exit_code=exit_code,
            truncated=out_truncated or err_truncated,
            duration_sec=time.monotonic() - started,
        )

    def restart(self) -> None:
        self.close()
        self._connect()

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
