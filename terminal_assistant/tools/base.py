"""Command backend contract.

Every backend runs one command at a time and hands back a `ShellOutput`.
The orchestrator only depends on this protocol, so the persistent session,
the one-shot runner and the SSH runner are interchangeable.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class ShellOutput:
    """Sanitized output of a single command."""

    stdout: str
    stderr: str
    combined: str
    exit_code: int
    truncated: bool = False
    duration_sec: float = 0.0

    @property
    def success(self) -> bool:
        return self.exit_code == 0


class CommandRunner(Protocol):
    name: str

    def run(self, command: str) -> ShellOutput:
        """Run one command; raise CommandTimeoutError or SessionUnavailableError."""
        ...

    def restart(self) -> None:
        ...

    def close(self) -> None:
        ...


def combine_streams(stdout: str, stderr: str) -> str:
    """Join stdout and stderr the way a terminal user would read them."""

    parts = [part for part in (stdout, stderr) if part]
    return "\n".join(parts)
