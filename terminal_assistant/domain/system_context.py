"""Detect the target system's OS, distro, package manager and tools.

The context feeds the planner prompt (so the oracle proposes commands that
exist on the machine) and the result cache key.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Dict, List

from terminal_assistant.errors import InfrastructureError
from terminal_assistant.tools.base import CommandRunner

logger = logging.getLogger(__name__)

PACKAGE_MANAGERS = ["apt", "dnf", "yum", "pacman", "zypper", "apk", "emerge", "xbps-install"]
CAPABILITY_TOOLS = ["docker", "systemctl", "fail2ban-client", "journalctl", "ss", "ip", "ufw", "nginx"]

PROBE_COMMAND = (
    '( echo "os=$(uname -s 2>/dev/null)"; '
    'echo "arch=$(uname -m 2>/dev/null)"; '
    'echo "kernel=$(uname -r 2>/dev/null)"; '
    'if [ -r /etc/os-release ]; then . /etc/os-release; echo "distro=$ID"; echo "version=$VERSION_ID"; fi; '
    'echo "shell=$(basename "${SHELL:-sh}")"; '
    "for tool in " + " ".join(PACKAGE_MANAGERS + CAPABILITY_TOOLS) + "; do "
    'command -v "$tool" >/dev/null 2>&1 && echo "has=$tool"; done; true )'
)


@dataclass
class SystemContext:
    os: str = "unknown"
    distro: str = "unknown"
    version: str = "unknown"
    package_manager: str = "unknown"
    shell: str = "unknown"
    architecture: str = "unknown"
    kernel: str = "unknown"
    capabilities: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)

    def describe(self) -> str:
        """One-line summary for prompts."""

        tools = ", ".join(self.capabilities) or "none detected"
        return (
            f"OS: {self.os} ({self.distro} {self.version}), kernel {self.kernel}, arch {self.architecture}; "
            f"package manager: {self.package_manager}; shell: {self.shell}; available tools: {tools}"
        )


def parse_probe_output(output: str) -> SystemContext:
    """Build a SystemContext from ``key=value`` probe lines."""

    context = SystemContext()
    found: List[str] = []
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        value = value.strip().strip('"')
        if not sep or not value:
            continue
        if key == "has":
            found.append(value)
        elif key == "os":
            context.os = value
        elif key == "arch":
            context.architecture = value
        elif key == "kernel":
            context.kernel = value
        elif key == "distro":
            context.distro = value.lower()
        elif key == "version":
            context.version = value
        elif key == "shell":
            context.shell = value
    for manager in PACKAGE_MANAGERS:
        if manager in found:
            context.package_manager = "xbps" if manager == "xbps-install" else manager
            break
    context.capabilities = [tool for tool in CAPABILITY_TOOLS if tool in found]
    if context.distro == "unknown" and context.os == "Darwin":
        context.distro = "macos"
    return context


def detect_system_context(runner: CommandRunner) -> SystemContext:
    """Probe the target through the command backend; degrade to 'unknown'."""

    try:
        output = runner.run(PROBE_COMMAND)
    except InfrastructureError as exc:
        logger.warning("System detection failed: %s", exc)
        return SystemContext()
    context = parse_probe_output(output.stdout)
    logger.info("Detected system: %s", context.describe())
    return context
