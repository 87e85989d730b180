"""System detection probe."""

from __future__ import annotations

from conftest import FakeRunner
from terminal_assistant.domain.system_context import PROBE_COMMAND, detect_system_context, parse_probe_output
from terminal_assistant.errors import SessionUnavailableError

PROBE_OUTPUT = """os=Linux
arch=x86_64
kernel=6.1.0-18-amd64
distro=debian
version=12
shell=bash
has=apt
has=docker
has=systemctl
has=ss
"""


def test_parse_probe_output():
    context = parse_probe_output(PROBE_OUTPUT)

    assert context.os == "Linux"
    assert context.distro == "debian"
    assert context.version == "12"
    assert context.package_manager == "apt"
    assert context.capabilities == ["docker", "systemctl", "ss"]
    assert "package manager: apt" in context.describe()


def test_macos_without_os_release():
    context = parse_probe_output("os=Darwin\narch=arm64\nshell=zsh\n")
    assert context.distro == "macos"
    assert context.package_manager == "unknown"


def test_detect_runs_probe_through_backend():
    runner = FakeRunner({PROBE_COMMAND: PROBE_OUTPUT})
    context = detect_system_context(runner)

    assert runner.calls == [PROBE_COMMAND]
    assert context.os == "Linux"


def test_detect_degrades_when_backend_fails():
    runner = FakeRunner({PROBE_COMMAND: SessionUnavailableError("shell exited")})
    context = detect_system_context(runner)

    assert context.os == "unknown"
    assert context.capabilities == []
