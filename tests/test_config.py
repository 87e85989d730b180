"""Environment-driven configuration."""

from __future__ import annotations

import pytest

from terminal_assistant.config import Config, load_config
from terminal_assistant.graph.graph import build_runner
from terminal_assistant.tools.oneshot_runner import OneShotRunner
from terminal_assistant.tools.shell_session import PersistentShellSession


def test_defaults(monkeypatch):
    for name in ("TA_MAX_ITERATIONS", "TA_BACKEND", "METRICS_ENABLED", "TA_MAX_EXECUTION_TIME_SEC"):
        monkeypatch.delenv(name, raising=False)
    cfg = load_config()

    assert cfg.max_iterations == 10
    assert cfg.max_execution_time_sec == 60.0
    assert cfg.backend == "session"
    assert cfg.metrics_enabled is False


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("TA_MAX_ITERATIONS", "4")
    monkeypatch.setenv("TA_COMMAND_TIMEOUT_SEC", "2.5")
    monkeypatch.setenv("TA_BACKEND", "OneShot")
    monkeypatch.setenv("METRICS_ENABLED", "yes")
    monkeypatch.setenv("METRICS_PATH", "/tmp/ta-metrics.jsonl")
    cfg = load_config()

    assert cfg.max_iterations == 4
    assert cfg.command_timeout_sec == 2.5
    assert cfg.backend == "oneshot"
    assert cfg.metrics_enabled is True
    assert cfg.metrics_path == "/tmp/ta-metrics.jsonl"


def test_build_runner_selects_backend():
    assert isinstance(build_runner(Config(backend="oneshot")), OneShotRunner)
    assert isinstance(build_runner(Config(backend="session")), PersistentShellSession)
    with pytest.raises(ValueError):
        build_runner(Config(backend="telnet"))
    with pytest.raises(ValueError):
        build_runner(Config(backend="ssh"))
