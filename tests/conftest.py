"""Shared fakes for orchestration tests."""

from __future__ import annotations

import json
from typing import Callable, Dict, List, Optional, Union

import pytest

from terminal_assistant.config import Config
from terminal_assistant.graph.graph import Orchestrator
from terminal_assistant.tools.base import ShellOutput

Scripted = Union[str, ShellOutput, Exception, Callable[[str], str]]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRunner:
    """Scripted command backend that records every call."""

    name = "fake"

    def __init__(
        self,
        outputs: Optional[Dict[str, Scripted]] = None,
        clock: Optional[FakeClock] = None,
        cost_sec: float = 0.0,
    ) -> None:
        self.outputs = dict(outputs or {})
        self.clock = clock
        self.cost_sec = cost_sec
        self.calls: List[str] = []
        self.restarts = 0
        self.closed = False

    def run(self, command: str) -> ShellOutput:
        self.calls.append(command)
        if self.clock is not None:
            self.clock.advance(self.cost_sec)
        value = self.outputs.get(command)
        if callable(value) and not isinstance(value, Exception):
            value = value(command)
        if isinstance(value, Exception):
            raise value
        if isinstance(value, ShellOutput):
            return value
        if value is None:
            stderr = f"bash: {command.split()[0]}: command not found"
            return ShellOutput(stdout="", stderr=stderr, combined=stderr, exit_code=127)
        return ShellOutput(stdout=value, stderr="", combined=value, exit_code=0)

    def restart(self) -> None:
        self.restarts += 1

    def close(self) -> None:
        self.closed = True


class FakeOracle:
    """Returns scripted replies in order and keeps the prompts it saw."""

    def __init__(self, replies: Optional[List[Union[str, dict, Exception]]] = None) -> None:
        self.replies = list(replies or [])
        self.prompts: List[str] = []

    def ask(self, prompt: str, system_context: dict) -> str:
        self.prompts.append(prompt)
        if not self.replies:
            raise AssertionError(f"unexpected oracle call: {prompt[:120]!r}")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, dict):
            return json.dumps(reply)
        return reply


def plan(*commands: str, intent: str = "test") -> dict:
    return {"intent": intent, "dataNeeded": [], "commands": list(commands), "successCriteria": ""}


def answered(answer: str = "done") -> dict:
    return {"questionAnswered": True, "answer": answer, "nextCommands": [], "reasoning": "enough data"}


def synthesis(text: str) -> dict:
    return {"directAnswer": text}


def assert_aligned(result) -> None:
    assert len(result.executed_commands) == len(result.results)
    assert [item.command for item in result.results] == result.executed_commands


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_orchestrator(clock):
    """Build an orchestrator around fakes; system detection is skipped."""

    def _make(runner: FakeRunner, oracle: FakeOracle, **overrides) -> Orchestrator:
        cfg = Config(metrics_enabled=False)
        for key, value in overrides.items():
            setattr(cfg, key, value)
        return Orchestrator(
            cfg=cfg,
            runner=runner,
            oracle=oracle,
            clock=clock,
            system_context={"os": "Linux", "distro": "debian"},
        )

    return _make
