"""Command-line entry point."""

from __future__ import annotations

import json

from terminal_assistant import cli
from terminal_assistant.graph.state import OrchestrationResult


class _StubOrchestrator:
    last_question = None
    last_cfg = None

    def __init__(self, cfg=None):
        _StubOrchestrator.last_cfg = cfg

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return None

    def cancel(self):
        pass

    def run(self, question):
        _StubOrchestrator.last_question = question
        return OrchestrationResult(success=True, question=question, direct_answer="42 things", stop_reason="complete")


def test_ask_prints_answer(monkeypatch, capsys):
    monkeypatch.setattr(cli, "Orchestrator", _StubOrchestrator)
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)

    code = cli.main(["--backend", "oneshot", "ask", "--max-iterations", "3", "how", "many", "things?"])

    assert code == 0
    assert capsys.readouterr().out.strip() == "42 things"
    assert _StubOrchestrator.last_question == "how many things?"
    assert _StubOrchestrator.last_cfg.backend == "oneshot"
    assert _StubOrchestrator.last_cfg.max_iterations == 3


def test_ask_json_output(monkeypatch, capsys):
    monkeypatch.setattr(cli, "Orchestrator", _StubOrchestrator)
    monkeypatch.setattr(cli, "load_dotenv", lambda: None)

    cli.main(["ask", "--json", "anything"])
    payload = json.loads(capsys.readouterr().out)

    assert payload["direct_answer"] == "42 things"
    assert payload["stop_reason"] == "complete"
