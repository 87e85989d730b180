"""Oracle reply parsing and the Ollama-backed oracle."""

from __future__ import annotations

import http.client
import os

import pytest

from terminal_assistant.config import Config
from terminal_assistant.errors import OracleError
from terminal_assistant.llm import ollama_client
from terminal_assistant.llm import oracle as oracle_module
from terminal_assistant.llm.ollama_client import chat_completion, is_reachable
from terminal_assistant.llm.oracle import OllamaOracle, extract_json_object


def _ollama_available() -> bool:
    return is_reachable(os.getenv("OLLAMA_BASE_URL", "http://127.0.0.1:11434"), timeout_sec=1.0)


def test_plain_json():
    assert extract_json_object('{"commands": ["ls"]}') == {"commands": ["ls"]}


def test_fenced_json():
    text = 'Here is the plan:\n```json\n{"commands": ["df -h"], "intent": "disk"}\n```\nDone.'
    assert extract_json_object(text)["commands"] == ["df -h"]


def test_json_inside_prose_with_braces_in_strings():
    text = 'Sure. {"directAnswer": "use {braces} freely", "n": 1} hope that helps'
    assert extract_json_object(text) == {"directAnswer": "use {braces} freely", "n": 1}


@pytest.mark.parametrize("text", ["", "   ", "no json here", "[1, 2, 3]", "{broken"])
def test_unrecoverable_replies_raise(text):
    with pytest.raises(ValueError):
        extract_json_object(text)


def test_ollama_oracle_passes_system_context(monkeypatch):
    seen = {}

    def _fake_chat(base_url, model, system_prompt, user_prompt, timeout_sec, num_predict=None, json_mode=False):
        seen.update(base_url=base_url, model=model, system=system_prompt, user=user_prompt, json_mode=json_mode)
        return '{"ok": true}'

    monkeypatch.setattr(oracle_module, "chat_completion", _fake_chat)
    cfg = Config(ollama_base_url="http://ollama:11434/", chat_model="test-model")
    reply = OllamaOracle.from_config(cfg).ask("plan this", {"os": "Linux"})

    assert reply == '{"ok": true}'
    assert seen["base_url"] == "http://ollama:11434"
    assert seen["model"] == "test-model"
    assert '"os": "Linux"' in seen["system"]
    assert seen["json_mode"] is True


def test_unreachable_ollama_raises_oracle_error():
    with pytest.raises(OracleError):
        chat_completion("http://127.0.0.1:9", "any", "system", "user", timeout_sec=2)
    assert not is_reachable("http://127.0.0.1:9", timeout_sec=1.0)


@pytest.mark.parametrize(
    "failure",
    [
        http.client.RemoteDisconnected("Remote end closed connection without response"),
        ConnectionResetError(104, "Connection reset by peer"),
        http.client.IncompleteRead(b"{\"mess"),
    ],
)
def test_dropped_connection_raises_oracle_error(monkeypatch, failure):
    def _urlopen(request, timeout):
        raise failure

    monkeypatch.setattr(ollama_client.urllib.request, "urlopen", _urlopen)
    with pytest.raises(OracleError, match="connection to Ollama"):
        chat_completion("http://ollama:11434", "any", "system", "user", timeout_sec=2)


def test_live_ollama_returns_json():
    if not _ollama_available():
        pytest.skip("Ollama is not available for integration tests.")
    cfg = Config(
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://127.0.0.1:11434"),
        chat_model=os.getenv("OLLAMA_CHAT_MODEL", Config.chat_model),
    )
    reply = OllamaOracle.from_config(cfg).ask('Return {"pong": true} and nothing else.', {})
    assert isinstance(extract_json_object(reply), dict)
