"""Reasoning oracle contract and the Ollama-backed implementation.

The orchestration nodes only see `ReasoningOracle.ask`, which returns raw
text. Turning that text into validated structures is the caller's job;
`extract_json_object` does the tolerant first half (code fences, prose
around the JSON).
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional, Protocol

from terminal_assistant.config import Config
from terminal_assistant.llm.ollama_client import chat_completion

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a Linux operations assistant that answers questions about the machine it runs on "
    "by choosing read-only shell commands and reading their output. "
    "Always reply with a single JSON object and nothing else."
)


class ReasoningOracle(Protocol):
    def ask(self, prompt: str, system_context: Dict[str, Any]) -> str:
        ...


class OllamaOracle:
    """Oracle backed by a local Ollama chat model."""

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout_sec: int = 60,
        num_predict: Optional[int] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout_sec = timeout_sec
        self.num_predict = num_predict

    @classmethod
    def from_config(cls, cfg: Config) -> "OllamaOracle":
        return cls(cfg.ollama_base_url, cfg.chat_model, cfg.request_timeout_sec, cfg.chat_max_tokens)

    def ask(self, prompt: str, system_context: Dict[str, Any]) -> str:
        system_prompt = SYSTEM_PROMPT
        if system_context:
            system_prompt += f"\nTarget system: {json.dumps(system_context, sort_keys=True)}"
        logger.debug("Oracle prompt (%s chars) to %s", len(prompt), self.model)
        return chat_completion(
            self.base_url,
            self.model,
            system_prompt,
            prompt,
            self.timeout_sec,
            num_predict=self.num_predict,
            json_mode=True,
        )


_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _balanced_object(text: str) -> Optional[str]:
    """Return the first balanced {...} span, honoring JSON strings."""

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
                continue
            if char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    return text[start : index + 1]
        start = text.find("{", start + 1)
    return None


def extract_json_object(text: str) -> Dict[str, Any]:
    """Parse the JSON object in an oracle reply.

    Raises ValueError when no JSON object can be recovered.
    """

    if not text or not text.strip():
        raise ValueError("empty response")
    candidates = [match.group(1) for match in _FENCE_RE.finditer(text)]
    candidates.append(text)
    for candidate in candidates:
        stripped = candidate.strip()
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError:
            span = _balanced_object(stripped)
            if span is None:
                continue
            try:
                parsed = json.loads(span)
            except json.JSONDecodeError:
                continue
        if isinstance(parsed, dict):
            return parsed
    raise ValueError(f"no JSON object found in response: {text[:200]!r}")
