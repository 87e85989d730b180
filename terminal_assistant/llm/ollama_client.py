"""Thin HTTP client for the Ollama chat API.

Only what the reasoning oracle needs: one non-streaming chat call and a
reachability probe. Transport problems surface as `OracleError` so the
planner, evaluator and synthesizer can fall back instead of crashing.
"""

from __future__ import annotations

import http.client
import json
import logging
import socket
import urllib.error
import urllib.request
from typing import Any, Dict, Optional

from terminal_assistant.errors import ErrorContext, OracleError

logger = logging.getLogger(__name__)


def _request_json(url: str, payload: Optional[Dict[str, Any]], timeout_sec: float) -> Dict[str, Any]:
    """POST ``payload`` (or GET when None) and decode the JSON reply."""

    context = ErrorContext(backend="ollama")
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    req = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/json"},
        method="POST" if data is not None else "GET",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout_sec) as resp:
            body = resp.read().decode("utf-8")
    except (TimeoutError, socket.timeout) as exc:
        raise OracleError(f"no reply from {url} within {timeout_sec}s (raise REQUEST_TIMEOUT_SEC)", context) from exc
    except urllib.error.HTTPError as exc:
        detail = exc.read().decode("utf-8", errors="replace")[:300]
        raise OracleError(f"Ollama answered HTTP {exc.code}: {detail}", context) from exc
    except urllib.error.URLError as exc:
        raise OracleError(f"cannot reach Ollama at {url}: {exc.reason}", context) from exc
    except (ConnectionError, http.client.HTTPException) as exc:
        raise OracleError(f"connection to Ollama at {url} failed: {exc!r}", context) from exc
    try:
        decoded = json.loads(body)
    except json.JSONDecodeError as exc:
        raise OracleError(f"Ollama sent a body that is not JSON: {body[:200]!r}", context) from exc
    if not isinstance(decoded, dict):
        raise OracleError("Ollama sent an unexpected JSON shape", context)
    return decoded


def is_reachable(base_url: str, timeout_sec: float = 2.0) -> bool:
    """True when the Ollama server answers its tags endpoint."""

    try:
        _request_json(f"{base_url.rstrip('/')}/api/tags", None, timeout_sec)
    except OracleError as exc:
        logger.debug("Ollama probe failed: %s", exc)
        return False
    return True


def chat_completion(
    base_url: str,
    model: str,
    system_prompt: str,
    user_prompt: str,
    timeout_sec: float,
    num_predict: Optional[int] = None,
    json_mode: bool = False,
) -> str:
    """Return the assistant message text for one system+user exchange.

    Sampling is pinned to temperature 0 so repeated runs plan the same way.
    """

    options: Dict[str, Any] = {"temperature": 0}
    if num_predict is not None:
        options["num_predict"] = num_predict
    payload: Dict[str, Any] = {
        "model": model,
        "stream": False,
        "options": options,
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
    }
    if json_mode:
        payload["format"] = "json"
    reply = _request_json(f"{base_url.rstrip('/')}/api/chat", payload, timeout_sec)
    if reply.get("error"):
        raise OracleError(f"Ollama error: {reply['error']}", ErrorContext(backend="ollama"))
    content = (reply.get("message") or {}).get("content", "")
    logger.debug("Ollama %s replied with %s chars", model, len(content))
    return content
