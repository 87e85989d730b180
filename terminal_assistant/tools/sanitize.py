"""Output sanitization helpers shared by every command backend."""

from __future__ import annotations

import re
from typing import List, Tuple


# Applied in order; the bearer rule runs first so its token is not half-eaten
# by the generic assignment rule.
REDACTION_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"Bearer\s+[A-Za-z0-9\-._~+/]+=*"), "Bearer [REDACTED]"),
    (re.compile(r"(?i)\b(\w*(?:password|passwd|token|key|secret)\w*)(\s*[=:]\s*)(?!\[REDACTED\])[^\s\"',;]+"), r"\1\2[REDACTED]"),
]

TRUNCATION_NOTE = "\n... [output truncated: {omitted} characters omitted]"


def redact_secrets(text: str) -> str:
    """Replace password/token/key/secret values and bearer tokens."""

    if not text:
        return text
    redacted = text
    for pattern, replacement in REDACTION_PATTERNS:
        redacted = pattern.sub(replacement, redacted)
    return redacted


def truncate_output(text: str, max_size: int) -> Tuple[str, bool]:
    """Return (text, truncated) with text capped to max_size characters."""

    if max_size <= 0 or len(text) <= max_size:
        return text, False
    omitted = len(text) - max_size
    return text[:max_size] + TRUNCATION_NOTE.format(omitted=omitted), True
