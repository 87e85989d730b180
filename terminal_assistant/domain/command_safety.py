"""Command safety validator.

Every command is checked against a deny-list before it can reach a backend.
Matching is literal regex matching on the command text. It is a first line of
defence, NOT a sandbox: obfuscated or indirect forms (variables, eval,
base64 pipelines, scripts written to disk) are not detected. Run the
assistant under an unprivileged account or inside a container when the
target machine matters.

Usage:
    from terminal_assistant.domain.command_safety import CommandValidator

    validator = CommandValidator()
    decision = validator.validate("rm -rf /")
    if not decision.allowed:
        print(decision.reason)
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class SafetyDecision:
    allowed: bool
    reason: str = ""
    matched_patterns: List[str] = field(default_factory=list)


# Deny patterns with a short description of what they would do
BLOCKED_PATTERNS: Dict[str, str] = {
    # rm -rf /, rm -fr /*, rm -r -f --no-preserve-root /
    r"\brm\s+(?:-[a-zA-Z]*\s+|--[a-z-]+\s+)*-?[a-zA-Z]*[rR][a-zA-Z]*\s+(?:-[a-zA-Z]+\s+|--[a-z-]+\s+)*/\*?(?:\s|$|;|&|\|)": (
        "Recursive deletion of the filesystem root"
    ),
    r"--no-preserve-root": (
        "Recursive deletion with root protection disabled"
    ),
    r":\s*\(\s*\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:": (
        "Fork bomb"
    ),
    r"\bmkfs(?:\.\w+)?\b": (
        "Filesystem creation destroys existing data"
    ),
    r"\bdd\b[^|;&]*\bof=/dev/(?:sd|hd|vd|xvd|nvme|mmcblk)": (
        "Raw write to a block device"
    ),
    r">\s*/dev/(?:sd|hd|vd|xvd|nvme|mmcblk)\w*": (
        "Redirection onto a block device"
    ),
}


def _load_policy_patterns(path: Optional[str]) -> Dict[str, str]:
    """Load extra deny patterns from a JSON policy file.

    The file holds ``{"block_patterns": ["regex", ...]}`` or a mapping of
    regex to description.
    """

    if not path:
        return {}
    policy_file = Path(path).expanduser()
    if not policy_file.exists():
        logger.warning("Policy file %s not found; using built-in patterns only", policy_file)
        return {}
    try:
        data = json.loads(policy_file.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Policy file %s unreadable (%s); using built-in patterns only", policy_file, exc)
        return {}
    raw = data.get("block_patterns", []) if isinstance(data, dict) else []
    if isinstance(raw, dict):
        return {str(key): str(value) for key, value in raw.items()}
    return {str(item): "Blocked by policy" for item in raw if isinstance(item, str)}


class CommandValidator:
    """Pattern-based deny-list checked before every execution."""

    def __init__(
        self,
        extra_patterns: Optional[Dict[str, str]] = None,
        policy_path: Optional[str] = None,
    ) -> None:
        patterns = dict(BLOCKED_PATTERNS)
        patterns.update(_load_policy_patterns(policy_path))
        patterns.update(extra_patterns or {})
        self._compiled: List[Tuple[re.Pattern, str, str]] = []
        for pattern, description in patterns.items():
            try:
                self._compiled.append((re.compile(pattern, re.IGNORECASE), pattern, description))
            except re.error as exc:
                logger.warning("Skipping invalid block pattern %r: %s", pattern, exc)

    def validate(self, command: str) -> SafetyDecision:
        """Return whether the command may run and, if not, why."""

        if not command or not command.strip():
            return SafetyDecision(allowed=False, reason="Empty command")
        matched: List[str] = []
        reasons: List[str] = []
        for compiled, pattern, description in self._compiled:
            if compiled.search(command):
                matched.append(pattern)
                reasons.append(description)
        if matched:
            logger.warning("Blocked command %r: %s", command, "; ".join(reasons))
            return SafetyDecision(allowed=False, reason="; ".join(reasons), matched_patterns=matched)
        return SafetyDecision(allowed=True)


def validate_command(command: str) -> SafetyDecision:
    """Check a command against the built-in deny-list."""

    return CommandValidator().validate(command)
