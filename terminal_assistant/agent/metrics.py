"""Per-run metrics: one JSONL line per orchestration run."""

from __future__ import annotations

import json
import time
from collections import Counter
from pathlib import Path
from typing import Dict, List

from terminal_assistant.graph.state import OrchestrationResult


def run_metric_entry(result: OrchestrationResult, question_len: int) -> Dict[str, object]:
    """Flatten a run result into the fields worth tracking over time."""

    return {
        "ts": time.time(),
        "success": result.success,
        "stop_reason": result.stop_reason,
        "duration_ms": round(result.duration * 1000.0, 2),
        "iterations": result.iterations,
        "commands": len(result.executed_commands),
        "failed_commands": sum(1 for item in result.results if item.error and not item.skipped),
        "ai_calls": result.metadata.ai_calls,
        "cache_hits": result.metadata.cache_hits,
        "blocked": len(result.metadata.blocked_commands),
        "question_len": question_len,
    }


def append_metric(path: Path, entry: Dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(entry, sort_keys=True) + "\n")


def load_metrics(path: Path, limit: int = 500) -> List[Dict[str, object]]:
    """Return the most recent ``limit`` entries; unreadable lines are skipped."""

    if not path.exists():
        return []
    entries: List[Dict[str, object]] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if not line.strip():
            continue
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return entries[-limit:] if limit else entries


def summarize_metrics(path: Path, limit: int = 500) -> str:
    entries = load_metrics(path, limit=limit)
    if not entries:
        return "No runs recorded yet."

    durations = [float(entry.get("duration_ms") or 0) for entry in entries]
    succeeded = sum(1 for entry in entries if entry.get("success"))
    stops = Counter(str(entry.get("stop_reason") or "unknown") for entry in entries)
    lines = [
        f"Runs: {len(entries)} ({succeeded} answered)",
        f"Average duration: {sum(durations) / len(durations):.1f} ms",
        f"Average commands per run: {sum(int(entry.get('commands') or 0) for entry in entries) / len(entries):.1f}",
        f"Oracle calls: {sum(int(entry.get('ai_calls') or 0) for entry in entries)}, "
        f"cache hits: {sum(int(entry.get('cache_hits') or 0) for entry in entries)}, "
        f"blocked commands: {sum(int(entry.get('blocked') or 0) for entry in entries)}",
        "Stop reasons:",
    ]
    lines.extend(f"- {reason}: {count}" for reason, count in stops.most_common())
    return "\n".join(lines)
