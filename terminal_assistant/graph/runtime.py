"""Per-run collaborators handed to graph nodes.

Nodes never reach for module-level singletons. The orchestrator builds one
`RunRuntime` per run and passes it through LangGraph's ``configurable``
config, so concurrent runs never share a session, cache or oracle.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from terminal_assistant.cache.ttl_cache import ResultCache
from terminal_assistant.config import Config
from terminal_assistant.domain.command_safety import CommandValidator
from terminal_assistant.domain.patterns import PatternLibrary
from terminal_assistant.graph.state import ExecutionContext
from terminal_assistant.llm.oracle import ReasoningOracle
from terminal_assistant.tools.base import CommandRunner

RUNTIME_KEY = "runtime"


@dataclass
class RunRuntime:
    config: Config
    runner: CommandRunner
    oracle: ReasoningOracle
    cache: ResultCache
    validator: CommandValidator
    patterns: PatternLibrary
    clock: Callable[[], float]
    cancel_event: threading.Event = field(default_factory=threading.Event)

    def elapsed(self, state: ExecutionContext) -> float:
        return self.clock() - state.started_at

    def budget_stop_reason(self, state: ExecutionContext) -> Optional[str]:
        """Return why the loop must stop now, or None to keep going."""

        if self.cancel_event.is_set():
            return "cancelled"
        if state.iteration >= self.config.max_iterations:
            return "max_iterations"
        if self.elapsed(state) >= self.config.max_execution_time_sec:
            return "time_budget"
        return None

    def ask_oracle(self, state: ExecutionContext, prompt: str) -> str:
        """Single oracle round trip, counted in the run metadata."""

        state.metadata.ai_calls += 1
        return self.oracle.ask(prompt, state.system_context)


def get_runtime(config: Optional[Dict[str, Any]]) -> RunRuntime:
    """Return the RunRuntime stored in a LangGraph RunnableConfig."""

    configurable = (config or {}).get("configurable", {})
    runtime = configurable.get(RUNTIME_KEY)
    if runtime is None:
        raise RuntimeError("graph invoked without a run runtime; use Orchestrator.run()")
    return runtime
