"""LangGraph builder and the per-run Orchestrator.

State machine:
    planner → executor ⇄ evaluator → synthesizer → END

The executor loops on itself while commands are queued, hands over to the
evaluator when the queue is empty, and jumps straight to the synthesizer
once the iteration or time budget is spent.
"""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from terminal_assistant.agent.metrics import append_metric, run_metric_entry
from terminal_assistant.cache.ttl_cache import ResultCache
from terminal_assistant.config import Config, load_config
from terminal_assistant.domain.command_safety import CommandValidator
from terminal_assistant.domain.patterns import PatternLibrary
from terminal_assistant.domain.system_context import SystemContext, detect_system_context
from terminal_assistant.graph.nodes.evaluator import evaluator_node
from terminal_assistant.graph.nodes.executor import executor_node
from terminal_assistant.graph.nodes.planner import planner_node, sanitize_question
from terminal_assistant.graph.nodes.synthesizer import synthesizer_node
from terminal_assistant.graph.runtime import RUNTIME_KEY, RunRuntime
from terminal_assistant.graph.state import (
    ExecutionContext,
    OrchestrationResult,
    coerce_state,
)
from terminal_assistant.llm.oracle import OllamaOracle, ReasoningOracle
from terminal_assistant.tools.base import CommandRunner
from terminal_assistant.tools.oneshot_runner import OneShotRunner
from terminal_assistant.tools.shell_session import PersistentShellSession
from terminal_assistant.tools.ssh_runner import SSHRunner

logger = logging.getLogger(__name__)


def _route_after_planner(state: ExecutionContext | dict) -> str:
    current = coerce_state(state)
    if current.stop_reason == "planning_failed":
        return "end"
    return "executor"


def _route_after_executor(state: ExecutionContext | dict) -> str:
    """Keep executing while commands are queued, then evaluate."""

    current = coerce_state(state)
    if current.stop_reason:
        return "synthesizer"
    if current.current_plan:
        return "executor"
    return "evaluator"


def _route_after_evaluator(state: ExecutionContext | dict) -> str:
    current = coerce_state(state)
    if current.is_complete or current.stop_reason:
        return "synthesizer"
    if current.current_plan:
        return "executor"
    return "synthesizer"


def build_graph():
    """Build and compile the LangGraph flow."""

    try:
        from langgraph.graph import END, StateGraph
    except ImportError as exc:
        raise RuntimeError(
            "langgraph is not installed. Install with: pip install langgraph"
        ) from exc

    graph = StateGraph(ExecutionContext)
    graph.add_node("planner", planner_node)
    graph.add_node("executor", executor_node)
    graph.add_node("evaluator", evaluator_node)
    graph.add_node("synthesizer", synthesizer_node)

    graph.set_entry_point("planner")
    graph.add_conditional_edges(
        "planner",
        _route_after_planner,
        {"executor": "executor", "end": END},
    )
    graph.add_conditional_edges(
        "executor",
        _route_after_executor,
        {"executor": "executor", "evaluator": "evaluator", "synthesizer": "synthesizer"},
    )
    graph.add_conditional_edges(
        "evaluator",
        _route_after_evaluator,
        {"executor": "executor", "synthesizer": "synthesizer"},
    )
    graph.add_edge("synthesizer", END)
    return graph.compile()


def build_runner(cfg: Config) -> CommandRunner:
    """Return the command backend selected by ``cfg.backend``."""

    if cfg.backend == "oneshot":
        return OneShotRunner(
            shell_path=cfg.shell_path,
            timeout_sec=cfg.command_timeout_sec,
            max_output_size=cfg.max_output_size,
            working_dir=cfg.working_dir or None,
        )
    if cfg.backend == "ssh":
        if not cfg.ssh_host:
            raise ValueError("TA_SSH_HOST is required for the ssh backend")
        return SSHRunner(
            host=cfg.ssh_host,
            user=cfg.ssh_user,
            port=cfg.ssh_port,
            key_path=cfg.ssh_key_path,
            password=cfg.ssh_password,
            timeout_sec=cfg.command_timeout_sec,
            max_output_size=cfg.max_output_size,
        )
    if cfg.backend != "session":
        raise ValueError(f"unknown backend {cfg.backend!r}; expected session, oneshot or ssh")
    return PersistentShellSession(
        shell_path=cfg.shell_path,
        timeout_sec=cfg.command_timeout_sec,
        max_output_size=cfg.max_output_size,
        working_dir=cfg.working_dir or None,
    )


class Orchestrator:
    """Answers one question at a time with its own session, cache and oracle.

    Construct one per run (or per user); nothing is shared through module
    state, so separate orchestrators never see each other's shell or cache.
    """

    def __init__(
        self,
        cfg: Optional[Config] = None,
        runner: Optional[CommandRunner] = None,
        oracle: Optional[ReasoningOracle] = None,
        validator: Optional[CommandValidator] = None,
        patterns: Optional[PatternLibrary] = None,
        clock: Callable[[], float] = time.monotonic,
        system_context: Optional[Dict[str, Any]] = None,
        cache_factory: Optional[Callable[[], ResultCache]] = None,
    ) -> None:
        self.cfg = cfg or load_config()
        self.runner = runner or build_runner(self.cfg)
        self.oracle = oracle or OllamaOracle.from_config(self.cfg)
        self.validator = validator or CommandValidator(policy_path=self.cfg.policy_path or None)
        self.patterns = patterns or PatternLibrary()
        self.clock = clock
        self.system_context = system_context
        self._cache_factory = cache_factory or (lambda: ResultCache(self.cfg.cache_ttl_sec, clock=clock))
        self._cancel = threading.Event()
        self._graph = build_graph()

    def __enter__(self) -> "Orchestrator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.runner.close()

    def cancel(self) -> None:
        """Stop the current run before its next command.

        A command already blocked on the backend is killed, since it cannot
        be interrupted cooperatively.
        """

        self._cancel.set()
        interrupt = getattr(self.runner, "interrupt", None)
        if callable(interrupt):
            interrupt()

    def _ensure_system_context(self) -> Dict[str, Any]:
        if self.system_context is None:
            self.system_context = detect_system_context(self.runner).to_dict()
        return self.system_context

    def run(self, question: str) -> OrchestrationResult:
        """Answer one question and return the hand-off result."""

        self._cancel.clear()
        started = self.clock()
        cleaned = sanitize_question(question, self.cfg.max_question_length)
        system_context = self._ensure_system_context() if cleaned else (self.system_context or SystemContext().to_dict())
        runtime = RunRuntime(
            config=self.cfg,
            runner=self.runner,
            oracle=self.oracle,
            cache=self._cache_factory(),
            validator=self.validator,
            patterns=self.patterns,
            clock=self.clock,
            cancel_event=self._cancel,
        )
        state = ExecutionContext(question=cleaned, system_context=system_context, started_at=started)
        logger.info("Run start: %r", cleaned)
        final = self._graph.invoke(
            state,
            config={
                "recursion_limit": 2 * self.cfg.max_iterations + 10,
                "configurable": {RUNTIME_KEY: runtime},
            },
        )
        final_state = coerce_state(final)
        result = build_result(final_state, duration=self.clock() - started)
        logger.info(
            "Run end: success=%s stop=%s commands=%s ai_calls=%s",
            result.success,
            result.stop_reason,
            len(result.executed_commands),
            result.metadata.ai_calls,
        )
        if self.cfg.metrics_enabled:
            append_metric(Path(self.cfg.metrics_path), run_metric_entry(result, question_len=len(cleaned)))
        return result


def build_result(state: ExecutionContext, duration: float) -> OrchestrationResult:
    """Convert the final graph state into the hand-off object."""

    failed = state.stop_reason == "planning_failed"
    return OrchestrationResult(
        success=not failed and bool(state.direct_answer),
        question=state.question,
        direct_answer=state.direct_answer,
        executed_commands=list(state.executed_commands),
        results=list(state.results),
        iterations=state.iteration,
        duration=duration,
        metadata=state.metadata,
        stop_reason=state.stop_reason,
        error=state.error,
        error_code=state.error_code,
    )


def run_question(question: str, cfg: Optional[Config] = None) -> OrchestrationResult:
    """Run a single question with a fresh orchestrator built from config."""

    with Orchestrator(cfg=cfg) as orchestrator:
        return orchestrator.run(question)
