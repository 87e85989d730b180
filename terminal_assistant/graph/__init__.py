"""LangGraph orchestration package."""

from terminal_assistant.graph.state import ExecutionContext, OrchestrationResult

__all__ = ["ExecutionContext", "OrchestrationResult"]
