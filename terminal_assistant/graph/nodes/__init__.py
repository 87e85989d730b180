"""LangGraph node implementations."""

from terminal_assistant.graph.nodes.planner import planner_node
from terminal_assistant.graph.nodes.executor import executor_node
from terminal_assistant.graph.nodes.evaluator import evaluator_node
from terminal_assistant.graph.nodes.synthesizer import synthesizer_node

__all__ = ["planner_node", "executor_node", "evaluator_node", "synthesizer_node"]
