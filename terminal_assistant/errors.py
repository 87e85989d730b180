"""Structured error taxonomy.

Specific error classes let the orchestration loop tell a command timeout from
a dead shell, or an unusable plan from an unusable evaluation, and react to
each one differently.

Usage:
    from terminal_assistant.errors import CommandTimeoutError, SessionUnavailableError

    try:
        runner.run(command)
    except CommandTimeoutError:
        runner.restart()
    except SessionUnavailableError:
        record_failure()
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

@dataclass
class ErrorContext:
    """Contextual metadata for errors."""
    command: Optional[str] = None
    backend: Optional[str] = None
    severity: str = "error"  # warning, error, critical
    recoverable: bool = True

class AssistantError(Exception):
    """Base class for all terminal assistant errors."""
    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.context = context or ErrorContext()
        self.error_code = "GENERIC_ERROR"

# --- Infrastructure Errors (shell process, SSH) ---

class InfrastructureError(AssistantError):
    """Base for command backend errors."""
    pass

class CommandTimeoutError(InfrastructureError):
    """Command did not finish within the configured timeout."""
    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message, context)
        self.error_code = "CMD_TIMEOUT"

class SessionUnavailableError(InfrastructureError):
    """Shell process exited unexpectedly; a restart is required."""
    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message, context)
        self.error_code = "SESSION_UNAVAILABLE"
        self.context.recoverable = False

class BackendConnectionError(InfrastructureError):
    """Remote backend could not be reached."""
    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message, context)
        self.error_code = "BACKEND_CONN_FAIL"

# --- Safety Errors ---

class SafetyError(AssistantError):
    """Base for command safety errors."""
    pass

class CommandBlockedError(SafetyError):
    """Command matched a deny pattern."""
    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message, context)
        self.error_code = "CMD_BLOCKED"
        self.context.severity = "critical"
        self.context.recoverable = False

# --- Agent Errors (planning, evaluation, synthesis) ---

class AgentError(AssistantError):
    """Internal agent logic errors."""
    pass

class OracleError(AgentError):
    """Reasoning service unreachable or returned a transport error."""
    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message, context)
        self.error_code = "ORACLE_UNAVAILABLE"

class PlanningFailure(AgentError):
    """No usable plan could be obtained for the question."""
    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message, context)
        self.error_code = "PLANNING_FAILED"
        self.context.recoverable = False

class EvaluationFailure(AgentError):
    """Progress evaluation response was unusable."""
    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message, context)
        self.error_code = "EVALUATION_FAILED"

class SynthesisFailure(AgentError):
    """Final answer response was unusable or ungrounded."""
    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message, context)
        self.error_code = "SYNTHESIS_FAILED"
