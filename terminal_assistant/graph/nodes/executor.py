"""Executor node: run exactly one queued command per visit.

Flow per visit:
    budget check → pop → safety check → cache → backend → record

The result is appended whatever happens (success, error or skipped), so the
loop always advances and ``executed_commands`` stays aligned with
``results``. There are no automatic retries; failures are left for the
evaluator to judge.
"""

from __future__ import annotations

import logging

from langchain_core.runnables import RunnableConfig

from terminal_assistant.domain.extraction import extract_into_memory
from terminal_assistant.errors import (
    CommandBlockedError,
    CommandTimeoutError,
    ErrorContext,
    InfrastructureError,
    SessionUnavailableError,
)
from terminal_assistant.graph.runtime import RunRuntime, get_runtime
from terminal_assistant.graph.state import CommandResult, ExecutionContext, coerce_state, state_to_dict

logger = logging.getLogger(__name__)


def _error_result(command: str, exc: InfrastructureError) -> CommandResult:
    return CommandResult(command=command, error=str(exc), error_code=exc.error_code)


def run_command(runtime: RunRuntime, current: ExecutionContext, command: str) -> CommandResult:
    """Validate, consult the cache, then run one command through the backend."""

    # Step 1: safety
    decision = runtime.validator.validate(command)
    if not decision.allowed:
        current.metadata.blocked_commands.append(command)
        blocked = CommandBlockedError(f"blocked: {decision.reason}", ErrorContext(command=command))
        return CommandResult(command=command, skipped=True, error=str(blocked), error_code=blocked.error_code)

    # Step 2: cache
    os_name = str(current.system_context.get("os", ""))
    cached = runtime.cache.get(command, os_name, current.intent)
    if cached is not None:
        current.metadata.cache_hits += 1
        logger.debug("Cache hit for %r", command)
        return cached

    # Step 3: backend
    try:
        output = runtime.runner.run(command)
    except CommandTimeoutError as exc:
        result = _error_result(command, exc)
        try:
            runtime.runner.restart()
        except InfrastructureError as restart_exc:
            logger.warning("Session restart after timeout failed: %s", restart_exc)
        return result
    except SessionUnavailableError as exc:
        return _error_result(command, exc)
    except InfrastructureError as exc:
        logger.warning("Backend failed for %r: %s", command, exc)
        return _error_result(command, exc)

    error = None
    if output.exit_code != 0:
        error = output.stderr.strip() or f"exit code {output.exit_code}"
    result = CommandResult(
        command=command,
        stdout=output.stdout,
        stderr=output.stderr,
        output=output.combined,
        exit_code=output.exit_code,
        truncated=output.truncated,
        error=error,
        duration_sec=output.duration_sec,
    )

    # Step 4: cache successes only
    runtime.cache.put(result, os_name, current.intent)
    return result


def record_result(runtime: RunRuntime, current: ExecutionContext, result: CommandResult) -> None:
    """Append the result and fold its output into working memory."""

    previous = list(current.executed_commands)
    current.executed_commands.append(result.command)
    current.results.append(result)
    current.iteration += 1
    text = result.output or result.stdout
    if not result.skipped:
        extract_into_memory(current.working_memory, result.command, text, previous, succeeded=result.success)
    if current.pattern_plan is not None:
        runtime.patterns.record(
            current.pattern_plan,
            result.command,
            text if result.success else (result.error or text),
            succeeded=result.success,
        )


def execute_next(runtime: RunRuntime, current: ExecutionContext) -> CommandResult:
    """Pop the next queued command, run it and record the outcome."""

    command = current.current_plan.pop(0)
    result = run_command(runtime, current, command)
    record_result(runtime, current, result)
    return result


def executor_node(state: ExecutionContext | dict, config: RunnableConfig) -> dict:
    """Execute the next queued command, or stop when the budget is spent."""

    current = coerce_state(state)
    runtime = get_runtime(config)

    reason = runtime.budget_stop_reason(current)
    if reason:
        logger.info("Stopping loop before next command: %s", reason)
        current.stop_reason = reason
        return state_to_dict(current)
    if not current.current_plan:
        return state_to_dict(current)

    result = execute_next(runtime, current)
    command = result.command
    if result.skipped:
        logger.warning("Skipped blocked command %r", command)
    elif result.error:
        logger.info("Command %r failed: %s", command, result.error)
    else:
        logger.info("Executed %r (cache=%s)", command, result.from_cache)
    return state_to_dict(current)
