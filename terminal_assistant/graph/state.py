"""Typed LangGraph state models.

These models define the shared state passed between graph nodes, the schemas
oracle responses are validated against, and the result handed back to
callers.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CommandResult(BaseModel):
    """Outcome of one executed (or skipped) command. Immutable."""

    model_config = ConfigDict(frozen=True)

    command: str
    stdout: str = ""
    stderr: str = ""
    output: str = ""
    exit_code: Optional[int] = None
    from_cache: bool = False
    truncated: bool = False
    skipped: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    duration_sec: Optional[float] = None

    @property
    def success(self) -> bool:
        return not self.skipped and self.error is None and self.exit_code == 0


class Discovered(BaseModel):
    """Entities enumerated by earlier command output."""

    # category -> ordered entity names, e.g. {"jails": ["sshd", "apache"]}
    lists: Dict[str, List[str]] = Field(default_factory=dict)
    entities: Dict[str, Any] = Field(default_factory=dict)
    needs_iteration: List[str] = Field(default_factory=list)
    # category -> follow-up command template with an {entity} placeholder
    follow_up_templates: Dict[str, str] = Field(default_factory=dict)


class WorkingMemory(BaseModel):
    """Structured extraction state accumulated across iterations."""

    discovered: Discovered = Field(default_factory=Discovered)
    hypothesis: str = ""
    data_extracted: Dict[str, Any] = Field(default_factory=dict)
    raw: Dict[str, str] = Field(default_factory=dict)


class PatternStep(BaseModel):
    """One step of a deterministic plan."""

    id: str
    command: str
    extract: str = "raw"
    depends_on: List[str] = Field(default_factory=list)
    optional: bool = False
    # context key holding a list; the step runs once per entry
    for_each: Optional[str] = None
    # context key that must be truthy before the step runs
    when: Optional[str] = None


class PatternPlan(BaseModel):
    """Deterministic multi-step plan selected by the pattern library."""

    intent: str
    pattern_key: str
    steps: List[PatternStep] = Field(default_factory=list)
    executed: List[str] = Field(default_factory=list)
    satisfied: List[str] = Field(default_factory=list)
    context: Dict[str, Any] = Field(default_factory=dict)


class RunMetadata(BaseModel):
    ai_calls: int = 0
    cache_hits: int = 0
    blocked_commands: List[str] = Field(default_factory=list)


class Evaluation(BaseModel):
    """Normalized progress decision."""

    question_answered: bool = False
    answer: Optional[str] = None
    next_commands: List[str] = Field(default_factory=list)
    reasoning: str = ""


def _clean_commands(value: List[str]) -> List[str]:
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class PlanResponse(BaseModel):
    """Schema the planner oracle output must satisfy."""

    model_config = ConfigDict(populate_by_name=True)

    intent: str = ""
    data_needed: List[str] = Field(default_factory=list, alias="dataNeeded")
    commands: List[str]
    success_criteria: str = Field(default="", alias="successCriteria")

    @field_validator("commands")
    @classmethod
    def _commands_not_empty(cls, value: List[str]) -> List[str]:
        cleaned = _clean_commands(value)
        if not cleaned:
            raise ValueError("commands must contain at least one command")
        return cleaned


class EvaluationResponse(BaseModel):
    """Schema the evaluator oracle output must satisfy."""

    model_config = ConfigDict(populate_by_name=True)

    question_answered: bool = Field(alias="questionAnswered")
    answer: Optional[str] = None
    next_commands: List[str] = Field(default_factory=list, alias="nextCommands")
    reasoning: str = ""

    @field_validator("next_commands")
    @classmethod
    def _strip_commands(cls, value: List[str]) -> List[str]:
        return _clean_commands(value)


class SynthesisResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    direct_answer: str = Field(alias="directAnswer", min_length=1)


class ExecutionContext(BaseModel):
    """State object for one orchestration run."""

    question: str
    system_context: Dict[str, Any] = Field(default_factory=dict)
    intent: str = ""
    success_criteria: str = ""
    executed_commands: List[str] = Field(default_factory=list)
    results: List[CommandResult] = Field(default_factory=list)
    current_plan: List[str] = Field(default_factory=list)
    iteration: int = 0
    is_complete: bool = False
    direct_answer: str = ""
    metadata: RunMetadata = Field(default_factory=RunMetadata)
    working_memory: WorkingMemory = Field(default_factory=WorkingMemory)
    pattern_plan: Optional[PatternPlan] = None
    last_evaluation: Optional[Evaluation] = None
    stop_reason: str = ""
    error: Optional[str] = None
    error_code: Optional[str] = None
    started_at: float = 0.0
    debug: List[str] = Field(default_factory=list)


class OrchestrationResult(BaseModel):
    """Hand-off object for UIs and history persistence."""

    success: bool
    question: str
    direct_answer: str = ""
    executed_commands: List[str] = Field(default_factory=list)
    results: List[CommandResult] = Field(default_factory=list)
    iterations: int = 0
    duration: float = 0.0
    metadata: RunMetadata = Field(default_factory=RunMetadata)
    stop_reason: str = ""
    error: Optional[str] = None
    error_code: Optional[str] = None


def coerce_state(state: ExecutionContext | Dict[str, Any]) -> ExecutionContext:
    """Coerce a dict into ExecutionContext for node implementations."""

    if isinstance(state, ExecutionContext):
        return state
    return ExecutionContext.model_validate(state)


def state_to_dict(state: ExecutionContext) -> Dict[str, Any]:
    """Convert ExecutionContext into a dict for LangGraph."""

    return state.model_dump()
