# models.py
# Data contracts for the plan execution engine.
# No business logic lives here: pure schema and validation.

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConditionCheck(str, Enum):
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    TRUTHY = "truthy"
    FALSY = "falsy"


class SkipReason(str, Enum):
    UNMET_DEPENDENCY = "unmet_dependency"
    CONDITION_FALSE = "condition_false"
    CANCELLED = "cancelled"


class ResultKind(str, Enum):
    """Shape of a tool result, declared by the dispatch table."""

    PRODUCT_LIST = "product_list"
    CONTACT = "contact"
    MESSAGE_SENT = "message_sent"
    PAYMENT = "payment"
    CHAT_REPLY = "chat_reply"
    GENERIC = "generic"


class _WireModel(BaseModel):
    # Planner output uses camelCase; unknown fields are tolerated.
    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


class StepCondition(_WireModel):
    """Predicate over a previously produced step result."""

    step: str = Field(..., description="Id of the step whose result is checked.")
    # Kept as a raw string: unknown checks are resolved by evaluator policy.
    check: str = Field(..., description="One of the ConditionCheck values.")
    value: str | None = None
    field: str | None = Field(default=None, description="Sub-field of the result to inspect.")

    @field_validator("value", mode="before")
    @classmethod
    def _stringify_value(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return str(v)


class ExecutionStep(_WireModel):
    """A single tool invocation in an execution plan."""

    id: str = Field(..., min_length=1, description="Unique within the plan.")
    tool: str = Field(..., min_length=1, description="Tool name, resolved by the dispatch table.")
    params: dict[str, Any] = Field(..., description="Tool arguments; strings may hold placeholders.")
    description: str = Field(default="", description="Human-readable intent of this step.")
    depends_on: list[str] = Field(default_factory=list, alias="dependsOn")
    condition: StepCondition | None = None
    output_key: str | None = Field(default=None, alias="outputKey")

    @field_validator("depends_on", mode="before")
    @classmethod
    def _dedupe_dependencies(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        if isinstance(v, list):
            return list(dict.fromkeys(v))
        return v

    @field_validator("description", mode="before")
    @classmethod
    def _default_description(cls, v: Any) -> Any:
        return "" if v is None else v


class ExecutionPlan(_WireModel):
    """A validated plan: ordered steps plus an optional summary."""

    steps: list[ExecutionStep]
    summary: str | None = None

    def get_step(self, step_id: str) -> ExecutionStep | None:
        return next((s for s in self.steps if s.id == step_id), None)


class ExecutionResult(BaseModel):
    """Immutable outcome of one step in one plan execution."""

    model_config = ConfigDict(frozen=True)

    step_id: str
    tool: str
    server: str = "unknown"
    description: str = ""
    params: dict[str, Any] = Field(default_factory=dict, description="Params after variable resolution.")
    result: Any = None
    success: bool
    skipped: bool = False
    skip_reason: SkipReason | None = None
    error: str | None = None
    attempts: int = 0
    kind: ResultKind = ResultKind.GENERIC
    unresolved: list[str] = Field(default_factory=list)


class ExecutionReport(BaseModel):
    """Aggregated outcome returned to callers after a plan completes."""

    success: bool
    results: list[ExecutionResult]
    final_output: Any = None
    final_kind: ResultKind | None = None
    message: str = ""
    synthesized_summary: str | None = None
    skipped_notes: list[str] = Field(default_factory=list)
    plan_summary: str | None = None

    @property
    def succeeded(self) -> list[ExecutionResult]:
        return [r for r in self.results if r.success and not r.skipped]

    @property
    def failed(self) -> list[ExecutionResult]:
        return [r for r in self.results if not r.success and not r.skipped]

    @property
    def skipped(self) -> list[ExecutionResult]:
        return [r for r in self.results if r.skipped]
