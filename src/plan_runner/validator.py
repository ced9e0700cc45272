# validator.py
# Plan ingestion: planner text -> raw plan dict -> validated ExecutionPlan.
#
# Every check here runs before any step executes. A plan that fails is never
# partially run.

import json
import re
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from plan_runner.errors import EmptyPlanError, PlanParseError, PlanValidationError
from plan_runner.models import ExecutionPlan, ExecutionStep
from plan_runner.resolver import topological_order
from plan_runner.tools import ToolRegistry

logger = structlog.get_logger()

_REQUIRED_FIELDS = ("id", "tool", "params")
_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


# ---------------------------------------------------------------------------
# Planner output parsing
# ---------------------------------------------------------------------------


def parse_planner_response(response: str) -> dict[str, Any] | None:
    """
    Extract the raw plan object from a planner response.

    Accepts a bare JSON object, a fenced ```json block, and the
    {"plan": {...}} wrapper. Returns None if the response holds no JSON
    object at all (the planner answered directly). Raises PlanParseError if
    JSON is present but malformed.
    """
    text = response.strip()
    fenced = _FENCE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        return None

    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as exc:
        raise PlanParseError(f"Planner response is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise PlanParseError("Planner response JSON is not an object.")

    inner = data.get("plan")
    if isinstance(inner, dict):
        return inner
    return data


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _check_required_fields(index: int, raw_step: Any) -> None:
    if not isinstance(raw_step, Mapping):
        raise PlanValidationError(f"Step #{index} is not an object.")

    missing = [name for name in _REQUIRED_FIELDS if raw_step.get(name) in (None, "")]
    if missing:
        label = raw_step.get("id") or f"#{index}"
        raise PlanValidationError(f"Step {label} is missing required field(s): {', '.join(missing)}.")

    if not isinstance(raw_step["params"], Mapping):
        raise PlanValidationError(f"Step {raw_step['id']} has non-object params.")


def _build_steps(raw_steps: list[Any]) -> list[ExecutionStep]:
    steps: list[ExecutionStep] = []
    for index, raw_step in enumerate(raw_steps):
        _check_required_fields(index, raw_step)
        try:
            steps.append(ExecutionStep.model_validate(raw_step))
        except ValidationError as exc:
            raise PlanValidationError(f"Step {raw_step.get('id')} is invalid: {exc}") from exc
    return steps


def _check_references(steps: list[ExecutionStep]) -> None:
    seen: set[str] = set()
    for step in steps:
        if step.id in seen:
            raise PlanValidationError(f"Duplicate step id '{step.id}'.")
        seen.add(step.id)

    for step in steps:
        dangling = [dep for dep in step.depends_on if dep not in seen]
        if dangling:
            raise PlanValidationError(
                f"Step {step.id} depends on unknown step(s): {', '.join(dangling)}."
            )
        if step.condition and step.condition.step not in seen:
            logger.warning(
                "plan.condition_references_unknown_step",
                step_id=step.id,
                condition_step=step.condition.step,
            )


def validate_plan(raw: Any, registry: ToolRegistry | None = None) -> ExecutionPlan:
    """
    Normalize and validate a raw plan object.

    Raises PlanValidationError (EmptyPlanError, CyclicDependencyError) on any
    shape problem. When a registry is given, tools it does not know are
    logged; they still fail later at the step level.
    """
    if not isinstance(raw, Mapping):
        raise PlanValidationError("Plan is not an object.")

    raw_steps = raw.get("steps")
    if raw_steps is None:
        raise PlanValidationError("Plan has no 'steps' array.")
    if not isinstance(raw_steps, list):
        raise PlanValidationError("Plan 'steps' is not an array.")
    if not raw_steps:
        raise EmptyPlanError("Plan has no steps.")

    steps = _build_steps(raw_steps)
    _check_references(steps)
    # Raises CyclicDependencyError, a PlanValidationError.
    topological_order(steps)

    if registry is not None:
        unknown = [s.tool for s in steps if s.tool not in registry]
        if unknown:
            logger.warning("plan.unknown_tools", tools=unknown)

    summary = raw.get("summary")
    plan = ExecutionPlan(steps=steps, summary=summary if isinstance(summary, str) else None)

    logger.info(
        "plan.validated",
        step_count=len(plan.steps),
        summary=plan.summary,
        steps=[
            {
                "id": s.id,
                "tool": s.tool,
                "has_deps": bool(s.depends_on),
                "has_condition": s.condition is not None,
                "has_output_key": s.output_key is not None,
            }
            for s in plan.steps
        ],
    )
    return plan
