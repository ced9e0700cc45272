# resolver.py
# Step ordering and condition evaluation.
#
# Both operate on validated plans: ordering follows dependsOn only, and
# conditions read from the results of steps that already succeeded.

import json
from collections.abc import Mapping
from typing import Any

import structlog

from plan_runner.config import UNKNOWN_CHECK_RESULT
from plan_runner.errors import CyclicDependencyError
from plan_runner.models import ConditionCheck, ExecutionStep, StepCondition

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# Dependency ordering
# ---------------------------------------------------------------------------

_VISITING = 1
_DONE = 2


def topological_order(steps: list[ExecutionStep]) -> list[ExecutionStep]:
    """
    Depth-first ordering: every step follows all of its dependencies.

    Steps are visited in plan order and dependencies in declared order, so
    independent steps keep their first-seen position. Unknown dependency ids
    are ignored here (the validator rejects them). Raises
    CyclicDependencyError on a cycle.
    """
    by_id = {step.id: step for step in steps}
    state: dict[str, int] = {}
    path: list[str] = []
    ordered: list[ExecutionStep] = []

    def visit(step_id: str) -> None:
        mark = state.get(step_id)
        if mark == _DONE:
            return
        if mark == _VISITING:
            start = path.index(step_id)
            raise CyclicDependencyError(path[start:] + [step_id])

        step = by_id.get(step_id)
        if step is None:
            return

        state[step_id] = _VISITING
        path.append(step_id)
        for dep_id in step.depends_on:
            visit(dep_id)
        path.pop()
        state[step_id] = _DONE
        ordered.append(step)

    for step in steps:
        visit(step.id)

    return ordered


# ---------------------------------------------------------------------------
# Conditions
# ---------------------------------------------------------------------------


def _canonical_text(result: Any) -> str:
    """Best-effort text of a result: response, then message, then the whole payload."""
    if isinstance(result, Mapping):
        for key in ("response", "message"):
            value = result.get(key)
            if value:
                return str(value)
        return json.dumps(result, ensure_ascii=False, default=str, sort_keys=True)
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False, default=str)


def _extract_value(condition: StepCondition, result: Any) -> str:
    if condition.field:
        if isinstance(result, Mapping):
            value = result.get(condition.field)
        else:
            value = getattr(result, condition.field, None)
        return "" if value is None else str(value)
    return _canonical_text(result)


def _is_successful(result: Any) -> bool:
    if isinstance(result, Mapping):
        return result.get("success") is not False
    return True


def evaluate_condition(condition: StepCondition, prior_results: Mapping[str, Any]) -> bool:
    """
    Decide whether a conditionally gated step should run.

    `prior_results` holds the payloads of steps that completed successfully.
    A reference to any other step (unknown, skipped, failed) is False.
    """
    if condition.step not in prior_results:
        logger.info(
            "condition.missing_step_result",
            step=condition.step,
            check=condition.check,
        )
        return False

    result = prior_results[condition.step]

    try:
        check = ConditionCheck(condition.check)
    except ValueError:
        logger.warning(
            "condition.unknown_check",
            step=condition.step,
            check=condition.check,
            outcome=UNKNOWN_CHECK_RESULT,
        )
        return UNKNOWN_CHECK_RESULT

    if check is ConditionCheck.TRUTHY:
        return _is_successful(result)
    if check is ConditionCheck.FALSY:
        return not _is_successful(result)

    actual = _extract_value(condition, result).lower()
    expected = (condition.value or "").lower()

    if check is ConditionCheck.CONTAINS:
        return expected in actual
    if check is ConditionCheck.NOT_CONTAINS:
        return expected not in actual
    if check is ConditionCheck.EQUALS:
        return actual == expected
    # NOT_EQUALS
    return actual != expected
