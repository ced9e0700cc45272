# engine.py
# The per-execution control loop.
#
# One PlanEngine serves one plan execution: it owns the SharedState and the
# record of completed steps, so concurrent requests never share either.
#
# Per step: cancellation -> dependencies -> condition -> variables ->
# executor -> publish. Step failures never stop the loop.

import copy
import threading
import time
from collections.abc import Callable
from typing import Any

import structlog

from plan_runner.aggregator import Synthesizer, aggregate
from plan_runner.config import EngineConfig
from plan_runner.executor import StepExecutor
from plan_runner.models import (
    ExecutionPlan,
    ExecutionReport,
    ExecutionResult,
    ExecutionStep,
    SkipReason,
)
from plan_runner.outputs import format_step_output
from plan_runner.resolver import evaluate_condition, topological_order
from plan_runner.tools import ToolAdapter, ToolRegistry, default_registry
from plan_runner.validator import validate_plan
from plan_runner.variables import SharedState, resolve_params

logger = structlog.get_logger()


class PlanEngine:
    """
    Executes a single validated plan.

    Example:
        engine = PlanEngine(adapter, user_id="u-1")
        report = engine.run({"steps": [...]})
    """

    def __init__(
        self,
        adapter: ToolAdapter,
        registry: ToolRegistry | None = None,
        config: EngineConfig | None = None,
        synthesizer: Synthesizer | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        user_id: str | None = None,
    ) -> None:
        self._registry = registry or default_registry()
        self._config = config or EngineConfig()
        self._synthesizer = synthesizer
        self._clock = clock
        self._executor = StepExecutor(
            adapter,
            self._registry,
            config=self._config,
            sleep=sleep,
            user_id=user_id,
        )
        self.state = SharedState()
        self._completed: dict[str, Any] = {}
        self._started = False

    @property
    def completed_results(self) -> dict[str, Any]:
        """Payloads of steps that succeeded, keyed by step id."""
        return dict(self._completed)

    # ------------------------------------------------------------------
    # Skip records
    # ------------------------------------------------------------------

    def _skipped(
        self,
        step: ExecutionStep,
        reason: SkipReason,
        success: bool,
        error: str | None = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            step_id=step.id,
            tool=step.tool,
            server=self._registry.server_for(step.tool),
            description=step.description,
            params=copy.deepcopy(step.params),
            success=success,
            skipped=True,
            skip_reason=reason,
            error=error,
            kind=self._registry.kind_for(step.tool),
        )

    # ------------------------------------------------------------------
    # Step lifecycle
    # ------------------------------------------------------------------

    def _run_step(self, step: ExecutionStep) -> ExecutionResult:
        unmet = [dep for dep in step.depends_on if dep not in self._completed]
        if unmet:
            logger.warning("step.skipped", step_id=step.id, reason="unmet_dependency", unmet=unmet)
            return self._skipped(
                step,
                SkipReason.UNMET_DEPENDENCY,
                success=False,
                error=f"dependency not met: {', '.join(unmet)}",
            )

        if step.condition is not None and not evaluate_condition(step.condition, self._completed):
            logger.info(
                "step.skipped",
                step_id=step.id,
                reason="condition_false",
                condition=step.condition.model_dump(),
            )
            # A deliberate skip is not a fault.
            return self._skipped(step, SkipReason.CONDITION_FALSE, success=True)

        resolution = resolve_params(step.params, self.state)
        logger.info("step.executing", step_id=step.id, tool=step.tool)
        result = self._executor.execute_step(step, resolution.params)
        if resolution.unresolved:
            result = result.model_copy(update={"unresolved": list(resolution.unresolved)})

        if result.success:
            self._completed[step.id] = result.result
            if step.output_key:
                self.state.publish(step.output_key, format_step_output(result.kind, result.result))
        return result

    # ------------------------------------------------------------------
    # Plan execution
    # ------------------------------------------------------------------

    def execute_plan(
        self,
        plan: ExecutionPlan,
        cancel: threading.Event | None = None,
    ) -> list[ExecutionResult]:
        """
        Run every step of `plan` once, in dependency order.

        Once `cancel` is set or the configured plan timeout elapses, the
        remaining steps are recorded as cancelled skips. Calls already made
        are not undone.
        """
        if self._started:
            raise RuntimeError("PlanEngine instances execute exactly one plan.")
        self._started = True

        ordered = topological_order(plan.steps)
        deadline = (
            self._clock() + self._config.plan_timeout
            if self._config.plan_timeout is not None
            else None
        )
        results: list[ExecutionResult] = []

        logger.info("plan.executing", step_count=len(ordered), order=[s.id for s in ordered])

        for step in ordered:
            if cancel is not None and cancel.is_set():
                results.append(self._skipped(step, SkipReason.CANCELLED, success=True, error="cancelled"))
                continue
            if deadline is not None and self._clock() >= deadline:
                logger.warning("plan.timeout", step_id=step.id, timeout=self._config.plan_timeout)
                results.append(self._skipped(step, SkipReason.CANCELLED, success=True, error="plan timed out"))
                continue
            results.append(self._run_step(step))

        return results

    def run(
        self,
        raw_plan: Any,
        request: str = "",
        cancel: threading.Event | None = None,
    ) -> ExecutionReport:
        """Validate, execute and aggregate. Plan-shape errors propagate before any step runs."""
        plan = raw_plan if isinstance(raw_plan, ExecutionPlan) else validate_plan(raw_plan, self._registry)
        results = self.execute_plan(plan, cancel=cancel)
        return aggregate(results, plan, synthesizer=self._synthesizer, request=request)
