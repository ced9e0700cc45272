# executor.py
# Invokes one step through its adapter, with bounded retry.
#
# Retries cover exceptions raised by the adapter only. An unknown tool (missing
# from the registry or unrouted by the adapter) and a payload that reports
# `success: false` are final on the first attempt.

import time
from collections.abc import Callable, Mapping
from typing import Any

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from plan_runner.config import MAX_ATTEMPTS, EngineConfig
from plan_runner.errors import AdapterNotFoundError
from plan_runner.models import ExecutionResult, ExecutionStep
from plan_runner.tools import ToolAdapter, ToolRegistry

logger = structlog.get_logger()


def _payload_failed(payload: Any) -> bool:
    return isinstance(payload, Mapping) and payload.get("success") is False


def _payload_error(payload: Mapping[str, Any]) -> str:
    for key in ("error", "message"):
        value = payload.get(key)
        if value:
            return str(value)
    return "tool reported failure"


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class StepExecutor:
    """
    Dispatches steps to a ToolAdapter via the dispatch table.

    `sleep` is the delay primitive between attempts; tests pass a no-op or a
    recorder. `user_id` is injected into every adapter call.
    """

    def __init__(
        self,
        adapter: ToolAdapter,
        registry: ToolRegistry,
        config: EngineConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
        user_id: str | None = None,
    ) -> None:
        self._adapter = adapter
        self._registry = registry
        self._config = config or EngineConfig()
        self._sleep = sleep
        self._user_id = user_id

    def _log_retry(self, step: ExecutionStep) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            logger.warning(
                "step.retry",
                step_id=step.id,
                tool=step.tool,
                attempt=retry_state.attempt_number,
                max_attempts=MAX_ATTEMPTS,
                delay=retry_state.next_action.sleep if retry_state.next_action else None,
                error=_describe(exc) if exc else None,
            )

        return before_sleep

    def execute_step(self, step: ExecutionStep, resolved_params: dict[str, Any]) -> ExecutionResult:
        spec = self._registry.get(step.tool)

        if spec is None:
            logger.error("step.unknown_tool", step_id=step.id, tool=step.tool)
            return ExecutionResult(
                step_id=step.id,
                tool=step.tool,
                description=step.description,
                params=resolved_params,
                success=False,
                error=f"unknown tool: {step.tool}",
            )

        adapter_params = spec.adapter_params(resolved_params, self._user_id)
        attempts = 0

        def call() -> Any:
            nonlocal attempts
            attempts += 1
            return self._adapter.invoke(spec.server, spec.operation, adapter_params)

        retrying = Retrying(
            stop=stop_after_attempt(MAX_ATTEMPTS),
            retry=retry_if_not_exception_type(AdapterNotFoundError),
            wait=wait_exponential(
                multiplier=self._config.retry_base_delay,
                max=self._config.retry_max_delay,
            ),
            sleep=self._sleep,
            before_sleep=self._log_retry(step),
            reraise=True,
        )

        base = dict(
            step_id=step.id,
            tool=step.tool,
            server=spec.server,
            description=step.description,
            params=resolved_params,
            kind=spec.kind,
        )

        try:
            payload = retrying(call)
        except AdapterNotFoundError as exc:
            logger.error("step.unrouted_tool", step_id=step.id, tool=step.tool, error=str(exc))
            return ExecutionResult(
                **base, success=False, error=f"unknown tool: {step.tool} ({exc})", attempts=attempts
            )
        except Exception as exc:
            logger.error("step.failed", step_id=step.id, tool=step.tool, attempts=attempts, error=_describe(exc))
            return ExecutionResult(**base, success=False, error=_describe(exc), attempts=attempts)

        if _payload_failed(payload):
            error = _payload_error(payload)
            logger.warning("step.payload_failure", step_id=step.id, tool=step.tool, error=error)
            return ExecutionResult(**base, result=payload, success=False, error=error, attempts=attempts)

        logger.info("step.succeeded", step_id=step.id, tool=step.tool, attempts=attempts)
        return ExecutionResult(**base, result=payload, success=True, attempts=attempts)
