# config.py
# Runtime configuration and fixed execution policy.
#
# Tunables come from the environment (a local .env is honoured). Policy that
# callers must be able to rely on lives in module constants, not in config.

import logging
import os

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


# Total adapter invocations per step, first attempt included.
MAX_ATTEMPTS = 3

# Outcome of a condition whose `check` is not a known ConditionCheck.
# Permissive; flagged for product review since missing step references fail closed.
UNKNOWN_CHECK_RESULT = True

DEFAULT_MODEL = "anthropic/claude-3.5-haiku"
DEFAULT_API_BASE_URL = "https://openrouter.ai/api/v1"


def _env_float(name: str, default: float | None) -> float | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return float(raw)


class EngineConfig(BaseModel):
    """Tunable settings for plan execution and the model-backed collaborators."""

    retry_base_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=10.0, ge=0)
    plan_timeout: float | None = Field(default=None, gt=0, description="Wall-clock budget per plan, seconds.")
    log_level: str = "INFO"
    planner_model: str = DEFAULT_MODEL
    synthesis_model: str = DEFAULT_MODEL
    api_base_url: str = DEFAULT_API_BASE_URL
    api_key: str | None = None

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            retry_base_delay=_env_float("PLAN_RUNNER_RETRY_BASE_DELAY", 1.0),
            retry_max_delay=_env_float("PLAN_RUNNER_RETRY_MAX_DELAY", 10.0),
            plan_timeout=_env_float("PLAN_RUNNER_PLAN_TIMEOUT", None),
            log_level=os.getenv("PLAN_RUNNER_LOG_LEVEL", "INFO"),
            planner_model=os.getenv("PLAN_RUNNER_PLANNER_MODEL", DEFAULT_MODEL),
            synthesis_model=os.getenv("PLAN_RUNNER_SYNTHESIS_MODEL", DEFAULT_MODEL),
            api_base_url=os.getenv("PLAN_RUNNER_API_BASE_URL", DEFAULT_API_BASE_URL),
            api_key=os.getenv("OPENROUTER_API_KEY"),
        )


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through stdlib logging with a console renderer."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO))
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
