# harness.py
# End-to-end request pipeline.
#
# The Scaffold owns the request: it asks the planner model for a plan,
# validates it, hands it to a fresh PlanEngine, and returns the aggregated
# outcome. Models are passive responders; they never invoke tools.
#
# Control flow:
#   request → planner model → plan? → validation
#   → PlanEngine (per request) → aggregation → synthesis model
#
# All terminal output is delegated to display.py; no formatting here.

import json
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from openai import OpenAI, OpenAIError

from plan_runner import display
from plan_runner.aggregator import Synthesizer
from plan_runner.config import EngineConfig
from plan_runner.engine import PlanEngine
from plan_runner.errors import EmptyPlanError, PlanParseError, PlanValidationError, SynthesisError
from plan_runner.models import ExecutionReport
from plan_runner.tools import ToolAdapter, ToolRegistry, default_registry
from plan_runner.validator import parse_planner_response, validate_plan

logger = structlog.get_logger()


# ---------------------------------------------------------------------------
# System Prompts
# ---------------------------------------------------------------------------

PLANNER_PROMPT_TEMPLATE = """\
You are a request planner. Analyze the user's request and create an execution \
plan that orchestrates the available tools.

Output ONLY valid JSON. No markdown, no explanations.

AVAILABLE TOOLS:
{tools}

PLAN STRUCTURE:
{{
  "plan": {{
    "steps": [
      {{
        "id": "step_1",
        "tool": "tool_name",
        "params": {{ ... }},
        "description": "What this step does",
        "dependsOn": ["step_id"],
        "condition": {{"step": "step_id", "check": "contains", "value": "sunny"}},
        "outputKey": "key_name"
      }}
    ],
    "summary": "Brief description of the overall plan"
  }}
}}

dependsOn, condition and outputKey are optional.

CONDITION CHECKS:
- "contains" / "not_contains": result text does / does not contain the value (case-insensitive)
- "equals" / "not_equals": result text does / does not equal the value
- "truthy" / "falsy": the referenced step did / did not succeed

DATA FLOW:
A step with "outputKey": "k" publishes its result. Later steps may reference \
it in string params as "{{k}}" or "{{k.field}}" (for example "{{mom_contact.email}}"). \
A step that uses a reference must list the producing step in dependsOn.

If the request is unclear, respond with {{"plan": {{"steps": []}}}}.\
"""

SYNTHESIS_PROMPT = """\
You compose short, friendly replies that will be sent back to the user by fax.
Tell the user what was done and include the relevant details (email content,
product list, answers). End with next steps if applicable. Plain text only.\
"""

CLARIFICATION_INTENTS = [
    "商品を探す (Shopping)",
    "メールを送る (Send Email)",
    "質問する (Ask a Question)",
    "その他 (Other)",
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def build_planner_prompt(registry: ToolRegistry) -> str:
    lines = [f"- {spec.name}: {spec.summary}" for spec in registry]
    return PLANNER_PROMPT_TEMPLATE.format(tools="\n".join(lines))


def clarification_text(question: str, intents: list[str] | None = None) -> str:
    """Fax-ready clarification request listing what the user might have meant."""
    options = intents or CLARIFICATION_INTENTS
    rule = "━" * 30
    numbered = "\n".join(f"{i}. {intent}" for i, intent in enumerate(options, start=1))
    return "\n".join([
        rule,
        "ご確認のお願い / Clarification Needed",
        rule,
        "",
        question,
        "",
        "何をご希望ですか？",
        "What would you like to do?",
        "",
        numbered,
        "",
        rule,
        "番号に○をつけてFAXでご返信ください。",
        "Circle your choice and fax back.",
        rule,
    ])


def _final_message(report: ExecutionReport) -> str:
    if not report.success or not report.synthesized_summary:
        return report.message
    if not report.skipped_notes:
        return report.synthesized_summary
    notes = "\n".join(f"- {n}" for n in report.skipped_notes)
    return f"{report.synthesized_summary}\n\n※ 実行されなかった手順 / Skipped steps:\n{notes}"


@dataclass
class RunOutcome:
    """What the caller gets back from Scaffold.run."""

    message: str
    report: ExecutionReport | None = None
    needs_clarification: bool = False
    error: str | None = None
    plan: dict[str, Any] | None = field(default=None, repr=False)

    @property
    def success(self) -> bool:
        return self.report is not None and self.report.success


# ---------------------------------------------------------------------------
# Model-backed collaborators
# ---------------------------------------------------------------------------


class Planner(Protocol):
    def create_plan(self, request: str, user_name: str = "User") -> dict[str, Any] | None: ...


class _ChatModel:
    def __init__(self, client: OpenAI, model: str) -> None:
        self._client = client
        self._model = model

    def _call_model(self, messages: list[dict]) -> str:
        response = self._client.chat.completions.create(
            model=self._model,
            messages=messages,
        )
        return (response.choices[0].message.content or "").strip()


class OpenAIPlanner(_ChatModel):
    """Planning collaborator: free text in, raw plan dict (or None) out."""

    def __init__(self, client: OpenAI, model: str, registry: ToolRegistry) -> None:
        super().__init__(client, model)
        self._system_prompt = build_planner_prompt(registry)

    def create_plan(self, request: str, user_name: str = "User") -> dict[str, Any] | None:
        contextual = (
            f'[SENDER INFO: The user\'s name is "{user_name}". '
            "Use this name when signing emails or messages on their behalf.]\n\n"
            f"{request}"
        )
        response = self._call_model(
            [
                {"role": "system", "content": self._system_prompt},
                {"role": "user", "content": contextual},
            ]
        )
        return parse_planner_response(response)


class OpenAISynthesizer(_ChatModel):
    """Synthesis collaborator: completed steps in, summary text (or None) out."""

    def synthesize(
        self,
        request: str,
        completed: list[dict[str, Any]],
        plan_summary: str | None = None,
    ) -> str | None:
        if not completed:
            return None
        content = (
            f"USER'S ORIGINAL REQUEST:\n{request}\n\n"
            f"PLAN SUMMARY:\n{plan_summary or 'None'}\n\n"
            f"ACTIONS COMPLETED:\n{json.dumps(completed, ensure_ascii=False, indent=2, default=str)}"
        )
        try:
            text = self._call_model(
                [
                    {"role": "system", "content": SYNTHESIS_PROMPT},
                    {"role": "user", "content": content},
                ]
            )
        except OpenAIError as exc:
            raise SynthesisError(f"Synthesis model call failed: {exc}") from exc
        return text or None


# ---------------------------------------------------------------------------
# Scaffold
# ---------------------------------------------------------------------------


class Scaffold:
    """
    Request-level harness around PlanEngine.

    The scaffold is long-lived; each call to run() builds its own engine, so
    no execution state crosses requests.

    Example:
        scaffold = Scaffold(adapter=my_adapter)
        outcome = scaffold.run("Email mom that I'll visit next week", user_id="u-1")
    """

    def __init__(
        self,
        adapter: ToolAdapter,
        config: EngineConfig | None = None,
        registry: ToolRegistry | None = None,
        client: OpenAI | None = None,
        planner: Planner | None = None,
        synthesizer: Synthesizer | None = None,
    ) -> None:
        self._adapter = adapter
        self._config = config or EngineConfig.from_env()
        self._registry = registry or default_registry()
        self._client = client or OpenAI(
            base_url=self._config.api_base_url,
            api_key=self._config.api_key,
        )
        self.planner: Planner = planner or OpenAIPlanner(
            self._client, self._config.planner_model, self._registry
        )
        self.synthesizer: Synthesizer = synthesizer or OpenAISynthesizer(
            self._client, self._config.synthesis_model
        )
        display.banner(self._config.planner_model, self._config.synthesis_model)

    def _clarify(self, reason: str, error: str | None = None) -> RunOutcome:
        message = clarification_text(reason)
        display.clarification(message)
        return RunOutcome(message=message, needs_clarification=True, error=error)

    def execute(self, raw_plan: Any, request: str = "", user_id: str | None = None) -> RunOutcome:
        """Validate and run an already-built plan."""
        try:
            plan = validate_plan(raw_plan, self._registry)
        except EmptyPlanError as exc:
            logger.warning("harness.empty_plan")
            return self._clarify("ご依頼の内容を確認させてください。", error=str(exc))
        except PlanValidationError as exc:
            logger.error("harness.invalid_plan", error=str(exc))
            display.halt(f"Could not build a plan: {exc}")
            return self._clarify("ご依頼の内容を確認させてください。", error=str(exc))

        display.plan_parsed(plan)
        display.dependency_tree(plan)

        engine = PlanEngine(
            self._adapter,
            registry=self._registry,
            config=self._config,
            synthesizer=self.synthesizer,
            user_id=user_id,
        )
        report = engine.run(plan, request=request)
        display.execution_summary(report)

        message = _final_message(report)
        display.final_result(message)
        return RunOutcome(message=message, report=report, plan=raw_plan if isinstance(raw_plan, dict) else None)

    def run(self, request: str, user_id: str | None = None, user_name: str = "User") -> RunOutcome:
        """
        Full pipeline entry point.

        Returns a RunOutcome in all cases: a clarification request when no
        usable plan comes back, otherwise the execution report.
        """
        display.request_received(request)

        try:
            raw_plan = self.planner.create_plan(request, user_name=user_name)
        except PlanParseError as exc:
            logger.error("harness.plan_parse_failed", error=str(exc))
            return self._clarify("ご依頼の内容を確認させてください。", error=str(exc))
        except OpenAIError as exc:
            logger.error("harness.planner_unavailable", error=str(exc))
            return self._clarify("システムエラーが発生しました。もう一度お試しください。", error=str(exc))

        if raw_plan is None:
            logger.warning("harness.no_plan")
            return self._clarify("ご依頼の内容を確認させてください。")

        return self.execute(raw_plan, request=request, user_id=user_id)
