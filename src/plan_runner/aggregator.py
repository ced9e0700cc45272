# aggregator.py
# Folds per-step results into one ExecutionReport.
#
# Overall success is decided here and only here. Final-output selection is a
# fixed priority over ResultKind, never a probe of payload fields.

from collections.abc import Mapping
from typing import Any, Protocol

import structlog

from plan_runner.models import ExecutionPlan, ExecutionReport, ExecutionResult, ResultKind, SkipReason

logger = structlog.get_logger()

FAILURE_MESSAGE = (
    "申し訳ございません。処理中にエラーが発生しました。もう一度お試しいただくか、サポートまでご連絡ください。\n"
    "Sorry, something went wrong. Please try again or contact support."
)

# Highest first.
FINAL_OUTPUT_PRIORITY: tuple[ResultKind, ...] = (
    ResultKind.PRODUCT_LIST,
    ResultKind.CONTACT,
    ResultKind.MESSAGE_SENT,
    ResultKind.PAYMENT,
    ResultKind.CHAT_REPLY,
    ResultKind.GENERIC,
)

_SECTION_BREAK = "\n\n---\n\n"


class Synthesizer(Protocol):
    """External collaborator that writes a natural-language summary, or declines with None."""

    def synthesize(
        self,
        request: str,
        completed: list[dict[str, Any]],
        plan_summary: str | None = None,
    ) -> str | None: ...


# ---------------------------------------------------------------------------
# Success and final output
# ---------------------------------------------------------------------------


def overall_success(results: list[ExecutionResult]) -> bool:
    """False iff at least one step that actually ran failed."""
    return not any(not r.success and not r.skipped for r in results)


def select_final_output(results: list[ExecutionResult]) -> tuple[Any, ResultKind | None]:
    completed = [r for r in results if r.success and not r.skipped]
    for kind in FINAL_OUTPUT_PRIORITY:
        for result in completed:
            if result.kind is kind:
                return result.result, kind
    return None, None


# ---------------------------------------------------------------------------
# User-facing text
# ---------------------------------------------------------------------------


def format_products(products: list[Mapping[str, Any]], reference_id: str | None = None) -> str:
    lines = []
    for i, p in enumerate(products, start=1):
        brand = f"【{p['brand']}】" if p.get("brand") else ""
        name = p.get("productName") or str(p.get("title") or "")[:40] or "Unknown"
        quantity = f" {p['quantity']}" if p.get("quantity") else ""
        price = p.get("price")
        price_text = f"¥{price:,}" if isinstance(price, (int, float)) and price > 0 else "価格確認中"
        prime = "✓Prime" if p.get("primeEligible") else ""
        rating = f"{p['rating']}★" if p.get("rating") else ""

        entry = f"{i}. {brand}{name}{quantity}\n   {price_text} {prime} {rating}".rstrip()
        if p.get("description"):
            entry += f"\n   {p['description']}"
        lines.append(entry)

    parts = [
        "商品検索結果 / Product Search Results",
        "━" * 30,
        "",
        "\n\n".join(lines),
        "",
        "━" * 30,
        "ご希望の商品番号に○をつけてFAXでご返信ください。",
        "Circle your choice and fax back.",
    ]
    if reference_id:
        parts.append(f"\n参照番号 / Reference: {reference_id}")
    parts.append("━" * 30)
    return "\n".join(parts)


def _section_for(result: ExecutionResult, chat_count: int) -> str | None:
    payload = result.result if isinstance(result.result, Mapping) else {}
    label = result.description or result.tool

    if result.kind is ResultKind.PRODUCT_LIST:
        products = list(payload.get("products") or [])[:4]
        if not products:
            return None
        return format_products(products, payload.get("referenceId"))

    if result.kind is ResultKind.MESSAGE_SENT:
        recipient = (
            result.params.get("recipientName")
            or result.params.get("recipientEmail")
            or "recipient"
        )
        return f"✓ メール送信完了 / Email sent to {recipient}"

    if result.kind is ResultKind.CHAT_REPLY:
        response = payload.get("response")
        if not response:
            return None
        if chat_count > 1 and result.description:
            return f"【{result.description}】\n{response}"
        return str(response)

    if result.kind is ResultKind.PAYMENT:
        return "✓ 支払い処理完了 / Payment processed"

    if result.kind is ResultKind.CONTACT:
        contacts = list(payload.get("contacts") or [])
        if not contacts:
            return f"✓ {label} completed"
        return "\n".join(f"• {c.get('name', '')}: {c.get('email', '')}" for c in contacts)

    if result.result is None:
        return None
    return f"✓ {label} completed"


def skipped_notes(results: list[ExecutionResult]) -> list[str]:
    notes = []
    for r in results:
        if not r.skipped:
            continue
        label = r.description or r.tool
        if r.skip_reason is SkipReason.CONDITION_FALSE:
            notes.append(f"{label}: 条件が満たされなかったため実行されませんでした / condition not met")
        elif r.skip_reason is SkipReason.CANCELLED:
            notes.append(f"{label}: 中断されました / cancelled")
        else:
            notes.append(f"{label}: {r.error or 'dependency not met'}")
    return notes


def compose_message(results: list[ExecutionResult]) -> str:
    """Text for the end user: successful outputs plus a note on what was skipped."""
    if not overall_success(results):
        return FAILURE_MESSAGE

    completed = [r for r in results if r.success and not r.skipped]
    chat_count = sum(1 for r in completed if r.kind is ResultKind.CHAT_REPLY)

    sections = [s for s in (_section_for(r, chat_count) for r in completed) if s]

    notes = skipped_notes(results)
    if notes:
        sections.append("※ 実行されなかった手順 / Skipped steps:\n" + "\n".join(f"- {n}" for n in notes))

    return _SECTION_BREAK.join(sections)


# ---------------------------------------------------------------------------
# Report
# ---------------------------------------------------------------------------


def _synthesize(
    synthesizer: Synthesizer,
    request: str,
    results: list[ExecutionResult],
    plan_summary: str | None,
) -> str | None:
    completed = [
        {
            "tool": r.tool,
            "description": r.description,
            "params": r.params,
            "result": r.result,
        }
        for r in results
        if r.success and not r.skipped
    ]
    if not completed:
        return None

    try:
        text = synthesizer.synthesize(request, completed, plan_summary)
    except Exception as exc:
        logger.warning("aggregate.synthesis_failed", error=str(exc), error_type=type(exc).__name__)
        return None
    return text or None


def aggregate(
    results: list[ExecutionResult],
    plan: ExecutionPlan | None = None,
    synthesizer: Synthesizer | None = None,
    request: str = "",
) -> ExecutionReport:
    success = overall_success(results)
    final_output, final_kind = select_final_output(results)
    plan_summary = plan.summary if plan else None

    synthesized = None
    if synthesizer is not None:
        synthesized = _synthesize(synthesizer, request, results, plan_summary)

    report = ExecutionReport(
        success=success,
        results=list(results),
        final_output=final_output,
        final_kind=final_kind,
        message=compose_message(results),
        synthesized_summary=synthesized,
        skipped_notes=skipped_notes(results),
        plan_summary=plan_summary,
    )

    logger.info(
        "plan.aggregated",
        success=success,
        total=len(results),
        succeeded=len(report.succeeded),
        failed=len(report.failed),
        skipped=len(report.skipped),
        final_kind=final_kind.value if final_kind else None,
    )
    return report
