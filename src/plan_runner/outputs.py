# outputs.py
# Turns a raw tool payload into the StepOutput published to shared state.
#
# `formatted` is what "{key}" expands to; `fields` back "{key.field}".

import json
from collections.abc import Mapping
from typing import Any

from plan_runner.models import ResultKind
from plan_runner.variables import StepOutput


def _product_line(index: int, product: Mapping[str, Any]) -> str:
    name = product.get("productName") or product.get("title") or "Unknown"
    price = product.get("price")
    price_text = f"¥{price:,}" if isinstance(price, (int, float)) and not isinstance(price, bool) else "N/A"
    return f"{index}. {name} - {price_text}"


def _contact_line(contact: Mapping[str, Any]) -> str:
    relationship = contact.get("relationship")
    suffix = f" ({relationship})" if relationship else ""
    return f"{contact.get('name', '')}{suffix}: {contact.get('email', '')}"


def _format_products(result: Mapping[str, Any]) -> StepOutput:
    products = list(result.get("products") or [])
    formatted = (
        "\n".join(_product_line(i, p) for i, p in enumerate(products, start=1))
        if products
        else "No products found"
    )
    return StepOutput(
        formatted=formatted,
        fields={
            "products": products,
            "count": len(products),
            "referenceId": result.get("referenceId"),
        },
    )


def _format_contacts(result: Mapping[str, Any]) -> StepOutput:
    contacts = list(result.get("contacts") or [])
    if len(contacts) == 1:
        contact = contacts[0]
        return StepOutput(
            formatted=f"{contact.get('name', '')}: {contact.get('email', '')}",
            fields={
                "contact": contact,
                "email": contact.get("email"),
                "name": contact.get("name"),
                "count": 1,
            },
        )

    first = contacts[0] if contacts else {}
    return StepOutput(
        formatted="\n".join(_contact_line(c) for c in contacts) if contacts else "No contacts found",
        fields={
            "contacts": contacts,
            "count": len(contacts),
            # First match, for plans that only need one address.
            "email": first.get("email"),
            "name": first.get("name"),
        },
    )


def _format_chat(result: Mapping[str, Any]) -> StepOutput:
    response = result.get("response") or ""
    return StepOutput(formatted=str(response), fields={**result, "response": response})


def _format_message_sent(result: Mapping[str, Any]) -> StepOutput:
    sent = result.get("success") is not False
    return StepOutput(
        formatted="Email sent successfully" if sent else "Failed to send email",
        fields={**result, "success": sent, "messageId": result.get("messageId")},
    )


def _format_generic(result: Any) -> StepOutput:
    if isinstance(result, str):
        return StepOutput(formatted=result)
    if not isinstance(result, Mapping):
        return StepOutput(formatted=json.dumps(result, ensure_ascii=False, default=str))
    for key in ("message", "response"):
        if result.get(key):
            return StepOutput(formatted=str(result[key]), fields=dict(result))
    return StepOutput(
        formatted=json.dumps(result, ensure_ascii=False, indent=2, default=str),
        fields=dict(result),
    )


def format_step_output(kind: ResultKind, result: Any) -> StepOutput:
    """Build the shared-state entry for a successful step's payload."""
    if not isinstance(result, Mapping):
        return _format_generic(result)

    if kind is ResultKind.PRODUCT_LIST:
        return _format_products(result)
    if kind is ResultKind.CONTACT:
        return _format_contacts(result)
    if kind is ResultKind.CHAT_REPLY:
        return _format_chat(result)
    if kind is ResultKind.MESSAGE_SENT:
        return _format_message_sent(result)
    # PAYMENT and GENERIC carry no special shape.
    return _format_generic(result)
