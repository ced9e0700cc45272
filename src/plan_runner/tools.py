# tools.py
# Tool dispatch table and the adapter contract.
#
# A plan names tools symbolically ("email_send"). The registry maps each name
# to the (server, operation) pair an adapter understands and to a mapper that
# reshapes plan params into the adapter's params. Adding a tool means one
# register() call plus one adapter handler; the executor never branches on
# tool names.

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Protocol

from plan_runner.errors import AdapterNotFoundError
from plan_runner.models import ResultKind

ParamMapper = Callable[[dict[str, Any], str | None], dict[str, Any]]
Handler = Callable[[dict[str, Any]], Any]


class ToolAdapter(Protocol):
    """Anything that can perform a (server, operation) call."""

    def invoke(self, server: str, operation: str, params: dict[str, Any]) -> Any: ...


# ---------------------------------------------------------------------------
# Param mappers
# ---------------------------------------------------------------------------


def _passthrough(params: dict[str, Any], user_id: str | None) -> dict[str, Any]:
    return {"userId": user_id, **params}


def _map_search_products(params: dict[str, Any], user_id: str | None) -> dict[str, Any]:
    return {
        "userId": user_id,
        "query": params.get("query"),
        "filters": {
            "priceMin": params.get("minPrice"),
            "priceMax": params.get("maxPrice"),
            "primeOnly": params.get("primeOnly", True),
            "minRating": 3.5,
        },
    }


def _map_send_email(params: dict[str, Any], user_id: str | None) -> dict[str, Any]:
    return {
        "userId": user_id,
        "to": params.get("recipientEmail"),
        "recipientName": params.get("recipientName"),
        "subject": params.get("subject") or "Message from Faxi",
        "body": params.get("body"),
    }


def _map_chat(params: dict[str, Any], user_id: str | None) -> dict[str, Any]:
    return {
        "userId": user_id,
        "message": params.get("question"),
        "context": params.get("context"),
    }


def _map_register_payment(params: dict[str, Any], user_id: str | None) -> dict[str, Any]:
    return {"userId": user_id, "methodType": params.get("methodType")}


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolSpec:
    """One dispatch-table entry."""

    name: str
    server: str
    operation: str
    kind: ResultKind = ResultKind.GENERIC
    map_params: ParamMapper = _passthrough
    summary: str = ""

    def adapter_params(self, params: dict[str, Any], user_id: str | None = None) -> dict[str, Any]:
        return self.map_params(params, user_id)


class ToolRegistry:
    """Closed set of known tools. Registration of a taken name is an error."""

    def __init__(self, specs: Iterable[ToolSpec] = ()) -> None:
        self._specs: dict[str, ToolSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ToolSpec) -> ToolSpec:
        if spec.name in self._specs:
            raise ValueError(f"Tool '{spec.name}' is already registered.")
        self._specs[spec.name] = spec
        return spec

    def get(self, name: str) -> ToolSpec | None:
        return self._specs.get(name)

    def server_for(self, name: str) -> str:
        spec = self._specs.get(name)
        return spec.server if spec else "unknown"

    def kind_for(self, name: str) -> ResultKind:
        spec = self._specs.get(name)
        return spec.kind if spec else ResultKind.GENERIC

    def names(self) -> list[str]:
        return list(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._specs

    def __iter__(self):
        return iter(self._specs.values())

    def __len__(self) -> int:
        return len(self._specs)


DEFAULT_TOOLS: tuple[ToolSpec, ...] = (
    ToolSpec(
        "shopping_search_products", "shopping", "search_products",
        kind=ResultKind.PRODUCT_LIST, map_params=_map_search_products,
        summary='Search for products. params: { query, maxPrice?, minPrice?, primeOnly? }',
    ),
    ToolSpec(
        "shopping_create_order", "shopping", "create_order",
        summary="Create an order for a product. params: { productId, quantity? }",
    ),
    ToolSpec(
        "email_send", "email", "send_email",
        kind=ResultKind.MESSAGE_SENT, map_params=_map_send_email,
        summary="Send an email. params: { recipientEmail?, recipientName?, subject?, body }",
    ),
    ToolSpec(
        "ai_chat_question", "ai_chat", "chat",
        kind=ResultKind.CHAT_REPLY, map_params=_map_chat,
        summary="Ask a question or get advice. params: { question, context? }",
    ),
    ToolSpec(
        "payment_register", "payment", "register_payment_method",
        kind=ResultKind.PAYMENT, map_params=_map_register_payment,
        summary='Register a payment method. params: { methodType: "credit_card" | "bank_transfer" | "convenience_store" }',
    ),
    ToolSpec(
        "payment_check_status", "payment", "check_payment_status",
        kind=ResultKind.PAYMENT,
        summary="Check payment/order status. params: { orderId }",
    ),
    ToolSpec(
        "user_profile_get_contacts", "user_profile", "get_address_book",
        kind=ResultKind.CONTACT,
        summary="List the user's saved contacts. params: {}",
    ),
    ToolSpec(
        "user_profile_add_contact", "user_profile", "add_contact",
        summary="Save a new contact. params: { name, email, relationship? }",
    ),
    ToolSpec(
        "user_profile_update_contact", "user_profile", "update_contact",
        summary="Update a saved contact. params: { name, email?, relationship? }",
    ),
    ToolSpec(
        "user_profile_lookup_contact", "user_profile", "lookup_contact",
        kind=ResultKind.CONTACT,
        summary="Look up a contact's email address. params: { query }",
    ),
    ToolSpec(
        "user_profile_delete_contact", "user_profile", "delete_contact",
        summary="Delete a saved contact. params: { name }",
    ),
    ToolSpec(
        "user_profile_get_profile", "user_profile", "get_user_profile",
        summary="Read the user's profile. params: {}",
    ),
)


def default_registry() -> ToolRegistry:
    """Fresh registry holding the built-in dispatch table."""
    return ToolRegistry(DEFAULT_TOOLS)


# ---------------------------------------------------------------------------
# In-process adapter
# ---------------------------------------------------------------------------


class LocalToolAdapter:
    """
    Routes (server, operation) pairs to plain Python callables.

    Handlers receive the adapter-shaped params and return the payload.
    """

    def __init__(self, handlers: dict[tuple[str, str], Handler] | None = None) -> None:
        self._handlers: dict[tuple[str, str], Handler] = dict(handlers or {})

    def route(self, server: str, operation: str, handler: Handler) -> None:
        self._handlers[(server, operation)] = handler

    def invoke(self, server: str, operation: str, params: dict[str, Any]) -> Any:
        handler = self._handlers.get((server, operation))
        if handler is None:
            raise AdapterNotFoundError(f"No handler routed for {server}.{operation}.")
        return handler(params)
