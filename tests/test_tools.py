import pytest
from unittest.mock import MagicMock

from plan_runner.errors import AdapterNotFoundError
from plan_runner.models import ResultKind
from plan_runner.tools import (
    DEFAULT_TOOLS,
    LocalToolAdapter,
    ToolRegistry,
    ToolSpec,
    default_registry,
)

# ---------------------------------------------------------------------------
# Dispatch Table Tests
# ---------------------------------------------------------------------------

def test_default_registry_covers_builtin_tools():
    registry = default_registry()
    assert len(registry) == len(DEFAULT_TOOLS)
    assert "email_send" in registry
    assert registry.get("email_send").server == "email"
    assert registry.get("email_send").operation == "send_email"
    assert registry.get("user_profile_lookup_contact").operation == "lookup_contact"

def test_default_registry_is_fresh_per_call():
    first = default_registry()
    first.register(ToolSpec("weather", "ai_chat", "weather"))
    assert "weather" not in default_registry()

def test_registry_rejects_duplicate_registration():
    registry = ToolRegistry([ToolSpec("search", "shopping", "search_products")])
    with pytest.raises(ValueError, match="already registered"):
        registry.register(ToolSpec("search", "other", "other"))

def test_registry_unknown_tool_lookups():
    registry = ToolRegistry()
    assert registry.get("nope") is None
    assert registry.server_for("nope") == "unknown"
    assert registry.kind_for("nope") is ResultKind.GENERIC

def test_registry_kinds():
    registry = default_registry()
    assert registry.kind_for("shopping_search_products") is ResultKind.PRODUCT_LIST
    assert registry.kind_for("ai_chat_question") is ResultKind.CHAT_REPLY
    assert registry.kind_for("email_send") is ResultKind.MESSAGE_SENT

# ---------------------------------------------------------------------------
# Param Mapper Tests
# ---------------------------------------------------------------------------

def test_email_mapper_renames_recipient():
    spec = default_registry().get("email_send")
    mapped = spec.adapter_params(
        {"recipientEmail": "mom@example.com", "recipientName": "Mom", "body": "Hi"},
        user_id="u-1",
    )
    assert mapped == {
        "userId": "u-1",
        "to": "mom@example.com",
        "recipientName": "Mom",
        "subject": "Message from Faxi",
        "body": "Hi",
    }

def test_search_mapper_builds_filters():
    spec = default_registry().get("shopping_search_products")
    mapped = spec.adapter_params({"query": "rice", "maxPrice": 5000}, user_id="u-1")
    assert mapped["query"] == "rice"
    assert mapped["filters"]["priceMax"] == 5000
    assert mapped["filters"]["priceMin"] is None
    assert mapped["filters"]["primeOnly"] is True

def test_chat_mapper_uses_message_field():
    spec = default_registry().get("ai_chat_question")
    mapped = spec.adapter_params({"question": "Weather?"}, user_id=None)
    assert mapped == {"userId": None, "message": "Weather?", "context": None}

def test_passthrough_mapper_keeps_params():
    spec = default_registry().get("shopping_create_order")
    mapped = spec.adapter_params({"productId": "B01", "quantity": 2}, user_id="u-9")
    assert mapped == {"userId": "u-9", "productId": "B01", "quantity": 2}

# ---------------------------------------------------------------------------
# Local Adapter Tests
# ---------------------------------------------------------------------------

def test_local_adapter_routes_to_handler():
    handler = MagicMock(return_value={"success": True})
    adapter = LocalToolAdapter({("email", "send_email"): handler})

    result = adapter.invoke("email", "send_email", {"to": "a@b.c"})

    assert result == {"success": True}
    handler.assert_called_once_with({"to": "a@b.c"})

def test_local_adapter_route_registration():
    adapter = LocalToolAdapter()
    adapter.route("ai_chat", "chat", lambda params: {"response": params["message"]})
    assert adapter.invoke("ai_chat", "chat", {"message": "hi"}) == {"response": "hi"}

def test_local_adapter_missing_handler_raises():
    adapter = LocalToolAdapter()
    with pytest.raises(AdapterNotFoundError, match="payment.register_payment_method"):
        adapter.invoke("payment", "register_payment_method", {})
