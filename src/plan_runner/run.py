# run.py
# Entry point. Config and wiring only; no engine logic lives here.
#
# Tool handlers below are in-memory stand-ins so the pipeline can be exercised
# end to end; production deployments pass their own ToolAdapter.
#
# Usage:
#   plan-runner                 run the sample requests through the planner model
#   plan-runner plan.json ...   execute plan files directly (planner skipped)

import json
import sys
from pathlib import Path

from plan_runner.config import EngineConfig, configure_logging
from plan_runner.harness import Scaffold
from plan_runner.tools import LocalToolAdapter

CONTACTS = [
    {"name": "Mom", "email": "mom@example.com", "relationship": "mother"},
    {"name": "Tanaka", "email": "tanaka@example.com", "relationship": "friend"},
]

PRODUCTS = [
    {"productName": "Koshihikari Rice 5kg", "brand": "Uonuma", "price": 3980, "rating": 4.5, "primeEligible": True},
    {"productName": "Akitakomachi Rice 5kg", "brand": "Akita", "price": 3480, "rating": 4.3, "primeEligible": True},
]

# Sample requests. Each needs a different plan shape.
PROMPTS = [
    # Single step
    "I want to buy rice, around 5kg.",

    # Lookup → email, data flows through outputKey
    "Email mom that I'll visit next week.",

    # Conditional: only search umbrellas if the forecast mentions rain
    "What's the weather in Tokyo tomorrow? If it's going to rain, find me an umbrella.",
]


def _lookup_contact(params: dict) -> dict:
    query = str(params.get("query") or params.get("name") or "").lower()
    matches = [c for c in CONTACTS if query and (query in c["name"].lower() or query == c["relationship"])]
    return {"success": bool(matches), "contacts": matches}


def _search_products(params: dict) -> dict:
    query = str(params.get("query") or "").lower()
    matches = [p for p in PRODUCTS if any(word in p["productName"].lower() for word in query.split())]
    return {"success": True, "products": matches, "referenceId": "FX-DEMO-0001"}


def _send_email(params: dict) -> dict:
    if not params.get("to"):
        return {"success": False, "error": "missing recipient address"}
    return {"success": True, "messageId": f"msg-{abs(hash(params['to'])) % 10000:04d}"}


def _chat(params: dict) -> dict:
    return {"success": True, "response": f"(demo) No live model attached for: {params.get('message')}"}


def build_demo_adapter() -> LocalToolAdapter:
    return LocalToolAdapter(
        {
            ("user_profile", "lookup_contact"): _lookup_contact,
            ("user_profile", "get_address_book"): lambda params: {"success": True, "contacts": CONTACTS},
            ("shopping", "search_products"): _search_products,
            ("email", "send_email"): _send_email,
            ("ai_chat", "chat"): _chat,
            ("payment", "register_payment_method"): lambda params: {"success": True},
        }
    )


def main() -> None:
    config = EngineConfig.from_env()
    configure_logging(config.log_level)
    scaffold = Scaffold(adapter=build_demo_adapter(), config=config)

    plan_files = sys.argv[1:]
    if plan_files:
        for path in plan_files:
            raw_plan = json.loads(Path(path).read_text(encoding="utf-8"))
            outcome = scaffold.execute(raw_plan, request=path, user_id="demo-user")
            print(f"\n[RESULT]\n{outcome.message}\n")
        return

    for prompt in PROMPTS:
        outcome = scaffold.run(prompt, user_id="demo-user", user_name="Demo User")
        print(f"\n[RESULT]\n{outcome.message}\n")


if __name__ == "__main__":
    main()
