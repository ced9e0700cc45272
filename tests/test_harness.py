import json
import pytest
from unittest.mock import MagicMock, patch
from openai import OpenAIError

from plan_runner.aggregator import FAILURE_MESSAGE
from plan_runner.config import EngineConfig
from plan_runner.errors import SynthesisError
from plan_runner.harness import (
    CLARIFICATION_INTENTS,
    OpenAIPlanner,
    OpenAISynthesizer,
    Scaffold,
    build_planner_prompt,
    clarification_text,
)
from plan_runner.tools import default_registry


def _completion(text):
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=text))]
    return response


def _client(*texts):
    client = MagicMock()
    client.chat.completions.create.side_effect = [_completion(t) for t in texts]
    return client


def _scaffold(client, adapter=None):
    return Scaffold(
        adapter or MagicMock(),
        config=EngineConfig(retry_base_delay=0.0, retry_max_delay=0.0),
        client=client,
    )


CHAT_PLAN = json.dumps({
    "plan": {
        "steps": [
            {
                "id": "step_1",
                "tool": "ai_chat_question",
                "params": {"question": "Will it rain?"},
                "description": "Ask about the weather",
            }
        ],
        "summary": "Answer a weather question",
    }
})

# ---------------------------------------------------------------------------
# Prompt Tests
# ---------------------------------------------------------------------------

def test_build_planner_prompt_lists_every_tool():
    registry = default_registry()
    prompt = build_planner_prompt(registry)
    for name in registry.names():
        assert f"- {name}:" in prompt
    assert '"{mom_contact.email}"' in prompt
    assert '"dependsOn": ["step_id"]' in prompt

def test_clarification_text_numbers_intents():
    text = clarification_text("What do you need?")
    assert "What do you need?" in text
    for i, intent in enumerate(CLARIFICATION_INTENTS, start=1):
        assert f"{i}. {intent}" in text

def test_clarification_text_custom_intents():
    text = clarification_text("Which one?", intents=["Rice", "Tea"])
    assert "1. Rice\n2. Tea" in text

# ---------------------------------------------------------------------------
# Collaborator Tests
# ---------------------------------------------------------------------------

def test_planner_sends_sender_info_and_parses_plan():
    client = _client(f"```json\n{CHAT_PLAN}\n```")
    planner = OpenAIPlanner(client, "test-model", default_registry())

    raw = planner.create_plan("Will it rain?", user_name="Hanako")

    assert raw["steps"][0]["tool"] == "ai_chat_question"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "test-model"
    assert kwargs["messages"][0]["role"] == "system"
    assert 'The user\'s name is "Hanako"' in kwargs["messages"][1]["content"]

def test_synthesizer_wraps_model_errors():
    client = MagicMock()
    client.chat.completions.create.side_effect = OpenAIError("rate limited")
    synthesizer = OpenAISynthesizer(client, "test-model")

    with pytest.raises(SynthesisError, match="rate limited"):
        synthesizer.synthesize("req", [{"tool": "t", "result": {}}])

def test_synthesizer_declines_without_completed_steps():
    client = MagicMock()
    assert OpenAISynthesizer(client, "test-model").synthesize("req", []) is None
    client.chat.completions.create.assert_not_called()

def test_synthesizer_empty_reply_is_none():
    synthesizer = OpenAISynthesizer(_client("   "), "test-model")
    assert synthesizer.synthesize("req", [{"tool": "t"}]) is None

# ---------------------------------------------------------------------------
# Scaffold Pipeline Tests
# ---------------------------------------------------------------------------

def test_run_executes_plan_and_returns_synthesis():
    adapter = MagicMock()
    adapter.invoke.return_value = {"success": True, "response": "No rain expected."}
    scaffold = _scaffold(_client(CHAT_PLAN, "No rain tomorrow, enjoy your walk."), adapter)

    outcome = scaffold.run("Will it rain?", user_id="u-1")

    assert outcome.success is True
    assert outcome.needs_clarification is False
    assert outcome.message == "No rain tomorrow, enjoy your walk."
    assert outcome.report.final_output == {"success": True, "response": "No rain expected."}
    adapter.invoke.assert_called_once_with(
        "ai_chat", "chat", {"userId": "u-1", "message": "Will it rain?", "context": None}
    )

def test_run_falls_back_to_composed_message_without_synthesis():
    adapter = MagicMock()
    adapter.invoke.return_value = {"success": True, "response": "No rain expected."}
    scaffold = _scaffold(_client(CHAT_PLAN, ""), adapter)

    outcome = scaffold.run("Will it rain?")

    assert outcome.message == "No rain expected."

def test_run_failed_step_returns_failure_message():
    adapter = MagicMock()
    adapter.invoke.return_value = {"success": False, "error": "model offline"}
    client = _client(CHAT_PLAN)
    scaffold = _scaffold(client, adapter)

    outcome = scaffold.run("Will it rain?")

    assert outcome.success is False
    assert outcome.message == FAILURE_MESSAGE
    # Only the planner was consulted.
    assert client.chat.completions.create.call_count == 1

def test_run_empty_plan_asks_for_clarification():
    adapter = MagicMock()
    scaffold = _scaffold(_client('{"plan": {"steps": []}}'), adapter)

    outcome = scaffold.run("hmm")

    assert outcome.needs_clarification is True
    assert outcome.report is None
    assert "Clarification Needed" in outcome.message
    adapter.invoke.assert_not_called()

def test_run_malformed_plan_asks_for_clarification():
    scaffold = _scaffold(_client("{ broken json }"))
    outcome = scaffold.run("hmm")
    assert outcome.needs_clarification is True
    assert outcome.error is not None

def test_run_without_json_asks_for_clarification():
    scaffold = _scaffold(_client("I am not sure what you mean."))
    outcome = scaffold.run("hmm")
    assert outcome.needs_clarification is True
    assert outcome.error is None

def test_run_planner_unavailable():
    client = MagicMock()
    client.chat.completions.create.side_effect = OpenAIError("connection reset")
    outcome = _scaffold(client).run("hmm")
    assert outcome.needs_clarification is True
    assert "システムエラーが発生しました" in outcome.message
    assert outcome.error == "connection reset"

@patch("plan_runner.harness.display")
def test_execute_invalid_plan_halts_and_clarifies(mock_display):
    adapter = MagicMock()
    scaffold = _scaffold(MagicMock(), adapter)
    plan = {
        "steps": [
            {"id": "a", "tool": "t", "params": {}, "dependsOn": ["b"]},
            {"id": "b", "tool": "t", "params": {}, "dependsOn": ["a"]},
        ]
    }

    outcome = scaffold.execute(plan)

    assert outcome.needs_clarification is True
    assert "cycle" in outcome.error
    mock_display.halt.assert_called_once()
    mock_display.clarification.assert_called_once()
    adapter.invoke.assert_not_called()

@patch("plan_runner.harness.display")
def test_execute_reports_through_display(mock_display):
    adapter = MagicMock()
    adapter.invoke.return_value = {"success": True, "response": "hi"}
    scaffold = _scaffold(_client("Summary text"), adapter)

    outcome = scaffold.execute(json.loads(CHAT_PLAN)["plan"], request="say hi")

    assert outcome.message == "Summary text"
    assert outcome.plan["summary"] == "Answer a weather question"
    mock_display.plan_parsed.assert_called_once()
    mock_display.dependency_tree.assert_called_once()
    mock_display.execution_summary.assert_called_once_with(outcome.report)
    mock_display.final_result.assert_called_once_with("Summary text")

def test_injected_planner_and_synthesizer_replace_model_calls():
    client = MagicMock()
    planner = MagicMock()
    planner.create_plan.return_value = json.loads(CHAT_PLAN)
    synthesizer = MagicMock()
    synthesizer.synthesize.return_value = "Done."
    adapter = MagicMock()
    adapter.invoke.return_value = {"success": True, "response": "ok"}

    scaffold = Scaffold(
        adapter,
        config=EngineConfig(),
        client=client,
        planner=planner,
        synthesizer=synthesizer,
    )
    outcome = scaffold.run("Will it rain?", user_name="Hanako")

    planner.create_plan.assert_called_once_with("Will it rain?", user_name="Hanako")
    assert outcome.message == "Done."
    client.chat.completions.create.assert_not_called()

def test_synthesized_message_keeps_skipped_steps_note():
    adapter = MagicMock()
    adapter.invoke.return_value = {"success": True, "response": "Sunny"}
    plan = {
        "steps": [
            {"id": "w", "tool": "ai_chat_question", "params": {"question": "weather?"}},
            {
                "id": "u",
                "tool": "shopping_search_products",
                "params": {"query": "umbrella"},
                "description": "Search umbrellas",
                "condition": {"step": "w", "check": "contains", "value": "rain"},
            },
        ]
    }
    scaffold = _scaffold(_client("It will be sunny."), adapter)

    outcome = scaffold.execute(plan, request="weather, umbrella if rain")

    assert outcome.message.startswith("It will be sunny.")
    assert "Skipped steps:" in outcome.message
    assert "Search umbrellas" in outcome.message
