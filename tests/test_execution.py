from __future__ import annotations

import pytest

from voicedesk.engine.execution import (
    AgentTurn,
    MockToolbox,
    ReplayAgent,
    execute_scenario,
    run_all,
)
from voicedesk.engine.judge import KeywordIntentJudge
from voicedesk.errors import ScenarioExecutionError
from voicedesk.models import RunStatus, ToolCall

GOOD_TRANSCRIPT = [
    {"response": "Hi! I can help with that. What is the buyer name?",
     "tool_calls": [{"name": "get_prompt", "arguments": {}}]},
    {"response": "Thanks Jane, got it.",
     "tool_calls": [{"name": "deliver_extraction", "arguments": {"buyer_name": "Jane"}}]},
]


# ---------------------------------------------------------------------------
# Mock tools
# ---------------------------------------------------------------------------

def test_get_prompt_reads_fixture(scenario, prompts_dir):
    toolbox = MockToolbox(scenario, prompts_dir)
    result = toolbox.call("get_prompt")
    assert result["prompt"] == "You are a purchase agreement assistant."
    assert result["prefilled_fields"] == {"agent_name": "Dana"}
    assert toolbox.calls == [ToolCall(name="get_prompt")]


def test_missing_prompt_file_raises(scenario, tmp_path):
    with pytest.raises(ScenarioExecutionError, match="Prompt file not found"):
        MockToolbox(scenario, tmp_path).call("get_prompt")


def test_deliver_extraction_is_sequential_then_exhausted(scenario, prompts_dir):
    toolbox = MockToolbox(scenario, prompts_dir)
    assert toolbox.call("deliver_extraction") == {"missingFieldsCount": 2, "fieldsJson": {"buyer_name": "Jane"}}
    with pytest.raises(ScenarioExecutionError, match="only 1 mock response"):
        toolbox.call("deliver_extraction")


def test_injected_failures_return_tool_errors(scenario, prompts_dir):
    scenario = scenario.model_copy(update={"error_config": {
        "prompt_fails": True, "extraction_fails": True, "contracts_fails": True,
    }})
    toolbox = MockToolbox(scenario, prompts_dir)
    assert "error" in toolbox.call("get_prompt")
    assert "error" in toolbox.call("deliver_extraction")
    assert "error" in toolbox.call("deliver_extraction")
    assert "error" in toolbox.call("get_all_contracts")
    assert "error" not in toolbox.call("end_call")


def test_guest_mode_sees_only_guest_contract(scenario, prompts_dir):
    assert len(MockToolbox(scenario, prompts_dir).call("get_all_contracts")["contracts"]) == 2

    guest = scenario.model_copy(update={"is_guest": True, "guest_contract_id": "c-2"})
    contracts = MockToolbox(guest, prompts_dir).call("get_all_contracts")["contracts"]
    assert [c["contractId"] for c in contracts] == ["c-2"]


def test_end_call_and_unknown_tool(scenario, prompts_dir):
    toolbox = MockToolbox(scenario, prompts_dir)
    toolbox.call("end_call")
    assert toolbox.ended
    with pytest.raises(ScenarioExecutionError, match="Unknown tool"):
        toolbox.call("transfer_call")


# ---------------------------------------------------------------------------
# Scenario runs
# ---------------------------------------------------------------------------

def test_passing_run(scenario, prompts_dir):
    result = execute_scenario(scenario, ReplayAgent.from_data(GOOD_TRANSCRIPT), KeywordIntentJudge(), prompts_dir)
    assert result.status == RunStatus.PASSED, result.failed_checks
    assert [t.turn for t in result.turns] == [1, 2]
    assert result.turns[1].agent_response == "Thanks Jane, got it."
    assert result.duration_ms >= 0
    assert result.error is None


def test_failing_run(scenario, prompts_dir):
    transcript = [
        GOOD_TRANSCRIPT[0],
        {"response": "Sorry, what was the buyer name?", "tool_calls": []},
    ]
    result = execute_scenario(scenario, ReplayAgent.from_data(transcript), prompts_dir=prompts_dir)
    assert result.status == RunStatus.FAILED
    failed = {c.type for c in result.failed_checks}
    assert failed == {"tool_call", "contains", "field_not_asked"}


def test_misconfiguration_is_an_error_and_keeps_completed_turns(scenario, prompts_dir):
    transcript = [
        GOOD_TRANSCRIPT[0],
        {"response": "Thanks", "tool_calls": [{"name": "deliver_extraction", "arguments": {}},
                                                {"name": "deliver_extraction", "arguments": {}}]},
    ]
    result = execute_scenario(scenario, ReplayAgent.from_data(transcript), prompts_dir=prompts_dir)
    assert result.status == RunStatus.ERROR
    assert "mock response" in result.error
    assert len(result.turns) == 1


def test_short_transcript_is_an_error(scenario, prompts_dir):
    result = execute_scenario(scenario, ReplayAgent.from_data({"turns": GOOD_TRANSCRIPT[:1]}),
                              prompts_dir=prompts_dir)
    assert result.status == RunStatus.ERROR
    assert "turn 2 requested" in result.error


def test_replay_agent_from_file(tmp_path):
    path = tmp_path / "transcript.yaml"
    path.write_text("turns:\n  - response: Hello\n    tool_calls:\n      - name: get_prompt\n")
    agent = ReplayAgent.from_file(path)
    assert agent.transcript == [AgentTurn(response="Hello", tool_calls=[ToolCall(name="get_prompt")])]


def test_run_all_aggregates(scenario, prompts_dir):
    broken = scenario.model_copy(update={"name": "broken", "mock_prompt_file": "missing.txt"})
    result = run_all([scenario, broken], lambda s: ReplayAgent.from_data(GOOD_TRANSCRIPT),
                     prompts_dir=prompts_dir)
    assert (result.total, result.passed, result.failed, result.errors) == (2, 1, 0, 1)
    assert [r.scenario for r in result.results] == ["Purchase happy path", "broken"]
