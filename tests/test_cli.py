from __future__ import annotations

import json

import httpx
import pytest
import yaml
from typer.testing import CliRunner

from voicedesk import cli
from voicedesk.integrations.extractions_api import ExtractionsApi
from voicedesk.integrations.runner_client import RunnerClient

runner = CliRunner()

RUN_FAILED = {
    "scenario": "purchase_happy_path",
    "status": "failed",
    "duration_ms": 1200,
    "turns": [{
        "turn": 1, "user_input": "hi", "agent_response": "Hello",
        "tool_calls": [],
        "checks": [{"type": "tool_call", "passed": False, "expected": "get_prompt",
                    "reason": "Expected a call to get_prompt but the agent called no tools."}],
    }],
}


@pytest.fixture(autouse=True)
def env(monkeypatch, tmp_path):
    monkeypatch.setenv("COLUMNS", "200")
    monkeypatch.setenv("SCENARIOS_DIR", str(tmp_path / "scenarios"))
    monkeypatch.setenv("PROMPTS_DIR", str(tmp_path / "prompts"))
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def serve(monkeypatch, make_client):
    """Point the CLI's runner client at a handler; returns the request recorder."""
    def _serve(handler):
        client, rec = make_client(handler, base_url="http://runner.test")
        monkeypatch.setattr(cli, "_runner", lambda: RunnerClient(client))
        return rec
    return _serve


def test_health(serve):
    serve(lambda r: httpx.Response(200, json={"status": "ok", "scenarios_count": 4, "prompts_count": 2}))
    result = runner.invoke(cli.app, ["health"])
    assert result.exit_code == 0
    assert "ok" in result.output
    assert "Scenarios: 4" in result.output


def test_runner_error_printed_and_exit_1(serve):
    serve(lambda r: httpx.Response(404, json={"detail": "Scenario not found"}))
    result = runner.invoke(cli.app, ["run", "nope"])
    assert result.exit_code == 1
    assert "Scenario not found" in result.output


def test_unreachable_runner(monkeypatch, make_client):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    client, _ = make_client(handler, base_url="http://runner.test")
    monkeypatch.setattr(cli, "_runner", lambda: RunnerClient(client))
    result = runner.invoke(cli.app, ["health"])
    assert result.exit_code == 1
    assert "Cannot reach the scenario runner" in result.output


def test_scenarios_list(serve):
    serve(lambda r: httpx.Response(200, json=[
        {"name": "purchase_happy_path", "tags": ["smoke"], "category": "flow", "last_result": "passed"},
        {"name": "guest_wrong_contract", "category": "errors", "last_result": None},
    ]))
    result = runner.invoke(cli.app, ["scenarios", "list", "--category", "errors"])
    assert result.exit_code == 0
    assert "Total 2" in result.output
    assert "Not run 1" in result.output
    assert "guest_wrong_contract" in result.output
    assert "purchase_happy_path" not in result.output


def test_run_failed_shows_timeline(serve):
    rec = serve(lambda r: httpx.Response(200, json=RUN_FAILED))
    result = runner.invoke(cli.app, ["run", "purchase_happy_path"])
    assert result.exit_code == 1
    assert "FAIL tool_call" in result.output
    assert "1 check(s) failed (1200ms)" in result.output
    assert rec.requests[0].method == "POST"
    assert rec.paths == ["/run/purchase_happy_path"]


def test_run_all(serve):
    body = {"total": 1, "passed": 0, "failed": 1, "errors": 0, "duration_ms": 1300, "results": [RUN_FAILED]}
    serve(lambda r: httpx.Response(200, json=body))
    result = runner.invoke(cli.app, ["run-all"])
    assert result.exit_code == 1
    assert "Done: 0 passed, 1 failed, 0 errors (1300ms)" in result.output


def test_delete_with_yes(serve):
    rec = serve(lambda r: httpx.Response(204))
    result = runner.invoke(cli.app, ["scenarios", "delete", "old one", "--yes"])
    assert result.exit_code == 0
    assert rec.requests[0].method == "DELETE"
    assert rec.requests[0].url.raw_path == b"/scenarios/old%20one"


def test_pull_saves_yaml(serve, tmp_path):
    serve(lambda r: httpx.Response(200, json={"name": "Edit price", "category": "edit",
                                              "turns": [{"user_input": "change the price"}]}))
    result = runner.invoke(cli.app, ["scenarios", "pull", "edit_price"])
    assert result.exit_code == 0
    saved = yaml.safe_load((tmp_path / "scenarios" / "edit_price.yaml").read_text())
    assert saved["category"] == "edit"
    assert saved["turns"] == [{"user_input": "change the price"}]


def test_push_creates_or_updates(serve, tmp_path, scenario):
    summary = {"name": "purchase_happy_path", "turn_count": 2, "file_path": "purchase_happy_path.yaml"}
    rec = serve(lambda r: httpx.Response(200, json=summary))
    path = scenario.save(tmp_path)

    result = runner.invoke(cli.app, ["scenarios", "push", str(path)])
    assert result.exit_code == 0
    assert "Created" in result.output
    body = json.loads(rec.requests[0].content)
    assert body["name"] == "Purchase happy path"
    assert len(body["turns"]) == 2

    result = runner.invoke(cli.app, ["scenarios", "push", str(path), "--name", "purchase_happy_path"])
    assert result.exit_code == 0
    assert rec.requests[1].method == "PUT"


def test_generate_prints_draft(serve):
    rec = serve(lambda r: httpx.Response(200, json={"name": "guest_wrong_contract", "category": "errors"}))
    result = runner.invoke(cli.app, ["scenarios", "generate", "Guest asks for another contract"])
    assert result.exit_code == 0
    assert "name: guest_wrong_contract" in result.output
    assert "mode: New" in result.output
    assert json.loads(rec.requests[0].content)["mock_prompt_file"] == ""


def test_prompts(serve):
    def handler(request):
        if request.url.path == "/prompts":
            return httpx.Response(200, json={"prompts": ["purchase.txt"]})
        return httpx.Response(200, json={"name": "purchase.txt", "fields": ["buyer_name", "price"]})

    serve(handler)
    assert "purchase.txt" in runner.invoke(cli.app, ["prompts", "list"]).output
    assert "price" in runner.invoke(cli.app, ["prompts", "fields", "purchase.txt"]).output


def test_check_offline(tmp_path, scenario, prompts_dir):
    scenario_file = scenario.save(tmp_path)
    transcript = tmp_path / "transcript.yaml"
    transcript.write_text(yaml.safe_dump([
        {"response": "Hi! What is the buyer name?", "tool_calls": [{"name": "get_prompt"}]},
        {"response": "Thanks Jane.",
         "tool_calls": [{"name": "deliver_extraction", "arguments": {"buyer_name": "Jane"}}]},
    ]))
    result = runner.invoke(cli.app, ["check", str(scenario_file), str(transcript),
                                     "--prompts-dir", str(prompts_dir)])
    assert result.exit_code == 0, result.output
    assert "Passed" in result.output


def test_watch_polls_and_shows_fields(monkeypatch, make_client):
    def handler(request):
        if request.url.path == "/api/v1/extractions":
            return httpx.Response(200, json=[{"documentId": "doc-1", "callId": "room-1"}])
        return httpx.Response(200, json={
            "documentId": "doc-1", "documentType": "PURCHASE_AGREEMENT",
            "fieldsJson": {"buyer_name": "Jane"}, "requiredFields": ["seller_name"],
        })

    client, rec = make_client(handler)
    monkeypatch.setattr(cli, "_extractions_api", lambda: ExtractionsApi(client))
    result = runner.invoke(cli.app, ["watch", "room-1", "--polls", "2", "--interval", "1"])
    assert result.exit_code == 0, result.output
    assert rec.paths == ["/api/v1/extractions", "/api/v1/extractions/doc-1"]
    assert "Jane" in result.output
    assert "seller_name" in result.output


def test_watch_keeps_polling_through_backend_errors(monkeypatch, make_client):
    client, rec = make_client(lambda request: httpx.Response(503))
    monkeypatch.setattr(cli, "_extractions_api", lambda: ExtractionsApi(client))
    result = runner.invoke(cli.app, ["watch", "room-1", "--polls", "2", "--interval", "1"])
    assert result.exit_code == 0, result.output
    assert len(rec.requests) == 2
    assert result.output.count("Failed to load extraction") == 2


def test_show_prints_user_input_literally(serve):
    serve(lambda r: httpx.Response(200, json={
        "name": "markup_input",
        "turns": [{"user_input": "[red]stop[/red]", "expect_contains": ["okay"]}],
    }))
    result = runner.invoke(cli.app, ["scenarios", "show", "markup_input"])
    assert result.exit_code == 0, result.output
    assert "[red]stop[/red]" in result.output
