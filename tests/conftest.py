from __future__ import annotations

from collections.abc import Callable

import httpx
import pytest

from voicedesk.integrations.http_client import build_client
from voicedesk.models import ScenarioDetail

Handler = Callable[[httpx.Request], httpx.Response]


class Recorder:
    """MockTransport handler that records requests and replays queued responses."""

    def __init__(self, handler: Handler):
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    @property
    def paths(self) -> list[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture
def make_client() -> Callable[..., tuple[httpx.Client, Recorder]]:
    def _make_client(handler: Handler, base_url: str = "http://backend.test/api",
                     token: str | None = None) -> tuple[httpx.Client, Recorder]:
        recorder = Recorder(handler)
        client = build_client(
            base_url,
            token_provider=(lambda: token) if token is not None else None,
            transport=httpx.MockTransport(recorder),
        )
        return client, recorder
    return _make_client


@pytest.fixture
def scenario() -> ScenarioDetail:
    return ScenarioDetail.model_validate({
        "name": "Purchase happy path",
        "description": "Buyer fills a purchase agreement",
        "tags": ["purchase", "smoke"],
        "mock_prompt_file": "purchase.txt",
        "prefilled_fields": {"agent_name": "Dana"},
        "mock_extract_responses": [
            {"missingFieldsCount": 2, "fieldsJson": {"buyer_name": "Jane"}},
        ],
        "mock_contracts": [
            {"contractId": "c-1", "address": "1 Oak St", "buyerName": "Jane", "sellerName": "Sam"},
            {"contractId": "c-2", "address": "9 Elm Ave", "buyerName": "Lee", "sellerName": "Kim"},
        ],
        "turns": [
            {
                "user_input": "Hi, I want to write an offer",
                "expect_tool_call": "get_prompt",
                "expect_field_asked": "buyer_name",
            },
            {
                "user_input": "My name is Jane",
                "expect_tool_call": {"name": "deliver_extraction", "arguments": {"buyer_name": "jane"}},
                "expect_contains": ["Jane"],
                "expect_field_not_asked": ["buyer_name"],
            },
        ],
    })


@pytest.fixture
def prompts_dir(tmp_path):
    d = tmp_path / "prompts"
    d.mkdir()
    (d / "purchase.txt").write_text("You are a purchase agreement assistant.")
    return d
