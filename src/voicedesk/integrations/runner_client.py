"""Client for the scenario test-runner service.

The runner simulates multi-turn conversations with the voice agent against
mocked tools and checks per-turn expectations. This client only speaks its
JSON contract; it keeps no state between calls and never retries.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx
from pydantic import TypeAdapter, ValidationError

from voicedesk.errors import RunnerError
from voicedesk.models import (
    HealthStatus,
    RunAllResult,
    ScenarioCreateRequest,
    ScenarioDetail,
    ScenarioRunResult,
    ScenarioSummary,
)

logger = logging.getLogger(__name__)


def error_message(resp: httpx.Response) -> str:
    """Message for a non-2xx response: body.detail, body.message, or a status fallback."""
    fallback = f"Request failed: {resp.status_code}"
    try:
        body = resp.json()
    except ValueError:
        return fallback
    if not isinstance(body, dict):
        return fallback

    detail = body.get("detail")
    if isinstance(detail, list):
        # FastAPI validation errors: [{"loc": [...], "msg": "..."}]
        msgs = [d.get("msg", "") for d in detail if isinstance(d, dict)]
        detail = "; ".join(m for m in msgs if m)
    if detail:
        return str(detail)
    return str(body.get("message") or fallback)


def _seg(name: str) -> str:
    return quote(name, safe="")


class RunnerClient:
    def __init__(self, client: httpx.Client):
        self.client = client

    def _request(self, method: str, path: str, body: dict | None = None) -> Any:
        logger.debug("%s %s", method, path)
        resp = self.client.request(method, path, json=body)
        if not resp.is_success:
            message = error_message(resp)
            logger.warning("%s %s -> %d: %s", method, path, resp.status_code, message)
            raise RunnerError(message, status_code=resp.status_code)
        if not resp.content:
            return None
        return resp.json()

    def _parse(self, type_: Any, data: Any, path: str) -> Any:
        try:
            return TypeAdapter(type_).validate_python(data)
        except ValidationError as e:
            raise RunnerError(f"Unexpected response from {path}: {e}") from e

    # -- Scenario CRUD ------------------------------------------------------

    def list_scenarios(self) -> list[ScenarioSummary]:
        return self._parse(list[ScenarioSummary], self._request("GET", "/scenarios"), "/scenarios")

    def get_scenario(self, name: str) -> ScenarioDetail:
        path = f"/scenarios/{_seg(name)}"
        return self._parse(ScenarioDetail, self._request("GET", path), path)

    def create_scenario(self, data: ScenarioCreateRequest) -> ScenarioSummary:
        """Persist a new scenario. The returned file_path identifies it from now on."""
        return self._parse(ScenarioSummary,
                           self._request("POST", "/scenarios", data.to_payload()), "/scenarios")

    def update_scenario(self, name: str, data: ScenarioCreateRequest) -> ScenarioSummary:
        path = f"/scenarios/{_seg(name)}"
        return self._parse(ScenarioSummary, self._request("PUT", path, data.to_payload()), path)

    def delete_scenario(self, name: str) -> None:
        self._request("DELETE", f"/scenarios/{_seg(name)}")

    # -- Execution ----------------------------------------------------------

    def run_scenario(self, name: str) -> ScenarioRunResult:
        path = f"/run/{_seg(name)}"
        return self._parse(ScenarioRunResult, self._request("POST", path), path)

    def run_all_scenarios(self) -> RunAllResult:
        return self._parse(RunAllResult, self._request("POST", "/run"), "/run")

    # -- Generation ---------------------------------------------------------

    def generate_scenario(self, description: str,
                          mock_prompt_file: str | None = None) -> ScenarioCreateRequest:
        """Ask the service to draft a scenario from a plain-English description."""
        body = {"description": description, "mock_prompt_file": mock_prompt_file or ""}
        return self._parse(ScenarioCreateRequest,
                           self._request("POST", "/generate", body), "/generate")

    # -- Prompts ------------------------------------------------------------

    def list_prompts(self) -> list[str]:
        data = self._request("GET", "/prompts") or {}
        return self._parse(list[str], data.get("prompts", []), "/prompts")

    def get_prompt_content(self, name: str) -> str:
        data = self._request("GET", f"/prompts/{_seg(name)}") or {}
        return data.get("content", "")

    def get_prompt_fields(self, name: str) -> list[str]:
        path = f"/prompt-fields/{_seg(name)}"
        data = self._request("GET", path) or {}
        return self._parse(list[str], data.get("fields", []), path)

    # -- Health -------------------------------------------------------------

    def check_health(self) -> HealthStatus:
        return self._parse(HealthStatus, self._request("GET", "/health"), "/health")
