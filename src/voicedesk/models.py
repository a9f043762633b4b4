"""Core data models for extraction records, scenarios, turns, and run results."""

from __future__ import annotations

import re
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RunStatus(str, Enum):
    PASSED = "passed"
    FAILED = "failed"    # ran to completion, at least one check failed
    ERROR = "error"      # execution itself aborted


# ---------------------------------------------------------------------------
# Extraction record (server-owned, client reads a projection)
# ---------------------------------------------------------------------------

class ExtractionRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    document_id: str | None = Field(None, alias="documentId")
    contract_instance_id: str = Field("", alias="contractInstanceId")
    document_type: str = Field("", alias="documentType")
    jurisdiction_code: str | None = Field(None, alias="jurisdictionCode")
    fields_json: dict[str, Any] | None = Field(None, alias="fieldsJson")
    required_fields: list[str] | dict[str, Any] = Field(default_factory=list, alias="requiredFields")

    # Only present in ?callId= (phase 1) responses
    call_id: str | None = Field(None, alias="callId")
    user_id: str | None = Field(None, alias="userId")
    status: str | None = None
    call_status: str | None = Field(None, alias="callStatus")

    created_at: str = Field("", alias="createdAt")
    updated_at: str = Field("", alias="updatedAt")

    @field_validator("required_fields", mode="before")
    @classmethod
    def _null_required_fields(cls, v: Any) -> Any:
        return [] if v is None else v

    def outstanding_fields(self) -> list[str]:
        """Field ids still outstanding, for both the list and mapping shapes."""
        return list(self.required_fields)


# ---------------------------------------------------------------------------
# Turn specification
# ---------------------------------------------------------------------------

class ExpectedToolCall(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class TurnSpec(BaseModel):
    """One simulated exchange: what the user says and what the agent should do."""

    user_input: str = ""  # empty = agent continues without new user input
    expect_tool_call: ExpectedToolCall | str | None = None
    expect_no_tool_call: bool | None = None
    expect_message_intent: str | None = None
    expect_contains: list[str] | None = None
    expect_not_contains: list[str] | None = None
    expect_field_asked: str | None = None
    expect_field_not_asked: list[str] | None = None

    @field_validator("user_input", mode="before")
    @classmethod
    def _null_input(cls, v: Any) -> Any:
        return "" if v is None else v

    @model_validator(mode="after")
    def _tool_call_exclusive(self) -> TurnSpec:
        if self.expect_tool_call and self.expect_no_tool_call:
            raise ValueError("expect_tool_call and expect_no_tool_call cannot both be set")
        return self

    @property
    def expected_tool_name(self) -> str:
        if isinstance(self.expect_tool_call, ExpectedToolCall):
            return self.expect_tool_call.name
        return self.expect_tool_call or ""

    @property
    def expected_tool_arguments(self) -> dict[str, Any]:
        if isinstance(self.expect_tool_call, ExpectedToolCall):
            return dict(self.expect_tool_call.arguments)
        return {}

    def with_tool_call(self, name: str, arguments: dict[str, Any] | None = None) -> TurnSpec:
        """Expect a tool call; clears expect_no_tool_call. Empty name removes the expectation."""
        if not name:
            return self.model_copy(update={"expect_tool_call": None})
        args = self.expected_tool_arguments if arguments is None else dict(arguments)
        return self.model_copy(update={
            "expect_tool_call": ExpectedToolCall(name=name, arguments=args),
            "expect_no_tool_call": None,
        })

    def with_no_tool_call(self, checked: bool) -> TurnSpec:
        """Toggle the no-tool assertion; checking it clears expect_tool_call."""
        if checked:
            return self.model_copy(update={"expect_tool_call": None, "expect_no_tool_call": True})
        return self.model_copy(update={"expect_no_tool_call": None})

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


# ---------------------------------------------------------------------------
# Scenario mocks
# ---------------------------------------------------------------------------

class MockExtractResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    missing_fields_count: int = Field(0, alias="missingFieldsCount")
    fields_json: dict[str, Any] = Field(default_factory=dict, alias="fieldsJson")


class MockContract(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    contract_id: str = Field("", alias="contractId")
    address: str = ""
    buyer_name: str = Field("", alias="buyerName")
    seller_name: str = Field("", alias="sellerName")
    document_type: str = Field("CONTRACT", alias="documentType")


# ---------------------------------------------------------------------------
# Scenario projections
# ---------------------------------------------------------------------------

def slugify(name: str) -> str:
    """'Purchase - Happy Path' -> 'purchase_happy_path'."""
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_")


def _dedupe(tags: list[str] | None) -> list[str] | None:
    if tags is None:
        return None
    seen: dict[str, None] = {}
    for t in tags:
        t = t.strip()
        if t:
            seen.setdefault(t, None)
    return list(seen)


class ScenarioCreateRequest(BaseModel):
    """Authoring payload for create/update/generate. Only ``name`` is required."""

    name: str
    description: str | None = None
    tags: list[str] | None = None
    category: str | None = None
    contract_type: str | None = None
    mode: str | None = None
    mock_prompt_file: str | None = None
    prefilled_fields: dict[str, str] | None = None
    mock_extract_responses: list[MockExtractResponse] | None = None
    mock_contracts: list[MockContract] | None = None
    error_config: dict[str, bool] | None = None
    is_guest: bool | None = None
    guest_contract_id: str | None = None
    turns: list[TurnSpec] | None = None

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, v: list[str] | None) -> list[str] | None:
        return _dedupe(v)

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ScenarioDetail(BaseModel):
    name: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    category: str = "flow"
    contract_type: str = "purchase"
    mode: str = "New"
    mock_prompt_file: str = ""
    prefilled_fields: dict[str, str] = Field(default_factory=dict)
    mock_extract_responses: list[MockExtractResponse] = Field(default_factory=list)
    mock_contracts: list[MockContract] = Field(default_factory=list)
    error_config: dict[str, bool] = Field(default_factory=dict)
    is_guest: bool = False
    guest_contract_id: str = ""
    turns: list[TurnSpec] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        # Server and hand-written YAML both use null for "not set"
        if isinstance(data, dict):
            return {k: v for k, v in data.items() if v is not None}
        return data

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, v: list[str]) -> list[str]:
        return _dedupe(v) or []

    def to_create_request(self) -> ScenarioCreateRequest:
        return ScenarioCreateRequest.model_validate(self.model_dump(by_alias=True))

    # -- local persistence --------------------------------------------------

    def save(self, scenarios_dir: Path) -> Path:
        """Persist scenario to disk as YAML. Returns the file path."""
        scenarios_dir = Path(scenarios_dir)
        scenarios_dir.mkdir(parents=True, exist_ok=True)
        file_path = scenarios_dir / f"{slugify(self.name)}.yaml"
        file_path.write_text(yaml.safe_dump(
            self.to_create_request().to_payload(), sort_keys=False, allow_unicode=True,
        ))
        return file_path

    @classmethod
    def from_file(cls, file_path: str | Path) -> ScenarioDetail:
        return cls.model_validate(yaml.safe_load(Path(file_path).read_text()) or {})

    @classmethod
    def load(cls, scenarios_dir: Path, name: str) -> ScenarioDetail:
        """Load a scenario by name or by file name."""
        file_name = name if name.endswith((".yaml", ".yml")) else f"{slugify(name)}.yaml"
        return cls.from_file(Path(scenarios_dir) / file_name)

    @classmethod
    def list_all(cls, scenarios_dir: Path) -> list[ScenarioDetail]:
        """List all scenarios in a directory."""
        scenarios_dir = Path(scenarios_dir)
        if not scenarios_dir.exists():
            return []
        return [cls.from_file(f) for f in sorted(scenarios_dir.glob("*.yaml"))]


class ScenarioSummary(BaseModel):
    name: str
    description: str = ""
    tags: list[str] = Field(default_factory=list)
    category: str = ""
    contract_type: str = ""
    mode: str = ""
    turn_count: int = 0
    file_path: str = ""
    last_result: RunStatus | None = None


# ---------------------------------------------------------------------------
# Execution results
# ---------------------------------------------------------------------------

class ToolCall(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class TurnCheckResult(BaseModel):
    type: str
    passed: bool
    expected: Any = None
    actual: Any = None
    reason: str | None = None


class TurnResult(BaseModel):
    turn: int
    user_input: str = ""
    agent_response: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    checks: list[TurnCheckResult] = Field(default_factory=list)

    @property
    def passed(self) -> bool:
        return all(c.passed for c in self.checks)


def _round_ms(v: Any) -> Any:
    return round(v) if isinstance(v, float) else v


class ScenarioRunResult(BaseModel):
    scenario: str = ""
    status: RunStatus
    duration_ms: int = 0
    error: str | None = None
    turns: list[TurnResult] = Field(default_factory=list)

    @field_validator("duration_ms", mode="before")
    @classmethod
    def _whole_ms(cls, v: Any) -> Any:
        return _round_ms(v)

    @model_validator(mode="after")
    def _status_matches_checks(self) -> ScenarioRunResult:
        failing = any(not t.passed for t in self.turns)
        if self.status == RunStatus.PASSED and (failing or self.error is not None):
            raise ValueError("status passed but a check failed or an error was reported")
        if self.status == RunStatus.FAILED and not failing:
            raise ValueError("status failed but every check passed")
        return self

    @classmethod
    def from_turns(cls, scenario: str, turns: list[TurnResult], duration_ms: int,
                   error: str | None = None) -> ScenarioRunResult:
        """Derive the status: error beats failed, failed beats passed."""
        if error is not None:
            status = RunStatus.ERROR
        elif all(t.passed for t in turns):
            status = RunStatus.PASSED
        else:
            status = RunStatus.FAILED
        return cls(scenario=scenario, status=status, duration_ms=duration_ms,
                   error=error, turns=turns)

    @property
    def failed_checks(self) -> list[TurnCheckResult]:
        return [c for t in self.turns for c in t.checks if not c.passed]


class RunAllResult(BaseModel):
    total: int
    passed: int
    failed: int
    errors: int
    duration_ms: int = 0
    results: list[ScenarioRunResult] = Field(default_factory=list)

    @field_validator("duration_ms", mode="before")
    @classmethod
    def _whole_ms(cls, v: Any) -> Any:
        return _round_ms(v)

    @model_validator(mode="after")
    def _counts_add_up(self) -> RunAllResult:
        if self.total != self.passed + self.failed + self.errors:
            raise ValueError(
                f"total {self.total} != passed {self.passed} + failed {self.failed}"
                f" + errors {self.errors}"
            )
        if len(self.results) != self.total:
            raise ValueError(f"total {self.total} != {len(self.results)} results")
        return self

    @classmethod
    def aggregate(cls, results: list[ScenarioRunResult], duration_ms: int) -> RunAllResult:
        return cls(
            total=len(results),
            passed=sum(1 for r in results if r.status == RunStatus.PASSED),
            failed=sum(1 for r in results if r.status == RunStatus.FAILED),
            errors=sum(1 for r in results if r.status == RunStatus.ERROR),
            duration_ms=duration_ms,
            results=results,
        )


class HealthStatus(BaseModel):
    status: str
    scenarios_count: int = 0
    prompts_count: int = 0
