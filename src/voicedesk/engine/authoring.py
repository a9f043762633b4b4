"""Editing helpers for scenario drafts.

A draft is a ScenarioCreateRequest being built up before it is saved. All
helpers return new objects; nothing is edited in place.
"""

from __future__ import annotations

import copy
from typing import Any

from voicedesk.models import (
    MockContract,
    MockExtractResponse,
    ScenarioCreateRequest,
    ScenarioDetail,
    TurnSpec,
)

DRAFT_DEFAULTS: dict[str, Any] = {
    "description": "",
    "tags": [],
    "category": "flow",
    "contract_type": "purchase",
    "mode": "New",
    "mock_prompt_file": "",
    "prefilled_fields": {},
    "mock_extract_responses": [],
    "mock_contracts": [],
    "error_config": {},
    "is_guest": False,
    "guest_contract_id": "",
}


def parse_csv(value: str | None) -> list[str] | None:
    """'a, b,,c' -> ['a', 'b', 'c']. Blank input -> None (expectation unset)."""
    items = [s.strip() for s in (value or "").split(",")]
    items = [s for s in items if s]
    return items or None


# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------

def set_tool_call_arg(turn: TurnSpec, key: str, value: Any) -> TurnSpec:
    name = turn.expected_tool_name
    if not name:
        raise ValueError("Set the expected tool name before its arguments")
    args = turn.expected_tool_arguments
    args[key] = value
    return turn.with_tool_call(name, args)


def remove_tool_call_arg(turn: TurnSpec, key: str) -> TurnSpec:
    name = turn.expected_tool_name
    if not name:
        return turn
    args = turn.expected_tool_arguments
    args.pop(key, None)
    return turn.with_tool_call(name, args)


def set_text_list(turn: TurnSpec, attr: str, value: str) -> TurnSpec:
    """Set expect_contains / expect_not_contains / expect_field_not_asked from a comma list."""
    if attr not in ("expect_contains", "expect_not_contains", "expect_field_not_asked"):
        raise ValueError(f"{attr} is not a list expectation")
    return turn.model_copy(update={attr: parse_csv(value)})


def add_turn(turns: list[TurnSpec]) -> list[TurnSpec]:
    return [*turns, TurnSpec()]


def update_turn(turns: list[TurnSpec], index: int, turn: TurnSpec) -> list[TurnSpec]:
    updated = list(turns)
    updated[index] = turn
    return updated


def remove_turn(turns: list[TurnSpec], index: int) -> list[TurnSpec]:
    """Drop one turn. The last remaining turn is never removed."""
    if len(turns) <= 1:
        return list(turns)
    return [t for i, t in enumerate(turns) if i != index]


# ---------------------------------------------------------------------------
# Mock rows
# ---------------------------------------------------------------------------

def new_mock_extract_response() -> MockExtractResponse:
    return MockExtractResponse(missing_fields_count=0, fields_json={})


def new_mock_contract() -> MockContract:
    return MockContract()


# ---------------------------------------------------------------------------
# Drafts
# ---------------------------------------------------------------------------

def with_defaults(draft: ScenarioCreateRequest) -> ScenarioCreateRequest:
    """Fill unset keys with the builder's defaults; a draft always has one turn."""
    update = {k: copy.deepcopy(v) for k, v in DRAFT_DEFAULTS.items() if getattr(draft, k) is None}
    if not draft.turns:
        update["turns"] = [TurnSpec()]
    return draft.model_copy(update=update, deep=True)


def blank_draft(name: str = "") -> ScenarioCreateRequest:
    return with_defaults(ScenarioCreateRequest(name=name))


def draft_from_detail(detail: ScenarioDetail) -> ScenarioCreateRequest:
    """Start editing an existing scenario."""
    return with_defaults(detail.to_create_request())


def draft_from_generated(generated: ScenarioCreateRequest) -> ScenarioCreateRequest:
    """Review a generated scenario before saving it."""
    return with_defaults(generated)
