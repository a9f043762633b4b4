"""Evaluate one executed turn against its TurnSpec expectations.

Each configured expectation yields one or more TurnCheckResult rows. An
expectation left unset yields nothing, so it is neither a pass nor a fail.
"""

from __future__ import annotations

import json
import re
from typing import Any

from voicedesk.engine.judge import IntentJudge, KeywordIntentJudge
from voicedesk.models import ToolCall, TurnCheckResult, TurnSpec

TOOL_CALL = "tool_call"
NO_TOOL_CALL = "no_tool_call"
MESSAGE_INTENT = "message_intent"
CONTAINS = "contains"
NOT_CONTAINS = "not_contains"
FIELD_ASKED = "field_asked"
FIELD_NOT_ASKED = "field_not_asked"


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------

def _text(value: Any) -> str:
    """Compare arguments as case-insensitive strings: 12 matches "12"."""
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True, separators=(",", ":")).lower()
    return str(value).strip().lower()


def _ident(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", value.lower()).strip("_")


def field_labels(field: str) -> set[str]:
    """Ways a reply might refer to a field id.

    'seller.full_name' -> {'full name', 'seller full name'}
    """
    leaf = field.rsplit(".", 1)[-1]
    labels = {
        re.sub(r"[_\-]+", " ", leaf).strip().lower(),
        re.sub(r"[._\-]+", " ", field).strip().lower(),
    }
    # 'buyer2_name' is spoken as 'buyer 2 name'
    labels |= {re.sub(r"(?<=[a-z])(?=\d)|(?<=\d)(?=[a-z])", " ", label) for label in labels}
    return {label for label in labels if label}


def _tool_names_field(call: ToolCall, field: str) -> bool:
    wanted = {_ident(field), _ident(field.rsplit(".", 1)[-1])}
    for value in call.arguments.values():
        values = value if isinstance(value, list) else [value]
        if any(isinstance(v, str) and _ident(v) in wanted for v in values):
            return True
    return False


def is_solicited(field: str, response: str, tool_calls: list[ToolCall]) -> bool:
    """A field is being asked for if a tool call names it, or the reply asks about it."""
    if any(_tool_names_field(c, field) for c in tool_calls):
        return True
    if "?" not in response:
        return False
    reply = " ".join(response.lower().split())
    return any(re.search(rf"\b{re.escape(label)}\b", reply) for label in field_labels(field))


# ---------------------------------------------------------------------------
# Individual checks
# ---------------------------------------------------------------------------

def _argument_mismatches(expected: dict[str, Any], actual: dict[str, Any]) -> list[str]:
    problems = []
    for key, want in expected.items():
        if key not in actual:
            problems.append(f"{key} missing")
        elif _text(actual[key]) != _text(want):
            problems.append(f"{key}={actual[key]!r} (expected {want!r})")
    return problems


def check_tool_call(turn: TurnSpec, tool_calls: list[ToolCall]) -> TurnCheckResult:
    name = turn.expected_tool_name
    arguments = turn.expected_tool_arguments
    expected: Any = {"name": name, "arguments": arguments} if arguments else name
    actual = [c.model_dump() for c in tool_calls]

    candidates = [c for c in tool_calls if c.name == name]
    if not candidates:
        called = ", ".join(c.name for c in tool_calls) or "no tools"
        return TurnCheckResult(type=TOOL_CALL, passed=False, expected=expected, actual=actual,
                               reason=f"Expected a call to {name} but the agent called {called}.")

    for call in candidates:
        if not _argument_mismatches(arguments, call.arguments):
            return TurnCheckResult(type=TOOL_CALL, passed=True, expected=expected, actual=actual)

    problems = "; ".join(_argument_mismatches(arguments, candidates[0].arguments))
    return TurnCheckResult(type=TOOL_CALL, passed=False, expected=expected, actual=actual,
                           reason=f"{name} was called with different arguments: {problems}.")


def check_no_tool_call(tool_calls: list[ToolCall]) -> TurnCheckResult:
    names = [c.name for c in tool_calls]
    if not names:
        return TurnCheckResult(type=NO_TOOL_CALL, passed=True, expected=[], actual=[])
    return TurnCheckResult(type=NO_TOOL_CALL, passed=False, expected=[], actual=names,
                           reason=f"Expected no tool calls but the agent called {', '.join(names)}.")


def check_message_intent(intent: str, response: str, user_input: str,
                         judge: IntentJudge) -> TurnCheckResult:
    verdict = judge.judge(intent, response, user_input)
    return TurnCheckResult(type=MESSAGE_INTENT, passed=verdict.passed, expected=intent,
                           actual=response, reason=verdict.reason or None)


def check_contains(needles: list[str], response: str, negate: bool = False) -> list[TurnCheckResult]:
    haystack = response.lower()
    results = []
    for needle in needles:
        present = needle.lower() in haystack
        passed = not present if negate else present
        reason = None
        if not passed:
            reason = (f"Reply contains forbidden text {needle!r}." if negate
                      else f"Reply does not contain {needle!r}.")
        results.append(TurnCheckResult(type=NOT_CONTAINS if negate else CONTAINS, passed=passed,
                                       expected=needle, actual=response, reason=reason))
    return results


def check_field_asked(field: str, response: str, tool_calls: list[ToolCall]) -> TurnCheckResult:
    if is_solicited(field, response, tool_calls):
        return TurnCheckResult(type=FIELD_ASKED, passed=True, expected=field, actual=response)
    return TurnCheckResult(type=FIELD_ASKED, passed=False, expected=field, actual=response,
                           reason=f"The agent did not ask for {field}.")


def check_fields_not_asked(fields: list[str], response: str,
                           tool_calls: list[ToolCall]) -> list[TurnCheckResult]:
    results = []
    for field in fields:
        asked = is_solicited(field, response, tool_calls)
        results.append(TurnCheckResult(
            type=FIELD_NOT_ASKED, passed=not asked, expected=field, actual=response,
            reason=f"The agent asked for {field}, which it should not have." if asked else None,
        ))
    return results


# ---------------------------------------------------------------------------
# Turn evaluation
# ---------------------------------------------------------------------------

def evaluate_turn(
    turn: TurnSpec,
    response: str,
    tool_calls: list[ToolCall],
    judge: IntentJudge | None = None,
) -> list[TurnCheckResult]:
    """All checks configured on ``turn``, in a fixed order."""
    checks: list[TurnCheckResult] = []

    if turn.expect_tool_call:
        checks.append(check_tool_call(turn, tool_calls))
    if turn.expect_no_tool_call:
        checks.append(check_no_tool_call(tool_calls))
    if turn.expect_message_intent:
        checks.append(check_message_intent(turn.expect_message_intent, response,
                                           turn.user_input, judge or KeywordIntentJudge()))
    if turn.expect_contains:
        checks.extend(check_contains(turn.expect_contains, response))
    if turn.expect_not_contains:
        checks.extend(check_contains(turn.expect_not_contains, response, negate=True))
    if turn.expect_field_asked:
        checks.append(check_field_asked(turn.expect_field_asked, response, tool_calls))
    if turn.expect_field_not_asked:
        checks.extend(check_fields_not_asked(turn.expect_field_not_asked, response, tool_calls))

    return checks
