"""Local scenario execution against mocked agent tools.

A scenario's mocks stand in for the backend the voice agent talks to:

    get_prompt          -> mock_prompt_file (read from the prompts dir) + prefilled fields
    deliver_extraction  -> next entry of mock_extract_responses
    get_all_contracts   -> mock_contracts (only the guest contract in guest mode)
    end_call            -> marks the call as ended

``error_config`` switches make a tool return an error payload to the agent
instead of data. Misconfigured mocks raise ScenarioExecutionError, which
aborts the run with status "error".
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

import yaml

from voicedesk.engine.checks import evaluate_turn
from voicedesk.engine.judge import IntentJudge
from voicedesk.errors import ScenarioExecutionError
from voicedesk.models import RunAllResult, ScenarioDetail, ScenarioRunResult, ToolCall, TurnResult

logger = logging.getLogger(__name__)

GET_PROMPT = "get_prompt"
DELIVER_EXTRACTION = "deliver_extraction"
GET_ALL_CONTRACTS = "get_all_contracts"
END_CALL = "end_call"
TOOL_NAMES = (GET_PROMPT, DELIVER_EXTRACTION, GET_ALL_CONTRACTS, END_CALL)

# error_config switch -> tool it breaks
ERROR_POINTS = {
    "prompt_fails": GET_PROMPT,
    "extraction_fails": DELIVER_EXTRACTION,
    "contracts_fails": GET_ALL_CONTRACTS,
}


# ---------------------------------------------------------------------------
# Mock tools
# ---------------------------------------------------------------------------

class MockToolbox:
    """Serves the agent's tools from one scenario's mocks."""

    def __init__(self, scenario: ScenarioDetail, prompts_dir: str | Path = "."):
        self.scenario = scenario
        self.prompts_dir = Path(prompts_dir)
        self.calls: list[ToolCall] = []
        self.ended = False
        self._next_extraction = 0

    def failing(self, tool: str) -> bool:
        return any(self.scenario.error_config.get(flag) and target == tool
                   for flag, target in ERROR_POINTS.items())

    def call(self, name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        """Invoke a tool the way the agent would. Returns the tool's JSON result."""
        arguments = arguments or {}
        if name not in TOOL_NAMES:
            raise ScenarioExecutionError(f"Unknown tool: {name}")
        self.calls.append(ToolCall(name=name, arguments=arguments))

        if self.failing(name):
            logger.debug("Injected failure for %s", name)
            return {"error": f"{name} failed: 500 Internal Server Error"}

        handler = {
            GET_PROMPT: self._get_prompt,
            DELIVER_EXTRACTION: self._deliver_extraction,
            GET_ALL_CONTRACTS: self._get_all_contracts,
            END_CALL: self._end_call,
        }[name]
        return handler(arguments)

    def _get_prompt(self, arguments: dict[str, Any]) -> dict[str, Any]:
        prompt_file = self.scenario.mock_prompt_file
        if not prompt_file:
            raise ScenarioExecutionError(f"Scenario {self.scenario.name!r} has no mock_prompt_file")
        path = self.prompts_dir / prompt_file
        if not path.is_file():
            raise ScenarioExecutionError(f"Prompt file not found: {path}")
        return {
            "prompt": path.read_text(),
            "contract_type": self.scenario.contract_type,
            "mode": self.scenario.mode,
            "prefilled_fields": dict(self.scenario.prefilled_fields),
        }

    def _deliver_extraction(self, arguments: dict[str, Any]) -> dict[str, Any]:
        responses = self.scenario.mock_extract_responses
        if self._next_extraction >= len(responses):
            raise ScenarioExecutionError(
                f"deliver_extraction called {self._next_extraction + 1} times but only "
                f"{len(responses)} mock response(s) configured"
            )
        response = responses[self._next_extraction]
        self._next_extraction += 1
        return response.model_dump(by_alias=True)

    def _get_all_contracts(self, arguments: dict[str, Any]) -> dict[str, Any]:
        contracts = self.scenario.mock_contracts
        if self.scenario.is_guest:
            contracts = [c for c in contracts if c.contract_id == self.scenario.guest_contract_id]
        return {"contracts": [c.model_dump(by_alias=True) for c in contracts]}

    def _end_call(self, arguments: dict[str, Any]) -> dict[str, Any]:
        self.ended = True
        return {"status": "ended"}


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------

@dataclass
class AgentTurn:
    response: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)


class Agent(Protocol):
    def begin(self, scenario: ScenarioDetail, toolbox: MockToolbox) -> None: ...

    def respond(self, user_input: str) -> AgentTurn: ...


class ReplayAgent:
    """Replays a recorded transcript, routing each recorded tool call through the toolbox.

    Transcript YAML/JSON: a list (or ``{turns: [...]}``) of
    ``{response: str, tool_calls: [{name, arguments}]}``, one entry per turn.
    """

    def __init__(self, transcript: list[AgentTurn]):
        self.transcript = transcript
        self.toolbox: MockToolbox | None = None
        self._position = 0

    @classmethod
    def from_data(cls, data: Any) -> ReplayAgent:
        if isinstance(data, dict):
            data = data.get("turns", [])
        turns = []
        for entry in data or []:
            calls = [ToolCall.model_validate(c) for c in entry.get("tool_calls") or []]
            turns.append(AgentTurn(response=entry.get("response") or "", tool_calls=calls))
        return cls(turns)

    @classmethod
    def from_file(cls, file_path: str | Path) -> ReplayAgent:
        return cls.from_data(yaml.safe_load(Path(file_path).read_text()))

    def begin(self, scenario: ScenarioDetail, toolbox: MockToolbox) -> None:
        self.toolbox = toolbox
        self._position = 0

    def respond(self, user_input: str) -> AgentTurn:
        if self.toolbox is None:
            raise ScenarioExecutionError("ReplayAgent.respond() called before begin()")
        if self._position >= len(self.transcript):
            raise ScenarioExecutionError(
                f"Transcript has {len(self.transcript)} turn(s); turn {self._position + 1} requested"
            )
        recorded = self.transcript[self._position]
        self._position += 1
        for call in recorded.tool_calls:
            self.toolbox.call(call.name, call.arguments)
        return recorded


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------

def _elapsed_ms(started: float) -> int:
    return round((time.monotonic() - started) * 1000)


def execute_scenario(
    scenario: ScenarioDetail,
    agent: Agent,
    judge: IntentJudge | None = None,
    prompts_dir: str | Path = ".",
) -> ScenarioRunResult:
    """Run every turn through the agent and check it. Never raises for a bad scenario."""
    started = time.monotonic()
    toolbox = MockToolbox(scenario, prompts_dir)
    turns: list[TurnResult] = []

    try:
        agent.begin(scenario, toolbox)
        for number, spec in enumerate(scenario.turns, start=1):
            reply = agent.respond(spec.user_input)
            checks = evaluate_turn(spec, reply.response, reply.tool_calls, judge)
            turns.append(TurnResult(
                turn=number,
                user_input=spec.user_input,
                agent_response=reply.response,
                tool_calls=reply.tool_calls,
                checks=checks,
            ))
    except Exception as e:
        logger.warning("Scenario %s aborted after %d turn(s): %s", scenario.name, len(turns), e)
        return ScenarioRunResult.from_turns(scenario.name, turns, _elapsed_ms(started),
                                            error=str(e) or type(e).__name__)

    result = ScenarioRunResult.from_turns(scenario.name, turns, _elapsed_ms(started))
    logger.info("Scenario %s %s in %dms", scenario.name, result.status.value, result.duration_ms)
    return result


def run_all(
    scenarios: Iterable[ScenarioDetail],
    agent_factory: Callable[[ScenarioDetail], Agent],
    judge: IntentJudge | None = None,
    prompts_dir: str | Path = ".",
) -> RunAllResult:
    """Execute scenarios one after another with a fresh agent each."""
    started = time.monotonic()
    results = [
        execute_scenario(s, agent_factory(s), judge, prompts_dir)
        for s in scenarios
    ]
    return RunAllResult.aggregate(results, _elapsed_ms(started))
