"""Semantic judges for ``expect_message_intent``.

An intent is a description of what the agent's reply should convey
("Asks for the seller's full legal name"), not literal text. The Claude
judge asks the model for a verdict; the keyword judge is a deterministic
offline approximation based on key-term coverage.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any, Protocol

import anthropic

from voicedesk.config import Settings, get_settings
from voicedesk.errors import ScenarioExecutionError

JUDGE_PROMPT = """\
You are grading one turn of a conversation between a user and a real estate \
voice assistant that fills in contract fields.

User said: {user_input}
Assistant replied: {response}

Expected intent of the reply: {intent}

Does the reply convey the expected intent? Paraphrases count. Extra polite \
wording is fine. Asking for a different field, or failing to ask at all, \
does not count.

Return only a JSON object:
{{"passed": true or false, "reason": "one sentence explaining the verdict"}}
"""


@dataclass
class IntentVerdict:
    passed: bool
    reason: str


class IntentJudge(Protocol):
    def judge(self, intent: str, response: str, user_input: str = "") -> IntentVerdict: ...


# ---------------------------------------------------------------------------
# Claude judge
# ---------------------------------------------------------------------------

class ClaudeIntentJudge:
    def __init__(self, api_key: str = "", model: str = "claude-sonnet-4-20250514",
                 client: Any = None):
        self.model = model
        self.client = client or anthropic.Anthropic(api_key=api_key)

    def judge(self, intent: str, response: str, user_input: str = "") -> IntentVerdict:
        if not response.strip():
            return IntentVerdict(False, "Agent gave no reply.")

        message = self.client.messages.create(
            model=self.model,
            max_tokens=512,
            messages=[{
                "role": "user",
                "content": JUDGE_PROMPT.format(
                    user_input=user_input or "(nothing, the assistant continues)",
                    response=response,
                    intent=intent,
                ),
            }],
        )

        # Parse JSON from the response (handle markdown code blocks)
        text = message.content[0].text.strip()
        if text.startswith("```"):
            text = text.split("\n", 1)[1]
            text = text.rsplit("```", 1)[0]
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ScenarioExecutionError(f"Intent judge returned invalid JSON: {text[:200]}") from e

        if not isinstance(data, dict) or not isinstance(data.get("passed"), bool):
            raise ScenarioExecutionError(f"Intent judge returned an unexpected verdict: {text[:200]}")
        return IntentVerdict(data["passed"], str(data.get("reason") or ""))


# ---------------------------------------------------------------------------
# Keyword judge
# ---------------------------------------------------------------------------

STOPWORDS = frozenset("""
a an and are as ask asks asking at be but by can could do does for from has have he her his
how i if in into is it its me my of on or our please should so that the their them then there
they this to up us was we what when where which who will with would you your about agent user
say says tell tells confirm confirms let know
""".split())


def key_terms(text: str) -> set[str]:
    """Lowercased content words with a light plural/possessive strip."""
    terms = set()
    for word in re.findall(r"[a-z0-9']+", text.lower()):
        word = word.removesuffix("'s").strip("'")
        if len(word) > 4 and word.endswith("s") and not word.endswith("ss"):
            word = word[:-1]
        if len(word) >= 3 and word not in STOPWORDS:
            terms.add(word)
    return terms


class KeywordIntentJudge:
    def __init__(self, threshold: float = 0.5):
        self.threshold = threshold

    def judge(self, intent: str, response: str, user_input: str = "") -> IntentVerdict:
        if not response.strip():
            return IntentVerdict(False, "Agent gave no reply.")

        wanted = key_terms(intent)
        if not wanted:
            return IntentVerdict(True, "Intent has no key terms to compare against.")

        found = wanted & key_terms(response)
        coverage = len(found) / len(wanted)
        if coverage >= self.threshold:
            return IntentVerdict(True, f"Reply covers {len(found)} of {len(wanted)} key terms.")
        missing = ", ".join(sorted(wanted - found))
        return IntentVerdict(
            False,
            f"Reply covers {len(found)} of {len(wanted)} key terms of the intent; missing: {missing}.",
        )


def get_judge(settings: Settings | None = None) -> IntentJudge:
    """Claude when an Anthropic key is configured, keyword coverage otherwise."""
    settings = settings or get_settings()
    if settings.has_anthropic():
        return ClaudeIntentJudge(settings.anthropic_api_key, settings.judge_model)
    return KeywordIntentJudge()
