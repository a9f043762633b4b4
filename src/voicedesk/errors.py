"""Exception types shared by the extraction resolver and scenario runner."""

from __future__ import annotations


class VoicedeskError(Exception):
    """Base class for voicedesk failures."""


class ExtractionFetchError(VoicedeskError):
    """An extraction endpoint answered with a non-2xx status or an unreadable body."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RunnerError(VoicedeskError):
    """The scenario runner service rejected a request.

    The message is the server-provided ``detail``/``message`` when one was
    sent, so it can be shown to the user as-is.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ScenarioExecutionError(VoicedeskError):
    """Scenario execution aborted (mock misconfiguration, agent crash)."""
