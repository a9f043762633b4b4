"""Two-phase extraction resolver for live voice calls.

Phase 1 (discovering): GET /v1/extractions?callId={callId} returns an array
that may include records from earlier sessions on the same contract. The
record whose callId exactly equals ours carries the documentId.

Phase 2 (polling): GET /v1/extractions/{documentId} for every later poll.

The resolved documentId is tagged with the callId that produced it and is
only trusted while that callId is still current. Changing the callId drops
every cached extraction result and starts a new session generation, so a
response issued under the old call is discarded when it lands.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from voicedesk.engine.fields import FieldEntry, flatten_fields
from voicedesk.errors import ExtractionFetchError
from voicedesk.integrations.extractions_api import ExtractionsApi
from voicedesk.models import ExtractionRecord

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 1000
CACHE_PREFIX = "extractions"


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------

class Phase(str, Enum):
    IDLE = "idle"
    DISCOVERING = "discovering"
    POLLING = "polling"


@dataclass(frozen=True)
class Idle:
    phase = Phase.IDLE
    call_id = None
    document_id = None


@dataclass(frozen=True)
class Discovering:
    call_id: str
    phase = Phase.DISCOVERING
    document_id = None


@dataclass(frozen=True)
class Polling:
    call_id: str
    document_id: str
    phase = Phase.POLLING


ResolverState = Idle | Discovering | Polling


@dataclass(frozen=True)
class Resolution:
    document_id: str
    for_call_id: str


def current_state(call_id: str | None, resolution: Resolution | None) -> ResolverState:
    """State for a callId given the last resolution. Stale resolutions are ignored."""
    if not call_id:
        return Idle()
    if resolution is not None and resolution.for_call_id == call_id:
        return Polling(call_id, resolution.document_id)
    return Discovering(call_id)


def match_call(records: list[ExtractionRecord], call_id: str) -> ExtractionRecord | None:
    """The record created by this exact call, if the agent has initialized it yet."""
    return next((r for r in records if r.call_id == call_id), None)


def resolve(resolution: Resolution | None, call_id: str,
            record: ExtractionRecord | None) -> Resolution | None:
    """Resolution after a phase-1 poll. An existing one for call_id is never replaced."""
    if resolution is not None and resolution.for_call_id == call_id:
        return resolution
    if record is None or not record.document_id:
        return resolution
    return Resolution(document_id=record.document_id, for_call_id=call_id)


# ---------------------------------------------------------------------------
# Query cache
# ---------------------------------------------------------------------------

class QueryCache:
    """Last result per query key. Keys are tuples; removal is by prefix."""

    def __init__(self) -> None:
        self._entries: dict[tuple, Any] = {}

    def get(self, key: tuple, default: Any = None) -> Any:
        return self._entries.get(key, default)

    def set(self, key: tuple, value: Any) -> None:
        self._entries[key] = value

    def remove(self, prefix: tuple) -> int:
        stale = [k for k in self._entries if k[:len(prefix)] == prefix]
        for k in stale:
            del self._entries[k]
        return len(stale)

    def keys(self) -> list[tuple]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Snapshot returned by every poll
# ---------------------------------------------------------------------------

@dataclass
class ExtractionSnapshot:
    call_id: str | None
    phase: Phase
    data: ExtractionRecord | None = None
    error: Exception | None = None
    fetched: bool = False

    @property
    def fields(self) -> list[FieldEntry]:
        return flatten_fields(self.data.fields_json) if self.data else []

    @property
    def required_fields(self) -> list[str] | dict[str, Any]:
        return self.data.required_fields if self.data else {}

    @property
    def document_type(self) -> str | None:
        return self.data.document_type if self.data else None

    @property
    def jurisdiction_code(self) -> str | None:
        return self.data.jurisdiction_code if self.data else None

    @property
    def call_status(self) -> str | None:
        return self.data.call_status if self.data else None


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class ExtractionResolver:
    """Discover and then poll the extraction for the current voice call."""

    def __init__(
        self,
        api: ExtractionsApi,
        call_id: str | None = None,
        user_id: str | None = None,
        poll_interval_ms: int | None = DEFAULT_POLL_INTERVAL_MS,
        enabled: bool = True,
        cache: QueryCache | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.api = api
        self.user_id = user_id
        self.poll_interval_ms = (
            poll_interval_ms if poll_interval_ms and poll_interval_ms > 0
            else DEFAULT_POLL_INTERVAL_MS
        )
        self.enabled = enabled
        self.cache = cache if cache is not None else QueryCache()
        self.sleep = sleep
        self.resolution: Resolution | None = None
        self._call_id: str | None = None
        self._generation = 0
        self.set_call_id(call_id)

    @property
    def call_id(self) -> str | None:
        return self._call_id

    @property
    def state(self) -> ResolverState:
        return current_state(self._call_id, self.resolution)

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def poll_interval(self) -> float:
        return self.poll_interval_ms / 1000

    def set_call_id(self, call_id: str | None) -> None:
        """Switch to a new voice session. Drops cached results from the old one."""
        call_id = call_id or None
        if call_id == self._call_id and self._generation:
            return
        removed = self.cache.remove((CACHE_PREFIX,))
        self._generation += 1
        self._call_id = call_id
        logger.debug("callId -> %s (generation %d, %d cache entries dropped)",
                     call_id, self._generation, removed)

    def stop(self) -> None:
        self.enabled = False

    def query_key(self, state: ResolverState | None = None) -> tuple:
        state = state or self.state
        return (CACHE_PREFIX, state.call_id, state.phase.value, state.document_id)

    def snapshot(self) -> ExtractionSnapshot:
        """Current cached view without touching the network."""
        state = self.state
        return ExtractionSnapshot(state.call_id, state.phase,
                                  data=self.cache.get(self.query_key(state)))

    def _is_current(self, generation: int, call_id: str) -> bool:
        return generation == self._generation and call_id == self._call_id

    def poll(self) -> ExtractionSnapshot:
        """Run one poll for the current state and return what the caller should show."""
        state = self.state
        if isinstance(state, Idle) or not self.enabled:
            return self.snapshot()

        generation = self._generation
        key = self.query_key(state)
        logger.debug("poll callId=%s phase=%s documentId=%s",
                     state.call_id, state.phase.value, state.document_id)

        try:
            if isinstance(state, Polling):
                data = self.api.get(state.document_id)
            else:
                records = self.api.list_for_call(state.call_id, self.user_id)
                data = match_call(records, state.call_id)
        except (httpx.HTTPError, ExtractionFetchError) as e:
            if not self._is_current(generation, state.call_id):
                return self.snapshot()
            logger.warning("Extraction poll failed for call %s: %s", state.call_id, e)
            return ExtractionSnapshot(state.call_id, state.phase,
                                      data=self.cache.get(key), error=e)

        if not self._is_current(generation, state.call_id):
            logger.debug("Discarding %s result for stale call %s",
                         state.phase.value, state.call_id)
            return self.snapshot()

        if isinstance(state, Discovering):
            if data is None:
                logger.debug("No extraction yet for call %s", state.call_id)
            else:
                self.resolution = resolve(self.resolution, state.call_id, data)
                logger.info("Resolved call %s -> document %s",
                            state.call_id, self.resolution.document_id if self.resolution else None)

        self.cache.set(key, data)
        return ExtractionSnapshot(state.call_id, state.phase, data=data, fetched=True)

    def watch(self, max_polls: int | None = None) -> Iterator[ExtractionSnapshot]:
        """Poll at a fixed interval while enabled and a callId is present.

        Stops when the caller stops iterating, calls ``stop()``, clears the
        callId, or after ``max_polls`` polls.
        """
        polls = 0
        while self.enabled and self._call_id:
            yield self.poll()
            polls += 1
            if max_polls is not None and polls >= max_polls:
                return
            self.sleep(self.poll_interval)
