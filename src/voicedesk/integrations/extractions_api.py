"""Extraction endpoints of the main backend.

    GET /v1/extractions?callId=...&userId=...   -> array (phase 1)
    GET /v1/extractions/{documentId}            -> single record (phase 2)

Any body that cannot be read as the expected shape raises
ExtractionFetchError, same as a non-2xx status.
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from voicedesk.errors import ExtractionFetchError
from voicedesk.models import ExtractionRecord


class ExtractionsApi:
    def __init__(self, client: httpx.Client):
        self.client = client

    def _get(self, path: str, params: dict[str, str] | None = None):
        resp = self.client.get(path, params=params)
        if not resp.is_success:
            raise ExtractionFetchError(
                f"Failed to fetch extractions: {resp.reason_phrase or resp.status_code}",
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as e:
            raise ExtractionFetchError(
                "Failed to fetch extractions: response body is not JSON",
                status_code=resp.status_code,
            ) from e

    def _record(self, data: Any) -> ExtractionRecord:
        # pydantic's ValidationError is a ValueError
        try:
            return ExtractionRecord.model_validate(data)
        except ValueError as e:
            raise ExtractionFetchError(f"Failed to fetch extractions: malformed record ({e})") from e

    def list_for_call(self, call_id: str, user_id: str | None = None) -> list[ExtractionRecord]:
        """All extraction records tied to a call (may include older sessions)."""
        if not call_id:
            raise ValueError("call_id is required")
        params = {"callId": call_id}
        if user_id:
            params["userId"] = user_id
        data = self._get("/v1/extractions", params)
        if data is None:
            return []
        if not isinstance(data, list):
            raise ExtractionFetchError(
                f"Failed to fetch extractions: expected a list, got {type(data).__name__}"
            )
        return [self._record(item) for item in data]

    def get(self, document_id: str) -> ExtractionRecord | None:
        """Single extraction record by documentId."""
        data = self._get(f"/v1/extractions/{quote(document_id, safe='')}")
        if data is None:
            return None
        return self._record(data)
