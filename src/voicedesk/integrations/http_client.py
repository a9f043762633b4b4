"""Authenticated HTTP client construction.

Both the extraction resolver and the runner client take an ``httpx.Client``
in their constructor. This module builds one with the base URL, timeout and
bearer-token auth wired in.
"""

from __future__ import annotations

from collections.abc import Callable, Generator

import httpx

from voicedesk.config import Settings, get_settings

TokenProvider = Callable[[], "str | None"]


class BearerAuth(httpx.Auth):
    """Attach ``Authorization: Bearer <token>`` using a token fetched per request.

    The provider is called for every request so a refreshed session token is
    picked up without rebuilding the client. A falsy token sends no header.
    """

    def __init__(self, token_provider: TokenProvider):
        self.token_provider = token_provider

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        token = self.token_provider()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        yield request


def static_token(token: str) -> TokenProvider:
    return lambda: token


def build_client(
    base_url: str,
    token_provider: TokenProvider | None = None,
    timeout: float = 30.0,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """Create a JSON client rooted at base_url."""
    return httpx.Client(
        base_url=base_url.rstrip("/"),
        auth=BearerAuth(token_provider) if token_provider else None,
        headers={"Content-Type": "application/json"},
        timeout=timeout,
        transport=transport,
    )


def backend_client(settings: Settings | None = None) -> httpx.Client:
    """Client for the main backend (extraction endpoints)."""
    settings = settings or get_settings()
    provider = static_token(settings.api_token) if settings.has_api_token() else None
    return build_client(settings.api_base_url, provider, settings.http_timeout)


def runner_http_client(settings: Settings | None = None) -> httpx.Client:
    """Client for the scenario test-runner service."""
    settings = settings or get_settings()
    provider = static_token(settings.api_token) if settings.has_api_token() else None
    return build_client(settings.qa_runner_url, provider, settings.http_timeout)
