"""Shared fixtures and utilities for launcher-auth tests."""

import json
import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest

from launcher_auth.config import ENV_PREFIX, AuthSettings, JsonConfigStore
from launcher_auth.oauth.tokens import Session


# ============================================================================
# Fake Provider
# ============================================================================


class FakeProvider:
    """In-process stand-in for the account service endpoints.

    Each endpoint returns the configured status and JSON body. Every request
    is recorded so tests can assert on what was sent.
    """

    def __init__(self, settings: AuthSettings):
        self.settings = settings
        self.requests: list[httpx.Request] = []
        self.token_counter = 0

        self.token_status = 200
        self.token_body: dict[str, Any] | None = None
        self.refresh_status = 200
        self.refresh_body: dict[str, Any] | None = None
        self.profile_status = 200
        self.profile_body: Any = {
            "owner": "owner-1",
            "profiles": [{"uuid": "uuid-1", "username": "Player1"}],
        }
        self.game_session_status = 200
        self.game_session_body: Any = None
        self.network_error_on: set[str] = set()

    def requests_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]

    def form_of(self, request: httpx.Request) -> dict[str, str]:
        return dict(httpx.QueryParams(request.content.decode()))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)

        if url in self.network_error_on:
            raise httpx.ConnectError("connection refused", request=request)

        if url == self.settings.token_url:
            form = self.form_of(request)
            if form.get("grant_type") == "refresh_token":
                return self._token_response(self.refresh_status, self.refresh_body)
            return self._token_response(self.token_status, self.token_body)

        if url == self.settings.launcher_data_url:
            return httpx.Response(self.profile_status, json=self.profile_body)

        if url == self.settings.game_session_url:
            self.token_counter += 1
            body = self.game_session_body or {
                "sessionToken": f"session-{self.token_counter}",
                "identityToken": f"identity-{self.token_counter}",
                "expiresAt": "2030-01-01T00:00:00Z",
            }
            return httpx.Response(self.game_session_status, json=body)

        return httpx.Response(404, text="not found")

    def _token_response(self, status: int, body: dict[str, Any] | None) -> httpx.Response:
        if status != 200:
            return httpx.Response(status, json={"error": "invalid_grant"})
        self.token_counter += 1
        return httpx.Response(
            200,
            json=body
            or {
                "access_token": f"access-{self.token_counter}",
                "refresh_token": f"refresh-{self.token_counter}",
                "expires_in": 3600,
            },
        )


# ============================================================================
# Settings and Config Fixtures
# ============================================================================


@pytest.fixture
def app_dir(tmp_path: Path) -> Path:
    """Temporary launcher data directory."""
    path = tmp_path / "app"
    path.mkdir()
    return path


@pytest.fixture
def settings(app_dir: Path) -> AuthSettings:
    """Settings pointing at the temporary app dir, plain-text token storage."""
    return AuthSettings(app_dir=app_dir, encrypt_tokens=False, callback_timeout=5.0)


@pytest.fixture
def config_store(app_dir: Path) -> JsonConfigStore:
    """Profile config with one active profile named 'Main'."""
    path = app_dir / "launcher_config.json"
    path.write_text(
        json.dumps(
            {
                "activeProfileIndex": 0,
                "profiles": [
                    {"name": "Main", "isOfficial": False},
                    {"name": "Alt", "isOfficial": True},
                    {"name": "Offline", "isOfficial": False},
                ],
            }
        )
    )
    return JsonConfigStore(path)


# ============================================================================
# HTTP Fixtures
# ============================================================================


@pytest.fixture
def provider(settings: AuthSettings) -> FakeProvider:
    """Fake account service."""
    return FakeProvider(settings)


@pytest.fixture
def http_client(provider: FakeProvider) -> httpx.AsyncClient:
    """HTTP client routed to the fake account service (no sockets to close)."""
    return httpx.AsyncClient(transport=httpx.MockTransport(provider.handler))


# ============================================================================
# Session Helpers
# ============================================================================


def build_session(expires_in: timedelta = timedelta(hours=1), **overrides: Any) -> Session:
    """Build a fully populated session expiring ``expires_in`` from now."""
    values: dict[str, Any] = {
        "access_token": "access-0",
        "refresh_token": "refresh-0",
        "expires_at": datetime.now(timezone.utc) + expires_in,
        "session_token": "session-0",
        "identity_token": "identity-0",
        "username": "Player1",
        "uuid": "uuid-1",
        "account_owner_id": "owner-1",
    }
    values.update(overrides)
    return Session(**values)


@pytest.fixture
def make_session() -> Callable[..., Session]:
    """Factory for fully populated sessions."""
    return build_session


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Temporarily clear LAUNCHER_AUTH_* environment variables."""
    old_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith(ENV_PREFIX):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(old_env)
