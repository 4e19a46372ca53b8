"""Summary: Tests for the explicit Google session.

Importance: Ensures tokens persist, refresh near expiry, and are removed on sign-out.
Alternatives: Test sessions only through the OAuth callback.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from researchpilot.config import AppConfig
from researchpilot.errors import ProviderUnavailableError
from researchpilot.oauth import OAuthTokenResult
from researchpilot.session import Session, SessionCredentials


def _config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        db_path=str(tmp_path / "session.db"),
        ai_provider="mock",
        openai_api_key=None,
        openai_model="gpt-4o-mini",
        openai_base_url="https://api.openai.com/v1",
        ollama_url="http://localhost:11434",
        ollama_model="llama3.1",
        search_provider="mock",
        linkup_api_key=None,
        linkup_base_url="https://api.linkup.so/v1",
        research_step_limit=10,
        request_timeout_seconds=5.0,
        debounce_seconds=0.05,
        fetch_limit=10,
        user_email="me@mycompany.com",
        token_path=str(tmp_path / "tokens.json"),
        google_client_id="client",
        google_client_secret="secret",
        oauth_redirect_uri="http://localhost:8000/oauth/callback",
        google_token_url="https://oauth2.googleapis.com/token",
        google_revoke_url="https://oauth2.googleapis.com/revoke",
        gmail_api_base_url="https://gmail.googleapis.com/gmail/v1",
        calendar_api_base_url="https://www.googleapis.com/calendar/v3",
        api_host="127.0.0.1",
        api_port=8000,
        api_key="",
    )


def _expiring(minutes: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(minutes=minutes)).isoformat()


def test_connect_persists_tokens_across_instances(tmp_path: Path) -> None:
    config = _config(tmp_path)
    session = Session(config)
    assert not session.connected
    session.connect(SessionCredentials(access_token="at", refresh_token="rt", expires_at=_expiring(30)))
    restored = Session(config)
    assert restored.connected
    assert restored.access_token() == "at"


def test_access_token_requires_connection(tmp_path: Path) -> None:
    with pytest.raises(ProviderUnavailableError):
        Session(_config(tmp_path)).access_token()


def test_access_token_refreshes_near_expiry(tmp_path: Path) -> None:
    """Summary: Verify expiring tokens refresh and keep the old refresh token.

    Importance: Providers keep working without re-running consent.
    Alternatives: Force users to reconnect when tokens expire.
    """

    refreshed_with: list[str] = []

    def _refresh(config: AppConfig, refresh_token: str) -> OAuthTokenResult:
        refreshed_with.append(refresh_token)
        return OAuthTokenResult(
            access_token="new-at",
            refresh_token=None,
            expires_at=_expiring(60),
            token_type="Bearer",
            raw={},
        )

    config = _config(tmp_path)
    session = Session(config, refresher=_refresh)
    session.connect(SessionCredentials(access_token="old-at", refresh_token="rt", expires_at=_expiring(0)))
    assert session.access_token() == "new-at"
    assert refreshed_with == ["rt"]
    current = session.current()
    assert current is not None
    assert current.refresh_token == "rt"
    assert Session(config).access_token() == "new-at"


def test_refresh_failure_surfaces_as_unavailable(tmp_path: Path) -> None:
    def _refresh(config: AppConfig, refresh_token: str) -> OAuthTokenResult:
        raise RuntimeError("Token exchange failed: invalid_grant")

    session = Session(_config(tmp_path), refresher=_refresh)
    session.connect(SessionCredentials(access_token="at", refresh_token="rt", expires_at=_expiring(-5)))
    with pytest.raises(ProviderUnavailableError, match="invalid_grant"):
        session.access_token()


def test_disconnect_revokes_and_is_idempotent(tmp_path: Path) -> None:
    revoked: list[str] = []

    def _revoke(config: AppConfig, token: str) -> None:
        revoked.append(token)
        raise RuntimeError("network down")

    config = _config(tmp_path)
    session = Session(config, revoker=_revoke)
    session.connect(SessionCredentials(access_token="at", refresh_token="rt"))
    session.disconnect()
    session.disconnect()
    assert revoked == ["rt"]
    assert not session.connected
    assert not Path(config.token_path).exists()


def test_corrupt_token_file_is_ignored(tmp_path: Path) -> None:
    config = dataclasses.replace(_config(tmp_path), token_path=str(tmp_path / "broken.json"))
    Path(config.token_path).write_text("{not json", encoding="utf-8")
    assert not Session(config).connected
