"""Summary: Explicit Google session with file-backed credentials.

Importance: Replaces global auth state so providers, senders, and writers share one connection handle.
Alternatives: Store OAuth tokens in the SQLite database.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from researchpilot.config import AppConfig
from researchpilot.errors import ProviderUnavailableError
from researchpilot.oauth import OAuthTokenResult, refresh_google_token, revoke_google_token


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionCredentials:
    """Summary: Tokens held by a connected session.

    Importance: Gives the token file a stable, documented shape.
    Alternatives: Persist the raw provider token payload.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: str | None = None
    token_type: str | None = None

    @staticmethod
    def from_token_result(result: OAuthTokenResult) -> "SessionCredentials":
        return SessionCredentials(
            access_token=result.access_token,
            refresh_token=result.refresh_token,
            expires_at=result.expires_at,
            token_type=result.token_type,
        )

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "SessionCredentials":
        return SessionCredentials(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=payload.get("expires_at"),
            token_type=payload.get("token_type"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "token_type": self.token_type,
        }


class Session:
    """Summary: Connection handle for the user's Google account.

    Importance: Lets every external call ask for a valid access token in one place.
    Alternatives: Pass raw tokens to each provider at construction time.
    """

    def __init__(
        self,
        config: AppConfig,
        token_path: Path | None = None,
        refresher: Callable[[AppConfig, str], OAuthTokenResult] = refresh_google_token,
        revoker: Callable[[AppConfig, str], None] = revoke_google_token,
    ) -> None:
        """Summary: Load any saved credentials from the token file.

        Importance: Restores a previous connection across restarts.
        Alternatives: Require reconnecting on every start.
        """

        self._config = config
        self._token_path = token_path or Path(config.token_path)
        self._refresher = refresher
        self._revoker = revoker
        self._lock = threading.Lock()
        self._credentials = self._load()

    @property
    def connected(self) -> bool:
        return self.current() is not None

    def current(self) -> SessionCredentials | None:
        """Summary: Return the held credentials, or None when disconnected."""

        with self._lock:
            return self._credentials

    def connect(self, credentials: SessionCredentials | OAuthTokenResult) -> None:
        """Summary: Hold new credentials and persist them to the token file.

        Importance: Completes the OAuth callback flow.
        Alternatives: Keep credentials only in memory.
        """

        if isinstance(credentials, OAuthTokenResult):
            credentials = SessionCredentials.from_token_result(credentials)
        with self._lock:
            self._credentials = credentials
            self._save(credentials)
        logger.info("Google session connected.")

    def disconnect(self) -> None:
        """Summary: Revoke held credentials and delete the token file.

        Importance: Backs sign-out and full data deletion; safe to call when already disconnected.
        Alternatives: Only delete the local token file.
        """

        with self._lock:
            credentials = self._credentials
            self._credentials = None
            if self._token_path.exists():
                self._token_path.unlink()
        if credentials is None:
            return
        try:
            self._revoker(self._config, credentials.refresh_token or credentials.access_token)
        except (RuntimeError, OSError) as exc:
            logger.warning("Token revocation failed: %s", exc)
        logger.info("Google session disconnected.")

    def access_token(self) -> str:
        """Summary: Return a usable access token, refreshing near expiry.

        Importance: Keeps provider calls working without manual re-auth.
        Alternatives: Always re-run OAuth flows for each session.
        """

        with self._lock:
            credentials = self._credentials
            if credentials is None:
                raise ProviderUnavailableError("Not authenticated with Google")
            if not _expires_soon(credentials.expires_at):
                return credentials.access_token
            if not credentials.refresh_token:
                raise ProviderUnavailableError("Access token expired and no refresh token is available")
            try:
                result = self._refresher(self._config, credentials.refresh_token)
            except (RuntimeError, ValueError, OSError) as exc:
                raise ProviderUnavailableError(f"Token refresh failed: {exc}") from exc
            refreshed = SessionCredentials(
                access_token=result.access_token,
                refresh_token=result.refresh_token or credentials.refresh_token,
                expires_at=result.expires_at,
                token_type=result.token_type or credentials.token_type,
            )
            self._credentials = refreshed
            self._save(refreshed)
        logger.info("Refreshed Google access token.")
        return refreshed.access_token

    def _load(self) -> SessionCredentials | None:
        if not self._token_path.exists():
            return None
        try:
            payload = json.loads(self._token_path.read_text(encoding="utf-8"))
            return SessionCredentials.from_dict(payload)
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            logger.warning("Could not load saved tokens from %s: %s", self._token_path, exc)
            return None

    def _save(self, credentials: SessionCredentials) -> None:
        self._token_path.write_text(json.dumps(credentials.to_dict(), indent=2), encoding="utf-8")


def _expires_soon(expires_at: str | None) -> bool:
    """Summary: Check if a token is expired or near expiry."""

    if not expires_at:
        return False
    try:
        expires = datetime.fromisoformat(expires_at)
    except ValueError:
        return False
    if expires.tzinfo is None:
        expires = expires.replace(tzinfo=timezone.utc)
    return expires <= datetime.now(timezone.utc) + timedelta(seconds=60)
