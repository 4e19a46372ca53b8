"""Summary: Google OAuth helpers for Gmail and Calendar access.

Importance: Builds consent URLs and performs token exchange, refresh, and revocation without extra dependencies.
Alternatives: Use google-auth-oauthlib for OAuth flows.
"""

from __future__ import annotations

import json
import secrets
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from researchpilot.config import AppConfig


GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_SCOPES = " ".join(
    (
        "https://www.googleapis.com/auth/gmail.readonly",
        "https://www.googleapis.com/auth/gmail.send",
        "https://www.googleapis.com/auth/calendar.readonly",
        "https://www.googleapis.com/auth/calendar.events",
    )
)


@dataclass(frozen=True)
class OAuthTokenResult:
    """Summary: Tokens returned by the Google token endpoint.

    Importance: Provides a consistent token representation for the session file and refresh logic.
    Alternatives: Store the raw provider response without normalization.
    """

    access_token: str
    refresh_token: str | None
    expires_at: str | None
    token_type: str | None
    raw: dict[str, Any]

    @staticmethod
    def from_response(payload: dict[str, Any]) -> "OAuthTokenResult":
        """Summary: Parse a token endpoint payload.

        Importance: Converts relative expiry into an absolute timestamp.
        Alternatives: Keep expires_in and the fetch time separately.
        """

        if "access_token" not in payload:
            raise RuntimeError(f"Token response missing access_token: {payload}")
        expires_in = payload.get("expires_in")
        expires_at = None
        if isinstance(expires_in, int):
            expires_at = (datetime.now(timezone.utc) + timedelta(seconds=expires_in)).isoformat()
        return OAuthTokenResult(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=expires_at,
            token_type=payload.get("token_type"),
            raw=payload,
        )


def create_state_token() -> str:
    """Summary: Create a random state value for the consent redirect.

    Importance: The callback rejects redirects whose state it did not issue.
    Alternatives: Sign the state with a server secret.
    """

    return secrets.token_urlsafe(24)


def build_google_auth_url(config: AppConfig, state: str) -> str:
    """Summary: Build the Google consent URL for Gmail and Calendar scopes.

    Importance: Requests offline access so the session can refresh tokens later.
    Alternatives: Request online access and reconnect hourly.
    """

    params = {
        "client_id": config.google_client_id,
        "redirect_uri": config.oauth_redirect_uri,
        "response_type": "code",
        "access_type": "offline",
        "prompt": "consent",
        "scope": GOOGLE_SCOPES,
        "state": state,
    }
    return f"{GOOGLE_AUTH_URL}?{urllib.parse.urlencode(params)}"


def exchange_google_code(config: AppConfig, code: str) -> OAuthTokenResult:
    """Summary: Trade the callback code for access and refresh tokens.

    Importance: Completes the consent flow by retrieving access and refresh tokens.
    Alternatives: Use google-auth-oauthlib.
    """

    _ensure_oauth_config(config)
    payload = {
        "client_id": config.google_client_id,
        "client_secret": config.google_client_secret,
        "code": code,
        "grant_type": "authorization_code",
        "redirect_uri": config.oauth_redirect_uri,
    }
    response = _post_form(config.google_token_url, payload, config.request_timeout_seconds)
    return OAuthTokenResult.from_response(response)


def refresh_google_token(config: AppConfig, refresh_token: str) -> OAuthTokenResult:
    """Summary: Refresh an access token using a refresh token.

    Importance: Keeps provider calls working without re-running consent.
    Alternatives: Require the user to reconnect on expiry.
    """

    _ensure_oauth_config(config)
    payload = {
        "client_id": config.google_client_id,
        "client_secret": config.google_client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }
    response = _post_form(config.google_token_url, payload, config.request_timeout_seconds)
    return OAuthTokenResult.from_response(response)


def revoke_google_token(config: AppConfig, token: str) -> None:
    """Summary: Revoke an access or refresh token at Google."""

    request = urllib.request.Request(
        config.google_revoke_url,
        data=urllib.parse.urlencode({"token": token}).encode("utf-8"),
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=config.request_timeout_seconds):
            return
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8") if exc.fp else ""
        raise RuntimeError(f"Token revocation failed: {error_body or exc.reason}") from exc
    except urllib.error.URLError as exc:
        raise RuntimeError(f"Token revocation failed: {exc.reason}") from exc


def _ensure_oauth_config(config: AppConfig) -> None:
    """Summary: Fail fast when the client id or secret is unset.

    Importance: Surfaces a configuration error instead of an opaque 400 from Google.
    Alternatives: Let the token endpoint reject the request.
    """

    if not config.google_client_id or not config.google_client_secret:
        raise ValueError("Missing OAuth client credentials for google")


def _post_form(url: str, payload: dict[str, str], timeout: float) -> dict[str, Any]:
    """Summary: POST form fields and decode the JSON reply.

    Importance: Shared by code exchange and refresh.
    Alternatives: Use requests.
    """

    data = urllib.parse.urlencode(payload).encode("utf-8")
    request = urllib.request.Request(
        url,
        data=data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8") if exc.fp else ""
        raise RuntimeError(f"Token exchange failed: {error_body or exc.reason}") from exc
    except urllib.error.URLError as exc:
        raise RuntimeError(f"Token exchange failed: {exc.reason}") from exc
    return json.loads(raw)
