"""Summary: Email provider and sender implementations.

Importance: Encapsulates Gmail ingestion, thread lookup, and reply sending.
Alternatives: Rely solely on provider SDKs with vendor lock-in.
"""

from __future__ import annotations

import base64
import logging
import re
import urllib.parse
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable

from researchpilot.errors import ProviderUnavailableError
from researchpilot.models import EmailItem, SendResult
from researchpilot.providers import ItemProvider, google_api_request, load_fixture
from researchpilot.session import Session


logger = logging.getLogger(__name__)

BODY_LIMIT = 2000
_HTML_TAG = re.compile(r"<[^>]*>")


class FixtureEmailProvider(ItemProvider):
    """Summary: Loads emails from the packaged JSON fixture.

    Importance: Supports offline runs and the fallback when Gmail is unavailable.
    Alternatives: Return an empty list when no provider is connected.
    """

    variant = "email"

    def __init__(self, fixture_dir: Path | None = None) -> None:
        self._fixture_dir = fixture_dir

    def fetch(self, max_results: int, known_ids: Iterable[str] | None = None) -> list[EmailItem]:
        """Summary: Load fixture emails, skipping known ids.

        Importance: Provides predictable data for tests and demos.
        Alternatives: Generate synthetic messages.
        """

        known = set(known_ids or ())
        emails = [
            EmailItem(
                id=item["id"],
                sender=item["sender"],
                recipient=item["recipient"],
                subject=item["subject"],
                snippet=item.get("snippet", ""),
                body=item.get("body", ""),
                date=item.get("date", ""),
                thread_id=item.get("thread_id"),
                message_id=item.get("message_id"),
            )
            for item in load_fixture("emails.json", self._fixture_dir)[:max_results]
        ]
        return [email for email in emails if email.id not in known]


class GmailEmailProvider(ItemProvider):
    """Summary: Reads emails via the Gmail API using the session's OAuth token.

    Importance: Enables OAuth-based ingestion that downloads only unseen messages.
    Alternatives: Use IMAP or a provider SDK.
    """

    variant = "email"

    def __init__(self, session: Session, base_url: str, timeout: float = 60.0) -> None:
        """Summary: Initialize the Gmail provider.

        Importance: Stores the session and API base URL for requests.
        Alternatives: Pass a static access token.
        """

        self._session = session
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def fetch(self, max_results: int, known_ids: Iterable[str] | None = None) -> list[EmailItem]:
        """Summary: Fetch recent inbox messages, downloading details only for new ids.

        Importance: Keeps repeated fetches cheap once messages are stored.
        Alternatives: Use Gmail history sync or push notifications.
        """

        if not self._session.connected:
            raise ProviderUnavailableError("Not authenticated with Google")
        query = urllib.parse.urlencode({"maxResults": max_results, "labelIds": "INBOX"})
        listing = self._get(f"{self._base_url}/users/me/messages?{query}")
        known = set(known_ids or ())
        new_ids = [
            item["id"]
            for item in listing.get("messages", [])
            if item.get("id") and item["id"] not in known
        ]
        logger.info("Gmail listed %s messages; %s new.", len(listing.get("messages", [])), len(new_ids))
        emails: list[EmailItem] = []
        for message_id in new_ids:
            try:
                detail = self._get(f"{self._base_url}/users/me/messages/{message_id}?format=full")
            except ProviderUnavailableError as exc:
                logger.warning("Failed to fetch Gmail message %s: %s", message_id, exc)
                continue
            emails.append(parse_gmail_message(detail))
        return emails

    def fetch_thread(self, thread_id: str) -> list[EmailItem]:
        """Summary: Fetch every message of a Gmail thread, newest first."""

        payload = self._get(f"{self._base_url}/users/me/threads/{thread_id}?format=full")
        messages = [parse_gmail_message(item) for item in payload.get("messages", [])]
        return list(reversed(messages))

    def _get(self, url: str) -> dict[str, Any]:
        return google_api_request(self._session, url, self._timeout, label="Gmail API")


class EmailSender(ABC):
    """Summary: Abstract interface for sending email.

    Importance: Lets action execution and reply endpoints share a send contract.
    Alternatives: Call the Gmail API directly from each caller.
    """

    @abstractmethod
    def send(
        self,
        to: str,
        subject: str,
        body: str,
        thread_id: str | None = None,
        in_reply_to: str | None = None,
    ) -> SendResult:
        """Summary: Send an email and report the message id or error text."""


class GmailEmailSender(EmailSender):
    """Summary: Sends replies through the Gmail API.

    Importance: Threads replies correctly using In-Reply-To and References headers.
    Alternatives: Send through SMTP with an app password.
    """

    def __init__(self, session: Session, base_url: str, timeout: float = 60.0) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        thread_id: str | None = None,
        in_reply_to: str | None = None,
    ) -> SendResult:
        """Summary: Send an RFC 2822 message and return the Gmail message id.

        Importance: Reports failures as data so callers can log them.
        Alternatives: Raise on send failure.
        """

        if not self._session.connected:
            return SendResult(error="Not authenticated with Google")
        raw_message = build_reply_message(to, subject, body, in_reply_to)
        payload: dict[str, Any] = {"raw": encode_base64url(raw_message)}
        if thread_id:
            payload["threadId"] = thread_id
        try:
            response = google_api_request(
                self._session,
                f"{self._base_url}/users/me/messages/send",
                self._timeout,
                method="POST",
                payload=payload,
                label="Gmail send",
            )
        except ProviderUnavailableError as exc:
            logger.error("Failed to send email to %s: %s", to, exc)
            return SendResult(error=str(exc))
        logger.info("Email sent to %s (id: %s).", to, response.get("id"))
        return SendResult(message_id=response.get("id"))


def build_reply_message(to: str, subject: str, body: str, in_reply_to: str | None = None) -> str:
    """Summary: Build an RFC 2822 plain-text message with a reply subject.

    Importance: Produces the raw payload expected by the Gmail send endpoint.
    Alternatives: Use email.message.EmailMessage.
    """

    reply_subject = subject if subject.startswith("Re:") else f"Re: {subject}"
    headers = [
        f"To: {to}",
        f"Subject: {reply_subject}",
        'Content-Type: text/plain; charset="UTF-8"',
        "MIME-Version: 1.0",
    ]
    if in_reply_to:
        headers.append(f"In-Reply-To: {in_reply_to}")
        headers.append(f"References: {in_reply_to}")
    return "\r\n".join(headers) + "\r\n\r\n" + body


def encode_base64url(data: str) -> str:
    """Summary: Encode text as unpadded base64url."""

    return base64.urlsafe_b64encode(data.encode("utf-8")).decode("ascii").rstrip("=")


def parse_gmail_message(message: dict[str, Any]) -> EmailItem:
    """Summary: Parse a Gmail message payload into an EmailItem.

    Importance: Normalizes Gmail payloads into the core email model.
    Alternatives: Store raw Gmail payloads and parse later.
    """

    payload = message.get("payload") or {}
    headers = _parse_gmail_headers(payload.get("headers", []))
    body = _extract_gmail_body(payload)
    return EmailItem(
        id=message.get("id", ""),
        sender=headers.get("from", ""),
        recipient=headers.get("to", ""),
        subject=headers.get("subject", ""),
        snippet=message.get("snippet", ""),
        body=body[:BODY_LIMIT],
        date=headers.get("date", ""),
        thread_id=message.get("threadId"),
        message_id=headers.get("message-id"),
    )


def _parse_gmail_headers(headers: list[dict[str, Any]]) -> dict[str, str]:
    """Summary: Normalize Gmail header list into a lowercase-keyed dictionary."""

    normalized: dict[str, str] = {}
    for header in headers:
        name = header.get("name")
        value = header.get("value")
        if name and value:
            normalized[name.lower()] = value
    return normalized


def _extract_gmail_body(payload: dict[str, Any]) -> str:
    """Summary: Extract a plain text body from a Gmail payload.

    Importance: Provides readable content for research prompts.
    Alternatives: Store the snippet only for Gmail messages.
    """

    html_parts: list[str] = []
    for part in _walk_gmail_parts(payload):
        data = (part.get("body") or {}).get("data")
        if not data:
            continue
        mime_type = part.get("mimeType")
        if mime_type == "text/plain":
            return _decode_base64url(data)
        if mime_type == "text/html":
            html_parts.append(_HTML_TAG.sub("", _decode_base64url(data)).strip())
    if html_parts:
        return html_parts[0]
    return "(No body content)"


def _walk_gmail_parts(payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Summary: Walk Gmail payload parts recursively."""

    parts: list[dict[str, Any]] = [payload]
    for part in payload.get("parts", []) or []:
        parts.extend(_walk_gmail_parts(part))
    return parts


def _decode_base64url(data: str) -> str:
    """Summary: Decode base64url-encoded Gmail content."""

    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("utf-8")).decode("utf-8", errors="ignore")
