"""Summary: Tests for Gmail parsing and reply helpers.

Importance: Ensures Gmail payloads are normalized and replies thread correctly.
Alternatives: Use integration tests with the live Gmail API.
"""

from __future__ import annotations

import base64

from researchpilot.email import (
    BODY_LIMIT,
    FixtureEmailProvider,
    GmailEmailSender,
    _extract_gmail_body,
    build_reply_message,
    encode_base64url,
    parse_gmail_message,
)


class _DisconnectedSession:
    connected = False


def _encode(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("utf-8").rstrip("=")


def test_parse_gmail_message_maps_headers_case_insensitively() -> None:
    """Summary: Verify header parsing and body extraction for a full message.

    Importance: Confirms Gmail messages map onto the core email model.
    Alternatives: Access the header list directly in callers.
    """

    message = {
        "id": "m1",
        "threadId": "t1",
        "snippet": "Hello there",
        "payload": {
            "headers": [
                {"name": "From", "value": "sender@example.com"},
                {"name": "TO", "value": "me@example.com"},
                {"name": "Subject", "value": "Hello"},
                {"name": "Date", "value": "Mon, 9 Feb 2026 10:00:00 +0000"},
                {"name": "Message-ID", "value": "<m1@example.com>"},
            ],
            "mimeType": "text/plain",
            "body": {"data": _encode("x" * (BODY_LIMIT + 50))},
        },
    }
    email = parse_gmail_message(message)
    assert email.id == "m1"
    assert email.thread_id == "t1"
    assert email.sender == "sender@example.com"
    assert email.recipient == "me@example.com"
    assert email.message_id == "<m1@example.com>"
    assert len(email.body) == BODY_LIMIT


def test_extract_gmail_body_prefers_plain_text() -> None:
    payload = {
        "mimeType": "multipart/alternative",
        "parts": [
            {"mimeType": "text/html", "body": {"data": _encode("<p>Hi html</p>")}},
            {"mimeType": "text/plain", "body": {"data": _encode("Hi plain")}},
        ],
    }
    assert _extract_gmail_body(payload) == "Hi plain"


def test_extract_gmail_body_strips_html_and_handles_empty() -> None:
    payload = {"mimeType": "text/html", "body": {"data": _encode("<p>Hello <b>world</b></p>")}}
    assert _extract_gmail_body(payload) == "Hello world"
    assert _extract_gmail_body({"mimeType": "multipart/mixed", "parts": []}) == "(No body content)"


def test_build_reply_message_threads_headers() -> None:
    raw = build_reply_message("a@example.com", "Pricing", "Thanks!", in_reply_to="<m1@example.com>")
    headers, body = raw.split("\r\n\r\n", 1)
    assert "Subject: Re: Pricing" in headers.split("\r\n")
    assert "In-Reply-To: <m1@example.com>" in headers
    assert "References: <m1@example.com>" in headers
    assert body == "Thanks!"
    assert "Subject: Re: Pricing" in build_reply_message("a@example.com", "Re: Pricing", "x")
    assert "In-Reply-To" not in build_reply_message("a@example.com", "Pricing", "x")


def test_encode_base64url_is_unpadded() -> None:
    encoded = encode_base64url("ab")
    assert "=" not in encoded
    padded = encoded + "=" * (-len(encoded) % 4)
    assert base64.urlsafe_b64decode(padded).decode("utf-8") == "ab"


def test_sender_reports_missing_session() -> None:
    sender = GmailEmailSender(_DisconnectedSession(), "https://gmail.example.com")
    result = sender.send("a@example.com", "Hi", "Body")
    assert result.message_id is None
    assert result.error == "Not authenticated with Google"


def test_fixture_provider_skips_known_ids() -> None:
    emails = FixtureEmailProvider().fetch(10, known_ids={"email-2"})
    assert [email.id for email in emails] == ["email-1", "email-3"]
