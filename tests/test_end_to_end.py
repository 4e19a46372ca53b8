"""Summary: End-to-end workflow tests across ingestion, research, insights, and actions.

Importance: Confirms the wired services cooperate the way the CLI and API use them.
Alternatives: Rely on per-module tests only.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Iterable

from researchpilot.app import build_services
from researchpilot.calendar import CalendarWriter
from researchpilot.config import AppConfig
from researchpilot.email import EmailSender
from researchpilot.models import CreateResult, SendResult
from researchpilot.session import Session, SessionCredentials


class _SpySender(EmailSender):
    def __init__(self) -> None:
        self.sent: list[str] = []

    def send(self, to, subject, body, thread_id=None, in_reply_to=None) -> SendResult:
        self.sent.append(to)
        return SendResult(message_id="msg-e2e")


class _NullWriter(CalendarWriter):
    def create(
        self,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        attendees: Iterable[str],
    ) -> CreateResult:
        return CreateResult(error="calendar disabled")


def _config(tmp_path: Path) -> AppConfig:
    return AppConfig(
        db_path=str(tmp_path / "e2e.db"),
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
        fetch_limit=2,
        user_email="me@mycompany.com",
        token_path=str(tmp_path / "tokens.json"),
        google_client_id="",
        google_client_secret="",
        oauth_redirect_uri="http://localhost:8000/oauth/callback",
        google_token_url="https://oauth2.googleapis.com/token",
        google_revoke_url="https://oauth2.googleapis.com/revoke",
        gmail_api_base_url="https://gmail.googleapis.com/gmail/v1",
        calendar_api_base_url="https://www.googleapis.com/calendar/v3",
        api_host="127.0.0.1",
        api_port=8000,
        api_key="",
    )


def test_ingest_research_insights_and_execute(tmp_path: Path) -> None:
    """Summary: Run the full offline workflow with mock providers.

    Importance: Two new emails are researched once, insights are cached, and one action is sent.
    Alternatives: Drive the workflow through HTTP only.
    """

    sender = _SpySender()
    services = build_services(_config(tmp_path), email_sender=sender, calendar_writer=_NullWriter())

    emails = services.ingestion.fetch_emails()
    assert [email.id for email in emails] == ["email-1", "email-2"]
    assert services.processor.join(5)
    assert services.store.list_processing_statuses() == {
        "email:email-1": "done",
        "email:email-2": "done",
    }
    assert len(services.ai_audit.list_requests()) == 2

    services.ingestion.fetch_emails()
    assert services.processor.join(5)
    assert len(services.ai_audit.list_requests()) == 2

    transcript = services.sources.get_source("transcript", "transcript-1")
    insights = services.insights.run(transcript)
    assert services.insights.run(transcript).action_steps == insights.action_steps
    assert len(services.ai_audit.list_requests()) == 3

    outcome = services.actions.execute("transcript", "transcript-1", 0)
    assert outcome.status == "executed"
    assert sender.sent == ["riley.park@modelworks.ai"]

    meeting = services.actions.execute("transcript", "transcript-1", 1)
    assert meeting.status == "failed"
    assert meeting.error == "calendar disabled"
    log = services.store.get_action_log("transcript", "transcript-1")
    assert [(entry.action_index, entry.status) for entry in log] == [(1, "failed"), (0, "executed")]


def test_delete_all_data_resets_state(tmp_path: Path) -> None:
    config = _config(tmp_path)
    revoked: list[str] = []
    session = Session(config, revoker=lambda config, token: revoked.append(token))
    session.connect(SessionCredentials(access_token="at"))
    services = build_services(
        config, session=session, email_sender=_SpySender(), calendar_writer=_NullWriter()
    )
    services.store.upsert_emails([])
    services.processor.run_pending()
    services.admin.delete_all_data()
    services.admin.delete_all_data()
    assert not services.session.connected
    assert revoked == ["at"]
    assert services.store.list_processing_statuses() == {}
