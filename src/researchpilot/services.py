"""Summary: Core application services for ResearchPilot.

Importance: Orchestrates ingestion, insights sources, mailbox actions, auditing, and data deletion.
Alternatives: Build a full service layer with a dependency injection framework.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from researchpilot.ai import Generation, estimate_tokens
from researchpilot.email import EmailSender, GmailEmailProvider
from researchpilot.errors import ProviderUnavailableError
from researchpilot.models import (
    AiRequest,
    AiResponse,
    EmailItem,
    ExternalReply,
    InsightsInput,
    Item,
    MeetingTranscript,
    Participant,
    SendResult,
)
from researchpilot.providers import ItemProvider, load_fixture
from researchpilot.session import Session
from researchpilot.storage.sqlite_store import SqliteStore, StoredAiRequest, StoredAiResponse


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AiAuditService:
    """Summary: Persists AI requests and responses for auditing.

    Importance: Provides traceability for every research and insights run.
    Alternatives: Rely solely on logs without persistence.
    """

    store: SqliteStore
    provider_name: str
    model_name: str

    def record(self, prompt: str, purpose: str, generation: Generation) -> int:
        """Summary: Store AI request and response metadata.

        Importance: Provides auditability for AI usage.
        Alternatives: Store only final outputs in the result tables.
        """

        request = AiRequest(
            provider=self.provider_name,
            model=self.model_name,
            prompt=prompt,
            purpose=purpose,
            timestamp=datetime.now().isoformat(),
        )
        request_id = self.store.log_ai_request(request)
        response = AiResponse(
            request_id=request_id,
            response_text=generation.text,
            latency_ms=generation.latency_ms,
            token_estimate=estimate_tokens(prompt + generation.text),
        )
        self.store.log_ai_response(response)
        return request_id

    def list_requests(self, limit: int = 20) -> list[StoredAiRequest]:
        return self.store.list_ai_requests(limit)

    def list_responses(self, limit: int = 20) -> list[StoredAiResponse]:
        return self.store.list_ai_responses(limit)


@dataclass
class IngestionService:
    """Summary: Fetches items from providers and upserts them without duplicates.

    Importance: Keeps the store complete and triggers background research for new items.
    Alternatives: Let each caller fetch and store items itself.
    """

    store: SqliteStore
    live_providers: dict[str, ItemProvider]
    fixture_providers: dict[str, ItemProvider]
    session: Session | None = None
    fetch_limit: int = 10
    on_new_items: Callable[[], None] | None = None

    def fetch_and_upsert(self, variant: str) -> list[Item]:
        """Summary: Fetch, dedupe, upsert, and return every stored item of a variant.

        Importance: Never surfaces provider failures; falls back to fixture data instead.
        Alternatives: Raise provider errors to the caller.
        """

        if variant not in self.fixture_providers:
            raise ValueError(f"Unknown item variant: {variant}")
        known_ids = self.store.existing_ids(variant)
        items = self._fetch(variant, known_ids)
        new_count = self.store.upsert_items(variant, items)
        logger.info("Upserted %s %s items (%s new).", len(items), variant, new_count)
        if new_count > 0 and self.on_new_items is not None:
            self.on_new_items()
        return self.store.list_items(variant)

    def fetch_emails(self) -> list[Item]:
        return self.fetch_and_upsert("email")

    def fetch_events(self) -> list[Item]:
        return self.fetch_and_upsert("calendar")

    def _fetch(self, variant: str, known_ids: set[str]) -> list[Item]:
        live = self.live_providers.get(variant)
        if live is not None and self.session is not None and self.session.connected:
            try:
                return live.fetch(self.fetch_limit, known_ids)
            except (ProviderUnavailableError, RuntimeError, OSError, ValueError) as exc:
                logger.warning("Live %s fetch failed, using fixture data: %s", variant, exc)
        return self.fixture_providers[variant].fetch(self.fetch_limit, known_ids)


@dataclass(frozen=True)
class InsightsSourceService:
    """Summary: Supplies external replies and meeting transcripts for insights.

    Importance: Uses real reply emails when connected and fixtures otherwise.
    Alternatives: Require callers to submit insights inputs directly.
    """

    store: SqliteStore
    session: Session | None = None
    fixture_dir: Path | None = None

    def list_replies(self) -> list[ExternalReply]:
        """Summary: Return external replies, preferring stored reply emails when connected."""

        if self.session is not None and self.session.connected:
            return [reply_from_email(email) for email in self.store.list_reply_emails()]
        return [
            ExternalReply(
                id=item["id"],
                sender=item["sender"],
                recipient=item["recipient"],
                subject=item["subject"],
                body=item["body"],
                original_subject=item["original_subject"],
                date=item["date"],
                thread_id=item.get("thread_id"),
            )
            for item in load_fixture("replies.json", self.fixture_dir)
        ]

    def list_transcripts(self) -> list[MeetingTranscript]:
        """Summary: Return meeting transcripts from the fixture set."""

        return [
            MeetingTranscript(
                id=item["id"],
                title=item["title"],
                date=item["date"],
                participants=tuple(
                    Participant(
                        name=participant["name"],
                        role=participant.get("role"),
                        email=participant.get("email"),
                    )
                    for participant in item.get("participants", [])
                ),
                transcript=item["transcript"],
            )
            for item in load_fixture("transcripts.json", self.fixture_dir)
        ]

    def get_source(self, source_type: str, source_id: str) -> InsightsInput:
        """Summary: Resolve an insights input by type and id.

        Importance: Lets HTTP and CLI callers refer to sources by key.
        Alternatives: Require the full source payload in every request.
        """

        if source_type == "email-reply":
            sources: list[InsightsInput] = list(self.list_replies())
        elif source_type == "transcript":
            sources = list(self.list_transcripts())
        else:
            raise ValueError(f"Unknown insights source type: {source_type}")
        for source in sources:
            if source.id == source_id:
                return source
        raise ValueError(f"Insights source not found: {source_type}:{source_id}")


@dataclass(frozen=True)
class MailboxService:
    """Summary: Thread lookup and reply sending for stored emails.

    Importance: Serves thread views from the store before asking Gmail.
    Alternatives: Always read threads from the provider.
    """

    store: SqliteStore
    sender: EmailSender
    gmail: GmailEmailProvider | None = None
    session: Session | None = None

    def get_thread(self, thread_id: str) -> list[EmailItem]:
        """Summary: Return a thread newest first, falling back to Gmail when not stored."""

        stored = self.store.list_thread(thread_id)
        if stored or self.gmail is None or self.session is None or not self.session.connected:
            return stored
        try:
            return self.gmail.fetch_thread(thread_id)
        except ProviderUnavailableError as exc:
            logger.warning("Could not fetch thread %s: %s", thread_id, exc)
            return []

    def send_reply(
        self,
        to: str,
        subject: str,
        body: str,
        thread_id: str | None = None,
        in_reply_to: str | None = None,
    ) -> SendResult:
        return self.sender.send(to, subject, body, thread_id=thread_id, in_reply_to=in_reply_to)


@dataclass(frozen=True)
class AdminService:
    """Summary: Destructive administrative operations.

    Importance: Gives users a single action that removes all local data and credentials.
    Alternatives: Ask users to delete files manually.
    """

    store: SqliteStore
    session: Session

    def delete_all_data(self) -> None:
        """Summary: Wipe every table and disconnect the session.

        Importance: Leaves no cached results, logs, or tokens behind; safe to repeat.
        Alternatives: Delete the database file.
        """

        self.store.wipe_all()
        self.session.disconnect()
        logger.info("All local data deleted.")


def reply_from_email(email: EmailItem) -> ExternalReply:
    """Summary: Convert a stored reply email into an insights input."""

    original = email.subject
    if original.lower().startswith("re:"):
        original = original[3:].strip()
    return ExternalReply(
        id=email.id,
        sender=email.sender,
        recipient=email.recipient,
        subject=email.subject,
        body=email.body,
        original_subject=original,
        date=email.date,
        thread_id=email.thread_id,
    )
