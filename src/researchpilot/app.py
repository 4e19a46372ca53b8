"""Summary: Application factory wiring core services.

Importance: Centralizes dependency creation for the CLI and API layers.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from researchpilot.actions import ActionExecutor
from researchpilot.ai import AiProvider, AiProviderFactory
from researchpilot.calendar import (
    CalendarWriter,
    FixtureCalendarProvider,
    GoogleCalendarProvider,
    GoogleCalendarWriter,
)
from researchpilot.config import AppConfig
from researchpilot.email import EmailSender, FixtureEmailProvider, GmailEmailProvider, GmailEmailSender
from researchpilot.insights import InsightsAgentRunner
from researchpilot.research import ResearchAgentRunner
from researchpilot.scheduler import AutoProcessor, ProcessingEventLog
from researchpilot.search import SearchProvider, SearchProviderFactory, build_web_search_tool
from researchpilot.services import (
    AdminService,
    AiAuditService,
    IngestionService,
    InsightsSourceService,
    MailboxService,
)
from researchpilot.session import Session
from researchpilot.storage.sqlite_store import SqliteStore


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of core services for ResearchPilot.

    Importance: Simplifies passing dependencies to UI or API layers.
    Alternatives: Use a dependency injection container.
    """

    config: AppConfig
    store: SqliteStore
    session: Session
    ingestion: IngestionService
    research: ResearchAgentRunner
    insights: InsightsAgentRunner
    processor: AutoProcessor
    processing_events: ProcessingEventLog
    actions: ActionExecutor
    sources: InsightsSourceService
    mailbox: MailboxService
    admin: AdminService
    ai_audit: AiAuditService


def build_services(
    config: AppConfig,
    *,
    session: Session | None = None,
    ai_provider: AiProvider | None = None,
    search_provider: SearchProvider | None = None,
    email_sender: EmailSender | None = None,
    calendar_writer: CalendarWriter | None = None,
    fixture_dir: Path | None = None,
) -> AppServices:
    """Summary: Build core services from configuration.

    Importance: Provides a single construction path; keyword overrides let tests swap externals.
    Alternatives: Instantiate services directly within each entrypoint.
    """

    store = SqliteStore(config.db_path)
    store.initialize()
    session = session or Session(config)
    ai_provider = ai_provider or AiProviderFactory(config).build()
    search_provider = search_provider or SearchProviderFactory(config).build()
    timeout = config.request_timeout_seconds
    gmail = GmailEmailProvider(session, config.gmail_api_base_url, timeout)
    email_sender = email_sender or GmailEmailSender(session, config.gmail_api_base_url, timeout)
    calendar_writer = calendar_writer or GoogleCalendarWriter(
        session, config.calendar_api_base_url, timeout
    )
    ai_audit = AiAuditService(
        store=store,
        provider_name=getattr(ai_provider, "name", config.ai_provider),
        model_name=getattr(ai_provider, "model", config.model_name),
    )
    research = ResearchAgentRunner(
        store=store,
        ai_provider=ai_provider,
        search_tool=build_web_search_tool(search_provider),
        audit=ai_audit,
        step_limit=config.research_step_limit,
        user_email=config.user_email,
    )
    processing_events = ProcessingEventLog()
    processor = AutoProcessor(
        store,
        research,
        debounce_seconds=config.debounce_seconds,
        on_item_processed=processing_events.item_processed,
        on_complete=processing_events.complete,
    )
    ingestion = IngestionService(
        store=store,
        live_providers={
            "email": gmail,
            "calendar": GoogleCalendarProvider(session, config.calendar_api_base_url, timeout),
        },
        fixture_providers={
            "email": FixtureEmailProvider(fixture_dir),
            "calendar": FixtureCalendarProvider(fixture_dir),
        },
        session=session,
        fetch_limit=config.fetch_limit,
        on_new_items=processor.trigger,
    )
    return AppServices(
        config=config,
        store=store,
        session=session,
        ingestion=ingestion,
        research=research,
        insights=InsightsAgentRunner(store=store, ai_provider=ai_provider, audit=ai_audit),
        processor=processor,
        processing_events=processing_events,
        actions=ActionExecutor(
            store=store, email_sender=email_sender, calendar_writer=calendar_writer
        ),
        sources=InsightsSourceService(store=store, session=session, fixture_dir=fixture_dir),
        mailbox=MailboxService(store=store, sender=email_sender, gmail=gmail, session=session),
        admin=AdminService(store=store, session=session),
        ai_audit=ai_audit,
    )
