"""Summary: FastAPI application for ResearchPilot.

Importance: Exposes ingestion, research, insights, and action endpoints for UI clients.
Alternatives: Use a CLI-only workflow or a different web framework.
"""

from __future__ import annotations

import logging
from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import HTMLResponse
from pydantic import BaseModel, Field

from researchpilot.app import AppServices, build_services
from researchpilot.config import AppConfig
from researchpilot.errors import ActionAlreadyExecutedError, AiProviderError
from researchpilot.models import (
    ActionOutcome,
    InsightsResult,
    InsightsSourceType,
    Item,
    ItemVariant,
    ResearchResult,
    action_step_to_dict,
)
from researchpilot.oauth import build_google_auth_url, create_state_token, exchange_google_code


class ResearchRequest(BaseModel):
    """Summary: Request payload for a manual research run.

    Importance: Lets clients view or force-refresh research for one item.
    Alternatives: Only expose background auto-processing.
    """

    variant: ItemVariant
    source_id: str
    force: bool = False


class InsightsRequest(BaseModel):
    """Summary: Request payload for an insights run.

    Importance: Identifies the reply or transcript to analyze.
    Alternatives: Accept the full source payload in the request.
    """

    source_type: InsightsSourceType
    source_id: str
    force: bool = False


class ExecuteActionRequest(BaseModel):
    """Summary: Request payload for executing one action step.

    Importance: Keeps action execution explicit and user-controlled.
    Alternatives: Execute all action steps automatically.
    """

    source_type: InsightsSourceType
    source_id: str
    action_index: int
    allow_repeat: bool = False


class ReplyRequest(BaseModel):
    """Summary: Request payload for sending an email reply."""

    to: str = Field(min_length=3)
    subject: str
    body: str
    thread_id: str | None = None
    in_reply_to: str | None = None


def create_app(config: AppConfig, services: AppServices | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to ResearchPilot services.

    Importance: Ensures the API layer shares the same configuration and storage.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="ResearchPilot API", version="0.1.0")
    services = services or build_services(config)
    app.state.services = services
    app.state.oauth_states = {}

    def _register_state(state: str) -> None:
        """Summary: Register an OAuth state token."""

        app.state.oauth_states[state] = datetime.now(timezone.utc)

    def _validate_state(state: str) -> None:
        """Summary: Validate and consume an OAuth state token.

        Importance: Reduces CSRF risks in OAuth flows.
        Alternatives: Use a dedicated session store for state.
        """

        created_at = app.state.oauth_states.pop(state, None)
        if created_at is None:
            raise HTTPException(status_code=400, detail="Invalid OAuth state")
        if datetime.now(timezone.utc) - created_at > timedelta(minutes=10):
            raise HTTPException(status_code=400, detail="OAuth state expired")

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for local and private deployments.
        Alternatives: Use OAuth or session-based authentication.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    guarded = [Depends(require_api_key)]

    @app.get("/health")
    def health() -> dict[str, str]:
        """Summary: Health check endpoint."""

        return {"status": "ok"}

    @app.get("/emails", dependencies=guarded)
    def list_emails() -> list[dict[str, Any]]:
        """Summary: Fetch new emails and return every stored email.

        Importance: Ingestion runs on each listing so new mail triggers research.
        Alternatives: Separate fetch and list endpoints.
        """

        return [_item_payload(item) for item in services.ingestion.fetch_and_upsert("email")]

    @app.get("/events", dependencies=guarded)
    def list_events() -> list[dict[str, Any]]:
        """Summary: Fetch new calendar events and return every stored event."""

        return [_item_payload(item) for item in services.ingestion.fetch_and_upsert("calendar")]

    @app.get("/emails/thread/{thread_id}", dependencies=guarded)
    def email_thread(thread_id: str) -> list[dict[str, Any]]:
        """Summary: Return a thread's messages, newest first."""

        return [_item_payload(item) for item in services.mailbox.get_thread(thread_id)]

    @app.post("/emails/reply", dependencies=guarded)
    def send_reply(payload: ReplyRequest) -> dict[str, Any]:
        """Summary: Send an email reply through the connected account."""

        result = services.mailbox.send_reply(
            payload.to,
            payload.subject,
            payload.body,
            thread_id=payload.thread_id,
            in_reply_to=payload.in_reply_to,
        )
        if result.error:
            raise HTTPException(status_code=502, detail=result.error)
        return {"message_id": result.message_id}

    @app.post("/research", dependencies=guarded)
    def run_research(payload: ResearchRequest) -> dict[str, Any]:
        """Summary: Return cached research or run the research agent for an item.

        Importance: Serves the detail view for a single email or event.
        Alternatives: Wait for background auto-processing only.
        """

        item = services.store.get_item(payload.variant, payload.source_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Item not found")
        try:
            result = services.research.run(item, force=payload.force)
        except AiProviderError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return _research_payload(payload.variant, payload.source_id, result)

    @app.get("/research", dependencies=guarded)
    def list_research() -> list[dict[str, Any]]:
        """Summary: List every cached research result, newest first."""

        return [
            {
                **_research_payload(stored.source_type, stored.source_id, stored.result),
                "updated_at": stored.updated_at,
            }
            for stored in services.store.list_research()
        ]

    @app.get("/research/{variant}/{source_id}", dependencies=guarded)
    def get_research(variant: str, source_id: str) -> dict[str, Any]:
        """Summary: Return cached research without running the agent."""

        result = services.store.get_research(variant, source_id)
        if result is None:
            raise HTTPException(status_code=404, detail="Research not found")
        return _research_payload(variant, source_id, result)

    @app.get("/processing/statuses", dependencies=guarded)
    def processing_statuses() -> dict[str, str]:
        """Summary: Return "pending" or "done" for every item keyed by variant:id."""

        return services.store.list_processing_statuses()

    @app.get("/processing/events", dependencies=guarded)
    def processing_events(limit: int = 50) -> list[dict[str, str]]:
        """Summary: Return recent scheduler notifications, newest first."""

        return services.processing_events.recent(limit)

    @app.post("/processing/run", dependencies=guarded)
    def processing_run() -> dict[str, Any]:
        """Summary: Drain unprocessed items now.

        Importance: Lets clients force a run without waiting for new items.
        Alternatives: Only process after ingestion triggers.
        """

        processed = services.processor.run_pending()
        return {"processed": processed}

    @app.get("/insights/replies", dependencies=guarded)
    def insights_replies() -> list[dict[str, Any]]:
        """Summary: List external replies available for insights."""

        return [
            {"source_type": reply.source_type, **asdict(reply)}
            for reply in services.sources.list_replies()
        ]

    @app.get("/insights/transcripts", dependencies=guarded)
    def insights_transcripts() -> list[dict[str, Any]]:
        """Summary: List meeting transcripts available for insights."""

        return [
            {"source_type": transcript.source_type, **asdict(transcript)}
            for transcript in services.sources.list_transcripts()
        ]

    @app.post("/insights", dependencies=guarded)
    def run_insights(payload: InsightsRequest) -> dict[str, Any]:
        """Summary: Return cached insights or run the insights agent for a source."""

        try:
            source = services.sources.get_source(payload.source_type, payload.source_id)
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        try:
            result = services.insights.run(source, force=payload.force)
        except AiProviderError as exc:
            raise HTTPException(status_code=502, detail=str(exc)) from exc
        return _insights_payload(payload.source_type, payload.source_id, result)

    @app.post("/insights/actions/execute", dependencies=guarded)
    def execute_action(payload: ExecuteActionRequest) -> dict[str, Any]:
        """Summary: Execute one action step of a source's cached insights.

        Importance: Sends the proposed email or creates the proposed meeting.
        Alternatives: Return the action for the client to perform.
        """

        try:
            outcome = services.actions.execute(
                payload.source_type,
                payload.source_id,
                payload.action_index,
                allow_repeat=payload.allow_repeat,
            )
        except ActionAlreadyExecutedError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except ValueError as exc:
            raise HTTPException(status_code=404, detail=str(exc)) from exc
        return _outcome_payload(outcome)

    @app.get("/insights/actions/log", dependencies=guarded)
    def action_log(source_type: str, source_id: str) -> list[dict[str, Any]]:
        """Summary: Return the action execution history for a source, newest first."""

        return [asdict(record) for record in services.store.get_action_log(source_type, source_id)]

    @app.get("/insights/{source_type}/{source_id}", dependencies=guarded)
    def get_insights(source_type: str, source_id: str) -> dict[str, Any]:
        """Summary: Return cached insights without running the agent."""

        result = services.store.get_insights(source_type, source_id)
        if result is None:
            raise HTTPException(status_code=404, detail="No insights found for this source")
        return _insights_payload(source_type, source_id, result)

    @app.get("/ai/requests", dependencies=guarded)
    def ai_requests(limit: int = 20) -> list[dict[str, Any]]:
        """Summary: List recent AI requests for auditing."""

        return [asdict(request) for request in services.ai_audit.list_requests(limit)]

    @app.get("/ai/responses", dependencies=guarded)
    def ai_responses(limit: int = 20) -> list[dict[str, Any]]:
        """Summary: List recent AI responses for auditing."""

        return [asdict(response) for response in services.ai_audit.list_responses(limit)]

    @app.get("/auth/status", dependencies=guarded)
    def auth_status() -> dict[str, bool]:
        """Summary: Report whether a Google session is connected."""

        return {"connected": services.session.connected}

    @app.get("/oauth/google", dependencies=guarded)
    def oauth_google() -> dict[str, str]:
        """Summary: Return the Google OAuth authorization URL.

        Importance: Starts the consent flow for Gmail and Calendar access.
        Alternatives: Use CLI-only OAuth helpers.
        """

        state = create_state_token()
        _register_state(state)
        return {"url": build_google_auth_url(config, state), "state": state}

    @app.get("/oauth/callback", response_class=HTMLResponse)
    def oauth_callback(code: str, state: str) -> str:
        """Summary: Exchange the authorization code and connect the session.

        Importance: Completes the OAuth flow and persists tokens for later calls.
        Alternatives: Ask users to paste tokens manually.
        """

        _validate_state(state)
        try:
            token = exchange_google_code(config, code)
        except (RuntimeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        services.session.connect(token)
        return "<h1>ResearchPilot connected</h1><p>You can close this window.</p>"

    @app.post("/auth/sign-out", dependencies=guarded)
    def sign_out() -> dict[str, bool]:
        """Summary: Disconnect the Google session and delete saved tokens."""

        services.session.disconnect()
        return {"connected": False}

    @app.post("/data/delete", dependencies=guarded)
    def delete_all_data() -> dict[str, str]:
        """Summary: Delete every stored record and disconnect the session."""

        try:
            with services.processor.paused():
                services.admin.delete_all_data()
        except TimeoutError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
        return {"status": "deleted"}

    return app


def create_app_from_env() -> FastAPI:
    """Summary: Build the app from environment configuration.

    Importance: Entry point for `uvicorn --factory researchpilot.api:create_app_from_env`.
    Alternatives: Build the app at import time.
    """

    return create_app(AppConfig.from_env())


def _item_payload(item: Item) -> dict[str, Any]:
    return {"variant": item.variant, **asdict(item)}


def _research_payload(variant: str, source_id: str, result: ResearchResult) -> dict[str, Any]:
    return {"variant": variant, "source_id": source_id, **asdict(result)}


def _insights_payload(source_type: str, source_id: str, result: InsightsResult) -> dict[str, Any]:
    return {
        "source_type": source_type,
        "source_id": source_id,
        "key_insights": list(result.key_insights),
        "feedback": list(result.feedback),
        "action_steps": [action_step_to_dict(step) for step in result.action_steps],
        "raw_output": result.raw_output,
    }


def _outcome_payload(outcome: ActionOutcome) -> dict[str, Any]:
    return {
        "action_index": outcome.action_index,
        "action": action_step_to_dict(outcome.action),
        "status": outcome.status,
        "executed_at": outcome.executed_at,
        "message_id": outcome.message_id,
        "event_id": outcome.event_id,
        "error": outcome.error,
    }
