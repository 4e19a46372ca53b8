"""Summary: Tests for the research agent runner.

Importance: Ensures research runs once per item and prompts carry the right context.
Alternatives: Validate research output manually.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from researchpilot.ai import AiProvider, Generation, MockAiProvider, Tool
from researchpilot.errors import AiProviderError
from researchpilot.models import Attendee, CalendarItem, EmailItem, ToolCall
from researchpilot.research import ResearchAgentRunner, build_research_prompt
from researchpilot.search import MockSearchProvider, build_web_search_tool
from researchpilot.services import AiAuditService
from researchpilot.storage.sqlite_store import SqliteStore


class _CountingProvider(AiProvider):
    """Summary: Provider stub that counts generate calls."""

    name = "counting"
    model = "counting"

    def __init__(self) -> None:
        self.calls = 0

    def generate(
        self,
        system: str,
        prompt: str,
        tools: list[Tool] | None = None,
        schema: dict[str, Any] | None = None,
        step_limit: int = 10,
        purpose: str = "",
    ) -> Generation:
        self.calls += 1
        return Generation(
            text=f"run {self.calls}",
            tool_calls=(ToolCall(tool="web_search", query="q"),),
            latency_ms=5,
        )


class _BrokenProvider(AiProvider):
    def generate(self, system, prompt, tools=None, schema=None, step_limit=10, purpose=""):
        raise OSError("connection reset")


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "research.db"))
    store.initialize()
    return store


def _email() -> EmailItem:
    return EmailItem(
        id="e1",
        sender="sarah.chen@acmecorp.com",
        recipient="me@mycompany.com",
        subject="Partnership Opportunity",
        snippet="Hi",
        body="Would you be open to a call?",
        date="2026-02-08T14:30:00Z",
    )


def _event() -> CalendarItem:
    return CalendarItem(
        id="ev1",
        title="Strategy Review",
        description="Discuss integration",
        start="2026-02-12T10:00:00Z",
        end="2026-02-12T11:00:00Z",
        attendees=(
            Attendee(name="Sarah Chen", email="sarah.chen@acmecorp.com", company="Acme Corp"),
            Attendee(name="Me", email="me@mycompany.com"),
        ),
        location="Zoom",
    )


def test_research_is_cached_after_first_run(tmp_path: Path) -> None:
    """Summary: Verify a second run for the same item is served from the cache.

    Importance: Research must run at most once per item unless forced.
    Alternatives: Re-run research on every view.
    """

    store = _store(tmp_path)
    store.upsert_emails([_email()])
    provider = _CountingProvider()
    runner = ResearchAgentRunner(store, provider, build_web_search_tool(MockSearchProvider()))
    first = runner.run(_email())
    second = runner.run(_email())
    assert provider.calls == 1
    assert first == second
    assert first.output == "run 1"
    assert store.get_processing_status("email", "e1") == "done"


def test_forced_research_reruns_and_overwrites(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert_emails([_email()])
    provider = _CountingProvider()
    runner = ResearchAgentRunner(store, provider, build_web_search_tool(MockSearchProvider()))
    runner.run(_email())
    result = runner.run(_email(), force=True)
    assert provider.calls == 2
    assert result.output == "run 2"
    assert store.get_research("email", "e1") == result


def test_research_failure_is_wrapped_and_not_cached(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert_emails([_email()])
    runner = ResearchAgentRunner(store, _BrokenProvider(), build_web_search_tool(MockSearchProvider()))
    with pytest.raises(AiProviderError):
        runner.run(_email())
    assert store.get_research("email", "e1") is None
    assert store.get_processing_status("email", "e1") == "pending"


def test_research_records_audit_entries(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert_events([_event()])
    audit = AiAuditService(store=store, provider_name="mock", model_name="mock")
    runner = ResearchAgentRunner(
        store,
        MockAiProvider(),
        build_web_search_tool(MockSearchProvider()),
        audit=audit,
        user_email="me@mycompany.com",
    )
    result = runner.run(_event())
    assert result.tool_calls[0].query == "Meeting briefing for: Strategy Review"
    requests = audit.list_requests()
    assert len(requests) == 1
    assert requests[0].purpose == "research:calendar"
    assert audit.list_responses()[0].request_id == requests[0].id


def test_meeting_prompt_excludes_the_user() -> None:
    prompt = build_research_prompt(_event(), user_email="me@mycompany.com")
    assert prompt.startswith("Meeting briefing for: Strategy Review")
    assert "- Sarah Chen (Acme Corp)" in prompt
    assert "- Me" not in prompt
    assert "Location: Zoom" in prompt


def test_email_prompt_names_sender() -> None:
    prompt = build_research_prompt(_email())
    assert prompt.startswith("Draft a reply to: Partnership Opportunity")
    assert "From: sarah.chen@acmecorp.com" in prompt
    assert "Would you be open to a call?" in prompt
