"""Summary: Tests for the insights agent runner.

Importance: Ensures only schema-valid output is cached and prompts carry source context.
Alternatives: Accept any model output and validate at execution time.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from researchpilot.ai import AiProvider, Generation, MockAiProvider, Tool
from researchpilot.errors import InsightsSchemaError
from researchpilot.insights import InsightsAgentRunner, build_insights_prompt, parse_insights_payload
from researchpilot.models import EmailAction, ExternalReply, MeetingAction, MeetingTranscript, Participant
from researchpilot.storage.sqlite_store import SqliteStore


class _StaticProvider(AiProvider):
    """Summary: Provider stub returning a fixed structured payload."""

    name = "static"
    model = "static"

    def __init__(self, structured: dict[str, Any] | None) -> None:
        self.structured = structured
        self.schemas: list[dict[str, Any] | None] = []

    def generate(
        self,
        system: str,
        prompt: str,
        tools: list[Tool] | None = None,
        schema: dict[str, Any] | None = None,
        step_limit: int = 10,
        purpose: str = "",
    ) -> Generation:
        self.schemas.append(schema)
        return Generation(text="", structured=self.structured)


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "insights.db"))
    store.initialize()
    return store


def _reply() -> ExternalReply:
    return ExternalReply(
        id="reply-1",
        sender="dana.morgan@northwind.dev",
        recipient="me@mycompany.com",
        subject="Re: Partnership Discussion",
        body="Happy to jump on a call this week.",
        original_subject="Partnership Discussion",
        date="2026-02-09T09:30:00Z",
    )


def _transcript() -> MeetingTranscript:
    return MeetingTranscript(
        id="transcript-1",
        title="Tool-Use Review",
        date="2026-02-14T11:00:00Z",
        participants=(
            Participant(name="Riley Park", role="DevRel", email="riley.park@modelworks.ai"),
            Participant(name="Me"),
        ),
        transcript="[00:00] Riley: Thanks for joining.",
    )


def test_insights_parse_and_cache(tmp_path: Path) -> None:
    """Summary: Verify valid output is converted to typed action steps and cached.

    Importance: Action execution relies on the cached structured result.
    Alternatives: Store raw JSON and parse at execution time.
    """

    store = _store(tmp_path)
    runner = InsightsAgentRunner(store, MockAiProvider())
    result = runner.run(_reply())
    assert len(result.key_insights) == 3
    assert len(result.feedback) == 2
    email_step, meeting_step = result.action_steps
    assert isinstance(email_step, EmailAction)
    assert email_step.to == "dana.morgan@northwind.dev"
    assert isinstance(meeting_step, MeetingAction)
    assert meeting_step.duration_minutes == 30
    assert "meetingSummary" in result.raw_output
    assert store.get_insights("email-reply", "reply-1") == result


def test_insights_cache_hit_skips_model(tmp_path: Path) -> None:
    store = _store(tmp_path)
    provider = _StaticProvider(
        {
            "keyInsights": ["one"],
            "feedback": ["two"],
            "actionSteps": [{"type": "email", "description": "Reply", "details": "d"}],
        }
    )
    runner = InsightsAgentRunner(store, provider)
    runner.run(_transcript())
    runner.run(_transcript())
    assert len(provider.schemas) == 1
    assert provider.schemas[0] is not None
    assert "keyInsights" in provider.schemas[0]["properties"]


def test_missing_structured_output_is_not_cached(tmp_path: Path) -> None:
    store = _store(tmp_path)
    runner = InsightsAgentRunner(store, _StaticProvider(None))
    with pytest.raises(InsightsSchemaError):
        runner.run(_reply())
    assert store.get_insights("email-reply", "reply-1") is None


def test_schema_violation_raises() -> None:
    """Summary: Verify an unknown action type fails validation.

    Importance: Malformed action steps must never reach the executor.
    Alternatives: Drop invalid steps silently.
    """

    with pytest.raises(InsightsSchemaError):
        parse_insights_payload(
            {
                "keyInsights": ["x"],
                "feedback": [],
                "actionSteps": [{"type": "call", "description": "Phone", "details": "d"}],
            }
        )
    with pytest.raises(InsightsSchemaError):
        parse_insights_payload({"feedback": []})


def test_reply_prompt_lists_sender_before_recipient() -> None:
    prompt = build_insights_prompt(_reply())
    assert prompt.startswith("Analyze this email reply: Re: Partnership Discussion")
    assert prompt.index("From: dana.morgan@northwind.dev") < prompt.index("To: me@mycompany.com")
    assert "Original email thread subject: Partnership Discussion" in prompt


def test_transcript_prompt_lists_participants() -> None:
    prompt = build_insights_prompt(_transcript())
    assert "- Riley Park (DevRel) <riley.park@modelworks.ai>" in prompt
    assert "- Me\n" in prompt
