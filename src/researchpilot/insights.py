"""Summary: Insights agent runner for external replies and meeting transcripts.

Importance: Extracts key insights, feedback, and executable action steps with a validated schema.
Alternatives: Parse free-text model output with regular expressions.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from researchpilot.ai import AiProvider
from researchpilot.errors import AiProviderError, InsightsSchemaError
from researchpilot.models import (
    ExternalReply,
    InsightsInput,
    InsightsResult,
    MeetingTranscript,
    action_step_from_dict,
)
from researchpilot.services import AiAuditService
from researchpilot.storage.sqlite_store import SqliteStore


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You analyze business correspondence and meetings. Return only JSON that matches the "
    "requested schema. Be specific and actionable."
)


class ActionStepPayload(BaseModel):
    """Summary: Schema for one proposed action step.

    Importance: Carries the fields needed to send an email or schedule a meeting.
    Alternatives: Accept free-form dictionaries.
    """

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["email", "meeting"] = Field(description="The type of follow-up action")
    description: str = Field(description='Short action title, e.g. "Send pricing clarification"')
    details: str = Field(description="What the action should accomplish")
    to: str | None = Field(default=None, description="Email actions: recipient address")
    subject: str | None = Field(default=None, description="Email actions: subject line")
    body: str | None = Field(default=None, description="Email actions: full email body to send")
    meeting_summary: str | None = Field(
        default=None, alias="meetingSummary", description="Meeting actions: calendar event title"
    )
    attendees: list[str] | None = Field(
        default=None, description="Meeting actions: attendee email addresses"
    )
    duration_minutes: int | None = Field(
        default=None, alias="durationMinutes", description="Meeting actions: duration in minutes"
    )


class InsightsPayload(BaseModel):
    """Summary: Schema for the full insights output.

    Importance: Defines both the constraint sent to the model and the validation applied after.
    Alternatives: Maintain a hand-written JSON schema.
    """

    model_config = ConfigDict(populate_by_name=True)

    key_insights: list[str] = Field(alias="keyInsights", description="3-5 key insights")
    feedback: list[str] = Field(
        description="2-4 feedback points: sentiment, concerns, objections, or positive signals"
    )
    action_steps: list[ActionStepPayload] = Field(
        alias="actionSteps", description="2-3 concrete next action steps"
    )


@dataclass(frozen=True)
class InsightsAgentRunner:
    """Summary: Runs the schema-constrained insights agent with a durable cache.

    Importance: Keeps malformed output out of the cache and serves repeat views for free.
    Alternatives: Re-run the model on every view.
    """

    store: SqliteStore
    ai_provider: AiProvider
    audit: AiAuditService | None = None

    def run(self, source: InsightsInput, force: bool = False) -> InsightsResult:
        """Summary: Return cached insights or run the agent and persist validated output.

        Importance: Produces the action steps used by the action executor.
        Alternatives: Persist partially valid output.
        """

        if not force:
            cached = self.store.get_insights(source.source_type, source.id)
            if cached is not None:
                logger.info("Insights cache hit for %s:%s.", source.source_type, source.id)
                return cached
        prompt = build_insights_prompt(source)
        purpose = f"insights:{source.source_type}"
        try:
            generation = self.ai_provider.generate(
                SYSTEM_PROMPT,
                prompt,
                schema=InsightsPayload.model_json_schema(by_alias=True),
                purpose=purpose,
            )
        except AiProviderError:
            raise
        except (RuntimeError, OSError, ValueError) as exc:
            raise AiProviderError(f"Insights model call failed: {exc}") from exc
        if self.audit is not None:
            self.audit.record(prompt, purpose, generation)
        payload = parse_insights_payload(generation.structured)
        result = InsightsResult(
            key_insights=tuple(payload.key_insights),
            feedback=tuple(payload.feedback),
            action_steps=tuple(
                action_step_from_dict(step.model_dump(by_alias=True, exclude_none=True))
                for step in payload.action_steps
            ),
            raw_output=payload.model_dump_json(by_alias=True, exclude_none=True),
        )
        self.store.save_insights(source.source_type, source.id, result)
        logger.info(
            "Insights saved for %s:%s (%s action steps).",
            source.source_type,
            source.id,
            len(result.action_steps),
        )
        return result


def parse_insights_payload(structured: dict | None) -> InsightsPayload:
    """Summary: Validate structured model output against the insights schema.

    Importance: Turns missing or malformed output into a single error type.
    Alternatives: Return None and let callers decide.
    """

    if structured is None:
        raise InsightsSchemaError("Insights agent returned no structured output")
    try:
        return InsightsPayload.model_validate(structured)
    except ValidationError as exc:
        raise InsightsSchemaError(f"Insights output did not match schema: {exc}") from exc


def build_insights_prompt(source: InsightsInput) -> str:
    """Summary: Build the task prompt for a reply or transcript."""

    if isinstance(source, ExternalReply):
        return _reply_prompt(source)
    if isinstance(source, MeetingTranscript):
        return _transcript_prompt(source)
    raise TypeError(f"Unsupported insights source: {type(source).__name__}")


_ACTION_RULES = (
    "Action step rules:\n"
    '- Email actions must include "to", "subject", and a complete "body" ready to send.\n'
    '- Meeting actions must include "meetingSummary", "attendees" (email addresses), '
    'and "durationMinutes".\n'
    "- Write email bodies in a professional but warm tone.\n\n"
    "Respond with JSON matching this schema:\n"
)


def _reply_prompt(reply: ExternalReply) -> str:
    return (
        f"Analyze this email reply: {reply.subject}\n"
        f"Original email thread subject: {reply.original_subject}\n"
        f"From: {reply.sender}\n"
        f"To: {reply.recipient}\n"
        f"Date: {reply.date}\n\n"
        f"Email body:\n{reply.body}\n\n"
        "Instructions:\n"
        "- Extract 3-5 key insights.\n"
        "- Identify 2-4 feedback points (sentiment, concerns, objections, deadlines).\n"
        "- Suggest 2-3 next action steps, each a follow-up email or a meeting.\n"
        '- The email recipient is the address in the "From" field.\n\n'
        + _ACTION_RULES
        + json.dumps(InsightsPayload.model_json_schema(by_alias=True))
    )


def _transcript_prompt(transcript: MeetingTranscript) -> str:
    participants = "\n".join(
        f"- {participant.name}"
        + (f" ({participant.role})" if participant.role else "")
        + (f" <{participant.email}>" if participant.email else "")
        for participant in transcript.participants
    )
    return (
        f"Analyze this meeting transcript: {transcript.title}\n"
        f"Date: {transcript.date}\n\n"
        f"Participants:\n{participants}\n\n"
        f"Transcript:\n{transcript.transcript}\n\n"
        "Instructions:\n"
        "- Extract 3-5 key insights and decisions.\n"
        "- Identify 2-4 feedback points (concerns, pushback, agreements).\n"
        "- Suggest 2-3 next action steps, each a follow-up email or a meeting.\n"
        "- Reference actual discussion points and names.\n\n"
        + _ACTION_RULES
        + json.dumps(InsightsPayload.model_json_schema(by_alias=True))
    )
