"""Summary: Domain model dataclasses for ResearchPilot.

Importance: Defines the items, agent results, and action records shared across services and storage.
Alternatives: Use Pydantic models or ORM classes directly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar, Literal, Union


ItemVariant = Literal["email", "calendar"]
InsightsSourceType = Literal["email-reply", "transcript"]
ActionStatus = Literal["executed", "failed"]

ITEM_VARIANTS: tuple[str, ...] = ("email", "calendar")
INSIGHTS_SOURCE_TYPES: tuple[str, ...] = ("email-reply", "transcript")
DEFAULT_MEETING_MINUTES = 30


@dataclass(frozen=True)
class EmailItem:
    """Summary: Represents an ingested email awaiting or having undergone research.

    Importance: Core unit for draft-reply research and reply insights.
    Alternatives: Model only threads and store messages as embedded records.
    """

    variant: ClassVar[str] = "email"

    id: str
    sender: str
    recipient: str
    subject: str
    snippet: str
    body: str
    date: str
    thread_id: str | None = None
    message_id: str | None = None
    processed: bool = False


@dataclass(frozen=True)
class Attendee:
    """Summary: Represents a calendar event attendee."""

    name: str
    email: str
    company: str | None = None


@dataclass(frozen=True)
class CalendarItem:
    """Summary: Represents an ingested calendar event.

    Importance: Core unit for meeting-briefing research.
    Alternatives: Store events as raw calendar provider payloads.
    """

    variant: ClassVar[str] = "calendar"

    id: str
    title: str
    description: str
    start: str
    end: str
    attendees: tuple[Attendee, ...] = ()
    location: str | None = None
    processed: bool = False


Item = Union[EmailItem, CalendarItem]


@dataclass(frozen=True)
class ToolCall:
    """Summary: Records one tool invocation made during a research run."""

    tool: str
    query: str


@dataclass(frozen=True)
class ResearchResult:
    """Summary: Free-text research output plus the searches performed.

    Importance: Cached per item so research runs at most once per source.
    Alternatives: Store only the final text without the search log.
    """

    output: str
    tool_calls: tuple[ToolCall, ...] = ()


@dataclass(frozen=True)
class EmailAction:
    """Summary: Proposed follow-up email derived from an insights run.

    Importance: Carries everything needed to send the email without further prompting.
    Alternatives: Store a free-text suggestion and draft the email later.
    """

    type: ClassVar[str] = "email"

    description: str
    details: str
    to: str | None = None
    subject: str | None = None
    body: str | None = None


@dataclass(frozen=True)
class MeetingAction:
    """Summary: Proposed meeting derived from an insights run.

    Importance: Carries the event title, invitees, and duration for scheduling.
    Alternatives: Store a free-text suggestion only.
    """

    type: ClassVar[str] = "meeting"

    description: str
    details: str
    meeting_summary: str | None = None
    attendees: tuple[str, ...] = ()
    duration_minutes: int | None = None


ActionStep = Union[EmailAction, MeetingAction]


@dataclass(frozen=True)
class InsightsResult:
    """Summary: Structured insights extracted from a reply or transcript.

    Importance: Cached per source and used as the basis for action execution.
    Alternatives: Store the raw model output and parse it on every read.
    """

    key_insights: tuple[str, ...]
    feedback: tuple[str, ...]
    action_steps: tuple[ActionStep, ...]
    raw_output: str


@dataclass(frozen=True)
class ActionExecutionRecord:
    """Summary: One entry of the append-only action execution log.

    Importance: Preserves the full execution history, including retries and failures.
    Alternatives: Keep a single mutable status per action.
    """

    source_type: str
    source_id: str
    action_index: int
    status: ActionStatus
    executed_at: str
    detail: str | None = None


@dataclass(frozen=True)
class ExternalReply:
    """Summary: Represents a reply from an external party used for insights.

    Importance: Provides the counterpart address used for follow-up emails.
    Alternatives: Reuse EmailItem and derive the original subject on demand.
    """

    source_type: ClassVar[str] = "email-reply"

    id: str
    sender: str
    recipient: str
    subject: str
    body: str
    original_subject: str
    date: str
    thread_id: str | None = None


@dataclass(frozen=True)
class Participant:
    """Summary: Represents a meeting transcript participant."""

    name: str
    role: str | None = None
    email: str | None = None


@dataclass(frozen=True)
class MeetingTranscript:
    """Summary: Represents a meeting transcript used for insights.

    Importance: Supplies discussion context and participants for action steps.
    Alternatives: Store transcripts as notes on calendar items.
    """

    source_type: ClassVar[str] = "transcript"

    id: str
    title: str
    date: str
    participants: tuple[Participant, ...] = ()
    transcript: str = ""


InsightsInput = Union[ExternalReply, MeetingTranscript]


@dataclass(frozen=True)
class AiRequest:
    """Summary: Records an AI request for audit and traceability.

    Importance: Provides visibility into prompts and provider usage.
    Alternatives: Log requests only in observability logs.
    """

    provider: str
    model: str
    prompt: str
    purpose: str
    timestamp: str


@dataclass(frozen=True)
class AiResponse:
    """Summary: Records an AI response paired to a request.

    Importance: Enables audit trails and future tuning based on outputs.
    Alternatives: Store only final outputs in the result tables.
    """

    request_id: int
    response_text: str
    latency_ms: int
    token_estimate: int


@dataclass(frozen=True)
class ActionOutcome:
    """Summary: Result of executing a single action step.

    Importance: Reports success identifiers or error text back to the caller.
    Alternatives: Raise on every failure and return only identifiers.
    """

    action_index: int
    action: ActionStep
    status: ActionStatus
    executed_at: str | None = None
    message_id: str | None = None
    event_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class SendResult:
    """Summary: Outcome of an email send request."""

    message_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class CreateResult:
    """Summary: Outcome of a calendar event creation request."""

    event_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class SearchResult:
    """Summary: Outcome of a web search, with errors carried as data.

    Importance: Lets the model adapt to failed searches instead of aborting the run.
    Alternatives: Raise search errors into the agent loop.
    """

    answer: str = ""
    sources: list[dict[str, str]] = field(default_factory=list)
    error: str | None = None

    def to_payload(self) -> dict[str, Any]:
        if self.error:
            return {"error": self.error}
        return {"answer": self.answer, "sources": self.sources}


def action_step_to_dict(step: ActionStep) -> dict[str, Any]:
    """Summary: Serialize an action step using the persisted camelCase keys.

    Importance: Keeps stored JSON compatible with the model output format.
    Alternatives: Pickle dataclasses into the database.
    """

    if isinstance(step, EmailAction):
        payload: dict[str, Any] = {
            "type": "email",
            "description": step.description,
            "details": step.details,
            "to": step.to,
            "subject": step.subject,
            "body": step.body,
        }
    elif isinstance(step, MeetingAction):
        payload = {
            "type": "meeting",
            "description": step.description,
            "details": step.details,
            "meetingSummary": step.meeting_summary,
            "attendees": list(step.attendees),
            "durationMinutes": step.duration_minutes,
        }
    else:
        raise TypeError(f"Unsupported action step: {type(step).__name__}")
    return {key: value for key, value in payload.items() if value is not None}


def action_step_from_dict(payload: dict[str, Any]) -> ActionStep:
    """Summary: Build an action step from its persisted or model-produced form.

    Importance: Converts loosely typed JSON into the explicit action variants.
    Alternatives: Keep action steps as dicts and check fields at each use.
    """

    action_type = payload.get("type")
    if action_type == "email":
        return EmailAction(
            description=payload.get("description", ""),
            details=payload.get("details", ""),
            to=payload.get("to") or None,
            subject=payload.get("subject") or None,
            body=payload.get("body") or None,
        )
    if action_type == "meeting":
        duration = payload.get("durationMinutes")
        return MeetingAction(
            description=payload.get("description", ""),
            details=payload.get("details", ""),
            meeting_summary=payload.get("meetingSummary") or None,
            attendees=tuple(payload.get("attendees") or ()),
            duration_minutes=int(duration) if duration else None,
        )
    raise ValueError(f"Unknown action step type: {action_type}")


def item_key(variant: str, item_id: str) -> str:
    """Summary: Build the "variant:id" key used for processing statuses."""

    return f"{variant}:{item_id}"
