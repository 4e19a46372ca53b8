"""Summary: Executes insights action steps as emails and calendar events.

Importance: Turns proposed next steps into real side effects with an append-only audit trail.
Alternatives: Leave action steps as suggestions for the user to carry out manually.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from researchpilot.calendar import CalendarWriter
from researchpilot.email import EmailSender
from researchpilot.errors import (
    ActionAlreadyExecutedError,
    ActionNotFoundError,
    InsightsNotFoundError,
)
from researchpilot.models import (
    DEFAULT_MEETING_MINUTES,
    ActionOutcome,
    ActionStep,
    EmailAction,
    MeetingAction,
)
from researchpilot.storage.sqlite_store import SqliteStore


logger = logging.getLogger(__name__)

MISSING_EMAIL_FIELDS = "Missing email fields (to, subject, or body). Cannot send."
MEETING_START_HOUR = 10


@dataclass(frozen=True)
class ActionExecutor:
    """Summary: Dispatches one action step to the matching side effect.

    Importance: Logs every attempt so the history shows retries and failures.
    Alternatives: Execute all action steps of an insights run at once.
    """

    store: SqliteStore
    email_sender: EmailSender
    calendar_writer: CalendarWriter
    clock: Callable[[], datetime] = datetime.now
    _claim_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )
    _in_flight: set[tuple[str, str, int]] = field(
        default_factory=set, init=False, repr=False, compare=False
    )

    def execute(
        self,
        source_type: str,
        source_id: str,
        action_index: int,
        allow_repeat: bool = False,
    ) -> ActionOutcome:
        """Summary: Execute the action step at an index of a source's cached insights.

        Importance: Single entry point for sending follow-ups and scheduling meetings.
        Alternatives: Expose separate send and schedule operations.
        """

        insights = self.store.get_insights(source_type, source_id)
        if insights is None:
            raise InsightsNotFoundError("No insights found for this source")
        if not 0 <= action_index < len(insights.action_steps):
            raise ActionNotFoundError(f"Action at index {action_index} not found")
        key = (source_type, source_id, action_index)
        with self._claim_lock:
            if key in self._in_flight:
                raise ActionAlreadyExecutedError(f"Action at index {action_index} is already running")
            if not allow_repeat and self._already_executed(source_type, source_id, action_index):
                raise ActionAlreadyExecutedError(
                    f"Action at index {action_index} was already executed"
                )
            self._in_flight.add(key)
        try:
            action = insights.action_steps[action_index]
            return self._dispatch(source_type, source_id, action_index, action)
        finally:
            with self._claim_lock:
                self._in_flight.discard(key)

    def _dispatch(
        self,
        source_type: str,
        source_id: str,
        action_index: int,
        action: ActionStep,
    ) -> ActionOutcome:
        logger.info("Executing %s action %s: %s", action.type, action_index, action.description)
        if isinstance(action, EmailAction):
            return self._execute_email(source_type, source_id, action_index, action)
        if isinstance(action, MeetingAction):
            return self._execute_meeting(source_type, source_id, action_index, action)
        raise TypeError(f"Unsupported action step: {type(action).__name__}")

    def _execute_email(
        self,
        source_type: str,
        source_id: str,
        action_index: int,
        action: EmailAction,
    ) -> ActionOutcome:
        if not (action.to and action.subject and action.body):
            return self._failed(source_type, source_id, action_index, action, MISSING_EMAIL_FIELDS)
        try:
            result = self.email_sender.send(action.to, action.subject, action.body)
        except Exception as exc:  # noqa: BLE001 - failed actions are logged, not raised
            error = str(exc) or type(exc).__name__
            return self._failed(source_type, source_id, action_index, action, error)
        if result.error or not result.message_id:
            error = result.error or "Email provider returned no message id"
            return self._failed(source_type, source_id, action_index, action, error)
        record = self.store.append_action_log(
            source_type, source_id, action_index, "executed", result.message_id
        )
        logger.info("Email sent (id: %s).", result.message_id)
        return ActionOutcome(
            action_index=action_index,
            action=action,
            status="executed",
            executed_at=record.executed_at,
            message_id=result.message_id,
        )

    def _execute_meeting(
        self,
        source_type: str,
        source_id: str,
        action_index: int,
        action: MeetingAction,
    ) -> ActionOutcome:
        start = next_business_day_start(self.clock())
        end = start + timedelta(minutes=action.duration_minutes or DEFAULT_MEETING_MINUTES)
        summary = action.meeting_summary or action.description
        try:
            result = self.calendar_writer.create(
                summary=summary,
                description=action.details,
                start=start,
                end=end,
                attendees=list(action.attendees),
            )
        except Exception as exc:  # noqa: BLE001 - failed actions are logged, not raised
            error = str(exc) or type(exc).__name__
            return self._failed(source_type, source_id, action_index, action, error)
        if result.error or not result.event_id:
            error = result.error or "Calendar provider returned no event id"
            return self._failed(source_type, source_id, action_index, action, error)
        record = self.store.append_action_log(
            source_type, source_id, action_index, "executed", result.event_id
        )
        logger.info("Calendar event created (id: %s) starting %s.", result.event_id, start.isoformat())
        return ActionOutcome(
            action_index=action_index,
            action=action,
            status="executed",
            executed_at=record.executed_at,
            event_id=result.event_id,
        )

    def _failed(
        self,
        source_type: str,
        source_id: str,
        action_index: int,
        action: ActionStep,
        error: str,
    ) -> ActionOutcome:
        self.store.append_action_log(source_type, source_id, action_index, "failed", error)
        logger.warning("Action %s for %s:%s failed: %s", action_index, source_type, source_id, error)
        return ActionOutcome(action_index=action_index, action=action, status="failed", error=error)

    def _already_executed(self, source_type: str, source_id: str, action_index: int) -> bool:
        for record in self.store.get_action_log(source_type, source_id):
            if record.action_index == action_index:
                return record.status == "executed"
        return False


def next_business_day_start(now: datetime) -> datetime:
    """Summary: Return 10:00 on the next weekday strictly after today.

    Importance: Places proposed meetings at a predictable, working-hours slot.
    Alternatives: Query free/busy data to find the first open slot.
    """

    day = now + timedelta(days=1)
    while day.weekday() >= 5:
        day += timedelta(days=1)
    return day.replace(hour=MEETING_START_HOUR, minute=0, second=0, microsecond=0)
