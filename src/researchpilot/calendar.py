"""Summary: Calendar provider and writer implementations.

Importance: Encapsulates Google Calendar ingestion and event creation.
Alternatives: Use provider SDKs directly without a shared abstraction.
"""

from __future__ import annotations

import logging
import urllib.parse
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

from researchpilot.errors import ProviderUnavailableError
from researchpilot.models import Attendee, CalendarItem, CreateResult
from researchpilot.providers import ItemProvider, google_api_request, load_fixture
from researchpilot.session import Session


logger = logging.getLogger(__name__)


class FixtureCalendarProvider(ItemProvider):
    """Summary: Loads calendar events from the packaged JSON fixture.

    Importance: Supports offline demos and the fallback when Calendar is unavailable.
    Alternatives: Generate synthetic events in code.
    """

    variant = "calendar"

    def __init__(self, fixture_dir: Path | None = None) -> None:
        self._fixture_dir = fixture_dir

    def fetch(self, max_results: int, known_ids: Iterable[str] | None = None) -> list[CalendarItem]:
        """Summary: Load fixture events, skipping known ids."""

        known = set(known_ids or ())
        events = [
            CalendarItem(
                id=item["id"],
                title=item["title"],
                description=item.get("description", ""),
                start=item["start"],
                end=item["end"],
                attendees=tuple(
                    Attendee(
                        name=attendee["name"],
                        email=attendee["email"],
                        company=attendee.get("company"),
                    )
                    for attendee in item.get("attendees", [])
                ),
                location=item.get("location"),
            )
            for item in load_fixture("events.json", self._fixture_dir)[:max_results]
        ]
        return [event for event in events if event.id not in known]


class GoogleCalendarProvider(ItemProvider):
    """Summary: Reads upcoming events via the Google Calendar API.

    Importance: Enables OAuth-based calendar ingestion.
    Alternatives: Subscribe to an iCalendar feed.
    """

    variant = "calendar"

    def __init__(self, session: Session, base_url: str, timeout: float = 60.0) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def fetch(self, max_results: int, known_ids: Iterable[str] | None = None) -> list[CalendarItem]:
        """Summary: Fetch upcoming single events ordered by start time.

        Importance: Expands recurring events so each occurrence is researched.
        Alternatives: Fetch recurring masters and expand locally.
        """

        if not self._session.connected:
            raise ProviderUnavailableError("Not authenticated with Google")
        query = urllib.parse.urlencode(
            {
                "timeMin": datetime.now(timezone.utc).isoformat(),
                "maxResults": max_results,
                "singleEvents": "true",
                "orderBy": "startTime",
            }
        )
        payload = google_api_request(
            self._session,
            f"{self._base_url}/calendars/primary/events?{query}",
            self._timeout,
            label="Calendar API",
        )
        events = [parse_calendar_event(item) for item in payload.get("items", [])]
        logger.info("Fetched %s calendar events.", len(events))
        return events


class CalendarWriter(ABC):
    """Summary: Abstract interface for creating calendar events."""

    @abstractmethod
    def create(
        self,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        attendees: Iterable[str],
    ) -> CreateResult:
        """Summary: Create an event and report the event id or error text."""


class GoogleCalendarWriter(CalendarWriter):
    """Summary: Creates events on the primary Google calendar.

    Importance: Backs meeting action execution.
    Alternatives: Send iCalendar invites by email.
    """

    def __init__(self, session: Session, base_url: str, timeout: float = 60.0) -> None:
        self._session = session
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def create(
        self,
        summary: str,
        description: str,
        start: datetime,
        end: datetime,
        attendees: Iterable[str],
    ) -> CreateResult:
        """Summary: Insert an event and notify attendees.

        Importance: Reports failures as data so callers can log them.
        Alternatives: Raise on creation failure.
        """

        if not self._session.connected:
            return CreateResult(error="Not authenticated with Google")
        body: dict[str, Any] = {
            "summary": summary,
            "description": description,
            "start": {"dateTime": start.astimezone().isoformat()},
            "end": {"dateTime": end.astimezone().isoformat()},
            "attendees": [{"email": address} for address in attendees],
        }
        try:
            response = google_api_request(
                self._session,
                f"{self._base_url}/calendars/primary/events?sendUpdates=all",
                self._timeout,
                method="POST",
                payload=body,
                label="Calendar insert",
            )
        except ProviderUnavailableError as exc:
            logger.error("Failed to create calendar event %r: %s", summary, exc)
            return CreateResult(error=str(exc))
        logger.info("Calendar event created (id: %s).", response.get("id"))
        return CreateResult(event_id=response.get("id"))


def parse_calendar_event(item: dict[str, Any]) -> CalendarItem:
    """Summary: Parse a Calendar API event into a CalendarItem.

    Importance: Derives attendee names and companies when the API omits them.
    Alternatives: Store raw attendee payloads.
    """

    attendees = tuple(_parse_attendee(attendee) for attendee in item.get("attendees", []) or [])
    start = item.get("start") or {}
    end = item.get("end") or {}
    return CalendarItem(
        id=item.get("id", ""),
        title=item.get("summary") or "(No title)",
        description=item.get("description") or "",
        start=start.get("dateTime") or start.get("date") or "",
        end=end.get("dateTime") or end.get("date") or "",
        attendees=attendees,
        location=item.get("location") or None,
    )


def _parse_attendee(attendee: dict[str, Any]) -> Attendee:
    email = attendee.get("email") or ""
    local_part, _, domain = email.partition("@")
    return Attendee(
        name=attendee.get("displayName") or local_part or "Unknown",
        email=email,
        company=domain.split(".")[0] if domain else None,
    )
