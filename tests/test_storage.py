"""Summary: Tests for SQLite storage layer.

Importance: Ensures deduplication, atomic writes, and cached results behave as expected.
Alternatives: Rely on manual testing for storage operations.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from researchpilot.models import (
    Attendee,
    CalendarItem,
    EmailAction,
    EmailItem,
    InsightsResult,
    MeetingAction,
    ResearchResult,
    ToolCall,
    item_key,
)
from researchpilot.storage.sqlite_store import SqliteStore


def _store(tmp_path: Path) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "test.db"))
    store.initialize()
    return store


def _email(email_id: str, subject: str = "Hello", date: str = "2026-02-08T10:00:00Z") -> EmailItem:
    return EmailItem(
        id=email_id,
        sender="sender@example.com",
        recipient="me@example.com",
        subject=subject,
        snippet=subject,
        body=f"Body of {subject}",
        date=date,
        thread_id=f"thread-{email_id}",
    )


def _event(event_id: str, start: str = "2026-02-12T10:00:00Z") -> CalendarItem:
    return CalendarItem(
        id=event_id,
        title="Planning",
        description="Quarterly planning",
        start=start,
        end="2026-02-12T11:00:00Z",
        attendees=(Attendee(name="Sam", email="sam@example.com", company="example"),),
        location="Zoom",
    )


def test_upsert_counts_only_new_ids(tmp_path: Path) -> None:
    """Summary: Verify a repeated upsert reports zero new items and keeps one row per id.

    Importance: Auto-processing triggers only when genuinely new items arrive.
    Alternatives: Count rows written instead of new ids.
    """

    store = _store(tmp_path)
    assert store.upsert_emails([_email("e1"), _email("e2")]) == 2
    assert store.upsert_emails([_email("e1", subject="Updated"), _email("e2")]) == 0
    emails = store.list_emails()
    assert len(emails) == 2
    assert {email.subject for email in emails} == {"Updated", "Hello"}


def test_upsert_preserves_processed_flag(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert_emails([_email("e1")])
    store.mark_processed("email", "e1")
    store.upsert_emails([_email("e1", subject="Refreshed")])
    stored = store.get_item("email", "e1")
    assert stored is not None
    assert stored.processed is True
    assert stored.subject == "Refreshed"


def test_upsert_batch_is_atomic(tmp_path: Path) -> None:
    """Summary: Verify a failing batch leaves no partial writes.

    Importance: Either every item of a batch is stored or none is.
    Alternatives: Commit each item independently.
    """

    store = _store(tmp_path)
    with pytest.raises(ValueError):
        store.upsert_items("email", [_email("e1"), _event("x1")])
    assert store.list_emails() == []


def test_unknown_variant_is_rejected(tmp_path: Path) -> None:
    store = _store(tmp_path)
    with pytest.raises(ValueError):
        store.list_items("sms")
    with pytest.raises(ValueError):
        store.existing_ids("sms")


def test_events_round_trip_attendees(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert_events([_event("ev2", "2026-02-13T10:00:00Z"), _event("ev1")])
    events = store.list_events()
    assert [event.id for event in events] == ["ev1", "ev2"]
    assert events[0].attendees[0].email == "sam@example.com"
    assert events[0].location == "Zoom"


def test_unprocessed_items_lists_emails_before_events(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert_events([_event("ev1")])
    store.upsert_emails([_email("e1"), _email("e2")])
    store.mark_processed("email", "e2")
    pending = store.get_unprocessed_items()
    assert [(item.variant, item.id) for item in pending] == [("email", "e1"), ("calendar", "ev1")]
    assert store.get_processing_status("email", "e2") == "done"
    assert store.get_processing_status("email", "e1") == "pending"
    assert store.get_processing_status("email", "missing") == "pending"


def test_processing_statuses_cover_both_variants(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert_emails([_email("e1")])
    store.upsert_events([_event("c1")])
    store.mark_processed("calendar", "c1")
    assert store.list_processing_statuses() == {
        item_key("email", "e1"): "pending",
        item_key("calendar", "c1"): "done",
    }
    assert item_key("calendar", "c1") == "calendar:c1"


def test_complete_research_marks_processed(tmp_path: Path) -> None:
    """Summary: Verify research results and the processed flag are written together.

    Importance: A cached result always implies a processed item.
    Alternatives: Write the result and flag in separate transactions.
    """

    store = _store(tmp_path)
    store.upsert_emails([_email("e1")])
    result = ResearchResult(
        output="Draft reply", tool_calls=(ToolCall(tool="web_search", query="sender"),)
    )
    store.complete_research("email", "e1", result)
    assert store.get_research("email", "e1") == result
    assert store.list_processing_statuses() == {"email:e1": "done"}
    stored = store.list_research()
    assert len(stored) == 1
    assert stored[0].source_id == "e1"


def test_save_insights_round_trips_action_steps(tmp_path: Path) -> None:
    store = _store(tmp_path)
    result = InsightsResult(
        key_insights=("a", "b", "c"),
        feedback=("f1", "f2"),
        action_steps=(
            EmailAction(description="Send", details="d", to="x@example.com", subject="s", body="b"),
            MeetingAction(
                description="Meet",
                details="d",
                meeting_summary="Sync",
                attendees=("x@example.com",),
                duration_minutes=45,
            ),
        ),
        raw_output="{}",
    )
    store.save_insights("transcript", "t1", result)
    assert store.get_insights("transcript", "t1") == result
    assert store.get_insights("email-reply", "t1") is None


def test_action_log_is_append_only_newest_first(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.append_action_log("transcript", "t1", 0, "failed", "boom")
    store.append_action_log("transcript", "t1", 0, "executed", "msg-1")
    store.append_action_log("transcript", "t2", 1, "executed", "evt-1")
    log = store.get_action_log("transcript", "t1")
    assert [(record.status, record.detail) for record in log] == [
        ("executed", "msg-1"),
        ("failed", "boom"),
    ]


def test_list_thread_and_reply_emails(tmp_path: Path) -> None:
    store = _store(tmp_path)
    first = _email("e1", subject="Intro", date="2026-02-01T10:00:00Z")
    reply = EmailItem(
        id="e2",
        sender="sender@example.com",
        recipient="me@example.com",
        subject="RE: Intro",
        snippet="",
        body="Sounds good",
        date="2026-02-02T10:00:00Z",
        thread_id="thread-e1",
    )
    store.upsert_emails([first, reply])
    assert [email.id for email in store.list_thread("thread-e1")] == ["e2", "e1"]
    assert [email.id for email in store.list_reply_emails()] == ["e2"]


def test_wipe_all_clears_every_table(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.upsert_emails([_email("e1")])
    store.upsert_events([_event("ev1")])
    store.complete_research("email", "e1", ResearchResult(output="x"))
    store.append_action_log("transcript", "t1", 0, "executed")
    store.wipe_all()
    assert store.list_emails() == []
    assert store.list_events() == []
    assert store.list_research() == []
    assert store.get_action_log("transcript", "t1") == []
    store.wipe_all()
