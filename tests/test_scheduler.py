"""Summary: Tests for the single-flight auto-processing scheduler.

Importance: Ensures overlapping runs are dropped, failures do not stall the drain, and observers fire.
Alternatives: Rely on manual observation of background processing.
"""

from __future__ import annotations

import threading
from pathlib import Path

from researchpilot.models import EmailItem, Item, ResearchResult
from researchpilot.scheduler import AutoProcessor, ProcessingEventLog
from researchpilot.storage.sqlite_store import SqliteStore


class _RecordingRunner:
    """Summary: Runner stub that completes research and records the order of items."""

    def __init__(self, store: SqliteStore, fail_ids: set[str] | None = None) -> None:
        self.store = store
        self.fail_ids = fail_ids or set()
        self.seen: list[str] = []

    def run(self, item: Item, force: bool = False) -> ResearchResult:
        self.seen.append(item.id)
        if item.id in self.fail_ids:
            raise RuntimeError(f"model exploded on {item.id}")
        result = ResearchResult(output=f"research for {item.id}")
        self.store.complete_research(item.variant, item.id, result)
        return result


class _BlockingRunner(_RecordingRunner):
    """Summary: Runner stub that blocks until released, to hold the run guard."""

    def __init__(self, store: SqliteStore) -> None:
        super().__init__(store)
        self.started = threading.Event()
        self.release = threading.Event()

    def run(self, item: Item, force: bool = False) -> ResearchResult:
        self.started.set()
        self.release.wait(5)
        return super().run(item, force)


def _email(email_id: str) -> EmailItem:
    return EmailItem(
        id=email_id,
        sender="a@example.com",
        recipient="b@example.com",
        subject=f"Subject {email_id}",
        snippet="",
        body="",
        date="2026-02-01T10:00:00Z",
    )


def _store_with_emails(tmp_path: Path, *ids: str) -> SqliteStore:
    store = SqliteStore(str(tmp_path / "scheduler.db"))
    store.initialize()
    store.upsert_emails([_email(email_id) for email_id in ids])
    return store


def test_run_pending_processes_every_item_and_notifies(tmp_path: Path) -> None:
    store = _store_with_emails(tmp_path, "e1", "e2")
    runner = _RecordingRunner(store)
    events = ProcessingEventLog()
    processor = AutoProcessor(
        store, runner, on_item_processed=events.item_processed, on_complete=events.complete
    )
    assert processor.run_pending() == 2
    assert runner.seen == ["e1", "e2"]
    assert store.get_unprocessed_items() == []
    recent = events.recent()
    assert recent[0]["event"] == "processing-complete"
    assert [(event["type"], event["id"]) for event in recent[1:]] == [("email", "e2"), ("email", "e1")]


def test_failed_item_is_marked_processed_and_drain_continues(tmp_path: Path) -> None:
    """Summary: Verify one failing item does not block the rest.

    Importance: A poison item must not be retried forever by the scheduler.
    Alternatives: Stop the drain on the first failure.
    """

    store = _store_with_emails(tmp_path, "e1", "e2", "e3")
    runner = _RecordingRunner(store, fail_ids={"e2"})
    processed: list[str] = []
    processor = AutoProcessor(store, runner)
    processor.run_pending(on_item_processed=lambda variant, item_id: processed.append(item_id))
    assert runner.seen == ["e1", "e2", "e3"]
    assert processed == ["e1", "e3"]
    assert store.get_processing_status("email", "e2") == "done"
    assert store.get_research("email", "e2") is None
    assert processor.run_pending() == 0
    assert runner.seen == ["e1", "e2", "e3"]


def test_overlapping_run_is_dropped(tmp_path: Path) -> None:
    """Summary: Verify a second run returns immediately while one is active.

    Importance: Prevents duplicate model spend on the same items.
    Alternatives: Queue overlapping runs.
    """

    store = _store_with_emails(tmp_path, "e1")
    runner = _BlockingRunner(store)
    processor = AutoProcessor(store, runner)
    worker = threading.Thread(target=processor.run_pending)
    worker.start()
    try:
        assert runner.started.wait(5)
        assert processor.is_running()
        assert AutoProcessor(store, _RecordingRunner(store)).run_pending() == 0
    finally:
        runner.release.set()
        worker.join(5)
    assert not processor.is_running()
    assert runner.seen == ["e1"]
    assert store.get_processing_status("email", "e1") == "done"


def test_paused_waits_for_active_run_and_blocks_new_ones(tmp_path: Path) -> None:
    """Summary: Verify paused() waits out an in-flight run and holds off new runs.

    Importance: A full wipe must not be followed by late research writes.
    Alternatives: Cancel only the pending timer before wiping.
    """

    store = _store_with_emails(tmp_path, "e1")
    runner = _BlockingRunner(store)
    processor = AutoProcessor(store, runner)
    worker = threading.Thread(target=processor.run_pending)
    worker.start()
    entered = threading.Event()
    inside: list[int] = []

    def wipe() -> None:
        with processor.paused():
            entered.set()
            store.wipe_all()
            store.upsert_emails([_email("e2")])
            inside.append(AutoProcessor(store, _RecordingRunner(store)).run_pending())

    wiper = threading.Thread(target=wipe)
    try:
        assert runner.started.wait(5)
        wiper.start()
        assert not entered.wait(0.2)
    finally:
        runner.release.set()
        worker.join(5)
        wiper.join(5)
    assert entered.is_set()
    assert inside == [0]
    assert store.list_research() == []
    assert store.list_processing_statuses() == {"email:e2": "pending"}


def test_observer_failure_does_not_abort_drain(tmp_path: Path) -> None:
    store = _store_with_emails(tmp_path, "e1", "e2")
    runner = _RecordingRunner(store)

    def broken_observer(variant: str, item_id: str) -> None:
        raise ValueError("observer down")

    processor = AutoProcessor(store, runner, on_item_processed=broken_observer)
    assert processor.run_pending() == 2
    assert runner.seen == ["e1", "e2"]


def test_trigger_coalesces_and_runs_in_background(tmp_path: Path) -> None:
    store = _store_with_emails(tmp_path, "e1", "e2")
    runner = _RecordingRunner(store)
    completions: list[str] = []
    processor = AutoProcessor(
        store,
        runner,
        debounce_seconds=0.05,
        on_complete=lambda: completions.append("done"),
    )
    processor.trigger()
    processor.trigger()
    assert processor.join(5)
    assert runner.seen == ["e1", "e2"]
    assert completions == ["done"]


def test_cancel_drops_pending_trigger(tmp_path: Path) -> None:
    store = _store_with_emails(tmp_path, "e1")
    runner = _RecordingRunner(store)
    processor = AutoProcessor(store, runner, debounce_seconds=5)
    processor.trigger()
    processor.cancel()
    assert processor.join(1)
    assert runner.seen == []


def test_event_log_is_bounded() -> None:
    events = ProcessingEventLog(max_events=2)
    events.item_processed("email", "e1")
    events.item_processed("email", "e2")
    events.complete()
    recent = events.recent()
    assert [event["event"] for event in recent] == ["processing-complete", "item-processed"]
    assert recent[1]["id"] == "e2"
    assert "at" in recent[0]
