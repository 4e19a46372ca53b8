"""Summary: Single-flight background scheduler for research auto-processing.

Importance: Drains unprocessed items one at a time so model spend is never duplicated.
Alternatives: Use a task queue such as Celery or RQ.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator

from researchpilot.research import ResearchAgentRunner
from researchpilot.storage.sqlite_store import SqliteStore


logger = logging.getLogger(__name__)

ItemProcessedCallback = Callable[[str, str], None]
CompleteCallback = Callable[[], None]

# Process-wide; at most one drain runs at a time regardless of processor instance.
_RUN_LOCK = threading.Lock()


class AutoProcessor:
    """Summary: Runs research over every unprocessed item in the background.

    Importance: Turns ingestion of new items into cached research without user action.
    Alternatives: Require users to request research per item.
    """

    def __init__(
        self,
        store: SqliteStore,
        runner: ResearchAgentRunner,
        debounce_seconds: float = 1.0,
        on_item_processed: ItemProcessedCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> None:
        """Summary: Configure the processor with its default observers.

        Importance: Lets the API and CLI attach notification sinks once.
        Alternatives: Pass observers on every trigger.
        """

        self._store = store
        self._runner = runner
        self._debounce_seconds = debounce_seconds
        self._on_item_processed = on_item_processed
        self._on_complete = on_complete
        self._timer: threading.Timer | None = None
        self._timer_lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()

    def run_pending(
        self,
        on_item_processed: ItemProcessedCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> int:
        """Summary: Process the current snapshot of unprocessed items sequentially.

        Importance: Returns 0 immediately when another run holds the guard.
        Alternatives: Queue overlapping runs.
        """

        if not _RUN_LOCK.acquire(blocking=False):
            logger.info("Auto-processing already running; skipping.")
            return 0
        item_callback = on_item_processed or self._on_item_processed
        complete_callback = on_complete or self._on_complete
        try:
            pending = self._store.get_unprocessed_items()
            logger.info("Auto-processing %s unprocessed items.", len(pending))
            for item in pending:
                try:
                    self._runner.run(item)
                except Exception:  # noqa: BLE001 - one failing item must not stop the drain
                    logger.exception("Research failed for %s:%s; marking processed.", item.variant, item.id)
                    self._store.mark_processed(item.variant, item.id)
                    continue
                if item_callback is not None:
                    _notify(item_callback, item.variant, item.id)
            if complete_callback is not None:
                _notify(complete_callback)
            logger.info("Auto-processing complete.")
            return len(pending)
        finally:
            _RUN_LOCK.release()

    def trigger(self) -> None:
        """Summary: Schedule a background run after the debounce delay.

        Importance: Coalesces near-simultaneous email and calendar fetches into one run.
        Alternatives: Start a run immediately for every batch of new items.
        """

        with self._timer_lock:
            if self._timer is not None:
                logger.debug("Auto-processing trigger coalesced into pending run.")
                return
            self._idle.clear()
            timer = threading.Timer(self._debounce_seconds, self._fire)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def join(self, timeout: float | None = None) -> bool:
        """Summary: Wait for pending and active background runs to finish.

        Importance: Lets the CLI and tests observe completed processing.
        Alternatives: Poll processing statuses.
        """

        return self._idle.wait(timeout)

    def is_running(self) -> bool:
        return _RUN_LOCK.locked()

    def cancel(self) -> None:
        """Summary: Cancel a pending, not yet started, background run."""

        with self._timer_lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
                self._idle.set()

    @contextmanager
    def paused(self, timeout: float = 30.0) -> Iterator[None]:
        """Summary: Hold the run guard so no research writes happen inside the block.

        Importance: A full wipe must not be followed by results from a run that was already in flight.
        Alternatives: Skip writes for items deleted mid-run.
        """

        self.cancel()
        if not _RUN_LOCK.acquire(timeout=timeout):
            raise TimeoutError("Auto-processing did not finish in time")
        try:
            yield
        finally:
            _RUN_LOCK.release()

    def _fire(self) -> None:
        with self._timer_lock:
            self._timer = None
        try:
            self.run_pending()
        except Exception:  # noqa: BLE001 - background thread has no caller to report to
            logger.exception("Auto-processing run failed.")
        finally:
            with self._timer_lock:
                if self._timer is None:
                    self._idle.set()


class ProcessingEventLog:
    """Summary: Bounded in-memory record of scheduler notifications.

    Importance: Lets polling clients see which items finished since they last looked.
    Alternatives: Push notifications over websockets.
    """

    def __init__(self, max_events: int = 200) -> None:
        self._events: deque[dict[str, str]] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def item_processed(self, variant: str, item_id: str) -> None:
        self._append({"event": "item-processed", "type": variant, "id": item_id})

    def complete(self) -> None:
        self._append({"event": "processing-complete"})

    def recent(self, limit: int = 50) -> list[dict[str, str]]:
        """Summary: Return the newest events first."""

        with self._lock:
            events = list(self._events)
        return list(reversed(events))[:limit]

    def _append(self, event: dict[str, str]) -> None:
        event["at"] = datetime.now().isoformat()
        with self._lock:
            self._events.append(event)


def _notify(callback: Callable[..., None], *args: str) -> None:
    try:
        callback(*args)
    except Exception:  # noqa: BLE001 - observers must not abort the drain
        logger.exception("Auto-processing observer failed.")
