"""Summary: SQLite storage implementation for ResearchPilot.

Importance: Single source of truth for items, processing status, cached agent results, and action history.
Alternatives: Use an ORM or an external database immediately.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator

from researchpilot.models import (
    ActionExecutionRecord,
    ActionStatus,
    AiRequest,
    AiResponse,
    Attendee,
    CalendarItem,
    EmailItem,
    InsightsResult,
    Item,
    ResearchResult,
    ToolCall,
    action_step_from_dict,
    action_step_to_dict,
    item_key,
)


_ITEM_TABLES = {"email": "emails", "calendar": "events"}

_EMAIL_COLUMNS = (
    "id, from_addr, to_addr, subject, snippet, body, date, thread_id, message_id, processed"
)
_EVENT_COLUMNS = "id, summary, description, start_time, end_time, attendees, location, processed"


@dataclass(frozen=True)
class StoredResearch:
    """Summary: Research result row with its source key and timestamp.

    Importance: Supports listing all cached research for review screens.
    Alternatives: Return bare ResearchResult objects without keys.
    """

    source_type: str
    source_id: str
    result: ResearchResult
    updated_at: str


@dataclass(frozen=True)
class StoredAiRequest:
    """Summary: AI request record with database identifier."""

    id: int
    provider: str
    model: str
    purpose: str
    timestamp: str


@dataclass(frozen=True)
class StoredAiResponse:
    """Summary: AI response record with database identifier."""

    id: int
    request_id: int
    latency_ms: int
    token_estimate: int


class SqliteStore:
    """Summary: SQLite-backed storage for ResearchPilot.

    Importance: Enables local-first persistence with atomic batch writes.
    Alternatives: Use Postgres and SQLAlchemy from day one.
    """

    def __init__(self, db_path: str, timeout: float = 30.0) -> None:
        """Summary: Initialize the storage with a database path.

        Importance: Allows configurable database location per environment.
        Alternatives: Hardcode a default path in the class.
        """

        self._db_path = Path(db_path)
        self._timeout = timeout

    def initialize(self) -> None:
        """Summary: Create tables if they do not exist.

        Importance: Ensures the database is ready for ingestion and agent runs.
        Alternatives: Run migrations using a dedicated migration tool.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute("PRAGMA journal_mode = WAL")
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS emails (
                    id TEXT PRIMARY KEY,
                    from_addr TEXT,
                    to_addr TEXT,
                    subject TEXT,
                    snippet TEXT,
                    body TEXT,
                    date TEXT,
                    thread_id TEXT,
                    message_id TEXT,
                    processed INTEGER NOT NULL DEFAULT 0,
                    fetched_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS events (
                    id TEXT PRIMARY KEY,
                    summary TEXT,
                    description TEXT,
                    start_time TEXT,
                    end_time TEXT,
                    attendees TEXT NOT NULL DEFAULT '[]',
                    location TEXT,
                    processed INTEGER NOT NULL DEFAULT 0,
                    fetched_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS research_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_type TEXT NOT NULL,
                    source_id TEXT NOT NULL,
                    output TEXT NOT NULL,
                    tool_calls TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(source_type, source_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS insights_results (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_type TEXT NOT NULL,
                    source_id TEXT NOT NULL,
                    key_insights TEXT NOT NULL,
                    feedback TEXT NOT NULL,
                    action_steps TEXT NOT NULL,
                    raw_output TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE(source_type, source_id)
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS insights_action_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_type TEXT NOT NULL,
                    source_id TEXT NOT NULL,
                    action_index INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    detail TEXT,
                    executed_at TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_requests (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    provider TEXT NOT NULL,
                    model TEXT NOT NULL,
                    prompt TEXT NOT NULL,
                    purpose TEXT NOT NULL,
                    timestamp TEXT NOT NULL
                )
                """
            )
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS ai_responses (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    request_id INTEGER NOT NULL,
                    response_text TEXT NOT NULL,
                    latency_ms INTEGER NOT NULL,
                    token_estimate INTEGER NOT NULL
                )
                """
            )
            connection.commit()

    def upsert_items(self, variant: str, items: Iterable[Item]) -> int:
        """Summary: Insert or refresh items and return how many ids were new.

        Importance: Sole arbiter of "new vs known" for ingestion and auto-processing.
        Alternatives: Insert-or-ignore and lose content refreshes for known ids.
        """

        table = _table_for(variant)
        now = _now()
        with self._transaction() as connection:
            cursor = connection.cursor()
            cursor.execute(f"SELECT id FROM {table}")
            existing_ids = {row[0] for row in cursor.fetchall()}
            new_count = 0
            for item in items:
                if item.variant != variant:
                    raise ValueError(f"Expected {variant} item, got {item.variant}")
                if item.id not in existing_ids:
                    new_count += 1
                if isinstance(item, EmailItem):
                    _upsert_email(cursor, item, now)
                else:
                    _upsert_event(cursor, item, now)
        return new_count

    def upsert_emails(self, emails: Iterable[EmailItem]) -> int:
        """Summary: Upsert emails and return the number of new ids."""

        return self.upsert_items("email", emails)

    def upsert_events(self, events: Iterable[CalendarItem]) -> int:
        """Summary: Upsert calendar events and return the number of new ids."""

        return self.upsert_items("calendar", events)

    def existing_ids(self, variant: str) -> set[str]:
        """Summary: Return every stored id for a variant.

        Importance: Lets providers skip downloading items already held.
        Alternatives: Re-download every item on each fetch.
        """

        table = _table_for(variant)
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(f"SELECT id FROM {table}")
            rows = cursor.fetchall()
        return {row[0] for row in rows}

    def list_emails(self) -> list[EmailItem]:
        """Summary: Retrieve all stored emails, newest first.

        Importance: Returns the complete current picture after ingestion.
        Alternatives: Return only the freshly fetched subset.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(f"SELECT {_EMAIL_COLUMNS} FROM emails ORDER BY date DESC, rowid DESC")
            rows = cursor.fetchall()
        return [_email_from_row(row) for row in rows]

    def list_events(self) -> list[CalendarItem]:
        """Summary: Retrieve all stored calendar events by start time.

        Importance: Returns the complete current picture after ingestion.
        Alternatives: Return only upcoming events.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(f"SELECT {_EVENT_COLUMNS} FROM events ORDER BY start_time ASC, rowid ASC")
            rows = cursor.fetchall()
        return [_event_from_row(row) for row in rows]

    def list_items(self, variant: str) -> list[Item]:
        """Summary: Retrieve all stored items for a variant."""

        if variant == "email":
            return list(self.list_emails())
        if variant == "calendar":
            return list(self.list_events())
        raise ValueError(f"Unknown item variant: {variant}")

    def get_item(self, variant: str, item_id: str) -> Item | None:
        """Summary: Retrieve a single stored item.

        Importance: Lets manual research runs resolve items by key.
        Alternatives: Filter list results in memory.
        """

        table = _table_for(variant)
        columns = _EMAIL_COLUMNS if variant == "email" else _EVENT_COLUMNS
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(f"SELECT {columns} FROM {table} WHERE id = ?", (item_id,))
            row = cursor.fetchone()
        if not row:
            return None
        return _email_from_row(row) if variant == "email" else _event_from_row(row)

    def get_unprocessed_items(self) -> list[Item]:
        """Summary: Return unprocessed emails then events, each in insertion order.

        Importance: Supplies the snapshot drained by the auto-processing scheduler.
        Alternatives: Use a separate job queue table.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {_EMAIL_COLUMNS} FROM emails WHERE processed = 0 ORDER BY rowid ASC"
            )
            email_rows = cursor.fetchall()
            cursor.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE processed = 0 ORDER BY rowid ASC"
            )
            event_rows = cursor.fetchall()
        items: list[Item] = [_email_from_row(row) for row in email_rows]
        items.extend(_event_from_row(row) for row in event_rows)
        return items

    def mark_processed(self, variant: str, item_id: str) -> None:
        """Summary: Flag an item as processed.

        Importance: Guarantees forward progress for the scheduler; safe to repeat.
        Alternatives: Delete items from a pending queue instead.
        """

        table = _table_for(variant)
        with self._transaction() as connection:
            connection.execute(f"UPDATE {table} SET processed = 1 WHERE id = ?", (item_id,))

    def get_processing_status(self, variant: str, item_id: str) -> str:
        """Summary: Return "done" or "pending" for an item.

        Importance: Lets clients render per-item progress.
        Alternatives: Infer status from the research cache alone.
        """

        table = _table_for(variant)
        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(f"SELECT processed FROM {table} WHERE id = ?", (item_id,))
            row = cursor.fetchone()
        return "done" if row and row[0] == 1 else "pending"

    def list_processing_statuses(self) -> dict[str, str]:
        """Summary: Return statuses for every item keyed by "variant:id"."""

        statuses: dict[str, str] = {}
        with self._connection() as connection:
            cursor = connection.cursor()
            for variant, table in _ITEM_TABLES.items():
                cursor.execute(f"SELECT id, processed FROM {table} ORDER BY rowid ASC")
                for item_id, processed in cursor.fetchall():
                    statuses[item_key(variant, item_id)] = "done" if processed == 1 else "pending"
        return statuses

    def list_reply_emails(self) -> list[EmailItem]:
        """Summary: Return stored emails that are replies to an earlier thread.

        Importance: Feeds real replies into the insights workflow when connected.
        Alternatives: Query the provider for replies on every request.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"""
                SELECT {_EMAIL_COLUMNS}
                FROM emails
                WHERE lower(subject) LIKE 're:%'
                ORDER BY date DESC, rowid DESC
                """
            )
            rows = cursor.fetchall()
        return [_email_from_row(row) for row in rows]

    def list_thread(self, thread_id: str) -> list[EmailItem]:
        """Summary: Return stored emails of a thread, newest first."""

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                f"SELECT {_EMAIL_COLUMNS} FROM emails WHERE thread_id = ? ORDER BY date DESC, rowid DESC",
                (thread_id,),
            )
            rows = cursor.fetchall()
        return [_email_from_row(row) for row in rows]

    def get_research(self, variant: str, source_id: str) -> ResearchResult | None:
        """Summary: Retrieve a cached research result.

        Importance: Presence of a row short-circuits model invocation.
        Alternatives: Keep an in-memory cache that is lost on restart.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT output, tool_calls
                FROM research_results
                WHERE source_type = ? AND source_id = ?
                """,
                (variant, source_id),
            )
            row = cursor.fetchone()
        if not row:
            return None
        return ResearchResult(output=row[0], tool_calls=_tool_calls_from_json(row[1]))

    def save_research(self, variant: str, source_id: str, result: ResearchResult) -> None:
        """Summary: Save or overwrite a research result.

        Importance: Keeps one cached result per source key.
        Alternatives: Append a new row for every run.
        """

        with self._transaction() as connection:
            _upsert_research(connection.cursor(), variant, source_id, result)

    def complete_research(self, variant: str, source_id: str, result: ResearchResult) -> None:
        """Summary: Save a research result and mark its item processed atomically.

        Importance: Prevents a cached result without a processed flag, and vice versa.
        Alternatives: Call save_research and mark_processed separately.
        """

        table = _table_for(variant)
        with self._transaction() as connection:
            cursor = connection.cursor()
            _upsert_research(cursor, variant, source_id, result)
            cursor.execute(f"UPDATE {table} SET processed = 1 WHERE id = ?", (source_id,))

    def list_research(self) -> list[StoredResearch]:
        """Summary: Return every cached research result, newest first."""

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT source_type, source_id, output, tool_calls, updated_at
                FROM research_results
                ORDER BY updated_at DESC, id DESC
                """
            )
            rows = cursor.fetchall()
        return [
            StoredResearch(
                source_type=row[0],
                source_id=row[1],
                result=ResearchResult(output=row[2], tool_calls=_tool_calls_from_json(row[3])),
                updated_at=row[4],
            )
            for row in rows
        ]

    def get_insights(self, source_type: str, source_id: str) -> InsightsResult | None:
        """Summary: Retrieve cached insights for a reply or transcript.

        Importance: Serves both the insights cache and action execution lookups.
        Alternatives: Re-run the insights model on every view.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT key_insights, feedback, action_steps, raw_output
                FROM insights_results
                WHERE source_type = ? AND source_id = ?
                """,
                (source_type, source_id),
            )
            row = cursor.fetchone()
        if not row:
            return None
        return InsightsResult(
            key_insights=tuple(json.loads(row[0])),
            feedback=tuple(json.loads(row[1])),
            action_steps=tuple(action_step_from_dict(step) for step in json.loads(row[2])),
            raw_output=row[3],
        )

    def save_insights(self, source_type: str, source_id: str, result: InsightsResult) -> None:
        """Summary: Save or overwrite insights for a source.

        Importance: Keeps one cached insights row per source key.
        Alternatives: Store only the raw model output.
        """

        with self._transaction() as connection:
            connection.execute(
                """
                INSERT INTO insights_results (
                    source_type, source_id, key_insights, feedback, action_steps, raw_output, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(source_type, source_id) DO UPDATE SET
                    key_insights = excluded.key_insights,
                    feedback = excluded.feedback,
                    action_steps = excluded.action_steps,
                    raw_output = excluded.raw_output,
                    updated_at = excluded.updated_at
                """,
                (
                    source_type,
                    source_id,
                    json.dumps(list(result.key_insights)),
                    json.dumps(list(result.feedback)),
                    json.dumps([action_step_to_dict(step) for step in result.action_steps]),
                    result.raw_output,
                    _now(),
                ),
            )

    def append_action_log(
        self,
        source_type: str,
        source_id: str,
        action_index: int,
        status: ActionStatus,
        detail: str | None = None,
    ) -> ActionExecutionRecord:
        """Summary: Append an action execution entry.

        Importance: Records every execution attempt, successful or not.
        Alternatives: Overwrite a single status column per action.
        """

        executed_at = _now()
        with self._transaction() as connection:
            connection.execute(
                """
                INSERT INTO insights_action_log (
                    source_type, source_id, action_index, status, detail, executed_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (source_type, source_id, action_index, status, detail, executed_at),
            )
        return ActionExecutionRecord(
            source_type=source_type,
            source_id=source_id,
            action_index=action_index,
            status=status,
            executed_at=executed_at,
            detail=detail,
        )

    def get_action_log(self, source_type: str, source_id: str) -> list[ActionExecutionRecord]:
        """Summary: Return the execution history for a source, newest first.

        Importance: Lets clients render a complete execution history.
        Alternatives: Return only the latest status per action.
        """

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT source_type, source_id, action_index, status, executed_at, detail
                FROM insights_action_log
                WHERE source_type = ? AND source_id = ?
                ORDER BY executed_at DESC, id DESC
                """,
                (source_type, source_id),
            )
            rows = cursor.fetchall()
        return [ActionExecutionRecord(*row) for row in rows]

    def log_ai_request(self, request: AiRequest) -> int:
        """Summary: Persist an AI request for auditing.

        Importance: Tracks prompts and providers used by the agents.
        Alternatives: Use structured logs instead of database storage.
        """

        with self._transaction() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO ai_requests (provider, model, prompt, purpose, timestamp)
                VALUES (?, ?, ?, ?, ?)
                """,
                (request.provider, request.model, request.prompt, request.purpose, request.timestamp),
            )
            request_id = cursor.lastrowid
        return int(request_id)

    def log_ai_response(self, response: AiResponse) -> int:
        """Summary: Persist an AI response for auditing.

        Importance: Enables traceability of AI outputs and latency.
        Alternatives: Store responses in a flat log file.
        """

        with self._transaction() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                INSERT INTO ai_responses (request_id, response_text, latency_ms, token_estimate)
                VALUES (?, ?, ?, ?)
                """,
                (
                    response.request_id,
                    response.response_text,
                    response.latency_ms,
                    response.token_estimate,
                ),
            )
            response_id = cursor.lastrowid
        return int(response_id)

    def list_ai_requests(self, limit: int) -> list[StoredAiRequest]:
        """Summary: Return recent AI requests, newest first."""

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, provider, model, purpose, timestamp
                FROM ai_requests
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = cursor.fetchall()
        return [StoredAiRequest(*row) for row in rows]

    def list_ai_responses(self, limit: int) -> list[StoredAiResponse]:
        """Summary: Return recent AI responses, newest first."""

        with self._connection() as connection:
            cursor = connection.cursor()
            cursor.execute(
                """
                SELECT id, request_id, latency_ms, token_estimate
                FROM ai_responses
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = cursor.fetchall()
        return [StoredAiResponse(*row) for row in rows]

    def wipe_all(self) -> None:
        """Summary: Delete every row from every table in one transaction.

        Importance: Backs the full data-deletion operation; all tables clear or none do.
        Alternatives: Delete the database file from disk.
        """

        with self._transaction() as connection:
            for table in (
                "emails",
                "events",
                "research_results",
                "insights_results",
                "insights_action_log",
                "ai_responses",
                "ai_requests",
            ):
                connection.execute(f"DELETE FROM {table}")

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Summary: Context manager for SQLite connections.

        Importance: Ensures connections are closed cleanly after use.
        Alternatives: Keep a single long-lived connection.
        """

        connection = sqlite3.connect(self._db_path, timeout=self._timeout)
        try:
            yield connection
        finally:
            connection.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Summary: Run statements inside one write transaction.

        Importance: Makes batch writes all-or-nothing and reads inside them consistent.
        Alternatives: Rely on sqlite3's implicit transactions.
        """

        connection = sqlite3.connect(self._db_path, timeout=self._timeout, isolation_level=None)
        try:
            connection.execute("BEGIN IMMEDIATE")
            try:
                yield connection
            except BaseException:
                connection.execute("ROLLBACK")
                raise
            connection.execute("COMMIT")
        finally:
            connection.close()


def _table_for(variant: str) -> str:
    try:
        return _ITEM_TABLES[variant]
    except KeyError:
        raise ValueError(f"Unknown item variant: {variant}") from None


def _now() -> str:
    return datetime.now().isoformat(timespec="microseconds")


def _upsert_email(cursor: sqlite3.Cursor, email: EmailItem, fetched_at: str) -> None:
    cursor.execute(
        """
        INSERT INTO emails (
            id, from_addr, to_addr, subject, snippet, body, date, thread_id, message_id, fetched_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            from_addr = excluded.from_addr,
            to_addr = excluded.to_addr,
            subject = excluded.subject,
            snippet = excluded.snippet,
            body = excluded.body,
            date = excluded.date,
            thread_id = excluded.thread_id,
            message_id = excluded.message_id,
            fetched_at = excluded.fetched_at
        """,
        (
            email.id,
            email.sender,
            email.recipient,
            email.subject,
            email.snippet,
            email.body,
            email.date,
            email.thread_id,
            email.message_id,
            fetched_at,
        ),
    )


def _upsert_event(cursor: sqlite3.Cursor, event: CalendarItem, fetched_at: str) -> None:
    attendees = [
        {"name": attendee.name, "email": attendee.email, "company": attendee.company}
        for attendee in event.attendees
    ]
    cursor.execute(
        """
        INSERT INTO events (
            id, summary, description, start_time, end_time, attendees, location, fetched_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            summary = excluded.summary,
            description = excluded.description,
            start_time = excluded.start_time,
            end_time = excluded.end_time,
            attendees = excluded.attendees,
            location = excluded.location,
            fetched_at = excluded.fetched_at
        """,
        (
            event.id,
            event.title,
            event.description,
            event.start,
            event.end,
            json.dumps(attendees),
            event.location,
            fetched_at,
        ),
    )


def _upsert_research(
    cursor: sqlite3.Cursor, variant: str, source_id: str, result: ResearchResult
) -> None:
    tool_calls = [{"tool": call.tool, "query": call.query} for call in result.tool_calls]
    cursor.execute(
        """
        INSERT INTO research_results (source_type, source_id, output, tool_calls, updated_at)
        VALUES (?, ?, ?, ?, ?)
        ON CONFLICT(source_type, source_id) DO UPDATE SET
            output = excluded.output,
            tool_calls = excluded.tool_calls,
            updated_at = excluded.updated_at
        """,
        (variant, source_id, result.output, json.dumps(tool_calls), _now()),
    )


def _tool_calls_from_json(raw: str) -> tuple[ToolCall, ...]:
    return tuple(ToolCall(tool=item["tool"], query=item["query"]) for item in json.loads(raw))


def _email_from_row(row: tuple) -> EmailItem:
    return EmailItem(
        id=row[0],
        sender=row[1] or "",
        recipient=row[2] or "",
        subject=row[3] or "",
        snippet=row[4] or "",
        body=row[5] or "",
        date=row[6] or "",
        thread_id=row[7],
        message_id=row[8],
        processed=row[9] == 1,
    )


def _event_from_row(row: tuple) -> CalendarItem:
    attendees = tuple(
        Attendee(name=item.get("name", ""), email=item.get("email", ""), company=item.get("company"))
        for item in json.loads(row[5] or "[]")
    )
    return CalendarItem(
        id=row[0],
        title=row[1] or "",
        description=row[2] or "",
        start=row[3] or "",
        end=row[4] or "",
        attendees=attendees,
        location=row[6],
        processed=row[7] == 1,
    )
