"""Summary: Command-line interface for ResearchPilot.

Importance: Provides a local-first entry point for ingestion, research, and insights.
Alternatives: Drive every workflow through the HTTP API.
"""

from __future__ import annotations

import argparse
import logging

from researchpilot.app import build_services
from researchpilot.config import AppConfig
from researchpilot.errors import AiProviderError
from researchpilot.models import INSIGHTS_SOURCE_TYPES, ITEM_VARIANTS, EmailItem, Item
from researchpilot.oauth import build_google_auth_url, create_state_token


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="ResearchPilot CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_emails = subparsers.add_parser("fetch-emails", help="Fetch and store new emails")
    fetch_emails.add_argument("--no-wait", action="store_true", help="Skip waiting for research")
    fetch_events = subparsers.add_parser("fetch-events", help="Fetch and store new events")
    fetch_events.add_argument("--no-wait", action="store_true", help="Skip waiting for research")

    subparsers.add_parser("process", help="Research every unprocessed item now")

    research = subparsers.add_parser("research", help="Research one email or event")
    research.add_argument("variant", choices=ITEM_VARIANTS)
    research.add_argument("source_id", type=str)
    research.add_argument("--force", action="store_true")

    show_research = subparsers.add_parser("show-research", help="Show cached research")
    show_research.add_argument("variant", choices=ITEM_VARIANTS)
    show_research.add_argument("source_id", type=str)

    subparsers.add_parser("statuses", help="Show processing status per item")

    thread = subparsers.add_parser("thread", help="Show an email thread")
    thread.add_argument("thread_id", type=str)

    subparsers.add_parser("list-replies", help="List external replies")
    subparsers.add_parser("list-transcripts", help="List meeting transcripts")

    insights = subparsers.add_parser("insights", help="Generate insights for a source")
    insights.add_argument("source_type", choices=INSIGHTS_SOURCE_TYPES)
    insights.add_argument("source_id", type=str)
    insights.add_argument("--force", action="store_true")

    execute = subparsers.add_parser("execute-action", help="Execute an insights action step")
    execute.add_argument("source_type", choices=INSIGHTS_SOURCE_TYPES)
    execute.add_argument("source_id", type=str)
    execute.add_argument("action_index", type=int)
    execute.add_argument("--allow-repeat", action="store_true")

    action_log = subparsers.add_parser("action-log", help="Show action execution history")
    action_log.add_argument("source_type", choices=INSIGHTS_SOURCE_TYPES)
    action_log.add_argument("source_id", type=str)

    ai_audit = subparsers.add_parser("ai-audit", help="Show recent AI requests")
    ai_audit.add_argument("--limit", type=int, default=20)

    subparsers.add_parser("oauth-google", help="Print Google OAuth URL")
    subparsers.add_parser("sign-out", help="Disconnect the Google session")
    subparsers.add_parser("delete-all-data", help="Delete all stored data and tokens")

    return parser


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Drives the research workflow without a UI.
    Alternatives: Invoke services via the HTTP API.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()
    services = build_services(config)

    if args.command in ("fetch-emails", "fetch-events"):
        variant = "email" if args.command == "fetch-emails" else "calendar"
        items = services.ingestion.fetch_and_upsert(variant)
        for item in items:
            print(_item_line(item))
        if not args.no_wait:
            # Background research runs on a daemon timer; wait so it finishes before exit.
            services.processor.join()
        statuses = services.store.list_processing_statuses()
        done = sum(1 for status in statuses.values() if status == "done")
        print(f"{len(items)} stored, {done}/{len(statuses)} researched.")
        return

    if args.command == "process":
        processed = services.processor.run_pending()
        print(f"Processed {processed} items.")
        return

    if args.command == "research":
        item = services.store.get_item(args.variant, args.source_id)
        if item is None:
            parser.exit(1, f"No {args.variant} item with id {args.source_id}\n")
        try:
            result = services.research.run(item, force=args.force)
        except AiProviderError as exc:
            parser.exit(1, f"Research failed: {exc}\n")
        print(result.output)
        for call in result.tool_calls:
            print(f"- {call.tool}: {call.query}")
        return

    if args.command == "show-research":
        result = services.store.get_research(args.variant, args.source_id)
        if result is None:
            parser.exit(1, "No research cached for this item\n")
        print(result.output)
        return

    if args.command == "statuses":
        for key, status in services.store.list_processing_statuses().items():
            print(f"{key}: {status}")
        return

    if args.command == "thread":
        for email in services.mailbox.get_thread(args.thread_id):
            print(f"{email.date} {email.sender}: {email.subject}")
        return

    if args.command == "list-replies":
        for reply in services.sources.list_replies():
            print(f"{reply.id}: {reply.subject} ({reply.sender})")
        return

    if args.command == "list-transcripts":
        for transcript in services.sources.list_transcripts():
            print(f"{transcript.id}: {transcript.title} ({transcript.date})")
        return

    if args.command == "insights":
        try:
            source = services.sources.get_source(args.source_type, args.source_id)
            result = services.insights.run(source, force=args.force)
        except (ValueError, AiProviderError) as exc:
            parser.exit(1, f"{exc}\n")
        print("Key insights:")
        for insight in result.key_insights:
            print(f"- {insight}")
        print("Feedback:")
        for point in result.feedback:
            print(f"- {point}")
        print("Action steps:")
        for index, step in enumerate(result.action_steps):
            print(f"[{index}] {step.type}: {step.description}")
        return

    if args.command == "execute-action":
        try:
            outcome = services.actions.execute(
                args.source_type,
                args.source_id,
                args.action_index,
                allow_repeat=args.allow_repeat,
            )
        except ValueError as exc:
            parser.exit(1, f"{exc}\n")
        print(f"{outcome.status}: {outcome.action.description}")
        if outcome.error:
            print(f"Error: {outcome.error}")
        return

    if args.command == "action-log":
        for record in services.store.get_action_log(args.source_type, args.source_id):
            print(f"{record.executed_at} [{record.action_index}] {record.status} {record.detail or ''}")
        return

    if args.command == "ai-audit":
        for request in services.ai_audit.list_requests(args.limit):
            print(f"{request.id}: {request.provider}/{request.model} {request.purpose} ({request.timestamp})")
        return

    if args.command == "oauth-google":
        print(build_google_auth_url(config, create_state_token()))
        return

    if args.command == "sign-out":
        services.session.disconnect()
        print("Signed out.")
        return

    if args.command == "delete-all-data":
        with services.processor.paused():
            services.admin.delete_all_data()
        print("All data deleted.")
        return


def _item_line(item: Item) -> str:
    if isinstance(item, EmailItem):
        return f"{item.id}: {item.subject} ({item.sender})"
    return f"{item.id}: {item.title} ({item.start})"


if __name__ == "__main__":
    run_cli()
