"""Summary: Research agent runner for emails and calendar events.

Importance: Produces draft replies and meeting briefings at most once per item.
Alternatives: Run research on demand only and never cache.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from researchpilot.ai import AiProvider, Tool
from researchpilot.errors import AiProviderError
from researchpilot.models import CalendarItem, EmailItem, Item, ResearchResult
from researchpilot.services import AiAuditService
from researchpilot.storage.sqlite_store import SqliteStore


logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a thorough research agent. Use the web_search tool to gather real information "
    "before writing your response. Make multiple searches to build context. Never fabricate "
    "information; only include facts you found through search."
)


@dataclass(frozen=True)
class ResearchAgentRunner:
    """Summary: Runs the tool-augmented research agent with a durable cache.

    Importance: Guarantees one model run per item unless a rerun is forced.
    Alternatives: Keep an in-memory cache keyed by item id.
    """

    store: SqliteStore
    ai_provider: AiProvider
    search_tool: Tool
    audit: AiAuditService | None = None
    step_limit: int = 10
    user_email: str = ""

    def run(self, item: Item, force: bool = False) -> ResearchResult:
        """Summary: Return cached research or run the agent and persist its result.

        Importance: Saves the result and marks the item processed in one transaction.
        Alternatives: Save first and mark processed in a separate step.
        """

        if not force:
            cached = self.store.get_research(item.variant, item.id)
            if cached is not None:
                logger.info("Cache hit for %s:%s.", item.variant, item.id)
                return cached
        prompt = build_research_prompt(item, self.user_email)
        purpose = f"research:{item.variant}"
        logger.info("Research started for %s:%s.", item.variant, item.id)
        try:
            generation = self.ai_provider.generate(
                SYSTEM_PROMPT,
                prompt,
                tools=[self.search_tool],
                step_limit=self.step_limit,
                purpose=purpose,
            )
        except AiProviderError:
            raise
        except (RuntimeError, OSError, ValueError) as exc:
            raise AiProviderError(f"Research model call failed: {exc}") from exc
        if self.audit is not None:
            self.audit.record(prompt, purpose, generation)
        result = ResearchResult(output=generation.text, tool_calls=generation.tool_calls)
        self.store.complete_research(item.variant, item.id, result)
        logger.info(
            "Research complete for %s:%s (%s searches, %s chars).",
            item.variant,
            item.id,
            len(result.tool_calls),
            len(result.output),
        )
        return result


def build_research_prompt(item: Item, user_email: str = "") -> str:
    """Summary: Build the task prompt for an item variant.

    Importance: Meeting briefings and draft replies need different instructions.
    Alternatives: Use one generic research prompt for all items.
    """

    if isinstance(item, CalendarItem):
        return _meeting_briefing_prompt(item, user_email)
    if isinstance(item, EmailItem):
        return _draft_reply_prompt(item)
    raise TypeError(f"Unsupported item type: {type(item).__name__}")


def _meeting_briefing_prompt(event: CalendarItem, user_email: str) -> str:
    attendees = "\n".join(
        f"- {attendee.name}" + (f" ({attendee.company})" if attendee.company else "")
        for attendee in event.attendees
        if attendee.email != user_email
    )
    location = f"Location: {event.location}\n" if event.location else ""
    return (
        f"Meeting briefing for: {event.title}\n"
        "Research the attendees and topic, then provide only the following, concisely.\n\n"
        f"Date: {event.start}\n"
        f"{location}"
        f"Description: {event.description}\n\n"
        f"Attendees:\n{attendees}\n\n"
        "Output format (markdown):\n"
        "## Who You're Meeting\nOne line per attendee: name, title, and one key fact.\n\n"
        "## Talking Points\n3-5 specific bullets informed by your research.\n\n"
        "## Key Context\n2-3 bullets of relevant background.\n"
    )


def _draft_reply_prompt(email: EmailItem) -> str:
    return (
        f"Draft a reply to: {email.subject}\n"
        "Research the sender and topics first, then write only the email reply.\n\n"
        f"From: {email.sender}\n"
        f"Subject: {email.subject}\n"
        f"Body:\n{email.body}\n\n"
        "Rules:\n"
        "- Output only the email body text, ready to send.\n"
        "- Reference 1-2 specific facts you discovered.\n"
        "- Start with a greeting and end with a sign-off.\n"
        "- Keep it under 200 words.\n"
    )
