"""Summary: Web search providers and the research agent's search tool.

Importance: Grounds research output in real search results while keeping failures non-fatal.
Alternatives: Let the model answer from its own knowledge without search.
"""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from researchpilot.ai import Tool
from researchpilot.config import AppConfig
from researchpilot.models import SearchResult


logger = logging.getLogger(__name__)

WEB_SEARCH_TOOL_NAME = "web_search"
SEARCH_DEPTHS = ("standard", "deep")


class SearchProvider(ABC):
    """Summary: Abstract interface for web search.

    Importance: Allows swapping search vendors without touching the agent loop.
    Alternatives: Call a single search API directly from the tool.
    """

    @abstractmethod
    def search(self, query: str, depth: str = "standard") -> SearchResult:
        """Summary: Run a search and return a sourced answer."""


class MockSearchProvider(SearchProvider):
    """Summary: Deterministic search provider for offline runs and tests."""

    def search(self, query: str, depth: str = "standard") -> SearchResult:
        return SearchResult(
            answer=f"[mock-search:{depth}] {query}",
            sources=[{"name": "Mock Source", "url": "https://example.com/search"}],
        )


class LinkupSearchProvider(SearchProvider):
    """Summary: Search provider using the Linkup sourced-answer API.

    Importance: Supplies answers with citations for people and company research.
    Alternatives: Use a generic web search API and summarize results locally.
    """

    def __init__(self, api_key: str, base_url: str, timeout: float = 60.0) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout

    def search(self, query: str, depth: str = "standard") -> SearchResult:
        """Summary: Query Linkup for a sourced answer.

        Importance: Provides the evidence used by the research agent.
        Alternatives: Request raw search results and rank them locally.
        """

        payload = {"q": query, "depth": depth, "outputType": "sourcedAnswer"}
        request = urllib.request.Request(
            url=f"{self._base_url}/search",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = json.loads(response.read().decode("utf-8"))
        except urllib.error.HTTPError as exc:
            error_body = exc.read().decode("utf-8") if exc.fp else ""
            raise RuntimeError(f"Linkup search failed: {exc.code} {error_body}") from exc
        except urllib.error.URLError as exc:
            raise RuntimeError(f"Linkup search failed: {exc.reason}") from exc
        sources = [
            {"name": source.get("name", ""), "url": source.get("url", "")}
            for source in raw.get("sources", [])
        ]
        return SearchResult(answer=raw.get("answer", ""), sources=sources)


@dataclass(frozen=True)
class SearchProviderFactory:
    """Summary: Factory for selecting the search provider from configuration."""

    config: AppConfig

    def build(self) -> SearchProvider:
        if self.config.search_provider == "linkup":
            if not self.config.linkup_api_key:
                raise ValueError("LINKUP_API_KEY is required for linkup search provider")
            return LinkupSearchProvider(
                self.config.linkup_api_key,
                self.config.linkup_base_url,
                self.config.request_timeout_seconds,
            )
        return MockSearchProvider()


def build_web_search_tool(provider: SearchProvider) -> Tool:
    """Summary: Wrap a search provider as the agent's web_search tool.

    Importance: Converts every search failure into an error payload the model can read.
    Alternatives: Propagate search errors and abort the research run.
    """

    def execute(arguments: dict[str, Any]) -> dict[str, Any]:
        query = str(arguments.get("query", "")).strip()
        depth = arguments.get("depth") or "standard"
        if depth not in SEARCH_DEPTHS:
            depth = "standard"
        if not query:
            return SearchResult(error="Search failed: empty query").to_payload()
        logger.info("Searching: %r (depth: %s)", query, depth)
        try:
            result = provider.search(query, depth)
        except Exception as exc:  # noqa: BLE001 - any search failure is reported to the model
            logger.warning("Search failed for %r: %s", query, exc)
            return SearchResult(error=f"Search failed: {exc}").to_payload()
        return result.to_payload()

    return Tool(
        name=WEB_SEARCH_TOOL_NAME,
        description=(
            "Search the web for information. Use this to research people, companies, topics, "
            "competitors, or any external context relevant to the task."
        ),
        parameters={
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "The search query. Be specific and targeted.",
                },
                "depth": {
                    "type": "string",
                    "enum": list(SEARCH_DEPTHS),
                    "description": 'Use "deep" for complex queries, "standard" for quick lookups.',
                },
            },
            "required": ["query"],
        },
        execute=execute,
    )
