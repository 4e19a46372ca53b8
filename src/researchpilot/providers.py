"""Summary: Shared pieces for item providers and Google REST calls.

Importance: Gives email and calendar providers one fetch contract and one HTTP error policy.
Alternatives: Use the google-api-python-client discovery client.
"""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterable

from researchpilot.errors import ProviderUnavailableError
from researchpilot.models import Item
from researchpilot.session import Session


FIXTURE_DIR = Path(__file__).resolve().parent / "fixtures"


class ItemProvider(ABC):
    """Summary: Abstract interface for fetching emails or calendar events.

    Importance: Lets ingestion swap live providers for fixtures without branching.
    Alternatives: Call provider-specific functions directly in ingestion.
    """

    variant = "email"

    @abstractmethod
    def fetch(self, max_results: int, known_ids: Iterable[str] | None = None) -> list[Item]:
        """Summary: Fetch recent items, skipping detail work for known ids.

        Importance: Drives deduplicating ingestion across providers.
        Alternatives: Fetch by cursor or date range instead.
        """


def load_fixture(name: str, fixture_dir: Path | None = None) -> list[dict[str, Any]]:
    """Summary: Load a JSON fixture list by file name."""

    path = (fixture_dir or FIXTURE_DIR) / name
    return json.loads(path.read_text(encoding="utf-8"))


def google_api_request(
    session: Session,
    url: str,
    timeout: float,
    method: str = "GET",
    payload: dict[str, Any] | None = None,
    label: str = "Google API",
) -> dict[str, Any]:
    """Summary: Perform an authenticated Google REST call and decode JSON.

    Importance: Converts auth and transport failures into ProviderUnavailableError.
    Alternatives: Use a third-party HTTP client or SDK.
    """

    headers = {"Authorization": f"Bearer {session.access_token()}"}
    data = None
    if payload is not None:
        headers["Content-Type"] = "application/json"
        data = json.dumps(payload).encode("utf-8")
    request = urllib.request.Request(url, data=data, headers=headers, method=method)
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read().decode("utf-8")
    except urllib.error.HTTPError as exc:
        error_body = exc.read().decode("utf-8") if exc.fp else ""
        raise ProviderUnavailableError(f"{label} request failed: {error_body or exc.reason}") from exc
    except urllib.error.URLError as exc:
        raise ProviderUnavailableError(f"{label} request failed: {exc.reason}") from exc
    except OSError as exc:
        raise ProviderUnavailableError(f"{label} request failed: {exc}") from exc
    if not raw:
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ProviderUnavailableError(f"{label} returned a non-JSON response") from exc
