"""Summary: Application configuration for ResearchPilot.

Importance: Gives the API, CLI, and background processor the same resolved settings.
Alternatives: Use pydantic-settings.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from dataclasses import dataclass


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for providers, agents, and storage.

    Importance: Every provider and store reads its settings from this object.
    Alternatives: Read os.environ at each call site.
    """

    db_path: str
    ai_provider: str
    openai_api_key: str | None
    openai_model: str
    openai_base_url: str
    ollama_url: str
    ollama_model: str
    search_provider: str
    linkup_api_key: str | None
    linkup_base_url: str
    research_step_limit: int
    request_timeout_seconds: float
    debounce_seconds: float
    fetch_limit: int
    user_email: str
    token_path: str
    google_client_id: str
    google_client_secret: str
    oauth_redirect_uri: str
    google_token_url: str
    google_revoke_url: str
    gmail_api_base_url: str
    calendar_api_base_url: str
    api_host: str
    api_port: int
    api_key: str

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Resolve settings with environment over .env over defaults.json.

        Importance: Every setting has a default, so a bare checkout runs offline.
        Alternatives: Require every variable to be set explicitly.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        return AppConfig(
            db_path=os.getenv("RESEARCHPILOT_DB_PATH", defaults["db_path"]),
            ai_provider=os.getenv("RESEARCHPILOT_AI_PROVIDER", defaults["ai_provider"]),
            openai_api_key=os.getenv("OPENAI_API_KEY") or defaults["openai_api_key"] or None,
            openai_model=os.getenv("OPENAI_MODEL", defaults["openai_model"]),
            openai_base_url=os.getenv("OPENAI_BASE_URL", defaults["openai_base_url"]),
            ollama_url=os.getenv("OLLAMA_URL", defaults["ollama_url"]),
            ollama_model=os.getenv("OLLAMA_MODEL", defaults["ollama_model"]),
            search_provider=os.getenv(
                "RESEARCHPILOT_SEARCH_PROVIDER", defaults["search_provider"]
            ),
            linkup_api_key=os.getenv("LINKUP_API_KEY") or defaults["linkup_api_key"] or None,
            linkup_base_url=os.getenv("LINKUP_BASE_URL", defaults["linkup_base_url"]),
            research_step_limit=int(
                os.getenv("RESEARCHPILOT_STEP_LIMIT", defaults["research_step_limit"])
            ),
            request_timeout_seconds=float(
                os.getenv("RESEARCHPILOT_REQUEST_TIMEOUT", defaults["request_timeout_seconds"])
            ),
            debounce_seconds=float(
                os.getenv("RESEARCHPILOT_DEBOUNCE_SECONDS", defaults["debounce_seconds"])
            ),
            fetch_limit=int(os.getenv("RESEARCHPILOT_FETCH_LIMIT", defaults["fetch_limit"])),
            user_email=os.getenv("RESEARCHPILOT_USER_EMAIL", defaults["user_email"]),
            token_path=os.getenv("RESEARCHPILOT_TOKEN_PATH", defaults["token_path"]),
            google_client_id=os.getenv("GOOGLE_CLIENT_ID", defaults["google_client_id"]),
            google_client_secret=os.getenv("GOOGLE_CLIENT_SECRET", defaults["google_client_secret"]),
            oauth_redirect_uri=os.getenv(
                "RESEARCHPILOT_OAUTH_REDIRECT_URI", defaults["oauth_redirect_uri"]
            ),
            google_token_url=os.getenv("GOOGLE_TOKEN_URL", defaults["google_token_url"]),
            google_revoke_url=os.getenv("GOOGLE_REVOKE_URL", defaults["google_revoke_url"]),
            gmail_api_base_url=os.getenv("GMAIL_API_BASE_URL", defaults["gmail_api_base_url"]),
            calendar_api_base_url=os.getenv(
                "CALENDAR_API_BASE_URL", defaults["calendar_api_base_url"]
            ),
            api_host=os.getenv("RESEARCHPILOT_API_HOST", defaults["api_host"]),
            api_port=int(os.getenv("RESEARCHPILOT_API_PORT", defaults["api_port"])),
            api_key=os.getenv("RESEARCHPILOT_API_KEY", defaults["api_key"]),
        )

    @property
    def model_name(self) -> str:
        """Summary: Return the model name for the configured AI provider."""

        if self.ai_provider == "openai":
            return self.openai_model
        if self.ai_provider == "ollama":
            return self.ollama_model
        return "mock"


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Read the defaults.json mapping.

    Importance: Documents every known setting in one place.
    Alternatives: Put defaults on the dataclass fields.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Apply KEY=VALUE lines from .env without overriding set variables.

    Importance: Lets developers keep API keys in an untracked file.
    Alternatives: Use python-dotenv.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())
