"""Summary: Error types raised across ResearchPilot services.

Importance: Lets callers distinguish provider outages, model failures, and lookup errors.
Alternatives: Raise bare RuntimeError and ValueError everywhere.
"""

from __future__ import annotations


class ProviderUnavailableError(RuntimeError):
    """Summary: Raised when an external item provider cannot serve a request.

    Importance: Signals ingestion to fall back to fixture data.
    Alternatives: Return empty collections on provider failure.
    """


class AiProviderError(RuntimeError):
    """Summary: Raised when a language model invocation fails.

    Importance: Lets the scheduler mark items processed without caching a result.
    Alternatives: Return an error string in place of model output.
    """


class InsightsSchemaError(AiProviderError):
    """Summary: Raised when the model output does not match the insights schema.

    Importance: Keeps partial or malformed insights out of the cache.
    Alternatives: Persist whatever fields could be parsed.
    """


class InsightsNotFoundError(ValueError):
    """Summary: Raised when no cached insights exist for a source."""


class ActionNotFoundError(ValueError):
    """Summary: Raised when an action index is outside the cached action steps."""


class ActionAlreadyExecutedError(ValueError):
    """Summary: Raised when an action was already executed and a repeat was not requested.

    Importance: Prevents sending the same email or creating the same event twice.
    Alternatives: Rely on callers to inspect the action log first.
    """
