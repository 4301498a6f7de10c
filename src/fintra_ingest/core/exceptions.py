"""Custom exception hierarchy for fintra-ingest."""

from typing import Any


class FintraError(Exception):
    """Base exception for all fintra-ingest errors.

    All exceptions carry an optional `context` dict for structured error
    metadata that can be logged or serialized without parsing the message.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        super().__init__(message)
        self.context = context or {}


class ConfigError(FintraError):
    """Invalid or missing configuration.

    Raised by load_config() during startup. Should be treated as fatal.

    Context keys:
        field: str — the config field that failed validation
        value: Any — the invalid value (redacted for secrets)
    """


class ProviderError(FintraError):
    """The external data provider failed: non-2xx status, network error,
    or a body that is not valid JSON.

    Policy: record against the ticker and continue the run. Fatal only
    when raised while resolving the run's universe.

    Context keys:
        url: str — the URL that was being fetched (API key stripped)
        status_code: int | None — HTTP status if a response was received
    """


class DataError(FintraError):
    """Provider data is missing or has the wrong shape.

    Policy: record against the ticker and continue the run.

    Context keys:
        ticker: str — the ticker whose data was rejected
        dataset: str — "profile", "ratios", "metrics", ...
        reason: str — why the data was rejected
    """


class StorageError(FintraError):
    """Database operation failed.

    Policy: per-row writes inside a run are recorded against the ticker;
    anything else is raised immediately.

    Context keys:
        operation: str — "upsert", "query", "migrate", etc.
        table: str — the table involved
    """


class AuthorizationError(FintraError):
    """Missing or incorrect cron shared secret.

    Policy: short-circuit before any work begins (HTTP 401).
    """
