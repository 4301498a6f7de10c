"""Dependency injection and cron authorization for FastAPI routes."""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass

from fastapi import Request

from fintra_ingest.core.config import FintraConfig
from fintra_ingest.core.exceptions import AuthorizationError, ConfigError
from fintra_ingest.ingestion.bulk import BulkSnapshotLoader
from fintra_ingest.ingestion.store import SqliteStore

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    """Shared application state, attached to app.state during lifespan."""

    config: FintraConfig
    store: SqliteStore
    loader: BulkSnapshotLoader


def get_app_state(request: Request) -> AppState:
    """Dependency: retrieve AppState from the request."""
    return request.app.state.app_state


def get_config(request: Request) -> FintraConfig:
    """Dependency: retrieve config."""
    return request.app.state.app_state.config


def get_store(request: Request) -> SqliteStore:
    """Dependency: retrieve storage backend."""
    return request.app.state.app_state.store


def get_loader(request: Request) -> BulkSnapshotLoader:
    """Dependency: retrieve the bulk snapshot loader."""
    return request.app.state.app_state.loader


def check_cron_authorization(header: str | None, secret: str | None) -> None:
    """Validate an ``Authorization: Bearer <secret>`` header.

    Raises:
        ConfigError: No cron secret is configured; every request is refused.
        AuthorizationError: Header missing or not matching the secret.
    """
    if not secret:
        logger.error("Cron secret is not configured; refusing protected request")
        raise ConfigError("Server configuration error", context={"field": "cron.secret"})
    if not header:
        raise AuthorizationError("Unauthorized")
    expected = f"Bearer {secret}"
    if not hmac.compare_digest(header.encode(), expected.encode()):
        raise AuthorizationError("Unauthorized")


async def require_cron_secret(request: Request) -> None:
    """Dependency: guard for every /cron route. Runs before any data access."""
    config = request.app.state.app_state.config
    check_cron_authorization(request.headers.get("Authorization"), config.cron.secret)
