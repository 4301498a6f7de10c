"""HTTP surface: cron job triggers and read-only queries."""

from fintra_ingest.api.app import create_app

__all__ = ["create_app"]
