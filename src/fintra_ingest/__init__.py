"""fintra-ingest: FMP bulk ingestion, normalization, and aggregation jobs."""

__version__ = "0.1.0"
