"""Concurrent video frame analysis with file or Postgres/pgvector storage."""

__version__ = "0.1.0"
