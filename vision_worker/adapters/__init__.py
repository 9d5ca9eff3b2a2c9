"""
Storage backends and search for frame analyses.

This module provides the abstract ResultStore and its two implementations
(JSON file and Postgres/pgvector), plus the search engine that queries
the Postgres backend.
"""

from .base import ResultStore
from .file_adapter import FileResultStore
from .postgres_adapter import PostgresResultStore, create_pool, bootstrap_schema
from .search import SearchEngine

__all__ = [
    'ResultStore',
    'FileResultStore',
    'PostgresResultStore',
    'SearchEngine',
    'create_pool',
    'bootstrap_schema'
]
