"""
Configuration management for the vision worker.

Centralizes all configuration loading from environment variables
and provides type-safe access to configuration values. The output
directory and video name travel with each call through VideoJob
rather than living in module state.
"""

import os
from typing import Dict, Any, Optional
from dataclasses import dataclass

from .models import VideoJob

DEFAULT_VISION_PROMPT = (
    "What is happening in this image? Be specific and detailed. "
    "List item and describe items shown in the video."
)

DEFAULT_SYSTEM_PROMPT = (
    "You are a visual analysis assistant specialized in detailed image descriptions. "
    "If there is a person in the image describe what they are doing in step by step format."
)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass
class WorkerConfig:
    """Configuration for the vision worker"""

    # Input / output
    VIDEO_PATH: Optional[str] = None
    OUTPUT_DIR: str = "output_frames"
    FRAME_INTERVAL_SEC: int = 15

    # Analysis pool
    MAX_WORKERS: int = 4
    BATCH_SIZE: int = 10

    # Storage settings
    STORAGE_TYPE: str = "file"  # file, postgres
    STORAGE_CONFIG: Dict[str, Any] = None
    UPSERT_CONCURRENCY: int = 8

    # Vision model
    VISION_MODEL: str = "gpt-4o"
    VISION_PROMPT: str = DEFAULT_VISION_PROMPT
    SYSTEM_PROMPT: str = DEFAULT_SYSTEM_PROMPT
    OPENAI_BASE_URL: Optional[str] = None
    MODEL_TIMEOUT_SEC: float = 120.0

    # Embeddings
    EMBEDDING_MODEL: str = "text-embedding-3-small"
    EMBEDDING_DIMENSIONS: int = 1536
    EMBEDDING_WORKERS: int = 4
    EMBEDDING_QUEUE_SIZE: int = 100
    EMBEDDING_TIMEOUT_SEC: float = 30.0

    # Search
    SEARCH_QUERY: Optional[str] = None
    SEARCH_VIDEO: Optional[str] = None  # video name to search when VIDEO_PATH is unset
    SEARCH_LIMIT: int = 5

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None

    # HTTP server
    ENABLE_HTTP_SERVER: bool = False
    HTTP_PORT: int = 8000

    def __post_init__(self):
        if self.STORAGE_CONFIG is None:
            self.STORAGE_CONFIG = {}

    @classmethod
    def from_env(cls) -> 'WorkerConfig':
        """Load configuration from environment variables"""
        config = cls()

        config.VIDEO_PATH = os.getenv("VIDEO_PATH") or None
        config.OUTPUT_DIR = os.getenv("OUTPUT_DIR", "output_frames")
        config.FRAME_INTERVAL_SEC = int(os.getenv("FRAME_INTERVAL_SEC", "15"))

        config.MAX_WORKERS = int(os.getenv("MAX_WORKERS", "4"))
        config.BATCH_SIZE = int(os.getenv("BATCH_SIZE", "10"))

        config.STORAGE_TYPE = os.getenv("STORAGE_TYPE", "file")
        config.STORAGE_CONFIG = cls._parse_storage_config()
        config.UPSERT_CONCURRENCY = int(os.getenv("UPSERT_CONCURRENCY", "8"))

        config.VISION_MODEL = os.getenv("VISION_MODEL", "gpt-4o")
        config.VISION_PROMPT = os.getenv("VISION_PROMPT", DEFAULT_VISION_PROMPT)
        config.SYSTEM_PROMPT = os.getenv("SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT)
        config.OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
        config.MODEL_TIMEOUT_SEC = float(os.getenv("MODEL_TIMEOUT_SEC", "120"))

        config.EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
        config.EMBEDDING_DIMENSIONS = int(os.getenv("EMBEDDING_DIMENSIONS", "1536"))
        config.EMBEDDING_WORKERS = int(os.getenv("EMBEDDING_WORKERS", "4"))
        config.EMBEDDING_QUEUE_SIZE = int(os.getenv("EMBEDDING_QUEUE_SIZE", "100"))
        config.EMBEDDING_TIMEOUT_SEC = float(os.getenv("EMBEDDING_TIMEOUT_SEC", "30"))

        config.SEARCH_QUERY = os.getenv("SEARCH_QUERY") or None
        config.SEARCH_VIDEO = os.getenv("SEARCH_VIDEO") or None
        config.SEARCH_LIMIT = int(os.getenv("SEARCH_LIMIT", "5"))

        config.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
        config.LOG_DIR = os.getenv("LOG_DIR") or None

        config.ENABLE_HTTP_SERVER = _env_bool("ENABLE_HTTP_SERVER")
        config.HTTP_PORT = int(os.getenv("HTTP_PORT", "8000"))

        return config

    @classmethod
    def _parse_storage_config(cls) -> Dict[str, Any]:
        """Parse storage specific configuration"""
        storage_type = os.getenv("STORAGE_TYPE", "file")

        if storage_type == "postgres":
            return {
                "database_url": os.getenv("DATABASE_URL"),
                "connection_pool_size": int(os.getenv("POSTGRES_POOL_SIZE", "5")),
                "connection_timeout": int(os.getenv("POSTGRES_TIMEOUT", "10")),
                "bootstrap_schema": _env_bool("BOOTSTRAP_SCHEMA"),
            }
        elif storage_type == "file":
            return {}
        else:
            return {}

    @property
    def log_dir(self) -> str:
        return self.LOG_DIR or os.path.join(self.OUTPUT_DIR, "logs")

    def job(self) -> VideoJob:
        """Build the VideoJob for the configured video"""
        if not self.VIDEO_PATH:
            raise ValueError("VIDEO_PATH is not set")
        return VideoJob.from_path(self.VIDEO_PATH, self.OUTPUT_DIR)

    def validate(self) -> None:
        """Validate configuration and raise errors for missing required values"""
        required_vars = []

        if self.STORAGE_TYPE not in ("file", "postgres"):
            raise ValueError(f"Unsupported storage type: {self.STORAGE_TYPE}")

        # Searching an existing video needs no input file
        if not self.VIDEO_PATH and not self.SEARCH_QUERY:
            required_vars.append("VIDEO_PATH")

        if self.STORAGE_TYPE == "postgres" and not self.STORAGE_CONFIG.get("database_url"):
            required_vars.append("DATABASE_URL")

        if self.SEARCH_QUERY and not self.VIDEO_PATH and not self.SEARCH_VIDEO:
            required_vars.append("SEARCH_VIDEO")

        if self.SEARCH_QUERY and self.STORAGE_TYPE != "postgres":
            raise ValueError("SEARCH_QUERY requires STORAGE_TYPE=postgres")

        if required_vars:
            raise ValueError(f"Missing required environment variables: {', '.join(required_vars)}")

        if self.MAX_WORKERS < 1 or self.BATCH_SIZE < 1:
            raise ValueError("MAX_WORKERS and BATCH_SIZE must be at least 1")
