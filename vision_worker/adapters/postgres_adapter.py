"""
Postgres storage adapter.

Writes each analysis straight to Postgres, keyed by frame, together with a
pgvector embedding of its text so the search engine can query it.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, List, Tuple, Iterable

import psycopg
from psycopg_pool import ConnectionPool, PoolTimeout

from .base import ResultStore, batch_storage_error
from ..models import AnalysisResult
from ..errors import PreconditionError, StorageError
from ..pipeline.embed import EmbeddingService
from ..pipeline.frames import parse_frame_number, frame_timestamp
from ..logging_setup import log_exception

logger = logging.getLogger("vision_worker")

SCHEMA_SQL = """
    CREATE TABLE IF NOT EXISTS videos (
        id SERIAL PRIMARY KEY,
        name VARCHAR(255) NOT NULL UNIQUE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );

    CREATE TABLE IF NOT EXISTS frames (
        id SERIAL PRIMARY KEY,
        video_id INTEGER NOT NULL REFERENCES videos(id) ON DELETE CASCADE,
        frame_number INTEGER NOT NULL,
        frame_path VARCHAR(255) NOT NULL,
        timestamp INTEGER NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        UNIQUE(video_id, frame_number)
    );

    CREATE TABLE IF NOT EXISTS analyses (
        id SERIAL PRIMARY KEY,
        frame_id INTEGER NOT NULL UNIQUE REFERENCES frames(id) ON DELETE CASCADE,
        content TEXT NOT NULL,
        embedding vector({dimensions}),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );

    CREATE INDEX IF NOT EXISTS idx_frames_video_id ON frames(video_id);
    CREATE INDEX IF NOT EXISTS idx_analyses_embedding
        ON analyses USING ivfflat (embedding vector_cosine_ops) WITH (lists = 100);
"""


def create_pool(database_url: str, pool_size: int = 5, timeout: int = 10) -> ConnectionPool:
    """Open a connection pool and make sure the database answers"""
    try:
        pool = ConnectionPool(
            database_url,
            min_size=1,
            max_size=pool_size,
            kwargs={
                "connect_timeout": timeout,
                "application_name": "vision_worker"
            },
            open=True
        )
        with pool.connection(timeout=timeout) as conn:
            conn.execute("SELECT 1")
    except (psycopg.Error, PoolTimeout) as e:
        log_exception(logger, f"Failed to connect to database: {e}")
        raise PreconditionError(f"database unreachable: {e}") from e

    logger.info("Database connection pool initialized")
    return pool


def bootstrap_schema(pool: ConnectionPool, dimensions: int = 1536) -> None:
    """Create the pgvector extension, tables and indexes if missing"""
    with pool.connection() as conn:
        with conn.cursor() as cur:
            cur.execute("CREATE EXTENSION IF NOT EXISTS vector;")
            cur.execute(SCHEMA_SQL.format(dimensions=int(dimensions)))
        conn.commit()
    logger.info(f"Database schema validated (embedding dimension {dimensions})")


class PostgresResultStore(ResultStore):
    """Postgres implementation of the result store"""

    def __init__(
        self,
        pool: ConnectionPool,
        video_name: str,
        embeddings: Optional[EmbeddingService] = None,
        frame_interval: int = 15,
        upsert_concurrency: int = 8,
        embed_timeout: float = 30.0,
    ):
        self.pool = pool
        self.video_name = video_name
        self.embeddings = embeddings
        self.frame_interval = frame_interval
        self.upsert_concurrency = max(1, upsert_concurrency)
        self.embed_timeout = embed_timeout
        self.video_id: Optional[int] = None

    def connect(self) -> 'PostgresResultStore':
        """Resolve (or create) the video row this store writes under"""
        try:
            self.video_id = self._get_or_create_video(self.video_name)
        except psycopg.Error as e:
            log_exception(logger, f"Failed to register video {self.video_name}: {e}")
            raise PreconditionError(f"failed to register video '{self.video_name}': {e}") from e
        logger.info(f"Postgres storage ready for video {self.video_name} (id {self.video_id})")
        return self

    def _get_or_create_video(self, video_name: str) -> int:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO videos (name, created_at)
                    VALUES (%s, now())
                    ON CONFLICT (name) DO UPDATE SET name = EXCLUDED.name
                    RETURNING id
                """, (video_name,))
                row = cur.fetchone()
            conn.commit()
        return row[0]

    def add(self, result: AnalysisResult) -> None:
        """Upsert the frame and its analysis; frames already embedded are left alone"""
        if self.video_id is None:
            raise StorageError("storage not connected. Call connect() first.")

        frame_number = parse_frame_number(result.frame)
        if frame_number is None:
            raise StorageError(f"invalid frame filename format: {result.frame}")

        try:
            frame_id, processed = self._upsert_frame(result.frame, frame_number)
            if processed:
                logger.debug(f"Frame {result.frame} already analyzed, skipping")
                return

            embedding = self._embed(result.content)
            self._upsert_analysis(frame_id, result.content, embedding)
        except psycopg.Error as e:
            log_exception(logger, f"Failed to store analysis for {result.frame}: {e}")
            raise StorageError(f"failed to store analysis for '{result.frame}': {e}") from e

    def add_many(self, results: Iterable[AnalysisResult]) -> int:
        """
        Store several results concurrently, at most upsert_concurrency at a time.

        The dispatcher hands over whatever results have queued up since the
        last call, so this is the write path of a normal run.

        Returns:
            Number of results stored

        Raises:
            StorageError listing every result that failed
        """
        results = list(results)
        if not results:
            return 0

        failures: List[BaseException] = []
        with ThreadPoolExecutor(max_workers=min(self.upsert_concurrency, len(results))) as executor:
            futures = [executor.submit(self.add, r) for r in results]
            for future in futures:
                try:
                    future.result()
                except Exception as e:
                    failures.append(e)

        if failures:
            raise batch_storage_error(failures, len(results))
        return len(results)

    def _upsert_frame(self, frame_name: str, frame_number: int) -> Tuple[int, bool]:
        """Returns (frame id, whether the frame already has a complete analysis)"""
        timestamp = frame_timestamp(frame_number, self.frame_interval)
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO frames (video_id, frame_number, frame_path, timestamp, created_at)
                    VALUES (%s, %s, %s, %s, now())
                    ON CONFLICT (video_id, frame_number) DO UPDATE SET frame_path = EXCLUDED.frame_path
                    RETURNING id
                """, (self.video_id, frame_number, frame_name, timestamp))
                frame_id = cur.fetchone()[0]

                cur.execute("""
                    SELECT embedding IS NOT NULL
                    FROM analyses
                    WHERE frame_id = %s
                """, (frame_id,))
                row = cur.fetchone()
            conn.commit()
        return frame_id, bool(row and row[0])

    def _upsert_analysis(self, frame_id: int, content: str, embedding: Optional[List[float]]) -> None:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    INSERT INTO analyses (frame_id, content, embedding, created_at)
                    VALUES (%s, %s, %s::vector, now())
                    ON CONFLICT (frame_id) DO UPDATE
                    SET content = EXCLUDED.content,
                        embedding = EXCLUDED.embedding,
                        created_at = EXCLUDED.created_at
                """, (frame_id, content, embedding))
            conn.commit()

    def _embed(self, content: str) -> Optional[List[float]]:
        """Embedding for content, or None so a later run can fill it in"""
        if self.embeddings is None:
            return None
        try:
            return list(self.embeddings.embed(content, timeout=self.embed_timeout))
        except Exception as e:
            logger.warning(f"Failed to generate embedding, storing analysis without one: {e}")
            return None

    def flush(self) -> None:
        """No-op: every add is written immediately"""
        return None

    def close(self) -> None:
        """The pool is owned by whoever created it"""
        self.video_id = None
