"""
Similarity and substring search over stored frame analyses.

Both modes are scoped to one video. Neither returns an empty list for a
video that has nothing to search: callers get SearchNoFramesError when
ingestion has not run and SearchNoMatchError when nothing matches.
"""

import logging
from typing import List, Optional

import psycopg
from psycopg_pool import ConnectionPool

from ..models import FrameSearchResult
from ..errors import SearchError, SearchNoFramesError, SearchNoMatchError
from ..pipeline.embed import EmbeddingService

logger = logging.getLogger("vision_worker")


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SearchEngine:
    """Vector and text queries against the Postgres result store"""

    def __init__(self, pool: ConnectionPool, embeddings: Optional[EmbeddingService] = None, embed_timeout: float = 30.0):
        self.pool = pool
        self.embeddings = embeddings
        self.embed_timeout = embed_timeout

    def count_frames(self, video_name: str) -> int:
        with self.pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute("""
                    SELECT COUNT(f.id)
                    FROM frames f
                    JOIN videos v ON f.video_id = v.id
                    WHERE v.name = %s
                """, (video_name,))
                row = cur.fetchone()
        return row[0] if row else 0

    def _require_frames(self, video_name: str) -> None:
        if self.count_frames(video_name) == 0:
            raise SearchNoFramesError(video_name)

    def similarity_search(self, video_name: str, query: str, limit: int = 5) -> List[FrameSearchResult]:
        """
        Frames whose analysis embedding is closest to the query's.

        Similarity is reported as 1 - cosine distance. Analyses without an
        embedding are not candidates; SearchNoMatchError is raised when none
        of the video's analyses has been embedded yet.
        """
        if self.embeddings is None:
            raise SearchError("similarity search needs an embedding service")

        self._require_frames(video_name)
        try:
            query_embedding = list(self.embeddings.embed(query, timeout=self.embed_timeout))
        except Exception as e:
            raise SearchError(f"failed to generate query embedding: {e}") from e

        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("""
                        SELECT f.frame_number, f.frame_path, a.content,
                               1 - (a.embedding <=> %(q)s::vector) AS similarity,
                               f.timestamp
                        FROM analyses a
                        JOIN frames f ON a.frame_id = f.id
                        JOIN videos v ON f.video_id = v.id
                        WHERE v.name = %(video)s AND a.embedding IS NOT NULL
                        ORDER BY a.embedding <=> %(q)s::vector
                        LIMIT %(limit)s
                    """, {"q": query_embedding, "video": video_name, "limit": limit})
                    rows = cur.fetchall()
        except psycopg.Error as e:
            raise SearchError(f"failed to search similar frames: {e}") from e

        if not rows:
            raise SearchNoMatchError(video_name, query)

        return [
            FrameSearchResult(
                frame_number=row[0],
                frame_path=row[1],
                description=row[2],
                similarity=float(row[3]),
                timestamp_seconds=row[4],
            )
            for row in rows
        ]

    def text_search(self, video_name: str, query: str, limit: int = 5) -> List[FrameSearchResult]:
        """Frames whose analysis contains query (case-insensitive), by frame number"""
        self._require_frames(video_name)

        try:
            with self.pool.connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("""
                        SELECT f.frame_number, f.frame_path, a.content, f.timestamp
                        FROM analyses a
                        JOIN frames f ON a.frame_id = f.id
                        JOIN videos v ON f.video_id = v.id
                        WHERE v.name = %s AND a.content ILIKE %s ESCAPE '\\'
                        ORDER BY f.frame_number
                        LIMIT %s
                    """, (video_name, f"%{_escape_like(query)}%", limit))
                    rows = cur.fetchall()
        except psycopg.Error as e:
            raise SearchError(f"failed to search frame text: {e}") from e

        if not rows:
            raise SearchNoMatchError(video_name, query)

        return [
            FrameSearchResult(
                frame_number=row[0],
                frame_path=row[1],
                description=row[2],
                timestamp_seconds=row[3],
            )
            for row in rows
        ]

    def search(self, video_name: str, query: str, limit: int = 5) -> List[FrameSearchResult]:
        """Similarity search, falling back to substring search when no embedding is available"""
        if self.embeddings is not None:
            try:
                return self.similarity_search(video_name, query, limit)
            except SearchNoFramesError:
                raise
            except SearchNoMatchError:
                logger.info(f"No embedded analyses for video {video_name}, falling back to text search")
            except SearchError as e:
                logger.warning(f"Similarity search unavailable, falling back to text search: {e}")
        return self.text_search(video_name, query, limit)
