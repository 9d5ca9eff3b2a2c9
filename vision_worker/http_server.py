import logging
from typing import List, Optional
from threading import Thread

import uvicorn
from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from .adapters.search import SearchEngine
from .errors import EmbeddingQueueFullError, SearchError, SearchNoFramesError, SearchNoMatchError

logger = logging.getLogger("vision_worker")

SEARCH_MODES = ("auto", "similarity", "text")


class SearchHit(BaseModel):
    frame_number: int
    frame_path: str
    description: str
    similarity: Optional[float] = None
    timestamp_seconds: Optional[int] = None


class SearchResponse(BaseModel):
    video: str
    query: str
    mode: str
    results: List[SearchHit]


class SearchServer:
    def __init__(self, engine: SearchEngine, port: int = 8000):
        self.engine = engine
        self.port = port
        self.app = FastAPI(title="Vision Worker Search API")
        self.setup_routes()
        self.server_thread = None
        self.running = False

    def setup_routes(self):
        """Setup API routes"""

        @self.app.get("/healthz")
        def health_check():
            """Health check endpoint"""
            try:
                with self.engine.pool.connection() as conn:
                    with conn.cursor() as cur:
                        cur.execute("SELECT 1")
                        cur.fetchone()

                return {"ok": True, "status": "healthy"}
            except Exception as e:
                logger.error(f"Health check failed: {str(e)}")
                raise HTTPException(status_code=503, detail=f"Database connection failed: {str(e)}")

        @self.app.get("/videos/{video_name}/search", response_model=SearchResponse)
        def search(
            video_name: str,
            q: str = Query(..., min_length=1),
            limit: int = Query(5, ge=1, le=100),
            mode: str = "auto",
        ):
            """Search a video's frame analyses"""
            if mode not in SEARCH_MODES:
                raise HTTPException(status_code=400, detail=f"mode must be one of {', '.join(SEARCH_MODES)}")

            try:
                if mode == "similarity":
                    results = self.engine.similarity_search(video_name, q, limit)
                elif mode == "text":
                    results = self.engine.text_search(video_name, q, limit)
                else:
                    results = self.engine.search(video_name, q, limit)
            except (SearchNoFramesError, SearchNoMatchError) as e:
                raise HTTPException(status_code=404, detail=str(e))
            except SearchError as e:
                if isinstance(e.__cause__, EmbeddingQueueFullError):
                    raise HTTPException(status_code=503, detail=str(e))
                logger.error(f"Search failed for video {video_name}: {str(e)}")
                raise HTTPException(status_code=500, detail=str(e))

            return SearchResponse(
                video=video_name,
                query=q,
                mode=mode,
                results=[
                    SearchHit(
                        frame_number=r.frame_number,
                        frame_path=r.frame_path,
                        description=r.description,
                        similarity=r.similarity,
                        timestamp_seconds=r.timestamp_seconds,
                    )
                    for r in results
                ]
            )

    def start(self):
        """Start the HTTP server in a background thread"""
        if self.running:
            return

        def run_server():
            try:
                uvicorn.run(
                    self.app,
                    host="0.0.0.0",
                    port=self.port,
                    log_level="warning",  # Reduce uvicorn logging
                    access_log=False
                )
            except Exception as e:
                logger.error(f"HTTP server error: {str(e)}")

        self.server_thread = Thread(target=run_server, daemon=True)
        self.server_thread.start()
        self.running = True

        logger.info(f"Search server started on port {self.port}")

    def stop(self):
        """Stop the HTTP server"""
        self.running = False
        logger.info("Search server stopped")
