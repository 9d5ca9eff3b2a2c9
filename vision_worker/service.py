"""
Main worker service.

Builds the result store selected by configuration, the embedding service
and the vision model, then processes the configured video and optionally
runs a search over it.
"""

import signal
import sys
import logging
import threading
from typing import Optional, Dict, Any

from psycopg_pool import ConnectionPool

from .config import WorkerConfig
from .models import VideoJob
from .adapters.base import ResultStore
from .adapters.file_adapter import FileResultStore
from .adapters.postgres_adapter import PostgresResultStore, create_pool, bootstrap_schema
from .adapters.search import SearchEngine
from .pipeline.embed import EmbeddingService, OpenAIEmbedder
from .pipeline.vision import VisionModel, create_openai_client
from .processor import VideoProcessor
from .http_server import SearchServer
from .errors import VisionWorkerError
from .logging_setup import setup_logging, log_exception

logger = logging.getLogger("vision_worker")


def create_result_store(
    config: WorkerConfig,
    job: VideoJob,
    pool: Optional[ConnectionPool] = None,
    embeddings: Optional[EmbeddingService] = None,
) -> ResultStore:
    """Create the result store selected by STORAGE_TYPE"""

    if config.STORAGE_TYPE == "file":
        return FileResultStore(job.output_dir, job.video_name, batch_size=config.BATCH_SIZE)

    elif config.STORAGE_TYPE == "postgres":
        if pool is None:
            raise ValueError("postgres storage needs a connection pool")
        store = PostgresResultStore(
            pool,
            job.video_name,
            embeddings=embeddings,
            frame_interval=config.FRAME_INTERVAL_SEC,
            upsert_concurrency=config.UPSERT_CONCURRENCY,
            embed_timeout=config.EMBEDDING_TIMEOUT_SEC,
        )
        return store.connect()

    else:
        raise ValueError(f"Unsupported storage type: {config.STORAGE_TYPE}")


class WorkerService:
    """Wires configuration, storage, embeddings and the vision model together"""

    def __init__(self, config: Optional[WorkerConfig] = None):
        self.config = config or WorkerConfig.from_env()
        self.pool: Optional[ConnectionPool] = None
        self.embeddings: Optional[EmbeddingService] = None
        self.vision: Optional[VisionModel] = None
        self.search_engine: Optional[SearchEngine] = None
        self.http_server: Optional[SearchServer] = None
        self.cancel_event = threading.Event()

    def initialize(self):
        """Set up logging and every collaborator the configuration asks for"""
        try:
            setup_logging(self.config.LOG_LEVEL, self.config.log_dir)

            self.config.validate()

            client = create_openai_client(self.config.OPENAI_BASE_URL, self.config.MODEL_TIMEOUT_SEC)
            self.vision = VisionModel(client, self.config.VISION_MODEL, self.config.SYSTEM_PROMPT)

            if self.config.STORAGE_TYPE == "postgres":
                storage_config = self.config.STORAGE_CONFIG
                self.pool = create_pool(
                    storage_config["database_url"],
                    pool_size=storage_config.get("connection_pool_size", 5),
                    timeout=storage_config.get("connection_timeout", 10)
                )
                if storage_config.get("bootstrap_schema"):
                    bootstrap_schema(self.pool, self.config.EMBEDDING_DIMENSIONS)

                embedder = OpenAIEmbedder(client, self.config.EMBEDDING_MODEL, self.config.EMBEDDING_DIMENSIONS)
                self.embeddings = EmbeddingService(
                    embedder,
                    num_workers=self.config.EMBEDDING_WORKERS,
                    queue_size=self.config.EMBEDDING_QUEUE_SIZE
                )
                self.search_engine = SearchEngine(self.pool, self.embeddings, self.config.EMBEDDING_TIMEOUT_SEC)

                if self.config.ENABLE_HTTP_SERVER:
                    self.http_server = SearchServer(self.search_engine, self.config.HTTP_PORT)
                    self.http_server.start()

            logger.info(f"Worker service initialized ({self.config.STORAGE_TYPE} storage)")

        except Exception as e:
            log_exception(logger, f"Failed to initialize worker service: {e}")
            raise

    def process(self, job: VideoJob):
        """Analyze one video into the configured store"""
        store = create_result_store(self.config, job, self.pool, self.embeddings)
        try:
            processor = VideoProcessor(self.config, store, self.vision)
            return processor.process_video(job, cancel_event=self.cancel_event)
        finally:
            store.close()

    def search(self, video_name: str, query: str):
        """Run a search and log the matches"""
        if self.search_engine is None:
            raise VisionWorkerError("search requires postgres storage")

        logger.info(f"Searching for frames matching: {query}")
        results = self.search_engine.search(video_name, query, self.config.SEARCH_LIMIT)

        logger.info(f"Found {len(results)} matching frames")
        for i, result in enumerate(results, start=1):
            if result.similarity is not None:
                logger.info(f"{i}. Frame {result.frame_number} ({result.similarity * 100:.2f}% similarity)")
            else:
                logger.info(f"{i}. Frame {result.frame_number}")
            logger.info(f"   Description: {result.description}")
        return results

    def run(self):
        """Process the configured video, then run the configured search"""
        job = None
        if self.config.VIDEO_PATH:
            job = self.config.job()
            self.process(job)

        if self.config.SEARCH_QUERY:
            video_name = job.video_name if job else self.config.SEARCH_VIDEO
            self.search(video_name, self.config.SEARCH_QUERY)

    def stop(self):
        """Stop the worker service"""
        self.cancel_event.set()

        if self.http_server:
            self.http_server.stop()
        if self.embeddings:
            self.embeddings.close()
        if self.pool:
            self.pool.close()
            logger.info("Database connection pool closed")

        logger.info("Worker service stopped")

    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics"""
        stats = {
            'config': {
                'storage_type': self.config.STORAGE_TYPE,
                'max_workers': self.config.MAX_WORKERS,
                'batch_size': self.config.BATCH_SIZE,
            }
        }
        if self.embeddings:
            stats['embeddings'] = {
                'cache_size': self.embeddings.cache_size,
                'computed': self.embeddings.computed_count,
            }
        return stats


def main():
    """Main entry point"""
    worker = WorkerService()

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, cancelling remaining frames...")
        worker.cancel_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        worker.initialize()
        worker.run()
        logger.info("Video processing completed successfully!")
    except VisionWorkerError as e:
        logger.error(f"Error processing video: {e}")
        sys.exit(1)
    except Exception as e:
        log_exception(logger, f"Worker failed: {str(e)}")
        sys.exit(1)
    finally:
        worker.stop()


if __name__ == "__main__":
    main()
