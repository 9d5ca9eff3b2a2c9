import queue
import logging
import threading
from concurrent.futures import Future
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from openai import OpenAI

from ..errors import EmbeddingError, EmbeddingQueueFullError, EmbeddingServiceClosedError

logger = logging.getLogger("vision_worker")

Vector = Tuple[float, ...]

_STOP = object()


class OpenAIEmbedder:
    """Turns text into a fixed-dimension vector with the OpenAI embeddings API"""

    def __init__(self, client: OpenAI, model: str = "text-embedding-3-small", dimensions: int = 1536):
        self.client = client
        self.model = model
        self.dimensions = dimensions

    def __call__(self, text: str) -> List[float]:
        response = self.client.embeddings.create(
            model=self.model,
            input=text,
            dimensions=self.dimensions
        )
        embedding = response.data[0].embedding
        if not validate_embedding(embedding, self.dimensions):
            raise EmbeddingError(
                f"invalid embedding from {self.model}: got {len(embedding)} dimensions, expected {self.dimensions}"
            )
        return embedding


def validate_embedding(embedding: Sequence[float], dimensions: int) -> bool:
    """Validate embedding vector"""
    if not embedding:
        return False

    if len(embedding) != dimensions:
        logger.warning(f"Invalid embedding dimension: {len(embedding)}, expected {dimensions}")
        return False

    if any(x != x for x in embedding):  # NaN
        logger.warning("Embedding contains NaN values")
        return False

    return True


class _Work:
    __slots__ = ("content", "future")

    def __init__(self, content: str, future: Future):
        self.content = content
        self.future = future


class EmbeddingService:
    """
    Pooled, cached embedding generation.

    A fixed set of worker threads consumes a bounded queue. Submission never
    blocks: when the queue is full the request fails immediately with
    EmbeddingQueueFullError. Every request gets its own Future, so a slow
    consumer never holds up delivery to anyone else.

    The cache is best-effort: two concurrent misses on the same content may
    both compute and store. Computation is deterministic, so either value is
    correct.
    """

    def __init__(self, embed_fn: Callable[[str], Sequence[float]], num_workers: int = 4, queue_size: int = 100):
        if num_workers <= 0:
            num_workers = 4
        if queue_size <= 0:
            queue_size = 100

        self.embed_fn = embed_fn
        self.num_workers = num_workers
        self.queue_size = queue_size

        self._queue: "queue.Queue" = queue.Queue(maxsize=queue_size)
        self._cache: Dict[str, Vector] = {}
        self._cache_lock = threading.Lock()
        self._submit_lock = threading.Lock()
        self._closed = False
        self._computed = 0
        self._workers: List[threading.Thread] = []

        self._start_workers()

    def _start_workers(self) -> None:
        for i in range(self.num_workers):
            worker = threading.Thread(
                target=self._worker_loop,
                name=f"embedding-worker-{i}",
                daemon=True
            )
            worker.start()
            self._workers.append(worker)
        logger.info(f"Embedding service started with {self.num_workers} workers (queue size {self.queue_size})")

    def _worker_loop(self) -> None:
        while True:
            work = self._queue.get()
            try:
                if work is _STOP:
                    return
                if not work.future.set_running_or_notify_cancel():
                    continue
                try:
                    work.future.set_result(self._get_or_compute(work.content))
                except Exception as e:
                    logger.warning(f"Embedding generation failed: {e}")
                    work.future.set_exception(e)
            finally:
                self._queue.task_done()

    def _get_or_compute(self, content: str) -> Vector:
        with self._cache_lock:
            cached = self._cache.get(content)
        if cached is not None:
            return cached

        embedding = tuple(float(x) for x in self.embed_fn(content))

        with self._cache_lock:
            self._computed += 1
            self._cache[content] = embedding
        return embedding

    def request(self, content: str) -> Future:
        """Queue an embedding request without blocking"""
        future: Future = Future()

        with self._submit_lock:
            if self._closed:
                future.set_exception(EmbeddingServiceClosedError("embedding service is closed"))
                return future
            try:
                self._queue.put_nowait(_Work(content, future))
            except queue.Full:
                logger.warning("Embedding queue is full, rejecting request")
                future.set_exception(EmbeddingQueueFullError("embedding queue is full, try again later"))

        return future

    def embed(self, content: str, timeout: Optional[float] = None) -> Vector:
        """Request an embedding and wait for it"""
        return self.request(content).result(timeout=timeout)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cache_size(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    @property
    def computed_count(self) -> int:
        """Number of times the underlying embedding function produced a vector"""
        with self._cache_lock:
            return self._computed

    def close(self) -> None:
        """Stop accepting requests and wait for in-flight work to finish"""
        with self._submit_lock:
            if self._closed:
                return
            self._closed = True

        # Queued work ahead of the sentinels still completes
        for _ in self._workers:
            self._queue.put(_STOP)
        for worker in self._workers:
            worker.join()

        logger.info("Embedding service stopped")
