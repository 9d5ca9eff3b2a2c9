"""
Concurrent frame analysis.

The Dispatcher turns an ordered list of frame names into WorkItems, feeds
them to a fixed pool of worker threads that call the vision model, and
drains successful results into a ResultStore while the workers are still
running. A failed frame never stops its siblings; all per-frame failures
are reported together once the pool has drained.
"""

import os
import queue
import time
import logging
import threading
from typing import Callable, List, Optional, Sequence

from ..models import AnalysisResult, DispatchReport, WorkItem
from ..errors import (
    AnalysisBatchError,
    FrameAnalysisError,
    PreconditionError,
    StorageError,
    StorageFlushError,
)
from ..adapters.base import ResultStore
from ..logging_setup import log_exception

logger = logging.getLogger("vision_worker")

Describe = Callable[[str, str], str]

_STOP = object()


class AnalysisCancelled(Exception):
    """Raised in place of a model call once the run has been cancelled"""

    def __str__(self):
        return "cancelled before analysis"


class ProgressTracker:
    """Shared remaining-work counter, for observability only"""

    def __init__(self, total: int):
        self.total = total
        self._remaining = total
        self._failed = 0
        self._lock = threading.Lock()

    def complete(self) -> int:
        with self._lock:
            self._remaining -= 1
            remaining = self._remaining
        logger.info(f"Remaining frames to analyze: {remaining}/{self.total}")
        return remaining

    def fail(self) -> int:
        with self._lock:
            self._failed += 1
            return self._failed

    @property
    def remaining(self) -> int:
        with self._lock:
            return self._remaining

    @property
    def failed(self) -> int:
        with self._lock:
            return self._failed

    @property
    def succeeded(self) -> int:
        with self._lock:
            return self.total - self._remaining


class Dispatcher:
    """Runs a bounded pool of analysis workers over a set of frames"""

    def __init__(self, describe: Describe, max_workers: int = 4, prompt: str = ""):
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.describe = describe
        self.max_workers = max_workers
        self.prompt = prompt

    def run(
        self,
        frames: Sequence[str],
        frame_dir: str,
        store: ResultStore,
        cancel_event: Optional[threading.Event] = None,
    ) -> DispatchReport:
        """
        Analyze every frame exactly once and persist the results.

        Args:
            frames: Ordered frame file names
            frame_dir: Directory the frame names are relative to
            store: Destination for successful results; flushed even when frames fail
            cancel_event: When set, remaining frames are reported as cancelled

        Returns:
            DispatchReport when every frame succeeded

        Raises:
            PreconditionError if there are no frames
            StorageFlushError if results could not be persisted
            AnalysisBatchError if any frame failed
        """
        total = len(frames)
        if total == 0:
            raise PreconditionError(f"no frames found in directory '{frame_dir}'")

        start_time = time.time()
        cancel_event = cancel_event or threading.Event()

        # Sized to hold every item, so enqueueing never blocks
        work_queue: "queue.Queue" = queue.Queue(maxsize=total + self.max_workers)
        results_queue: "queue.Queue" = queue.Queue()
        errors: List[FrameAnalysisError] = []
        errors_lock = threading.Lock()
        progress = ProgressTracker(total)

        for i, frame in enumerate(frames):
            work_queue.put_nowait(WorkItem(frame_path=frame, frame_index=i + 1, total=total))
        for _ in range(self.max_workers):
            work_queue.put_nowait(_STOP)

        logger.info(f"ANALYZE: Dispatching {total} frames to {self.max_workers} workers")

        def worker() -> None:
            while True:
                item = work_queue.get()
                if item is _STOP:
                    return
                try:
                    if cancel_event.is_set():
                        raise AnalysisCancelled()
                    frame_path = os.path.join(frame_dir, item.frame_path)
                    content = self.describe(frame_path, self.prompt)
                except Exception as e:
                    error = FrameAnalysisError(item.frame_index, item.total, item.frame_path, e)
                    logger.warning(str(error))
                    progress.fail()
                    with errors_lock:
                        errors.append(error)
                    continue

                results_queue.put(AnalysisResult(frame=item.frame_path, content=content))
                progress.complete()

        storage_errors: List[Exception] = []

        def collector() -> None:
            done = False
            while not done:
                batch = [results_queue.get()]
                while True:
                    try:
                        batch.append(results_queue.get_nowait())
                    except queue.Empty:
                        break
                if batch[-1] is _STOP:
                    done = True
                    batch.pop()
                if not batch:
                    continue
                try:
                    store.add_many(batch)
                except Exception as e:
                    log_exception(logger, f"Failed to store {len(batch)} results: {e}")
                    storage_errors.append(e)

        workers = [
            threading.Thread(target=worker, name=f"analysis-worker-{i}", daemon=True)
            for i in range(self.max_workers)
        ]
        collector_thread = threading.Thread(target=collector, name="result-collector", daemon=True)

        collector_thread.start()
        for t in workers:
            t.start()
        for t in workers:
            t.join()

        results_queue.put(_STOP)
        collector_thread.join()

        # Always flush, even when frames failed
        try:
            store.flush()
        except StorageError as e:
            log_exception(logger, f"Failed to flush final results: {e}")
            raise StorageFlushError(f"failed to flush final results: {e}") from e

        # Batch flush failures were retried by the final flush above
        lost = [e for e in storage_errors if not isinstance(e, StorageFlushError)]
        if lost:
            raise StorageError("failed to store results: " + "; ".join(str(e) for e in lost))

        elapsed = time.time() - start_time

        if errors:
            errors.sort(key=lambda e: e.frame_index)
            logger.error(f"Analysis finished with {len(errors)}/{total} failed frames in {elapsed:.2f}s")
            raise AnalysisBatchError(errors, succeeded=progress.succeeded)

        logger.info(f"Analysis completed for {total} frames in {elapsed:.2f}s")
        return DispatchReport(
            total=total,
            succeeded=progress.succeeded,
            failed=progress.failed,
            elapsed_seconds=elapsed,
        )
