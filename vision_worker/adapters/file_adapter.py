"""
JSON file storage adapter.

Buffers results in memory and merges them into
<output_dir>/<video_name>/analysis_results.json in batches.
"""

import os
import json
import logging
import tempfile
import threading
from typing import List, Dict

from .base import ResultStore
from ..models import AnalysisResult, RESULTS_FILENAME
from ..errors import StorageFlushError
from ..logging_setup import log_exception

logger = logging.getLogger("vision_worker")

DEFAULT_BATCH_SIZE = 10


class FileResultStore(ResultStore):
    """File-based implementation of the result store"""

    def __init__(self, output_dir: str, video_name: str, batch_size: int = DEFAULT_BATCH_SIZE):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.output_dir = output_dir
        self.video_name = video_name
        self.batch_size = batch_size
        self.results: List[AnalysisResult] = []
        self._lock = threading.Lock()

    @property
    def results_path(self) -> str:
        return os.path.join(self.output_dir, self.video_name, RESULTS_FILENAME)

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self.results)

    def add(self, result: AnalysisResult) -> None:
        """Buffer a result, flushing once the batch is full"""
        with self._lock:
            self.results.append(result)
            if len(self.results) >= self.batch_size:
                self._flush_locked()

    def flush(self) -> None:
        """Merge buffered results into the results file"""
        with self._lock:
            self._flush_locked()

    def close(self) -> None:
        self.flush()

    def load(self) -> List[AnalysisResult]:
        """Read the persisted results; a missing or unreadable file counts as empty"""
        path = self.results_path
        if not os.path.exists(path):
            return []

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable results file {path}: {e}")
            return []

        if not isinstance(data, list):
            logger.warning(f"Ignoring results file {path}: expected a JSON array")
            return []

        results = []
        for entry in data:
            try:
                results.append(AnalysisResult.from_dict(entry))
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed entry in {path}: {e}")
        return results

    def _flush_locked(self) -> None:
        if not self.results:
            return

        merged = self._merge(self.load(), self.results)
        path = self.results_path

        try:
            self._write_atomic(path, [r.to_dict() for r in merged])
        except (OSError, TypeError, ValueError) as e:
            log_exception(logger, f"Failed to flush {len(self.results)} results to {path}: {e}")
            raise StorageFlushError(
                f"failed to write results file '{path}': {e}",
                pending=len(self.results)
            ) from e

        logger.info(f"Saved {len(self.results)} analysis results to {path} ({len(merged)} total)")
        self.results = []

    @staticmethod
    def _merge(existing: List[AnalysisResult], batch: List[AnalysisResult]) -> List[AnalysisResult]:
        """Append the batch to existing results; a repeated frame replaces its earlier entry"""
        merged: List[AnalysisResult] = []
        positions: Dict[str, int] = {}
        for result in list(existing) + list(batch):
            if result.frame in positions:
                merged[positions[result.frame]] = result
            else:
                positions[result.frame] = len(merged)
                merged.append(result)
        return merged

    @staticmethod
    def _write_atomic(path: str, payload: list) -> None:
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix=".analysis_results.", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except BaseException:
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            raise
