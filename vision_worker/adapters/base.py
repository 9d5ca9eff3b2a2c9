"""
Abstract base class for result stores.

Defines the interface every storage backend implements, so the pipeline
can write to a JSON file or to Postgres without knowing which.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List

from ..models import AnalysisResult
from ..errors import StorageError, StorageFlushError


def batch_storage_error(failures: List[BaseException], total: int) -> StorageError:
    """
    Combine the failures of one add_many call into a single error.

    A batch whose failures are all flush failures is still buffered, so it is
    reported as a StorageFlushError.
    """
    message = f"failed to store {len(failures)}/{total} results: " + "; ".join(str(e) for e in failures)
    if all(isinstance(e, StorageFlushError) for e in failures):
        return StorageFlushError(message, pending=failures[-1].pending)
    return StorageError(message)


class ResultStore(ABC):
    """Destination for per-frame analysis results"""

    @abstractmethod
    def add(self, result: AnalysisResult) -> None:
        """
        Add a single analysis result.

        Backends may persist immediately or buffer and flush in batches.

        Args:
            result: The frame name and the model's description

        Raises:
            StorageError (or StorageFlushError) if the result could not be written
        """
        pass

    def add_many(self, results: Iterable[AnalysisResult]) -> int:
        """
        Add several results. Every result is attempted even when some fail.

        Returns:
            Number of results given

        Raises:
            StorageError listing every result that failed
        """
        results = list(results)
        failures: List[BaseException] = []
        for result in results:
            try:
                self.add(result)
            except Exception as e:
                failures.append(e)

        if failures:
            raise batch_storage_error(failures, len(results))
        return len(results)

    @abstractmethod
    def flush(self) -> None:
        """
        Persist everything buffered so far.

        Raises:
            StorageFlushError if the buffer could not be written; it is kept for a retry
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Release any resources held by the store"""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
