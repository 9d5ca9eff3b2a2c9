"""
Error taxonomy for the vision worker.

Precondition failures abort a run before any work starts. Per-frame
failures are collected and reported together; storage failures propagate.
"""

from typing import List, Optional


class VisionWorkerError(Exception):
    """Base error for the vision worker."""


class PreconditionError(VisionWorkerError):
    """A run cannot start, e.g. there are no frames or the database is unreachable."""


class FrameExtractionError(PreconditionError):
    """The external frame source failed to produce frames."""


class VisionModelError(VisionWorkerError):
    """The vision model failed or returned nothing usable."""


class FrameAnalysisError(VisionWorkerError):
    """A single frame failed to analyze."""

    def __init__(self, frame_index: int, total: int, frame: str, cause: BaseException):
        self.frame_index = frame_index
        self.total = total
        self.frame = frame
        self.cause = cause
        super().__init__(f"frame {frame_index}/{total} failed: {cause}")


class AnalysisBatchError(VisionWorkerError):
    """One or more frames failed during a dispatch run."""

    def __init__(self, errors: List[FrameAnalysisError], succeeded: int = 0):
        self.errors = list(errors)
        self.succeeded = succeeded
        joined = "; ".join(str(e) for e in self.errors)
        super().__init__(f"encountered errors during processing: {joined}")


class StorageError(VisionWorkerError):
    """A result could not be written to the backing store."""


class StorageFlushError(StorageError):
    """Buffered results could not be persisted; they remain buffered."""

    def __init__(self, message: str, pending: Optional[int] = None):
        self.pending = pending
        super().__init__(message)


class EmbeddingError(VisionWorkerError):
    """An embedding request failed."""


class EmbeddingQueueFullError(EmbeddingError):
    """The embedding queue is at capacity; the request was rejected."""


class EmbeddingServiceClosedError(EmbeddingError):
    """The embedding service has been shut down."""


class SearchError(VisionWorkerError):
    """Base class for search failures."""


class SearchNoFramesError(SearchError):
    """No frames have been ingested for the requested video."""

    def __init__(self, video_name: str):
        self.video_name = video_name
        super().__init__(
            f"No frames found for video '{video_name}'. "
            f"Run ingestion for '{video_name}' first."
        )


class SearchNoMatchError(SearchError):
    """Frames exist for the video but none match the query."""

    def __init__(self, video_name: str, query: str):
        self.video_name = video_name
        self.query = query
        super().__init__(f"No frames in video '{video_name}' match '{query}'")
