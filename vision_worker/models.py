"""
Domain models for the vision worker.

Defines the core data structures passed between the frame source,
the analysis pipeline, the result stores and the search engine.
"""

import os
from dataclasses import dataclass, asdict
from typing import Optional, Dict, Any

RESULTS_FILENAME = "analysis_results.json"


@dataclass(frozen=True)
class VideoJob:
    """Where a video's frames and results live"""
    video_path: str
    output_dir: str
    video_name: str

    @classmethod
    def from_path(cls, video_path: str, output_dir: str) -> 'VideoJob':
        base = os.path.basename(video_path)
        return cls(
            video_path=video_path,
            output_dir=output_dir,
            video_name=os.path.splitext(base)[0],
        )

    @property
    def frame_dir(self) -> str:
        return os.path.join(self.output_dir, self.video_name)

    @property
    def results_path(self) -> str:
        return os.path.join(self.frame_dir, RESULTS_FILENAME)


@dataclass(frozen=True)
class WorkItem:
    """A frame queued for analysis"""
    frame_path: str
    frame_index: int
    total: int


@dataclass
class AnalysisResult:
    """Text produced by the vision model for one frame"""
    frame: str
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AnalysisResult':
        return cls(frame=str(data["frame"]), content=str(data.get("content", "")))


@dataclass
class FrameSearchResult:
    """A frame returned by similarity or substring search"""
    frame_number: int
    frame_path: str
    description: str
    similarity: Optional[float] = None
    timestamp_seconds: Optional[int] = None


@dataclass
class DispatchReport:
    """Summary of a completed dispatch run"""
    total: int
    succeeded: int
    failed: int
    elapsed_seconds: float
