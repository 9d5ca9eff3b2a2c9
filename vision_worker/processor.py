"""
Video processing pipeline.

Extracts frames from a video, then analyzes them concurrently and stores
the results through whichever ResultStore the service selected.
"""

import time
import logging
import threading
from typing import Optional

from .models import VideoJob, DispatchReport
from .adapters.base import ResultStore
from .config import WorkerConfig
from .pipeline.frames import extract_frames, list_frames
from .pipeline.dispatcher import Dispatcher, Describe

logger = logging.getLogger("vision_worker")


class VideoProcessor:
    """Handles video processing pipeline execution"""

    def __init__(self, config: WorkerConfig, store: ResultStore, describe: Describe):
        self.config = config
        self.store = store
        self.dispatcher = Dispatcher(
            describe,
            max_workers=config.MAX_WORKERS,
            prompt=config.VISION_PROMPT
        )

    def process_video(self, job: VideoJob, cancel_event: Optional[threading.Event] = None) -> DispatchReport:
        """
        Process a single video through frame extraction and analysis.

        Args:
            job: Video location and output directory
            cancel_event: Optional signal to stop analyzing further frames

        Returns:
            DispatchReport for the analysis run

        Raises:
            PreconditionError if the video or its frames are missing
            AnalysisBatchError if some frames failed (the rest are stored)
            StorageFlushError if results could not be persisted
        """
        start_time = time.time()
        logger.info(f"Processing video: '{job.video_path}'")

        logger.info(f"FRAMES: Extracting frames for video {job.video_name}")
        frame_dir = extract_frames(job.video_path, job.output_dir, self.config.FRAME_INTERVAL_SEC)

        frames = list_frames(frame_dir)
        logger.info(f"Found {len(frames)} frames to analyze")

        report = self.dispatcher.run(frames, frame_dir, self.store, cancel_event=cancel_event)

        logger.info(
            f"READY: Processed all {report.total} frames from video '{job.video_path}' "
            f"in {time.time() - start_time:.2f}s"
        )
        return report
