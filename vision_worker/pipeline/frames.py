import os
import re
import ffmpeg
import logging
from typing import List, Optional
from PIL import Image

from ..errors import PreconditionError, FrameExtractionError

logger = logging.getLogger("vision_worker")

FRAME_PATTERN = "frame_%04d.jpg"
_FRAME_NAME_RE = re.compile(r"^frame_(\d+)\.jpg$", re.IGNORECASE)


def _jpeg_names(frame_dir: str) -> List[str]:
    return [
        name for name in os.listdir(frame_dir)
        if name.lower().endswith(".jpg") and os.path.isfile(os.path.join(frame_dir, name))
    ]


def extract_frames(video_path: str, output_dir: str, interval: int) -> str:
    """
    Extract one frame every `interval` seconds into output_dir/<video name>/

    Frames are written as frame_0001.jpg, frame_0002.jpg, ... Extraction is
    skipped when the directory already holds JPEG frames.

    Returns:
        Path to the frame directory
    """
    if not os.path.exists(video_path):
        raise PreconditionError(f"video file does not exist at path: '{video_path}'")

    video_name = os.path.splitext(os.path.basename(video_path))[0]
    frame_dir = os.path.join(output_dir, video_name)

    if os.path.isdir(frame_dir):
        existing = _jpeg_names(frame_dir)
        if existing:
            logger.info(f"Frames already exist in {frame_dir}. Skipping extraction. Found {len(existing)} frames.")
            return frame_dir

    os.makedirs(frame_dir, exist_ok=True)

    logger.info(f"Extracting frames from '{video_path}' to '{frame_dir}' at {interval} second intervals")

    try:
        (
            ffmpeg
            .input(video_path)
            .filter('fps', fps=f"1/{interval}")
            .output(os.path.join(frame_dir, FRAME_PATTERN))
            .overwrite_output()
            .run(quiet=True)
        )
    except ffmpeg.Error as e:
        stderr = e.stderr.decode("utf-8", errors="replace") if e.stderr else ""
        raise FrameExtractionError(f"ffmpeg failed to extract frames: {stderr.strip() or e}") from e

    logger.info(f"Successfully extracted frames to {frame_dir}")
    return frame_dir


def list_frames(frame_dir: str) -> List[str]:
    """Return the sorted JPEG frame file names in frame_dir"""
    if not os.path.isdir(frame_dir):
        raise PreconditionError(f"failed to read frames directory '{frame_dir}'")
    return sorted(_jpeg_names(frame_dir))


def parse_frame_number(frame_name: str) -> Optional[int]:
    """frame_0007.jpg -> 7; None for names that are not extracted frames"""
    match = _FRAME_NAME_RE.match(os.path.basename(frame_name))
    if not match:
        return None
    return int(match.group(1))


def frame_timestamp(frame_number: int, interval: int) -> int:
    """Approximate offset in seconds of a 1-indexed frame"""
    # ffmpeg's fps filter emits frame_0001 at t=0, so frame n sits at (n-1) intervals
    return max(frame_number - 1, 0) * interval


def validate_frame_file(frame_path: str) -> bool:
    """Validate that frame file exists and is readable"""
    if not os.path.exists(frame_path) or os.path.getsize(frame_path) == 0:
        return False

    try:
        with Image.open(frame_path) as img:
            img.verify()
        return True
    except Exception:
        return False
