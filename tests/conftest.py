import threading
from unittest.mock import MagicMock

import pytest


class FakeModel:
    """Stands in for the vision model: describes frames by name, fails on request"""

    def __init__(self, fail_on=(), error=RuntimeError("boom")):
        self.fail_on = set(fail_on)
        self.error = error
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, image_path, prompt):
        with self._lock:
            self.calls.append(image_path)
        name = image_path.rsplit("/", 1)[-1]
        if name in self.fail_on:
            raise self.error
        return f"description of {name}"


@pytest.fixture
def make_frames(tmp_path):
    def _make(count, video_name="clip"):
        frame_dir = tmp_path / video_name
        frame_dir.mkdir(parents=True, exist_ok=True)
        names = []
        for i in range(1, count + 1):
            name = f"frame_{i:04d}.jpg"
            (frame_dir / name).write_bytes(b"\xff\xd8fake")
            names.append(name)
        return frame_dir, names
    return _make


@pytest.fixture
def mock_pool():
    """A psycopg_pool stand-in whose connections all share one cursor"""
    pool = MagicMock()
    conn = MagicMock()
    cur = MagicMock()
    pool.connection.return_value.__enter__.return_value = conn
    conn.cursor.return_value.__enter__.return_value = cur
    pool.conn = conn
    pool.cur = cur
    return pool

