"""
Shared pytest fixtures for coach backend tests.
"""
import os
from contextlib import contextmanager
from unittest.mock import patch

import cv2
import numpy as np
import pytest

from app.coach.errors import FrameExtractionError


class FakeVideoSource:
    """In-memory stand-in for ``VideoSource``: every frame is a flat colour."""

    def __init__(self, duration, *, fail_at=(), fail_all=False, width=160, height=120):
        self.duration = float(duration)
        self.fps = 30.0
        self.fail_at = {round(float(t), 6) for t in fail_at}
        self.fail_all = fail_all
        self.width = width
        self.height = height
        self.captured = []
        self.closed = False
        self.claims = 0

    @contextmanager
    def claim(self):
        self.claims += 1
        yield self

    def capture(self, at_time):
        if self.closed:
            raise FrameExtractionError(at_time, "video source is closed")
        if at_time < 0 or at_time >= self.duration:
            raise FrameExtractionError(at_time, "outside range")
        if self.fail_all or round(at_time, 6) in self.fail_at:
            raise FrameExtractionError(at_time, "decoder error")
        self.captured.append(at_time)
        return np.full((self.height, self.width, 3), 200, dtype=np.uint8)

    def close(self):
        self.closed = True


@pytest.fixture
def fake_source_factory():
    """Build fake sources and remember them so tests can inspect them afterwards."""
    created = []

    def factory(duration, **kwargs):
        def open_source(video_path):
            source = FakeVideoSource(duration, **kwargs)
            created.append(source)
            return source

        return open_source

    factory.created = created
    return factory


@pytest.fixture
def sample_video(tmp_path):
    """Write a 3 second, 10 fps MJPG clip whose brightness changes every second."""
    path = tmp_path / "clip.avi"
    fps = 10
    width, height = 160, 120
    writer = cv2.VideoWriter(str(path), cv2.VideoWriter_fourcc(*"MJPG"), fps, (width, height))
    if not writer.isOpened():
        pytest.skip("OpenCV build cannot write MJPG video")
    try:
        for index in range(3 * fps):
            level = 60 + 60 * (index // fps)
            frame = np.full((height, width, 3), level, dtype=np.uint8)
            writer.write(frame)
    finally:
        writer.release()
    if not path.exists() or path.stat().st_size == 0:
        pytest.skip("OpenCV produced an empty video file")
    return path


@pytest.fixture
def mock_env():
    """Fixture to set provider credentials used by the API clients."""
    env_vars = {
        "OPENAI_API_KEY": "test_openai_key_placeholder",
        "OPENROUTER_API_KEY": "test_openrouter_key_placeholder",
    }
    with patch.dict(os.environ, env_vars, clear=False):
        yield env_vars


@pytest.fixture
def fake_source_cls():
    return FakeVideoSource
