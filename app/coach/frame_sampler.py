"""Single-frame capture from a recorded video.

``VideoSource`` owns one OpenCV capture. Seeking is stateful, so every
seek-then-read happens under the source's lock and a source can only be
claimed by one pipeline run at a time.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import cv2
import numpy as np

from .errors import FrameExtractionError, MediaLoadError

logger = logging.getLogger("uvicorn.error")


def _int_env(name: str, default: int, minimum: int = 1, maximum: Optional[int] = None) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    parsed = max(minimum, parsed)
    return parsed if maximum is None else min(maximum, parsed)


FRAME_SIZE = _int_env("SHEET_FRAME_SIZE", 320, minimum=32)
CONVERSION_TIMEOUT_SEC = 120


def _transcode_to_mp4(src: Path, target: Path) -> bool:
    """Re-encode *src* into *target* as video-only H.264 with a seekable index.

    MediaRecorder webm blobs often carry no duration, which leaves OpenCV
    unable to seek. *target* lives in a directory the caller owns.
    """
    ffmpeg = shutil.which("ffmpeg")
    if not ffmpeg:
        logger.warning("video_transcode_skipped reason=ffmpeg_missing path=%s", src)
        return False

    cmd = [
        ffmpeg,
        "-y",
        "-i",
        str(src),
        "-an",
        "-c:v",
        "libx264",
        "-preset",
        "ultrafast",
        "-crf",
        "28",
        "-movflags",
        "+faststart",
        str(target),
    ]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=CONVERSION_TIMEOUT_SEC)
    except subprocess.TimeoutExpired:
        logger.warning("video_transcode_failed reason=timeout timeout_sec=%s path=%s", CONVERSION_TIMEOUT_SEC, src)
        return False
    except OSError as exc:
        logger.warning("video_transcode_failed reason=os_error path=%s error=%s", src, exc)
        return False

    if result.returncode != 0:
        stderr_tail = (result.stderr or "").strip().splitlines()[-3:]
        logger.warning(
            "video_transcode_failed rc=%s path=%s stderr=%s",
            result.returncode,
            src,
            " | ".join(stderr_tail),
        )
        return False
    if not target.exists() or target.stat().st_size == 0:
        logger.warning("video_transcode_failed reason=empty_output path=%s", src)
        return False

    logger.info("video_transcoded path=%s size_kb=%s", src, target.stat().st_size // 1024)
    return True


def _read_duration(cap) -> float:
    fps = cap.get(cv2.CAP_PROP_FPS) or 0.0
    total_frames = cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0
    if fps <= 0 or total_frames <= 0:
        return 0.0
    return float(total_frames) / float(fps)


def square_crop(frame: np.ndarray, size: int = FRAME_SIZE) -> np.ndarray:
    """Center-crop *frame* to a square and resize it to ``size`` x ``size``."""
    height, width = frame.shape[:2]
    edge = min(height, width)
    top = (height - edge) // 2
    left = (width - edge) // 2
    cropped = frame[top : top + edge, left : left + edge]
    interpolation = cv2.INTER_AREA if edge > size else cv2.INTER_LINEAR
    return cv2.resize(cropped, (size, size), interpolation=interpolation)


class VideoSource:
    """Exclusive handle on one decoded video."""

    def __init__(self, video_path: str | Path) -> None:
        self.path = str(video_path)
        self._work_dir: Optional[Path] = None
        self._lock = threading.Lock()
        self._owner_lock = threading.Lock()
        self._cap = None
        self.fps = 0.0
        self.duration = 0.0
        self._open()

    @property
    def transcoded(self) -> bool:
        return self._work_dir is not None

    def _open(self) -> None:
        cap = cv2.VideoCapture(self.path)
        duration = _read_duration(cap) if cap.isOpened() else 0.0

        if duration <= 0:
            cap.release()
            logger.info("video_metadata_missing path=%s action=transcode", self.path)
            self._work_dir = Path(tempfile.mkdtemp(prefix="sheet_conv_"))
            seekable = self._work_dir / "seekable.mp4"
            if _transcode_to_mp4(Path(self.path), seekable):
                cap = cv2.VideoCapture(str(seekable))
                duration = _read_duration(cap) if cap.isOpened() else 0.0

        if duration <= 0:
            cap.release()
            self._discard_work_dir()
            raise MediaLoadError(f"Failed to load video metadata: {self.path}")

        self._cap = cap
        self.fps = float(cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self.duration = duration
        logger.info(
            "video_source_opened path=%s duration_sec=%.2f fps=%.2f transcoded=%s",
            self.path,
            self.duration,
            self.fps,
            self.transcoded,
        )

    def _discard_work_dir(self) -> None:
        if self._work_dir is not None:
            shutil.rmtree(self._work_dir, ignore_errors=True)
            self._work_dir = None

    @contextmanager
    def claim(self) -> Iterator["VideoSource"]:
        """Mark the source as owned by the calling run for the block's duration."""
        if not self._owner_lock.acquire(blocking=False):
            raise RuntimeError(f"Video source is already owned by another run: {self.path}")
        try:
            yield self
        finally:
            self._owner_lock.release()

    def capture(self, at_time: float) -> np.ndarray:
        """Seek to *at_time* and return the decoded BGR picture."""
        if self._cap is None:
            raise FrameExtractionError(at_time, "video source is closed")
        if at_time < 0 or at_time >= self.duration:
            raise FrameExtractionError(at_time, f"outside [0, {self.duration:.3f})")

        with self._lock:
            # Some backends report False for seeks they honour; the read decides.
            self._cap.set(cv2.CAP_PROP_POS_MSEC, at_time * 1000.0)
            ok, frame = self._cap.read()

        if not ok or frame is None:
            raise FrameExtractionError(at_time, "no frame decoded at position")
        return frame

    def close(self) -> None:
        with self._lock:
            if self._cap is not None:
                self._cap.release()
                self._cap = None
        self._discard_work_dir()

    def __enter__(self) -> "VideoSource":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def extract_frame(source, at_time: float, size: int = FRAME_SIZE) -> np.ndarray:
    """Return a ``size`` x ``size`` still of *source* at *at_time* seconds.

    Raises ``FrameExtractionError`` carrying the requested time when the
    decoder cannot produce a picture there.
    """
    frame = source.capture(at_time)
    try:
        return square_crop(frame, size)
    except cv2.error as exc:
        raise FrameExtractionError(at_time, f"resize failed: {exc}") from exc
