"""Contact sheet composition.

A sheet is a 3x3 grid of consecutive stills. Slot ``i`` holds the frame
sampled at ``start_time + i * interval`` and is drawn at row ``i // 3``,
column ``i % 3``. Slots past the end of the video are never sampled, and a
slot whose extraction failed keeps the neutral background.
"""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import List, Optional

import cv2
import numpy as np

from .constants import FRAMES_PER_SHEET, GRID_SIZE
from .errors import CompositionError, FrameExtractionError
from .frame_sampler import FRAME_SIZE, _int_env, extract_frame
from .models import ContactSheet

logger = logging.getLogger("uvicorn.error")


JPEG_QUALITY = _int_env("SHEET_JPEG_QUALITY", 80, minimum=1, maximum=100)
BACKGROUND_BGR = (26, 26, 26)  # #1a1a1a
LABEL_WIDTH = 80
LABEL_HEIGHT = 24
LABEL_OPACITY = 0.7
LABEL_FONT = cv2.FONT_HERSHEY_SIMPLEX
LABEL_FONT_SCALE = 0.4
LABEL_COLOR_BGR = (255, 255, 255)


@dataclass
class FrameSlot:
    index: int
    time: float
    frame: Optional[np.ndarray] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.frame is not None


def format_timestamp(seconds: float) -> str:
    """Format seconds as M:SS.s (``75.3`` -> ``1:15.3``, ``59.96`` -> ``1:00.0``)."""
    tenths = max(0, int(round(seconds * 10)))
    mins, rem = divmod(tenths, 600)
    return f"{mins}:{rem / 10:04.1f}"


def candidate_times(start_time: float, interval: float, video_duration: float) -> List[float]:
    times: List[float] = []
    for i in range(FRAMES_PER_SHEET):
        frame_time = start_time + i * interval
        if frame_time >= video_duration:
            break
        times.append(frame_time)
    return times


def sample_slots(source, times: List[float], size: int = FRAME_SIZE) -> List[FrameSlot]:
    """Extract each candidate in order; failures become empty slots."""
    slots: List[FrameSlot] = []
    for index, frame_time in enumerate(times):
        try:
            frame = extract_frame(source, frame_time, size)
            slots.append(FrameSlot(index=index, time=frame_time, frame=frame))
        except FrameExtractionError as exc:
            logger.warning("frame_extraction_failed time=%.3f error=%s", frame_time, exc)
            slots.append(FrameSlot(index=index, time=frame_time, error=str(exc)))
    return slots


def _draw_label(canvas: np.ndarray, x: int, y: int, size: int, text: str) -> None:
    top = y + size - min(LABEL_HEIGHT, size)
    box = canvas[top : y + size, x : x + min(LABEL_WIDTH, size)]
    box[:] = (box.astype(np.float32) * (1.0 - LABEL_OPACITY)).astype(np.uint8)
    cv2.putText(
        canvas,
        text,
        (x + 6, y + size - 8),
        LABEL_FONT,
        LABEL_FONT_SCALE,
        LABEL_COLOR_BGR,
        1,
        cv2.LINE_AA,
    )


def render_sheet(slots: List[FrameSlot], size: int = FRAME_SIZE) -> bytes:
    """Lay the filled slots out on the grid and return JPEG bytes."""
    sheet_size = size * GRID_SIZE
    try:
        canvas = np.full((sheet_size, sheet_size, 3), BACKGROUND_BGR, dtype=np.uint8)
    except (MemoryError, ValueError) as exc:
        raise CompositionError(f"Could not allocate {sheet_size}x{sheet_size} canvas: {exc}") from exc

    try:
        for slot in slots:
            if not slot.ok:
                continue
            col = slot.index % GRID_SIZE
            row = slot.index // GRID_SIZE
            x = col * size
            y = row * size
            canvas[y : y + size, x : x + size] = slot.frame
            _draw_label(canvas, x, y, size, format_timestamp(slot.time))

        ok, encoded = cv2.imencode(".jpg", canvas, [int(cv2.IMWRITE_JPEG_QUALITY), JPEG_QUALITY])
    except (cv2.error, ValueError) as exc:
        raise CompositionError(f"Contact sheet rendering failed: {exc}") from exc

    if not ok:
        raise CompositionError("JPEG encoder returned no data for contact sheet.")
    return encoded.tobytes()


def to_data_url(jpeg_bytes: bytes) -> str:
    return "data:image/jpeg;base64," + base64.b64encode(jpeg_bytes).decode("ascii")


def compose_sheet(
    source,
    start_time: float,
    interval: float,
    *,
    size: int = FRAME_SIZE,
) -> Optional[ContactSheet]:
    """Sample up to nine frames from *start_time* and compose one sheet.

    Returns ``None`` when no candidate offset falls inside the video.
    ``duration`` is always the nominal ``interval * 9`` span, even for a
    final sheet cut short by the end of the recording.
    """
    times = candidate_times(start_time, interval, source.duration)
    if not times:
        return None

    slots = sample_slots(source, times, size)
    image = render_sheet(slots, size)

    return ContactSheet(
        timestamp=start_time,
        duration=interval * FRAMES_PER_SHEET,
        image_data_url=to_data_url(image),
        frame_timestamps=times,
        frames_captured=sum(1 for slot in slots if slot.ok),
    )
