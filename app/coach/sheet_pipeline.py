"""Video-to-contact-sheet pipeline.

Loads the recording once, plans the sampling interval, then composes sheets
strictly one after another: every sheet seeks the same decoder, so nothing
here runs in parallel. Progress is reported after each sheet and the cancel
signal is checked between sheets.
"""

from __future__ import annotations

import enum
import logging
import shutil
import tempfile
import threading
import time
from pathlib import Path
from typing import Callable, List, Optional, Union

from .errors import MediaLoadError, SheetPipelineError
from .frame_sampler import VideoSource
from .models import ContactSheet
from .sampling_plan import SamplingPlan, build_sampling_plan
from .sheet_compositor import compose_sheet

logger = logging.getLogger("uvicorn.error")

ProgressCallback = Callable[[float], None]
VideoInput = Union[bytes, bytearray, str, Path]


class SheetPipelineState(str, enum.Enum):
    IDLE = "idle"
    LOADING_METADATA = "loading_metadata"
    METADATA_FAILED = "metadata_failed"
    SAMPLING = "sampling"
    DONE = "done"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


class SheetPipelineRun:
    """One pass over one recording. Not reusable."""

    def __init__(
        self,
        video: VideoInput,
        *,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        suffix: str = ".webm",
        label: str = "-",
    ) -> None:
        self.video = video
        self.on_progress = on_progress
        self.cancel_event = cancel_event
        self.suffix = suffix
        self.label = label
        self.state = SheetPipelineState.IDLE
        self.plan: Optional[SamplingPlan] = None
        self.sheets: List[ContactSheet] = []
        self.error: Optional[SheetPipelineError] = None
        self._last_progress = 0.0

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _report(self, fraction: float) -> None:
        if self.on_progress is None:
            return
        fraction = min(1.0, max(self._last_progress, fraction))
        self._last_progress = fraction
        self.on_progress(fraction)

    def _open_source(self, video_path: Path) -> VideoSource:
        self.state = SheetPipelineState.LOADING_METADATA
        try:
            return VideoSource(video_path)
        except MediaLoadError as exc:
            self.state = SheetPipelineState.METADATA_FAILED
            self.error = exc
            raise

    def run(self) -> Optional[List[ContactSheet]]:
        if self.state is not SheetPipelineState.IDLE:
            raise RuntimeError("Sheet pipeline run has already been started.")

        start_ts = time.monotonic()
        temp_dir: Optional[Path] = None
        source: Optional[VideoSource] = None
        try:
            if isinstance(self.video, (bytes, bytearray)):
                if not self.video:
                    self.state = SheetPipelineState.METADATA_FAILED
                    raise MediaLoadError("Video blob is empty.")
                temp_dir = Path(tempfile.mkdtemp(prefix="sheets_"))
                video_path = temp_dir / f"input{self.suffix}"
                video_path.write_bytes(bytes(self.video))
            else:
                video_path = Path(self.video)

            source = self._open_source(video_path)
            self.plan = build_sampling_plan(source.duration)
            self.state = SheetPipelineState.SAMPLING
            logger.info(
                "run=%s sheet_pipeline_started duration_sec=%.2f interval_sec=%.3f sheets=%s",
                self.label,
                self.plan.video_duration,
                self.plan.interval,
                self.plan.sheet_count,
            )

            with source.claim():
                for index in range(self.plan.sheet_count):
                    if self._cancelled():
                        self.state = SheetPipelineState.CANCELLED
                        logger.info(
                            "run=%s sheet_pipeline_cancelled completed=%s of=%s",
                            self.label,
                            index,
                            self.plan.sheet_count,
                        )
                        return None

                    start_time = index * self.plan.sheet_span
                    sheet = compose_sheet(source, start_time, self.plan.interval)
                    if sheet is not None:
                        self.sheets.append(sheet)
                    self._report((index + 1) / self.plan.sheet_count)

            if self.sheets and not any(sheet.frames_captured for sheet in self.sheets):
                raise MediaLoadError("Video source produced no decodable frames.")

            self.state = SheetPipelineState.DONE
            return list(self.sheets)
        except SheetPipelineError as exc:
            if self.state is not SheetPipelineState.METADATA_FAILED:
                self.state = SheetPipelineState.ABORTED
            self.error = exc
            logger.warning("run=%s sheet_pipeline_failed kind=%s error=%s", self.label, exc.kind, exc)
            raise
        except Exception:
            self.state = SheetPipelineState.ABORTED
            logger.error("run=%s sheet_pipeline_unhandled_error", self.label, exc_info=True)
            raise
        finally:
            if source is not None:
                source.close()
            if temp_dir is not None:
                shutil.rmtree(temp_dir, ignore_errors=True)
            elapsed_ms = int((time.monotonic() - start_ts) * 1000)
            logger.info(
                "run=%s sheet_pipeline_finished state=%s sheets=%s elapsed_ms=%s",
                self.label,
                self.state.value,
                len(self.sheets),
                elapsed_ms,
            )


def extract_all(
    video: VideoInput,
    on_progress: Optional[ProgressCallback] = None,
    cancel_event: Optional[threading.Event] = None,
    *,
    suffix: str = ".webm",
    label: str = "-",
) -> Optional[List[ContactSheet]]:
    """Turn a recording into its ordered list of contact sheets.

    Returns ``None`` (without raising) when *cancel_event* is set before the
    last sheet is composed; partial output is discarded.
    """
    run = SheetPipelineRun(
        video,
        on_progress=on_progress,
        cancel_event=cancel_event,
        suffix=suffix,
        label=label,
    )
    return run.run()


def get_video_duration(video: VideoInput, *, suffix: str = ".webm") -> float:
    """Read only the recording's duration in seconds."""
    temp_dir: Optional[Path] = None
    try:
        if isinstance(video, (bytes, bytearray)):
            temp_dir = Path(tempfile.mkdtemp(prefix="sheets_meta_"))
            video_path = temp_dir / f"input{suffix}"
            video_path.write_bytes(bytes(video))
        else:
            video_path = Path(video)
        with VideoSource(video_path) as source:
            return source.duration
    finally:
        if temp_dir is not None:
            shutil.rmtree(temp_dir, ignore_errors=True)
