from __future__ import annotations


class SheetPipelineError(RuntimeError):
    """Base class for failures raised by the contact sheet pipeline."""

    kind = "pipeline"


class MediaLoadError(SheetPipelineError):
    """Video metadata could not be read; fatal to the whole run."""

    kind = "media_load"


class FrameExtractionError(SheetPipelineError):
    """A single seek-then-capture failed. Recoverable at the slot level."""

    kind = "frame_extraction"

    def __init__(self, requested_time: float, reason: str = "") -> None:
        self.requested_time = float(requested_time)
        self.reason = reason
        message = f"Failed to extract frame at {self.requested_time:.3f}s"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CompositionError(SheetPipelineError):
    """The grid image could not be allocated or encoded."""

    kind = "composition"
