"""Sampling plan for contact sheet extraction.

Short recordings get the baseline density of one frame every 0.5 s (a 3x3
sheet then spans 4.5 s). Once that density would need more than
``MAX_SHEETS`` sheets, the interval is stretched uniformly so the whole
recording fits in exactly ``MAX_SHEETS`` sheets.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from .constants import BASELINE_INTERVAL_SEC, FRAMES_PER_SHEET, MAX_SHEETS


@dataclass(frozen=True)
class SamplingPlan:
    video_duration: float
    interval: float

    @property
    def sheet_span(self) -> float:
        return self.interval * FRAMES_PER_SHEET

    @property
    def sheet_count(self) -> int:
        return min(math.ceil(self.video_duration / self.sheet_span), MAX_SHEETS)


def plan(video_duration_seconds: float) -> float:
    """Return the interval in seconds between sampled frames."""
    if video_duration_seconds <= 0:
        raise ValueError("video duration must be > 0")

    baseline_sheet_span = FRAMES_PER_SHEET * BASELINE_INTERVAL_SEC
    ideal_sheets_needed = video_duration_seconds / baseline_sheet_span
    if ideal_sheets_needed <= MAX_SHEETS:
        return BASELINE_INTERVAL_SEC

    target_sheet_duration = video_duration_seconds / MAX_SHEETS
    return target_sheet_duration / FRAMES_PER_SHEET


def build_sampling_plan(video_duration_seconds: float) -> SamplingPlan:
    return SamplingPlan(
        video_duration=float(video_duration_seconds),
        interval=plan(video_duration_seconds),
    )
