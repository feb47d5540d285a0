"""Processing metrics collection and reporting.

Provides JobMetrics dataclass for structured observability data,
StageTimer context manager for measuring pipeline stage durations,
and log_job_metrics() for emitting metrics as structured JSON to stdout.
"""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime


@dataclass
class JobMetrics:
    """All metrics collected for a single media processing job."""

    media_id: str
    status: str
    owner_id: str = ""
    strategy: str = ""
    file_size_bytes: int = 0
    media_duration_seconds: float = 0.0
    segment_count: int = 0
    transcription_attempts: int = 0
    transcript_chars: int = 0
    word_count: int = 0
    processing_wall_time_seconds: float = 0.0
    queue_wait_time_seconds: float = 0.0
    stage_timings: dict[str, float] = field(default_factory=dict)
    error_stage: str | None = None
    error_message: str | None = None


class StageTimer:
    """Context manager that records wall-clock duration of a pipeline stage.

    Failed stages are stored under ``_{stage}_failed`` so the failing
    stage can be identified afterwards.

    Usage:
        timings = {}
        with StageTimer("split", timings):
            do_work()
        print(timings["split"])
    """

    def __init__(self, stage_name: str, timings: dict[str, float]) -> None:
        self.stage_name = stage_name
        self._timings = timings
        self.start_time: datetime | None = None
        self.duration_seconds: float = 0.0
        self._mono_start: float = 0.0

    def __enter__(self) -> StageTimer:
        self.start_time = datetime.now(UTC)
        self._mono_start = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        self.duration_seconds = time.monotonic() - self._mono_start
        if exc_type is not None:
            self._timings[f"_{self.stage_name}_failed"] = self.duration_seconds
        else:
            self._timings[self.stage_name] = self.duration_seconds


def failed_stage(timings: dict[str, float]) -> str | None:
    """Name of the stage recorded as failed, if any."""
    for key in timings:
        if key.startswith("_") and key.endswith("_failed"):
            return key[1 : -len("_failed")]
    return None


def log_job_metrics(metrics: JobMetrics) -> None:
    """Emit job metrics as a single structured JSON line to stdout.

    Args:
        metrics: Populated JobMetrics dataclass.
    """
    entry = {
        "timestamp": datetime.now(UTC).isoformat(),
        "severity": "INFO",
        "metric_type": "job_completion",
        **asdict(metrics),
    }
    print(json.dumps(entry))
