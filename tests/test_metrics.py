"""Tests for session_transcriber.observability.metrics module."""

from __future__ import annotations

import json
import time
from dataclasses import asdict

import pytest

from session_transcriber.observability.metrics import (
    JobMetrics,
    StageTimer,
    failed_stage,
    log_job_metrics,
)


def _make_job_metrics(**overrides) -> JobMetrics:
    """Create a JobMetrics with sensible defaults, applying any overrides."""
    defaults = {
        "media_id": "m-001",
        "status": "completed",
        "owner_id": "42",
        "strategy": "segmented",
        "file_size_bytes": 943_718_400,
        "media_duration_seconds": 10800.0,
        "segment_count": 45,
        "transcription_attempts": 46,
        "transcript_chars": 150_000,
        "word_count": 27_000,
        "processing_wall_time_seconds": 1800.0,
        "queue_wait_time_seconds": 1.2,
    }
    defaults.update(overrides)
    return JobMetrics(**defaults)


class TestJobMetrics:
    """Tests for JobMetrics dataclass."""

    def test_serializes_all_fields_to_dict(self):
        d = asdict(_make_job_metrics())

        assert d["media_id"] == "m-001"
        assert d["strategy"] == "segmented"
        assert d["segment_count"] == 45
        assert d["stage_timings"] == {}
        assert d["error_stage"] is None

    def test_defaults(self):
        metrics = JobMetrics(media_id="m", status="processing")
        assert metrics.transcription_attempts == 0
        assert metrics.stage_timings == {}


class TestStageTimer:
    """Tests for StageTimer context manager."""

    def test_records_duration(self):
        timings: dict[str, float] = {}
        with StageTimer("split", timings) as timer:
            time.sleep(0.01)

        assert timings["split"] >= 0.01
        assert timer.duration_seconds == timings["split"]
        assert timer.start_time is not None

    def test_failed_stage_recorded_separately(self):
        timings: dict[str, float] = {}
        with pytest.raises(RuntimeError):
            with StageTimer("transcribe", timings):
                raise RuntimeError("boom")

        assert "transcribe" not in timings
        assert "_transcribe_failed" in timings

    def test_failed_stage_lookup(self):
        timings = {"load": 0.1, "locate": 2.0, "_probe_failed": 0.5}
        assert failed_stage(timings) == "probe"

    def test_failed_stage_none(self):
        assert failed_stage({"load": 0.1}) is None


class TestLogJobMetrics:
    """Tests for log_job_metrics output."""

    def test_emits_single_json_line(self, capsys):
        metrics = _make_job_metrics(stage_timings={"load": 0.2})

        log_job_metrics(metrics)

        out = capsys.readouterr().out.strip().splitlines()
        assert len(out) == 1
        entry = json.loads(out[0])
        assert entry["metric_type"] == "job_completion"
        assert entry["severity"] == "INFO"
        assert entry["media_id"] == "m-001"
        assert entry["stage_timings"] == {"load": 0.2}
        assert "timestamp" in entry

    def test_failure_fields(self, capsys):
        metrics = _make_job_metrics(
            status="quota_exceeded",
            error_stage="transcribe",
            error_message="quota exhausted",
        )

        log_job_metrics(metrics)

        entry = json.loads(capsys.readouterr().out)
        assert entry["status"] == "quota_exceeded"
        assert entry["error_stage"] == "transcribe"
