"""Tests for session_transcriber.media.planner."""

import math

import pytest

from session_transcriber.media.planner import (
    HUGE_OBJECT_BYTES,
    MAX_CHUNK_SECONDS,
    MIB,
    MIN_CHUNK_SECONDS,
    MIN_TAIL_SECONDS,
    RANGE_CHUNK_BYTES,
    SINGLE_CALL_LIMIT_BYTES,
    ByteRange,
    Segmented,
    SingleCall,
    chunk_seconds_for,
    needs_segmenting,
    plan,
    plan_byte_ranges,
    segment_bounds,
)


class TestPlan:
    def test_small_file_is_single_call(self) -> None:
        assert plan(20 * MIB, 45 * 60) == SingleCall()

    def test_limit_is_inclusive(self) -> None:
        assert plan(SINGLE_CALL_LIMIT_BYTES, None) == SingleCall()
        assert needs_segmenting(SINGLE_CALL_LIMIT_BYTES + 1)

    def test_single_call_needs_no_duration(self) -> None:
        assert plan(1024, None) == SingleCall()

    def test_three_hour_recording(self) -> None:
        strategy = plan(900 * MIB, 3 * 3600)
        assert strategy == Segmented(chunk_seconds=240, chunk_count=45)

    def test_chunk_count_formula(self) -> None:
        duration = 5000.0
        strategy = plan(100 * MIB, duration)
        assert strategy.chunk_count == math.ceil(duration / strategy.chunk_seconds)

    def test_chunk_length_clamped_low(self) -> None:
        # Very high bitrate would give chunks under the minimum
        assert chunk_seconds_for(2000 * MIB, 600) == MIN_CHUNK_SECONDS

    def test_chunk_length_clamped_high(self) -> None:
        # Low bitrate would give chunks over the maximum
        assert chunk_seconds_for(30 * MIB, 10 * 3600) == MAX_CHUNK_SECONDS

    def test_missing_duration_for_large_file_raises(self) -> None:
        with pytest.raises(ValueError, match="positive duration"):
            plan(100 * MIB, None)

    def test_non_positive_duration_raises(self) -> None:
        with pytest.raises(ValueError):
            plan(100 * MIB, 0)

    def test_negative_size_raises(self) -> None:
        with pytest.raises(ValueError):
            plan(-1, 10)


class TestSegmentBounds:
    def test_bounds_cover_duration_in_order(self) -> None:
        bounds = segment_bounds(Segmented(chunk_seconds=240, chunk_count=3), 600.0)
        assert [(b.index, b.start_seconds, b.duration_seconds) for b in bounds] == [
            (0, 0.0, 240.0),
            (1, 240.0, 240.0),
            (2, 480.0, 120.0),
        ]

    def test_last_segment_length(self) -> None:
        duration = 10_000.0
        strategy = plan(200 * MIB, duration)
        bounds = segment_bounds(strategy, duration)
        n, c = strategy.chunk_count, strategy.chunk_seconds
        assert len(bounds) == n
        assert bounds[-1].duration_seconds == pytest.approx(duration - (n - 1) * c)
        assert sum(b.duration_seconds for b in bounds) == pytest.approx(duration)

    def test_short_tail_folded_into_last_segment(self) -> None:
        # Probed durations are fractional: 0.04s past 45 full chunks
        strategy = plan(900 * MIB, 10800.04)
        assert strategy == Segmented(chunk_seconds=240, chunk_count=45)

        bounds = segment_bounds(strategy, 10800.04)
        assert len(bounds) == 45
        assert bounds[-1].start_seconds == 44 * 240
        assert bounds[-1].duration_seconds == pytest.approx(240.04)
        assert min(b.duration_seconds for b in bounds) >= MIN_TAIL_SECONDS

    def test_tail_of_at_least_one_second_is_kept(self) -> None:
        strategy = plan(900 * MIB, 10801.5)
        assert strategy.chunk_count == 46
        bounds = segment_bounds(strategy, 10801.5)
        assert bounds[-1].duration_seconds == pytest.approx(1.5)


class TestPlanByteRanges:
    def test_small_object_is_one_range(self) -> None:
        assert plan_byte_ranges(10 * MIB) == [ByteRange(0, 10 * MIB - 1)]

    def test_empty_object_has_no_ranges(self) -> None:
        assert plan_byte_ranges(0) == []

    def test_huge_object_split_into_inclusive_ranges(self) -> None:
        size = HUGE_OBJECT_BYTES + 10
        ranges = plan_byte_ranges(size)

        assert len(ranges) == math.ceil(size / RANGE_CHUNK_BYTES)
        assert ranges[0] == ByteRange(0, RANGE_CHUNK_BYTES - 1)
        assert ranges[-1].end == size - 1
        assert sum(r.length for r in ranges) == size
        for prev, cur in zip(ranges, ranges[1:]):
            assert cur.start == prev.end + 1

    def test_custom_threshold(self) -> None:
        ranges = plan_byte_ranges(25, huge_threshold=10, range_size=10)
        assert ranges == [ByteRange(0, 9), ByteRange(10, 19), ByteRange(20, 24)]
