"""Chunk planning for media larger than one transcription call accepts.

Decides between a single transcription call and a segmented plan, and
computes byte ranges for downloading very large remote objects.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

MIB = 1024 * 1024

# Whisper rejects uploads over 25 MB
SINGLE_CALL_LIMIT_BYTES = 24 * MIB
TARGET_CHUNK_BYTES = 20 * MIB
MIN_CHUNK_SECONDS = 120
MAX_CHUNK_SECONDS = 600

# A remainder shorter than this is folded into the previous segment
MIN_TAIL_SECONDS = 1.0

HUGE_OBJECT_BYTES = 500 * MIB
RANGE_CHUNK_BYTES = 50 * MIB


@dataclass(frozen=True)
class SingleCall:
    """The whole file goes to the service in one request."""


@dataclass(frozen=True)
class Segmented:
    """The file is cut into ``chunk_count`` segments of ``chunk_seconds``."""

    chunk_seconds: int
    chunk_count: int


Strategy = SingleCall | Segmented


@dataclass(frozen=True)
class SegmentBounds:
    index: int
    start_seconds: float
    duration_seconds: float


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte range, as used in an HTTP Range header."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1


def needs_segmenting(file_size_bytes: int) -> bool:
    """Check whether a file is too large for a single transcription call."""
    return file_size_bytes > SINGLE_CALL_LIMIT_BYTES


def chunk_seconds_for(file_size_bytes: int, duration_seconds: float) -> int:
    """Chunk length that keeps each segment near TARGET_CHUNK_BYTES.

    Derived from the source's average bitrate and clamped to
    [MIN_CHUNK_SECONDS, MAX_CHUNK_SECONDS].
    """
    # TARGET / (size / duration), kept as one division to avoid rounding down
    estimated = math.floor(TARGET_CHUNK_BYTES * duration_seconds / file_size_bytes)
    return max(MIN_CHUNK_SECONDS, min(MAX_CHUNK_SECONDS, estimated))


def plan(file_size_bytes: int, duration_seconds: float | None) -> Strategy:
    """Choose how a file will be transcribed.

    Args:
        file_size_bytes: Size of the local media file.
        duration_seconds: Probed duration. Only required when the file
            exceeds the single-call limit.

    Returns:
        SingleCall or Segmented.

    Raises:
        ValueError: If the size is negative, or a segmented plan is needed
            and the duration is missing or not positive.
    """
    if file_size_bytes < 0:
        raise ValueError(f"Invalid file size: {file_size_bytes}")
    if not needs_segmenting(file_size_bytes):
        return SingleCall()
    if duration_seconds is None or duration_seconds <= 0:
        raise ValueError(
            f"A positive duration is required to segment a "
            f"{file_size_bytes}-byte file (got {duration_seconds})"
        )

    chunk = chunk_seconds_for(file_size_bytes, duration_seconds)
    count = math.ceil(duration_seconds / chunk)
    if count > 1 and duration_seconds - (count - 1) * chunk < MIN_TAIL_SECONDS:
        count -= 1
    return Segmented(chunk_seconds=chunk, chunk_count=count)


def segment_bounds(strategy: Segmented, duration_seconds: float) -> list[SegmentBounds]:
    """Start offset and length of every segment, in index order.

    The last segment runs to the end: ``D - (n-1) * C``, which exceeds
    ``C`` by less than MIN_TAIL_SECONDS when a short tail was folded in.
    """
    bounds: list[SegmentBounds] = []
    last = strategy.chunk_count - 1
    for index in range(strategy.chunk_count):
        start = index * strategy.chunk_seconds
        if index == last:
            length = duration_seconds - start
        else:
            length = min(strategy.chunk_seconds, duration_seconds - start)
        bounds.append(SegmentBounds(index, float(start), float(length)))
    return bounds


def plan_byte_ranges(
    object_size: int,
    huge_threshold: int = HUGE_OBJECT_BYTES,
    range_size: int = RANGE_CHUNK_BYTES,
) -> list[ByteRange]:
    """Split a remote object into download ranges.

    Objects at or below ``huge_threshold`` are fetched as one range.
    """
    if object_size <= 0:
        return []
    if object_size <= huge_threshold:
        return [ByteRange(0, object_size - 1)]
    return [
        ByteRange(start, min(start + range_size, object_size) - 1)
        for start in range(0, object_size, range_size)
    ]
