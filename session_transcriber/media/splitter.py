"""Media probing and segmentation using ffprobe/ffmpeg.

Cuts long recordings into bounded-duration MP3 segments (16kHz mono
64kbps, which Whisper accepts), extracts the audio track of small
videos, and assembles very large remote objects from ranged downloads.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass
from typing import Any

from session_transcriber.media.planner import (
    ByteRange,
    Segmented,
    SingleCall,
    Strategy,
    segment_bounds,
)
from session_transcriber.utils.errors import (
    AudioFetchError,
    ProbeFailedError,
    SegmentationError,
    ToolkitError,
)

logger = logging.getLogger(__name__)

TARGET_SAMPLE_RATE = 16000
TARGET_CHANNELS = 1
TARGET_BITRATE = "64k"
MIN_SEGMENT_BYTES = 1000

FFPROBE_TIMEOUT_SECONDS = 60
SEGMENT_TIMEOUT_SECONDS = 120
EXTRACT_TIMEOUT_SECONDS = 600

# Audio containers the service accepts as-is; video and anything else
# has its audio track extracted first
PASSTHROUGH_AUDIO_EXTENSIONS = frozenset(
    {".mp3", ".mpga", ".m4a", ".wav", ".ogg", ".flac"}
)


@dataclass
class Segment:
    """One slice of the source media, ready for transcription.

    ``owned`` segments were created by the splitter and are deleted by
    cleanup(); a single-call segment points at the source file itself.
    """

    index: int
    start_seconds: float
    duration_seconds: float
    path: str
    owned: bool = True


def _require_binary(name: str) -> str:
    """Locate a toolkit binary on PATH.

    Raises:
        ToolkitError: If the binary is not found.
    """
    path = shutil.which(name)
    if path is None:
        raise ToolkitError(f"{name} binary not found on PATH")
    return path


def probe_duration(input_path: str) -> float:
    """Read a media file's duration with ffprobe.

    Args:
        input_path: Path to the audio or video file.

    Returns:
        Duration in seconds.

    Raises:
        ProbeFailedError: If the duration cannot be determined.
    """
    if not os.path.exists(input_path):
        raise ProbeFailedError(
            f"Input file does not exist: {input_path}", input_path=input_path
        )
    ffprobe_path = shutil.which("ffprobe")
    if ffprobe_path is None:
        raise ProbeFailedError(
            "ffprobe binary not found on PATH", input_path=input_path
        )

    cmd = [
        ffprobe_path,
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        input_path,
    ]

    try:
        completed = subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=FFPROBE_TIMEOUT_SECONDS,
        )
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.strip() if exc.stderr else "unknown error"
        raise ProbeFailedError(
            f"Media file is corrupt or unreadable (ffprobe): {stderr}",
            input_path=input_path,
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise ProbeFailedError(
            f"ffprobe timed out after {FFPROBE_TIMEOUT_SECONDS}s",
            input_path=input_path,
        ) from exc

    raw = completed.stdout.strip()
    try:
        duration = float(raw)
    except ValueError as exc:
        raise ProbeFailedError(
            f"ffprobe returned no usable duration: '{raw}'",
            input_path=input_path,
        ) from exc
    if duration <= 0:
        raise ProbeFailedError(
            f"ffprobe returned non-positive duration: {duration}",
            input_path=input_path,
        )
    return duration


def needs_audio_extraction(input_path: str) -> bool:
    """Check whether a file must be converted before a single-call upload."""
    return os.path.splitext(input_path)[1].lower() not in PASSTHROUGH_AUDIO_EXTENSIONS


def _extract_audio(
    ffmpeg_path: str,
    input_path: str,
    output_path: str,
    start_seconds: float | None = None,
    duration_seconds: float | None = None,
    timeout: int = SEGMENT_TIMEOUT_SECONDS,
) -> None:
    cmd = [ffmpeg_path, "-y"]
    if start_seconds is not None and duration_seconds is not None:
        cmd += ["-ss", f"{start_seconds:.3f}", "-t", f"{duration_seconds:.3f}"]
    cmd += [
        "-i", input_path,
        "-vn",
        "-acodec", "libmp3lame",
        "-ab", TARGET_BITRATE,
        "-ar", str(TARGET_SAMPLE_RATE),
        "-ac", str(TARGET_CHANNELS),
        output_path,
    ]

    try:
        subprocess.run(
            cmd,
            check=True,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.CalledProcessError as exc:
        stderr = exc.stderr.strip() if exc.stderr else "unknown error"
        raise SegmentationError(
            f"ffmpeg audio extraction failed: {stderr}",
            input_path=input_path,
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise SegmentationError(
            f"ffmpeg audio extraction timed out after {timeout} seconds",
            input_path=input_path,
        ) from exc

    if (
        not os.path.exists(output_path)
        or os.path.getsize(output_path) <= MIN_SEGMENT_BYTES
    ):
        raise SegmentationError(
            f"ffmpeg produced no usable output file: {output_path}",
            input_path=input_path,
        )


def split(
    input_path: str,
    strategy: Strategy,
    duration_seconds: float | None,
    output_dir: str,
) -> list[Segment]:
    """Cut a media file into ordered segments.

    Args:
        input_path: Local path of the source media.
        strategy: Plan from the chunk planner.
        duration_seconds: Probed duration (required for Segmented).
        output_dir: Job-scoped directory for segment files.

    Returns:
        Segments in index order. Every owned segment exists and is non-empty.
        A single-call audio file is returned unowned; any other single-call
        source is converted to one owned MP3 first.

    Raises:
        SegmentationError: If any extraction fails. Segments created so
            far are deleted before raising.
    """
    if isinstance(strategy, SingleCall):
        if not needs_audio_extraction(input_path):
            return [
                Segment(
                    index=0,
                    start_seconds=0.0,
                    duration_seconds=duration_seconds or 0.0,
                    path=input_path,
                    owned=False,
                )
            ]
        return [_extract_whole(input_path, duration_seconds, output_dir)]

    if not isinstance(strategy, Segmented) or not duration_seconds:
        raise SegmentationError(
            "Segmented split requires a probed duration", input_path=input_path
        )

    ffmpeg_path = _require_binary("ffmpeg")
    os.makedirs(output_dir, exist_ok=True)

    segments: list[Segment] = []
    bounds = segment_bounds(strategy, duration_seconds)
    try:
        for bound in bounds:
            output_path = os.path.join(output_dir, f"segment_{bound.index:04d}.mp3")
            # Register before extracting so a partial file is cleaned up too
            segment = Segment(
                index=bound.index,
                start_seconds=bound.start_seconds,
                duration_seconds=bound.duration_seconds,
                path=output_path,
            )
            segments.append(segment)
            _extract_audio(
                ffmpeg_path,
                input_path,
                output_path,
                bound.start_seconds,
                bound.duration_seconds,
            )
            logger.debug(
                "Created segment %d/%d: %.0fs-%.0fs",
                bound.index + 1,
                len(bounds),
                bound.start_seconds,
                bound.start_seconds + bound.duration_seconds,
            )
    except ToolkitError:
        cleanup(segments)
        raise

    return segments


def _extract_whole(
    input_path: str, duration_seconds: float | None, output_dir: str
) -> Segment:
    """Convert a whole video (or other container) to one owned MP3 segment."""
    ffmpeg_path = _require_binary("ffmpeg")
    os.makedirs(output_dir, exist_ok=True)
    segment = Segment(
        index=0,
        start_seconds=0.0,
        duration_seconds=duration_seconds or 0.0,
        path=os.path.join(output_dir, "audio.mp3"),
    )
    try:
        _extract_audio(
            ffmpeg_path,
            input_path,
            segment.path,
            timeout=EXTRACT_TIMEOUT_SECONDS,
        )
    except ToolkitError:
        cleanup([segment])
        raise
    logger.info("Extracted audio track of %s", os.path.basename(input_path))
    return segment


def cleanup(segments: list[Segment]) -> None:
    """Delete every owned segment file. Missing files are ignored."""
    for segment in segments:
        if not segment.owned:
            continue
        try:
            os.remove(segment.path)
        except FileNotFoundError:
            pass
        except OSError:
            logger.warning("Failed to delete segment %s", segment.path, exc_info=True)


def download_in_ranges(
    storage: Any, key: str, dest_path: str, ranges: list[ByteRange]
) -> str:
    """Assemble a remote object on disk from consecutive byte ranges.

    Only one range is held in memory at a time. A partial file is
    removed if any range fails.

    Args:
        storage: S3Client-like object exposing copy_range_to().
        key: Remote object key.
        dest_path: Local file to write.
        ranges: Contiguous ranges in ascending order.

    Returns:
        The destination path.

    Raises:
        AudioFetchError: If a range fails or returns the wrong length.
    """
    os.makedirs(os.path.dirname(dest_path) or ".", exist_ok=True)
    try:
        with open(dest_path, "wb") as dest:
            for i, byte_range in enumerate(ranges):
                written = storage.copy_range_to(
                    key, byte_range.start, byte_range.end, dest
                )
                if written != byte_range.length:
                    raise AudioFetchError(
                        f"Range {byte_range.start}-{byte_range.end} of '{key}' "
                        f"returned {written} bytes, expected {byte_range.length}",
                        key=key,
                    )
                logger.info(
                    "Downloaded range %d/%d of %s", i + 1, len(ranges), key
                )
    except Exception:
        if os.path.exists(dest_path):
            os.remove(dest_path)
        raise
    return dest_path
