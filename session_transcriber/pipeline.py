"""Main process_media() orchestrator for the transcription pipeline.

Orchestrates: load record -> locate -> probe -> plan -> split ->
transcribe each segment in order -> assemble -> persist -> hand off to
the downstream analysis service.

All-or-nothing: on any failure no transcript is persisted and the media
item ends in the terminal status matching the failure kind.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from typing import Any

from session_transcriber.asr.client import TranscriptionClient
from session_transcriber.media import splitter
from session_transcriber.media.planner import Segmented, needs_segmenting, plan
from session_transcriber.observability.metrics import (
    JobMetrics,
    StageTimer,
    failed_stage,
    log_job_metrics,
)
from session_transcriber.status import MediaStatus, StatusTracker, status_for_error
from session_transcriber.storage.locator import BlobLocator
from session_transcriber.storage.media_client import MediaClient, MediaItem
from session_transcriber.transcript.assembler import (
    AssembledTranscript,
    TranscriptFragment,
    assemble,
)
from session_transcriber.utils.errors import JobCancelledError

logger = logging.getLogger(__name__)

PROGRESS_LOCATED = 10
PROGRESS_TRANSCRIBE_BASE = 30
PROGRESS_TRANSCRIBE_SPAN = 60


@dataclass
class ProcessingError:
    """Details about a processing failure."""

    stage: str
    message: str
    exception_type: str


@dataclass
class ProcessingResult:
    """Result of processing a single media item."""

    status: MediaStatus
    media_id: str
    metrics: JobMetrics
    transcript: AssembledTranscript | None = None
    error: ProcessingError | None = None


def segment_progress(completed: int, total: int) -> int:
    """Progress after ``completed`` of ``total`` segments are transcribed."""
    return round(
        PROGRESS_TRANSCRIBE_BASE + completed / total * PROGRESS_TRANSCRIBE_SPAN
    )


async def process_media(
    media_id: str,
    media_client: MediaClient,
    locator: BlobLocator,
    transcription_client: TranscriptionClient,
    cancel_event: asyncio.Event | None = None,
    work_root: str | None = None,
    queue_wait_time_seconds: float = 0.0,
) -> ProcessingResult:
    """Transcribe one media item end-to-end.

    The media item must already be ``queued``. Never raises: failures are
    logged, persisted as a terminal status and returned in the result.

    Args:
        media_id: Media record identifier.
        media_client: Record store and downstream handoff.
        locator: Resolves the record to a local file.
        transcription_client: Retrying, circuit-breaking ASR client.
        cancel_event: When set, the job stops at the next segment boundary.
        work_root: Parent directory for job-scoped temporary files.
        queue_wait_time_seconds: Time spent queued before processing.

    Returns:
        ProcessingResult with final status, transcript and metrics.
    """
    wall_start = time.monotonic()
    metrics = JobMetrics(
        media_id=media_id,
        status=MediaStatus.PROCESSING.value,
        queue_wait_time_seconds=queue_wait_time_seconds,
    )
    tracker = StatusTracker(media_id, media_client, MediaStatus.QUEUED)
    held_paths: list[str] = []

    try:
        with StageTimer("start", metrics.stage_timings):
            await tracker.begin()
        transcript = await _run_pipeline(
            media_id=media_id,
            media_client=media_client,
            locator=locator,
            transcription_client=transcription_client,
            tracker=tracker,
            metrics=metrics,
            cancel_event=cancel_event,
            work_root=work_root,
            held_paths=held_paths,
        )
    except Exception as exc:
        status = status_for_error(exc)
        stage = failed_stage(metrics.stage_timings) or "unknown"
        error_message = str(exc)

        logger.error(
            "Pipeline failed at stage '%s' for media %s: %s",
            stage,
            media_id,
            error_message,
            exc_info=True,
            extra={"media_id": media_id, "stage": stage},
        )

        if tracker.status is MediaStatus.PROCESSING:
            try:
                await tracker.fail(status, error_message)
            except Exception:
                logger.error(
                    "Failed to record status '%s' for media %s",
                    status.value,
                    media_id,
                    exc_info=True,
                )
        else:
            logger.error(
                "Media %s never entered processing; status left as %s",
                media_id,
                tracker.status.value,
            )

        metrics.status = status.value
        metrics.error_stage = stage
        metrics.error_message = error_message
        metrics.transcription_attempts += getattr(exc, "_attempts", 0)
        metrics.processing_wall_time_seconds = time.monotonic() - wall_start
        log_job_metrics(metrics)

        return ProcessingResult(
            status=status,
            media_id=media_id,
            metrics=metrics,
            error=ProcessingError(
                stage=stage,
                message=error_message,
                exception_type=type(exc).__name__,
            ),
        )
    finally:
        for path in held_paths:
            locator.release(path)

    metrics.status = MediaStatus.COMPLETED.value
    metrics.processing_wall_time_seconds = time.monotonic() - wall_start
    log_job_metrics(metrics)
    return ProcessingResult(
        status=MediaStatus.COMPLETED,
        media_id=media_id,
        metrics=metrics,
        transcript=transcript,
    )


async def _run_pipeline(
    media_id: str,
    media_client: MediaClient,
    locator: BlobLocator,
    transcription_client: TranscriptionClient,
    tracker: StatusTracker,
    metrics: JobMetrics,
    cancel_event: asyncio.Event | None,
    work_root: str | None,
    held_paths: list[str],
) -> AssembledTranscript:
    """Execute the pipeline stages. Raises on failure.

    The located source is appended to ``held_paths`` for the caller to
    release.
    """
    timings = metrics.stage_timings

    with StageTimer("load", timings):
        media = await media_client.get_media(media_id)
    metrics.owner_id = media.owner_id

    with StageTimer("locate", timings):
        local_path = await asyncio.to_thread(locator.locate, media)
        held_paths.append(local_path)
        await tracker.advance(PROGRESS_LOCATED)

    file_size = os.path.getsize(local_path)
    metrics.file_size_bytes = file_size

    with StageTimer("probe", timings):
        duration = await _authoritative_duration(
            media, local_path, file_size, media_client
        )

    with StageTimer("plan", timings):
        strategy = plan(file_size, duration)
    metrics.strategy = "segmented" if isinstance(strategy, Segmented) else "single"
    metrics.media_duration_seconds = duration or 0.0

    if work_root:
        os.makedirs(work_root, exist_ok=True)
    with tempfile.TemporaryDirectory(
        prefix=f"media-{media_id}-", dir=work_root
    ) as tmp_dir:
        segments: list[splitter.Segment] = []
        try:
            with StageTimer("split", timings):
                segments = await asyncio.to_thread(
                    splitter.split, local_path, strategy, duration, tmp_dir
                )
            metrics.segment_count = len(segments)
            logger.info(
                "Media %s: %s plan with %d segment(s)",
                media_id,
                metrics.strategy,
                len(segments),
                extra={"media_id": media_id, "stage": "split"},
            )

            with StageTimer("transcribe", timings):
                fragments = await _transcribe_segments(
                    media_id,
                    segments,
                    transcription_client,
                    tracker,
                    metrics,
                    cancel_event,
                )
        finally:
            splitter.cleanup(segments)

    with StageTimer("assemble", timings):
        transcript = assemble(fragments, media_id=media_id)
    metrics.transcript_chars = len(transcript.text)
    metrics.word_count = transcript.word_count

    with StageTimer("persist", timings):
        await tracker.complete(
            text=transcript.text,
            duration_seconds=transcript.total_duration_seconds,
            word_count=transcript.word_count,
            words_per_minute=transcript.words_per_minute,
        )

    logger.info(
        "Media %s transcribed: %d characters, %.0fs",
        media_id,
        len(transcript.text),
        transcript.total_duration_seconds,
        extra={"media_id": media_id, "stage": "persist"},
    )

    await _hand_off(media, transcript, media_client)
    return transcript


async def _authoritative_duration(
    media: MediaItem,
    local_path: str,
    file_size: int,
    media_client: MediaClient,
) -> float | None:
    """Known duration, probing (and recording it once) when segmenting needs it."""
    if media.duration_seconds is not None or not needs_segmenting(file_size):
        return media.duration_seconds
    duration = await asyncio.to_thread(splitter.probe_duration, local_path)
    await media_client.set_duration(media.id, duration)
    media.duration_seconds = duration
    return duration


async def _transcribe_segments(
    media_id: str,
    segments: list[splitter.Segment],
    transcription_client: TranscriptionClient,
    tracker: StatusTracker,
    metrics: JobMetrics,
    cancel_event: asyncio.Event | None,
) -> list[TranscriptFragment]:
    """Transcribe segments sequentially, in index order."""
    fragments: list[TranscriptFragment] = []
    total = len(segments)
    for i, segment in enumerate(segments):
        if cancel_event is not None and cancel_event.is_set():
            raise JobCancelledError(
                f"Cancelled before segment {i + 1}/{total}", media_id=media_id
            )

        result = await transcription_client.transcribe(segment.path)
        metrics.transcription_attempts += result.attempts
        fragments.append(
            TranscriptFragment(
                index=segment.index,
                text=result.text,
                duration_seconds=result.duration_seconds
                or segment.duration_seconds,
            )
        )
        splitter.cleanup([segment])

        await tracker.advance(segment_progress(i + 1, total))
        logger.info(
            "Media %s: segment %d/%d transcribed (%d chars)",
            media_id,
            i + 1,
            total,
            len(result.text),
            extra={"media_id": media_id, "segment_index": segment.index},
        )
    return fragments


async def _hand_off(
    media: MediaItem, transcript: AssembledTranscript, media_client: Any
) -> None:
    """Notify the analysis service. Failure does not undo completion."""
    event = {
        "media_id": media.id,
        "transcript_text": transcript.text,
        "measured_duration": transcript.total_duration_seconds,
        "session_metadata": media.session_metadata,
    }
    try:
        await media_client.publish_transcript_ready(event)
    except Exception:
        logger.error(
            "Failed to hand off transcript for media %s",
            media.id,
            exc_info=True,
            extra={"media_id": media.id, "stage": "handoff"},
        )
