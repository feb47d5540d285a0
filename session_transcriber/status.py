"""Media processing lifecycle: status enum, transition rules and tracker.

The status persisted on a media record is the only error signal surfaced
to callers, so each fatal failure kind maps to its own terminal status.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from session_transcriber.utils.errors import (
    AuthError,
    FileMissingError,
    PipelineError,
    QuotaError,
)

logger = logging.getLogger(__name__)


class MediaStatus(str, Enum):
    """Closed set of lifecycle states for a media item."""

    UPLOADED = "uploaded"
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    QUOTA_EXCEEDED = "quota_exceeded"
    API_KEY_INVALID = "api_key_invalid"
    FILE_MISSING = "file_missing"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[MediaStatus] = frozenset(
    {
        MediaStatus.COMPLETED,
        MediaStatus.FAILED,
        MediaStatus.QUOTA_EXCEEDED,
        MediaStatus.API_KEY_INVALID,
        MediaStatus.FILE_MISSING,
    }
)

# Terminal -> queued is only reachable through an explicit resubmission.
_TRANSITIONS: dict[MediaStatus, frozenset[MediaStatus]] = {
    MediaStatus.UPLOADED: frozenset({MediaStatus.QUEUED}),
    MediaStatus.QUEUED: frozenset({MediaStatus.PROCESSING}),
    MediaStatus.PROCESSING: TERMINAL_STATUSES,
    MediaStatus.COMPLETED: frozenset({MediaStatus.QUEUED}),
    MediaStatus.FAILED: frozenset({MediaStatus.QUEUED}),
    MediaStatus.QUOTA_EXCEEDED: frozenset({MediaStatus.QUEUED}),
    MediaStatus.API_KEY_INVALID: frozenset({MediaStatus.QUEUED}),
    MediaStatus.FILE_MISSING: frozenset({MediaStatus.QUEUED}),
}


class InvalidTransitionError(PipelineError):
    """Raised when a status change violates the lifecycle."""

    def __init__(
        self,
        current: MediaStatus,
        target: MediaStatus,
        media_id: str | None = None,
    ) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Invalid status transition {current.value} -> {target.value}",
            media_id,
        )


def can_transition(current: MediaStatus, target: MediaStatus) -> bool:
    """Return True if ``current -> target`` is a legal lifecycle step."""
    return target in _TRANSITIONS[current]


def require_transition(
    current: MediaStatus, target: MediaStatus, media_id: str | None = None
) -> None:
    """Raise InvalidTransitionError unless ``current -> target`` is legal."""
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target, media_id)


def status_for_error(exc: BaseException) -> MediaStatus:
    """Map a pipeline failure to the terminal status an operator sees."""
    if isinstance(exc, FileMissingError):
        return MediaStatus.FILE_MISSING
    if isinstance(exc, AuthError):
        return MediaStatus.API_KEY_INVALID
    if isinstance(exc, QuotaError):
        return MediaStatus.QUOTA_EXCEEDED
    return MediaStatus.FAILED


class StatusTracker:
    """Persists status and progress for one job, enforcing the lifecycle.

    Every update is awaited before the pipeline continues, so a reader
    polling the media record never observes progress going backwards.

    Args:
        media_id: The media item this tracker writes to.
        media_client: Client exposing ``update_status`` (MediaClient).
        current: Status the record holds when the tracker is created.
    """

    def __init__(
        self,
        media_id: str,
        media_client: Any,
        current: MediaStatus = MediaStatus.QUEUED,
    ) -> None:
        self.media_id = media_id
        self._client = media_client
        self.status = current
        self.progress = 0

    async def _move(
        self,
        target: MediaStatus,
        progress: int,
        error_message: str | None = None,
    ) -> None:
        require_transition(self.status, target, self.media_id)
        await self._client.update_status(
            media_id=self.media_id,
            status=target,
            progress=progress,
            error_message=error_message,
        )
        self.status = target
        self.progress = progress

    async def mark_queued(self) -> None:
        """Explicit (re)submission, the only way back to ``queued``.

        A record still showing queued or processing was left behind by a
        worker that no longer holds it, so it is requeued as well.
        """
        if self.status in (MediaStatus.QUEUED, MediaStatus.PROCESSING):
            logger.warning(
                "Requeueing media %s left in status %s",
                self.media_id,
                self.status.value,
            )
            self.status = MediaStatus.FAILED
        await self._move(MediaStatus.QUEUED, 0)

    async def begin(self) -> None:
        """Enter processing with progress reset to 0."""
        await self._move(MediaStatus.PROCESSING, 0)

    async def advance(self, progress: int) -> None:
        """Persist a new progress value; regressions are ignored."""
        if self.status is not MediaStatus.PROCESSING:
            raise InvalidTransitionError(
                self.status, MediaStatus.PROCESSING, self.media_id
            )
        progress = max(0, min(100, int(progress)))
        if progress <= self.progress:
            return
        await self._client.update_status(
            media_id=self.media_id,
            status=MediaStatus.PROCESSING,
            progress=progress,
        )
        self.progress = progress

    async def complete(self, **transcript: Any) -> None:
        """Store the transcript together with ``completed``/100.

        ``transcript`` holds the keyword arguments of
        ``MediaClient.save_transcript`` other than ``media_id``.
        """
        require_transition(self.status, MediaStatus.COMPLETED, self.media_id)
        await self._client.save_transcript(media_id=self.media_id, **transcript)
        self.status = MediaStatus.COMPLETED
        self.progress = 100

    async def fail(self, status: MediaStatus, error_message: str) -> None:
        """Record a terminal failure status."""
        if status is MediaStatus.COMPLETED or not status.is_terminal:
            raise ValueError(f"Not a failure status: {status.value}")
        await self._move(status, self.progress, error_message=error_message)
