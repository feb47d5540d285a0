"""Bounded-concurrency processing queue with single-flight per media id.

Jobs are ordered by priority (higher first), then by submission order.
A fixed number of worker tasks drain the queue; each runs one job
end-to-end before taking the next.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from session_transcriber.status import StatusTracker

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 3

# dispatch_fn(job, cancel_event) -> ProcessingResult
DispatchFn = Callable[["ProcessingJob", asyncio.Event], Awaitable[Any]]


@dataclass
class ProcessingJob:
    """One submission of a media item for processing."""

    media_id: str
    priority: int = 1
    enqueued_at: str = field(
        default_factory=lambda: datetime.now(UTC).isoformat()
    )
    attempt: int = 1
    enqueued_monotonic: float = field(default_factory=time.monotonic)

    @classmethod
    def from_request(cls, body: dict[str, Any], attempt: int = 1) -> ProcessingJob:
        """Deserialize and validate a submission request body.

        Raises:
            ValueError: If required fields are missing or invalid.
        """
        media_id = body.get("media_id")
        if media_id is None or media_id == "":
            raise ValueError("Missing 'media_id' in request")

        priority = body.get("priority", 1)
        if not isinstance(priority, int) or isinstance(priority, bool):
            raise ValueError(f"Invalid 'priority': '{priority}'. Must be an integer")

        return cls(media_id=str(media_id), priority=priority, attempt=attempt)


class ProcessingQueue:
    """Priority queue feeding a fixed pool of worker tasks.

    At most one job per media id is queued or active at any time; a
    second submission for the same id is ignored until the first one
    finishes. Re-submission after a terminal state starts a fresh job.

    Args:
        dispatch_fn: Async callable(job, cancel_event) running one job.
        media_client: Client used to persist the ``queued`` status.
        concurrency: Number of worker tasks. Falls back to
            WORKER_CONCURRENCY.
    """

    def __init__(
        self,
        dispatch_fn: DispatchFn,
        media_client: Any,
        concurrency: int | None = None,
    ) -> None:
        self._dispatch = dispatch_fn
        self._media_client = media_client
        self.concurrency = concurrency or int(
            os.environ.get("WORKER_CONCURRENCY", DEFAULT_CONCURRENCY)
        )
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._queue: asyncio.PriorityQueue[tuple[int, int, ProcessingJob]] = (
            asyncio.PriorityQueue()
        )
        self._sequence = itertools.count()
        self._pending: set[str] = set()
        self._active: set[str] = set()
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._attempts: dict[str, int] = {}
        self._workers: list[asyncio.Task] = []

    def is_tracked(self, media_id: str) -> bool:
        """True while the media id is queued or being processed."""
        return media_id in self._pending or media_id in self._active

    async def submit(self, media_id: str, priority: int = 1) -> bool:
        """Queue a media item for processing.

        Returns:
            True if a new job was queued, False if one is already queued
            or active for this media id.

        Raises:
            StorageError: If the ``queued`` status cannot be persisted.
        """
        if self.is_tracked(media_id):
            logger.info("Media %s already in queue or processing", media_id)
            return False

        # Claim the id before awaiting so concurrent submits see it
        self._pending.add(media_id)
        attempt = self._attempts.get(media_id, 0) + 1
        job = ProcessingJob(media_id=media_id, priority=priority, attempt=attempt)
        try:
            media = await self._media_client.get_media(media_id)
            tracker = StatusTracker(media_id, self._media_client, media.status)
            await tracker.mark_queued()
        except Exception:
            self._pending.discard(media_id)
            raise

        self._attempts[media_id] = attempt
        self._cancel_events[media_id] = asyncio.Event()
        self._queue.put_nowait((-priority, next(self._sequence), job))
        logger.info(
            "Queued media %s (priority %d, attempt %d, %d waiting)",
            media_id,
            priority,
            attempt,
            self._queue.qsize(),
        )
        return True

    def cancel(self, media_id: str) -> bool:
        """Ask a queued or active job to stop at its next segment boundary.

        Returns:
            True if a job for ``media_id`` was found.
        """
        event = self._cancel_events.get(media_id)
        if event is None:
            return False
        event.set()
        logger.info("Cancellation requested for media %s", media_id)
        return True

    async def _run_job(self, job: ProcessingJob) -> None:
        media_id = job.media_id
        self._pending.discard(media_id)
        self._active.add(media_id)
        cancel_event = self._cancel_events.setdefault(media_id, asyncio.Event())
        logger.info(
            "Starting media %s (%d/%d slots used)",
            media_id,
            len(self._active),
            self.concurrency,
        )
        try:
            await self._dispatch(job, cancel_event)
        except Exception:
            logger.error(
                "Dispatch failed for media %s", media_id, exc_info=True
            )
        finally:
            self._active.discard(media_id)
            self._cancel_events.pop(media_id, None)
            logger.info(
                "Released slot for media %s (%d/%d slots used)",
                media_id,
                len(self._active),
                self.concurrency,
            )

    async def _worker_loop(self, worker_id: int) -> None:
        while True:
            _, _, job = await self._queue.get()
            try:
                await self._run_job(job)
            finally:
                self._queue.task_done()

    def start(self) -> None:
        """Start the worker tasks. Must be called inside a running loop."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker_loop(i), name=f"worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info("Processing queue started with %d workers", self.concurrency)

    async def join(self) -> None:
        """Wait until every queued job has finished."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the worker tasks and wait for them to exit."""
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Processing queue stopped")

    def status(self) -> dict[str, Any]:
        return {
            "queued": self._queue.qsize(),
            "processing": len(self._active),
            "concurrency": self.concurrency,
            "processing_ids": sorted(self._active),
        }
