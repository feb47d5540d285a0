"""Worker entry point for the session transcription pipeline.

Runs the processing queue's worker tasks next to a FastAPI app, served by
uvicorn on the same event loop, for health checks and job submission.
On SIGTERM the server stops accepting requests and the queue gets
SHUTDOWN_TIMEOUT_SECONDS to drain.

Routes:
    GET  /health                  -> ASR circuit summary and queue state
    POST /media/{id}/process      -> submit (body: optional {"priority": n})
    POST /media/{id}/cancel       -> cancel at the next segment boundary
"""

import asyncio
import json
import logging
import os
import signal
import time
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from session_transcriber.asr.client import TranscriptionClient
from session_transcriber.asr.health import HealthGate
from session_transcriber.asr.registry import build_transcription_client
from session_transcriber.observability.logger import setup_logging
from session_transcriber.pipeline import process_media
from session_transcriber.queue.worker import ProcessingJob, ProcessingQueue
from session_transcriber.storage.locator import BlobLocator
from session_transcriber.storage.media_client import MediaClient
from session_transcriber.storage.s3_client import S3Client
from session_transcriber.utils.errors import PipelineError

logger = logging.getLogger(__name__)

# 5s buffer before the orchestrator's SIGKILL at 30s
SHUTDOWN_TIMEOUT_SECONDS = 25

CACHE_SWEEP_INTERVAL_SECONDS = 30 * 60


def create_app(queue: ProcessingQueue, health_gate: HealthGate) -> FastAPI:
    """HTTP surface over the processing queue."""
    app = FastAPI(title="Session Transcriber", version="0.1.0")

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "asr": health_gate.summary(),
            "circuit": health_gate.snapshot().state.value,
            "queue": queue.status(),
        }

    @app.post("/media/{media_id}/process")
    async def submit(media_id: str, request: Request) -> JSONResponse:
        raw = await request.body()
        try:
            body = json.loads(raw) if raw else {}
            if not isinstance(body, dict):
                raise ValueError("Request body must be a JSON object")
            job = ProcessingJob.from_request({**body, "media_id": media_id})
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        try:
            accepted = await queue.submit(job.media_id, job.priority)
        except PipelineError as exc:
            logger.error("Submission failed for media %s: %s", media_id, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc

        if not accepted:
            return JSONResponse({"media_id": media_id, "queued": False}, status_code=409)
        return JSONResponse({"media_id": media_id, "queued": True}, status_code=202)

    @app.post("/media/{media_id}/cancel")
    async def cancel(media_id: str) -> JSONResponse:
        if not queue.cancel(media_id):
            return JSONResponse(
                {"media_id": media_id, "cancelled": False}, status_code=404
            )
        return JSONResponse({"media_id": media_id, "cancelled": True}, status_code=202)

    return app


def build_dispatch(
    media_client: MediaClient,
    locator: BlobLocator,
    transcription_client: TranscriptionClient,
    work_root: str | None = None,
):
    """Create the queue's dispatch function around process_media."""

    async def _dispatch(job: ProcessingJob, cancel_event: asyncio.Event):
        return await process_media(
            job.media_id,
            media_client,
            locator,
            transcription_client,
            cancel_event=cancel_event,
            work_root=work_root,
            queue_wait_time_seconds=time.monotonic() - job.enqueued_monotonic,
        )

    return _dispatch


async def _sweep_cache_periodically(locator: BlobLocator) -> None:
    while True:
        try:
            await asyncio.to_thread(locator.sweep_cache)
        except OSError:
            logger.warning("Cache sweep failed", exc_info=True)
        await asyncio.sleep(CACHE_SWEEP_INTERVAL_SECONDS)


async def _run(
    queue: ProcessingQueue,
    media_client: MediaClient,
    health_gate: HealthGate,
    locator: BlobLocator,
) -> None:
    """Serve HTTP and run the worker tasks until a shutdown signal."""
    port = int(os.environ.get("PORT", "8080"))
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(queue, health_gate),
            host="0.0.0.0",
            port=port,
            log_config=None,
        )
    )

    loop = asyncio.get_running_loop()

    def _shutdown() -> None:
        logger.info("Received shutdown signal")
        server.should_exit = True

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _shutdown)

    queue.start()
    sweeper = asyncio.create_task(_sweep_cache_periodically(locator))
    logger.info("HTTP server starting on port %d", port)

    try:
        await server.serve()
    finally:
        sweeper.cancel()
        try:
            await asyncio.wait_for(queue.join(), timeout=SHUTDOWN_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning(
                "Queue did not drain within %ss, cancelling workers",
                SHUTDOWN_TIMEOUT_SECONDS,
            )
        await queue.stop()
        await media_client.close()


def main() -> None:
    """Build the services and run the worker until shutdown."""
    setup_logging()
    logger.info("Session transcriber starting")

    media_client = MediaClient()
    locator = BlobLocator(S3Client())
    health_gate = HealthGate()
    transcription_client = build_transcription_client(health_gate)
    queue = ProcessingQueue(
        build_dispatch(media_client, locator, transcription_client),
        media_client,
    )

    asyncio.run(_run(queue, media_client, health_gate, locator))


if __name__ == "__main__":
    main()
