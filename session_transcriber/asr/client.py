"""Retrying, circuit-breaking front end for a transcription engine."""

from __future__ import annotations

import logging

from session_transcriber.asr.health import HealthGate
from session_transcriber.asr.interface import (
    SegmentTranscription,
    TranscriptionEngine,
)
from session_transcriber.utils.errors import (
    ServiceUnavailableError,
    TransientASRError,
)
from session_transcriber.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 2.0


class TranscriptionClient:
    """Sends one bounded segment to the engine with retries.

    Transient failures are retried with exponential backoff and counted
    by the shared HealthGate. Auth, quota and other fatal errors surface
    on the first attempt. While the gate is open every attempt fails
    with ServiceUnavailableError and the engine is never called.

    Args:
        engine: The speech-to-text engine.
        health_gate: Process-wide circuit breaker for this engine.
        max_attempts: Total attempts per segment, including the first.
        base_delay: Backoff delay after the first failed attempt.
    """

    def __init__(
        self,
        engine: TranscriptionEngine,
        health_gate: HealthGate,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    ) -> None:
        self.engine = engine
        self.health_gate = health_gate
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    async def transcribe(self, segment_path: str) -> SegmentTranscription:
        """Transcribe one segment file.

        Returns:
            SegmentTranscription with ``attempts`` set to the number of
            engine calls made.

        Raises:
            ServiceUnavailableError: Circuit open.
            TransientASRError: Transient failures on every attempt.
            AuthError, QuotaError, ASRError: Fatal, never retried.
        """
        attempts = 0

        @retry_with_backoff(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            retryable_exceptions=(TransientASRError,),
        )
        async def _attempt() -> SegmentTranscription:
            nonlocal attempts
            if not self.health_gate.allow_request():
                raise ServiceUnavailableError(
                    f"API unavailable: {self.health_gate.summary()}",
                    retry_after_seconds=self.health_gate.retry_after(),
                )
            attempts += 1
            try:
                result = await self.engine.transcribe(segment_path)
            except TransientASRError as exc:
                self.health_gate.record_failure(str(exc))
                raise
            except BaseException:
                self.health_gate.release()
                raise
            self.health_gate.record_success()
            return result

        try:
            result = await _attempt()
        except Exception as exc:
            exc._attempts = attempts  # type: ignore[attr-defined]
            raise
        result.attempts = attempts
        if attempts > 1:
            logger.info(
                "Transcribed %s after %d attempts", segment_path, attempts
            )
        return result
