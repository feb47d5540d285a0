"""Speech-to-text engines, retrying client and circuit breaker."""

from session_transcriber.asr.client import TranscriptionClient
from session_transcriber.asr.health import HealthGate
from session_transcriber.asr.registry import build_transcription_client, get_asr_engine

__all__ = [
    "HealthGate",
    "TranscriptionClient",
    "build_transcription_client",
    "get_asr_engine",
]
