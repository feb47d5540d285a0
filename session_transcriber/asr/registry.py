"""Speech-to-text provider selection.

``ASR_PROVIDER`` names the engine (default ``whisper``). Each provider maps
to a factory that reads its own credentials from the environment, and
build_transcription_client() wraps the chosen engine in the retrying,
circuit-breaking client the pipeline uses.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable

from session_transcriber.asr.client import TranscriptionClient
from session_transcriber.asr.health import HealthGate
from session_transcriber.asr.interface import TranscriptionEngine
from session_transcriber.asr.whisper import WhisperEngine
from session_transcriber.utils.errors import ASRError

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "whisper"

ASR_ENGINES: dict[str, Callable[..., TranscriptionEngine]] = {
    "whisper": WhisperEngine,
}


def resolve_provider(provider: str | None = None) -> str:
    """Normalized provider name: the argument, then ASR_PROVIDER, then the default."""
    name = provider or os.environ.get("ASR_PROVIDER") or DEFAULT_PROVIDER
    return name.strip().lower()


def get_asr_engine(provider: str | None = None, **kwargs: object) -> TranscriptionEngine:
    """Instantiate the engine for ``provider``.

    Raises:
        ASRError: If no engine is registered under that name.
    """
    name = resolve_provider(provider)
    factory = ASR_ENGINES.get(name)
    if factory is None:
        raise ASRError(
            f"Unknown ASR provider: '{name}'. "
            f"Available: {', '.join(sorted(ASR_ENGINES))}",
            provider=name,
        )
    engine = factory(**kwargs)
    logger.info("Using '%s' speech-to-text provider", name)
    return engine


def build_transcription_client(
    health_gate: HealthGate,
    provider: str | None = None,
    **engine_kwargs: object,
) -> TranscriptionClient:
    """Engine for the configured provider behind retries and ``health_gate``."""
    return TranscriptionClient(get_asr_engine(provider, **engine_kwargs), health_gate)
