"""Ordered reassembly of per-segment transcription results."""

from __future__ import annotations

from dataclasses import dataclass

from session_transcriber.utils.errors import TranscriptValidationError

# Shorter than this cannot support any downstream analysis
MIN_TRANSCRIPT_CHARS = 100


@dataclass(frozen=True)
class TranscriptFragment:
    """Transcription result for the segment at ``index``."""

    index: int
    text: str
    duration_seconds: float


@dataclass(frozen=True)
class AssembledTranscript:
    text: str
    total_duration_seconds: float
    word_count: int
    words_per_minute: int


def count_words(text: str) -> int:
    return len(text.split())


def words_per_minute(word_count: int, duration_seconds: float) -> int:
    if duration_seconds <= 0:
        return 0
    return round(word_count / (duration_seconds / 60))


def assemble(
    fragments: list[TranscriptFragment],
    min_chars: int = MIN_TRANSCRIPT_CHARS,
    media_id: str | None = None,
) -> AssembledTranscript:
    """Join fragments in index order and compute aggregate metrics.

    Fragments are sorted by index whatever order they arrive in, and
    texts are joined with a single space.

    Raises:
        ValueError: If two fragments share an index.
        TranscriptValidationError: If the combined text is shorter than
            ``min_chars``.
    """
    ordered = sorted(fragments, key=lambda f: f.index)
    indices = [f.index for f in ordered]
    if len(set(indices)) != len(indices):
        raise ValueError(f"Duplicate fragment indices: {indices}")

    text = " ".join(f.text.strip() for f in ordered if f.text.strip())
    if len(text) < min_chars:
        raise TranscriptValidationError(
            f"Transcription too short ({len(text)} chars, need {min_chars}) "
            f"- possible processing error",
            media_id=media_id,
            length=len(text),
        )

    total_duration = sum(f.duration_seconds for f in ordered)
    words = count_words(text)
    return AssembledTranscript(
        text=text,
        total_duration_seconds=total_duration,
        word_count=words,
        words_per_minute=words_per_minute(words, total_duration),
    )
