"""Tests for session_transcriber.transcript.assembler."""

import pytest

from session_transcriber.transcript.assembler import (
    MIN_TRANSCRIPT_CHARS,
    TranscriptFragment,
    assemble,
    count_words,
    words_per_minute,
)
from session_transcriber.utils.errors import TranscriptValidationError

SENTENCE = "The players pressed high and won the ball back quickly. "


def _fragment(index: int, text: str = SENTENCE, duration: float = 240.0) -> TranscriptFragment:
    return TranscriptFragment(index=index, text=text, duration_seconds=duration)


class TestAssemble:
    def test_orders_by_index_regardless_of_arrival(self) -> None:
        fragments = [
            _fragment(2, "third " * 10),
            _fragment(0, "first " * 10),
            _fragment(1, "second " * 10),
        ]

        result = assemble(fragments)

        assert result.text.startswith("first")
        assert result.text.index("second") < result.text.index("third")

    def test_joins_with_single_space_and_skips_empty(self) -> None:
        fragments = [_fragment(0, f"  {SENTENCE}  "), _fragment(1, "   "), _fragment(2, SENTENCE)]

        result = assemble(fragments)

        assert result.text == f"{SENTENCE.strip()} {SENTENCE.strip()}"

    def test_sums_durations_and_word_metrics(self) -> None:
        fragments = [_fragment(0, duration=240.0), _fragment(1, duration=60.0)]

        result = assemble(fragments)

        assert result.total_duration_seconds == 300.0
        assert result.word_count == 20
        assert result.words_per_minute == 4

    def test_too_short_raises(self) -> None:
        with pytest.raises(TranscriptValidationError, match="too short") as exc_info:
            assemble([_fragment(0, "hi")], media_id="m-1")
        assert exc_info.value.length == 2
        assert exc_info.value.media_id == "m-1"

    def test_boundary_length_accepted(self) -> None:
        text = "x" * MIN_TRANSCRIPT_CHARS
        assert assemble([_fragment(0, text)]).text == text

    def test_empty_input_raises(self) -> None:
        with pytest.raises(TranscriptValidationError):
            assemble([])

    def test_duplicate_indices_rejected(self) -> None:
        with pytest.raises(ValueError, match="Duplicate"):
            assemble([_fragment(0), _fragment(0)])


class TestWordMetrics:
    def test_count_words(self) -> None:
        assert count_words("one  two\nthree") == 3
        assert count_words("") == 0

    def test_words_per_minute(self) -> None:
        assert words_per_minute(300, 120.0) == 150

    def test_zero_duration(self) -> None:
        assert words_per_minute(300, 0.0) == 0
