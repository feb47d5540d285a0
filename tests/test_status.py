"""Tests for session_transcriber.status lifecycle rules and tracker."""

from unittest.mock import AsyncMock

import pytest

from session_transcriber.status import (
    TERMINAL_STATUSES,
    InvalidTransitionError,
    MediaStatus,
    StatusTracker,
    can_transition,
    require_transition,
    status_for_error,
)
from session_transcriber.utils.errors import (
    AudioFetchError,
    AuthError,
    FileMissingError,
    JobCancelledError,
    QuotaError,
    SegmentationError,
    ServiceUnavailableError,
    StorageError,
    TranscriptValidationError,
    TransientASRError,
)


class TestMediaStatus:
    def test_values_are_wire_strings(self) -> None:
        assert MediaStatus("quota_exceeded") is MediaStatus.QUOTA_EXCEEDED
        assert MediaStatus.API_KEY_INVALID.value == "api_key_invalid"

    def test_terminal_statuses(self) -> None:
        assert TERMINAL_STATUSES == {
            MediaStatus.COMPLETED,
            MediaStatus.FAILED,
            MediaStatus.QUOTA_EXCEEDED,
            MediaStatus.API_KEY_INVALID,
            MediaStatus.FILE_MISSING,
        }
        assert not MediaStatus.PROCESSING.is_terminal
        assert MediaStatus.FILE_MISSING.is_terminal


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (MediaStatus.UPLOADED, MediaStatus.QUEUED),
            (MediaStatus.QUEUED, MediaStatus.PROCESSING),
            (MediaStatus.PROCESSING, MediaStatus.COMPLETED),
            (MediaStatus.PROCESSING, MediaStatus.QUOTA_EXCEEDED),
            (MediaStatus.FAILED, MediaStatus.QUEUED),
            (MediaStatus.COMPLETED, MediaStatus.QUEUED),
        ],
    )
    def test_allowed(self, current: MediaStatus, target: MediaStatus) -> None:
        assert can_transition(current, target)
        require_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (MediaStatus.UPLOADED, MediaStatus.PROCESSING),
            (MediaStatus.QUEUED, MediaStatus.COMPLETED),
            (MediaStatus.PROCESSING, MediaStatus.QUEUED),
            (MediaStatus.COMPLETED, MediaStatus.PROCESSING),
            (MediaStatus.FAILED, MediaStatus.COMPLETED),
            (MediaStatus.FILE_MISSING, MediaStatus.PROCESSING),
        ],
    )
    def test_rejected(self, current: MediaStatus, target: MediaStatus) -> None:
        assert not can_transition(current, target)
        with pytest.raises(InvalidTransitionError) as exc_info:
            require_transition(current, target, media_id="m-1")
        assert exc_info.value.current is current
        assert exc_info.value.target is target
        assert exc_info.value.media_id == "m-1"

    def test_terminal_statuses_only_leave_to_queued(self) -> None:
        for status in TERMINAL_STATUSES:
            for target in MediaStatus:
                assert can_transition(status, target) == (
                    target is MediaStatus.QUEUED
                )


class TestStatusForError:
    @pytest.mark.parametrize(
        "exc,expected",
        [
            (FileMissingError("x"), MediaStatus.FILE_MISSING),
            (AuthError("x"), MediaStatus.API_KEY_INVALID),
            (QuotaError("x"), MediaStatus.QUOTA_EXCEEDED),
            (TransientASRError("x"), MediaStatus.FAILED),
            (ServiceUnavailableError("x"), MediaStatus.FAILED),
            (SegmentationError("x"), MediaStatus.FAILED),
            (AudioFetchError("x"), MediaStatus.FAILED),
            (TranscriptValidationError("x"), MediaStatus.FAILED),
            (JobCancelledError("x"), MediaStatus.FAILED),
            (RuntimeError("x"), MediaStatus.FAILED),
        ],
    )
    def test_mapping(self, exc: Exception, expected: MediaStatus) -> None:
        assert status_for_error(exc) is expected


class TestStatusTracker:
    @pytest.fixture
    def client(self) -> AsyncMock:
        return AsyncMock()

    async def test_begin_persists_processing_at_zero(self, client) -> None:
        tracker = StatusTracker("m-1", client)
        await tracker.begin()

        client.update_status.assert_awaited_once_with(
            media_id="m-1",
            status=MediaStatus.PROCESSING,
            progress=0,
            error_message=None,
        )
        assert tracker.status is MediaStatus.PROCESSING

    async def test_progress_is_non_decreasing(self, client) -> None:
        tracker = StatusTracker("m-1", client)
        await tracker.begin()
        for value in (10, 40, 25, 40, 70):
            await tracker.advance(value)

        persisted = [
            call.kwargs["progress"] for call in client.update_status.await_args_list
        ]
        assert persisted == [0, 10, 40, 70]
        assert tracker.progress == 70

    async def test_advance_clamps_to_100(self, client) -> None:
        tracker = StatusTracker("m-1", client)
        await tracker.begin()
        await tracker.advance(250)
        assert tracker.progress == 100

    async def test_advance_requires_processing(self, client) -> None:
        tracker = StatusTracker("m-1", client)
        with pytest.raises(InvalidTransitionError):
            await tracker.advance(10)
        client.update_status.assert_not_awaited()

    async def test_complete_saves_transcript_in_one_write(self, client) -> None:
        tracker = StatusTracker("m-1", client)
        await tracker.begin()
        await tracker.complete(
            text="hello", duration_seconds=60.0, word_count=1, words_per_minute=1
        )

        client.save_transcript.assert_awaited_once_with(
            media_id="m-1",
            text="hello",
            duration_seconds=60.0,
            word_count=1,
            words_per_minute=1,
        )
        assert client.update_status.await_count == 1
        assert tracker.status is MediaStatus.COMPLETED
        assert tracker.progress == 100

    async def test_complete_write_failure_keeps_processing(self, client) -> None:
        tracker = StatusTracker("m-1", client)
        await tracker.begin()
        client.save_transcript.side_effect = StorageError("db down")

        with pytest.raises(StorageError):
            await tracker.complete(
                text="hello", duration_seconds=60.0, word_count=1, words_per_minute=1
            )
        assert tracker.status is MediaStatus.PROCESSING

    async def test_complete_requires_processing(self, client) -> None:
        tracker = StatusTracker("m-1", client)
        with pytest.raises(InvalidTransitionError):
            await tracker.complete(text="x")
        client.save_transcript.assert_not_awaited()

    async def test_fail_keeps_progress_and_message(self, client) -> None:
        tracker = StatusTracker("m-1", client)
        await tracker.begin()
        await tracker.advance(42)
        await tracker.fail(MediaStatus.QUOTA_EXCEEDED, "quota gone")

        last = client.update_status.await_args
        assert last.kwargs == {
            "media_id": "m-1",
            "status": MediaStatus.QUOTA_EXCEEDED,
            "progress": 42,
            "error_message": "quota gone",
        }

    async def test_fail_rejects_non_failure_status(self, client) -> None:
        tracker = StatusTracker("m-1", client)
        await tracker.begin()
        with pytest.raises(ValueError):
            await tracker.fail(MediaStatus.COMPLETED, "nope")
        with pytest.raises(ValueError):
            await tracker.fail(MediaStatus.QUEUED, "nope")

    async def test_no_transition_out_of_terminal_except_queued(self, client) -> None:
        tracker = StatusTracker("m-1", client, MediaStatus.COMPLETED)
        with pytest.raises(InvalidTransitionError):
            await tracker.begin()
        await tracker.mark_queued()
        assert tracker.status is MediaStatus.QUEUED
        assert tracker.progress == 0

    async def test_mark_queued_recovers_stale_processing(self, client) -> None:
        tracker = StatusTracker("m-1", client, MediaStatus.PROCESSING)
        await tracker.mark_queued()

        client.update_status.assert_awaited_once_with(
            media_id="m-1",
            status=MediaStatus.QUEUED,
            progress=0,
            error_message=None,
        )

    async def test_status_unchanged_when_persist_fails(self, client) -> None:
        client.update_status.side_effect = RuntimeError("db down")
        tracker = StatusTracker("m-1", client)
        with pytest.raises(RuntimeError):
            await tracker.begin()
        assert tracker.status is MediaStatus.QUEUED
