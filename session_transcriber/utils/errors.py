"""Custom exception hierarchy for the transcription pipeline.

All exceptions inherit from PipelineError, enabling targeted handling
at pipeline boundaries while preserving specific failure context.
"""


class PipelineError(Exception):
    """Base exception for all transcription pipeline errors."""

    def __init__(self, message: str, media_id: str | None = None) -> None:
        self.media_id = media_id
        super().__init__(message)

    def __str__(self) -> str:
        if self.media_id:
            return f"[media={self.media_id}] {super().__str__()}"
        return super().__str__()


class FileMissingError(PipelineError):
    """Raised when media is absent locally and under every remote key."""

    def __init__(
        self,
        message: str,
        media_id: str | None = None,
        tried_keys: list[str] | None = None,
    ) -> None:
        self.tried_keys = tried_keys or []
        super().__init__(message, media_id)


class AudioFetchError(PipelineError):
    """Raised when fetching media from object storage fails."""

    def __init__(
        self, message: str, media_id: str | None = None, key: str | None = None
    ) -> None:
        self.key = key
        super().__init__(message, media_id)


class ToolkitError(PipelineError):
    """Raised when an ffmpeg/ffprobe invocation fails."""

    def __init__(
        self,
        message: str,
        media_id: str | None = None,
        input_path: str | None = None,
    ) -> None:
        self.input_path = input_path
        super().__init__(message, media_id)


class ProbeFailedError(ToolkitError):
    """Raised when the media duration cannot be determined."""


class SegmentationError(ToolkitError):
    """Raised when extracting a segment fails."""


class ASRError(PipelineError):
    """Raised when automatic speech recognition fails."""

    def __init__(
        self,
        message: str,
        media_id: str | None = None,
        provider: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(message, media_id)


class TransientASRError(ASRError):
    """Timeout, connection failure or 5xx. Safe to retry."""


class AuthError(ASRError):
    """Invalid or missing credentials for the speech-to-text service."""


class QuotaError(ASRError):
    """Rate limit or quota exhausted on the speech-to-text service."""


class ServiceUnavailableError(ASRError):
    """Raised without a network call while the circuit breaker is open."""

    def __init__(
        self,
        message: str,
        media_id: str | None = None,
        retry_after_seconds: float = 0.0,
    ) -> None:
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message, media_id)


class TranscriptValidationError(PipelineError):
    """Raised when the assembled transcript is too short to analyse."""

    def __init__(
        self,
        message: str,
        media_id: str | None = None,
        length: int = 0,
    ) -> None:
        self.length = length
        super().__init__(message, media_id)


class JobCancelledError(PipelineError):
    """Raised between segments when a job has been cancelled."""


class StorageError(PipelineError):
    """Raised when storage operations (S3/media record API) fail."""

    def __init__(
        self,
        message: str,
        media_id: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, media_id)
