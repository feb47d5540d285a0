"""Abstract transcription engine interface.

Concrete implementations (e.g., Whisper) subclass TranscriptionEngine and
raise the classified errors from utils.errors so callers can decide
what to retry.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class SegmentTranscription:
    """Text and measured duration for one transcribed audio file."""

    text: str
    duration_seconds: float
    attempts: int = 1


class TranscriptionEngine(ABC):
    """Abstract base class for speech-to-text engines.

    Subclasses must implement the transcribe() method and raise:
        TransientASRError for timeouts, connection failures and 5xx,
        AuthError for rejected credentials,
        QuotaError for rate limits and exhausted quota,
        ASRError for any other rejected request.
    """

    name: str = "unknown"

    @abstractmethod
    async def transcribe(self, audio_path: str) -> SegmentTranscription:
        """Transcribe one audio file that fits within the service's limits.

        Args:
            audio_path: Path to an audio (or small video) file.

        Returns:
            SegmentTranscription with text and duration.
        """
