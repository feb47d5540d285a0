"""OpenAI Whisper transcription engine.

Uploads one audio file to the /audio/transcriptions endpoint and
classifies every failure as transient, auth, quota or fatal.
"""

import asyncio
import logging
import os
import re

import httpx

from session_transcriber.asr.interface import (
    SegmentTranscription,
    TranscriptionEngine,
)
from session_transcriber.utils.errors import (
    ASRError,
    AuthError,
    QuotaError,
    TransientASRError,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "whisper-1"
DEFAULT_TIMEOUT_SECONDS = 120.0
TRANSIENT_STATUS_CODES = {408, 409, 500, 502, 503, 504}

# Whisper emits "you you you" for silent or undecodable audio
_HALLUCINATION_PATTERN = re.compile(r"^(you[\s.,!]*)+$", re.IGNORECASE)

_AUDIO_CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".wav": "audio/wav",
    ".webm": "audio/webm",
    ".mp4": "video/mp4",
    ".mpeg": "audio/mpeg",
    ".ogg": "audio/ogg",
    ".flac": "audio/flac",
    ".mpga": "audio/mpeg",
}


def _error_detail(response: httpx.Response) -> tuple[str, str]:
    """Extract (code, message) from an OpenAI error body."""
    try:
        error = response.json().get("error") or {}
    except ValueError:
        return "", response.text
    return str(error.get("code") or error.get("type") or ""), str(
        error.get("message") or response.text
    )


def _read_audio(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


class WhisperEngine(TranscriptionEngine):
    """Whisper REST engine.

    Args:
        api_key: OpenAI API key. Falls back to OPENAI_API_KEY.
        timeout: Per-request timeout in seconds.
        base_url: API base URL. Falls back to OPENAI_BASE_URL.
        model: Whisper model name.
        language: ISO-639-1 language hint.
        http_client: Optional shared AsyncClient (used in tests).
    """

    name = "whisper"

    def __init__(
        self,
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        base_url: str | None = None,
        model: str = DEFAULT_MODEL,
        language: str = "en",
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key or os.environ.get("OPENAI_API_KEY", "")
        if not self._api_key:
            raise AuthError("OPENAI_API_KEY is required", provider=self.name)
        self._timeout = timeout
        self._base_url = (
            base_url or os.environ.get("OPENAI_BASE_URL") or DEFAULT_BASE_URL
        ).rstrip("/")
        self._model = model
        self._language = language
        self._http_client = http_client

    async def transcribe(self, audio_path: str) -> SegmentTranscription:
        """Transcribe an audio file via the Whisper API.

        Raises:
            TransientASRError: On timeout, connection failure, 5xx, or
                hallucinated output.
            AuthError: On 401/403.
            QuotaError: On 429.
            ASRError: On any other rejected request or unreadable file.
        """
        if self._http_client is not None:
            body = await self._post(self._http_client, audio_path)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                body = await self._post(client, audio_path)
        return self._convert_response(body)

    async def _post(self, client: httpx.AsyncClient, audio_path: str) -> dict:
        url = f"{self._base_url}/audio/transcriptions"
        headers = {"Authorization": f"Bearer {self._api_key}"}
        data = {
            "model": self._model,
            "response_format": "verbose_json",
            "temperature": "0.2",
            "language": self._language,
        }
        filename = os.path.basename(audio_path)
        content_type = _AUDIO_CONTENT_TYPES.get(
            os.path.splitext(filename)[1].lower(), "application/octet-stream"
        )

        try:
            audio = await asyncio.to_thread(_read_audio, audio_path)
        except OSError as exc:
            raise ASRError(
                f"Cannot read audio file {audio_path}: {exc}", provider=self.name
            ) from exc

        try:
            response = await client.post(
                url,
                headers=headers,
                data=data,
                files={"file": (filename, audio, content_type)},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransientASRError(
                f"Transcription request timed out after {self._timeout}s",
                provider=self.name,
            ) from exc
        except httpx.TransportError as exc:
            raise TransientASRError(
                f"Transcription request failed: {exc}", provider=self.name
            ) from exc

        self._raise_for_status(response)

        try:
            return response.json()
        except ValueError as exc:
            raise TransientASRError(
                "Transcription response was not valid JSON", provider=self.name
            ) from exc

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status == 200:
            return
        code, message = _error_detail(response)

        if status in (401, 403):
            raise AuthError(
                f"Invalid API key ({status}): {message}",
                provider=self.name,
                status_code=status,
            )
        if status == 429:
            kind = "quota exhausted" if code == "insufficient_quota" else "rate limited"
            raise QuotaError(
                f"Transcription {kind} (429): {message}",
                provider=self.name,
                status_code=status,
            )
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            raise TransientASRError(
                f"Transcription service error ({status}): {message}",
                provider=self.name,
                status_code=status,
            )
        raise ASRError(
            f"Transcription request rejected ({status}): {message}",
            provider=self.name,
            status_code=status,
        )

    def _convert_response(self, body: dict) -> SegmentTranscription:
        text = str(body.get("text") or "").strip()
        if text and _HALLUCINATION_PATTERN.match(text):
            raise TransientASRError(
                "Invalid transcription - repeated text detected",
                provider=self.name,
            )
        try:
            duration = float(body.get("duration") or 0.0)
        except (TypeError, ValueError):
            duration = 0.0
        return SegmentTranscription(text=text, duration_seconds=duration)
