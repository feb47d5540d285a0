"""Media record client.

Reads media records, persists status/progress, duration and the final
transcript, and hands completed transcripts to the downstream analysis
service. The web application owns the database; this core talks to it
through internal HTTP endpoints.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import httpx

from session_transcriber.status import MediaStatus
from session_transcriber.utils.errors import StorageError

logger = logging.getLogger(__name__)


@dataclass
class MediaItem:
    """The subset of an uploaded media record this core reads and writes."""

    id: str
    owner_id: str
    filename: str
    status: MediaStatus
    local_path: str | None = None
    remote_key: str | None = None
    size_bytes: int | None = None
    duration_seconds: float | None = None
    progress: int = 0
    session_metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = ""
    updated_at: str = ""

    def __post_init__(self) -> None:
        if self.local_path and self.remote_key:
            raise ValueError(
                "MediaItem cannot have both 'local_path' and 'remote_key'"
            )

    @classmethod
    def from_record(cls, body: dict[str, Any]) -> MediaItem:
        """Deserialize and validate a media record.

        Raises:
            ValueError: If required fields are missing or invalid.
        """
        media_id = body.get("id")
        if media_id is None or media_id == "":
            raise ValueError("Missing 'id' in media record")

        owner_id = body.get("owner_id")
        if owner_id is None or owner_id == "":
            raise ValueError("Missing 'owner_id' in media record")

        filename = body.get("filename")
        if not filename or not isinstance(filename, str):
            raise ValueError("Missing or invalid 'filename' in media record")

        raw_status = body.get("status", MediaStatus.UPLOADED.value)
        try:
            status = MediaStatus(raw_status)
        except ValueError as exc:
            raise ValueError(f"Invalid 'status': '{raw_status}'") from exc

        duration = body.get("duration_seconds")
        size = body.get("size_bytes")
        return cls(
            id=str(media_id),
            owner_id=str(owner_id),
            filename=filename,
            status=status,
            local_path=body.get("local_path") or None,
            remote_key=body.get("remote_key") or None,
            size_bytes=int(size) if size is not None else None,
            duration_seconds=float(duration) if duration is not None else None,
            progress=int(body.get("progress", 0)),
            session_metadata=body.get("session_metadata") or {},
            created_at=body.get("created_at", ""),
            updated_at=body.get("updated_at", ""),
        )


class MediaClient:
    """Client for media records via the web application's internal API.

    Reads configuration from environment variables:
        MEDIA_API_URL, MEDIA_API_SECRET
    """

    def __init__(
        self,
        api_url: str | None = None,
        internal_secret: str | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = (api_url or os.environ.get("MEDIA_API_URL", "")).rstrip(
            "/"
        )
        self.internal_secret = internal_secret or os.environ.get(
            "MEDIA_API_SECRET", ""
        )

        if not self.api_url:
            raise StorageError("MEDIA_API_URL is required", operation="init")
        if not self.internal_secret:
            raise StorageError("MEDIA_API_SECRET is required", operation="init")

        self._client = http_client or httpx.AsyncClient(timeout=30.0)

    def _headers(self) -> dict[str, str]:
        """Build authentication headers for internal endpoints."""
        return {
            "X-Internal-Secret": self.internal_secret,
            "Content-Type": "application/json",
        }

    async def close(self) -> None:
        """Close the shared HTTP client and release connection pool."""
        await self._client.aclose()

    async def _post(
        self, path: str, payload: dict[str, Any], media_id: str, operation: str
    ) -> None:
        url = f"{self.api_url}{path}"
        try:
            response = await self._client.post(
                url, headers=self._headers(), json=payload
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StorageError(
                f"{operation} failed for media '{media_id}': "
                f"HTTP {exc.response.status_code}",
                media_id=media_id,
                operation=operation,
            ) from exc
        except httpx.RequestError as exc:
            raise StorageError(
                f"{operation} failed for media '{media_id}': {exc}",
                media_id=media_id,
                operation=operation,
            ) from exc

    async def get_media(self, media_id: str) -> MediaItem:
        """Fetch a media record.

        Raises:
            StorageError: If the record cannot be read or is malformed.
        """
        url = f"{self.api_url}/internal/media/{media_id}"
        try:
            response = await self._client.get(url, headers=self._headers())
            response.raise_for_status()
            return MediaItem.from_record(response.json())
        except httpx.HTTPStatusError as exc:
            raise StorageError(
                f"get_media failed for media '{media_id}': "
                f"HTTP {exc.response.status_code}",
                media_id=media_id,
                operation="get_media",
            ) from exc
        except httpx.RequestError as exc:
            raise StorageError(
                f"get_media failed for media '{media_id}': {exc}",
                media_id=media_id,
                operation="get_media",
            ) from exc
        except ValueError as exc:
            raise StorageError(
                f"Malformed media record '{media_id}': {exc}",
                media_id=media_id,
                operation="get_media",
            ) from exc

    async def update_status(
        self,
        media_id: str,
        status: MediaStatus,
        progress: int | None = None,
        error_message: str | None = None,
    ) -> None:
        """Update a media item's status and progress.

        Args:
            media_id: The media identifier.
            status: New lifecycle status.
            progress: Percent complete, 0-100.
            error_message: Human-readable failure description (on failure).

        Raises:
            StorageError: If the API call fails.
        """
        payload: dict[str, Any] = {
            "media_id": media_id,
            "status": status.value,
            "updated_at": datetime.now(UTC).isoformat(),
        }
        if progress is not None:
            payload["progress"] = progress
        if error_message is not None:
            payload["error_message"] = error_message
        await self._post(
            "/internal/media-status", payload, media_id, "update_status"
        )

    async def set_duration(self, media_id: str, duration_seconds: float) -> None:
        """Record the probed duration of a media item."""
        await self._post(
            "/internal/media-duration",
            {"media_id": media_id, "duration_seconds": duration_seconds},
            media_id,
            "set_duration",
        )

    async def save_transcript(
        self,
        media_id: str,
        text: str,
        duration_seconds: float,
        word_count: int,
        words_per_minute: int,
    ) -> None:
        """Persist the final transcript and mark the item completed.

        Transcript, metrics and the ``completed``/100 status travel in one
        request, so a stored transcript always belongs to a completed item.
        """
        payload: dict[str, Any] = {
            "media_id": media_id,
            "transcript": text,
            "duration_seconds": duration_seconds,
            "word_count": word_count,
            "words_per_minute": words_per_minute,
            "status": MediaStatus.COMPLETED.value,
            "progress": 100,
        }
        await self._post(
            "/internal/media-transcript", payload, media_id, "save_transcript"
        )

    async def publish_transcript_ready(self, event: dict[str, Any]) -> None:
        """Hand a completed transcript to the downstream analysis service.

        Args:
            event: Dict with media_id, transcript_text, measured_duration
                and session_metadata.
        """
        media_id = str(event.get("media_id", "unknown"))
        await self._post(
            "/internal/transcript-ready",
            event,
            media_id,
            "publish_transcript_ready",
        )
