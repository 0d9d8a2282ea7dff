"""
Snapshot uploader

Hands encoded snapshot images to the console's image-upload endpoint and
returns the stable URL it stores them under.

- Multipart POST with the image in the "file" field
- Bearer token authentication when a token is configured
- Transport-level failures retried once (see core.retry.RETRY_UPLOAD)
- HTTP error statuses and malformed responses raise UploadError immediately
"""
import io
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from snapshot_engine.core.config import settings
from snapshot_engine.core.retry import RetryConfig, RETRY_UPLOAD, retry_async

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]

_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


@dataclass
class UploadResult:
    """Result of a successful upload."""
    url: str
    filename: Optional[str] = None
    size_bytes: int = 0


class UploadError(Exception):
    """Raised when an image could not be stored."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def sanitize_filename(filename: str) -> str:
    """
    Replace every character outside [a-zA-Z0-9._-] with an underscore.

    Example:
        "front door (1).jpg" -> "front_door__1_.jpg"
    """
    return _UNSAFE_FILENAME_CHARS.sub("_", filename)


def default_snapshot_filename() -> str:
    """Filename for automatically captured snapshots, e.g. snapshot-1732358400000.jpg"""
    return f"snapshot-{int(time.time() * 1000)}.jpg"


class BaseSnapshotUploader(ABC):
    """
    Interface the extraction coordinator and manual controller upload through.

    Implementations may retry internally; callers assume no retry contract.
    """

    @abstractmethod
    async def upload(
        self,
        image_bytes: bytes,
        filename: Optional[str] = None,
        content_type: str = "image/jpeg",
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """
        Store an image and return its URL.

        Args:
            image_bytes: Encoded image
            filename: Suggested filename (sanitized before sending)
            content_type: MIME type of image_bytes
            on_progress: Optional callback receiving a 0.0-1.0 fraction

        Raises:
            UploadError: If the image could not be stored
        """
        pass


class _ProgressReader(io.BytesIO):
    """BytesIO that reports how much of itself has been read."""

    def __init__(self, data: bytes, on_progress: Optional[ProgressCallback]):
        super().__init__(data)
        self._total = len(data)
        self._on_progress = on_progress
        self._reported = 0.0

    def read(self, size: Optional[int] = -1) -> bytes:
        chunk = super().read(size)
        if self._on_progress is not None and self._total:
            fraction = min(1.0, self.tell() / self._total)
            if fraction > self._reported:
                self._reported = fraction
                try:
                    self._on_progress(fraction)
                except Exception as e:
                    logger.warning(
                        f"Upload progress callback failed: {e}",
                        extra={"event_type": "upload_progress_callback_error", "error": str(e)}
                    )
        return chunk


class HttpSnapshotUploader(BaseSnapshotUploader):
    """
    Uploads snapshots to the console's /sites/upload-image endpoint.

    Attributes:
        endpoint_url: Full URL of the upload endpoint
        api_token: Optional bearer token
        timeout: Per-request timeout in seconds
    """

    def __init__(
        self,
        endpoint_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_config: RetryConfig = RETRY_UPLOAD,
    ):
        """
        Initialize HttpSnapshotUploader.

        Args:
            endpoint_url: Upload endpoint (default settings.UPLOAD_ENDPOINT_URL)
            api_token: Bearer token (default settings.UPLOAD_API_TOKEN)
            timeout: Request timeout (default settings.UPLOAD_TIMEOUT_SECONDS)
            http_client: Optional httpx AsyncClient (created per upload if not provided)
            retry_config: Retry policy for transport failures
        """
        self.endpoint_url = endpoint_url or settings.UPLOAD_ENDPOINT_URL
        self.api_token = api_token if api_token is not None else settings.UPLOAD_API_TOKEN
        self.timeout = timeout if timeout is not None else settings.UPLOAD_TIMEOUT_SECONDS
        self.http_client = http_client
        self.retry_config = retry_config

    def _headers(self) -> dict:
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"bearer {self.api_token}"
        return headers

    async def _post_once(
        self,
        client: httpx.AsyncClient,
        image_bytes: bytes,
        filename: str,
        content_type: str,
        on_progress: Optional[ProgressCallback],
    ) -> httpx.Response:
        reader = _ProgressReader(image_bytes, on_progress)
        return await client.post(
            self.endpoint_url,
            files={"file": (filename, reader, content_type)},
            headers=self._headers(),
            timeout=self.timeout,
        )

    async def upload(
        self,
        image_bytes: bytes,
        filename: Optional[str] = None,
        content_type: str = "image/jpeg",
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        if not image_bytes:
            raise UploadError("Refusing to upload an empty image")

        safe_name = sanitize_filename(filename or default_snapshot_filename())
        start_time = time.time()

        client = self.http_client or httpx.AsyncClient()
        should_close_client = self.http_client is None

        try:
            response = await retry_async(
                self._post_once,
                client,
                image_bytes,
                safe_name,
                content_type,
                on_progress,
                config=self.retry_config,
                operation_name="snapshot_upload",
            )
        except httpx.TimeoutException as e:
            raise UploadError("Upload request timed out") from e
        except httpx.ConnectError as e:
            raise UploadError(f"Connection error: {str(e)}") from e
        except httpx.RequestError as e:
            raise UploadError(f"Request error: {str(e)}") from e
        finally:
            if should_close_client:
                await client.aclose()

        response_time_ms = int((time.time() - start_time) * 1000)

        if not response.is_success:
            logger.warning(
                f"Upload endpoint returned HTTP {response.status_code}",
                extra={
                    "event_type": "snapshot_upload_rejected",
                    "status_code": response.status_code,
                    "upload_filename": safe_name,
                    "response_time_ms": response_time_ms,
                }
            )
            raise UploadError(
                f"Upload failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UploadError("Upload response was not valid JSON", status_code=response.status_code) from e

        url = payload.get("url") if isinstance(payload, dict) else None
        if not isinstance(url, str) or not url:
            raise UploadError("Upload response did not include a url", status_code=response.status_code)

        logger.info(
            "Snapshot uploaded",
            extra={
                "event_type": "snapshot_uploaded",
                "upload_filename": safe_name,
                "size_bytes": len(image_bytes),
                "content_type": content_type,
                "response_time_ms": response_time_ms,
            }
        )
        return UploadResult(url=url, filename=safe_name, size_bytes=len(image_bytes))
