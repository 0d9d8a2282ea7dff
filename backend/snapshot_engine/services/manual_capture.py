"""
Manual snapshot capture

Fallback used once automatic extraction gives up. The user either scrubs
the prepared video and confirms the previewed frame, or uploads an image of
their own. Nothing here is retried and frames are not quality-checked: the
user sees what they confirm.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from snapshot_engine.core.config import settings
from snapshot_engine.core.metrics import record_upload
from snapshot_engine.services.frame_decoder import BaseFrameDecoder, FrameBuffer
from snapshot_engine.services.frame_encoding import (
    ImageTooLargeError,
    InvalidImageError,
    encode_jpeg,
    validate_image_bytes,
)
from snapshot_engine.services.snapshot_uploader import (
    BaseSnapshotUploader,
    ProgressCallback,
    UploadError,
    UploadResult,
    default_snapshot_filename,
)

logger = logging.getLogger(__name__)

# Scrubber starts 15% into the video
DEFAULT_PREVIEW_FRACTION = 0.15


class ManualCaptureError(Exception):
    """Raised when a manual capture step is requested out of order"""
    pass


@dataclass
class ManualPreview:
    """Frame currently shown to the user"""
    timestamp_seconds: float
    buffer: FrameBuffer
    jpeg_bytes: bytes

    @property
    def width(self) -> int:
        return self.buffer.width

    @property
    def height(self) -> int:
        return self.buffer.height


class ManualCaptureController:
    """
    Scrub-and-confirm capture plus direct image upload.

    Shares the decoder with the extraction coordinator; the decoder
    serializes captures, and a lock here keeps preview and confirm from
    interleaving with each other.

    Attributes:
        preview_quality: JPEG quality of previews (default 95)
        snapshot_quality: JPEG quality of confirmed snapshots (default 90)
        max_image_bytes: Size limit for user-supplied images
    """

    def __init__(
        self,
        decoder: BaseFrameDecoder,
        uploader: BaseSnapshotUploader,
        on_accepted: Optional[Callable[[str], None]] = None,
        on_upload_status_change: Optional[Callable[[bool], None]] = None,
        preview_quality: Optional[int] = None,
        snapshot_quality: Optional[int] = None,
        max_image_bytes: Optional[int] = None,
    ):
        self.decoder = decoder
        self.uploader = uploader
        self.on_accepted = on_accepted
        self.on_upload_status_change = on_upload_status_change
        self.preview_quality = settings.PREVIEW_JPEG_QUALITY if preview_quality is None else preview_quality
        self.snapshot_quality = settings.SNAPSHOT_JPEG_QUALITY if snapshot_quality is None else snapshot_quality
        self.max_image_bytes = settings.MAX_EXTERNAL_IMAGE_BYTES if max_image_bytes is None else max_image_bytes

        self._lock = asyncio.Lock()
        self._preview: Optional[ManualPreview] = None

    @property
    def preview(self) -> Optional[ManualPreview]:
        return self._preview

    def reset(self) -> None:
        """Forget the previewed frame (a new video was supplied)."""
        self._preview = None

    def default_preview_timestamp(self) -> float:
        """
        Initial scrubber position.

        Raises:
            ManualCaptureError: If no video is prepared
        """
        info = self.decoder.info
        if info is None:
            raise ManualCaptureError("No video is ready for capture")
        return info.duration_seconds * DEFAULT_PREVIEW_FRACTION

    async def preview_at(self, timestamp: Optional[float] = None) -> ManualPreview:
        """
        Render the frame at timestamp for the user to inspect.

        Args:
            timestamp: Seconds into the video (default 15% of the duration);
                clamped into [0, duration]

        Returns:
            ManualPreview holding the frame and its JPEG rendering

        Raises:
            ManualCaptureError: If no video is prepared
            DecodeError: If the frame cannot be captured
        """
        info = self.decoder.info
        if info is None:
            raise ManualCaptureError("No video is ready for capture")

        if timestamp is None:
            timestamp = self.default_preview_timestamp()
        target = min(max(0.0, float(timestamp)), info.duration_seconds)

        loop = asyncio.get_running_loop()
        async with self._lock:
            buffer = await self.decoder.seek_and_capture(target)
            jpeg_bytes = await loop.run_in_executor(None, encode_jpeg, buffer, self.preview_quality)
            self._preview = ManualPreview(timestamp_seconds=target, buffer=buffer, jpeg_bytes=jpeg_bytes)

        logger.debug(
            f"Manual preview rendered at {target:.2f}s",
            extra={"event_type": "manual_preview_rendered", "timestamp": target}
        )
        return self._preview

    async def confirm(self, on_progress: Optional[ProgressCallback] = None) -> UploadResult:
        """
        Upload the previewed frame as the snapshot.

        Raises:
            ManualCaptureError: If nothing has been previewed
            UploadError: If the upload fails
        """
        preview = self._preview
        if preview is None:
            raise ManualCaptureError("Preview a frame before confirming it")

        loop = asyncio.get_running_loop()
        async with self._lock:
            jpeg_bytes = await loop.run_in_executor(None, encode_jpeg, preview.buffer, self.snapshot_quality)
            result = await self._upload(
                jpeg_bytes,
                filename=default_snapshot_filename(),
                content_type="image/jpeg",
                origin="manual_capture",
                on_progress=on_progress,
            )

        logger.info(
            f"Manual snapshot confirmed at {preview.timestamp_seconds:.2f}s",
            extra={
                "event_type": "manual_snapshot_confirmed",
                "timestamp": preview.timestamp_seconds,
                "size_bytes": len(jpeg_bytes),
            }
        )
        self._notify_accepted(result.url)
        return result

    async def upload_external_image(
        self,
        image_bytes: bytes,
        filename: Optional[str] = None,
        content_type: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> UploadResult:
        """
        Upload an image the user supplied instead of a video frame.

        Args:
            image_bytes: File contents
            filename: Original filename (sanitized by the uploader)
            content_type: Declared MIME type; must be image/*

        Raises:
            InvalidImageError: If the file is not an image
            ImageTooLargeError: If the file exceeds max_image_bytes
            UploadError: If the upload fails
        """
        if not content_type or not content_type.lower().startswith("image/"):
            raise InvalidImageError("Please select an image file")
        if len(image_bytes) > self.max_image_bytes:
            raise ImageTooLargeError(len(image_bytes), self.max_image_bytes)

        image_format, width, height = validate_image_bytes(image_bytes)

        result = await self._upload(
            image_bytes,
            filename=filename or default_snapshot_filename(),
            content_type=content_type,
            origin="external_image",
            on_progress=on_progress,
        )

        logger.info(
            "External snapshot image uploaded",
            extra={
                "event_type": "manual_image_uploaded",
                "image_format": image_format,
                "width": width,
                "height": height,
                "size_bytes": len(image_bytes),
            }
        )
        self._notify_accepted(result.url)
        return result

    async def _upload(
        self,
        image_bytes: bytes,
        filename: str,
        content_type: str,
        origin: str,
        on_progress: Optional[ProgressCallback],
    ) -> UploadResult:
        self._notify_status(True)
        try:
            result = await self.uploader.upload(
                image_bytes,
                filename=filename,
                content_type=content_type,
                on_progress=on_progress,
            )
        except UploadError as e:
            record_upload(origin, "failure")
            logger.warning(
                f"Manual snapshot upload failed: {e}",
                extra={
                    "event_type": "manual_upload_failed",
                    "origin": origin,
                    "error": str(e),
                    "status_code": e.status_code,
                }
            )
            raise
        finally:
            self._notify_status(False)

        record_upload(origin, "success")
        return result

    def _notify_status(self, is_uploading: bool) -> None:
        if self.on_upload_status_change is None:
            return
        try:
            self.on_upload_status_change(is_uploading)
        except Exception as e:
            logger.error(
                f"Upload status callback raised: {e}",
                extra={"event_type": "manual_callback_error", "error": str(e)}
            )

    def _notify_accepted(self, url: str) -> None:
        if self.on_accepted is None:
            return
        try:
            self.on_accepted(url)
        except Exception as e:
            logger.error(
                f"Accepted callback raised: {e}",
                extra={"event_type": "manual_callback_error", "error": str(e)}
            )
