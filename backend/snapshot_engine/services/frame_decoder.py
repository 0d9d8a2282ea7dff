"""
FrameDecoder for seeking into a video and rendering single frames

Provides functionality to:
- Open a local file or remote URL with PyAV and report its dimensions and duration
- Seek to a timestamp and render the decoded frame as an RGBA pixel buffer
- Classify FFmpeg failures into a small set of decode error causes

All blocking PyAV work runs on a single-worker thread pool, so a decoder
instance never services two captures at once, whichever caller issued them.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional, Union

import av
import numpy as np

from snapshot_engine.core.config import settings

logger = logging.getLogger(__name__)

# Frames whose presentation time is within this window below the target
# count as the target frame
FRAME_TIME_EPSILON = 1e-3

# FFmpeg reports container duration in AV_TIME_BASE units
AV_TIME_BASE = 1_000_000


class DecodeErrorCause(str, Enum):
    """Why a video could not be prepared or a frame could not be captured"""
    UNSUPPORTED_FORMAT = "unsupported_format"
    DECODE_FAILURE = "decode_failure"
    NETWORK_ERROR = "network_error"
    ABORTED = "aborted"
    TIMEOUT = "timeout"


USER_MESSAGES = {
    DecodeErrorCause.UNSUPPORTED_FORMAT: (
        "Video codec not compatible with the video decoder. "
        "Your video is uploaded, upload the camera snapshot manually."
    ),
    DecodeErrorCause.DECODE_FAILURE: (
        "Video codec not compatible with the video decoder. "
        "The video format cannot be decoded."
    ),
    DecodeErrorCause.NETWORK_ERROR: (
        "Network error while loading video. Please check your connection and try again."
    ),
    DecodeErrorCause.ABORTED: "Video loading was interrupted. Please try again.",
    DecodeErrorCause.TIMEOUT: (
        "Video took too long to respond. Please capture the snapshot manually."
    ),
}


class DecodeError(Exception):
    """Raised when the decoder cannot prepare a source or capture a frame"""

    def __init__(self, cause: DecodeErrorCause, message: str):
        super().__init__(message)
        self.cause = cause
        self.message = message

    @property
    def user_message(self) -> str:
        """Message suitable for showing to the person supplying the video"""
        return USER_MESSAGES[self.cause]

    def __repr__(self) -> str:
        return f"DecodeError(cause={self.cause.value!r}, message={self.message!r})"


@dataclass(frozen=True)
class VideoSourceRef:
    """
    Immutable handle to the video a session extracts from.

    Attributes:
        location: Local file path or remote URL passed to the demuxer
        is_local: True for an ephemeral local file, False for a remote URL
    """
    location: str
    is_local: bool

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "VideoSourceRef":
        return cls(location=str(path), is_local=True)

    @classmethod
    def from_url(cls, url: str) -> "VideoSourceRef":
        return cls(location=url, is_local=False)

    @classmethod
    def prefer_local(
        cls,
        local_path: Optional[Union[str, Path]] = None,
        url: Optional[str] = None,
    ) -> "VideoSourceRef":
        """
        Build a ref from whichever locations the caller has, preferring the
        local copy of the video over the remote URL.

        Raises:
            ValueError: If neither location is given
        """
        if local_path:
            return cls.from_path(local_path)
        if url:
            return cls.from_url(url)
        raise ValueError("A local video path or a video URL is required")


@dataclass
class VideoInfo:
    """Native properties of a prepared video"""
    width: int
    height: int
    duration_seconds: float


@dataclass
class FrameBuffer:
    """
    Raw frame rendered at native resolution.

    Attributes:
        width: Frame width in pixels
        height: Frame height in pixels
        pixels: (height, width, 4) uint8 RGBA array
    """
    width: int
    height: int
    pixels: np.ndarray


def classify_av_error(error: BaseException) -> DecodeError:
    """
    Map a PyAV/OS exception to a DecodeError with the matching cause.

    Args:
        error: Exception raised while opening, seeking or decoding

    Returns:
        DecodeError carrying the classified cause and the original message
    """
    if isinstance(error, DecodeError):
        return error

    message = str(error) or type(error).__name__

    if isinstance(error, av.error.ExitError):
        cause = DecodeErrorCause.ABORTED
    elif isinstance(error, (
        av.error.InvalidDataError,
        av.error.DecoderNotFoundError,
        av.error.DemuxerNotFoundError,
        av.error.PatchWelcomeError,
    )):
        cause = DecodeErrorCause.UNSUPPORTED_FORMAT
    elif isinstance(error, (av.error.HTTPError, av.error.HTTPClientError, OSError)):
        cause = DecodeErrorCause.NETWORK_ERROR
    else:
        cause = DecodeErrorCause.DECODE_FAILURE

    return DecodeError(cause, message)


class BaseFrameDecoder(ABC):
    """
    Abstract decoder interface used by the extraction coordinator and the
    manual capture controller.

    Implementations must serialize captures: a second seek_and_capture()
    call never overlaps one already in progress.
    """

    @property
    @abstractmethod
    def info(self) -> Optional[VideoInfo]:
        """VideoInfo of the prepared source, or None before prepare()"""
        pass

    @property
    def is_ready(self) -> bool:
        return self.info is not None

    @abstractmethod
    async def prepare(self, source: VideoSourceRef) -> VideoInfo:
        """
        Open the source and wait until it can be seeked.

        Raises:
            DecodeError: If the source cannot be opened within the readiness window
        """
        pass

    @abstractmethod
    async def seek_and_capture(self, timestamp: float) -> FrameBuffer:
        """
        Render the frame at timestamp (clamped to the video duration).

        Raises:
            DecodeError: If seeking or decoding fails or times out
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the opened source and any worker resources"""
        pass


class PyAVFrameDecoder(BaseFrameDecoder):
    """
    FrameDecoder backed by PyAV.

    Key features:
    - Readiness window around opening the source (default 10s)
    - Per-seek timeout (default 5s) and settle delay before rendering (0.15s)
    - Native-resolution RGBA rendering via VideoFrame.to_ndarray

    Attributes:
        readiness_timeout: Seconds allowed for prepare() to complete
        seek_timeout: Seconds allowed for one seek to produce its frame
        settle_delay: Seconds waited after a seek before rendering
    """

    def __init__(
        self,
        readiness_timeout: Optional[float] = None,
        seek_timeout: Optional[float] = None,
        settle_delay: Optional[float] = None,
    ):
        self.readiness_timeout = (
            settings.DECODER_READINESS_TIMEOUT_SECONDS if readiness_timeout is None else readiness_timeout
        )
        self.seek_timeout = settings.DECODER_SEEK_TIMEOUT_SECONDS if seek_timeout is None else seek_timeout
        self.settle_delay = settings.DECODER_SETTLE_DELAY_SECONDS if settle_delay is None else settle_delay

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="frame-decoder")
        self._container = None
        self._stream = None
        self._info: Optional[VideoInfo] = None
        self._source: Optional[VideoSourceRef] = None
        # Bumped on every prepare/close so a late open from an abandoned
        # prepare discards its container instead of installing it
        self._generation = 0

    @property
    def info(self) -> Optional[VideoInfo]:
        return self._info

    @property
    def source(self) -> Optional[VideoSourceRef]:
        return self._source

    async def prepare(self, source: VideoSourceRef) -> VideoInfo:
        self._generation += 1
        generation = self._generation
        self._info = None
        self._source = source

        logger.info(
            "Preparing video source",
            extra={
                "event_type": "decoder_prepare_start",
                "source_location": source.location,
                "is_local": source.is_local,
                "readiness_timeout": self.readiness_timeout,
            }
        )

        loop = asyncio.get_running_loop()
        try:
            info = await asyncio.wait_for(
                loop.run_in_executor(self._executor, self._open_sync, source, generation),
                timeout=self.readiness_timeout,
            )
        except asyncio.TimeoutError:
            self._generation += 1
            error = DecodeError(
                DecodeErrorCause.TIMEOUT,
                f"Video was not ready within {self.readiness_timeout:.1f}s",
            )
            self._log_decode_error("decoder_prepare_failed", error, source=source)
            raise error
        except DecodeError as e:
            self._log_decode_error("decoder_prepare_failed", e, source=source)
            raise

        self._info = info
        logger.info(
            f"Video ready ({info.width}x{info.height}, {info.duration_seconds:.2f}s)",
            extra={
                "event_type": "decoder_ready",
                "width": info.width,
                "height": info.height,
                "duration_seconds": info.duration_seconds,
            }
        )
        return info

    async def seek_and_capture(self, timestamp: float) -> FrameBuffer:
        info = self._info
        if info is None:
            raise RuntimeError("seek_and_capture() called before prepare() completed")

        target = min(max(0.0, float(timestamp)), info.duration_seconds)
        loop = asyncio.get_running_loop()

        try:
            frame = await asyncio.wait_for(
                loop.run_in_executor(self._executor, self._seek_sync, target),
                timeout=self.seek_timeout,
            )
        except asyncio.TimeoutError:
            error = DecodeError(
                DecodeErrorCause.TIMEOUT,
                f"Seek to {target:.2f}s did not complete within {self.seek_timeout:.1f}s",
            )
            self._log_decode_error("decoder_seek_failed", error, timestamp=target)
            raise error
        except DecodeError as e:
            self._log_decode_error("decoder_seek_failed", e, timestamp=target)
            raise

        if self.settle_delay > 0:
            await asyncio.sleep(self.settle_delay)

        pixels = await loop.run_in_executor(self._executor, self._render_sync, frame)
        height, width = pixels.shape[:2]

        logger.debug(
            f"Captured frame at {target:.2f}s",
            extra={
                "event_type": "decoder_frame_captured",
                "timestamp": target,
                "width": width,
                "height": height,
            }
        )
        return FrameBuffer(width=width, height=height, pixels=pixels)

    async def close(self) -> None:
        self._generation += 1
        self._info = None
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(self._executor, self._release_container)
        self._executor.shutdown(wait=False)
        logger.debug("Frame decoder closed", extra={"event_type": "decoder_closed"})

    # ------------------------------------------------------------------
    # Worker-thread helpers
    # ------------------------------------------------------------------

    def _open_sync(self, source: VideoSourceRef, generation: int) -> VideoInfo:
        self._release_container()

        try:
            container = av.open(source.location, timeout=self.readiness_timeout)
        except Exception as e:
            raise classify_av_error(e) from e

        try:
            if not container.streams.video:
                raise DecodeError(DecodeErrorCause.UNSUPPORTED_FORMAT, "No video stream found")

            stream = container.streams.video[0]
            width = stream.codec_context.width
            height = stream.codec_context.height
            if not width or not height:
                raise DecodeError(DecodeErrorCause.UNSUPPORTED_FORMAT, "Video dimensions unavailable")

            duration = _duration_seconds(container, stream)
            if duration is None:
                raise DecodeError(DecodeErrorCause.UNSUPPORTED_FORMAT, "Video duration unavailable")

            first_frame = next(iter(container.decode(stream)), None)
            if first_frame is None:
                raise DecodeError(DecodeErrorCause.DECODE_FAILURE, "Video has no decodable frames")
        except DecodeError:
            container.close()
            raise
        except Exception as e:
            container.close()
            raise classify_av_error(e) from e

        if generation != self._generation:
            container.close()
            raise DecodeError(DecodeErrorCause.ABORTED, "Video preparation was superseded")

        self._container = container
        self._stream = stream
        return VideoInfo(width=width, height=height, duration_seconds=duration)

    def _seek_sync(self, target: float):
        container = self._container
        stream = self._stream
        if container is None or stream is None:
            raise DecodeError(DecodeErrorCause.ABORTED, "Video was released before the seek ran")

        try:
            if stream.time_base:
                container.seek(int(target / stream.time_base), stream=stream, backward=True)
            else:
                container.seek(int(target * AV_TIME_BASE), backward=True)

            last_frame = None
            for frame in container.decode(stream):
                last_frame = frame
                if frame.time is not None and frame.time >= target - FRAME_TIME_EPSILON:
                    return frame
        except Exception as e:
            raise classify_av_error(e) from e

        # Seeking near the end can run out of frames before the target
        if last_frame is None:
            raise DecodeError(DecodeErrorCause.DECODE_FAILURE, f"No frame decoded at {target:.2f}s")
        return last_frame

    def _render_sync(self, frame) -> np.ndarray:
        try:
            return frame.to_ndarray(format="rgba")
        except Exception as e:
            raise classify_av_error(e) from e

    def _release_container(self) -> None:
        container = self._container
        self._container = None
        self._stream = None
        if container is not None:
            try:
                container.close()
            except Exception as e:
                logger.warning(
                    f"Error closing video container: {e}",
                    extra={"event_type": "decoder_close_error", "error": str(e)}
                )

    def _log_decode_error(self, event_type: str, error: DecodeError, **fields) -> None:
        source = fields.pop("source", None)
        extra = {
            "event_type": event_type,
            "cause": error.cause.value,
            "error": error.message,
        }
        if source is not None:
            extra["source_location"] = source.location
        extra.update(fields)
        logger.warning(f"Decode error ({error.cause.value}): {error.message}", extra=extra)


def _duration_seconds(container, stream) -> Optional[float]:
    """Duration from the container header, falling back to the stream's."""
    if container.duration:
        return container.duration / AV_TIME_BASE
    if stream.duration and stream.time_base:
        return float(stream.duration * stream.time_base)
    return None
