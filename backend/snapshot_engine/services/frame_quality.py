"""
Frame quality validation for automatic snapshot extraction

Rejects black or blank frames (fade-ins, decoder warm-up, camera still
initializing) before they are uploaded as a camera snapshot. The check is a
mean luma over a strided pixel sample, which is cheap enough to run on every
candidate frame at native resolution.
"""
import logging
from enum import Enum
from typing import Optional

import numpy as np

from snapshot_engine.core.config import settings
from snapshot_engine.services.frame_decoder import FrameBuffer

logger = logging.getLogger(__name__)

# ITU-R BT.601 luma weights
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)

BLACK_LUMA_THRESHOLD = 15.0  # 0-255 scale
SAMPLE_STRIDE = 10  # every 10th pixel, i.e. a 10% sample


class FrameQuality(str, Enum):
    """Verdict for a rendered frame"""
    ACCEPTABLE = "acceptable"
    BLACK = "black"


class FrameQualityValidator:
    """
    Classifies frames as ACCEPTABLE or BLACK.

    Pure and deterministic: the same buffer always yields the same verdict.

    Attributes:
        black_threshold: Average luma below which a frame is BLACK
        sample_stride: Sample every Nth pixel in row-major order
    """

    def __init__(
        self,
        black_threshold: Optional[float] = None,
        sample_stride: Optional[int] = None,
    ):
        self.black_threshold = (
            settings.FRAME_BLACK_LUMA_THRESHOLD if black_threshold is None else black_threshold
        )
        self.sample_stride = settings.FRAME_SAMPLE_STRIDE if sample_stride is None else sample_stride
        if self.sample_stride < 1:
            raise ValueError("sample_stride must be at least 1")

    def average_luma(self, buffer: Optional[FrameBuffer]) -> Optional[float]:
        """
        Mean luma of the sampled pixels.

        Returns:
            Average luma on a 0-255 scale, or None for a missing,
            zero-dimension or malformed buffer
        """
        samples = self._sample(buffer)
        if samples is None:
            return None
        return float((samples[:, :3].astype(np.float64) @ LUMA_WEIGHTS).mean())

    def assess(self, buffer: Optional[FrameBuffer]) -> FrameQuality:
        """
        Classify a frame.

        Args:
            buffer: Rendered RGBA frame

        Returns:
            FrameQuality.BLACK when the frame is too dark or cannot be
            measured, FrameQuality.ACCEPTABLE otherwise
        """
        luma = self.average_luma(buffer)
        if luma is None:
            logger.debug(
                "Frame buffer unusable, treating as black",
                extra={"event_type": "frame_quality_unusable"}
            )
            return FrameQuality.BLACK

        quality = FrameQuality.BLACK if luma < self.black_threshold else FrameQuality.ACCEPTABLE
        logger.debug(
            f"Frame assessed as {quality.value} (luma={luma:.2f})",
            extra={
                "event_type": "frame_quality_assessed",
                "average_luma": luma,
                "threshold": self.black_threshold,
                "quality": quality.value,
            }
        )
        return quality

    def _sample(self, buffer: Optional[FrameBuffer]) -> Optional[np.ndarray]:
        if buffer is None or buffer.pixels is None:
            return None
        if buffer.width <= 0 or buffer.height <= 0:
            return None

        pixels = np.asarray(buffer.pixels)
        if pixels.ndim != 3 or pixels.shape[2] < 3:
            return None
        if pixels.shape[0] != buffer.height or pixels.shape[1] != buffer.width:
            return None

        flat = pixels.reshape(-1, pixels.shape[2])
        samples = flat[::self.sample_stride]
        if samples.shape[0] == 0:
            return None
        return samples
