"""
JPEG encoding of captured frames and validation of user-supplied images
"""
import io
import logging
from typing import Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from snapshot_engine.services.frame_decoder import FrameBuffer

logger = logging.getLogger(__name__)


class InvalidImageError(ValueError):
    """Raised when bytes offered as a snapshot are not a usable image"""
    pass


def encode_jpeg(buffer: FrameBuffer, quality: int, max_width: Optional[int] = None) -> bytes:
    """
    Encode an RGBA frame buffer as JPEG bytes.

    JPEG has no alpha channel, so the frame is flattened to RGB first.

    Args:
        buffer: Rendered frame
        quality: JPEG quality (1-95)
        max_width: Optional width to downscale to, keeping aspect ratio

    Returns:
        JPEG-encoded bytes
    """
    pixels = np.ascontiguousarray(buffer.pixels, dtype=np.uint8)
    img = Image.fromarray(pixels).convert("RGB")

    if max_width and img.width > max_width:
        ratio = max_width / img.width
        new_size = (max_width, max(1, int(img.height * ratio)))
        img = img.resize(new_size, Image.LANCZOS)

    out = io.BytesIO()
    img.save(out, format="JPEG", quality=quality)
    return out.getvalue()


def validate_image_bytes(data: bytes) -> Tuple[str, int, int]:
    """
    Check that bytes decode as an image.

    Args:
        data: Raw file contents

    Returns:
        Tuple of (format, width, height), e.g. ("PNG", 640, 480)

    Raises:
        InvalidImageError: If the bytes are empty or not a readable image
    """
    if not data:
        raise InvalidImageError("Image is empty")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            image_format = img.format
            width, height = img.size
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise InvalidImageError(f"File is not a readable image: {e}") from e

    if not width or not height:
        raise InvalidImageError("Image has no pixels")

    return image_format or "unknown", width, height


class ImageTooLargeError(InvalidImageError):
    """Raised when a user-supplied image exceeds the upload size limit"""

    def __init__(self, size_bytes: int, max_bytes: int):
        super().__init__(f"Image is {size_bytes} bytes, the limit is {max_bytes} bytes")
        self.size_bytes = size_bytes
        self.max_bytes = max_bytes
