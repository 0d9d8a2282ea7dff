"""
Unit tests for JPEG encoding and image validation
"""
import io

import numpy as np
import pytest
from PIL import Image

from snapshot_engine.services.frame_encoding import (
    ImageTooLargeError,
    InvalidImageError,
    encode_jpeg,
    validate_image_bytes,
)
from tests.mocks import create_frame_buffer


def _png_bytes(width=20, height=10):
    out = io.BytesIO()
    Image.new("RGB", (width, height), color=(10, 200, 30)).save(out, format="PNG")
    return out.getvalue()


class TestEncodeJpeg:

    def test_returns_jpeg_bytes(self):
        data = encode_jpeg(create_frame_buffer(luma=120, width=32, height=24), quality=90)

        assert data[:2] == b"\xff\xd8"
        with Image.open(io.BytesIO(data)) as img:
            assert img.format == "JPEG"
            assert img.mode == "RGB"
            assert img.size == (32, 24)

    def test_keeps_native_resolution_by_default(self):
        data = encode_jpeg(create_frame_buffer(width=1920, height=1080), quality=90)
        with Image.open(io.BytesIO(data)) as img:
            assert img.size == (1920, 1080)

    def test_max_width_downscales_keeping_aspect(self):
        data = encode_jpeg(create_frame_buffer(width=400, height=200), quality=90, max_width=100)
        with Image.open(io.BytesIO(data)) as img:
            assert img.size == (100, 50)

    def test_higher_quality_is_larger(self):
        rng = np.random.default_rng(seed=7)
        frame = create_frame_buffer(width=64, height=64)
        frame.pixels[..., :3] = rng.integers(0, 255, size=(64, 64, 3), dtype=np.uint8)

        assert len(encode_jpeg(frame, quality=95)) > len(encode_jpeg(frame, quality=30))


class TestValidateImageBytes:

    def test_accepts_png(self):
        assert validate_image_bytes(_png_bytes(20, 10)) == ("PNG", 20, 10)

    def test_accepts_encoded_frame(self):
        image_format, width, height = validate_image_bytes(
            encode_jpeg(create_frame_buffer(width=16, height=8), quality=90)
        )
        assert (image_format, width, height) == ("JPEG", 16, 8)

    def test_rejects_empty_bytes(self):
        with pytest.raises(InvalidImageError):
            validate_image_bytes(b"")

    def test_rejects_non_image(self):
        with pytest.raises(InvalidImageError):
            validate_image_bytes(b"%PDF-1.4 definitely not an image")


class TestImageTooLargeError:

    def test_is_an_invalid_image_error(self):
        error = ImageTooLargeError(size_bytes=20, max_bytes=10)
        assert isinstance(error, InvalidImageError)
        assert error.size_bytes == 20
        assert error.max_bytes == 10
