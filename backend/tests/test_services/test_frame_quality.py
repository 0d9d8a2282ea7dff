"""
Unit tests for FrameQualityValidator

Tests cover:
- Uniform frames either side of the black threshold
- Strided sampling
- Missing, zero-dimension and malformed buffers
"""
import numpy as np
import pytest

from snapshot_engine.services.frame_decoder import FrameBuffer
from snapshot_engine.services.frame_quality import (
    BLACK_LUMA_THRESHOLD,
    SAMPLE_STRIDE,
    FrameQuality,
    FrameQualityValidator,
)
from tests.mocks import create_black_frame, create_frame_buffer


class TestFrameQualityConstants:

    def test_black_threshold(self):
        assert BLACK_LUMA_THRESHOLD == 15.0

    def test_sample_stride(self):
        assert SAMPLE_STRIDE == 10


class TestAssess:
    """Classification of rendered frames"""

    @pytest.fixture(autouse=True)
    def setup(self):
        self.validator = FrameQualityValidator()

    def test_uniform_luma_14_is_black(self):
        assert self.validator.assess(create_frame_buffer(luma=14)) == FrameQuality.BLACK

    def test_uniform_luma_16_is_acceptable(self):
        assert self.validator.assess(create_frame_buffer(luma=16)) == FrameQuality.ACCEPTABLE

    def test_fully_black_frame(self):
        assert self.validator.assess(create_black_frame()) == FrameQuality.BLACK

    def test_bright_frame(self):
        assert self.validator.assess(create_frame_buffer(luma=200)) == FrameQuality.ACCEPTABLE

    def test_luma_weights_favour_green(self):
        """Pure green is far brighter than pure blue at equal intensity"""
        green = np.zeros((10, 10, 4), dtype=np.uint8)
        green[..., 1] = 40
        blue = np.zeros((10, 10, 4), dtype=np.uint8)
        blue[..., 2] = 40

        assert self.validator.average_luma(FrameBuffer(10, 10, green)) == pytest.approx(40 * 0.587)
        assert self.validator.average_luma(FrameBuffer(10, 10, blue)) == pytest.approx(40 * 0.114)
        assert self.validator.assess(FrameBuffer(10, 10, green)) == FrameQuality.ACCEPTABLE
        assert self.validator.assess(FrameBuffer(10, 10, blue)) == FrameQuality.BLACK

    def test_alpha_channel_is_ignored(self):
        frame = create_frame_buffer(luma=100)
        frame.pixels[..., 3] = 0
        assert self.validator.average_luma(frame) == pytest.approx(100.0)

    def test_deterministic(self):
        frame = create_frame_buffer(luma=20)
        results = {self.validator.assess(frame) for _ in range(5)}
        assert results == {FrameQuality.ACCEPTABLE}


class TestSampling:

    def test_only_every_nth_pixel_is_sampled(self):
        """Bright pixels off the sampling grid do not lift a black frame"""
        pixels = np.zeros((1, 100, 4), dtype=np.uint8)
        pixels[0, :, :3] = 255
        pixels[0, ::10, :3] = 0  # every sampled pixel is black

        validator = FrameQualityValidator(sample_stride=10)

        assert validator.average_luma(FrameBuffer(100, 1, pixels)) == pytest.approx(0.0)
        assert validator.assess(FrameBuffer(100, 1, pixels)) == FrameQuality.BLACK

    def test_stride_one_samples_every_pixel(self):
        pixels = np.zeros((1, 4, 4), dtype=np.uint8)
        pixels[0, 0, :3] = 100

        validator = FrameQualityValidator(sample_stride=1)

        assert validator.average_luma(FrameBuffer(4, 1, pixels)) == pytest.approx(25.0)

    def test_invalid_stride_rejected(self):
        with pytest.raises(ValueError):
            FrameQualityValidator(sample_stride=0)

    def test_custom_threshold(self):
        validator = FrameQualityValidator(black_threshold=50)
        assert validator.assess(create_frame_buffer(luma=40)) == FrameQuality.BLACK


class TestUnusableBuffers:
    """Buffers that cannot be measured are treated as black"""

    @pytest.fixture(autouse=True)
    def setup(self):
        self.validator = FrameQualityValidator()

    def test_none_buffer(self):
        assert self.validator.assess(None) == FrameQuality.BLACK
        assert self.validator.average_luma(None) is None

    def test_zero_width(self):
        frame = FrameBuffer(width=0, height=10, pixels=np.zeros((10, 0, 4), dtype=np.uint8))
        assert self.validator.assess(frame) == FrameQuality.BLACK

    def test_zero_height(self):
        frame = FrameBuffer(width=10, height=0, pixels=np.zeros((0, 10, 4), dtype=np.uint8))
        assert self.validator.assess(frame) == FrameQuality.BLACK

    def test_dimensions_disagree_with_pixels(self):
        frame = FrameBuffer(width=20, height=20, pixels=np.full((10, 10, 4), 200, dtype=np.uint8))
        assert self.validator.assess(frame) == FrameQuality.BLACK

    def test_flat_pixel_array(self):
        frame = FrameBuffer(width=10, height=10, pixels=np.full(400, 200, dtype=np.uint8))
        assert self.validator.assess(frame) == FrameQuality.BLACK

    def test_missing_pixels(self):
        frame = FrameBuffer(width=10, height=10, pixels=None)
        assert self.validator.assess(frame) == FrameQuality.BLACK
