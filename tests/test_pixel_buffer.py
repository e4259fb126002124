"""
Tests for PixelBuffer primitives and the PNG codec

Run with:
    pytest tests/test_pixel_buffer.py -v
"""

import pytest
import numpy as np
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cardkit.errors import DecodeError, EncodeError, InvalidDimensionsError
from cardkit.pixel_buffer import (
    PixelBuffer,
    decode_image,
    encode_png,
    fit_inside,
    round_half_up,
)


# =============================================================================
# Test Fixtures
# =============================================================================

@pytest.fixture
def rgba_image():
    """Random RGBA buffer with varied alpha"""
    rng = np.random.default_rng(7)
    return PixelBuffer(rng.integers(0, 256, (30, 40, 4), dtype=np.uint8))


@pytest.fixture
def sprite():
    """20x10 transparent buffer with an opaque 4x3 block at x=5..8, y=2..4"""
    pixels = np.zeros((10, 20, 4), dtype=np.uint8)
    pixels[2:5, 5:9] = (200, 100, 50, 255)
    return PixelBuffer(pixels)


# =============================================================================
# Construction & Access
# =============================================================================

class TestConstruction:
    """Test buffer construction and invariants"""

    def test_2d_array_becomes_single_channel(self):
        buffer = PixelBuffer(np.zeros((5, 7), dtype=np.uint8))

        assert buffer.channels == 1
        assert (buffer.width, buffer.height) == (7, 5)

    def test_rejects_non_uint8(self):
        with pytest.raises(ValueError):
            PixelBuffer(np.zeros((5, 5, 4), dtype=np.float32))

    def test_rejects_too_many_channels(self):
        with pytest.raises(ValueError):
            PixelBuffer(np.zeros((5, 5, 5), dtype=np.uint8))

    def test_data_length_matches_dimensions(self, rgba_image):
        assert len(rgba_image.data) == rgba_image.width * rgba_image.height * 4

    def test_zero_area_buffer_is_representable(self):
        buffer = PixelBuffer(np.zeros((10, 0, 4), dtype=np.uint8))

        assert buffer.is_empty
        with pytest.raises(InvalidDimensionsError):
            buffer.require_area("test")

    def test_solid_fills_every_pixel(self):
        buffer = PixelBuffer.solid(3, 2, (1, 2, 3), alpha=4)

        assert buffer.get_pixel(2, 1) == (1, 2, 3, 4)


class TestPixelAccess:
    """Test get/set pixel bounds"""

    def test_set_then_get(self):
        buffer = PixelBuffer.blank(4, 4)
        buffer.set_pixel(3, 2, (10, 20, 30, 40))

        assert buffer.get_pixel(3, 2) == (10, 20, 30, 40)
        assert buffer.pixels[2, 3, 0] == 10

    @pytest.mark.parametrize("x, y", [(-1, 0), (4, 0), (0, 4), (0, -1)])
    def test_out_of_bounds_raises(self, x, y):
        buffer = PixelBuffer.blank(4, 4)

        with pytest.raises(IndexError):
            buffer.get_pixel(x, y)

    def test_set_pixel_checks_channel_count(self):
        buffer = PixelBuffer.blank(4, 4)

        with pytest.raises(ValueError):
            buffer.set_pixel(0, 0, (1, 2, 3))


# =============================================================================
# Channel operations
# =============================================================================

class TestEnsureAlpha:
    """Test alpha channel normalization"""

    def test_rgb_gets_opaque_alpha(self):
        buffer = PixelBuffer(np.full((3, 3, 3), 50, dtype=np.uint8))

        result = buffer.ensure_alpha()

        assert result.channels == 4
        assert np.all(result.pixels[:, :, 3] == 255)
        assert np.all(result.pixels[:, :, :3] == 50)

    def test_idempotent(self, rgba_image):
        once = rgba_image.ensure_alpha()
        twice = once.ensure_alpha()

        np.testing.assert_array_equal(once.pixels, rgba_image.pixels)
        np.testing.assert_array_equal(twice.pixels, once.pixels)

    def test_grey_expands_to_rgb(self):
        buffer = PixelBuffer(np.full((2, 2), 90, dtype=np.uint8))

        result = buffer.ensure_alpha()

        assert result.get_pixel(1, 1) == (90, 90, 90, 255)

    def test_grey_alpha_keeps_alpha(self):
        pixels = np.zeros((2, 2, 2), dtype=np.uint8)
        pixels[:, :, 0] = 60
        pixels[:, :, 1] = 17

        result = PixelBuffer(pixels).ensure_alpha()

        assert result.get_pixel(0, 0) == (60, 60, 60, 17)


class TestGreyscale:
    """Test luma conversion"""

    def test_rgb_channels_equal_and_alpha_kept(self):
        buffer = PixelBuffer.solid(4, 4, (255, 0, 0), alpha=200)

        result = buffer.greyscale()
        r, g, b, a = result.get_pixel(0, 0)

        assert r == g == b
        assert r == pytest.approx(76, abs=1)  # 0.299 * 255
        assert a == 200

    def test_input_not_modified(self, rgba_image):
        before = rgba_image.pixels.copy()

        rgba_image.greyscale()

        np.testing.assert_array_equal(rgba_image.pixels, before)


class TestAlphaMask:
    """Test alpha extraction and replacement"""

    def test_extract_alpha_is_single_channel(self, rgba_image):
        mask = rgba_image.extract_alpha()

        assert mask.channels == 1
        np.testing.assert_array_equal(mask.pixels[:, :, 0], rgba_image.pixels[:, :, 3])

    def test_with_alpha_replaces_only_alpha(self, rgba_image):
        mask = PixelBuffer(np.full((30, 40), 9, dtype=np.uint8))

        result = rgba_image.with_alpha(mask)

        assert np.all(result.pixels[:, :, 3] == 9)
        np.testing.assert_array_equal(result.pixels[:, :, :3], rgba_image.pixels[:, :, :3])

    def test_with_alpha_size_mismatch(self, rgba_image):
        with pytest.raises(ValueError):
            rgba_image.with_alpha(PixelBuffer(np.zeros((3, 3), dtype=np.uint8)))


# =============================================================================
# Trim
# =============================================================================

class TestTrim:
    """Test crop-to-content"""

    def test_trims_to_visible_block(self, sprite):
        trimmed = sprite.trim()

        assert (trimmed.width, trimmed.height) == (4, 3)
        assert trimmed.get_pixel(0, 0) == (200, 100, 50, 255)

    def test_threshold_excludes_faint_pixels(self, sprite):
        sprite.set_pixel(0, 0, (0, 0, 0, 10))

        assert sprite.trim(alpha_threshold=0).width == 9
        assert sprite.trim(alpha_threshold=10).width == 4

    def test_fully_transparent_is_unchanged(self):
        buffer = PixelBuffer.blank(8, 6)

        trimmed = buffer.trim()

        assert (trimmed.width, trimmed.height) == (8, 6)

    def test_opaque_rgb_is_unchanged(self):
        buffer = PixelBuffer(np.zeros((5, 6, 3), dtype=np.uint8))

        assert buffer.trim().width == 6


# =============================================================================
# Resize
# =============================================================================

class TestFitInside:
    """Test fitted dimension arithmetic"""

    def test_width_limited(self):
        assert fit_inside(200, 100, 50, 50) == (50, 25)

    def test_height_limited(self):
        assert fit_inside(100, 200, 60, 60) == (30, 60)

    def test_no_upscale_by_default(self):
        assert fit_inside(20, 10, 100, 100) == (20, 10)

    def test_upscale_when_allowed(self):
        assert fit_inside(20, 10, 100, 100, allow_upscale=True) == (100, 50)

    def test_rounds_half_up(self):
        # 3x2 into 2x2: height = 2 / 1.5 = 1.33 -> 1
        assert fit_inside(3, 2, 2, 2) == (2, 1)

    def test_invalid_box(self):
        with pytest.raises(InvalidDimensionsError):
            fit_inside(10, 10, 0, 10)


class TestResize:
    """Test resampling"""

    def test_inside_returns_fitted_size(self, rgba_image):
        result = rgba_image.resize(20, 20)

        assert (result.width, result.height) == (20, 15)

    def test_contain_pads_to_exact_box(self):
        buffer = PixelBuffer.solid(200, 100, (0, 0, 255))

        result = buffer.resize(50, 50, fit="contain")

        assert (result.width, result.height) == (50, 50)
        assert result.get_pixel(25, 0)[3] == 0
        assert result.get_pixel(25, 25) == (0, 0, 255, 255)

    def test_transparent_colour_does_not_bleed(self):
        pixels = np.zeros((100, 100, 4), dtype=np.uint8)
        pixels[:, :50] = (255, 0, 0, 0)      # invisible red
        pixels[:, 50:] = (0, 0, 255, 255)    # opaque blue

        result = PixelBuffer(pixels).resize(30, 30)

        visible = result.pixels[:, :, 3] > 0
        assert np.all(result.pixels[:, :, 0][visible] == 0)

    def test_unknown_fit_mode(self, rgba_image):
        with pytest.raises(ValueError):
            rgba_image.resize(10, 10, fit="cover")

    def test_single_channel_stays_single_channel(self):
        mask = PixelBuffer(np.full((40, 40), 128, dtype=np.uint8))

        result = mask.resize(10, 10)

        assert result.channels == 1
        assert (result.width, result.height) == (10, 10)


# =============================================================================
# Blur
# =============================================================================

class TestBlur:
    """Test Gaussian smoothing"""

    def test_radius_too_small(self, rgba_image):
        with pytest.raises(ValueError):
            rgba_image.blur(0)

    def test_uniform_image_unchanged(self):
        mask = PixelBuffer(np.full((20, 20), 77, dtype=np.uint8))

        result = mask.blur(3)

        assert result.channels == 1
        assert np.all(result.pixels == 77)

    def test_spreads_edges(self):
        pixels = np.zeros((21, 21), dtype=np.uint8)
        pixels[:, 11:] = 255

        result = PixelBuffer(pixels).blur(2)

        assert 0 < result.pixels[10, 10, 0] < 255


# =============================================================================
# Codec
# =============================================================================

class TestCodec:
    """Test PNG encode/decode"""

    def test_round_trip_is_lossless(self, rgba_image):
        decoded = decode_image(encode_png(rgba_image))

        assert decoded.channels == 4
        np.testing.assert_array_equal(decoded.pixels, rgba_image.pixels)

    def test_round_trip_rgb(self):
        rng = np.random.default_rng(3)
        buffer = PixelBuffer(rng.integers(0, 256, (9, 11, 3), dtype=np.uint8))

        decoded = decode_image(encode_png(buffer))

        np.testing.assert_array_equal(decoded.pixels, buffer.pixels)

    def test_png_signature(self, rgba_image):
        assert encode_png(rgba_image)[:8] == b'\x89PNG\r\n\x1a\n'

    def test_decode_empty(self):
        with pytest.raises(DecodeError):
            decode_image(b"")

    def test_decode_garbage(self):
        with pytest.raises(DecodeError):
            decode_image(b"definitely not an image")

    def test_encode_empty(self):
        with pytest.raises(EncodeError):
            encode_png(PixelBuffer(np.zeros((0, 5, 4), dtype=np.uint8)))


class TestRounding:
    """Test browser-style rounding"""

    @pytest.mark.parametrize("value, expected", [
        (2.5, 3), (0.5, 1), (1.4999, 1), (-0.5, 0), (-2.5, -2), (7.0, 7),
    ])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected
