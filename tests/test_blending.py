"""
Tests for layer blending

Run with:
    pytest tests/test_blending.py -v
"""

import pytest
import numpy as np
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from cardkit.blending import BLEND_MODES, blend_layer
from cardkit.pixel_buffer import PixelBuffer


class TestOver:
    """Test normal source-over compositing"""

    def test_opaque_layer_replaces(self):
        base = PixelBuffer.solid(6, 6, (10, 20, 30))
        layer = PixelBuffer.solid(2, 2, (200, 100, 50))

        result = blend_layer(base, layer, left=2, top=3)

        assert result.get_pixel(2, 3) == (200, 100, 50, 255)
        assert result.get_pixel(3, 4) == (200, 100, 50, 255)
        assert result.get_pixel(1, 3) == (10, 20, 30, 255)

    def test_semi_transparent_onto_empty(self):
        base = PixelBuffer.blank(3, 3)
        layer = PixelBuffer.solid(3, 3, (10, 200, 30), alpha=128)

        result = blend_layer(base, layer)

        assert result.get_pixel(1, 1) == (10, 200, 30, 128)

    def test_half_alpha_over_opaque(self):
        base = PixelBuffer.solid(1, 1, (0, 0, 0))
        layer = PixelBuffer.solid(1, 1, (255, 255, 255), alpha=128)

        result = blend_layer(base, layer)

        # 255 * 128 / 255 = 128
        assert result.get_pixel(0, 0) == (128, 128, 128, 255)

    def test_transparent_layer_is_noop(self):
        base = PixelBuffer.solid(4, 4, (1, 2, 3), alpha=77)
        layer = PixelBuffer.blank(4, 4)

        result = blend_layer(base, layer)

        np.testing.assert_array_equal(result.pixels, base.pixels)


class TestScreen:
    """Test screen blending"""

    def test_white_screen_gives_white(self):
        base = PixelBuffer.solid(2, 2, (0, 0, 0))
        layer = PixelBuffer.solid(2, 2, (255, 255, 255))

        result = blend_layer(base, layer, mode="screen")

        assert result.get_pixel(0, 0) == (255, 255, 255, 255)

    def test_screen_lightens(self):
        base = PixelBuffer.solid(1, 1, (100, 100, 100))
        layer = PixelBuffer.solid(1, 1, (100, 100, 100))

        result = blend_layer(base, layer, mode="screen")

        # 1 - (1 - 100/255)^2 = 0.6305 -> 160.78
        assert result.get_pixel(0, 0) == (161, 161, 161, 255)

    def test_screen_onto_transparent_keeps_source(self):
        base = PixelBuffer.blank(1, 1)
        layer = PixelBuffer.solid(1, 1, (255, 255, 255), alpha=90)

        result = blend_layer(base, layer, mode="screen")

        assert result.get_pixel(0, 0) == (255, 255, 255, 90)


class TestGeometry:
    """Test clipping and immutability"""

    def test_negative_offset_clips(self):
        base = PixelBuffer.solid(4, 4, (0, 0, 0))
        layer = PixelBuffer.solid(3, 3, (255, 0, 0))

        result = blend_layer(base, layer, left=-2, top=-2)

        assert (result.width, result.height) == (4, 4)
        assert result.get_pixel(0, 0) == (255, 0, 0, 255)
        assert result.get_pixel(1, 0) == (0, 0, 0, 255)

    def test_fully_outside_is_noop(self):
        base = PixelBuffer.solid(4, 4, (5, 5, 5))
        layer = PixelBuffer.solid(2, 2, (255, 0, 0))

        result = blend_layer(base, layer, left=10, top=10)

        np.testing.assert_array_equal(result.pixels, base.pixels)

    def test_inputs_not_modified(self):
        base = PixelBuffer.solid(4, 4, (5, 5, 5))
        layer = PixelBuffer.solid(2, 2, (255, 0, 0))

        blend_layer(base, layer)

        assert base.get_pixel(0, 0) == (5, 5, 5, 255)

    def test_rgb_inputs_accepted(self):
        base = PixelBuffer(np.zeros((2, 2, 3), dtype=np.uint8))
        layer = PixelBuffer(np.full((2, 2, 3), 9, dtype=np.uint8))

        result = blend_layer(base, layer)

        assert result.get_pixel(0, 0) == (9, 9, 9, 255)

    def test_unknown_mode(self):
        base = PixelBuffer.blank(2, 2)

        with pytest.raises(ValueError):
            blend_layer(base, base, mode="multiply")

    def test_supported_modes(self):
        assert set(BLEND_MODES) == {"over", "screen"}
