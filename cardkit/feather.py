"""
Bottom edge feather.

Generated portraits are cut off at the chest, which leaves a hard horizontal
seam once placed on a card. The bottom 22% of the image fades linearly to
fully transparent instead.
"""

import numpy as np

from .pixel_buffer import PixelBuffer, round_half_up, round_half_up_array

FEATHER_START_RATIO = 0.78  # bottom 22% fades out


def feather_rows(height: int, start_ratio: float = FEATHER_START_RATIO):
    """
    Return (feather_start, feather_end) row indices for an image height.

    The start is capped at the last row so even very short images end fully
    transparent.
    """
    feather_end = height - 1
    feather_start = min(round_half_up(height * start_ratio), feather_end)
    return feather_start, feather_end


def apply_bottom_feather(buffer: PixelBuffer, start_ratio: float = FEATHER_START_RATIO) -> PixelBuffer:
    """
    Fade alpha to 0 over the rows from round(height * start_ratio) to the last row.

    For row y in the band: alpha' = round(alpha * (1 - t)),
    t = (y - start) / max(1, end - start). Rows above the band and fully
    transparent pixels are unchanged.

    Raises:
        InvalidDimensionsError: If the buffer has zero area
    """
    buffer.require_area("Bottom feather")
    pixels = buffer.ensure_alpha().pixels.copy()

    height = buffer.height
    feather_start, feather_end = feather_rows(height, start_ratio)

    rows = np.arange(feather_start, height, dtype=np.float64)
    t = (rows - feather_start) / max(1, feather_end - feather_start)
    t[-1] = 1.0  # last row always fully transparent
    fade = 1.0 - t

    band = pixels[feather_start:, :, 3].astype(np.float64)
    pixels[feather_start:, :, 3] = round_half_up_array(band * fade[:, np.newaxis]).astype(np.uint8)

    return PixelBuffer(pixels)
