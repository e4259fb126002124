"""
Layer blending for the card pipeline.

Only two separable blend modes are supported: "over" (normal) and "screen".
Both go through the same source-over compositing formula; the mode only
changes how colours mix where the layer and the backdrop overlap:

    co = cs*as*(1-ab) + cb*ab*(1-as) + as*ab*B(cb, cs)
    ao = as + ab*(1-as)

All maths runs in float64 on [0..1] values and is rounded half-up back to
uint8.
"""

import numpy as np

from .pixel_buffer import PixelBuffer, round_half_up_array


def _mix_normal(backdrop: np.ndarray, source: np.ndarray) -> np.ndarray:
    return source


def _mix_screen(backdrop: np.ndarray, source: np.ndarray) -> np.ndarray:
    return backdrop + source - backdrop * source


BLEND_MODES = {
    "over": _mix_normal,
    "screen": _mix_screen,
}


def blend_layer(
    base: PixelBuffer,
    layer: PixelBuffer,
    left: int = 0,
    top: int = 0,
    mode: str = "over"
) -> PixelBuffer:
    """
    Composite `layer` onto `base` with its top-left corner at (left, top).

    Parts of the layer falling outside the base are clipped. Neither input is
    modified; the result is a new RGBA buffer the size of `base`.

    Raises:
        ValueError: For an unknown blend mode
    """
    if mode not in BLEND_MODES:
        raise ValueError(f"Unsupported blend mode '{mode}', expected one of {sorted(BLEND_MODES)}")

    base = base.ensure_alpha()
    layer = layer.ensure_alpha()
    result = base.pixels.copy()

    x0 = max(left, 0)
    y0 = max(top, 0)
    x1 = min(left + layer.width, base.width)
    y1 = min(top + layer.height, base.height)

    if x1 <= x0 or y1 <= y0:
        return PixelBuffer(result)

    backdrop = result[y0:y1, x0:x1].astype(np.float64) / 255.0
    source = layer.pixels[y0 - top:y1 - top, x0 - left:x1 - left].astype(np.float64) / 255.0

    cb, ab = backdrop[:, :, :3], backdrop[:, :, 3:4]
    cs, a_s = source[:, :, :3], source[:, :, 3:4]

    mixed = BLEND_MODES[mode](cb, cs)

    co = cs * a_s * (1.0 - ab) + cb * ab * (1.0 - a_s) + a_s * ab * mixed
    ao = a_s + ab * (1.0 - a_s)

    colour = np.divide(co, ao, out=np.zeros_like(co), where=ao > 0)

    out = np.concatenate([colour, ao], axis=2) * 255.0
    result[y0:y1, x0:x1] = np.clip(round_half_up_array(out), 0, 255).astype(np.uint8)

    return PixelBuffer(result)
