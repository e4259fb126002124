"""
Glow halo around the subject silhouette.

Steps:
1. Take the subject's alpha as a mask
2. Gaussian blur it (radius = 12% of the short side)
3. Amplify x2, clamped at 255
4. Use it as the alpha of a pure white layer (the halo)
5. On a transparent canvas: halo with "screen", then the subject with "over"

The stage never fails the pipeline. Anything going wrong inside it yields a
degraded GlowResult carrying the untouched subject and the reason.
"""

import os
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from .blending import blend_layer
from .errors import HaloSynthesisFailure
from .pixel_buffer import PixelBuffer, round_half_up, round_half_up_array

GLOW_RADIUS_RATIO = 0.12   # thicker glow
GLOW_GAIN = 2.0            # much stronger glow
HALO_BLEND = "screen"
SUBJECT_BLEND = "over"
HALO_COLOR_RGB = (255, 255, 255)

DEBUG_ENABLED = os.getenv("DEBUG_CARD", "0") == "1"


@dataclass
class GlowResult:
    """Tagged result: ok(buffer) or degraded(buffer, reason)."""
    buffer: PixelBuffer
    degraded: bool = False
    reason: Optional[str] = None

    @classmethod
    def ok(cls, buffer: PixelBuffer) -> "GlowResult":
        return cls(buffer=buffer)

    @classmethod
    def degraded_with(cls, buffer: PixelBuffer, reason: str) -> "GlowResult":
        return cls(buffer=buffer, degraded=True, reason=reason)

    @property
    def is_ok(self) -> bool:
        return not self.degraded


def glow_radius(width: int, height: int, radius_ratio: float = GLOW_RADIUS_RATIO) -> int:
    return round_half_up(min(width, height) * radius_ratio)


def build_halo_mask(
    subject: PixelBuffer,
    radius_ratio: float = GLOW_RADIUS_RATIO,
    gain: float = GLOW_GAIN
) -> PixelBuffer:
    """
    Blurred and amplified alpha of the subject as a 1-channel mask.

    Raises:
        HaloSynthesisFailure: If the blur cannot be computed
    """
    mask = subject.extract_alpha()
    radius = glow_radius(subject.width, subject.height, radius_ratio)

    try:
        blurred = mask.blur(radius)
    except (ValueError, cv2.error) as e:
        raise HaloSynthesisFailure(f"blur failed (radius={radius}): {e}") from e

    amplified = np.minimum(255.0, round_half_up_array(blurred.pixels.astype(np.float64) * gain))
    return PixelBuffer(amplified.astype(np.uint8))


def add_glow(
    subject: PixelBuffer,
    radius_ratio: float = GLOW_RADIUS_RATIO,
    gain: float = GLOW_GAIN,
    halo_blend: str = HALO_BLEND,
    subject_blend: str = SUBJECT_BLEND
) -> GlowResult:
    """
    Composite a soft white halo behind the subject.

    Returns:
        GlowResult.ok with a same-size RGBA buffer, or GlowResult.degraded
        with the subject unchanged when the halo could not be built
    """
    if subject.is_empty:
        return GlowResult.degraded_with(
            subject, f"empty subject ({subject.width}x{subject.height})"
        )

    try:
        subject_rgba = subject.ensure_alpha()
        halo_mask = build_halo_mask(subject_rgba, radius_ratio, gain)

        halo = PixelBuffer.solid(subject.width, subject.height, HALO_COLOR_RGB).with_alpha(halo_mask)

        canvas = PixelBuffer.blank(subject.width, subject.height)
        try:
            canvas = blend_layer(canvas, halo, mode=halo_blend)
            canvas = blend_layer(canvas, subject_rgba, mode=subject_blend)
        except (ValueError, cv2.error) as e:
            raise HaloSynthesisFailure(f"composite failed: {e}") from e

    except HaloSynthesisFailure as e:
        print(f"  ⚠️ [Glow] failed, using subject without halo: {e}")
        return GlowResult.degraded_with(subject, str(e))

    if DEBUG_ENABLED:
        print(
            f"  [Glow] radius={glow_radius(subject.width, subject.height, radius_ratio)}, "
            f"halo mean alpha={float(halo_mask.pixels.mean()):.1f}"
        )

    return GlowResult.ok(canvas)
