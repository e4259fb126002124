"""
Card compositor - places the glowing portrait on a background template.

Layout (ratios of the template size):
- The illustration area spans from minTop (15%) to illustrationBottom (62%);
  below it the template carries its own art.
- The portrait is shrunk to fit inside 60% of the card width and the
  illustration height, then gets its glow.
- Centred horizontally, centred vertically inside the illustration band.
"""

import os
from dataclasses import dataclass
from typing import Dict, Tuple

from .blending import blend_layer
from .errors import InvalidDimensionsError
from .glow import GLOW_GAIN, GLOW_RADIUS_RATIO, HALO_BLEND, SUBJECT_BLEND, GlowResult, add_glow
from .pixel_buffer import PNG_MAX_COMPRESSION, PixelBuffer, encode_png, round_half_up

ILLUSTRATION_BOTTOM_RATIO = 0.62
MIN_TOP_RATIO = 0.15
MAX_AVATAR_WIDTH_RATIO = 0.6

DEBUG_ENABLED = os.getenv("DEBUG_CARD", "0") == "1"


@dataclass(frozen=True)
class CardLayout:
    card_width: int
    card_height: int
    illustration_bottom: int
    min_top: int
    max_avatar_width: int
    max_avatar_height: int


@dataclass(frozen=True)
class PlacementRect:
    left: int
    top: int
    max_width: int
    max_height: int


@dataclass
class CompositionResult:
    card: PixelBuffer
    layout: CardLayout
    placement: PlacementRect
    avatar_size: Tuple[int, int]
    glow: GlowResult

    def to_metrics(self) -> Dict:
        return {
            "card_size": f"{self.layout.card_width}x{self.layout.card_height}",
            "avatar_size": f"{self.avatar_size[0]}x{self.avatar_size[1]}",
            "placement": {"left": self.placement.left, "top": self.placement.top},
            "illustration_band": [self.layout.min_top, self.layout.illustration_bottom],
            "glow_degraded": self.glow.degraded,
            "glow_reason": self.glow.reason,
        }


def compute_card_layout(
    card_width: int,
    card_height: int,
    illustration_bottom_ratio: float = ILLUSTRATION_BOTTOM_RATIO,
    min_top_ratio: float = MIN_TOP_RATIO,
    max_avatar_width_ratio: float = MAX_AVATAR_WIDTH_RATIO
) -> CardLayout:
    """
    Raises:
        InvalidDimensionsError: If the card leaves no room for the portrait
    """
    illustration_bottom = round_half_up(card_height * illustration_bottom_ratio)
    min_top = round_half_up(card_height * min_top_ratio)
    max_avatar_width = round_half_up(card_width * max_avatar_width_ratio)
    max_avatar_height = illustration_bottom - min_top

    if max_avatar_width <= 0 or max_avatar_height <= 0:
        raise InvalidDimensionsError(
            f"Template {card_width}x{card_height} leaves no room for the portrait "
            f"({max_avatar_width}x{max_avatar_height})"
        )

    return CardLayout(
        card_width=card_width,
        card_height=card_height,
        illustration_bottom=illustration_bottom,
        min_top=min_top,
        max_avatar_width=max_avatar_width,
        max_avatar_height=max_avatar_height,
    )


def compute_placement(layout: CardLayout, avatar_width: int, avatar_height: int) -> PlacementRect:
    """Top-left corner for the portrait: centred, and centred inside the illustration band."""
    left = max(0, round_half_up((layout.card_width - avatar_width) / 2))
    free_vertical_space = layout.illustration_bottom - layout.min_top - avatar_height
    top = max(layout.min_top, round_half_up(layout.min_top + free_vertical_space / 2))

    return PlacementRect(
        left=left,
        top=top,
        max_width=layout.max_avatar_width,
        max_height=layout.max_avatar_height,
    )


def composite_on_template(
    subject: PixelBuffer,
    template: PixelBuffer,
    *,
    illustration_bottom_ratio: float = ILLUSTRATION_BOTTOM_RATIO,
    min_top_ratio: float = MIN_TOP_RATIO,
    max_avatar_width_ratio: float = MAX_AVATAR_WIDTH_RATIO,
    allow_upscale: bool = False,
    glow_radius_ratio: float = GLOW_RADIUS_RATIO,
    glow_gain: float = GLOW_GAIN,
    halo_blend: str = HALO_BLEND,
    subject_blend: str = SUBJECT_BLEND
) -> CompositionResult:
    """
    Resize the portrait, add its glow and place it on the template.

    The template is not modified.

    Raises:
        InvalidDimensionsError: If the subject or template has zero area
    """
    subject.require_area("Compositor (subject)")
    template.require_area("Compositor (template)")

    layout = compute_card_layout(
        template.width,
        template.height,
        illustration_bottom_ratio,
        min_top_ratio,
        max_avatar_width_ratio,
    )

    # 1. Prepare avatar: ensure alpha & resize
    avatar = subject.ensure_alpha().resize(
        layout.max_avatar_width,
        layout.max_avatar_height,
        fit="inside",
        allow_upscale=allow_upscale,
    )

    # 2. Glow
    glow = add_glow(
        avatar,
        radius_ratio=glow_radius_ratio,
        gain=glow_gain,
        halo_blend=halo_blend,
        subject_blend=subject_blend,
    )

    # 3. Position on card
    placement = compute_placement(layout, avatar.width, avatar.height)
    card = blend_layer(template, glow.buffer, left=placement.left, top=placement.top, mode="over")

    if DEBUG_ENABLED:
        print(
            f"  [Compositor] card={layout.card_width}x{layout.card_height}, "
            f"avatar={avatar.width}x{avatar.height}, at=({placement.left}, {placement.top})"
        )

    return CompositionResult(
        card=card,
        layout=layout,
        placement=placement,
        avatar_size=(avatar.width, avatar.height),
        glow=glow,
    )


def render_card_png(
    subject: PixelBuffer,
    template: PixelBuffer,
    compression: int = PNG_MAX_COMPRESSION,
    **options
) -> Tuple[bytes, CompositionResult]:
    """Composite and encode the final card losslessly (max compression by default)."""
    result = composite_on_template(subject, template, **options)
    return encode_png(result.card, compression=compression), result
