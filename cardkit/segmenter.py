"""
Background Segmenter - border-connected near-white removal

Generated portraits often come back with a light grey/white "checkerboard"
backdrop instead of real transparency. This module removes it:

1. Mark candidates: opaque-ish pixels that are bright (max channel >= 220)
   and nearly colourless (max - min <= 8). Transparent pixels never qualify.
2. Flood-fill from every candidate on the image border, 4-connected,
   through candidates only.
3. Zero the alpha of every reached pixel. Nothing else changes.

Near-white areas inside the subject (teeth, shirt collars, eye highlights)
survive because they are not reachable from the border without crossing a
non-candidate pixel.
"""

import os
from collections import deque

import numpy as np

from .pixel_buffer import PixelBuffer

# Candidate thresholds (tuned against generated portraits, keep exact)
CANDIDATE_MIN_BRIGHTNESS = 220
CANDIDATE_MAX_CHROMA = 8

DEBUG_ENABLED = os.getenv("DEBUG_CARD", "0") == "1"


def find_candidate_pixels(
    rgba: np.ndarray,
    min_brightness: int = CANDIDATE_MIN_BRIGHTNESS,
    max_chroma: int = CANDIDATE_MAX_CHROMA
) -> np.ndarray:
    """
    Classify near-white, low-chroma pixels.

    Args:
        rgba: uint8 array (H, W, 4)
        min_brightness: Minimum max(R, G, B) for a candidate
        max_chroma: Maximum max(R, G, B) - min(R, G, B) for a candidate

    Returns:
        Bool mask (H, W), True for candidates
    """
    rgb = rgba[:, :, :3].astype(np.int16)
    max_channel = rgb.max(axis=2)
    chroma = max_channel - rgb.min(axis=2)

    return (
        (rgba[:, :, 3] > 0)
        & (max_channel >= min_brightness)
        & (chroma <= max_chroma)
    )


def flood_fill_from_border(candidates: np.ndarray) -> np.ndarray:
    """
    Mark every candidate reachable from the image border through candidates.

    Uses a FIFO worklist of flat indices (y * width + x) and a visited
    bytearray, so memory stays bounded and there is no recursion.

    Args:
        candidates: Bool mask (H, W)

    Returns:
        Bool mask (H, W), True for reached (background) pixels
    """
    height, width = candidates.shape
    total = width * height
    if total == 0:
        return np.zeros((height, width), dtype=bool)

    candidate = bytearray(np.ascontiguousarray(candidates, dtype=np.uint8).tobytes())
    visited = bytearray(total)
    worklist = deque()

    def seed(idx: int):
        if candidate[idx] and not visited[idx]:
            visited[idx] = 1
            worklist.append(idx)

    last_row = (height - 1) * width
    for x in range(width):
        seed(x)
        seed(last_row + x)
    for y in range(height):
        seed(y * width)
        seed(y * width + width - 1)

    while worklist:
        idx = worklist.popleft()
        x = idx % width

        neighbours = []
        if x + 1 < width:
            neighbours.append(idx + 1)
        if x > 0:
            neighbours.append(idx - 1)
        if idx + width < total:
            neighbours.append(idx + width)
        if idx >= width:
            neighbours.append(idx - width)

        for n in neighbours:
            if candidate[n] and not visited[n]:
                visited[n] = 1
                worklist.append(n)

    return np.frombuffer(bytes(visited), dtype=np.uint8).reshape(height, width).astype(bool)


def remove_border_background(
    buffer: PixelBuffer,
    min_brightness: int = CANDIDATE_MIN_BRIGHTNESS,
    max_chroma: int = CANDIDATE_MAX_CHROMA
) -> PixelBuffer:
    """
    Make the border-connected near-white background transparent.

    Only alpha of reached pixels changes (to 0); colour is kept. Alpha is
    never raised.

    Raises:
        InvalidDimensionsError: If the buffer has zero area
    """
    buffer.require_area("Background segmentation")
    rgba = buffer.ensure_alpha().pixels

    candidates = find_candidate_pixels(rgba, min_brightness, max_chroma)
    background = flood_fill_from_border(candidates)

    out = rgba.copy()
    out[:, :, 3][background] = 0

    if DEBUG_ENABLED:
        total = background.size
        print(
            f"  [Segmenter] candidates={int(candidates.sum())}, "
            f"background={int(background.sum())} "
            f"({background.sum() / total * 100:.1f}% of {buffer.width}x{buffer.height})"
        )

    return PixelBuffer(out)
