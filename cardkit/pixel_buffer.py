"""
PixelBuffer - raster primitives for the card pipeline

A PixelBuffer wraps a uint8 numpy array of shape (H, W, C) in RGB(A) order.
All operations return a new buffer; the only in-place operation is set_pixel,
which callers use on buffers they own.

Rounding follows round-half-up (the way browsers round) so that results are
comparable bit-for-bit with the web implementation the card layout was tuned
against.

PNG encode/decode goes through OpenCV (cv2.imdecode / cv2.imencode).
"""

import math
from dataclasses import dataclass
from typing import Sequence, Tuple

import cv2
import numpy as np

from .errors import DecodeError, EncodeError, InvalidDimensionsError

# =============================================================================
# Constants
# =============================================================================

FIT_INSIDE = "inside"
FIT_CONTAIN = "contain"
FIT_MODES = (FIT_INSIDE, FIT_CONTAIN)

# Smallest Gaussian sigma the blur accepts
MIN_BLUR_RADIUS = 0.3

# Maximum zlib effort
PNG_MAX_COMPRESSION = 9


def round_half_up(value: float) -> int:
    """Round like Math.round: halves go up, also for negatives (-2.5 -> -2)."""
    return int(math.floor(value + 0.5))


def round_half_up_array(values: np.ndarray) -> np.ndarray:
    return np.floor(values + 0.5)


def fit_inside(
    width: int,
    height: int,
    max_width: int,
    max_height: int,
    allow_upscale: bool = False
) -> Tuple[int, int]:
    """
    Compute the size of (width, height) scaled to fit inside the bounding box.

    The constraining axis lands exactly on its bound, the other axis is
    rounded. Without allow_upscale a size already inside the box is returned
    unchanged.
    """
    if max_width <= 0 or max_height <= 0:
        raise InvalidDimensionsError(f"Invalid fit box: {max_width}x{max_height}")

    if not allow_upscale and width <= max_width and height <= max_height:
        return width, height

    x_factor = width / max_width
    y_factor = height / max_height

    if x_factor >= y_factor:
        return max_width, max(1, round_half_up(height / x_factor))
    return max(1, round_half_up(width / y_factor)), max_height


# =============================================================================
# PixelBuffer
# =============================================================================

@dataclass
class PixelBuffer:
    """
    Raster owned by one pipeline stage at a time.
    Shape (H, W, C), dtype uint8, C in 1..4 (grey, grey+alpha, RGB, RGBA).
    """
    pixels: np.ndarray

    def __post_init__(self):
        if not isinstance(self.pixels, np.ndarray):
            raise TypeError(f"Expected numpy array, got {type(self.pixels).__name__}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Expected uint8 pixels, got {self.pixels.dtype}")
        if self.pixels.ndim == 2:
            self.pixels = self.pixels[:, :, np.newaxis]
        if self.pixels.ndim != 3 or self.pixels.shape[2] not in (1, 2, 3, 4):
            raise ValueError(f"Unsupported pixel layout: {self.pixels.shape}")

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def blank(cls, width: int, height: int, channels: int = 4) -> "PixelBuffer":
        """Fully transparent (or black, without alpha) buffer."""
        return cls(np.zeros((height, width, channels), dtype=np.uint8))

    @classmethod
    def solid(
        cls,
        width: int,
        height: int,
        rgb: Tuple[int, int, int],
        alpha: int = 255
    ) -> "PixelBuffer":
        pixels = np.empty((height, width, 4), dtype=np.uint8)
        pixels[:, :, 0] = rgb[0]
        pixels[:, :, 1] = rgb[1]
        pixels[:, :, 2] = rgb[2]
        pixels[:, :, 3] = alpha
        return cls(pixels)

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.pixels.copy())

    # -------------------------------------------------------------------------
    # Geometry
    # -------------------------------------------------------------------------

    @property
    def width(self) -> int:
        return self.pixels.shape[1]

    @property
    def height(self) -> int:
        return self.pixels.shape[0]

    @property
    def channels(self) -> int:
        return self.pixels.shape[2]

    @property
    def has_alpha(self) -> bool:
        return self.channels in (2, 4)

    @property
    def is_empty(self) -> bool:
        return self.width == 0 or self.height == 0

    @property
    def data(self) -> bytes:
        """Raw interleaved bytes, len == width * height * channels."""
        return np.ascontiguousarray(self.pixels).tobytes()

    def require_area(self, stage: str) -> None:
        if self.is_empty:
            raise InvalidDimensionsError(
                f"{stage} received a zero-area buffer ({self.width}x{self.height})"
            )

    # -------------------------------------------------------------------------
    # Pixel access
    # -------------------------------------------------------------------------

    def _check_bounds(self, x: int, y: int) -> None:
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"Pixel ({x}, {y}) outside {self.width}x{self.height} buffer")

    def get_pixel(self, x: int, y: int) -> Tuple[int, ...]:
        self._check_bounds(x, y)
        return tuple(int(v) for v in self.pixels[y, x])

    def set_pixel(self, x: int, y: int, value: Sequence[int]) -> None:
        self._check_bounds(x, y)
        if len(value) != self.channels:
            raise ValueError(f"Expected {self.channels} channel values, got {len(value)}")
        self.pixels[y, x] = value

    # -------------------------------------------------------------------------
    # Channel operations
    # -------------------------------------------------------------------------

    def ensure_alpha(self) -> "PixelBuffer":
        """Return an RGBA buffer; an opaque alpha is added when missing."""
        if self.channels == 4:
            return self

        height, width = self.height, self.width
        if self.channels in (1, 2):
            colour = np.repeat(self.pixels[:, :, :1], 3, axis=2)
        else:
            colour = self.pixels

        if self.channels == 2:
            alpha = self.pixels[:, :, 1:2]
        else:
            alpha = np.full((height, width, 1), 255, dtype=np.uint8)

        return PixelBuffer(np.ascontiguousarray(np.concatenate([colour, alpha], axis=2)))

    def extract_channel(self, index: int) -> "PixelBuffer":
        """Single channel as a 1-channel buffer (e.g. the alpha mask)."""
        if not 0 <= index < self.channels:
            raise IndexError(f"Channel {index} out of range for {self.channels}-channel buffer")
        return PixelBuffer(np.ascontiguousarray(self.pixels[:, :, index:index + 1]))

    def extract_alpha(self) -> "PixelBuffer":
        return self.ensure_alpha().extract_channel(3)

    def with_alpha(self, mask: "PixelBuffer") -> "PixelBuffer":
        """Replace the alpha channel with a 1-channel mask of the same size."""
        if mask.channels != 1:
            raise ValueError(f"Alpha mask must have 1 channel, got {mask.channels}")
        if (mask.width, mask.height) != (self.width, self.height):
            raise ValueError(
                f"Mask size {mask.width}x{mask.height} does not match "
                f"{self.width}x{self.height}"
            )
        pixels = self.ensure_alpha().pixels.copy()
        pixels[:, :, 3] = mask.pixels[:, :, 0]
        return PixelBuffer(pixels)

    def greyscale(self) -> "PixelBuffer":
        """Replace RGB with BT.601 luma; alpha unchanged."""
        if self.channels in (1, 2):
            return self.copy()
        self.require_area("greyscale")

        rgb = np.ascontiguousarray(self.pixels[:, :, :3])
        grey = cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)
        out = np.repeat(grey[:, :, np.newaxis], 3, axis=2)

        if self.channels == 4:
            out = np.concatenate([out, self.pixels[:, :, 3:4]], axis=2)

        return PixelBuffer(np.ascontiguousarray(out))

    # -------------------------------------------------------------------------
    # Cropping
    # -------------------------------------------------------------------------

    def crop(self, left: int, top: int, width: int, height: int) -> "PixelBuffer":
        if width <= 0 or height <= 0:
            raise InvalidDimensionsError(f"Invalid crop size {width}x{height}")
        if left < 0 or top < 0 or left + width > self.width or top + height > self.height:
            raise ValueError(
                f"Crop ({left},{top},{width}x{height}) exceeds {self.width}x{self.height} buffer"
            )
        return PixelBuffer(self.pixels[top:top + height, left:left + width].copy())

    def content_box(self, alpha_threshold: int = 0) -> Tuple[int, int, int, int]:
        """
        Bounding box (left, top, width, height) of pixels with alpha > threshold.
        Returns the full frame when nothing passes or there is no alpha channel.
        """
        if not self.has_alpha or self.is_empty:
            return 0, 0, self.width, self.height

        visible = self.pixels[:, :, -1] > alpha_threshold
        rows = np.flatnonzero(visible.any(axis=1))
        cols = np.flatnonzero(visible.any(axis=0))

        if rows.size == 0:
            return 0, 0, self.width, self.height

        return (
            int(cols[0]),
            int(rows[0]),
            int(cols[-1] - cols[0] + 1),
            int(rows[-1] - rows[0] + 1),
        )

    def trim(self, alpha_threshold: int = 0) -> "PixelBuffer":
        """Crop to the minimal box containing any pixel with alpha > threshold."""
        left, top, width, height = self.content_box(alpha_threshold)
        if (left, top, width, height) == (0, 0, self.width, self.height):
            return self
        return self.crop(left, top, width, height)

    # -------------------------------------------------------------------------
    # Resampling
    # -------------------------------------------------------------------------

    def resize(
        self,
        target_width: int,
        target_height: int,
        fit: str = FIT_INSIDE,
        allow_upscale: bool = False
    ) -> "PixelBuffer":
        """
        Scale preserving aspect ratio.

        fit="inside" returns the content at its fitted size.
        fit="contain" pads the fitted content with transparent pixels,
        centred, to exactly target_width x target_height.
        """
        if fit not in FIT_MODES:
            raise ValueError(f"Unsupported fit mode '{fit}', expected one of {FIT_MODES}")
        self.require_area("resize")

        fitted_width, fitted_height = fit_inside(
            self.width, self.height, target_width, target_height, allow_upscale
        )

        if (fitted_width, fitted_height) == (self.width, self.height):
            scaled = self
        else:
            scaled = self._resample(fitted_width, fitted_height)

        if fit == FIT_CONTAIN and (fitted_width, fitted_height) != (target_width, target_height):
            canvas = PixelBuffer.blank(target_width, target_height)
            left = (target_width - fitted_width) // 2
            top = (target_height - fitted_height) // 2
            canvas.pixels[top:top + fitted_height, left:left + fitted_width] = scaled.ensure_alpha().pixels
            return canvas

        return scaled

    def _resample(self, width: int, height: int) -> "PixelBuffer":
        shrinking = width <= self.width and height <= self.height
        interpolation = cv2.INTER_AREA if shrinking else cv2.INTER_CUBIC

        if not self.has_alpha:
            resized = cv2.resize(
                np.ascontiguousarray(self.pixels), (width, height), interpolation=interpolation
            )
            return PixelBuffer(resized)

        # Resample premultiplied so fully transparent pixels do not bleed colour
        work = self.pixels.astype(np.float32)
        work[:, :, :-1] *= work[:, :, -1:] / 255.0

        resized = cv2.resize(work, (width, height), interpolation=interpolation)
        if resized.ndim == 2:
            resized = resized[:, :, np.newaxis]

        alpha = np.clip(resized[:, :, -1:], 0.0, 255.0)
        scale = np.where(alpha > 0, alpha / 255.0, 1.0)
        colour = np.where(alpha > 0, resized[:, :, :-1] / scale, 0.0)

        out = np.concatenate([colour, alpha], axis=2)
        out = np.clip(round_half_up_array(out), 0, 255).astype(np.uint8)
        return PixelBuffer(np.ascontiguousarray(out))

    def blur(self, radius: float) -> "PixelBuffer":
        """Gaussian blur (sigma = radius) applied to every channel independently."""
        if radius < MIN_BLUR_RADIUS:
            raise ValueError(f"Blur radius must be >= {MIN_BLUR_RADIUS}, got {radius}")
        self.require_area("blur")

        blurred = cv2.GaussianBlur(
            np.ascontiguousarray(self.pixels), (0, 0), sigmaX=float(radius), sigmaY=float(radius)
        )
        return PixelBuffer(blurred)


# =============================================================================
# Codec
# =============================================================================

def decode_image(data: bytes) -> PixelBuffer:
    """
    Decode PNG/JPEG/WebP bytes into an RGB(A) PixelBuffer.

    Raises:
        DecodeError: If the bytes are empty or not a decodable raster
    """
    if not data:
        raise DecodeError("Empty image bytes provided")

    try:
        decoded = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    except cv2.error as e:
        raise DecodeError(f"Could not decode image: {e}") from e

    if decoded is None:
        raise DecodeError("Invalid image data (not a decodable raster)")

    if decoded.dtype == np.uint16:
        decoded = (decoded >> 8).astype(np.uint8)
    elif decoded.dtype != np.uint8:
        raise DecodeError(f"Unsupported sample type: {decoded.dtype}")

    if decoded.ndim == 3 and decoded.shape[2] == 3:
        decoded = cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB)
    elif decoded.ndim == 3 and decoded.shape[2] == 4:
        decoded = cv2.cvtColor(decoded, cv2.COLOR_BGRA2RGBA)

    buffer = PixelBuffer(np.ascontiguousarray(decoded))
    if buffer.is_empty:
        raise DecodeError("Decoded image has zero area")

    return buffer


def encode_png(buffer: PixelBuffer, compression: int = PNG_MAX_COMPRESSION) -> bytes:
    """
    Encode losslessly as PNG.

    Raises:
        EncodeError: If the buffer is empty or OpenCV rejects it
    """
    if buffer.is_empty:
        raise EncodeError(f"Cannot encode a {buffer.width}x{buffer.height} image")

    if buffer.channels == 2:
        buffer = buffer.ensure_alpha()

    pixels = np.ascontiguousarray(buffer.pixels)
    if buffer.channels == 1:
        native = pixels[:, :, 0]
    elif buffer.channels == 3:
        native = cv2.cvtColor(pixels, cv2.COLOR_RGB2BGR)
    else:
        native = cv2.cvtColor(pixels, cv2.COLOR_RGBA2BGRA)

    try:
        success, encoded = cv2.imencode(".png", native, [cv2.IMWRITE_PNG_COMPRESSION, int(compression)])
    except cv2.error as e:
        raise EncodeError(f"PNG encoding failed: {e}") from e

    if not success:
        raise EncodeError("PNG encoding failed")

    return encoded.tobytes()
