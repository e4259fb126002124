"""
Tarot Card Pipeline

Turns a generated transparent portrait into a finished card:
1. Decode + ensure alpha
2. Remove the border-connected near-white backdrop
3. Trim to visible content
4. Feather the bottom edge
5. Greyscale
6. Resize, glow and composite onto the user's background template
7. Encode PNG (max compression)

The generative model sits outside this package. CardPipeline only needs a
PortraitGenerator callable (source bytes -> portrait bytes); the default
passes the input through, for callers that already hold the portrait.

Environment Variables:
    DEBUG_CARD_DIR: Directory for per-stage PNG dumps (see env_config)
"""

import base64
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional, Union

from .background_selector import select_template
from .compositor import composite_on_template
from .env_config import PipelineConfig
from .errors import CardPipelineError, PortraitGenerationError
from .feather import apply_bottom_feather
from .image_source import fetch_image_bytes
from .pixel_buffer import PixelBuffer, decode_image, encode_png
from .segmenter import remove_border_background
from .template_store import TemplateStore, get_template_store

CARD_STYLE = "TAROT_CARD"

PortraitGenerator = Callable[[bytes], bytes]


def passthrough_generator(image_bytes: bytes) -> bytes:
    """Treat the source image as the already generated portrait."""
    return image_bytes


@dataclass
class CardResult:
    png_bytes: bytes
    template_name: str
    degraded: bool = False
    degraded_reason: Optional[str] = None
    metrics: Dict = field(default_factory=dict)

    @property
    def image_base64(self) -> str:
        return base64.b64encode(self.png_bytes).decode("ascii")


class CardPipeline:
    """
    Orchestrates the card stages with an explicit configuration.

    Every stage returns a fresh buffer, so one pipeline instance can serve
    concurrent requests.
    """

    def __init__(
        self,
        config: PipelineConfig,
        template_store: Optional[TemplateStore] = None,
        portrait_generator: Optional[PortraitGenerator] = None
    ):
        self.config = config
        self.template_store = template_store or get_template_store(config.template_dir)
        self.portrait_generator = portrait_generator or passthrough_generator

    # -------------------------------------------------------------------------
    # Debug output
    # -------------------------------------------------------------------------

    def _debug_save(self, buffer: PixelBuffer, filename: str, job_id: str = ""):
        """Save a stage output if DEBUG_CARD_DIR is configured"""
        if self.config.debug_dir is None or buffer.is_empty:
            return

        output_dir = Path(self.config.debug_dir) / job_id if job_id else Path(self.config.debug_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        filepath = output_dir / filename
        filepath.write_bytes(encode_png(buffer, compression=1))
        print(f"  [DEBUG] Saved: {filepath}")

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def prepare_portrait(
        self,
        portrait: Union[bytes, PixelBuffer],
        job_id: str = ""
    ):
        """
        Clean up a generated portrait (steps 1-5).

        Returns:
            (PixelBuffer, metrics_dict)

        Raises:
            DecodeError: If portrait bytes are not an image
            InvalidDimensionsError: If the portrait has zero area
        """
        if isinstance(portrait, PixelBuffer):
            buffer = portrait
        else:
            buffer = decode_image(portrait)

        input_size = f"{buffer.width}x{buffer.height}"
        print(f"\n[STEP 1] Input portrait: {input_size}, {buffer.channels} channels")
        buffer = buffer.ensure_alpha()
        buffer.require_area("Portrait preparation")
        self._debug_save(buffer, "01_input.png", job_id)

        print("\n[STEP 2] Removing border-connected background...")
        opaque_before = int((buffer.pixels[:, :, 3] > 0).sum())
        buffer = remove_border_background(
            buffer,
            min_brightness=self.config.candidate_min_brightness,
            max_chroma=self.config.candidate_max_chroma,
        )
        opaque_after = int((buffer.pixels[:, :, 3] > 0).sum())
        removed = opaque_before - opaque_after
        print(f"  Removed {removed} background pixels")
        self._debug_save(buffer, "02_segmented.png", job_id)

        print("\n[STEP 3] Trimming to content...")
        buffer = buffer.trim(self.config.trim_alpha_threshold)
        print(f"  Trimmed size: {buffer.width}x{buffer.height}")
        self._debug_save(buffer, "03_trimmed.png", job_id)

        print("\n[STEP 4] Feathering bottom edge...")
        buffer = apply_bottom_feather(buffer, start_ratio=self.config.feather_start_ratio)
        self._debug_save(buffer, "04_feathered.png", job_id)

        print("\n[STEP 5] Converting to greyscale...")
        buffer = buffer.greyscale().ensure_alpha()
        self._debug_save(buffer, "05_greyscale.png", job_id)

        metrics = {
            "input_size": input_size,
            "background_pixels_removed": removed,
            "trimmed_size": f"{buffer.width}x{buffer.height}",
        }
        return buffer, metrics

    def generate_card(
        self,
        portrait: Union[bytes, PixelBuffer],
        identifier: Optional[str] = None,
        job_id: str = ""
    ) -> CardResult:
        """
        Run the full pipeline on a generated portrait.

        Raises:
            DecodeError, InvalidDimensionsError, TemplateLoadError, EncodeError
        """
        start_time = time.time()

        template_name = select_template(identifier, self.config.template_names)

        print(f"\n{'='*60}")
        print(f"[CardPipeline] Starting pipeline")
        print(f"  Job ID: {job_id or '-'}")
        print(f"  Identifier: {identifier or '(none)'}")
        print(f"  Template: {template_name}")
        print(f"{'='*60}")

        subject, prepare_metrics = self.prepare_portrait(portrait, job_id=job_id)

        print(f"\n[STEP 6] Compositing onto {template_name}...")
        template = self.template_store.load(template_name)

        composition = composite_on_template(
            subject,
            template,
            illustration_bottom_ratio=self.config.illustration_bottom_ratio,
            min_top_ratio=self.config.min_top_ratio,
            max_avatar_width_ratio=self.config.max_avatar_width_ratio,
            allow_upscale=self.config.allow_upscale,
            glow_radius_ratio=self.config.glow_radius_ratio,
            glow_gain=self.config.glow_gain,
            halo_blend=self.config.glow_blend,
            subject_blend=self.config.subject_blend,
        )
        if composition.glow.degraded:
            print(f"  ⚠️ Glow skipped: {composition.glow.reason}")
        self._debug_save(composition.glow.buffer, "06_glow.png", job_id)
        self._debug_save(composition.card, "07_card.png", job_id)

        print("\n[STEP 7] Encoding PNG...")
        png_bytes = encode_png(composition.card, compression=self.config.png_compression)

        elapsed = time.time() - start_time

        metrics = {
            "success": True,
            "style": CARD_STYLE,
            "template": template_name,
            **prepare_metrics,
            **composition.to_metrics(),
            "output_size_bytes": len(png_bytes),
            "processing_time_ms": round(elapsed * 1000, 1),
        }

        print(f"\n{'='*60}")
        print(f"[CardPipeline] Complete in {elapsed*1000:.0f}ms")
        print(f"  Output: {composition.card.width}x{composition.card.height}, {len(png_bytes)} bytes")
        print(f"{'='*60}\n")

        return CardResult(
            png_bytes=png_bytes,
            template_name=template_name,
            degraded=composition.glow.degraded,
            degraded_reason=composition.glow.reason,
            metrics=metrics,
        )

    def generate_card_from_url(
        self,
        image_url: str,
        identifier: Optional[str] = None,
        job_id: str = ""
    ) -> CardResult:
        """
        Fetch the source image, run the portrait generator, then the pipeline.

        Raises:
            ImageFetchError: If the source cannot be fetched
            PortraitGenerationError: If the portrait generator fails
            CardPipelineError subclasses from generate_card
        """
        source_bytes = fetch_image_bytes(image_url, timeout=self.config.fetch_timeout)

        try:
            portrait_bytes = self.portrait_generator(source_bytes)
        except CardPipelineError:
            raise
        except Exception as e:
            print(f"  ❌ [CardPipeline] Portrait generator failed: {e}")
            raise PortraitGenerationError(f"Portrait generation failed: {e}") from e

        if not portrait_bytes:
            raise PortraitGenerationError("Portrait generator returned no image data")

        return self.generate_card(portrait_bytes, identifier=identifier, job_id=job_id)


# =============================================================================
# Public API
# =============================================================================

def generate_tarot_card(
    image_url: str,
    username: Optional[str],
    pipeline: CardPipeline
) -> Dict:
    """
    Returns:
        {"imageBase64", "style", "template", "degraded"}
    """
    result = pipeline.generate_card_from_url(image_url, identifier=username)
    return {
        "imageBase64": result.image_base64,
        "style": CARD_STYLE,
        "template": result.template_name,
        "degraded": result.degraded,
    }


def get_assigned_style_name(username: Optional[str] = None) -> str:
    return CARD_STYLE
