"""
Environment Configuration Helper

Builds the explicit PipelineConfig handed to CardPipeline from environment
variables (a .env file is loaded by app.py via python-dotenv). Values are
sanitised the same way everywhere: whitespace and stray newlines stripped,
empty treated as unset.

Usage:
    from cardkit.env_config import load_pipeline_config, get_config_summary
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .background_selector import DEFAULT_TEMPLATE_COUNT, template_names_for
from .blending import BLEND_MODES


class ConfigError(Exception):
    """Raised when a required configuration is missing or invalid."""
    pass


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_TEMPLATE_DIR = "assets/templates"

# Segmentation heuristic: keep these exact, boundary behaviour is tested
DEFAULT_CANDIDATE_MIN_BRIGHTNESS = 220
DEFAULT_CANDIDATE_MAX_CHROMA = 8

DEFAULT_TRIM_ALPHA_THRESHOLD = 0
DEFAULT_FEATHER_START_RATIO = 0.78

DEFAULT_GLOW_RADIUS_RATIO = 0.12
DEFAULT_GLOW_GAIN = 2.0
DEFAULT_GLOW_BLEND = "screen"
DEFAULT_SUBJECT_BLEND = "over"

# Card layout, as ratios of the template size
DEFAULT_ILLUSTRATION_BOTTOM_RATIO = 0.62
DEFAULT_MIN_TOP_RATIO = 0.15
DEFAULT_MAX_AVATAR_WIDTH_RATIO = 0.6

DEFAULT_PNG_COMPRESSION = 9
DEFAULT_FETCH_TIMEOUT = 30


def get_env(
    name: str,
    default: Optional[str] = None,
    required: bool = False,
    strip: bool = True
) -> Optional[str]:
    """
    Get environment variable with robust sanitization.

    Args:
        name: Environment variable name
        default: Default value if not set
        required: Raise ConfigError if missing/empty
        strip: Strip whitespace/newlines (default True)

    Returns:
        Sanitized value or default

    Raises:
        ConfigError: If required and missing/empty after sanitization
    """
    value = os.getenv(name, "")

    if strip and value:
        value = value.strip()
        value = value.replace('\n', '').replace('\r', '')

    if not value:
        if required:
            raise ConfigError(f"Required environment variable '{name}' is not set or empty")
        return default

    return value


def get_int_env(name: str, default: int, minimum: Optional[int] = None, maximum: Optional[int] = None) -> int:
    raw = get_env(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got '{raw}'")
    _check_range(name, value, minimum, maximum)
    return value


def get_float_env(name: str, default: float, minimum: Optional[float] = None, maximum: Optional[float] = None) -> float:
    raw = get_env(name)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a number, got '{raw}'")
    _check_range(name, value, minimum, maximum)
    return value


def get_bool_env(name: str, default: bool = False) -> bool:
    raw = get_env(name)
    if raw is None:
        return default
    lowered = raw.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ConfigError(f"{name} must be a boolean flag, got '{raw}'")


def _check_range(name: str, value, minimum, maximum):
    if minimum is not None and value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise ConfigError(f"{name} must be <= {maximum}, got {value}")


# =============================================================================
# Pipeline configuration
# =============================================================================

@dataclass(frozen=True)
class PipelineConfig:
    """
    Everything the card pipeline needs, passed in at construction time.

    Threshold defaults match the tuned values the tests pin down; the glow
    and layout constants are aesthetic and may be changed freely.
    """
    template_dir: Path = Path(DEFAULT_TEMPLATE_DIR)
    template_names: Tuple[str, ...] = field(
        default_factory=lambda: tuple(template_names_for(DEFAULT_TEMPLATE_COUNT))
    )

    candidate_min_brightness: int = DEFAULT_CANDIDATE_MIN_BRIGHTNESS
    candidate_max_chroma: int = DEFAULT_CANDIDATE_MAX_CHROMA
    trim_alpha_threshold: int = DEFAULT_TRIM_ALPHA_THRESHOLD
    feather_start_ratio: float = DEFAULT_FEATHER_START_RATIO

    glow_radius_ratio: float = DEFAULT_GLOW_RADIUS_RATIO
    glow_gain: float = DEFAULT_GLOW_GAIN
    glow_blend: str = DEFAULT_GLOW_BLEND
    subject_blend: str = DEFAULT_SUBJECT_BLEND

    illustration_bottom_ratio: float = DEFAULT_ILLUSTRATION_BOTTOM_RATIO
    min_top_ratio: float = DEFAULT_MIN_TOP_RATIO
    max_avatar_width_ratio: float = DEFAULT_MAX_AVATAR_WIDTH_RATIO
    allow_upscale: bool = False

    png_compression: int = DEFAULT_PNG_COMPRESSION
    fetch_timeout: int = DEFAULT_FETCH_TIMEOUT
    debug_dir: Optional[Path] = None

    def __post_init__(self):
        if not self.template_names:
            raise ConfigError("At least one background template is required")
        for mode_field in ("glow_blend", "subject_blend"):
            mode = getattr(self, mode_field)
            if mode not in BLEND_MODES:
                raise ConfigError(
                    f"{mode_field} must be one of {sorted(BLEND_MODES)}, got '{mode}'"
                )
        if self.min_top_ratio >= self.illustration_bottom_ratio:
            raise ConfigError("min_top_ratio must be below illustration_bottom_ratio")


def load_pipeline_config() -> PipelineConfig:
    """
    Read PipelineConfig from the environment.

    Raises:
        ConfigError: If any value is malformed or out of range
    """
    template_count = get_int_env("CARD_TEMPLATE_COUNT", DEFAULT_TEMPLATE_COUNT, minimum=1, maximum=99)
    debug_dir = get_env("DEBUG_CARD_DIR")

    return PipelineConfig(
        template_dir=Path(get_env("CARD_TEMPLATE_DIR", default=DEFAULT_TEMPLATE_DIR)),
        template_names=tuple(template_names_for(template_count)),
        candidate_min_brightness=get_int_env(
            "CARD_CANDIDATE_MIN_BRIGHTNESS", DEFAULT_CANDIDATE_MIN_BRIGHTNESS, 0, 255
        ),
        candidate_max_chroma=get_int_env(
            "CARD_CANDIDATE_MAX_CHROMA", DEFAULT_CANDIDATE_MAX_CHROMA, 0, 255
        ),
        feather_start_ratio=get_float_env(
            "CARD_FEATHER_START_RATIO", DEFAULT_FEATHER_START_RATIO, 0.0, 1.0
        ),
        glow_radius_ratio=get_float_env(
            "CARD_GLOW_RADIUS_RATIO", DEFAULT_GLOW_RADIUS_RATIO, 0.0, 1.0
        ),
        glow_gain=get_float_env("CARD_GLOW_GAIN", DEFAULT_GLOW_GAIN, 0.0),
        glow_blend=get_env("CARD_GLOW_BLEND", default=DEFAULT_GLOW_BLEND).lower(),
        subject_blend=get_env("CARD_SUBJECT_BLEND", default=DEFAULT_SUBJECT_BLEND).lower(),
        allow_upscale=get_bool_env("CARD_ALLOW_UPSCALE", False),
        png_compression=get_int_env("CARD_PNG_COMPRESSION", DEFAULT_PNG_COMPRESSION, 0, 9),
        fetch_timeout=get_int_env("CARD_FETCH_TIMEOUT", DEFAULT_FETCH_TIMEOUT, 1),
        debug_dir=Path(debug_dir) if debug_dir else None,
    )


def get_config_summary(config: Optional[PipelineConfig] = None) -> Dict[str, Any]:
    """
    Get a non-secret configuration summary for debugging.

    Returns dict with:
    - template_dir: configured directory
    - template_dir_exists: bool
    - templates: list of template names
    - missing_templates: names not present on disk
    - glow: radius ratio, gain and blend modes
    - debug_dir: where stage dumps go (None when disabled)
    """
    if config is None:
        config = load_pipeline_config()

    template_dir = Path(config.template_dir)
    missing = [name for name in config.template_names if not (template_dir / name).is_file()]

    return {
        "template_dir": str(template_dir),
        "template_dir_exists": template_dir.is_dir(),
        "templates": list(config.template_names),
        "missing_templates": missing,
        "segmentation": {
            "min_brightness": config.candidate_min_brightness,
            "max_chroma": config.candidate_max_chroma,
        },
        "glow": {
            "radius_ratio": config.glow_radius_ratio,
            "gain": config.glow_gain,
            "halo_blend": config.glow_blend,
            "subject_blend": config.subject_blend,
        },
        "allow_upscale": config.allow_upscale,
        "png_compression": config.png_compression,
        "debug_dir": str(config.debug_dir) if config.debug_dir else None,
    }


def validate_all_config() -> Tuple[bool, list]:
    """
    Validate all configuration on startup.

    Returns:
        Tuple of (all_valid, list_of_messages)
    """
    messages = []

    try:
        config = load_pipeline_config()
    except ConfigError as e:
        return False, [f"❌ Invalid configuration: {e}"]

    summary = get_config_summary(config)
    all_valid = True

    if not summary["template_dir_exists"]:
        all_valid = False
        messages.append(f"❌ Template directory not found: {summary['template_dir']}")
    elif summary["missing_templates"]:
        all_valid = False
        messages.append(f"⚠️ Missing templates: {', '.join(summary['missing_templates'])}")
    else:
        messages.append(f"✅ {len(summary['templates'])} templates available in {summary['template_dir']}")

    glow = summary["glow"]
    messages.append(
        f"ℹ️ Glow: radius_ratio={glow['radius_ratio']}, gain={glow['gain']}, "
        f"blend={glow['halo_blend']}/{glow['subject_blend']}"
    )

    if summary["debug_dir"]:
        messages.append(f"ℹ️ Stage debug dumps enabled: {summary['debug_dir']}")

    return all_valid, messages


def startup_validation():
    """Run startup validation and print results."""
    print("=" * 60)
    print("🔧 Configuration Validation")
    print("=" * 60)

    _, messages = validate_all_config()
    for msg in messages:
        print(f"  {msg}")

    print("=" * 60)
