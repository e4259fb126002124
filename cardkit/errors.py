"""
Card Pipeline Error Kinds

Every fatal failure raised by the card pipeline derives from CardPipelineError
and carries a short `kind` string, so the web layer can report which stage
failed without exposing internals.

HaloSynthesisFailure is the only recoverable kind: the glow stage catches it
and passes the subject through unmodified.
"""


class CardPipelineError(Exception):
    """Base class for card pipeline failures."""
    kind = "pipeline_error"


class DecodeError(CardPipelineError):
    """Raised when input bytes are not a valid raster."""
    kind = "decode_error"


class InvalidDimensionsError(CardPipelineError):
    """Raised when a stage receives a zero-area buffer."""
    kind = "invalid_dimensions"


class HaloSynthesisFailure(CardPipelineError):
    """Raised inside the glow stage; never escapes it."""
    kind = "halo_synthesis_failure"


class TemplateLoadError(CardPipelineError):
    """Raised when a background template is missing or malformed."""
    kind = "template_load_error"


class EncodeError(CardPipelineError):
    """Raised when the final card cannot be encoded."""
    kind = "encode_error"


class ImageFetchError(CardPipelineError):
    """Raised when the source image cannot be fetched or parsed."""
    kind = "image_fetch_error"


class PortraitGenerationError(CardPipelineError):
    """Raised when the portrait generator fails on the source image."""
    kind = "portrait_generation_error"
