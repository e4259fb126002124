from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from typing import Optional
from dotenv import load_dotenv


# Load environment variables
load_dotenv()

from cardkit.card_pipeline import CARD_STYLE, CardPipeline, PortraitGenerator, passthrough_generator
from cardkit.env_config import ConfigError, get_config_summary, load_pipeline_config, startup_validation
from cardkit.errors import CardPipelineError
from cardkit.image_source import is_supported_image_url

PIPELINE_VERSION = "1.0.0"
SERVICE_NAME = "tarot-card-api"

GENERIC_FAILURE_MESSAGE = "We couldn't generate your tarot card, please try again"

# Body field -> message returned when it fails validation
FIELD_ERROR_MESSAGES = {
    "imageUrl": "Image URL is required",
    "username": "Username must be a string",
}

app = FastAPI()


# Request model for card generation
class GenerateCardRequest(BaseModel):
    imageUrl: Optional[str] = None
    username: Optional[str] = None


# ============================================================================
# PIPELINE DEPENDENCIES
# ============================================================================

_pipeline: Optional[CardPipeline] = None


def get_portrait_generator() -> PortraitGenerator:
    """Model boundary; the default treats the input image as the portrait."""
    return passthrough_generator


def get_pipeline(generator: PortraitGenerator = Depends(get_portrait_generator)) -> CardPipeline:
    """Process-wide pipeline built from the environment on first use."""
    global _pipeline
    if _pipeline is None:
        _pipeline = CardPipeline(load_pipeline_config(), portrait_generator=generator)
    return _pipeline


@app.exception_handler(ConfigError)
async def config_error_handler(request: Request, exc: ConfigError):
    print(f"❌ Configuration error: {exc}")
    return JSONResponse({"error": GENERIC_FAILURE_MESSAGE, "kind": "config_error"}, status_code=500)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed bodies get a 400 with a short message instead of FastAPI's 422."""
    for error in exc.errors():
        loc = error.get("loc", ())
        if len(loc) >= 2 and loc[0] == "body" and loc[1] in FIELD_ERROR_MESSAGES:
            return JSONResponse({"error": FIELD_ERROR_MESSAGES[loc[1]]}, status_code=400)
    return JSONResponse({"error": "Invalid JSON body"}, status_code=400)


# ============================================================================
# STARTUP & HEALTH
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Validate configuration on startup."""
    startup_validation()


@app.get("/api/health", response_class=JSONResponse)
async def health():
    """
    Basic health check endpoint for load balancers and uptime monitoring.
    Returns minimal info without exposing internals.
    """
    return JSONResponse({
        "status": "ok",
        "service": SERVICE_NAME,
        "version": PIPELINE_VERSION
    })


@app.get("/api/config-check", response_class=JSONResponse)
async def config_check():
    """
    Configuration check endpoint for debugging.

    Returns non-secret configuration summary:
    - templates: directory, names and which are missing
    - glow: radius ratio, gain, blend modes
    - debug_dir: stage dump directory (None when disabled)
    """
    summary = get_config_summary()

    return JSONResponse({
        "templates": {
            "dir": summary["template_dir"],
            "dir_exists": summary["template_dir_exists"],
            "names": summary["templates"],
            "missing": summary["missing_templates"]
        },
        "segmentation": summary["segmentation"],
        "glow": summary["glow"],
        "allow_upscale": summary["allow_upscale"],
        "debug_dir": summary["debug_dir"]
    })


# ============================================================================
# CARD GENERATION
# ============================================================================


@app.post("/api/generate-card", response_class=JSONResponse)
async def generate_card(body: GenerateCardRequest, pipeline: CardPipeline = Depends(get_pipeline)):
    """
    Body: {"imageUrl": "<data: or http(s) URL>", "username": "<optional handle>"}

    Returns the finished card as base64 PNG.
    """
    image_url = body.imageUrl
    username = body.username

    print(f"[API] Generate tarot card request - username: {username}")

    if not image_url:
        return JSONResponse({"error": "Image URL is required"}, status_code=400)

    if not is_supported_image_url(image_url):
        return JSONResponse({"error": "Invalid image URL format"}, status_code=400)

    try:
        # CPU-bound stages run off the event loop
        result = await run_in_threadpool(
            pipeline.generate_card_from_url, image_url, username or None
        )
    except CardPipelineError as e:
        print(f"❌ [API] Card generation failed ({e.kind}): {e}")
        return JSONResponse({
            "error": GENERIC_FAILURE_MESSAGE,
            "kind": e.kind
        }, status_code=500)
    except Exception as e:
        print(f"❌ [API] Unexpected error: {e}")
        return JSONResponse({
            "error": GENERIC_FAILURE_MESSAGE,
            "kind": "internal_error"
        }, status_code=500)

    return JSONResponse({
        "success": True,
        "image": result.image_base64,
        "style": CARD_STYLE,
        "template": result.template_name,
        "degraded": result.degraded
    })
