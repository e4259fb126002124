"""
Source image fetching.

The front end sends either an inline base64 data URL (uploads) or a plain
HTTP(S) URL (avatars hosted elsewhere). Both end up as raw bytes here;
anything else is rejected.
"""

import base64
import binascii
import os
import re
import time
from typing import Tuple

import requests

from .errors import ImageFetchError

DEFAULT_TIMEOUT = 30

DATA_URL_PATTERN = re.compile(r"^data:([^;]+);base64,(.+)$", re.DOTALL)

DEBUG_ENABLED = os.getenv("DEBUG_CARD", "0") == "1"


def is_supported_image_url(image_url: str) -> bool:
    return image_url.startswith("data:") or image_url.startswith("http")


def decode_data_url(image_url: str) -> Tuple[bytes, str]:
    """
    Split a base64 data URL into (payload_bytes, mime_type).

    Raises:
        ImageFetchError: If the URL is not a well-formed base64 data URL
    """
    match = DATA_URL_PATTERN.match(image_url)
    if not match:
        raise ImageFetchError("Invalid base64 data URL format")

    mime_type, payload = match.group(1), match.group(2)
    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ImageFetchError(f"Invalid base64 payload: {e}") from e

    if not content:
        raise ImageFetchError("Data URL contains no image data")

    return content, mime_type


def download_image(image_url: str, timeout: int = DEFAULT_TIMEOUT) -> bytes:
    """
    GET an image over HTTP(S).

    Raises:
        ImageFetchError: On timeout, connection failure or non-2xx response
    """
    start_time = time.time()

    try:
        response = requests.get(image_url, timeout=timeout)
    except requests.exceptions.Timeout:
        raise ImageFetchError(f"Image download timed out after {timeout}s")
    except requests.exceptions.RequestException as e:
        raise ImageFetchError(f"Could not download image: {e}")

    if not 200 <= response.status_code < 300:
        raise ImageFetchError(f"Failed to fetch avatar image: HTTP {response.status_code}")

    content = response.content
    if not content:
        raise ImageFetchError("Downloaded image is empty")

    if DEBUG_ENABLED:
        elapsed = time.time() - start_time
        print(f"  [ImageSource] Downloaded {len(content)} bytes in {elapsed * 1000:.0f}ms")

    return content


def fetch_image_bytes(image_url: str, timeout: int = DEFAULT_TIMEOUT) -> bytes:
    """
    Resolve a data URL or HTTP(S) URL to raw image bytes.

    Raises:
        ImageFetchError: If the URL is unsupported or fetching fails
    """
    if not image_url:
        raise ImageFetchError("Image URL is required")

    if image_url.startswith("data:"):
        content, _ = decode_data_url(image_url)
        return content

    if image_url.startswith("http://") or image_url.startswith("https://"):
        return download_image(image_url, timeout=timeout)

    raise ImageFetchError("Invalid image URL format")
