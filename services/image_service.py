"""Image validation, encoding and download helpers"""
import base64
import logging
from io import BytesIO
from typing import Optional

import httpx
from PIL import Image, UnidentifiedImageError

from config import ALLOWED_IMAGE_TYPES, MAX_IMAGE_SIZE, PREVIEW_SIZE, DOWNLOAD_TIMEOUT_SECONDS
from services.errors import ImageValidationError, UpstreamError

logger = logging.getLogger(__name__)

INVALID_TYPE_MESSAGE = "Invalid file type. Please upload a JPEG or PNG image."
TOO_LARGE_MESSAGE = "File is too large. Maximum size is 10MB."

_MESSAGES = {"invalid_type": INVALID_TYPE_MESSAGE, "too_large": TOO_LARGE_MESSAGE}


def _check(content_type: Optional[str], size: int) -> Optional[str]:
    if content_type not in ALLOWED_IMAGE_TYPES:
        return "invalid_type"
    if size > MAX_IMAGE_SIZE:
        return "too_large"
    return None


def validate_image(content: bytes, content_type: Optional[str], size: Optional[int] = None) -> Optional[str]:
    """Return an error message if the image breaks the upload policy, else None.

    ``size`` defaults to ``len(content)``. Exactly 10MB is accepted.
    """
    if size is None:
        size = len(content)
    reason = _check(content_type, size)
    return _MESSAGES[reason] if reason else None


def ensure_valid_image(content: bytes, content_type: Optional[str], label: Optional[str] = None) -> None:
    """Raise ImageValidationError with an optionally labeled message"""
    reason = _check(content_type, len(content))
    if reason is None:
        return
    message = _MESSAGES[reason]
    if label:
        message = f"{label}: {message}"
    raise ImageValidationError(message, reason=reason)


def to_data_url(content: bytes, content_type: str) -> str:
    """Encode raw image bytes as a data URL"""
    encoded = base64.b64encode(content).decode("utf-8")
    return f"data:{content_type};base64,{encoded}"


def make_preview(content: bytes) -> bytes:
    """Render a JPEG thumbnail used as the preview reference of an uploaded image"""
    try:
        img = Image.open(BytesIO(content)).convert("RGB")
    except (UnidentifiedImageError, OSError) as e:
        raise ImageValidationError(f"Could not read image: {str(e)}", reason="unreadable")
    img.thumbnail(PREVIEW_SIZE)
    buffer = BytesIO()
    img.save(buffer, format="JPEG")
    return buffer.getvalue()


async def download_image(url: str, client: Optional[httpx.AsyncClient] = None) -> bytes:
    """Download image bytes from URL"""
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT_SECONDS) as own_client:
                response = await own_client.get(url)
        else:
            response = await client.get(url)
        response.raise_for_status()
        logger.info(f"Downloaded image from: {url} ({len(response.content)} bytes)")
        return response.content
    except httpx.HTTPError as e:
        logger.error(f"Error downloading image from {url}: {str(e)}")
        raise UpstreamError(f"Failed to download image from URL: {str(e)}")
