"""Relay raw images to Replicate file hosting and return a durable URL"""
import logging
from typing import Optional

import httpx

from config import REPLICATE_API_BASE, REPLICATE_API_TOKEN, GENERATION_TIMEOUT_SECONDS
from services.errors import UploadFailedError

logger = logging.getLogger(__name__)


def auth_headers() -> dict:
    if not REPLICATE_API_TOKEN:
        logger.warning("REPLICATE_API_TOKEN not configured. Remote calls will be rejected.")
    return {"Authorization": f"Bearer {REPLICATE_API_TOKEN or ''}"}


async def upload_file(content: bytes, filename: str, content_type: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """Upload bytes to the file-hosting endpoint and return ``urls.get``.

    Every call is a fresh upload, identical content is not deduplicated.
    """
    files = [("content", (filename, content, content_type))]
    url = f"{REPLICATE_API_BASE}/files"
    logger.info(f"Uploading {filename} ({len(content)} bytes, {content_type}) to {url}")

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=GENERATION_TIMEOUT_SECONDS) as own_client:
                response = await own_client.post(url, files=files, headers=auth_headers())
        else:
            response = await client.post(url, files=files, headers=auth_headers())
    except httpx.HTTPError as e:
        logger.error(f"Upload request to {url} failed: {str(e)}")
        raise UploadFailedError(0, str(e))

    if not response.is_success:
        logger.error(f"Upload rejected: {response.status_code} - {response.text}")
        raise UploadFailedError(response.status_code, response.text)

    try:
        hosted_url = response.json()["urls"]["get"]
    except (ValueError, KeyError, TypeError):
        raise UploadFailedError(response.status_code, f"Unexpected upload response: {response.text}")

    logger.info(f"Uploaded {filename}: {hosted_url}")
    return hosted_url
