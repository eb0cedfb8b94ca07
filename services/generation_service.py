"""Virtual try-on generation through the Replicate predictions API"""
import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from config import (
    REPLICATE_API_BASE,
    REPLICATE_MODEL,
    REPLICATE_POLL_INTERVAL_SECONDS,
    GENERATION_TIMEOUT_SECONDS,
)
from services.errors import GenerationFailedError, ExtractionFailedError
from services.upload_service import auth_headers

logger = logging.getLogger(__name__)

TRYON_PROMPT = (
    "Virtual try-on: Replace the shirt/top the person is wearing in the first image "
    "with the garment shown in the second image. "
    "Keep the person's face, hair, body pose, skin tone, and proportions exactly the same. "
    "Preserve the original background, scene lighting, shadows, and color temperature. "
    "The new garment should fit naturally on the person's body with realistic fabric texture, "
    "drape, wrinkles, and stitching details matching the flat-lay garment provided. "
    "Produce a photorealistic, catalog-quality image with sharp focus and seamless blending."
)

# Fixed output parameters sent with every prediction
OUTPUT_PARAMS = {
    "aspect_ratio": "match_input_image",
    "resolution": "4K",
    "output_format": "jpg",
    "safety_filter_level": "block_only_high",
}

PENDING_STATUSES = ("starting", "processing")


def build_prediction_input(model_ref: str, garment_ref: str) -> dict:
    return {
        "prompt": TRYON_PROMPT,
        "image_input": [model_ref, garment_ref],
        **OUTPUT_PARAMS,
    }


def extract_output_url(output: Any) -> str:
    """Pull a single result URL out of a prediction's ``output`` field"""
    if isinstance(output, list):
        if not output:
            raise ExtractionFailedError("Replicate returned an empty output list.")
        return extract_output_url(output[0])
    if isinstance(output, str) and output.startswith(("http://", "https://", "data:")):
        return output
    raise ExtractionFailedError()


def _error_text(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        return str(body.get("detail") or body.get("error") or body)
    return response.text


def _prediction_body(response: httpx.Response) -> dict:
    prediction = response.json()
    if not isinstance(prediction, dict):
        raise GenerationFailedError(f"Unexpected response from Replicate: {response.text[:200]}")
    return prediction


async def _run_prediction(client: httpx.AsyncClient, model_ref: str, garment_ref: str) -> str:
    url = f"{REPLICATE_API_BASE}/models/{REPLICATE_MODEL}/predictions"
    wait = max(1, min(60, int(GENERATION_TIMEOUT_SECONDS)))
    headers = {**auth_headers(), "Prefer": f"wait={wait}"}
    deadline = time.monotonic() + GENERATION_TIMEOUT_SECONDS

    logger.info(f"Creating prediction on {REPLICATE_MODEL}")
    response = await client.post(url, json={"input": build_prediction_input(model_ref, garment_ref)}, headers=headers)
    if not response.is_success:
        logger.error(f"HTTP error from Replicate: {response.status_code} - {response.text}")
        raise GenerationFailedError(f"Replicate API error {response.status_code}: {_error_text(response)}")
    prediction = _prediction_body(response)

    # Poll until the prediction settles
    while prediction.get("status") in PENDING_STATUSES:
        if time.monotonic() >= deadline:
            raise GenerationFailedError(f"Prediction {prediction.get('id')} timed out after {GENERATION_TIMEOUT_SECONDS:g}s")
        await asyncio.sleep(REPLICATE_POLL_INTERVAL_SECONDS)
        poll_url = (prediction.get("urls") or {}).get("get")
        if not poll_url:
            raise GenerationFailedError("Prediction is still running but has no status URL")
        response = await client.get(poll_url, headers=auth_headers())
        if not response.is_success:
            logger.error(f"HTTP error polling Replicate: {response.status_code} - {response.text}")
            raise GenerationFailedError(f"Replicate API error {response.status_code}: {_error_text(response)}")
        prediction = _prediction_body(response)
        logger.info(f"Prediction {prediction.get('id')} status: {prediction.get('status')}")

    status = prediction.get("status")
    if status != "succeeded":
        reason = prediction.get("error") or f"prediction {status}"
        logger.error(f"Prediction {prediction.get('id')} ended as {status}: {reason}")
        raise GenerationFailedError(str(reason))

    image_url = extract_output_url(prediction.get("output"))
    logger.info(f"Prediction {prediction.get('id')} produced: {image_url}")
    return image_url


async def generate_tryon(model_ref: str, garment_ref: str, client: Optional[httpx.AsyncClient] = None) -> str:
    """Run one try-on generation and return the result image URL.

    Each ref is a data URL or a hosted URL. Single attempt, no retries.
    """
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=GENERATION_TIMEOUT_SECONDS) as own_client:
                return await _run_prediction(own_client, model_ref, garment_ref)
        return await _run_prediction(client, model_ref, garment_ref)
    except httpx.HTTPError as e:
        logger.error(f"HTTP call to Replicate failed: {str(e)}")
        raise GenerationFailedError(str(e) or e.__class__.__name__)
    except ValueError as e:
        # Non-JSON body from the service
        raise GenerationFailedError(f"Unexpected response from Replicate: {str(e)}")
