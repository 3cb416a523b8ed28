from __future__ import annotations

from urllib.parse import urljoin

import requests
import structlog

from menu_digitalizer.core.config import settings
from menu_digitalizer.core.errors import ExternalAPIError

logger = structlog.get_logger(__name__)

SERVICE_NAME = "anthropic"

MENU_EXTRACTION_PROMPT = """Analyze this restaurant menu image and extract all menu items in a structured format.

For each menu item, provide:
- name: The dish name
- price: The price (if visible)
- description: Brief description (if available)
- category: Type of dish (appetizer, main, dessert, beverage, etc.)
- ingredients: List of main ingredients mentioned
- allergens: Common allergens present (nuts, dairy, gluten, shellfish, etc.)
- dietary: Any dietary tags (vegetarian, vegan, gluten-free, etc.)

Also identify the restaurant name if visible.

Return ONLY valid JSON in this exact format:
{
  "restaurant_name": "Restaurant Name or null",
  "items": [
    {
      "name": "Dish Name",
      "price": "$X.XX or null",
      "description": "Description or null",
      "category": "Category",
      "ingredients": ["ingredient1", "ingredient2"],
      "allergens": ["allergen1"],
      "dietary": ["tag1", "tag2"]
    }
  ]
}

Be thorough and extract all visible menu items."""


def models_url() -> str:
    """Model listing endpoint next to the configured messages endpoint."""
    return urljoin(settings.vision_api_url, "models")


def _error_detail(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
    return response.text


def build_payload(image_b64: str, media_type: str, *, model: str | None = None) -> dict[str, object]:
    return {
        "model": model or settings.vision_model,
        "max_tokens": settings.vision_max_tokens,
        "messages": [
            {
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": media_type,
                            "data": image_b64,
                        },
                    },
                    {"type": "text", "text": MENU_EXTRACTION_PROMPT},
                ],
            }
        ],
    }


def request_menu_extraction(
    image_b64: str,
    media_type: str,
    *,
    model: str | None = None,
) -> str:
    """
    Send a menu photo to the vision model and return its text reply.

    Exactly one request is made; there is no retry.

    Args:
        image_b64: Base64-encoded image data
        media_type: Declared media type of the image (e.g. image/jpeg)
        model: Model to use (default: from settings.vision_model)

    Returns:
        The text content of the model reply

    Raises:
        RuntimeError: If the Anthropic API key is not configured
        ExternalAPIError: On transport failure or a non-success status
    """
    if not settings.anthropic_api_key:
        raise RuntimeError("ANTHROPIC_API_KEY is not configured")

    headers = {
        "x-api-key": settings.anthropic_api_key,
        "anthropic-version": settings.vision_api_version,
        "content-type": "application/json",
    }
    payload = build_payload(image_b64, media_type, model=model)

    logger.info(
        "vision_request",
        model=payload["model"],
        media_type=media_type,
        image_length=len(image_b64),
    )

    try:
        response = requests.post(
            settings.vision_api_url,
            headers=headers,
            json=payload,
            timeout=settings.vision_timeout_seconds,
        )
    except requests.RequestException as exc:
        raise ExternalAPIError(SERVICE_NAME, f"Vision request failed: {exc}") from exc

    if not response.ok:
        raise ExternalAPIError(
            SERVICE_NAME,
            _error_detail(response),
            status_code=response.status_code,
        )

    try:
        data = response.json()
    except ValueError as exc:
        raise ExternalAPIError(
            SERVICE_NAME,
            response.text or "Vision response was not valid JSON",
            status_code=response.status_code,
        ) from exc

    text = "".join(
        block.get("text", "")
        for block in data.get("content", [])
        if block.get("type") == "text"
    )

    logger.info(
        "vision_response",
        response_length=len(text),
        stop_reason=data.get("stop_reason"),
    )
    return text
