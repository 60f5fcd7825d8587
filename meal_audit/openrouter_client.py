import asyncio
import base64
import logging
from typing import Optional, Protocol, Union

import httpx

from meal_audit.config import Settings
from meal_audit.errors import ConfigurationError
from meal_audit.schemas import SUPPORTED_LANGUAGES

logger = logging.getLogger(__name__)

# Retry configuration (transport level only; 429 is never retried here)
RETRY_INITIAL_DELAY = 1.0  # seconds
RETRY_MAX_DELAY = 10.0  # seconds
RETRY_BACKOFF_MULTIPLIER = 2.0
RETRYABLE_STATUS_CODES = {500, 502, 503, 504}

# OpenRouter request configuration
OPENROUTER_MAX_TOKENS = 4000  # four languages per text field
OPENROUTER_IMAGE_DETAIL = "high"  # portion sizes need detail


class OpenRouterError(Exception):
    """Custom exception for OpenRouter API errors"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OpenRouterResponseError(OpenRouterError):
    """OpenRouter answered 200 but the chat-completions envelope is unusable"""


class InferenceClient(Protocol):
    async def analyze_image(self, image: Union[str, bytes], mime_type: str = "image/jpeg") -> str:
        """Return the model's raw JSON text for one meal photo."""
        ...


def _localized_text_schema(description: str) -> dict:
    return {
        "type": "object",
        "description": description,
        "properties": {lang: {"type": "string"} for lang in SUPPORTED_LANGUAGES},
        "required": list(SUPPORTED_LANGUAGES),
        "additionalProperties": False,
    }


def build_analysis_schema() -> dict:
    """JSON schema the model must answer with (camelCase wire shape)."""
    item = {
        "type": "object",
        "properties": {
            "name": _localized_text_schema("Name of the food item (e.g. Luchi, Macher Jhol, Chholar Dal)"),
            "portion": _localized_text_schema("Estimated portion size (e.g. 2 pieces, 1 bowl)"),
            "calories": {"type": "number", "description": "Calories in kcal"},
            "protein": {"type": "number", "description": "Protein in grams"},
            "carbs": {"type": "number", "description": "Carbohydrates in grams"},
            "fats": {"type": "number", "description": "Fats in grams"},
            "notes": _localized_text_schema("Ingredients detected (e.g. contains mustard oil)"),
            "status": {"type": "string", "enum": ["PASS", "WARNING", "FAIL"]},
        },
        "required": ["name", "portion", "calories", "protein", "carbs", "fats", "notes", "status"],
        "additionalProperties": False,
    }
    return {
        "type": "object",
        "properties": {
            "items": {"type": "array", "items": item},
            "totalCalories": {"type": "number"},
            "totalProtein": {"type": "number"},
            "totalCarbs": {"type": "number"},
            "totalFats": {"type": "number"},
            "healthRating": {"type": "number", "description": "0-10, how balanced this meal is"},
            "advice": _localized_text_schema("A short, helpful tip about this specific meal"),
        },
        "required": [
            "items",
            "totalCalories",
            "totalProtein",
            "totalCarbs",
            "totalFats",
            "healthRating",
            "advice",
        ],
        "additionalProperties": False,
    }


def build_meal_analysis_prompt() -> str:
    """
    Static instruction for meal analysis.

    The prompt never includes user text, so the only injection surface is
    the image itself.
    """
    languages = ", ".join(SUPPORTED_LANGUAGES)
    return f"""Analyze this photo of an Indian/Bengali meal.
Identify every food item (e.g. Rice, Dal, Bhaja, Macher Jhol, Luchi, Mishti).
Estimate nutrition precisely, based on standard Bengali household cooking styles
and typical home portion sizes, including cooking oil.

For each item set "status":
- PASS: nutritionally sound as served
- WARNING: acceptable in moderation (fried, sugary, oily)
- FAIL: nutritionally poor for a regular meal

Every text field (name, portion, notes, advice) is an object with one string per
language code: {languages}. Write each in that language (en=English, bn=Bengali,
hi=Hindi, as=Assamese).

healthRating is 0-10 for how balanced the whole meal is.

If the image contains no edible food, return an empty "items" list, all totals 0
and healthRating 0.

Respond with JSON only, matching the provided schema."""


class OpenRouterClient:
    """Vision-language calls through OpenRouter's chat-completions API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str = "https://openrouter.ai/api/v1",
        timeout: float = 30.0,
        temperature: float = 0.1,
        max_attempts: int = 2,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key or not api_key.strip():
            raise ConfigurationError(
                "OpenRouter API key is not configured. Set OPENROUTER_API_KEY in the environment or .env file."
            )
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature
        self.max_attempts = max(1, max_attempts)
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenRouterClient":
        return cls(
            api_key=settings.openrouter_api_key,
            model=settings.openrouter_model,
            base_url=settings.openrouter_base_url,
            timeout=settings.inference_timeout,
            temperature=settings.inference_temperature,
            max_attempts=settings.inference_max_attempts,
        )

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Title": "Meal Audit",
        }

    def _payload(self, data_url: str) -> dict:
        return {
            "model": self.model,
            "max_tokens": OPENROUTER_MAX_TOKENS,
            "temperature": self.temperature,
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": "nutrition_analysis",
                    "strict": True,
                    "schema": build_analysis_schema(),
                },
            },
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": build_meal_analysis_prompt()},
                        {
                            "type": "image_url",
                            "image_url": {
                                "url": data_url,
                                "detail": OPENROUTER_IMAGE_DETAIL,
                            },
                        },
                    ],
                }
            ],
        }

    async def _post_with_retry(self, client: httpx.AsyncClient, url: str, payload: dict) -> httpx.Response:
        """
        POST with exponential backoff for 5xx and network errors.

        429 is returned to the caller on the first occurrence: retrying a rate
        limit only burns quota faster.
        """
        for attempt in range(1, self.max_attempts + 1):
            delay = min(
                RETRY_INITIAL_DELAY * (RETRY_BACKOFF_MULTIPLIER ** (attempt - 1)),
                RETRY_MAX_DELAY,
            )
            try:
                response = await client.post(url, headers=self._headers(), json=payload)
            except httpx.RequestError as e:
                if attempt < self.max_attempts:
                    logger.warning(
                        f"OpenRouter request failed ({type(e).__name__}), "
                        f"retrying in {delay:.1f}s (attempt {attempt}/{self.max_attempts})"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise

            if response.status_code in RETRYABLE_STATUS_CODES and attempt < self.max_attempts:
                logger.warning(
                    f"OpenRouter returned {response.status_code}, "
                    f"retrying in {delay:.1f}s (attempt {attempt}/{self.max_attempts})"
                )
                await asyncio.sleep(delay)
                continue

            return response

        raise OpenRouterError("Unexpected retry loop exit")

    async def analyze_image(self, image: Union[str, bytes], mime_type: str = "image/jpeg") -> str:
        """
        Send one meal photo and return the model's message content.

        Args:
            image: Raw image bytes or their base64 text
            mime_type: MIME type of the image

        Raises:
            OpenRouterError: non-200 status, timeout or network failure
            OpenRouterResponseError: 200 with an unusable envelope
        """
        if isinstance(image, bytes):
            b64_image = base64.b64encode(image).decode("ascii")
        else:
            b64_image = image
        data_url = f"data:{mime_type};base64,{b64_image}"

        logger.debug(f"Prepared image data URL (length: {len(data_url)} chars)")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await self._post_with_retry(
                    client, f"{self.base_url}/chat/completions", self._payload(data_url)
                )
        except httpx.TimeoutException:
            logger.error("OpenRouter API request timed out")
            raise OpenRouterError("Request to OpenRouter API timed out")
        except httpx.RequestError as e:
            logger.error(f"OpenRouter API request failed: {e}")
            raise OpenRouterError(f"Failed to connect to OpenRouter API: {e}")

        if response.status_code != 200:
            error_detail = response.text[:500]
            logger.error(f"OpenRouter API error: {response.status_code} - {error_detail}")
            raise OpenRouterError(
                f"OpenRouter API returned {response.status_code}: {error_detail}",
                status_code=response.status_code,
            )

        try:
            result = response.json()
        except ValueError as e:
            raise OpenRouterResponseError(f"OpenRouter returned non-JSON body: {e}", status_code=200)

        if not isinstance(result, dict):
            raise OpenRouterResponseError("OpenRouter returned non-dict response", status_code=200)

        # Some providers report upstream failures inside a 200 body
        if "error" in result and "choices" not in result:
            error = result["error"] if isinstance(result["error"], dict) else {"message": str(result["error"])}
            code = error.get("code")
            raise OpenRouterError(
                f"OpenRouter upstream error: {error.get('message', 'unknown')}",
                status_code=code if isinstance(code, int) else None,
            )

        usage = result.get("usage")
        if usage:
            logger.info(
                f"OpenRouter token usage: "
                f"prompt={usage.get('prompt_tokens', 'N/A')}, "
                f"completion={usage.get('completion_tokens', 'N/A')}, "
                f"total={usage.get('total_tokens', 'N/A')}"
            )

        try:
            content = result["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error(f"Unexpected response structure from OpenRouter: {e}")
            raise OpenRouterResponseError(
                f"Unexpected response structure from OpenRouter: {e}", status_code=200
            )

        if isinstance(content, list):
            content = "".join(part.get("text", "") for part in content if isinstance(part, dict))
        if not isinstance(content, str):
            raise OpenRouterResponseError("OpenRouter message content is not text", status_code=200)

        return content


def build_inference_client(settings: Settings) -> OpenRouterClient:
    """Client factory used by the orchestrator; raises ConfigurationError without credentials."""
    return OpenRouterClient.from_settings(settings)
