"""Gemini API client for image generation with error classification."""

from typing import Any

import httpx

from imagebatch.models.job import GenerationMode
from imagebatch.services.exceptions import (
    PermanentError,
    ProviderAuthError,
    ProviderNetworkError,
    ProviderRateLimitError,
    ProviderRequestError,
    ProviderResponseError,
    ProviderUnavailableError,
    ServiceError,
)
from imagebatch.services.image_generation.base import (
    ImageProvider,
    build_prompt,
    split_data_uri,
    to_data_uri,
)

ERROR_PREFIX = "Gemini API error: "


def classify_response(response: httpx.Response) -> ServiceError | None:
    """Map a non-success HTTP response to a provider error.

    Returns:
        Classified error instance, or None for 2xx responses
    """
    code = response.status_code
    if code < 400:
        return None

    detail = _error_detail(response)
    if code in (401, 403):
        return ProviderAuthError(f"{ERROR_PREFIX}Authentication failed ({code}): {detail}")
    if code == 429:
        return ProviderRateLimitError(f"{ERROR_PREFIX}Rate limit exceeded: {detail}")
    if code >= 500:
        return ProviderUnavailableError(f"{ERROR_PREFIX}Service unavailable ({code}): {detail}")
    return ProviderRequestError(f"{ERROR_PREFIX}Bad request ({code}): {detail}")


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        return str(payload["error"].get("message") or payload["error"])
    return response.text


def extract_image(payload: dict[str, Any]) -> str:
    """Pull the first inline image out of a generateContent response.

    Raises:
        ProviderResponseError: If there is no candidate or no image part
    """
    candidates = payload.get("candidates") or []
    if not candidates:
        raise ProviderResponseError(f"{ERROR_PREFIX}No candidate generated in response")

    parts = (candidates[0].get("content") or {}).get("parts") or []
    for part in parts:
        # REST responses use camelCase; some proxies pass snake_case through
        inline = part.get("inlineData") or part.get("inline_data")
        if inline and inline.get("data"):
            mime_type = inline.get("mimeType") or inline.get("mime_type") or "image/png"
            return to_data_uri(inline["data"], mime_type)

    raise ProviderResponseError(f"{ERROR_PREFIX}No image data found in response")


class GeminiImageClient(ImageProvider):
    """Image generation via the Gemini generateContent REST endpoint."""

    name = "gemini"

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash-image",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        aspect_ratio: str = "1:1",
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        """Initialize Gemini client.

        Args:
            api_key: Gemini API key (from GEMINI_API_KEY env var)
            model: Image-capable Gemini model name
            base_url: API root, without trailing slash
            aspect_ratio: Requested output aspect ratio
            timeout: Per-request HTTP timeout in seconds
            http_client: Shared client to use instead of creating one (tests inject a mock transport)
        """
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.aspect_ratio = aspect_ratio
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def build_payload(
        self,
        prompt: str,
        temperature: float,
        image: str | None = None,
        mode: GenerationMode | None = None,
    ) -> dict[str, Any]:
        """Build the generateContent request body."""
        parts: list[dict[str, Any]] = []
        if image:
            mime_type, data = split_data_uri(image)
            parts.append({"inlineData": {"mimeType": mime_type, "data": data}})
        parts.append({"text": build_prompt(prompt, image, mode)})

        return {
            "contents": [{"parts": parts}],
            "generationConfig": {
                "temperature": temperature,
                "responseModalities": ["IMAGE"],
                "imageConfig": {"aspectRatio": self.aspect_ratio},
            },
        }

    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 1.0,
        image: str | None = None,
        mode: GenerationMode | None = None,
    ) -> str:
        """Generate an image using Gemini.

        Returns:
            Generated image as a data URI

        Raises:
            PermanentError: Missing API key
            ProviderAuthError: Invalid API key (401, 403)
            ProviderRateLimitError: Rate limit exceeded (429)
            ProviderUnavailableError: Server error (5xx)
            ProviderRequestError: Other rejected request (4xx)
            ProviderResponseError: No image payload in the response
            ProviderNetworkError: Timeout or connection failure
        """
        if not self.api_key:
            raise PermanentError("GEMINI_API_KEY environment variable is required")

        payload = self.build_payload(prompt, temperature, image, mode)

        try:
            response = await self._client.post(
                self.endpoint,
                headers={"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
                json=payload,
            )
        except httpx.TimeoutException as e:
            raise ProviderNetworkError(f"{ERROR_PREFIX}Request timeout: {str(e)}") from e
        except httpx.HTTPError as e:
            raise ProviderNetworkError(f"{ERROR_PREFIX}Network error: {str(e)}") from e

        error = classify_response(response)
        if error is not None:
            raise error

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderResponseError(f"{ERROR_PREFIX}Invalid JSON in response") from e
        if not isinstance(body, dict):
            raise ProviderResponseError(f"{ERROR_PREFIX}Unexpected response format")

        return extract_image(body)

    async def aclose(self) -> None:
        await self._client.aclose()
