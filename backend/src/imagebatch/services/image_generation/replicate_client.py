"""Replicate API client for image generation with error classification."""

import asyncio
import mimetypes
from typing import Any

import httpx
import replicate
from replicate.exceptions import ReplicateError as ReplicateAPIError

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
    DEFAULT_IMAGE_MIME_TYPE,
    ImageProvider,
    build_prompt,
    split_data_uri,
    to_data_uri,
)


def classify_error(exception: Exception) -> ServiceError:
    """Classify a Replicate SDK or network exception.

    Args:
        exception: Original exception from Replicate SDK or network layer

    Returns:
        Classified ServiceError subclass instance

    Classification rules:
        - Timeout errors → ProviderNetworkError
        - 429 (rate limit) → ProviderRateLimitError
        - 5xx / service unavailable → ProviderUnavailableError
        - 401/403 (authentication) → ProviderAuthError
        - Connection errors → ProviderNetworkError
        - Anything else → ProviderRequestError
    """
    error_message = str(exception)
    error_message_lower = error_message.lower()

    if "timeout" in error_message_lower or isinstance(exception, TimeoutError):
        return ProviderNetworkError(f"Network timeout: {error_message}")

    if "429" in error_message or "rate limit" in error_message_lower:
        return ProviderRateLimitError(f"Rate limit exceeded: {error_message}")

    if (
        "500" in error_message
        or "502" in error_message
        or "503" in error_message
        or "service unavailable" in error_message_lower
    ):
        return ProviderUnavailableError(f"Service unavailable: {error_message}")

    if (
        "401" in error_message
        or "403" in error_message
        or "unauthorized" in error_message_lower
        or "forbidden" in error_message_lower
        or "authentication" in error_message_lower
        or "invalid api token" in error_message_lower
    ):
        return ProviderAuthError(f"Authentication failed: {error_message}")

    if isinstance(exception, (ConnectionError, OSError)):
        return ProviderNetworkError(f"Connection error: {error_message}")

    return ProviderRequestError(f"Permanent error: {error_message}")


def _output_url(output: Any) -> str:
    """Extract the image URL from Replicate output (format varies by model)."""
    item = output[0] if isinstance(output, list) and output else output
    if item is None or isinstance(item, list):
        raise ProviderResponseError(f"Unexpected output format from Replicate: {type(output)}")
    # FileOutput exposes .url; older SDKs return plain URL strings
    url = getattr(item, "url", None) or str(item)
    if not url:
        raise ProviderResponseError("No image URL returned from Replicate")
    return url


class ReplicateImageClient(ImageProvider):
    """Image generation via a Replicate-hosted model.

    Replicate returns a CDN URL; the image is downloaded and re-encoded as a
    data URI so results stay self-contained like every other provider's.
    Temperature is not forwarded since Replicate image models do not take it.
    """

    name = "replicate"

    def __init__(
        self,
        api_token: str,
        model_version: str = "black-forest-labs/flux-kontext-pro",
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_token = api_token
        self.model_version = model_version
        self._client = http_client or httpx.AsyncClient(timeout=timeout)

    def build_input(
        self, prompt: str, image: str | None = None, mode: GenerationMode | None = None
    ) -> dict[str, Any]:
        model_input: dict[str, Any] = {"prompt": build_prompt(prompt, image, mode)}
        if image:
            mime_type, data = split_data_uri(image)
            model_input["input_image"] = to_data_uri(data, mime_type)
        return model_input

    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 1.0,
        image: str | None = None,
        mode: GenerationMode | None = None,
    ) -> str:
        """Generate image using Replicate API.

        Returns:
            Generated image as a data URI

        Raises:
            PermanentError: Token not configured or unexpected failure
            ProviderResponseError: Output carried no usable image
            TransientError: Network, rate limit or availability failure
        """
        if not self.api_token:
            raise PermanentError("REPLICATE_API_TOKEN not configured")

        model_input = self.build_input(prompt, image, mode)
        client = replicate.Client(api_token=self.api_token)

        try:
            # SDK is synchronous
            output = await asyncio.to_thread(client.run, self.model_version, input=model_input)
        except ReplicateAPIError as e:
            raise classify_error(e) from e
        except (ConnectionError, OSError, TimeoutError) as e:
            raise classify_error(e) from e
        except Exception as e:
            raise PermanentError(f"Unexpected error: {e}") from e

        return await self._download(_output_url(output))

    async def _download(self, image_url: str) -> str:
        try:
            response = await self._client.get(image_url)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise ProviderNetworkError(f"Image download timeout: {str(e)}") from e
        except httpx.HTTPError as e:
            raise ProviderNetworkError(f"Image download failed: {str(e)}") from e

        mime_type = response.headers.get("content-type", "").split(";", 1)[0].strip()
        if not mime_type.startswith("image/"):
            mime_type = mimetypes.guess_type(image_url)[0] or DEFAULT_IMAGE_MIME_TYPE
        return to_data_uri(response.content, mime_type)

    async def aclose(self) -> None:
        await self._client.aclose()
