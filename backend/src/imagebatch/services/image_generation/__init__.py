"""Image generation providers."""

from imagebatch.core.config import Settings
from imagebatch.services.image_generation.base import ImageProvider
from imagebatch.services.image_generation.gemini_client import GeminiImageClient
from imagebatch.services.image_generation.replicate_client import ReplicateImageClient


def create_image_provider(settings: Settings) -> ImageProvider:
    """Build the provider selected by IMAGE_PROVIDER."""
    if settings.image_provider == "replicate":
        return ReplicateImageClient(
            api_token=settings.replicate_api_token,
            model_version=settings.replicate_model_version,
            timeout=settings.provider_http_timeout_seconds,
        )
    return GeminiImageClient(
        api_key=settings.gemini_api_key,
        model=settings.gemini_model,
        base_url=settings.gemini_api_base_url,
        aspect_ratio=settings.image_aspect_ratio,
        timeout=settings.provider_http_timeout_seconds,
    )


__all__ = [
    "ImageProvider",
    "GeminiImageClient",
    "ReplicateImageClient",
    "create_image_provider",
]
