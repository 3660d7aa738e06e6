"""Base interface for image generation providers."""

import base64
from abc import ABC, abstractmethod

from imagebatch.models.job import GenerationMode

DEFAULT_IMAGE_MIME_TYPE = "image/png"


class ImageProvider(ABC):
    """Abstract base class for image generation providers.

    A provider turns a prompt (and optionally a reference image) into exactly
    one image, returned as a self-contained data URI.
    """

    name: str = "provider"

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        temperature: float = 1.0,
        image: str | None = None,
        mode: GenerationMode | None = None,
    ) -> str:
        """
        Generate one image.

        Args:
            prompt: Text description of the image to generate
            temperature: Sampling temperature (0-2)
            image: Optional reference image as base64 or a base64 data URI
            mode: How to use the reference image (edit or reference)

        Returns:
            Generated image as a data URI (data:<mime>;base64,<data>)

        Raises:
            ServiceError: If generation fails for any reason
        """
        pass

    async def aclose(self) -> None:
        """Release any resources held by the provider."""
        return None


def split_data_uri(image: str) -> tuple[str, str]:
    """Split a base64 data URI into (mime_type, base64_data).

    Bare base64 strings are accepted and assumed to be PNG.
    """
    if "," not in image:
        return DEFAULT_IMAGE_MIME_TYPE, image

    header, data = image.split(",", 1)
    mime_type = DEFAULT_IMAGE_MIME_TYPE
    if header.startswith("data:"):
        declared = header[len("data:") :].split(";", 1)[0]
        if declared:
            mime_type = declared
    return mime_type, data


def to_data_uri(data: bytes | str, mime_type: str = DEFAULT_IMAGE_MIME_TYPE) -> str:
    """Encode image bytes (or already-base64 text) as a data URI."""
    if isinstance(data, bytes):
        data = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type};base64,{data}"


def build_prompt(prompt: str, image: str | None, mode: GenerationMode | None) -> str:
    """Prefix the prompt with an instruction describing how to use the image."""
    if not image or mode is None:
        return prompt
    if GenerationMode(mode) == GenerationMode.EDIT:
        return f"Edit the provided image: {prompt}"
    return f"Use the provided image as a visual reference. {prompt}"
