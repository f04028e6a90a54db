"""OpenAI DALL-E adapter.

text-to-image: JSON POST /images/generations
image-to-image: multipart POST /images/edits (dall-e-2 only)
Both return base64 PNGs; dall-e-3 also reports a revised prompt.
"""

from __future__ import annotations

import logging
import time

import httpx

from imagegen.backends.base import BaseBackendAdapter, decode_b64_image
from imagegen.gateway.types import (
    Backend,
    BackendInfo,
    GeneratedImage,
    GenerationMode,
    GenerationRequest,
    GenerationResponse,
    ModelInfo,
    RateLimitPolicy,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api.openai.com/v1"

OPENAI_INFO = BackendInfo(
    backend=Backend.OPENAI,
    name="OpenAI DALL-E",
    description="State-of-the-art image generation from OpenAI",
    supported_modes=(GenerationMode.TEXT_TO_IMAGE, GenerationMode.IMAGE_TO_IMAGE),
    supported_sizes=("1024x1024", "1024x1792", "1792x1024"),
    models=(
        ModelInfo(
            id="dall-e-3",
            name="DALL-E 3",
            description="Latest model with best quality",
            capabilities=(GenerationMode.TEXT_TO_IMAGE,),
            max_images=1,
            estimated_seconds=20,
            cost_per_image=0.04,
        ),
        ModelInfo(
            id="dall-e-2",
            name="DALL-E 2",
            description="Supports editing",
            capabilities=(GenerationMode.TEXT_TO_IMAGE, GenerationMode.IMAGE_TO_IMAGE),
            max_images=4,
            estimated_seconds=15,
            cost_per_image=0.02,
        ),
    ),
    rate_limit=RateLimitPolicy(requests_per_window=5, window_ms=60_000, images_per_request=4),
    price_per_image=0.04,
    billing_url="https://platform.openai.com/usage",
)

# Sizes each model accepts; anything else falls back to the square default
_MODEL_SIZES = {
    "dall-e-3": {"1024x1024", "1024x1792", "1792x1024"},
    "dall-e-2": {"256x256", "512x512", "1024x1024"},
}


class OpenAIAdapter(BaseBackendAdapter):
    """OpenAI Images API adapter."""

    info = OPENAI_INFO
    validation_url = f"{API_BASE}/models"

    def _auth_headers(self, api_key: str | None = None) -> dict[str, str]:
        headers = super()._auth_headers(api_key)
        if self.credential and self.credential.organization_id:
            headers["OpenAI-Organization"] = self.credential.organization_id
        return headers

    def _size(self, request: GenerationRequest) -> str:
        width, height = self._dimensions(request)
        size = f"{width}x{height}"
        allowed = _MODEL_SIZES.get(request.model)
        if allowed and size not in allowed:
            logger.debug("Size %s not supported by %s, using 1024x1024", size, request.model)
            return "1024x1024"
        return size

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self._require_key()
        start = time.monotonic()

        payload = {
            "model": request.model,
            "prompt": self.enhance_prompt(request.prompt, request.style, request.department),
            "n": 1 if request.model == "dall-e-3" else request.num_images,
            "size": self._size(request),
            "response_format": "b64_json",
        }
        if request.model == "dall-e-3":
            payload["quality"] = "hd"
            payload["style"] = "vivid"

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{API_BASE}/images/generations",
                json=payload,
                headers={**self._auth_headers(), "Content-Type": "application/json"},
            )

        self._raise_for_status(resp)
        return self._succeeded(request, self._parse_images(resp.json(), request), start)

    async def edit_image(self, request: GenerationRequest) -> GenerationResponse:
        self._require_key()
        source = self._require_source(request)
        start = time.monotonic()

        files = {"image": ("image.png", source, "image/png")}
        if request.mask_image:
            files["mask"] = ("mask.png", request.mask_image, "image/png")

        data = {
            "model": request.model,
            "prompt": self.enhance_prompt(request.prompt, request.style, request.department),
            "n": str(request.num_images),
            "size": self._size(request),
            "response_format": "b64_json",
        }

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{API_BASE}/images/edits",
                data=data,
                files=files,
                headers=self._auth_headers(),
            )

        self._raise_for_status(resp)
        return self._succeeded(request, self._parse_images(resp.json(), request), start)

    def _parse_images(self, data: dict, request: GenerationRequest) -> list[GeneratedImage]:
        width, height = self._dimensions(request)
        images = []
        for item in data.get("data", []):
            if item.get("b64_json"):
                images.append(
                    GeneratedImage(
                        data=decode_b64_image(item["b64_json"]),
                        width=width,
                        height=height,
                        revised_prompt=item.get("revised_prompt"),
                    )
                )
            elif item.get("url"):
                images.append(
                    GeneratedImage(
                        url=item["url"],
                        width=width,
                        height=height,
                        revised_prompt=item.get("revised_prompt"),
                    )
                )
        return images
