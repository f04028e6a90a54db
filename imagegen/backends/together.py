"""Together AI adapter (OpenAI-style images/generations with FLUX models)."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from imagegen.backends.base import BaseBackendAdapter, decode_b64_image, to_data_uri
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

API_BASE = "https://api.together.xyz/v1"

TOGETHER_INFO = BackendInfo(
    backend=Backend.TOGETHER,
    name="Together AI",
    description="Fast and affordable image generation with editing",
    supported_modes=(GenerationMode.TEXT_TO_IMAGE, GenerationMode.IMAGE_TO_IMAGE, GenerationMode.INPAINTING),
    supported_sizes=("512x512", "768x768", "1024x1024"),
    models=(
        ModelInfo(
            id="black-forest-labs/FLUX.1-schnell-Free",
            name="Flux Schnell (Free)",
            description="Free tier, fast generation",
            capabilities=(GenerationMode.TEXT_TO_IMAGE, GenerationMode.IMAGE_TO_IMAGE),
            max_images=4,
            estimated_seconds=5,
            cost_per_image=0.0,
        ),
        ModelInfo(
            id="black-forest-labs/FLUX.1.1-pro",
            name="Flux 1.1 Pro",
            capabilities=(GenerationMode.TEXT_TO_IMAGE, GenerationMode.IMAGE_TO_IMAGE, GenerationMode.INPAINTING),
            estimated_seconds=10,
            cost_per_image=0.04,
        ),
        ModelInfo(
            id="black-forest-labs/FLUX.1-dev-Inpainting",
            name="Flux Dev Inpainting",
            description="Precise image editing and inpainting",
            capabilities=(GenerationMode.IMAGE_TO_IMAGE, GenerationMode.INPAINTING),
            estimated_seconds=15,
            cost_per_image=0.08,
        ),
    ),
    rate_limit=RateLimitPolicy(requests_per_window=60, window_ms=60_000, images_per_request=4),
    price_per_image=0.003,
    free_credits=25,
    billing_url="https://api.together.xyz/settings/billing",
)


class TogetherAdapter(BaseBackendAdapter):
    """Together AI images adapter."""

    info = TOGETHER_INFO
    validation_url = f"{API_BASE}/models"

    def build_body(self, request: GenerationRequest) -> dict[str, Any]:
        width, height = self._dimensions(request)
        body: dict[str, Any] = {
            "model": request.model,
            "prompt": self.enhance_prompt(request.prompt, request.style, request.department),
            "width": width,
            "height": height,
            "n": request.num_images,
            "response_format": "b64_json",
        }
        if request.negative_prompt:
            body["negative_prompt"] = request.negative_prompt
        if request.steps:
            body["steps"] = request.steps
        if request.seed is not None:
            body["seed"] = request.seed

        if request.source_image:
            if request.mode == GenerationMode.INPAINTING and request.mask_image and "Inpainting" in request.model:
                body["image"] = to_data_uri(request.source_image)
                body["mask"] = to_data_uri(request.mask_image)
                body["strength"] = request.strength or 0.8
            elif request.mode in (GenerationMode.IMAGE_TO_IMAGE, GenerationMode.INPAINTING) and "FLUX" in request.model:
                body["image"] = to_data_uri(request.source_image)
                body["strength"] = request.strength or 0.75
        return body

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self._require_key()
        start = time.monotonic()

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{API_BASE}/images/generations",
                json=self.build_body(request),
                headers={**self._auth_headers(), "Content-Type": "application/json"},
            )

        self._raise_for_status(resp)
        data = resp.json()

        width, height = self._dimensions(request)
        images = []
        for item in data.get("data", []):
            if item.get("b64_json"):
                images.append(
                    GeneratedImage(
                        data=decode_b64_image(item["b64_json"]),
                        width=width,
                        height=height,
                        seed=item.get("seed"),
                    )
                )
            elif item.get("url"):
                images.append(GeneratedImage(url=item["url"], width=width, height=height, seed=item.get("seed")))

        return self._succeeded(request, images, start)

    async def edit_image(self, request: GenerationRequest) -> GenerationResponse:
        self._require_source(request)
        return await self.generate(request)

    async def inpaint(self, request: GenerationRequest) -> GenerationResponse:
        self._require_source(request)
        return await self.generate(request)
