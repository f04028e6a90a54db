"""HuggingFace Inference API adapter.

Every model is served at {API_BASE}/{model id}; the request is multipart
and the response body is the image itself. Background removal has no
dedicated model here, it runs as an image-to-image pass on Stable
Diffusion with a fixed prompt.
"""

from __future__ import annotations

import logging
import time
from dataclasses import replace

import httpx

from imagegen.backends.base import BaseBackendAdapter
from imagegen.gateway.errors import BackendError
from imagegen.gateway.types import (
    Backend,
    BackendInfo,
    ErrorCode,
    GeneratedImage,
    GenerationMode,
    GenerationRequest,
    GenerationResponse,
    ModelInfo,
    RateLimitPolicy,
)

logger = logging.getLogger(__name__)

API_BASE = "https://api-inference.huggingface.co/models"

BACKGROUND_REMOVAL_MODEL = "CompVis/stable-diffusion-v1-4"
BACKGROUND_REMOVAL_PROMPT = "Remove the background, make it transparent, keep the main subject intact"

HUGGINGFACE_INFO = BackendInfo(
    backend=Backend.HUGGINGFACE,
    name="HuggingFace",
    description="Powerful open-source models for image inpainting and processing",
    supported_modes=(
        GenerationMode.INPAINTING,
        GenerationMode.IMAGE_TO_IMAGE,
        GenerationMode.BACKGROUND_REMOVAL,
    ),
    supported_sizes=("512x512", "1024x1024"),
    models=(
        ModelInfo(
            id="Sanster/lama-cleaner",
            name="LAMA Cleaner",
            capabilities=(GenerationMode.INPAINTING,),
            estimated_seconds=10,
            cost_per_image=0.0,
        ),
        ModelInfo(
            id="runwayml/stable-diffusion-inpainting",
            name="Stable Diffusion Inpainting",
            capabilities=(GenerationMode.INPAINTING,),
            default_size="512x512",
            estimated_seconds=20,
            cost_per_image=0.0,
        ),
        ModelInfo(
            id=BACKGROUND_REMOVAL_MODEL,
            name="Stable Diffusion Image-to-Image",
            capabilities=(GenerationMode.IMAGE_TO_IMAGE, GenerationMode.BACKGROUND_REMOVAL),
            default_size="512x512",
            estimated_seconds=15,
            cost_per_image=0.0,
        ),
    ),
    rate_limit=RateLimitPolicy(requests_per_window=10, window_ms=60_000, images_per_request=1),
    price_per_image=0.0,
    billing_url="https://huggingface.co/settings/tokens",
)


def accepts_prompt(model: str) -> bool:
    # LaMa only fills the mask, it takes no text
    return "stable-diffusion" in model


class HuggingFaceAdapter(BaseBackendAdapter):
    """HuggingFace Inference API adapter; Bearer token, binary image response."""

    info = HUGGINGFACE_INFO
    validation_url = "https://huggingface.co/api/whoami-v2"

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        if request.mode == GenerationMode.INPAINTING:
            return await self.inpaint(request)
        if request.mode == GenerationMode.BACKGROUND_REMOVAL:
            return await self.remove_background(request)
        return await self.edit_image(request)

    async def inpaint(self, request: GenerationRequest) -> GenerationResponse:
        self._require_key()
        source = self._require_source(request)
        if not request.mask_image:
            raise BackendError("Mask image is required for inpainting", error_code=ErrorCode.INVALID_REQUEST)

        files: dict[str, tuple] = {
            "inputs": ("image.png", source, "image/png"),
            "mask": ("mask.png", request.mask_image, "image/png"),
        }
        if request.prompt and accepts_prompt(request.model):
            files["prompt"] = (None, request.prompt)
        return await self._infer(request, files)

    async def edit_image(self, request: GenerationRequest) -> GenerationResponse:
        self._require_key()
        source = self._require_source(request)

        files: dict[str, tuple] = {
            "inputs": ("image.png", source, "image/png"),
            "prompt": (None, self.enhance_prompt(request.prompt, request.style, request.department)),
            "strength": (None, str(request.strength if request.strength is not None else 0.7)),
        }
        if request.mask_image:
            files["mask"] = ("mask.png", request.mask_image, "image/png")
        return await self._infer(request, files)

    async def remove_background(self, request: GenerationRequest) -> GenerationResponse:
        return await self.edit_image(
            replace(
                request,
                mode=GenerationMode.IMAGE_TO_IMAGE,
                model=BACKGROUND_REMOVAL_MODEL,
                prompt=BACKGROUND_REMOVAL_PROMPT,
                style=None,
                department=None,
                strength=0.8,
            )
        )

    async def _infer(self, request: GenerationRequest, files: dict[str, tuple]) -> GenerationResponse:
        start = time.monotonic()
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(f"{API_BASE}/{request.model}", files=files, headers=self._auth_headers())

        self._raise_for_status(resp)

        width, height = self._dimensions(request)
        mime_type = resp.headers.get("content-type", "image/png").split(";")[0]
        if not mime_type.startswith("image/"):
            mime_type = "image/png"
        images = []
        if resp.content:
            images.append(GeneratedImage(data=resp.content, width=width, height=height, mime_type=mime_type))
        return self._succeeded(request, images, start)
