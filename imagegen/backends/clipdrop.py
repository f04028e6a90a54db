"""Clipdrop adapter — cleanup, inpainting, background removal, relight and upscaling.

One endpoint per tool, multipart upload, binary PNG response.
"""

from __future__ import annotations

import logging
import time

import httpx

from imagegen.backends.base import BaseBackendAdapter
from imagegen.gateway.errors import CapabilityUnsupportedError
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

API_BASE = "https://clipdrop-api.co"

CLIPDROP_INFO = BackendInfo(
    backend=Backend.CLIPDROP,
    name="Clipdrop",
    description="Advanced image editing with object removal, inpainting, and relighting",
    supported_modes=(
        GenerationMode.INPAINTING,
        GenerationMode.BACKGROUND_REMOVAL,
        GenerationMode.IMAGE_TO_IMAGE,
    ),
    supported_sizes=("512x512", "1024x1024"),
    models=(
        ModelInfo(
            id="cleanup",
            name="Object Removal / Cleanup",
            capabilities=(GenerationMode.INPAINTING, GenerationMode.BACKGROUND_REMOVAL),
            estimated_seconds=8,
            cost_per_image=0.01,
        ),
        ModelInfo(
            id="inpainting",
            name="Inpainting",
            capabilities=(GenerationMode.INPAINTING,),
            estimated_seconds=10,
            cost_per_image=0.015,
        ),
        ModelInfo(
            id="relight",
            name="Relighting",
            capabilities=(GenerationMode.IMAGE_TO_IMAGE,),
            estimated_seconds=12,
            cost_per_image=0.02,
        ),
        ModelInfo(
            id="upscale",
            name="Upscale",
            capabilities=(GenerationMode.IMAGE_TO_IMAGE,),
            estimated_seconds=6,
            cost_per_image=0.005,
        ),
    ),
    rate_limit=RateLimitPolicy(requests_per_window=100, window_ms=60_000, images_per_request=1),
    price_per_image=0.01,
    billing_url="https://clipdrop.co/apis/account",
)

_EDIT_ENDPOINTS = {
    "relight": "relight/v1",
    "upscale": "image-upscaling/v1",
}


class ClipdropAdapter(BaseBackendAdapter):
    """Clipdrop adapter; x-api-key auth."""

    info = CLIPDROP_INFO

    def _auth_headers(self, api_key: str | None = None) -> dict[str, str]:
        return {"x-api-key": api_key or self.api_key}

    async def validate_api_key(self, api_key: str) -> bool:
        return await self._probe_key(f"{API_BASE}/cleanup/v1", api_key, files={"image_file": ("", b"")})

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        if request.mode == GenerationMode.INPAINTING:
            return await self.inpaint(request)
        if request.mode == GenerationMode.BACKGROUND_REMOVAL:
            return await self.remove_background(request)
        if request.mode == GenerationMode.IMAGE_TO_IMAGE:
            return await self.edit_image(request)
        raise CapabilityUnsupportedError(self.backend, request.mode, self.name)

    async def inpaint(self, request: GenerationRequest) -> GenerationResponse:
        """Cleanup erases the masked area; the inpainting model refills it from the prompt."""
        self._require_key()
        files = {"image_file": ("image.png", self._require_source(request), "image/png")}
        if request.mask_image:
            files["mask_file"] = ("mask.png", request.mask_image, "image/png")

        if request.model == "inpainting":
            files["text_prompt"] = (None, self.enhance_prompt(request.prompt, request.style, request.department))
            return await self._post("text-inpainting/v1", request, files)
        return await self._post("cleanup/v1", request, files)

    async def remove_background(self, request: GenerationRequest) -> GenerationResponse:
        self._require_key()
        files = {"image_file": ("image.png", self._require_source(request), "image/png")}
        return await self._post("remove-background/v1", request, files)

    async def edit_image(self, request: GenerationRequest) -> GenerationResponse:
        self._require_key()
        endpoint = _EDIT_ENDPOINTS.get(request.model)
        if endpoint is None:
            raise CapabilityUnsupportedError(self.backend, request.mode, f"{self.name} model {request.model}")

        files: dict[str, tuple] = {"image_file": ("image.png", self._require_source(request), "image/png")}
        if request.model == "upscale":
            width, height = self._dimensions(request)
            files["target_width"] = (None, str(request.width or width * 2))
            files["target_height"] = (None, str(request.height or height * 2))
        return await self._post(endpoint, request, files)

    async def _post(self, endpoint: str, request: GenerationRequest, files: dict[str, tuple]) -> GenerationResponse:
        start = time.monotonic()
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(f"{API_BASE}/{endpoint}", files=files, headers=self._auth_headers())

        self._raise_for_status(resp)

        remaining = resp.headers.get("x-remaining-credits")
        if remaining is not None:
            logger.debug("Clipdrop credits remaining: %s", remaining)

        width, height = self._dimensions(request)
        images = [GeneratedImage(data=resp.content, width=width, height=height)] if resp.content else []
        return self._succeeded(request, images, start)
