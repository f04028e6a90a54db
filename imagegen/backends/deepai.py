"""DeepAI adapter — background removal and single-purpose image filters.

Multipart upload with an `image` field; the JSON response carries an
`output_url` pointing at the result.
"""

from __future__ import annotations

import logging
import time

import httpx

from imagegen.backends.base import BaseBackendAdapter
from imagegen.gateway.errors import BackendError, CapabilityUnsupportedError
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

API_BASE = "https://api.deepai.org/api"

DEEPAI_INFO = BackendInfo(
    backend=Backend.DEEPAI,
    name="DeepAI",
    description="Simple, fast image processing with remove background, super resolution, etc.",
    supported_modes=(GenerationMode.BACKGROUND_REMOVAL, GenerationMode.IMAGE_TO_IMAGE),
    supported_sizes=("512x512", "1024x1024"),
    models=(
        ModelInfo(
            id="remove-bg",
            name="Remove Background",
            capabilities=(GenerationMode.BACKGROUND_REMOVAL,),
            estimated_seconds=5,
            cost_per_image=0.0,
        ),
        ModelInfo(
            id="super-resolution",
            name="Super Resolution",
            capabilities=(GenerationMode.IMAGE_TO_IMAGE,),
            estimated_seconds=8,
            cost_per_image=0.0,
        ),
        ModelInfo(
            id="colorize",
            name="Colorization",
            capabilities=(GenerationMode.IMAGE_TO_IMAGE,),
            estimated_seconds=6,
            cost_per_image=0.0,
        ),
        ModelInfo(
            id="face-enhancement",
            name="Face Enhancement",
            capabilities=(GenerationMode.IMAGE_TO_IMAGE,),
            estimated_seconds=7,
            cost_per_image=0.0,
        ),
    ),
    rate_limit=RateLimitPolicy(requests_per_window=30, window_ms=60_000, images_per_request=1),
    price_per_image=0.0,
    billing_url="https://deepai.org/dashboard/profile",
)

# Model id → DeepAI endpoint
_ENDPOINTS = {
    "remove-bg": "remove-bg",
    "super-resolution": "torch-srgan",
    "colorize": "colorizer",
    "face-enhancement": "enhance",
}


class DeepAIAdapter(BaseBackendAdapter):
    """DeepAI adapter; api-key header auth, result returned by URL."""

    info = DEEPAI_INFO

    def _auth_headers(self, api_key: str | None = None) -> dict[str, str]:
        return {"api-key": api_key or self.api_key}

    async def validate_api_key(self, api_key: str) -> bool:
        return await self._probe_key(f"{API_BASE}/torch-srgan", api_key, data={})

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        if request.mode == GenerationMode.BACKGROUND_REMOVAL:
            return await self.remove_background(request)
        if request.mode == GenerationMode.IMAGE_TO_IMAGE:
            return await self.edit_image(request)
        raise CapabilityUnsupportedError(self.backend, request.mode, self.name)

    async def remove_background(self, request: GenerationRequest) -> GenerationResponse:
        return await self._process("remove-bg", request)

    async def edit_image(self, request: GenerationRequest) -> GenerationResponse:
        endpoint = _ENDPOINTS.get(request.model)
        if endpoint is None or endpoint == "remove-bg":
            raise CapabilityUnsupportedError(self.backend, request.mode, f"{self.name} model {request.model}")
        return await self._process(endpoint, request)

    async def _process(self, endpoint: str, request: GenerationRequest) -> GenerationResponse:
        self._require_key()
        source = self._require_source(request)
        start = time.monotonic()

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{API_BASE}/{endpoint}",
                files={"image": ("image.png", source, "image/png")},
                headers=self._auth_headers(),
            )

        self._raise_for_status(resp)

        output_url = resp.json().get("output_url")
        if not output_url:
            raise BackendError("No output URL returned from DeepAI", error_code=ErrorCode.GENERATION_FAILED)

        width, height = self._dimensions(request)
        return self._succeeded(request, [GeneratedImage(url=output_url, width=width, height=height)], start)
