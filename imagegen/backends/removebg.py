"""Remove.bg adapter — background removal only."""

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

API_BASE = "https://api.remove.bg/v1.0"

REMOVEBG_INFO = BackendInfo(
    backend=Backend.REMOVEBG,
    name="Remove.bg",
    description="Specialized background removal service with high quality output",
    supported_modes=(GenerationMode.BACKGROUND_REMOVAL,),
    supported_sizes=("512x512", "1024x1024"),
    models=(
        ModelInfo(
            id="auto",
            name="Auto Background Removal",
            capabilities=(GenerationMode.BACKGROUND_REMOVAL,),
            estimated_seconds=5,
            cost_per_image=0.01,
        ),
        ModelInfo(
            id="standard",
            name="Standard Quality",
            capabilities=(GenerationMode.BACKGROUND_REMOVAL,),
            estimated_seconds=3,
            cost_per_image=0.02,
        ),
        ModelInfo(
            id="hd",
            name="HD Quality",
            capabilities=(GenerationMode.BACKGROUND_REMOVAL,),
            estimated_seconds=8,
            cost_per_image=0.05,
        ),
    ),
    rate_limit=RateLimitPolicy(requests_per_window=50, window_ms=60_000, images_per_request=1),
    price_per_image=0.02,
    billing_url="https://www.remove.bg/api",
)

# Model id → remove.bg size parameter
_SIZES = {"auto": "auto", "standard": "medium", "hd": "hd"}


class RemoveBgAdapter(BaseBackendAdapter):
    """Remove.bg adapter; X-Api-Key auth, binary PNG response."""

    info = REMOVEBG_INFO
    validation_url = f"{API_BASE}/account"

    def _auth_headers(self, api_key: str | None = None) -> dict[str, str]:
        return {"X-Api-Key": api_key or self.api_key}

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        if request.mode == GenerationMode.BACKGROUND_REMOVAL:
            return await self.remove_background(request)
        raise CapabilityUnsupportedError(self.backend, request.mode, self.name)

    async def remove_background(self, request: GenerationRequest) -> GenerationResponse:
        self._require_key()
        source = self._require_source(request)
        start = time.monotonic()

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{API_BASE}/removebg",
                files={"image_file": ("image.png", source, "image/png")},
                data={"size": _SIZES.get(request.model, "auto"), "format": "png"},
                headers=self._auth_headers(),
            )

        self._raise_for_status(resp)

        width, height = self._dimensions(request)
        width = int(resp.headers.get("x-width", width))
        height = int(resp.headers.get("x-height", height))
        images = [GeneratedImage(data=resp.content, width=width, height=height)] if resp.content else []
        return self._succeeded(request, images, start)
