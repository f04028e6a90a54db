"""Google Gemini image adapter (generateContent with image output).

Edits send the source image as an inlineData part followed by an
instruction. A response without image parts is a refusal or a safety
block: finishReason SAFETY / promptFeedback.blockReason map to
CONTENT_BLOCKED.
"""

from __future__ import annotations

import base64
import logging
import time

import httpx

from imagegen.backends.base import BaseBackendAdapter, decode_b64_image
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

API_BASE = "https://generativelanguage.googleapis.com/v1beta"

GEMINI_INFO = BackendInfo(
    backend=Backend.GEMINI,
    name="Google Gemini",
    description="Google's multimodal AI models with image generation",
    supported_modes=(GenerationMode.TEXT_TO_IMAGE, GenerationMode.IMAGE_TO_IMAGE),
    supported_sizes=("512x512", "1024x1024"),
    models=(
        ModelInfo(
            id="gemini-2.5-flash-image",
            name="Gemini 2.5 Flash",
            capabilities=(GenerationMode.TEXT_TO_IMAGE, GenerationMode.IMAGE_TO_IMAGE),
            estimated_seconds=5,
        ),
        ModelInfo(
            id="gemini-3-pro-image-preview",
            name="Gemini 3.0 Pro",
            capabilities=(GenerationMode.TEXT_TO_IMAGE, GenerationMode.IMAGE_TO_IMAGE),
            estimated_seconds=10,
        ),
    ),
    rate_limit=RateLimitPolicy(requests_per_window=10, window_ms=60_000, images_per_request=1),
)


class GeminiAdapter(BaseBackendAdapter):
    """Gemini generateContent adapter with safety block detection."""

    info = GEMINI_INFO
    validation_url = f"{API_BASE}/models"

    def _auth_headers(self, api_key: str | None = None) -> dict[str, str]:
        return {"x-goog-api-key": api_key or self.api_key}

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self._require_key()
        start = time.monotonic()
        prompt = self.enhance_prompt(request.prompt, request.style, request.department)

        parts: list[dict] = []
        if request.source_image:
            parts.append(
                {
                    "inlineData": {
                        "mimeType": "image/png",
                        "data": base64.b64encode(request.source_image).decode("ascii"),
                    }
                }
            )
            parts.append(
                {"text": f"Edit this image. {prompt}. Maintain the composition but apply these changes."}
            )
        else:
            parts.append({"text": prompt})

        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {"responseModalities": ["TEXT", "IMAGE"]},
        }
        if request.aspect_ratio:
            payload["generationConfig"]["imageConfig"] = {"aspectRatio": request.aspect_ratio}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{API_BASE}/models/{request.model}:generateContent",
                json=payload,
                headers={**self._auth_headers(), "Content-Type": "application/json"},
            )

        self._raise_for_status(resp)
        data = resp.json()
        self._check_blocked(data)

        width, height = self._dimensions(request)
        images = []
        candidates = data.get("candidates", [])
        if candidates:
            for part in candidates[0].get("content", {}).get("parts", []):
                inline = part.get("inlineData")
                if inline and inline.get("data"):
                    images.append(
                        GeneratedImage(
                            data=decode_b64_image(inline["data"]),
                            mime_type=inline.get("mimeType", "image/png"),
                            width=width,
                            height=height,
                        )
                    )

        return self._succeeded(request, images, start)

    async def edit_image(self, request: GenerationRequest) -> GenerationResponse:
        self._require_source(request)
        return await self.generate(request)

    @staticmethod
    def _check_blocked(data: dict) -> None:
        candidates = data.get("candidates", [])
        if candidates:
            finish_reason = candidates[0].get("finishReason", "")
            if finish_reason in ("SAFETY", "PROHIBITED_CONTENT", "IMAGE_SAFETY"):
                raise BackendError(
                    f"Gemini safety filter triggered ({finish_reason})",
                    error_code=ErrorCode.CONTENT_BLOCKED,
                )
            return

        block_reason = data.get("promptFeedback", {}).get("blockReason", "")
        if block_reason:
            raise BackendError(f"Gemini blocked the prompt: {block_reason}", error_code=ErrorCode.CONTENT_BLOCKED)
