"""Replicate adapter — create a prediction, then poll it.

Replicate never answers with images directly: POST /models/{model}/predictions
returns a prediction id, and GET /predictions/{id} is polled through
AsyncJobPoller (1 s interval, 60 attempts by default) until it succeeds,
fails or times out.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from imagegen.backends.base import BaseBackendAdapter, to_data_uri
from imagegen.core.config import settings
from imagegen.gateway.credentials import Credential
from imagegen.gateway.errors import BackendError
from imagegen.gateway.job_poller import AsyncJobPoller, JobUpdate, map_vendor_status
from imagegen.gateway.types import (
    AsyncJob,
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

API_BASE = "https://api.replicate.com/v1"

REPLICATE_INFO = BackendInfo(
    backend=Backend.REPLICATE,
    name="Replicate",
    description="Access to Flux, SDXL, and advanced image editing models",
    supported_modes=(
        GenerationMode.TEXT_TO_IMAGE,
        GenerationMode.IMAGE_TO_IMAGE,
        GenerationMode.INPAINTING,
        GenerationMode.OUTPAINTING,
    ),
    supported_sizes=("512x512", "768x768", "1024x1024"),
    models=(
        ModelInfo(
            id="black-forest-labs/flux-schnell",
            name="Flux Schnell",
            description="Fast generation, good quality",
            capabilities=(GenerationMode.TEXT_TO_IMAGE, GenerationMode.IMAGE_TO_IMAGE),
            estimated_seconds=5,
            cost_per_image=0.003,
        ),
        ModelInfo(
            id="black-forest-labs/flux-dev",
            name="Flux Dev",
            capabilities=(GenerationMode.TEXT_TO_IMAGE, GenerationMode.IMAGE_TO_IMAGE),
            estimated_seconds=20,
            cost_per_image=0.025,
        ),
        ModelInfo(
            id="black-forest-labs/flux-fill-pro",
            name="Flux Fill Pro",
            description="Advanced inpainting and outpainting",
            capabilities=(GenerationMode.IMAGE_TO_IMAGE, GenerationMode.INPAINTING, GenerationMode.OUTPAINTING),
            estimated_seconds=15,
            cost_per_image=0.02,
        ),
        ModelInfo(
            id="black-forest-labs/flux-dev-inpainting",
            name="Flux Dev Inpainting",
            description="Precise inpainting for photo editing",
            capabilities=(GenerationMode.IMAGE_TO_IMAGE, GenerationMode.INPAINTING),
            estimated_seconds=25,
            cost_per_image=0.035,
        ),
    ),
    rate_limit=RateLimitPolicy(requests_per_window=60, window_ms=60_000, images_per_request=1),
    price_per_image=0.01,
    billing_url="https://replicate.com/account/billing",
)


class ReplicateAdapter(BaseBackendAdapter):
    """Replicate predictions adapter (create-then-poll)."""

    info = REPLICATE_INFO
    validation_url = f"{API_BASE}/account"

    def __init__(
        self,
        credential: Credential | None = None,
        timeout: float | None = None,
        prompt_enhancement: str | None = None,
        poll_interval: float | None = None,
        poll_max_attempts: int | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        super().__init__(credential=credential, timeout=timeout, prompt_enhancement=prompt_enhancement)
        self.poll_interval = poll_interval if poll_interval is not None else settings.job_poll_interval_seconds
        self.poll_max_attempts = (
            poll_max_attempts if poll_max_attempts is not None else settings.job_poll_max_attempts
        )
        self._sleep = sleep

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        return await self._run_prediction(request)

    async def edit_image(self, request: GenerationRequest) -> GenerationResponse:
        self._require_source(request)
        return await self._run_prediction(request)

    async def inpaint(self, request: GenerationRequest) -> GenerationResponse:
        self._require_source(request)
        return await self._run_prediction(request)

    def build_input(self, request: GenerationRequest) -> dict[str, Any]:
        """Model input for the prediction, shaped by mode and model family."""
        prompt = self.enhance_prompt(request.prompt, request.style, request.department)
        model = request.model
        data: dict[str, Any] = {"output_format": "png", "prompt": prompt}

        editing = request.mode in (GenerationMode.INPAINTING, GenerationMode.OUTPAINTING)
        if request.mode == GenerationMode.IMAGE_TO_IMAGE and request.source_image:
            data["image"] = to_data_uri(request.source_image)
            data["image_to_image_strength"] = request.strength or 0.75
        elif editing and request.source_image:
            data["image"] = to_data_uri(request.source_image)
            if "inpainting" in model or "fill" in model:
                if request.mask_image:
                    data["mask"] = to_data_uri(request.mask_image)
                data["strength"] = request.strength or 0.8
                if "fill-pro" in model:
                    data["mask_prompt"] = "user mask" if request.mask_image else "subject"
            else:
                # Models without a mask input fall back to plain image-to-image
                data["image_to_image_strength"] = request.strength or 0.75
        else:
            if "flux-schnell" in model:
                data["go_fast"] = True
                data["num_inference_steps"] = 4
            elif "flux-dev" in model:
                data["num_inference_steps"] = request.steps or 28
            data["aspect_ratio"] = request.aspect_ratio or "1:1"

        if request.guidance_scale is not None:
            data["guidance"] = request.guidance_scale
        if request.seed is not None:
            data["seed"] = request.seed
        return data

    async def _run_prediction(self, request: GenerationRequest) -> GenerationResponse:
        self._require_key()
        start = time.monotonic()
        headers = {**self._auth_headers(), "Content-Type": "application/json"}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(
                f"{API_BASE}/models/{request.model}/predictions",
                json={"input": self.build_input(request)},
                headers=headers,
            )
            self._raise_for_status(resp)
            prediction = resp.json()

            prediction_id = prediction.get("id")
            if not prediction_id:
                raise BackendError("Replicate did not return a prediction id", error_code=ErrorCode.GENERATION_FAILED)

            async def fetch_status(job: AsyncJob) -> JobUpdate:
                status_resp = await client.get(f"{API_BASE}/predictions/{job.job_id}", headers=headers)
                self._raise_for_status(status_resp)
                data = status_resp.json()
                return JobUpdate(
                    status=map_vendor_status(data.get("status", "")),
                    payload=data,
                    error=str(data.get("error") or ""),
                )

            poller = AsyncJobPoller(
                fetch_status,
                interval=self.poll_interval,
                max_attempts=self.poll_max_attempts,
                sleep=self._sleep,
            )
            result = await poller.poll(AsyncJob(job_id=prediction_id, backend=self.backend))

        output = result.get("output")
        urls = output if isinstance(output, list) else [output]
        width, height = self._dimensions(request)
        images = [GeneratedImage(url=url, width=width, height=height, seed=request.seed) for url in urls if url]
        return self._succeeded(request, images, start)
