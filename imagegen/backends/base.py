"""Backend adapter contract shared by every remote image service.

Each adapter translates a GenerationRequest into its vendor's HTTP
protocol and returns a GenerationResponse, or raises. Adapters never
touch gateway state (queues, limiter); the gateway routes to them by mode:

  inpainting          → inpaint()
  image-to-image      → edit_image()
  background-removal  → remove_background()
  anything else       → generate()

Capabilities an adapter does not override fail fast with
CapabilityUnsupportedError.
"""

from __future__ import annotations

import base64
import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from imagegen.backends.styles import apply_style
from imagegen.core.config import settings
from imagegen.gateway.credentials import Credential
from imagegen.gateway.error_classifier import code_for_status
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

# Vendor error codes / types seen across backends
_VENDOR_ERROR_CODES: dict[str, ErrorCode] = {
    "content_policy_violation": ErrorCode.CONTENT_BLOCKED,
    "content_moderated": ErrorCode.CONTENT_BLOCKED,
    "content_moderation": ErrorCode.CONTENT_BLOCKED,
    "safety": ErrorCode.CONTENT_BLOCKED,
    "rate_limit_exceeded": ErrorCode.RATE_LIMITED,
    "insufficient_quota": ErrorCode.QUOTA_EXCEEDED,
    "insufficient_credits": ErrorCode.QUOTA_EXCEEDED,
    "billing_hard_limit_reached": ErrorCode.QUOTA_EXCEEDED,
    "invalid_api_key": ErrorCode.AUTHENTICATION_FAILED,
    "auth_failed": ErrorCode.AUTHENTICATION_FAILED,
    "unauthorized": ErrorCode.AUTHENTICATION_FAILED,
    "invalid_request_error": ErrorCode.INVALID_REQUEST,
    "invalid_parameters": ErrorCode.INVALID_REQUEST,
}


def to_data_uri(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_b64_image(value: str) -> bytes:
    """Decode vendor base64 output, tolerating a data-URI prefix."""
    if value.startswith("data:"):
        value = value.split(",", 1)[1]
    return base64.b64decode(value)


def parse_size(size: str) -> tuple[int, int]:
    width, _, height = size.partition("x")
    return int(width), int(height)


class BaseBackendAdapter(ABC):
    """Base class for all backend adapters."""

    info: BackendInfo
    validation_url: str = ""

    def __init__(
        self,
        credential: Credential | None = None,
        timeout: float | None = None,
        prompt_enhancement: str | None = None,
    ):
        self.credential = credential
        self.timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self.prompt_enhancement = (
            prompt_enhancement if prompt_enhancement is not None else settings.prompt_enhancement
        )

    # -- Catalogue --------------------------------------------------------

    @property
    def backend(self) -> Backend:
        return self.info.backend

    @property
    def name(self) -> str:
        return self.info.name

    @property
    def rate_limit(self) -> RateLimitPolicy | None:
        return self.info.rate_limit

    @property
    def models(self) -> tuple[ModelInfo, ...]:
        return self.info.models

    def get_model(self, model_id: str) -> ModelInfo | None:
        return next((m for m in self.info.models if m.id == model_id), None)

    def supports_mode(self, mode: GenerationMode, model_id: str | None = None) -> bool:
        """Backend-level check; with *model_id*, a catalogued model must also list the mode.

        Models missing from the catalogue are passed through to the vendor.
        """
        if mode not in self.info.supported_modes:
            return False
        model = self.get_model(model_id) if model_id else None
        return model is None or mode in model.capabilities

    def estimate_cost(self, request: GenerationRequest) -> float:
        model = self.get_model(request.model)
        if model is None or not model.cost_per_image:
            return 0.0
        return round(model.cost_per_image * (request.num_images or 1), 6)

    # -- Credentials ------------------------------------------------------

    def set_credential(self, credential: Credential | None) -> None:
        self.credential = credential

    @property
    def api_key(self) -> str:
        return self.credential.api_key if self.credential else ""

    def is_configured(self) -> bool:
        if not self.info.requires_api_key:
            return True
        return self.credential is not None and self.credential.usable

    def _require_key(self) -> str:
        if not self.api_key:
            raise BackendError(f"{self.name} API key not configured", error_code=ErrorCode.CONFIGURATION)
        return self.api_key

    def _auth_headers(self, api_key: str | None = None) -> dict[str, str]:
        return {"Authorization": f"Bearer {api_key or self.api_key}"}

    async def validate_api_key(self, api_key: str) -> bool:
        """Cheap authenticated GET against the vendor; True when it answers 200."""
        if not self.validation_url:
            return bool(api_key)
        try:
            async with httpx.AsyncClient(timeout=15) as client:
                resp = await client.get(self.validation_url, headers=self._auth_headers(api_key))
            return resp.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("%s key validation failed: %s", self.name, e)
            return False

    async def _probe_key(self, url: str, api_key: str, **kwargs) -> bool:
        """POST a near-empty request; anything but 401/403 means the key was accepted.

        For vendors without a cheap account endpoint.
        """
        try:
            async with httpx.AsyncClient(timeout=15) as client:
                resp = await client.post(url, headers=self._auth_headers(api_key), **kwargs)
            return resp.status_code not in (401, 403)
        except httpx.HTTPError as e:
            logger.warning("%s key validation failed: %s", self.name, e)
            return False

    # -- Capabilities -----------------------------------------------------

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Text-to-image (and any mode the adapter folds into its main endpoint)."""
        ...

    async def edit_image(self, request: GenerationRequest) -> GenerationResponse:
        raise CapabilityUnsupportedError(self.backend, GenerationMode.IMAGE_TO_IMAGE, self.name)

    async def inpaint(self, request: GenerationRequest) -> GenerationResponse:
        raise CapabilityUnsupportedError(self.backend, GenerationMode.INPAINTING, self.name)

    async def remove_background(self, request: GenerationRequest) -> GenerationResponse:
        raise CapabilityUnsupportedError(self.backend, GenerationMode.BACKGROUND_REMOVAL, self.name)

    # -- Helpers for subclasses -------------------------------------------

    def enhance_prompt(self, prompt: str, style: str | None = None, department: str | None = None) -> str:
        return apply_style(prompt, style, self.prompt_enhancement, department)

    def _dimensions(self, request: GenerationRequest) -> tuple[int, int]:
        if request.width and request.height:
            return request.width, request.height
        model = self.get_model(request.model)
        return parse_size(model.default_size if model else "1024x1024")

    def _require_source(self, request: GenerationRequest) -> bytes:
        if not request.source_image:
            raise BackendError(
                f"Source image is required for {request.mode.value}",
                error_code=ErrorCode.INVALID_REQUEST,
            )
        return request.source_image

    def _succeeded(
        self,
        request: GenerationRequest,
        images: list[GeneratedImage],
        started: float,
    ) -> GenerationResponse:
        """Success response; an empty image list is a failure, not a success."""
        if not images:
            raise BackendError(
                f"{self.name} returned no images. The model might have refused the request.",
                error_code=ErrorCode.GENERATION_FAILED,
            )
        return GenerationResponse.succeeded(
            request,
            images,
            duration_ms=int((time.monotonic() - started) * 1000),
            cost_usd=self.estimate_cost(request),
        )

    def _raise_for_status(self, resp: httpx.Response) -> None:
        """Raise BackendError with the vendor's structured code when the call failed."""
        if resp.status_code < 400:
            return

        message, vendor_code = self._parse_error_body(resp)
        code = _VENDOR_ERROR_CODES.get(vendor_code.lower()) if vendor_code else None
        if code is None:
            code = code_for_status(resp.status_code)

        retry_after = None
        header = resp.headers.get("retry-after")
        if header:
            try:
                retry_after = float(header)
            except ValueError:
                retry_after = None

        logger.error("%s API %d: %s", self.name, resp.status_code, message)
        raise BackendError(
            f"{self.name} API error {resp.status_code}: {message}",
            status_code=resp.status_code,
            error_code=code,
            retry_after=retry_after,
        )

    @staticmethod
    def _parse_error_body(resp: httpx.Response) -> tuple[str, str]:
        """Pull (message, vendor code) out of the common error payload shapes."""
        try:
            data: Any = resp.json()
        except ValueError:
            return resp.text[:500] or resp.reason_phrase, ""

        if isinstance(data, dict):
            error = data.get("error")
            if isinstance(error, dict):
                return (
                    str(error.get("message") or error.get("status") or resp.reason_phrase),
                    str(error.get("code") or error.get("type") or ""),
                )
            if isinstance(error, str):
                return error, str(data.get("name") or data.get("code") or "")
            errors = data.get("errors")
            if isinstance(errors, list) and errors:
                first = errors[0]
                if isinstance(first, dict):
                    return str(first.get("title") or first.get("detail") or first), str(first.get("code") or "")
                return str(first), str(data.get("name") or "")
            if "detail" in data:
                return str(data["detail"]), str(data.get("title") or "")
            if "message" in data:
                return str(data["message"]), str(data.get("name") or data.get("code") or "")
        return resp.text[:500], ""
