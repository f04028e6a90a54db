"""Core types and DTOs for the image generation gateway."""

from __future__ import annotations

import asyncio
import base64
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Backend(str, Enum):
    """Supported remote image backends."""

    OPENAI = "openai-dalle"
    GEMINI = "google-gemini"
    STABILITY = "stability-ai"
    REPLICATE = "replicate"
    TOGETHER = "together-ai"
    REMOVEBG = "removebg"
    HUGGINGFACE = "huggingface"
    CLIPDROP = "clipdrop"
    DEEPAI = "deepai"
    BYTEDANCE = "bytedance-aigc"


class GenerationMode(str, Enum):
    """What the caller wants done to (or from) an image."""

    TEXT_TO_IMAGE = "text-to-image"
    IMAGE_TO_IMAGE = "image-to-image"
    INPAINTING = "inpainting"
    OUTPAINTING = "outpainting"
    BACKGROUND_REMOVAL = "background-removal"


class ErrorCode(str, Enum):
    """Structured failure codes carried in GenerationError."""

    RATE_LIMITED = "RATE_LIMITED"
    TIMEOUT = "TIMEOUT"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    QUEUE_TIMEOUT = "QUEUE_TIMEOUT"
    INVALID_REQUEST = "INVALID_REQUEST"
    AUTHENTICATION_FAILED = "AUTHENTICATION_FAILED"
    CONTENT_BLOCKED = "CONTENT_BLOCKED"
    CAPABILITY_UNSUPPORTED = "CAPABILITY_UNSUPPORTED"
    CONFIGURATION = "CONFIGURATION"
    GENERATION_FAILED = "GENERATION_FAILED"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_CODES


_RETRYABLE_CODES = frozenset(
    {
        ErrorCode.RATE_LIMITED,
        ErrorCode.TIMEOUT,
        ErrorCode.SERVICE_UNAVAILABLE,
        ErrorCode.QUOTA_EXCEEDED,
        ErrorCode.QUEUE_TIMEOUT,
    }
)


class RequestPriority(int, Enum):
    """Priority levels for queued requests (lower = higher priority).

    Queues are strict FIFO; every entry is NORMAL and the value is not read.
    """

    HIGH = 1
    NORMAL = 2
    LOW = 3


class JobStatus(str, Enum):
    """Lifecycle of a backend-side deferred job."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)

    @property
    def rank(self) -> int:
        return _JOB_STATUS_RANK[self]


_JOB_STATUS_RANK = {
    JobStatus.PENDING: 0,
    JobStatus.RUNNING: 1,
    JobStatus.SUCCEEDED: 2,
    JobStatus.FAILED: 2,
}


# ---------------------------------------------------------------------------
# Generation Request — input to the gateway
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationRequest:
    """A single image generation/editing request.

    Frozen: once handed to the gateway it is never mutated. The gateway
    may derive a resolved copy with dataclasses.replace() before enqueue:
    backend and model filled from the defaults when left empty, num_images
    clamped.
    """

    backend: Backend | None = None  # None = the gateway's default backend
    model: str = ""  # empty = first catalogued model supporting the mode
    prompt: str = ""
    mode: GenerationMode = GenerationMode.TEXT_TO_IMAGE
    negative_prompt: str | None = None

    # Image dimensions
    width: int | None = None
    height: int | None = None
    aspect_ratio: str | None = None

    # For image-to-image / editing (raw bytes, not data URIs)
    source_image: bytes | None = None
    mask_image: bytes | None = None
    strength: float | None = None  # 0-1, how much to transform

    # Generation params
    num_images: int = 1
    seed: int | None = None
    guidance_scale: float | None = None
    steps: int | None = None

    # Style preset and department scene transform ids (see imagegen.backends.styles)
    style: str | None = None
    department: str | None = None

    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:16])

    @property
    def queue_key(self) -> str:
        """Key for logging and routing."""
        backend = self.backend.value if isinstance(self.backend, Backend) else self.backend or "default"
        return f"{backend}:{self.request_id}"


# ---------------------------------------------------------------------------
# Generation Response — unified DTO (output of the gateway)
# ---------------------------------------------------------------------------


@dataclass
class GeneratedImage:
    """One produced image: either a remote URL or inline bytes, never both."""

    width: int
    height: int
    url: str | None = None
    data: bytes | None = None
    mime_type: str = "image/png"
    seed: int | None = None
    revised_prompt: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if (self.url is None) == (self.data is None):
            raise ValueError("GeneratedImage needs exactly one of url or data")

    @property
    def data_uri(self) -> str | None:
        if self.data is None:
            return None
        return f"data:{self.mime_type};base64,{base64.b64encode(self.data).decode('ascii')}"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "url": self.url,
            "base64": self.data_uri,
            "width": self.width,
            "height": self.height,
            "seed": self.seed,
            "revised_prompt": self.revised_prompt,
        }


@dataclass
class GenerationMetadata:
    request_id: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    duration_ms: int = 0
    cost_usd: float | None = None


@dataclass
class GenerationError:
    code: ErrorCode
    message: str
    retryable: bool
    retry_after: float | None = None  # seconds, when the vendor says so

    def to_dict(self) -> dict:
        return {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
            "retry_after": self.retry_after,
        }


@dataclass
class GenerationResponse:
    """Unified response from any backend.

    success is True exactly when images is non-empty and error is None.
    """

    success: bool
    backend: Backend
    model: str
    metadata: GenerationMetadata
    images: list[GeneratedImage] = field(default_factory=list)
    error: GenerationError | None = None

    def __post_init__(self) -> None:
        if self.success and (not self.images or self.error is not None):
            raise ValueError("successful response must carry images and no error")
        if not self.success and (self.images or self.error is None):
            raise ValueError("failed response must carry an error and no images")

    @classmethod
    def succeeded(
        cls,
        request: GenerationRequest,
        images: list[GeneratedImage],
        duration_ms: int = 0,
        cost_usd: float | None = None,
    ) -> GenerationResponse:
        return cls(
            success=True,
            backend=request.backend,
            model=request.model,
            images=list(images),
            metadata=GenerationMetadata(
                request_id=request.request_id,
                duration_ms=duration_ms,
                cost_usd=cost_usd,
            ),
        )

    @classmethod
    def failed(
        cls,
        request: GenerationRequest,
        error: GenerationError,
        duration_ms: int = 0,
    ) -> GenerationResponse:
        return cls(
            success=False,
            backend=request.backend,
            model=request.model,
            error=error,
            metadata=GenerationMetadata(request_id=request.request_id, duration_ms=duration_ms),
        )

    def to_dict(self) -> dict:
        """Serialize to JSON-compatible dict for the UI layer."""
        return {
            "success": self.success,
            "backend": self.backend.value,
            "model": self.model,
            "images": [img.to_dict() for img in self.images],
            "metadata": {
                "request_id": self.metadata.request_id,
                "timestamp": self.metadata.timestamp.isoformat(),
                "duration_ms": self.metadata.duration_ms,
                "cost_usd": self.metadata.cost_usd,
            },
            "error": self.error.to_dict() if self.error else None,
        }


# ---------------------------------------------------------------------------
# Backend catalogue
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitPolicy:
    """Admission policy for one backend."""

    requests_per_window: int
    window_ms: int = 60_000
    images_per_request: int = 1

    @classmethod
    def from_dict(cls, data: dict[str, Any], base: RateLimitPolicy | None = None) -> RateLimitPolicy:
        """Build a policy from a config mapping, filling gaps from *base*."""
        return cls(
            requests_per_window=int(
                data.get("requests_per_window", base.requests_per_window if base else 60)
            ),
            window_ms=int(data.get("window_ms", base.window_ms if base else 60_000)),
            images_per_request=int(
                data.get("images_per_request", base.images_per_request if base else 1)
            ),
        )


@dataclass(frozen=True)
class ModelInfo:
    id: str
    name: str
    capabilities: tuple[GenerationMode, ...]
    default_size: str = "1024x1024"
    max_images: int = 1
    estimated_seconds: int = 10
    cost_per_image: float | None = None
    description: str = ""


@dataclass(frozen=True)
class BackendInfo:
    """Static description of a backend: what it can do and what it costs."""

    backend: Backend
    name: str
    description: str
    supported_modes: tuple[GenerationMode, ...]
    supported_sizes: tuple[str, ...]
    models: tuple[ModelInfo, ...]
    requires_api_key: bool = True
    rate_limit: RateLimitPolicy | None = None
    price_per_image: float | None = None
    free_credits: int | None = None
    billing_url: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.backend.value,
            "name": self.name,
            "description": self.description,
            "supported_modes": [m.value for m in self.supported_modes],
            "supported_sizes": list(self.supported_sizes),
            "models": [
                {
                    "id": m.id,
                    "name": m.name,
                    "capabilities": [c.value for c in m.capabilities],
                    "default_size": m.default_size,
                    "max_images": m.max_images,
                    "estimated_seconds": m.estimated_seconds,
                    "cost_per_image": m.cost_per_image,
                    "description": m.description,
                }
                for m in self.models
            ],
            "requires_api_key": self.requires_api_key,
            "rate_limit": (
                {
                    "requests_per_window": self.rate_limit.requests_per_window,
                    "window_ms": self.rate_limit.window_ms,
                    "images_per_request": self.rate_limit.images_per_request,
                }
                if self.rate_limit
                else None
            ),
            "pricing": {
                "currency": "USD",
                "price_per_image": self.price_per_image,
                "free_credits": self.free_credits,
                "billing_url": self.billing_url,
            },
        }


@dataclass(frozen=True)
class RateLimitStatus:
    current_usage: int
    limit: int
    remaining_time_ms: int


# ---------------------------------------------------------------------------
# Queue entries and async jobs
# ---------------------------------------------------------------------------


@dataclass
class QueueEntry:
    """A request waiting for an admission slot, with the caller's pending result."""

    request: GenerationRequest
    future: asyncio.Future
    enqueued_at: float  # time.monotonic()
    # TODO: priority scheduling across entries; queues stay FIFO until it is designed.
    priority: RequestPriority = RequestPriority.NORMAL

    @property
    def abandoned(self) -> bool:
        """The caller cancelled (or something else resolved) the pending result."""
        return self.future.done()


@dataclass
class AsyncJob:
    """A backend-side job that finishes later and has to be polled."""

    job_id: str
    backend: Backend
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0

    def advance(self, status: JobStatus) -> None:
        """Move to *status*; moving backward or leaving a terminal state is an error."""
        if status == self.status:
            return
        if self.status.is_terminal or status.rank < self.status.rank:
            raise ValueError(f"Job {self.job_id}: illegal transition {self.status.value} -> {status.value}")
        self.status = status
