"""Image Generation Gateway — orchestrator integrating all gateway components.

Main entry point for generation requests:
  1. submit() validates backend, credential and capability, then enqueues
  2. A cooperative tick loop (1 s by default) walks the backend queues
  3. The sliding-window limiter admits at most one entry per backend per tick
  4. Each admitted entry is dispatched to its adapter as its own task
  5. Results are normalized, failures classified, the caller's future resolved

Usage:
    gateway = ImageGateway()

    async with gateway:
        response = await gateway.generate(request)

    # Or drive the loop by hand (tests, scripts)
    future = gateway.submit(request)
    await gateway.tick()
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import replace

from imagegen.backends import ADAPTER_REGISTRY, BaseBackendAdapter, get_adapter
from imagegen.core.config import settings
from imagegen.core.metrics import (
    GENERATION_DURATION,
    GENERATION_REQUESTS,
    QUEUE_DEPTH,
    QUEUE_WAIT,
    RATE_LIMIT_DEFERRALS,
)
from imagegen.gateway.credentials import Credential, CredentialStore
from imagegen.gateway.error_classifier import classify_error
from imagegen.gateway.errors import CapabilityUnsupportedError, ConfigurationError
from imagegen.gateway.normalizer import failed_response, normalize_response
from imagegen.gateway.queue_manager import QueueManager
from imagegen.gateway.rate_limiter import SlidingWindowRateLimiter
from imagegen.gateway.types import (
    Backend,
    ErrorCode,
    GenerationError,
    GenerationMode,
    GenerationRequest,
    GenerationResponse,
    QueueEntry,
    RateLimitPolicy,
    RateLimitStatus,
)

logger = logging.getLogger(__name__)


class ImageGateway:
    """Main gateway orchestrator.

    Integrates:
      - CredentialStore: per-backend API keys
      - QueueManager: per-backend FIFO queues
      - SlidingWindowRateLimiter: per-backend admission control
      - Backend adapters: protocol-specific HTTP calls
      - Normalizer / error classifier: unified response shape

    Instances are independent; nothing is shared at module level except
    Prometheus metrics.
    """

    def __init__(
        self,
        adapters: dict[Backend, BaseBackendAdapter] | None = None,
        credentials: CredentialStore | None = None,
        rate_limits: dict[Backend, RateLimitPolicy | None] | None = None,
        tick_interval: float | None = None,
        max_queue_residency_ms: int | None = None,
        default_backend: Backend | str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            adapters: Adapter per backend; defaults to one of each registered adapter
            credentials: Key store; defaults to CredentialStore.from_settings()
            rate_limits: Policy overrides per backend (None removes the limit)
            tick_interval: Seconds between ticks of the dispatch loop
            max_queue_residency_ms: Entries waiting longer resolve with QUEUE_TIMEOUT
            default_backend: Backend for requests that leave theirs empty (DEFAULT_BACKEND)
            clock: Monotonic clock shared by the limiter and the queues
        """
        self.credentials = credentials if credentials is not None else CredentialStore.from_settings()

        if adapters is None:
            adapters = {
                backend: get_adapter(backend, self.credentials.get(backend)) for backend in ADAPTER_REGISTRY
            }
        self._adapters: dict[Backend, BaseBackendAdapter] = dict(adapters)
        for backend, adapter in self._adapters.items():
            stored = self.credentials.get(backend)
            if adapter.credential is None and stored is not None:
                adapter.set_credential(stored)

        self.tick_interval = tick_interval if tick_interval is not None else settings.tick_interval_seconds
        residency_ms = (
            max_queue_residency_ms if max_queue_residency_ms is not None else settings.max_queue_residency_ms
        )
        self.max_queue_residency = residency_ms / 1000.0 if residency_ms else None
        self.default_backend = Backend(default_backend or settings.default_backend)

        self._clock = clock
        self.queue = QueueManager()
        self.rate_limiter = SlidingWindowRateLimiter(self._build_policies(rate_limits or {}), clock=clock)

        self._ticking = False
        self._loop_task: asyncio.Task | None = None
        self._in_flight: set[asyncio.Task] = set()

    def _build_policies(
        self, explicit: dict[Backend, RateLimitPolicy | None]
    ) -> dict[Backend, RateLimitPolicy]:
        """Adapter defaults, then RATE_LIMIT_OVERRIDES, then constructor overrides."""
        policies: dict[Backend, RateLimitPolicy] = {}
        for backend, adapter in self._adapters.items():
            policy = adapter.rate_limit
            override = settings.rate_limit_overrides.get(backend.value)
            if override:
                policy = RateLimitPolicy.from_dict(override, base=policy)
            if backend in explicit:
                policy = explicit[backend]
            if policy is not None:
                policies[backend] = policy
        return policies

    # -- Submission -------------------------------------------------------

    def submit(self, request: GenerationRequest) -> asyncio.Future[GenerationResponse]:
        """Validate and enqueue a request; the returned future resolves with its response.

        Raises ConfigurationError or CapabilityUnsupportedError before anything
        is enqueued. After that the future always resolves with a response,
        failures included; it is never set to an exception.
        """
        requested = request.backend if request.backend is not None else self.default_backend
        try:
            backend = Backend(requested)
        except ValueError:
            raise ConfigurationError(f"Unknown backend: {requested}") from None

        adapter = self._adapters.get(backend)
        if adapter is None:
            raise ConfigurationError(f"No adapter registered for backend: {backend.value}", backend)
        if not adapter.is_configured():
            raise ConfigurationError(f"{adapter.name} API key not configured", backend)
        model = request.model or self._default_model(adapter, request.mode)
        if model is None or not adapter.supports_mode(request.mode, model):
            raise CapabilityUnsupportedError(backend, request.mode, f"{adapter.name} model {model or '(none)'}")

        request = self._resolve(request, backend, model, adapter)

        future: asyncio.Future[GenerationResponse] = asyncio.get_running_loop().create_future()
        self.queue.enqueue(QueueEntry(request=request, future=future, enqueued_at=self._clock()))
        QUEUE_DEPTH.labels(backend=backend.value).set(self.queue.queue_size(backend))
        return future

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Submit and wait. Needs a running tick loop (start()) or manual tick() calls."""
        return await self.submit(request)

    @staticmethod
    def _default_model(adapter: BaseBackendAdapter, mode: GenerationMode) -> str | None:
        return next((m.id for m in adapter.models if mode in m.capabilities), None)

    def _resolve(
        self,
        request: GenerationRequest,
        backend: Backend,
        model: str,
        adapter: BaseBackendAdapter,
    ) -> GenerationRequest:
        """Fill backend and model, and cap num_images at what the backend and model accept."""
        limit = request.num_images
        policy = self.rate_limiter.policy(backend)
        if policy is not None:
            limit = min(limit, policy.images_per_request)
        info = adapter.get_model(model)
        if info is not None:
            limit = min(limit, info.max_images)
        limit = max(limit, 1)

        if limit == request.num_images and backend is request.backend and model == request.model:
            return request
        if limit != request.num_images:
            logger.info(
                "Clamped num_images %d -> %d for %s (%s)",
                request.num_images,
                limit,
                request.request_id,
                adapter.name,
            )
        return replace(request, backend=backend, model=model, num_images=limit)

    # -- Dispatch loop ----------------------------------------------------

    async def tick(self) -> int:
        """One pass over the queues. Returns the number of entries dispatched.

        At most one entry per backend leaves its queue per tick, and only if
        the limiter admits it. A tick that starts while another is running
        does nothing.
        """
        if self._ticking:
            return 0
        self._ticking = True
        try:
            now = self._clock()
            if self.max_queue_residency is not None:
                self._expire(now)

            dispatched = 0
            for backend in self.queue.backends_with_work():
                self.queue.discard_abandoned(backend)
                if self.queue.peek(backend) is None:
                    continue

                if not self.rate_limiter.try_admit(backend):
                    RATE_LIMIT_DEFERRALS.labels(backend=backend.value).inc()
                    logger.debug("Rate limit reached for %s, %d queued", backend.value, self.queue.queue_size(backend))
                    continue

                entry = self.queue.pop(backend)
                QUEUE_WAIT.labels(backend=backend.value).observe(max(now - entry.enqueued_at, 0.0))
                task = asyncio.create_task(self._dispatch(entry))
                self._in_flight.add(task)
                task.add_done_callback(self._in_flight.discard)
                dispatched += 1

            for backend in Backend:
                QUEUE_DEPTH.labels(backend=backend.value).set(self.queue.queue_size(backend))
            return dispatched
        finally:
            self._ticking = False

    def _expire(self, now: float) -> None:
        for backend in self.queue.backends_with_work():
            for entry in self.queue.expire(backend, now, self.max_queue_residency):
                if entry.abandoned:
                    continue
                waited = now - entry.enqueued_at
                logger.warning(
                    "Request %s expired after %.1fs in the %s queue",
                    entry.request.request_id,
                    waited,
                    backend.value,
                    extra={"request_id": entry.request.request_id, "backend": backend.value},
                )
                error = GenerationError(
                    code=ErrorCode.QUEUE_TIMEOUT,
                    message=f"Request waited {waited:.1f}s for a {backend.value} rate limit slot",
                    retryable=ErrorCode.QUEUE_TIMEOUT.retryable,
                )
                GENERATION_REQUESTS.labels(backend=backend.value, outcome=ErrorCode.QUEUE_TIMEOUT.value).inc()
                entry.future.set_result(failed_response(entry.request, error, duration_ms=int(waited * 1000)))

    async def _dispatch(self, entry: QueueEntry) -> None:
        """Run one request against its adapter and resolve the caller's future."""
        request = entry.request
        adapter = self._adapters[request.backend]
        started = time.monotonic()

        try:
            response = await self._route(adapter, request)
            duration_ms = int((time.monotonic() - started) * 1000)
            response = normalize_response(response, duration_ms, adapter.get_model(request.model))
        except asyncio.CancelledError:
            if not entry.future.done():
                entry.future.cancel()
            raise
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            error = classify_error(e)
            logger.warning(
                "Generation %s failed on %s: %s (code=%s, retryable=%s)",
                request.request_id,
                adapter.name,
                error.message,
                error.code.value,
                error.retryable,
                extra={
                    "request_id": request.request_id,
                    "backend": request.backend.value,
                    "mode": request.mode.value,
                    "error_code": error.code.value,
                },
            )
            response = failed_response(request, error, duration_ms=duration_ms)

        outcome = "success" if response.success else response.error.code.value
        GENERATION_REQUESTS.labels(backend=request.backend.value, outcome=outcome).inc()
        GENERATION_DURATION.labels(backend=request.backend.value).observe(duration_ms / 1000)

        if entry.future.done():
            logger.info("Result for %s discarded, caller is gone", request.request_id)
            return
        entry.future.set_result(response)

    @staticmethod
    async def _route(adapter: BaseBackendAdapter, request: GenerationRequest) -> GenerationResponse:
        if request.mode == GenerationMode.INPAINTING:
            return await adapter.inpaint(request)
        if request.mode == GenerationMode.IMAGE_TO_IMAGE:
            return await adapter.edit_image(request)
        if request.mode == GenerationMode.BACKGROUND_REMOVAL:
            return await adapter.remove_background(request)
        return await adapter.generate(request)

    async def _run(self) -> None:
        logger.info("Dispatch loop started (tick every %.2fs)", self.tick_interval)
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Dispatch tick failed")
            await asyncio.sleep(self.tick_interval)

    def start(self) -> None:
        """Start the tick loop on the running event loop (idempotent)."""
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.create_task(self._run())

    async def stop(self, cancel_pending: bool = False) -> None:
        """Stop ticking and wait for in-flight dispatches.

        Queued entries stay queued for the next start(), unless cancel_pending
        is set: then every queue is drained and each waiting caller's future
        is cancelled.
        """
        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        if cancel_pending:
            drained = self.queue.drain()
            for entry in drained:
                entry.future.cancel()
            for backend in Backend:
                QUEUE_DEPTH.labels(backend=backend.value).set(0)
            if drained:
                logger.info("Cancelled %d queued requests", len(drained))
        logger.info("Dispatch loop stopped (%d still queued)", self.queue.total_size())

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def __aenter__(self) -> ImageGateway:
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()

    # -- Credentials ------------------------------------------------------

    async def set_api_key(
        self,
        backend: Backend,
        api_key: str,
        trust: bool = False,
        organization_id: str = "",
        project_id: str = "",
    ) -> bool:
        """Install a key for a backend. Untrusted keys are validated against the vendor first.

        Returns False (and changes nothing) when validation fails.
        """
        adapter = self._adapters.get(backend)
        if adapter is None:
            raise ConfigurationError(f"No adapter registered for backend: {backend.value}", backend)

        if not trust and not await adapter.validate_api_key(api_key):
            logger.warning("Rejected %s API key: validation failed", adapter.name)
            return False

        credential = Credential(
            backend=backend,
            api_key=api_key,
            trusted=trust,
            organization_id=organization_id,
            project_id=project_id,
        )
        self.credentials.set(credential)
        adapter.set_credential(credential)
        if self.credentials.path is not None:
            self.credentials.save()
        return True

    def remove_api_key(self, backend: Backend) -> bool:
        removed = self.credentials.remove(backend)
        adapter = self._adapters.get(backend)
        if adapter is not None:
            adapter.set_credential(None)
        if removed and self.credentials.path is not None:
            self.credentials.save()
        return removed

    def set_default_backend(self, backend: Backend | str) -> Backend:
        """Backend used for requests that leave theirs empty."""
        try:
            resolved = Backend(backend)
        except ValueError:
            raise ConfigurationError(f"Unknown backend: {backend}") from None
        if resolved not in self._adapters:
            raise ConfigurationError(f"No adapter registered for backend: {resolved.value}", resolved)
        self.default_backend = resolved
        logger.info("Default backend set to %s", resolved.value)
        return resolved

    # -- Introspection ----------------------------------------------------

    def adapter_for(self, backend: Backend) -> BaseBackendAdapter | None:
        return self._adapters.get(backend)

    def get_rate_limit_status(self, backend: Backend) -> RateLimitStatus | None:
        return self.rate_limiter.get_status(backend)

    def list_backends(self) -> list[dict]:
        return [{**a.info.to_dict(), "configured": a.is_configured()} for a in self._adapters.values()]

    def configured_backends(self) -> list[Backend]:
        return [b for b, a in self._adapters.items() if a.is_configured()]

    def get_status(self) -> dict:
        """Get comprehensive gateway status."""
        return {
            "queue": self.queue.get_stats(),
            "rate_limits": self.rate_limiter.get_all_stats(),
            "in_flight": len(self._in_flight),
            "running": self.running,
            "configured_backends": [b.value for b in self.configured_backends()],
            "default_backend": self.default_backend.value,
        }
