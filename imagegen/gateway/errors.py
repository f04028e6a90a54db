"""Exception hierarchy for the generation gateway.

Only ConfigurationError and CapabilityUnsupportedError ever reach the caller
as exceptions (raised by ImageGateway.submit before enqueue). Everything an
adapter raises after enqueue is classified into a failed GenerationResponse.
"""

from __future__ import annotations

from imagegen.gateway.types import Backend, ErrorCode, GenerationMode


class GatewayError(Exception):
    """Base for all gateway errors."""


class ConfigurationError(GatewayError):
    """Backend is unknown or has no usable credential."""

    def __init__(self, message: str, backend: Backend | None = None):
        super().__init__(message)
        self.backend = backend


class CapabilityUnsupportedError(GatewayError):
    """Adapter does not implement the requested mode."""

    def __init__(self, backend: Backend, mode: GenerationMode, backend_name: str = ""):
        super().__init__(f"{backend_name or backend.value} does not support {mode.value}")
        self.backend = backend
        self.mode = mode


class BackendError(GatewayError):
    """Raised by an adapter when the remote call fails.

    Adapters that can read a structured vendor error should set
    error_code; the classifier maps it directly instead of guessing
    from the message text.
    """

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        error_code: ErrorCode | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.retry_after = retry_after


class JobFailedError(BackendError):
    """Async job reached the failed state.

    The vendor only reports free text for failed jobs, so no error_code is
    set and the classifier falls back to the message.
    """

    def __init__(self, job_id: str, message: str = ""):
        super().__init__(message or f"Job {job_id} failed")
        self.job_id = job_id


class JobTimeoutError(BackendError):
    """Async job did not reach a terminal state within its attempt budget."""

    def __init__(self, job_id: str, attempts: int, interval: float):
        super().__init__(
            f"Job {job_id} timeout after {attempts} polls ({attempts * interval:.0f}s)",
            error_code=ErrorCode.TIMEOUT,
        )
        self.job_id = job_id
        self.attempts = attempts
