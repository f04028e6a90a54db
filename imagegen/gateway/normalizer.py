"""Response Normalizer — final touches on GenerationResponses.

Applied by the gateway after every dispatch:
  - Sets duration from the gateway's own measurement when the adapter didn't
  - Fills cost from the model catalogue when the adapter didn't
  - Builds the failure shape for classified errors
"""

from __future__ import annotations

import logging

from imagegen.gateway.types import (
    GenerationError,
    GenerationRequest,
    GenerationResponse,
    ModelInfo,
)

logger = logging.getLogger(__name__)


def estimate_cost(model: ModelInfo | None, image_count: int) -> float | None:
    """Per-image catalogue cost times image count; None when the price is unknown."""
    if model is None or model.cost_per_image is None:
        return None
    return round(model.cost_per_image * max(image_count, 1), 6)


def normalize_response(
    response: GenerationResponse,
    duration_ms: int,
    model: ModelInfo | None = None,
) -> GenerationResponse:
    """Apply normalization to a gateway response.

    This is idempotent — can be called multiple times safely.
    """
    if response.metadata.duration_ms <= 0:
        response.metadata.duration_ms = duration_ms

    if response.success and response.metadata.cost_usd is None:
        response.metadata.cost_usd = estimate_cost(model, len(response.images))

    return response


def failed_response(
    request: GenerationRequest,
    error: GenerationError,
    duration_ms: int = 0,
) -> GenerationResponse:
    """Failure shape for a request: no images, error present."""
    return GenerationResponse.failed(request, error, duration_ms=duration_ms)


def summarize_responses(responses: list[GenerationResponse]) -> dict:
    """Aggregate a batch of responses, e.g. for a history panel or a script report."""
    if not responses:
        return {"total": 0}

    successful = [r for r in responses if r.success]
    retryable = [r for r in responses if r.error and r.error.retryable]
    total_cost = sum(r.metadata.cost_usd or 0.0 for r in successful)
    avg_duration = sum(r.metadata.duration_ms for r in responses) / len(responses)

    return {
        "total": len(responses),
        "successful": len(successful),
        "failed": len(responses) - len(successful),
        "retryable_failures": len(retryable),
        "images": sum(len(r.images) for r in successful),
        "total_cost_usd": round(total_cost, 6),
        "avg_duration_ms": int(avg_duration),
    }
