"""Tests for response normalization and batch summaries."""

from __future__ import annotations

from imagegen.gateway.normalizer import estimate_cost, failed_response, normalize_response, summarize_responses
from imagegen.gateway.types import (
    Backend,
    ErrorCode,
    GeneratedImage,
    GenerationError,
    GenerationMode,
    GenerationRequest,
    GenerationResponse,
    ModelInfo,
)

MODEL = ModelInfo(id="m", name="M", capabilities=(GenerationMode.TEXT_TO_IMAGE,), cost_per_image=0.02)


def _request() -> GenerationRequest:
    return GenerationRequest(backend=Backend.TOGETHER, model="m", prompt="a fox")


def _success(n: int = 1) -> GenerationResponse:
    images = [GeneratedImage(url=f"https://x/{i}.png", width=1, height=1) for i in range(n)]
    return GenerationResponse.succeeded(_request(), images)


class TestNormalizer:
    def test_fills_duration_and_cost(self):
        resp = normalize_response(_success(2), duration_ms=420, model=MODEL)
        assert resp.metadata.duration_ms == 420
        assert resp.metadata.cost_usd == 0.04

    def test_keeps_adapter_values(self):
        resp = GenerationResponse.succeeded(
            _request(), [GeneratedImage(url="https://x", width=1, height=1)], duration_ms=100, cost_usd=0.5
        )
        normalize_response(resp, duration_ms=999, model=MODEL)
        assert resp.metadata.duration_ms == 100
        assert resp.metadata.cost_usd == 0.5

    def test_idempotent(self):
        resp = normalize_response(_success(), duration_ms=50, model=MODEL)
        again = normalize_response(resp, duration_ms=75, model=MODEL)
        assert again.metadata.duration_ms == 50
        assert again.metadata.cost_usd == 0.02

    def test_failure_has_no_cost(self):
        error = GenerationError(code=ErrorCode.TIMEOUT, message="t", retryable=True)
        resp = normalize_response(failed_response(_request(), error), duration_ms=10, model=MODEL)
        assert resp.metadata.cost_usd is None
        assert resp.metadata.duration_ms == 10

    def test_estimate_cost_unknown_price(self):
        assert estimate_cost(None, 3) is None
        free = ModelInfo(id="f", name="F", capabilities=(), cost_per_image=0.0)
        assert estimate_cost(free, 3) == 0.0


class TestSummarize:
    def test_empty(self):
        assert summarize_responses([]) == {"total": 0}

    def test_mixed_batch(self):
        ok = normalize_response(_success(2), duration_ms=100, model=MODEL)
        retryable = failed_response(
            _request(), GenerationError(code=ErrorCode.RATE_LIMITED, message="r", retryable=True), duration_ms=300
        )
        final = failed_response(
            _request(), GenerationError(code=ErrorCode.INVALID_REQUEST, message="bad", retryable=False)
        )

        summary = summarize_responses([ok, retryable, final])
        assert summary["total"] == 3
        assert summary["successful"] == 1
        assert summary["failed"] == 2
        assert summary["retryable_failures"] == 1
        assert summary["images"] == 2
        assert summary["total_cost_usd"] == 0.04
        assert summary["avg_duration_ms"] == 133
