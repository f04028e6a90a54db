"""Tests for backend adapters (mocked HTTP)."""

from __future__ import annotations

import base64
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from imagegen.backends import (
    ADAPTER_REGISTRY,
    ByteDanceAdapter,
    ClipdropAdapter,
    DeepAIAdapter,
    GeminiAdapter,
    HuggingFaceAdapter,
    OpenAIAdapter,
    RemoveBgAdapter,
    ReplicateAdapter,
    StabilityAdapter,
    TogetherAdapter,
    get_adapter,
)
from imagegen.backends.styles import (
    DEPARTMENT_CATEGORIES,
    DEPARTMENT_TRANSFORMS,
    apply_style,
    get_department,
    get_style,
)
from imagegen.gateway.credentials import Credential
from imagegen.gateway.error_classifier import classify_error
from imagegen.gateway.errors import BackendError, CapabilityUnsupportedError, JobFailedError, JobTimeoutError
from imagegen.gateway.types import Backend, ErrorCode, GenerationMode, GenerationRequest

PNG = b"\x89PNG\r\n\x1a\nfake"
PNG_B64 = base64.b64encode(PNG).decode()


def _make_httpx_response(
    status_code: int,
    json_data: dict | None = None,
    text: str = "",
    content: bytes | None = None,
    headers: dict | None = None,
) -> httpx.Response:
    """Create a proper httpx.Response with request set (needed for raise_for_status)."""
    request = httpx.Request("POST", "https://example.com")
    if json_data is not None:
        return httpx.Response(status_code, json=json_data, headers=headers, request=request)
    if content is not None:
        return httpx.Response(status_code, content=content, headers=headers, request=request)
    return httpx.Response(status_code, text=text, headers=headers, request=request)


def _mock_client(mock_client_cls, post=None, get=None):
    mock_client = AsyncMock()
    if post is not None:
        mock_client.post.return_value = post
    if get is not None:
        mock_client.get.return_value = get
    mock_client.__aenter__ = AsyncMock(return_value=mock_client)
    mock_client.__aexit__ = AsyncMock(return_value=None)
    mock_client_cls.return_value = mock_client
    return mock_client


def _cred(backend: Backend, **kwargs) -> Credential:
    return Credential(backend=backend, api_key="test-key", **kwargs)


# ==========================================================================
# Test: Base adapter behaviour
# ==========================================================================


class TestBaseAdapter:
    @pytest.mark.asyncio
    async def test_missing_key_raises_configuration(self):
        adapter = OpenAIAdapter()
        req = GenerationRequest(backend=Backend.OPENAI, model="dall-e-3", prompt="cat")
        with pytest.raises(BackendError) as exc_info:
            await adapter.generate(req)
        assert exc_info.value.error_code == ErrorCode.CONFIGURATION
        assert not adapter.is_configured()

    @pytest.mark.asyncio
    async def test_unsupported_capability(self):
        adapter = GeminiAdapter(credential=_cred(Backend.GEMINI))
        req = GenerationRequest(
            backend=Backend.GEMINI, model="gemini-2.5-flash-image", mode=GenerationMode.INPAINTING, source_image=PNG
        )
        with pytest.raises(CapabilityUnsupportedError):
            await adapter.inpaint(req)
        assert not adapter.supports_mode(GenerationMode.INPAINTING)

    def test_supports_mode_per_model(self):
        adapter = OpenAIAdapter()
        assert adapter.supports_mode(GenerationMode.IMAGE_TO_IMAGE)
        assert adapter.supports_mode(GenerationMode.IMAGE_TO_IMAGE, "dall-e-2")
        assert not adapter.supports_mode(GenerationMode.IMAGE_TO_IMAGE, "dall-e-3")
        assert adapter.supports_mode(GenerationMode.IMAGE_TO_IMAGE, "gpt-image-1")

        replicate = ReplicateAdapter()
        assert not replicate.supports_mode(GenerationMode.INPAINTING, "black-forest-labs/flux-schnell")
        assert replicate.supports_mode(GenerationMode.INPAINTING, "black-forest-labs/flux-fill-pro")

    @pytest.mark.asyncio
    async def test_validate_api_key(self):
        adapter = OpenAIAdapter()
        with patch("imagegen.backends.base.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, get=_make_httpx_response(200, json_data={"data": []}))
            assert await adapter.validate_api_key("sk-new") is True

        assert mock_client.get.call_args.kwargs["headers"]["Authorization"] == "Bearer sk-new"

    @pytest.mark.asyncio
    async def test_validate_api_key_rejected(self):
        adapter = OpenAIAdapter()
        with patch("imagegen.backends.base.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, get=_make_httpx_response(401, json_data={"error": {"message": "bad"}}))
            assert await adapter.validate_api_key("sk-bad") is False

    @pytest.mark.asyncio
    async def test_validate_api_key_network_error(self):
        adapter = OpenAIAdapter()
        with patch("imagegen.backends.base.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls)
            mock_client.get.side_effect = httpx.ConnectError("boom")
            assert await adapter.validate_api_key("sk-x") is False

    def test_estimate_cost(self):
        adapter = OpenAIAdapter()
        req = GenerationRequest(backend=Backend.OPENAI, model="dall-e-2", num_images=3)
        assert adapter.estimate_cost(req) == 0.06
        assert adapter.estimate_cost(GenerationRequest(backend=Backend.OPENAI, model="unknown")) == 0.0

    def test_dimensions_fall_back_to_model_default(self):
        adapter = OpenAIAdapter(credential=_cred(Backend.OPENAI))
        req = GenerationRequest(backend=Backend.OPENAI, model="dall-e-3")
        assert adapter._dimensions(req) == (1024, 1024)
        sized = GenerationRequest(backend=Backend.OPENAI, model="dall-e-3", width=1792, height=1024)
        assert adapter._dimensions(sized) == (1792, 1024)

    def test_prompt_enhancement_and_style(self):
        adapter = OpenAIAdapter(prompt_enhancement="high quality")
        assert adapter.enhance_prompt("a saint", "byzantine").startswith("a saint, high quality, ")
        assert apply_style("a saint", None, "") == "a saint"
        assert apply_style("a saint", "no-such-style", "") == "a saint"

    def test_department_transform(self):
        adapter = OpenAIAdapter(prompt_enhancement="")
        prompt = adapter.enhance_prompt("a student at work", None, "welding")
        assert prompt.startswith("a student at work, Transform scene to welding workshop")
        assert apply_style("x", "oil", "hq", "no-such-department") == "x, hq, " + get_style("oil").prompt
        assert get_department("ict").category == "Technology"
        grouped = [d for ids in DEPARTMENT_CATEGORIES.values() for d in ids]
        assert sorted(grouped) == sorted(d.id for d in DEPARTMENT_TRANSFORMS)


# ==========================================================================
# Test: OpenAI
# ==========================================================================


class TestOpenAIAdapter:
    @pytest.mark.asyncio
    async def test_generate_success(self):
        adapter = OpenAIAdapter(credential=_cred(Backend.OPENAI, organization_id="org-1"))
        req = GenerationRequest(backend=Backend.OPENAI, model="dall-e-3", prompt="a lighthouse", num_images=1)

        with patch("imagegen.backends.openai_dalle.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(
                mock_client_cls,
                post=_make_httpx_response(
                    200, json_data={"data": [{"b64_json": PNG_B64, "revised_prompt": "a tall lighthouse"}]}
                ),
            )
            resp = await adapter.generate(req)

        assert resp.success is True
        assert resp.images[0].data == PNG
        assert resp.images[0].revised_prompt == "a tall lighthouse"
        assert resp.metadata.cost_usd == 0.04

        payload = mock_client.post.call_args.kwargs["json"]
        assert payload["n"] == 1
        assert payload["quality"] == "hd"
        assert payload["response_format"] == "b64_json"
        headers = mock_client.post.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer test-key"
        assert headers["OpenAI-Organization"] == "org-1"

    @pytest.mark.asyncio
    async def test_unsupported_size_falls_back(self):
        adapter = OpenAIAdapter(credential=_cred(Backend.OPENAI))
        req = GenerationRequest(backend=Backend.OPENAI, model="dall-e-2", width=300, height=300, num_images=2)

        with patch("imagegen.backends.openai_dalle.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(
                mock_client_cls,
                post=_make_httpx_response(200, json_data={"data": [{"url": "https://a"}, {"url": "https://b"}]}),
            )
            resp = await adapter.generate(req)

        assert len(resp.images) == 2
        assert mock_client.post.call_args.kwargs["json"]["size"] == "1024x1024"
        assert mock_client.post.call_args.kwargs["json"]["n"] == 2

    @pytest.mark.asyncio
    async def test_edit_image_multipart(self):
        adapter = OpenAIAdapter(credential=_cred(Backend.OPENAI))
        req = GenerationRequest(
            backend=Backend.OPENAI,
            model="dall-e-2",
            prompt="add a hat",
            mode=GenerationMode.IMAGE_TO_IMAGE,
            source_image=PNG,
            mask_image=PNG,
        )

        with patch("imagegen.backends.openai_dalle.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(
                mock_client_cls, post=_make_httpx_response(200, json_data={"data": [{"b64_json": PNG_B64}]})
            )
            resp = await adapter.edit_image(req)

        assert resp.success
        call = mock_client.post.call_args
        assert call.args[0].endswith("/images/edits")
        assert set(call.kwargs["files"]) == {"image", "mask"}
        assert call.kwargs["data"]["model"] == "dall-e-2"

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        adapter = OpenAIAdapter(credential=_cred(Backend.OPENAI))
        req = GenerationRequest(backend=Backend.OPENAI, model="dall-e-3", prompt="x")

        with patch("imagegen.backends.openai_dalle.httpx.AsyncClient") as mock_client_cls:
            _mock_client(
                mock_client_cls,
                post=_make_httpx_response(
                    429,
                    json_data={"error": {"message": "Rate limit reached", "code": "rate_limit_exceeded"}},
                    headers={"Retry-After": "20"},
                ),
            )
            with pytest.raises(BackendError) as exc_info:
                await adapter.generate(req)

        err = exc_info.value
        assert err.error_code == ErrorCode.RATE_LIMITED
        assert err.retry_after == 20.0
        assert classify_error(err).retryable is True

    @pytest.mark.asyncio
    async def test_content_policy(self):
        adapter = OpenAIAdapter(credential=_cred(Backend.OPENAI))
        req = GenerationRequest(backend=Backend.OPENAI, model="dall-e-3", prompt="x")

        with patch("imagegen.backends.openai_dalle.httpx.AsyncClient") as mock_client_cls:
            _mock_client(
                mock_client_cls,
                post=_make_httpx_response(
                    400,
                    json_data={"error": {"message": "Your request was rejected", "code": "content_policy_violation"}},
                ),
            )
            with pytest.raises(BackendError) as exc_info:
                await adapter.generate(req)

        assert exc_info.value.error_code == ErrorCode.CONTENT_BLOCKED
        assert classify_error(exc_info.value).retryable is False

    @pytest.mark.asyncio
    async def test_empty_data_is_failure(self):
        adapter = OpenAIAdapter(credential=_cred(Backend.OPENAI))
        req = GenerationRequest(backend=Backend.OPENAI, model="dall-e-3", prompt="x")

        with patch("imagegen.backends.openai_dalle.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, post=_make_httpx_response(200, json_data={"data": []}))
            with pytest.raises(BackendError) as exc_info:
                await adapter.generate(req)

        assert exc_info.value.error_code == ErrorCode.GENERATION_FAILED

    @pytest.mark.asyncio
    async def test_timeout_propagates(self):
        adapter = OpenAIAdapter(credential=_cred(Backend.OPENAI))
        req = GenerationRequest(backend=Backend.OPENAI, model="dall-e-3", prompt="x")

        with patch("imagegen.backends.openai_dalle.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls)
            mock_client.post.side_effect = httpx.TimeoutException("timeout")
            with pytest.raises(httpx.TimeoutException) as exc_info:
                await adapter.generate(req)

        assert classify_error(exc_info.value).code == ErrorCode.TIMEOUT


# ==========================================================================
# Test: Gemini
# ==========================================================================


def _gemini_image_response(finish_reason="STOP"):
    return _make_httpx_response(
        200,
        json_data={
            "candidates": [
                {
                    "content": {
                        "parts": [
                            {"text": "Here is your image"},
                            {"inlineData": {"mimeType": "image/png", "data": PNG_B64}},
                        ]
                    },
                    "finishReason": finish_reason,
                }
            ]
        },
    )


class TestGeminiAdapter:
    @pytest.mark.asyncio
    async def test_generate_success(self):
        adapter = GeminiAdapter(credential=_cred(Backend.GEMINI))
        req = GenerationRequest(
            backend=Backend.GEMINI, model="gemini-2.5-flash-image", prompt="an icon", aspect_ratio="3:4"
        )

        with patch("imagegen.backends.gemini.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, post=_gemini_image_response())
            resp = await adapter.generate(req)

        assert resp.success
        assert len(resp.images) == 1
        assert resp.images[0].data == PNG

        call = mock_client.post.call_args
        assert call.args[0].endswith("/models/gemini-2.5-flash-image:generateContent")
        assert call.kwargs["headers"]["x-goog-api-key"] == "test-key"
        assert call.kwargs["json"]["generationConfig"]["imageConfig"] == {"aspectRatio": "3:4"}

    @pytest.mark.asyncio
    async def test_edit_sends_inline_source(self):
        adapter = GeminiAdapter(credential=_cred(Backend.GEMINI))
        req = GenerationRequest(
            backend=Backend.GEMINI,
            model="gemini-2.5-flash-image",
            prompt="make it gold",
            mode=GenerationMode.IMAGE_TO_IMAGE,
            source_image=PNG,
        )

        with patch("imagegen.backends.gemini.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, post=_gemini_image_response())
            await adapter.edit_image(req)

        parts = mock_client.post.call_args.kwargs["json"]["contents"][0]["parts"]
        assert parts[0]["inlineData"]["data"] == PNG_B64
        assert parts[1]["text"].startswith("Edit this image.")

    @pytest.mark.asyncio
    async def test_safety_block(self):
        adapter = GeminiAdapter(credential=_cred(Backend.GEMINI))
        req = GenerationRequest(backend=Backend.GEMINI, model="gemini-2.5-flash-image", prompt="x")

        with patch("imagegen.backends.gemini.httpx.AsyncClient") as mock_client_cls:
            _mock_client(
                mock_client_cls,
                post=_make_httpx_response(200, json_data={"candidates": [{"finishReason": "SAFETY"}]}),
            )
            with pytest.raises(BackendError) as exc_info:
                await adapter.generate(req)

        assert exc_info.value.error_code == ErrorCode.CONTENT_BLOCKED

    @pytest.mark.asyncio
    async def test_prompt_blocked(self):
        adapter = GeminiAdapter(credential=_cred(Backend.GEMINI))
        req = GenerationRequest(backend=Backend.GEMINI, model="gemini-2.5-flash-image", prompt="x")

        with patch("imagegen.backends.gemini.httpx.AsyncClient") as mock_client_cls:
            _mock_client(
                mock_client_cls,
                post=_make_httpx_response(200, json_data={"promptFeedback": {"blockReason": "OTHER"}}),
            )
            with pytest.raises(BackendError) as exc_info:
                await adapter.generate(req)

        assert exc_info.value.error_code == ErrorCode.CONTENT_BLOCKED

    @pytest.mark.asyncio
    async def test_edit_requires_source(self):
        adapter = GeminiAdapter(credential=_cred(Backend.GEMINI))
        req = GenerationRequest(
            backend=Backend.GEMINI, model="gemini-2.5-flash-image", mode=GenerationMode.IMAGE_TO_IMAGE
        )
        with pytest.raises(BackendError) as exc_info:
            await adapter.edit_image(req)
        assert exc_info.value.error_code == ErrorCode.INVALID_REQUEST


# ==========================================================================
# Test: Stability
# ==========================================================================


class TestStabilityAdapter:
    @pytest.mark.asyncio
    async def test_generate_binary_response(self):
        adapter = StabilityAdapter(credential=_cred(Backend.STABILITY))
        req = GenerationRequest(
            backend=Backend.STABILITY, model="sd3.5-large", prompt="a castle", aspect_ratio="16:9", seed=7
        )

        with patch("imagegen.backends.stability.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(
                mock_client_cls,
                post=_make_httpx_response(200, content=PNG, headers={"seed": "42", "finish-reason": "SUCCESS"}),
            )
            resp = await adapter.generate(req)

        assert resp.success
        assert resp.images[0].data == PNG
        assert resp.images[0].seed == 42

        call = mock_client.post.call_args
        assert call.args[0].endswith("/stable-image/generate/sd3")
        assert call.kwargs["headers"]["Accept"] == "image/*"
        fields = call.kwargs["files"]
        assert fields["model"] == (None, "sd3.5-large")
        assert fields["aspect_ratio"] == (None, "16:9")
        assert fields["seed"] == (None, "7")

    @pytest.mark.asyncio
    async def test_image_to_image_fields(self):
        adapter = StabilityAdapter(credential=_cred(Backend.STABILITY))
        req = GenerationRequest(
            backend=Backend.STABILITY,
            model="sd3.5-large",
            prompt="winter",
            mode=GenerationMode.IMAGE_TO_IMAGE,
            source_image=PNG,
        )

        with patch("imagegen.backends.stability.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, post=_make_httpx_response(200, content=PNG))
            await adapter.edit_image(req)

        fields = mock_client.post.call_args.kwargs["files"]
        assert fields["image"][1] == PNG
        assert fields["strength"] == (None, "0.7")
        assert fields["mode"] == (None, "image-to-image")
        assert "aspect_ratio" not in fields

    @pytest.mark.asyncio
    async def test_content_filtered(self):
        adapter = StabilityAdapter(credential=_cred(Backend.STABILITY))
        req = GenerationRequest(backend=Backend.STABILITY, model="stable-image-core", prompt="x")

        with patch("imagegen.backends.stability.httpx.AsyncClient") as mock_client_cls:
            _mock_client(
                mock_client_cls,
                post=_make_httpx_response(200, content=PNG, headers={"finish-reason": "CONTENT_FILTERED"}),
            )
            with pytest.raises(BackendError) as exc_info:
                await adapter.generate(req)

        assert exc_info.value.error_code == ErrorCode.CONTENT_BLOCKED

    @pytest.mark.asyncio
    async def test_insufficient_credits(self):
        adapter = StabilityAdapter(credential=_cred(Backend.STABILITY))
        req = GenerationRequest(backend=Backend.STABILITY, model="stable-image-ultra", prompt="x")

        with patch("imagegen.backends.stability.httpx.AsyncClient") as mock_client_cls:
            _mock_client(
                mock_client_cls,
                post=_make_httpx_response(
                    402, json_data={"name": "insufficient_credits", "errors": ["You lack sufficient credits"]}
                ),
            )
            with pytest.raises(BackendError) as exc_info:
                await adapter.generate(req)

        assert exc_info.value.error_code == ErrorCode.QUOTA_EXCEEDED
        assert "sufficient credits" in str(exc_info.value)


# ==========================================================================
# Test: Replicate (create-then-poll)
# ==========================================================================


def _prediction(status: str, **extra) -> httpx.Response:
    return _make_httpx_response(200, json_data={"id": "pred-1", "status": status, **extra})


class TestReplicateAdapter:
    @pytest.mark.asyncio
    async def test_polls_until_succeeded(self, fake_sleep):
        adapter = ReplicateAdapter(credential=_cred(Backend.REPLICATE), sleep=fake_sleep, poll_interval=1.0)
        req = GenerationRequest(backend=Backend.REPLICATE, model="black-forest-labs/flux-schnell", prompt="a dog")

        with patch("imagegen.backends.replicate.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, post=_prediction("starting"))
            mock_client.get.side_effect = [_prediction("processing")] * 5 + [
                _prediction("succeeded", output=["https://replicate.delivery/out-0.png"])
            ]
            resp = await adapter.generate(req)

        assert resp.success
        assert resp.images[0].url == "https://replicate.delivery/out-0.png"
        assert mock_client.get.call_count == 6
        assert fake_sleep.calls == [1.0] * 5
        assert mock_client.get.call_args.args[0].endswith("/predictions/pred-1")

        body = mock_client.post.call_args.kwargs["json"]["input"]
        assert body["go_fast"] is True
        assert body["num_inference_steps"] == 4
        assert body["aspect_ratio"] == "1:1"

    @pytest.mark.asyncio
    async def test_single_output_string(self, fake_sleep):
        adapter = ReplicateAdapter(credential=_cred(Backend.REPLICATE), sleep=fake_sleep)
        req = GenerationRequest(backend=Backend.REPLICATE, model="black-forest-labs/flux-dev", prompt="a dog")

        with patch("imagegen.backends.replicate.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(
                mock_client_cls,
                post=_prediction("starting"),
                get=_prediction("succeeded", output="https://replicate.delivery/one.png"),
            )
            resp = await adapter.generate(req)

        assert [img.url for img in resp.images] == ["https://replicate.delivery/one.png"]
        assert mock_client.post.call_args.kwargs["json"]["input"]["num_inference_steps"] == 28

    @pytest.mark.asyncio
    async def test_prediction_failed(self, fake_sleep):
        adapter = ReplicateAdapter(credential=_cred(Backend.REPLICATE), sleep=fake_sleep)
        req = GenerationRequest(backend=Backend.REPLICATE, model="black-forest-labs/flux-dev", prompt="x")

        with patch("imagegen.backends.replicate.httpx.AsyncClient") as mock_client_cls:
            _mock_client(
                mock_client_cls,
                post=_prediction("starting"),
                get=_prediction("failed", error="NSFW content detected"),
            )
            with pytest.raises(JobFailedError, match="NSFW"):
                await adapter.generate(req)

    @pytest.mark.asyncio
    async def test_prediction_failed_with_503_is_retryable(self, fake_sleep):
        adapter = ReplicateAdapter(credential=_cred(Backend.REPLICATE), sleep=fake_sleep)
        req = GenerationRequest(backend=Backend.REPLICATE, model="black-forest-labs/flux-dev", prompt="x")

        with patch("imagegen.backends.replicate.httpx.AsyncClient") as mock_client_cls:
            _mock_client(
                mock_client_cls,
                post=_prediction("starting"),
                get=_prediction("failed", error="503 Service Unavailable"),
            )
            with pytest.raises(JobFailedError) as exc_info:
                await adapter.generate(req)

        error = classify_error(exc_info.value)
        assert error.code == ErrorCode.GENERATION_FAILED
        assert error.retryable is True

    @pytest.mark.asyncio
    async def test_poll_timeout(self, fake_sleep):
        adapter = ReplicateAdapter(credential=_cred(Backend.REPLICATE), sleep=fake_sleep, poll_max_attempts=3)
        req = GenerationRequest(backend=Backend.REPLICATE, model="black-forest-labs/flux-dev", prompt="x")

        with patch("imagegen.backends.replicate.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, post=_prediction("starting"), get=_prediction("processing"))
            with pytest.raises(JobTimeoutError) as exc_info:
                await adapter.generate(req)

        assert mock_client.get.call_count == 3
        assert classify_error(exc_info.value).code == ErrorCode.TIMEOUT

    def test_inpainting_input(self):
        adapter = ReplicateAdapter(credential=_cred(Backend.REPLICATE))
        req = GenerationRequest(
            backend=Backend.REPLICATE,
            model="black-forest-labs/flux-fill-pro",
            prompt="replace the sky",
            mode=GenerationMode.INPAINTING,
            source_image=PNG,
            mask_image=PNG,
        )
        body = adapter.build_input(req)
        assert body["image"].startswith("data:image/png;base64,")
        assert body["mask"].startswith("data:image/png;base64,")
        assert body["strength"] == 0.8
        assert body["mask_prompt"] == "user mask"
        assert "aspect_ratio" not in body

    def test_image_to_image_input(self):
        adapter = ReplicateAdapter(credential=_cred(Backend.REPLICATE))
        req = GenerationRequest(
            backend=Backend.REPLICATE,
            model="black-forest-labs/flux-dev",
            prompt="sketch",
            mode=GenerationMode.IMAGE_TO_IMAGE,
            source_image=PNG,
            strength=0.5,
        )
        body = adapter.build_input(req)
        assert body["image_to_image_strength"] == 0.5


# ==========================================================================
# Test: Together
# ==========================================================================


class TestTogetherAdapter:
    @pytest.mark.asyncio
    async def test_generate_success(self):
        adapter = TogetherAdapter(credential=_cred(Backend.TOGETHER))
        req = GenerationRequest(
            backend=Backend.TOGETHER,
            model="black-forest-labs/FLUX.1-schnell-Free",
            prompt="a robot",
            width=512,
            height=512,
            num_images=2,
        )

        with patch("imagegen.backends.together.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(
                mock_client_cls,
                post=_make_httpx_response(200, json_data={"data": [{"b64_json": PNG_B64}, {"url": "https://t/2.png"}]}),
            )
            resp = await adapter.generate(req)

        assert len(resp.images) == 2
        assert resp.images[0].width == 512
        assert resp.metadata.cost_usd == 0.0
        body = mock_client.post.call_args.kwargs["json"]
        assert body["n"] == 2
        assert body["response_format"] == "b64_json"

    def test_inpainting_body(self):
        adapter = TogetherAdapter(credential=_cred(Backend.TOGETHER))
        req = GenerationRequest(
            backend=Backend.TOGETHER,
            model="black-forest-labs/FLUX.1-dev-Inpainting",
            prompt="fix the hand",
            mode=GenerationMode.INPAINTING,
            source_image=PNG,
            mask_image=PNG,
        )
        body = adapter.build_body(req)
        assert "mask" in body
        assert body["strength"] == 0.8

    def test_image_to_image_body(self):
        adapter = TogetherAdapter(credential=_cred(Backend.TOGETHER))
        req = GenerationRequest(
            backend=Backend.TOGETHER,
            model="black-forest-labs/FLUX.1.1-pro",
            prompt="x",
            mode=GenerationMode.IMAGE_TO_IMAGE,
            source_image=PNG,
        )
        body = adapter.build_body(req)
        assert body["strength"] == 0.75
        assert "mask" not in body


# ==========================================================================
# Test: Remove.bg
# ==========================================================================


class TestRemoveBgAdapter:
    @pytest.mark.asyncio
    async def test_remove_background(self):
        adapter = RemoveBgAdapter(credential=_cred(Backend.REMOVEBG))
        req = GenerationRequest(
            backend=Backend.REMOVEBG, model="hd", mode=GenerationMode.BACKGROUND_REMOVAL, source_image=PNG
        )

        with patch("imagegen.backends.removebg.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(
                mock_client_cls,
                post=_make_httpx_response(200, content=PNG, headers={"X-Width": "800", "X-Height": "600"}),
            )
            resp = await adapter.remove_background(req)

        assert resp.images[0].data == PNG
        assert (resp.images[0].width, resp.images[0].height) == (800, 600)
        call = mock_client.post.call_args
        assert call.kwargs["headers"] == {"X-Api-Key": "test-key"}
        assert call.kwargs["data"]["size"] == "hd"

    @pytest.mark.asyncio
    async def test_text_to_image_unsupported(self):
        adapter = RemoveBgAdapter(credential=_cred(Backend.REMOVEBG))
        req = GenerationRequest(backend=Backend.REMOVEBG, model="auto", prompt="x")
        with pytest.raises(CapabilityUnsupportedError):
            await adapter.generate(req)

    @pytest.mark.asyncio
    async def test_insufficient_credits(self):
        adapter = RemoveBgAdapter(credential=_cred(Backend.REMOVEBG))
        req = GenerationRequest(
            backend=Backend.REMOVEBG, model="auto", mode=GenerationMode.BACKGROUND_REMOVAL, source_image=PNG
        )

        with patch("imagegen.backends.removebg.httpx.AsyncClient") as mock_client_cls:
            _mock_client(
                mock_client_cls,
                post=_make_httpx_response(
                    402, json_data={"errors": [{"title": "Insufficient credits", "code": "insufficient_credits"}]}
                ),
            )
            with pytest.raises(BackendError) as exc_info:
                await adapter.remove_background(req)

        assert exc_info.value.error_code == ErrorCode.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    async def test_missing_source(self):
        adapter = RemoveBgAdapter(credential=_cred(Backend.REMOVEBG))
        req = GenerationRequest(backend=Backend.REMOVEBG, model="auto", mode=GenerationMode.BACKGROUND_REMOVAL)
        with pytest.raises(BackendError) as exc_info:
            await adapter.remove_background(req)
        assert exc_info.value.error_code == ErrorCode.INVALID_REQUEST


# ==========================================================================
# Test: HuggingFace
# ==========================================================================


class TestHuggingFaceAdapter:
    @pytest.mark.asyncio
    async def test_inpaint_multipart(self):
        adapter = HuggingFaceAdapter(credential=_cred(Backend.HUGGINGFACE))
        req = GenerationRequest(
            backend=Backend.HUGGINGFACE,
            model="runwayml/stable-diffusion-inpainting",
            prompt="a wooden bench",
            mode=GenerationMode.INPAINTING,
            source_image=PNG,
            mask_image=PNG,
        )

        with patch("imagegen.backends.huggingface.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(
                mock_client_cls, post=_make_httpx_response(200, content=PNG, headers={"Content-Type": "image/jpeg"})
            )
            resp = await adapter.inpaint(req)

        assert resp.images[0].data == PNG
        assert resp.images[0].mime_type == "image/jpeg"
        assert (resp.images[0].width, resp.images[0].height) == (512, 512)
        call = mock_client.post.call_args
        assert call.args[0].endswith("/models/runwayml/stable-diffusion-inpainting")
        assert set(call.kwargs["files"]) == {"inputs", "mask", "prompt"}
        assert call.kwargs["headers"] == {"Authorization": "Bearer test-key"}

    @pytest.mark.asyncio
    async def test_lama_takes_no_prompt(self):
        adapter = HuggingFaceAdapter(credential=_cred(Backend.HUGGINGFACE))
        req = GenerationRequest(
            backend=Backend.HUGGINGFACE,
            model="Sanster/lama-cleaner",
            prompt="ignored",
            mode=GenerationMode.INPAINTING,
            source_image=PNG,
            mask_image=PNG,
        )
        with patch("imagegen.backends.huggingface.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, post=_make_httpx_response(200, content=PNG))
            await adapter.inpaint(req)

        assert "prompt" not in mock_client.post.call_args.kwargs["files"]

    @pytest.mark.asyncio
    async def test_inpaint_requires_mask(self):
        adapter = HuggingFaceAdapter(credential=_cred(Backend.HUGGINGFACE))
        req = GenerationRequest(
            backend=Backend.HUGGINGFACE,
            model="Sanster/lama-cleaner",
            mode=GenerationMode.INPAINTING,
            source_image=PNG,
        )
        with pytest.raises(BackendError) as exc_info:
            await adapter.inpaint(req)
        assert exc_info.value.error_code == ErrorCode.INVALID_REQUEST

    @pytest.mark.asyncio
    async def test_remove_background_runs_image_to_image(self):
        adapter = HuggingFaceAdapter(credential=_cred(Backend.HUGGINGFACE))
        req = GenerationRequest(
            backend=Backend.HUGGINGFACE,
            model="CompVis/stable-diffusion-v1-4",
            mode=GenerationMode.BACKGROUND_REMOVAL,
            source_image=PNG,
        )
        with patch("imagegen.backends.huggingface.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, post=_make_httpx_response(200, content=PNG))
            resp = await adapter.remove_background(req)

        assert resp.success
        files = mock_client.post.call_args.kwargs["files"]
        assert files["prompt"][1].startswith("Remove the background")
        assert files["strength"][1] == "0.8"

    @pytest.mark.asyncio
    async def test_model_loading_is_retryable(self):
        adapter = HuggingFaceAdapter(credential=_cred(Backend.HUGGINGFACE))
        req = GenerationRequest(
            backend=Backend.HUGGINGFACE,
            model="CompVis/stable-diffusion-v1-4",
            mode=GenerationMode.IMAGE_TO_IMAGE,
            source_image=PNG,
        )
        with patch("imagegen.backends.huggingface.httpx.AsyncClient") as mock_client_cls:
            _mock_client(
                mock_client_cls,
                post=_make_httpx_response(503, json_data={"error": "Model is currently loading", "estimated_time": 20}),
            )
            with pytest.raises(BackendError) as exc_info:
                await adapter.edit_image(req)

        error = classify_error(exc_info.value)
        assert error.code == ErrorCode.SERVICE_UNAVAILABLE
        assert error.retryable is True


# ==========================================================================
# Test: Clipdrop
# ==========================================================================


class TestClipdropAdapter:
    @pytest.mark.asyncio
    async def test_cleanup_with_mask(self):
        adapter = ClipdropAdapter(credential=_cred(Backend.CLIPDROP))
        req = GenerationRequest(
            backend=Backend.CLIPDROP, model="cleanup", mode=GenerationMode.INPAINTING, source_image=PNG, mask_image=PNG
        )
        with patch("imagegen.backends.clipdrop.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, post=_make_httpx_response(200, content=PNG))
            resp = await adapter.inpaint(req)

        assert resp.images[0].data == PNG
        call = mock_client.post.call_args
        assert call.args[0].endswith("/cleanup/v1")
        assert set(call.kwargs["files"]) == {"image_file", "mask_file"}
        assert call.kwargs["headers"] == {"x-api-key": "test-key"}

    @pytest.mark.asyncio
    async def test_inpainting_model_sends_prompt(self):
        adapter = ClipdropAdapter(credential=_cred(Backend.CLIPDROP), prompt_enhancement="")
        req = GenerationRequest(
            backend=Backend.CLIPDROP,
            model="inpainting",
            prompt="a red door",
            mode=GenerationMode.INPAINTING,
            source_image=PNG,
            mask_image=PNG,
        )
        with patch("imagegen.backends.clipdrop.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, post=_make_httpx_response(200, content=PNG))
            await adapter.inpaint(req)

        call = mock_client.post.call_args
        assert call.args[0].endswith("/text-inpainting/v1")
        assert call.kwargs["files"]["text_prompt"] == (None, "a red door")

    @pytest.mark.asyncio
    async def test_remove_background(self):
        adapter = ClipdropAdapter(credential=_cred(Backend.CLIPDROP))
        req = GenerationRequest(
            backend=Backend.CLIPDROP, model="cleanup", mode=GenerationMode.BACKGROUND_REMOVAL, source_image=PNG
        )
        with patch("imagegen.backends.clipdrop.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, post=_make_httpx_response(200, content=PNG))
            await adapter.remove_background(req)

        assert mock_client.post.call_args.args[0].endswith("/remove-background/v1")

    @pytest.mark.asyncio
    async def test_upscale_targets_double_size(self):
        adapter = ClipdropAdapter(credential=_cred(Backend.CLIPDROP))
        req = GenerationRequest(
            backend=Backend.CLIPDROP, model="upscale", mode=GenerationMode.IMAGE_TO_IMAGE, source_image=PNG
        )
        with patch("imagegen.backends.clipdrop.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, post=_make_httpx_response(200, content=PNG))
            await adapter.edit_image(req)

        call = mock_client.post.call_args
        assert call.args[0].endswith("/image-upscaling/v1")
        assert call.kwargs["files"]["target_width"] == (None, "2048")

    @pytest.mark.asyncio
    async def test_edit_with_cleanup_model_unsupported(self):
        adapter = ClipdropAdapter(credential=_cred(Backend.CLIPDROP))
        req = GenerationRequest(
            backend=Backend.CLIPDROP, model="cleanup", mode=GenerationMode.IMAGE_TO_IMAGE, source_image=PNG
        )
        with pytest.raises(CapabilityUnsupportedError):
            await adapter.edit_image(req)

    @pytest.mark.asyncio
    async def test_validate_api_key(self):
        adapter = ClipdropAdapter()
        with patch("imagegen.backends.base.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, post=_make_httpx_response(400, json_data={"error": "image_file missing"}))
            assert await adapter.validate_api_key("good") is True
        with patch("imagegen.backends.base.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, post=_make_httpx_response(403, json_data={"error": "Forbidden"}))
            assert await adapter.validate_api_key("bad") is False


# ==========================================================================
# Test: DeepAI
# ==========================================================================


class TestDeepAIAdapter:
    @pytest.mark.asyncio
    async def test_super_resolution(self):
        adapter = DeepAIAdapter(credential=_cred(Backend.DEEPAI))
        req = GenerationRequest(
            backend=Backend.DEEPAI, model="super-resolution", mode=GenerationMode.IMAGE_TO_IMAGE, source_image=PNG
        )
        with patch("imagegen.backends.deepai.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(
                mock_client_cls,
                post=_make_httpx_response(200, json_data={"id": "j1", "output_url": "https://api.deepai.org/out.jpg"}),
            )
            resp = await adapter.edit_image(req)

        assert resp.images[0].url == "https://api.deepai.org/out.jpg"
        assert resp.metadata.cost_usd == 0.0
        call = mock_client.post.call_args
        assert call.args[0].endswith("/api/torch-srgan")
        assert call.kwargs["headers"] == {"api-key": "test-key"}
        assert set(call.kwargs["files"]) == {"image"}

    @pytest.mark.asyncio
    async def test_remove_background(self):
        adapter = DeepAIAdapter(credential=_cred(Backend.DEEPAI))
        req = GenerationRequest(
            backend=Backend.DEEPAI, model="remove-bg", mode=GenerationMode.BACKGROUND_REMOVAL, source_image=PNG
        )
        with patch("imagegen.backends.deepai.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(
                mock_client_cls, post=_make_httpx_response(200, json_data={"output_url": "https://x/out.png"})
            )
            await adapter.generate(req)

        assert mock_client.post.call_args.args[0].endswith("/api/remove-bg")

    @pytest.mark.asyncio
    async def test_missing_output_url(self):
        adapter = DeepAIAdapter(credential=_cred(Backend.DEEPAI))
        req = GenerationRequest(
            backend=Backend.DEEPAI, model="colorize", mode=GenerationMode.IMAGE_TO_IMAGE, source_image=PNG
        )
        with patch("imagegen.backends.deepai.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, post=_make_httpx_response(200, json_data={"id": "j1"}))
            with pytest.raises(BackendError) as exc_info:
                await adapter.edit_image(req)
        assert exc_info.value.error_code == ErrorCode.GENERATION_FAILED

    @pytest.mark.asyncio
    async def test_unknown_model(self):
        adapter = DeepAIAdapter(credential=_cred(Backend.DEEPAI))
        req = GenerationRequest(
            backend=Backend.DEEPAI, model="toonify", mode=GenerationMode.IMAGE_TO_IMAGE, source_image=PNG
        )
        with pytest.raises(CapabilityUnsupportedError):
            await adapter.edit_image(req)


# ==========================================================================
# Test: ByteDance AIGC
# ==========================================================================


class TestByteDanceAdapter:
    @pytest.mark.asyncio
    async def test_segment_returns_base64(self):
        adapter = ByteDanceAdapter(credential=_cred(Backend.BYTEDANCE), api_base="https://aigc.example.com/")
        req = GenerationRequest(
            backend=Backend.BYTEDANCE, model="segment", mode=GenerationMode.BACKGROUND_REMOVAL, source_image=PNG
        )
        with patch("imagegen.backends.bytedance.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(mock_client_cls, post=_make_httpx_response(200, json_data={"image": PNG_B64}))
            resp = await adapter.remove_background(req)

        assert resp.images[0].data == PNG
        call = mock_client.post.call_args
        assert call.args[0] == "https://aigc.example.com/api/v1/segment"
        assert call.kwargs["json"] == {"image": PNG_B64}
        assert call.kwargs["headers"]["X-Api-Key"] == "test-key"

    @pytest.mark.asyncio
    async def test_style_transfer_sends_style(self):
        adapter = ByteDanceAdapter(
            credential=_cred(Backend.BYTEDANCE), api_base="https://aigc.example.com", prompt_enhancement=""
        )
        req = GenerationRequest(
            backend=Backend.BYTEDANCE,
            model="style-transfer",
            prompt="watercolor",
            mode=GenerationMode.IMAGE_TO_IMAGE,
            source_image=PNG,
        )
        with patch("imagegen.backends.bytedance.httpx.AsyncClient") as mock_client_cls:
            mock_client = _mock_client(
                mock_client_cls, post=_make_httpx_response(200, json_data={"output_url": "https://x/styled.png"})
            )
            resp = await adapter.edit_image(req)

        assert resp.images[0].url == "https://x/styled.png"
        assert mock_client.post.call_args.kwargs["json"]["style"] == "watercolor"

    @pytest.mark.asyncio
    async def test_empty_response(self):
        adapter = ByteDanceAdapter(credential=_cred(Backend.BYTEDANCE), api_base="https://aigc.example.com")
        req = GenerationRequest(
            backend=Backend.BYTEDANCE, model="super-resolution", mode=GenerationMode.IMAGE_TO_IMAGE, source_image=PNG
        )
        with patch("imagegen.backends.bytedance.httpx.AsyncClient") as mock_client_cls:
            _mock_client(mock_client_cls, post=_make_httpx_response(200, json_data={}))
            with pytest.raises(BackendError) as exc_info:
                await adapter.edit_image(req)
        assert exc_info.value.error_code == ErrorCode.GENERATION_FAILED

    def test_api_base_from_settings(self):
        assert ByteDanceAdapter().api_base == "https://sgp-aigc-boe.bytetos.com"


# ==========================================================================
# Test: Registry
# ==========================================================================


class TestAdapterRegistry:
    def test_every_backend_registered(self):
        assert set(ADAPTER_REGISTRY) == set(Backend)

    def test_get_adapter(self):
        adapter = get_adapter(Backend.REPLICATE, _cred(Backend.REPLICATE))
        assert isinstance(adapter, ReplicateAdapter)
        assert adapter.is_configured()
        assert adapter.rate_limit.requests_per_window == 60

    def test_get_adapter_kwargs(self):
        adapter = get_adapter(Backend.OPENAI, timeout=5.0)
        assert adapter.timeout == 5.0

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            get_adapter("midjourney")

    def test_catalogue_consistency(self):
        for backend, cls in ADAPTER_REGISTRY.items():
            info = cls.info
            assert info.backend == backend
            assert info.models
            for model in info.models:
                assert set(model.capabilities) <= set(info.supported_modes), model.id
