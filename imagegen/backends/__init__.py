"""Backend adapters, one per remote image service, and the adapter registry."""

from __future__ import annotations

from imagegen.backends.base import BaseBackendAdapter
from imagegen.backends.bytedance import ByteDanceAdapter
from imagegen.backends.clipdrop import ClipdropAdapter
from imagegen.backends.deepai import DeepAIAdapter
from imagegen.backends.gemini import GeminiAdapter
from imagegen.backends.huggingface import HuggingFaceAdapter
from imagegen.backends.openai_dalle import OpenAIAdapter
from imagegen.backends.removebg import RemoveBgAdapter
from imagegen.backends.replicate import ReplicateAdapter
from imagegen.backends.stability import StabilityAdapter
from imagegen.backends.together import TogetherAdapter
from imagegen.gateway.credentials import Credential
from imagegen.gateway.types import Backend

ADAPTER_REGISTRY: dict[Backend, type[BaseBackendAdapter]] = {
    Backend.OPENAI: OpenAIAdapter,
    Backend.GEMINI: GeminiAdapter,
    Backend.STABILITY: StabilityAdapter,
    Backend.REPLICATE: ReplicateAdapter,
    Backend.TOGETHER: TogetherAdapter,
    Backend.REMOVEBG: RemoveBgAdapter,
    Backend.HUGGINGFACE: HuggingFaceAdapter,
    Backend.CLIPDROP: ClipdropAdapter,
    Backend.DEEPAI: DeepAIAdapter,
    Backend.BYTEDANCE: ByteDanceAdapter,
}


def get_adapter(backend: Backend, credential: Credential | None = None, **kwargs) -> BaseBackendAdapter:
    """Factory: get the appropriate adapter for a backend."""
    cls = ADAPTER_REGISTRY.get(backend)
    if cls is None:
        raise ValueError(f"No adapter registered for backend: {backend}")
    return cls(credential=credential, **kwargs)


__all__ = [
    "ADAPTER_REGISTRY",
    "BaseBackendAdapter",
    "ByteDanceAdapter",
    "ClipdropAdapter",
    "DeepAIAdapter",
    "GeminiAdapter",
    "HuggingFaceAdapter",
    "OpenAIAdapter",
    "RemoveBgAdapter",
    "ReplicateAdapter",
    "StabilityAdapter",
    "TogetherAdapter",
    "get_adapter",
]
