"""
run_generation.py — End-to-end smoke run of the image generation gateway

Submits a small batch of prompts to every configured backend in one go:
  1. Load settings and API keys (env / .env / encrypted credentials file)
  2. Start the dispatch loop
  3. Submit one request per prompt per backend, concurrently
  4. Wait for every response (rate limits spread the dispatches over ticks)
  5. Save inline images to ./output and print a summary

Usage:
    OPENAI_API_KEY=sk-... python run_generation.py "a lighthouse at dusk"
"""

import asyncio
import logging
import sys
import time
from pathlib import Path

from imagegen.core.config import settings, validate_settings
from imagegen.core.logging import setup_logging
from imagegen.gateway.gateway import ImageGateway
from imagegen.gateway.normalizer import summarize_responses
from imagegen.gateway.types import GenerationMode, GenerationRequest

logger = logging.getLogger("run_generation")

OUTPUT_DIR = Path("output")

PROMPTS = [
    "a lighthouse on a cliff at dusk",
    "a saint holding a book",
]

STYLE = "byzantine"


async def main() -> None:
    setup_logging()
    validate_settings()

    prompts = sys.argv[1:] or PROMPTS
    gateway = ImageGateway()

    models = {}
    for b in gateway.configured_backends():
        model = next(
            (m.id for m in gateway.adapter_for(b).models if GenerationMode.TEXT_TO_IMAGE in m.capabilities),
            None,
        )
        if model is not None:
            models[b] = model
    backends = list(models)
    if not backends:
        print("No backend configured. Set at least one *_API_KEY (see imagegen/core/config.py).")
        sys.exit(1)

    print("=" * 60)
    print(f"  Backends: {', '.join(b.value for b in backends)}")
    print(f"  Prompts:  {len(prompts)}   Tick: {settings.tick_interval_seconds}s")
    print("=" * 60)

    requests = []
    for backend in backends:
        for prompt in prompts:
            requests.append(GenerationRequest(backend=backend, model=models[backend], prompt=prompt, style=STYLE))

    logger.info("Submitting %d requests", len(requests))
    started = time.monotonic()
    async with gateway:
        responses = await asyncio.gather(*(gateway.generate(r) for r in requests))
    elapsed = time.monotonic() - started

    OUTPUT_DIR.mkdir(exist_ok=True)
    for req, resp in zip(requests, responses):
        if not resp.success:
            print(f"  ❌ [{req.backend.value:14s}] {resp.error.code.value}: {resp.error.message[:80]}")
            continue
        for i, image in enumerate(resp.images):
            if image.data is not None:
                path = OUTPUT_DIR / f"{req.request_id}_{i}.png"
                path.write_bytes(image.data)
                where = str(path)
            else:
                where = image.url
            print(f"  ✅ [{req.backend.value:14s}] {resp.metadata.duration_ms}ms → {where}")

    summary = summarize_responses(list(responses))
    print("\n" + "=" * 60)
    print(f"  Done in {elapsed:.1f}s: {summary['successful']}/{summary['total']} succeeded")
    print(f"  Images: {summary['images']}   Cost: ${summary['total_cost_usd']:.4f}")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
