"""Image Generation Gateway Layer.

Provides async infrastructure for dispatching image generation requests
to remote backends with:
  - Per-backend FIFO Dispatch Queues
  - Sliding-Window Rate Limiter (requests per window, per backend)
  - Async Job Poller (create-then-poll backends)
  - Error Classifier (structured codes first, message heuristics last)
  - Response Normalizer (unified DTO)
"""
