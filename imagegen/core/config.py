from pydantic_settings import BaseSettings, SettingsConfigDict

from imagegen.gateway.types import Backend


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Dispatch loop
    tick_interval_seconds: float = 1.0
    max_queue_residency_ms: int | None = None  # None = entries wait indefinitely for a slot

    # Async job polling (create-then-poll backends)
    job_poll_interval_seconds: float = 1.0
    job_poll_max_attempts: int = 60

    # Outbound HTTP
    http_timeout_seconds: float = 120.0

    # Backend API keys (seeded into the credential store on startup)
    openai_api_key: str = ""
    gemini_api_key: str = ""
    stability_api_key: str = ""
    replicate_api_token: str = ""
    together_api_key: str = ""
    removebg_api_key: str = ""
    huggingface_api_token: str = ""
    clipdrop_api_key: str = ""
    deepai_api_key: str = ""
    bytedance_api_key: str = ""

    # ByteDance AIGC is region-specific; point this at your account's gateway
    bytedance_api_base: str = "https://sgp-aigc-boe.bytetos.com"

    # Per-backend rate limit overrides, JSON, e.g.
    # {"openai-dalle": {"requests_per_window": 5, "window_ms": 60000, "images_per_request": 4}}
    rate_limit_overrides: dict[str, dict[str, int]] = {}

    # Used when a request leaves its backend empty
    default_backend: str = "google-gemini"

    # Appended to every prompt before the style preset
    prompt_enhancement: str = "high quality"

    # Encrypted credential persistence
    credentials_file: str = ""  # leave empty to keep credentials in memory only
    fernet_key: str = ""

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # one JSON object per line instead of text


settings = Settings()


def validate_settings() -> None:
    """Validate dispatcher settings. Called by entry points before building a gateway."""
    errors: list[str] = []

    if settings.tick_interval_seconds <= 0:
        errors.append("TICK_INTERVAL_SECONDS must be positive")

    if settings.job_poll_interval_seconds <= 0:
        errors.append("JOB_POLL_INTERVAL_SECONDS must be positive")

    if settings.job_poll_max_attempts < 1:
        errors.append("JOB_POLL_MAX_ATTEMPTS must be at least 1")

    if settings.max_queue_residency_ms is not None and settings.max_queue_residency_ms <= 0:
        errors.append("MAX_QUEUE_RESIDENCY_MS must be positive when set")

    if settings.credentials_file and not settings.fernet_key:
        errors.append(
            'FERNET_KEY must be set when CREDENTIALS_FILE is used (generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())")'
        )

    if settings.default_backend not in {b.value for b in Backend}:
        errors.append(f"DEFAULT_BACKEND must be one of: {', '.join(b.value for b in Backend)}")

    for backend, override in settings.rate_limit_overrides.items():
        if backend not in {b.value for b in Backend}:
            errors.append(f"RATE_LIMIT_OVERRIDES has unknown backend: {backend}")
        unknown = set(override) - {"requests_per_window", "window_ms", "images_per_request"}
        if unknown:
            errors.append(f"RATE_LIMIT_OVERRIDES[{backend}] has unknown keys: {', '.join(sorted(unknown))}")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
