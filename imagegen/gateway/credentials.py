"""Credential Holder — per-backend API keys.

Keys live in memory keyed by Backend. When CREDENTIALS_FILE and FERNET_KEY
are both configured the store can persist itself to a JSON file with every
key Fernet-encrypted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path

from imagegen.core.config import settings
from imagegen.core.encryption import decrypt_value, encrypt_value
from imagegen.gateway.types import Backend

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credential:
    """API key for one backend.

    trusted=True means the key was accepted without a validation round-trip.
    """

    backend: Backend
    api_key: str
    trusted: bool = False
    organization_id: str = ""  # OpenAI
    project_id: str = ""  # Google

    @property
    def usable(self) -> bool:
        return bool(self.api_key.strip())

    def masked(self) -> str:
        key = self.api_key
        if len(key) <= 8:
            return "•" * len(key)
        return f"{key[:4]}{'•' * 8}{key[-4:]}"


# Settings field → backend
_SETTINGS_KEYS: dict[Backend, str] = {
    Backend.OPENAI: "openai_api_key",
    Backend.GEMINI: "gemini_api_key",
    Backend.STABILITY: "stability_api_key",
    Backend.REPLICATE: "replicate_api_token",
    Backend.TOGETHER: "together_api_key",
    Backend.REMOVEBG: "removebg_api_key",
    Backend.HUGGINGFACE: "huggingface_api_token",
    Backend.CLIPDROP: "clipdrop_api_key",
    Backend.DEEPAI: "deepai_api_key",
    Backend.BYTEDANCE: "bytedance_api_key",
}


class CredentialStore:
    """In-memory credential map with optional encrypted file persistence."""

    def __init__(self, path: str | Path | None = None):
        self._credentials: dict[Backend, Credential] = {}
        self.path = Path(path) if path else None

    @classmethod
    def from_settings(cls) -> CredentialStore:
        """Seed from environment keys, then overlay the encrypted file if configured."""
        store = cls(path=settings.credentials_file or None)
        for backend, attr in _SETTINGS_KEYS.items():
            key = getattr(settings, attr, "")
            if key:
                store.set(Credential(backend=backend, api_key=key, trusted=True))
        if store.path is not None and store.path.exists():
            store.load()
        return store

    def get(self, backend: Backend) -> Credential | None:
        return self._credentials.get(backend)

    def set(self, credential: Credential) -> None:
        self._credentials[credential.backend] = credential
        logger.info("Credential set for %s (%s)", credential.backend.value, credential.masked())

    def remove(self, backend: Backend) -> bool:
        removed = self._credentials.pop(backend, None) is not None
        if removed:
            logger.info("Credential removed for %s", backend.value)
        return removed

    def configured_backends(self) -> list[Backend]:
        return [b for b, c in self._credentials.items() if c.usable]

    def load(self) -> int:
        """Read the encrypted file. Returns number of credentials loaded."""
        if self.path is None:
            raise ValueError("CredentialStore has no file path")
        raw = json.loads(self.path.read_text(encoding="utf-8"))
        loaded = 0
        for item in raw:
            try:
                backend = Backend(item["backend"])
            except (KeyError, ValueError):
                logger.warning("Skipping stored credential for unknown backend: %s", item.get("backend"))
                continue
            api_key = decrypt_value(item.get("api_key", ""))
            if not api_key:
                continue
            self._credentials[backend] = Credential(
                backend=backend,
                api_key=api_key,
                trusted=bool(item.get("trusted", False)),
                organization_id=item.get("organization_id", ""),
                project_id=item.get("project_id", ""),
            )
            loaded += 1
        logger.info("Loaded %d stored credentials from %s", loaded, self.path)
        return loaded

    def save(self) -> None:
        """Write every credential to the file, keys encrypted."""
        if self.path is None:
            raise ValueError("CredentialStore has no file path")
        payload = [
            {
                "backend": c.backend.value,
                "api_key": encrypt_value(c.api_key),
                "trusted": c.trusted,
                "organization_id": c.organization_id,
                "project_id": c.project_id,
            }
            for c in self._credentials.values()
        ]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
