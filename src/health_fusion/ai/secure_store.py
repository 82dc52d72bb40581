"""Encrypted credential store for AI providers.

Provider API keys, endpoints and model selections are kept apart from
``Settings`` in a single Fernet-encrypted JSON document on disk.
"""

import json
import os
import threading
from pathlib import Path
from typing import Any

import structlog
from cryptography.fernet import Fernet, InvalidToken

from ..config import SecureStoreSettings

logger = structlog.get_logger(__name__)

OPENAI = "openai"
ANTHROPIC = "anthropic"

DEFAULT_MODELS: dict[str, str] = {
    OPENAI: "gpt-4",
    ANTHROPIC: "claude-3-sonnet",
}


class SecureStoreError(Exception):
    """Base class for credential store failures."""


class KeyNotFoundError(SecureStoreError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"No API key stored for provider '{provider}'")
        self.provider = provider


class EndpointNotFoundError(SecureStoreError):
    def __init__(self, provider: str) -> None:
        super().__init__(f"No endpoint stored for provider '{provider}'")
        self.provider = provider


class DecryptionError(SecureStoreError):
    """The store file could not be decrypted with the configured key."""


class SecureStore:
    """Per-provider secrets encrypted at rest.

    Usage::

        store = SecureStore(path, key=SecureStore.generate_key())
        store.set_api_key("openai", "sk-...")
        store.get_api_key("openai")
    """

    def __init__(self, path: Path | str, key: str) -> None:
        if not key or not key.strip():
            raise SecureStoreError("Encryption key must not be empty")
        try:
            self._fernet = Fernet(key.encode("utf-8"))
        except ValueError as e:
            raise SecureStoreError(f"Invalid encryption key: {e}") from e
        self._path = Path(path)
        self._lock = threading.Lock()
        self._data: dict[str, dict[str, str]] | None = None

    @classmethod
    def from_settings(cls, settings: SecureStoreSettings) -> "SecureStore | None":
        """Build the store, or None when no encryption key is configured."""
        if not settings.encryption_key:
            logger.info("secure_store_disabled", reason="no_encryption_key")
            return None
        return cls(settings.path, settings.encryption_key)

    @staticmethod
    def generate_key() -> str:
        return Fernet.generate_key().decode("utf-8")

    def _load(self) -> dict[str, dict[str, str]]:
        if self._data is not None:
            return self._data
        if not self._path.exists():
            self._data = {}
            return self._data
        token = self._path.read_bytes().strip()
        if not token:
            self._data = {}
            return self._data
        try:
            plaintext = self._fernet.decrypt(token)
        except InvalidToken as e:
            raise DecryptionError(
                f"Cannot decrypt {self._path}: invalid token or wrong key"
            ) from e
        try:
            loaded: Any = json.loads(plaintext)
        except json.JSONDecodeError as e:
            raise DecryptionError(f"Corrupt credential store {self._path}: {e}") from e
        if not isinstance(loaded, dict):
            raise DecryptionError(f"Corrupt credential store {self._path}: not an object")
        self._data = loaded
        return self._data

    def _save(self, data: dict[str, dict[str, str]]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        token = self._fernet.encrypt(json.dumps(data, separators=(",", ":")).encode("utf-8"))
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp_path.write_bytes(token)
        os.chmod(tmp_path, 0o600)
        tmp_path.replace(self._path)

    def _set(self, provider: str, field: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data.setdefault(provider, {})[field] = value
            self._save(data)
        logger.info("secure_store_updated", provider=provider, field=field)

    def _get(self, provider: str, field: str) -> str | None:
        with self._lock:
            return self._load().get(provider, {}).get(field)

    def set_api_key(self, provider: str, api_key: str) -> None:
        self._set(provider, "api_key", api_key)

    def get_api_key(self, provider: str) -> str:
        """Raises KeyNotFoundError when no key is stored."""
        value = self._get(provider, "api_key")
        if not value:
            raise KeyNotFoundError(provider)
        return value

    def set_endpoint(self, provider: str, endpoint: str) -> None:
        self._set(provider, "endpoint", endpoint)

    def get_endpoint(self, provider: str) -> str:
        """Raises EndpointNotFoundError when no endpoint is stored."""
        value = self._get(provider, "endpoint")
        if not value:
            raise EndpointNotFoundError(provider)
        return value

    def set_model(self, provider: str, model: str) -> None:
        self._set(provider, "model", model)

    def get_model(self, provider: str) -> str:
        """Stored model, falling back to the provider default."""
        value = self._get(provider, "model")
        if value:
            return value
        if provider not in DEFAULT_MODELS:
            raise SecureStoreError(f"No model stored or known for provider '{provider}'")
        return DEFAULT_MODELS[provider]

    def has_api_key(self, provider: str) -> bool:
        return bool(self._get(provider, "api_key"))
