"""Tests for the encrypted credential store."""

import os

import pytest

from health_fusion.ai import (
    DecryptionError,
    EndpointNotFoundError,
    KeyNotFoundError,
    SecureStore,
    SecureStoreError,
)
from health_fusion.config import SecureStoreSettings


@pytest.fixture
def key():
    return SecureStore.generate_key()


def test_round_trip_through_disk(tmp_path, key):
    path = tmp_path / "secure" / "credentials.enc"
    store = SecureStore(path, key)
    store.set_api_key("openai", "sk-test")
    store.set_endpoint("openai", "https://llm.example/v1")
    store.set_model("anthropic", "claude-3-haiku")

    reopened = SecureStore(path, key)

    assert reopened.get_api_key("openai") == "sk-test"
    assert reopened.get_endpoint("openai") == "https://llm.example/v1"
    assert reopened.get_model("anthropic") == "claude-3-haiku"
    assert reopened.has_api_key("openai")
    assert not reopened.has_api_key("anthropic")


def test_file_is_encrypted_and_private(tmp_path, key):
    path = tmp_path / "credentials.enc"
    SecureStore(path, key).set_api_key("openai", "sk-very-secret")

    assert b"sk-very-secret" not in path.read_bytes()
    assert os.stat(path).st_mode & 0o777 == 0o600


def test_missing_entries(tmp_path, key):
    store = SecureStore(tmp_path / "credentials.enc", key)

    with pytest.raises(KeyNotFoundError, match="openai"):
        store.get_api_key("openai")
    with pytest.raises(EndpointNotFoundError):
        store.get_endpoint("anthropic")

    assert store.get_model("openai") == "gpt-4"
    assert store.get_model("anthropic") == "claude-3-sonnet"
    with pytest.raises(SecureStoreError, match="mistral"):
        store.get_model("mistral")


def test_wrong_key_cannot_decrypt(tmp_path, key):
    path = tmp_path / "credentials.enc"
    SecureStore(path, key).set_api_key("openai", "sk-test")

    other = SecureStore(path, SecureStore.generate_key())

    with pytest.raises(DecryptionError, match="wrong key"):
        other.get_api_key("openai")


def test_invalid_keys_rejected(tmp_path):
    with pytest.raises(SecureStoreError, match="must not be empty"):
        SecureStore(tmp_path / "c.enc", "  ")
    with pytest.raises(SecureStoreError, match="Invalid encryption key"):
        SecureStore(tmp_path / "c.enc", "not-a-fernet-key")


def test_from_settings(tmp_path, key):
    assert SecureStore.from_settings(SecureStoreSettings(encryption_key=None)) is None

    store = SecureStore.from_settings(
        SecureStoreSettings(path=str(tmp_path / "c.enc"), encryption_key=key)
    )
    assert isinstance(store, SecureStore)
