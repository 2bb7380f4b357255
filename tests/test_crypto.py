"""Tests for credential encryption."""

from __future__ import annotations

import stat

import pytest
from cryptography.fernet import Fernet
from pydantic import SecretStr

from switchboard.config import SecretsConfig
from switchboard.crypto import CredentialDecodeError, decrypt_value, encrypt_value, reset_crypto


def test_round_trip_hides_plaintext():
    token = encrypt_value("sk-ant-123")

    assert "sk-ant-123" not in token
    assert decrypt_value(token) == "sk-ant-123"


def test_garbage_raises():
    with pytest.raises(CredentialDecodeError):
        decrypt_value("not a token")


def test_wrong_key_raises(monkeypatch, reset_settings):
    token = encrypt_value("secret")

    monkeypatch.setattr(
        reset_settings,
        "secrets",
        SecretsConfig(credential_key=SecretStr(Fernet.generate_key().decode())),
    )
    reset_crypto()

    with pytest.raises(CredentialDecodeError):
        decrypt_value(token)


def test_key_file_generated_when_unset(monkeypatch, reset_settings):
    monkeypatch.setattr(reset_settings, "secrets", SecretsConfig())
    reset_crypto()

    token = encrypt_value("secret")

    key_path = reset_settings.credential_key_path
    assert key_path.exists()
    assert stat.S_IMODE(key_path.stat().st_mode) == 0o600

    # A later process reads the same key back.
    reset_crypto()
    assert decrypt_value(token) == "secret"
