"""
Tests for at-rest chat encryption
"""

import logging

import pytest

from agentchat.services.encryption import EncryptionError, EncryptionService
from tests.conftest import TEST_ENCRYPTION_KEY


@pytest.fixture
def service():
    return EncryptionService(TEST_ENCRYPTION_KEY)


def test_round_trip_returns_original_text(service):
    text = "Remember that I like hiking in the Chouf 🏔️"
    encrypted = service.encrypt(text)
    assert encrypted != text
    assert service.decrypt(encrypted) == text


def test_ciphertext_is_two_hex_parts(service):
    iv, body = service.encrypt("hello").split(":")
    assert len(iv) == 32
    assert len(body) % 32 == 0
    assert service.is_encrypted(f"{iv}:{body}")


def test_same_text_encrypts_differently(service):
    assert service.encrypt("hello") != service.encrypt("hello")


def test_is_encrypted_shape_check():
    assert EncryptionService.is_encrypted("abcdef01:23456789")
    assert not EncryptionService.is_encrypted("plain text")
    assert not EncryptionService.is_encrypted("abc:xyz")
    assert not EncryptionService.is_encrypted("ab:cd:ef")
    assert not EncryptionService.is_encrypted("")
    assert not EncryptionService.is_encrypted(None)


def test_encrypt_rejects_empty_text(service):
    with pytest.raises(EncryptionError):
        service.encrypt("")


def test_decrypt_rejects_bad_format(service):
    with pytest.raises(EncryptionError):
        service.decrypt("no-separator")


def test_decrypt_with_wrong_key_fails_or_differs(service):
    encrypted = service.encrypt("top secret message")
    other = EncryptionService("f" * 64)
    try:
        assert other.decrypt(encrypted) != "top secret message"
    except EncryptionError:
        pass


def test_missing_key_warns_and_uses_development_key(caplog):
    with caplog.at_level(logging.WARNING, logger="agentchat.services.encryption"):
        first = EncryptionService(None)
    assert "ENCRYPTION_KEY" in caplog.text
    second = EncryptionService("not-hex")
    assert second.decrypt(first.encrypt("hi")) == "hi"


def test_generate_key_is_usable():
    key = EncryptionService.generate_key()
    assert len(key) == 64
    service = EncryptionService(key)
    assert service.decrypt(service.encrypt("ok")) == "ok"
