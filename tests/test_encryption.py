"""Tests für TokenCipher / TokenProvider (AES-256-GCM)"""

import importlib

import pytest

from src.services.errors import TokenDecryptionError
from tests.conftest import TEST_HEX_KEY

encryption = importlib.import_module(".08_encryption", "src")


class TestTokenProvider:
    def test_roundtrip(self):
        provider = encryption.TokenProvider(TEST_HEX_KEY)
        blob = provider.encrypt("ya29.access")

        assert blob != "ya29.access"
        assert provider.decrypt(blob) == "ya29.access"

    def test_wrong_key(self):
        blob = encryption.TokenProvider(TEST_HEX_KEY).encrypt("secret")
        other = encryption.TokenProvider("f" * 64)

        with pytest.raises(TokenDecryptionError):
            other.decrypt(blob)

    def test_corrupted_blob(self):
        with pytest.raises(TokenDecryptionError):
            encryption.TokenProvider(TEST_HEX_KEY).decrypt("not base64 at all!!")

    def test_empty_ciphertext(self):
        with pytest.raises(TokenDecryptionError):
            encryption.TokenProvider(TEST_HEX_KEY).decrypt("")

    def test_optional_refresh_token(self):
        provider = encryption.TokenProvider(TEST_HEX_KEY)
        assert provider.decrypt_optional(None) is None
        assert provider.decrypt_optional(provider.encrypt("r")) == "r"


class TestKeyValidation:
    @pytest.mark.parametrize("key", ["", "abc", "zz" * 32])
    def test_invalid_keys(self, key):
        with pytest.raises(TokenDecryptionError):
            encryption.TokenCipher.decrypt_token("AAAA", key)
