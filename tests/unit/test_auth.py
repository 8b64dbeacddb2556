"""Tests for API key generation and bcrypt hashing."""

import re

from refactor_gateway.security.auth import (
    MASKED_API_KEY,
    generate_api_key,
    hash_api_key,
    verify_api_key,
)


class TestKeyGeneration:
    """API key format: sk-<64 hex chars>."""

    def test_format(self):
        key = generate_api_key()
        assert re.fullmatch(r"sk-[0-9a-f]{64}", key)

    def test_keys_are_unique(self):
        keys = {generate_api_key() for _ in range(50)}
        assert len(keys) == 50

    def test_masked_key_is_constant(self):
        assert MASKED_API_KEY.startswith("sk-")
        assert "*" in MASKED_API_KEY


class TestHashing:
    def test_hash_is_not_plaintext(self):
        key = generate_api_key()
        hashed = hash_api_key(key)
        assert hashed != key
        assert hashed.startswith("$2")

    def test_same_key_hashes_differently(self):
        key = generate_api_key()
        assert hash_api_key(key) != hash_api_key(key)

    def test_verify_roundtrip(self):
        key = generate_api_key()
        assert verify_api_key(key, hash_api_key(key)) is True

    def test_verify_wrong_key(self):
        hashed = hash_api_key(generate_api_key())
        assert verify_api_key(generate_api_key(), hashed) is False

    def test_verify_empty_hash(self):
        assert verify_api_key("sk-abc", None) is False
        assert verify_api_key("sk-abc", "") is False

    def test_verify_empty_key(self):
        assert verify_api_key("", hash_api_key("sk-abc")) is False

    def test_verify_malformed_hash(self):
        assert verify_api_key("sk-abc", "not-a-bcrypt-hash") is False
