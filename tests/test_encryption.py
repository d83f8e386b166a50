"""
Tests for the token cipher and key loading.
"""

import base64
import json

import pytest

from connectors.encryption import (
    Encrypted,
    Plaintext,
    TokenCipher,
    TokenKey,
    generate_key,
    parse_stored_value,
)
from connectors.errors import ConfigurationError, DecryptionError


def _flip_first_byte(b64: str) -> str:
    raw = bytearray(base64.b64decode(b64))
    raw[0] ^= 0x01
    return base64.b64encode(bytes(raw)).decode()


class TestRoundTrip:
    @pytest.mark.parametrize(
        "plaintext",
        ["ya29.a0AfH6SMB", 'with "quotes" and {braces}', "ünïcödé ✓", "x" * 4096],
    )
    def test_decrypt_inverts_encrypt(self, cipher, plaintext):
        assert cipher.decrypt(cipher.encrypt(plaintext)) == plaintext

    def test_empty_string_stays_empty(self, cipher):
        assert cipher.encrypt("") == ""
        assert cipher.decrypt("") == ""

    def test_payload_shape(self, cipher):
        payload = json.loads(cipher.encrypt("secret"))
        assert payload["v"] == 1
        assert payload["alg"] == "aes-256-gcm"
        assert len(base64.b64decode(payload["iv"])) == 12
        assert len(base64.b64decode(payload["tag"])) == 16

    def test_fresh_iv_per_call(self, cipher):
        first = json.loads(cipher.encrypt("same"))
        second = json.loads(cipher.encrypt("same"))
        assert first["iv"] != second["iv"]
        assert first["ct"] != second["ct"]


class TestTamperDetection:
    @pytest.mark.parametrize("field", ["ct", "tag", "iv"])
    def test_flipped_byte_fails(self, cipher, field):
        payload = json.loads(cipher.encrypt("refresh-token-value"))
        payload[field] = _flip_first_byte(payload[field])
        with pytest.raises(DecryptionError):
            cipher.decrypt(json.dumps(payload))

    def test_wrong_key_fails(self, cipher):
        other = TokenCipher(TokenKey.from_secret(generate_key()))
        with pytest.raises(DecryptionError):
            other.decrypt(cipher.encrypt("secret"))

    def test_bad_base64_fails(self, cipher):
        payload = json.loads(cipher.encrypt("secret"))
        payload["ct"] = "!!not-base64!!"
        with pytest.raises(DecryptionError):
            cipher.decrypt(json.dumps(payload))

    def test_unknown_algorithm_is_loud(self, cipher):
        payload = json.loads(cipher.encrypt("secret"))
        payload["alg"] = "chacha20-poly1305"
        value = json.dumps(payload)
        assert cipher.is_encrypted(value) is False
        with pytest.raises(DecryptionError, match="Unsupported encryption algorithm"):
            cipher.decrypt(value)

    def test_error_message_has_no_plaintext(self, cipher):
        payload = json.loads(cipher.encrypt("super-secret-token"))
        payload["tag"] = _flip_first_byte(payload["tag"])
        with pytest.raises(DecryptionError) as exc_info:
            cipher.decrypt(json.dumps(payload))
        assert "super-secret-token" not in str(exc_info.value)


class TestLegacyPlaintext:
    @pytest.mark.parametrize(
        "value",
        ["a-plain-token-string", "{not json", '{"v": 1}', '["a", "b"]', '{"v":"1","alg":"aes-256-gcm","iv":"a","ct":"b","tag":"c"}'],
    )
    def test_passes_through(self, cipher, value):
        assert cipher.decrypt(value) == value
        assert cipher.is_encrypted(value) is False

    def test_parse_stored_value_variants(self, cipher):
        assert isinstance(parse_stored_value("plain"), Plaintext)
        assert isinstance(parse_stored_value(cipher.encrypt("x")), Encrypted)

    def test_keyless_cipher_reads_plaintext(self):
        keyless = TokenCipher(None)
        assert keyless.decrypt("legacy") == "legacy"
        assert keyless.encrypt("") == ""
        with pytest.raises(ConfigurationError):
            keyless.encrypt("needs a key")


class TestKeyLoading:
    def test_base64_key(self):
        raw = bytes(range(32))
        assert TokenKey.from_secret(base64.b64encode(raw).decode()).material == raw

    def test_base64_key_with_whitespace(self):
        raw = bytes(range(32))
        encoded = base64.b64encode(raw).decode()
        assert TokenKey.from_secret(f"  {encoded[:20]}\n{encoded[20:]} ").material == raw

    def test_hex_key(self):
        raw = bytes(range(32))
        assert TokenKey.from_secret(raw.hex()).material == raw

    def test_passphrase_key(self):
        phrase = "correct-horse-battery-staple-xyz"
        assert len(phrase) == 32
        assert TokenKey.from_secret(phrase).material == phrase.encode()

    @pytest.mark.parametrize("raw", ["", None, "too-short", "x" * 31])
    def test_unusable_key_fails_fast(self, raw):
        with pytest.raises(ConfigurationError):
            TokenKey.from_secret(raw)

    def test_key_never_in_repr(self):
        key = TokenKey.from_secret(generate_key())
        assert "redacted" in repr(key)
        assert base64.b64encode(key.material).decode() not in repr(key)

    def test_from_settings_without_key(self, settings):
        settings.oauth_token_encryption_key = ""
        assert TokenCipher.from_settings(settings).has_key is False
