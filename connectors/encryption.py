"""
Token encryption — encrypt / decrypt OAuth secrets at rest.

Uses AES-256-GCM (``AESGCM`` from the ``cryptography`` library).  The key
is loaded once from ``config.oauth_token_encryption_key``
(env var: ``OAUTH_TOKEN_ENCRYPTION_KEY``) into an immutable ``TokenKey``
which is handed to ``TokenCipher`` at startup.

Storage format (a single string column)::

    {"v":1,"alg":"aes-256-gcm","iv":"<b64>","ct":"<b64>","tag":"<b64>"}

Anything that does not decode into that shape is a legacy plaintext value
and is returned unchanged by ``decrypt``.  Generate a key with::

    python -c "from connectors.encryption import generate_key; print(generate_key())"
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, ValidationError, constr

from connectors.errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)

KEY_ENV_VAR = "OAUTH_TOKEN_ENCRYPTION_KEY"
PAYLOAD_VERSION = 1
PAYLOAD_ALGORITHM = "aes-256-gcm"

_KEY_BYTES = 32
_IV_BYTES = 12
_TAG_BYTES = 16
_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


# ── Key ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class TokenKey:
    """Process-wide 256-bit key.  Built once, never mutated."""

    material: bytes

    def __post_init__(self) -> None:
        if len(self.material) != _KEY_BYTES:
            raise ConfigurationError(
                f"{KEY_ENV_VAR} must be {_KEY_BYTES} bytes (got {len(self.material)} bytes)"
            )

    def __repr__(self) -> str:
        return "TokenKey(<redacted>)"

    @classmethod
    def from_secret(cls, raw: Optional[str]) -> "TokenKey":
        """
        Decode the configured secret.

        Accepted encodings, tried in this order:
          1. standard base64 of exactly 32 bytes
          2. 64 hex characters
          3. a 32-character raw passphrase
        """
        if not raw:
            raise ConfigurationError(
                f"{KEY_ENV_VAR} is missing. Configure it as a base64-encoded 32-byte key."
            )
        cleaned = re.sub(r"\s", "", raw)
        logger.info("%s length after trimming: %d", KEY_ENV_VAR, len(cleaned))

        decoded_len: Optional[int] = None
        try:
            decoded = base64.b64decode(cleaned, validate=True)
        except (binascii.Error, ValueError):
            decoded = None
        if decoded is not None:
            if len(decoded) == _KEY_BYTES:
                return cls(decoded)
            decoded_len = len(decoded)

        if _HEX_KEY.match(cleaned):
            return cls(bytes.fromhex(cleaned))

        if len(cleaned) == _KEY_BYTES:
            return cls(cleaned.encode("utf-8"))

        detail = f"base64 decoded to {decoded_len} bytes" if decoded_len is not None else "not valid base64"
        raise ConfigurationError(
            f"{KEY_ENV_VAR} is not a usable AES-256 key ({detail}); expected base64 of "
            f"{_KEY_BYTES} bytes, 64 hex characters, or a {_KEY_BYTES}-character passphrase"
        )


def generate_key() -> str:
    """Return a fresh random key, base64-encoded."""
    return base64.b64encode(os.urandom(_KEY_BYTES)).decode()


# ── Stored value discrimination ─────────────────────────────────────────


_NonEmpty = constr(strict=True, min_length=1)


class EncryptedPayload(BaseModel):
    """Strict schema of the on-disk encrypted payload."""

    model_config = ConfigDict(extra="ignore")

    v: StrictInt
    alg: StrictStr
    iv: _NonEmpty
    ct: _NonEmpty
    tag: _NonEmpty

    @property
    def supported(self) -> bool:
        return self.v == PAYLOAD_VERSION and self.alg == PAYLOAD_ALGORITHM


@dataclass(frozen=True)
class Plaintext:
    value: str


@dataclass(frozen=True)
class Encrypted:
    payload: EncryptedPayload


StoredValue = Union[Plaintext, Encrypted]


def parse_stored_value(value: Optional[str]) -> StoredValue:
    """
    Decode ``value`` into ``Plaintext`` or ``Encrypted``.

    Only the shape is checked here; an ``Encrypted`` result may still carry
    an unsupported version / algorithm.
    """
    if not value or not value.startswith("{"):
        return Plaintext(value or "")
    try:
        data = json.loads(value)
    except ValueError:
        return Plaintext(value)
    if not isinstance(data, dict):
        return Plaintext(value)
    try:
        return Encrypted(EncryptedPayload.model_validate(data))
    except ValidationError:
        return Plaintext(value)


def _b64decode(field: str, value: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise DecryptionError(f"Encrypted payload field '{field}' is not valid base64") from exc


# ── Cipher ──────────────────────────────────────────────────────────────


class TokenCipher:
    """AES-256-GCM encryption of opaque secret strings."""

    def __init__(self, key: Optional[TokenKey]) -> None:
        self._key = key

    @classmethod
    def from_settings(cls, settings) -> "TokenCipher":
        """Build the cipher from settings; a missing key leaves it keyless."""
        raw = settings.oauth_token_encryption_key
        if not raw:
            logger.warning("%s not set — encrypting or decrypting secrets will fail", KEY_ENV_VAR)
            return cls(None)
        return cls(TokenKey.from_secret(raw))

    @property
    def has_key(self) -> bool:
        return self._key is not None

    def _aead(self) -> AESGCM:
        if self._key is None:
            raise ConfigurationError(f"{KEY_ENV_VAR} not configured")
        return AESGCM(self._key.material)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt ``plaintext``; the empty string stays empty."""
        if not plaintext:
            return ""
        aead = self._aead()
        iv = os.urandom(_IV_BYTES)
        sealed = aead.encrypt(iv, plaintext.encode("utf-8"), None)
        ct, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
        payload = {
            "v": PAYLOAD_VERSION,
            "alg": PAYLOAD_ALGORITHM,
            "iv": base64.b64encode(iv).decode(),
            "ct": base64.b64encode(ct).decode(),
            "tag": base64.b64encode(tag).decode(),
        }
        return json.dumps(payload, separators=(",", ":"))

    def decrypt(self, value: Optional[str]) -> str:
        """
        Decrypt a stored value.

        Legacy plaintext is returned unchanged.  Unknown algorithms and
        authentication failures raise ``DecryptionError``.
        """
        stored = parse_stored_value(value)
        if isinstance(stored, Plaintext):
            return stored.value

        payload = stored.payload
        if not payload.supported:
            raise DecryptionError(
                f"Unsupported encryption algorithm: {payload.alg} (v{payload.v})"
            )

        iv = _b64decode("iv", payload.iv)
        ct = _b64decode("ct", payload.ct)
        tag = _b64decode("tag", payload.tag)
        if len(iv) != _IV_BYTES or len(tag) != _TAG_BYTES:
            raise DecryptionError("Encrypted payload has invalid iv or tag length")

        aead = self._aead()
        try:
            plain = aead.decrypt(iv, ct + tag, None)
        except InvalidTag as exc:
            raise DecryptionError("Stored secret failed authentication") from exc
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecryptionError("Decrypted secret is not valid UTF-8") from exc

    def is_encrypted(self, value: Optional[str]) -> bool:
        """True only for payloads in the supported v1 / aes-256-gcm format."""
        stored = parse_stored_value(value)
        return isinstance(stored, Encrypted) and stored.payload.supported
