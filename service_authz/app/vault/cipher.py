"""
Authenticated encryption for MFA secrets at rest.

Envelopes have the shape ``hex(nonce):hex(tag):hex(ciphertext)`` with a
16-byte nonce and a 16-byte GCM tag. Malformed envelopes and failed
authentication are reported as distinct `DecryptionError` subclasses.
"""

import os
import re
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from shared.config import DeploymentMode
from shared.logging import get_logger


logger = get_logger("authz.vault")

KEY_HEX_LENGTH = 64
NONCE_SIZE = 16
TAG_SIZE = 16
SEPARATOR = ":"

_HEX_RE = re.compile(r"^(?:[0-9a-fA-F]{2})*$")


class VaultConfigurationError(Exception):
    """Encryption key is missing or malformed."""


class DecryptionError(Exception):
    """Envelope could not be decrypted."""


class EnvelopeFormatError(DecryptionError):
    """Envelope does not have the expected shape."""


class AuthenticationFailedError(DecryptionError):
    """Envelope was well-formed but the tag did not verify."""


def parse_key(key_hex: str) -> bytes:
    """Parse a hex key; whitespace is ignored and the first 64 digits are used."""
    cleaned = "".join((key_hex or "").split())
    if len(cleaned) < KEY_HEX_LENGTH:
        raise VaultConfigurationError(
            f"MFA encryption key must be at least {KEY_HEX_LENGTH} hex characters (32 bytes)"
        )
    cleaned = cleaned[:KEY_HEX_LENGTH]
    if not _HEX_RE.match(cleaned):
        raise VaultConfigurationError("MFA encryption key is not valid hex")
    return bytes.fromhex(cleaned)


def _decode_segment(segment: str, name: str) -> bytes:
    if not _HEX_RE.match(segment):
        raise EnvelopeFormatError(f"Invalid envelope: {name} is not hex")
    return bytes.fromhex(segment)


class SecretVault:
    """AES-256-GCM encryption with a key owned by the instance."""

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise VaultConfigurationError("MFA encryption key must be 32 bytes")
        self._aead = AESGCM(key)

    @classmethod
    def from_config(cls, key_hex: Optional[str], mode: DeploymentMode) -> "SecretVault":
        """Build a vault from configuration.

        Without a key, production refuses to start. Other modes fall back to
        an ephemeral key, which makes every stored secret unreadable after a
        restart.
        """
        if key_hex and key_hex.strip():
            return cls(parse_key(key_hex))

        if mode == DeploymentMode.PRODUCTION:
            raise VaultConfigurationError("MFA encryption key must be set in production")

        logger.warning(
            "MFA encryption key not set, using an ephemeral key. "
            "Stored MFA secrets will be unreadable after a restart.",
            mode=mode.value,
        )
        return cls(AESGCM.generate_key(bit_length=256))

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return SEPARATOR.join((nonce.hex(), tag.hex(), ciphertext.hex()))

    def decrypt(self, envelope: str) -> str:
        if not isinstance(envelope, str):
            raise EnvelopeFormatError("Invalid envelope: not a string")

        parts = envelope.split(SEPARATOR)
        if len(parts) != 3:
            raise EnvelopeFormatError(f"Invalid envelope: expected 3 parts, got {len(parts)}")

        nonce = _decode_segment(parts[0], "nonce")
        tag = _decode_segment(parts[1], "tag")
        ciphertext = _decode_segment(parts[2], "ciphertext")

        if len(nonce) != NONCE_SIZE:
            raise EnvelopeFormatError(f"Invalid nonce length: expected {NONCE_SIZE} bytes, got {len(nonce)}")
        if len(tag) != TAG_SIZE:
            raise EnvelopeFormatError(f"Invalid tag length: expected {TAG_SIZE} bytes, got {len(tag)}")

        try:
            plaintext = self._aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag as e:
            raise AuthenticationFailedError("Envelope failed authentication") from e

        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise EnvelopeFormatError("Decrypted payload is not valid UTF-8") from e
