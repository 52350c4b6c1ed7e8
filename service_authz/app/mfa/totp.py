"""
TOTP and enrollment QR helpers.

RFC 6238 codes: SHA1, 6 digits, 30 second steps. Secrets are exchanged as
unpadded base32 strings, as authenticator apps expect.
"""

import base64
import binascii
import io
import os
import time
from typing import Optional

import qrcode
import qrcode.image.svg
from cryptography.hazmat.primitives.hashes import SHA1
from cryptography.hazmat.primitives.twofactor import InvalidToken
from cryptography.hazmat.primitives.twofactor.totp import TOTP


CODE_DIGITS = 6
TIME_STEP = 30
SECRET_BYTES = 20


def generate_base32_secret() -> str:
    return base64.b32encode(os.urandom(SECRET_BYTES)).decode("ascii").rstrip("=")


def decode_base32_secret(secret: str) -> bytes:
    """Decode an unpadded, case-insensitive base32 secret."""
    cleaned = "".join(secret.split()).upper()
    if not cleaned:
        raise ValueError("empty secret")
    try:
        return base64.b32decode(cleaned + "=" * (-len(cleaned) % 8))
    except binascii.Error as e:
        raise ValueError("secret is not valid base32") from e


def _totp(secret: str) -> TOTP:
    return TOTP(
        decode_base32_secret(secret),
        CODE_DIGITS,
        SHA1(),
        TIME_STEP,
        enforce_key_length=False,
    )


def generate_code(secret: str, at: Optional[float] = None) -> str:
    """Return the code for ``secret`` at unix time ``at`` (default: now)."""
    moment = time.time() if at is None else at
    return _totp(secret).generate(int(moment)).decode("ascii")


def verify_totp(secret: str, code: str, window: int = 2, at: Optional[float] = None) -> bool:
    """Check ``code`` against every step from ``-window`` to ``+window``.

    Malformed secrets or codes never match.
    """
    if not isinstance(code, str):
        return False
    code = code.strip()
    if len(code) != CODE_DIGITS or not code.isdigit():
        return False

    try:
        totp = _totp(secret)
    except (TypeError, ValueError):
        return False

    moment = int(time.time() if at is None else at)
    token = code.encode("ascii")
    for offset in range(-window, window + 1):
        candidate = moment + offset * TIME_STEP
        if candidate < 0:
            continue
        try:
            totp.verify(token, candidate)
            return True
        except InvalidToken:
            continue
    return False


def provisioning_uri(secret: str, account_name: str, issuer: str) -> str:
    return _totp(secret).get_provisioning_uri(account_name, issuer)


def qr_code_data_url(payload: str) -> str:
    """Render ``payload`` as a QR code and return it as an SVG data URL."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        image_factory=qrcode.image.svg.SvgPathImage,
    )
    qr.add_data(payload)
    qr.make(fit=True)

    buffer = io.BytesIO()
    qr.make_image().save(buffer)
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"
