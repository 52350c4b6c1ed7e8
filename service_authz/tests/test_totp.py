"""
Tests for TOTP and QR helpers.
"""

import base64

import pytest

from service_authz.app.mfa import totp


# RFC 6238 SHA1 seed "12345678901234567890"
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"
STEP_START = 1_700_000_010


class TestTotp:
    """Test cases for code generation and verification."""

    @pytest.mark.parametrize("at,expected", [
        (59, "287082"),
        (1111111109, "081804"),
        (1234567890, "005924"),
    ])
    def test_rfc6238_vectors(self, at, expected):
        assert totp.generate_code(RFC_SECRET, at=at) == expected

    @pytest.mark.parametrize("offset_steps", [-2, -1, 0, 1, 2])
    def test_accepts_codes_within_window(self, offset_steps):
        code = totp.generate_code(RFC_SECRET, at=STEP_START)

        assert totp.verify_totp(RFC_SECRET, code, window=2, at=STEP_START + offset_steps * 30)

    @pytest.mark.parametrize("offset_steps", [-4, -3, 3, 4])
    def test_rejects_codes_outside_window(self, offset_steps):
        code = totp.generate_code(RFC_SECRET, at=STEP_START)

        assert not totp.verify_totp(RFC_SECRET, code, window=2, at=STEP_START + offset_steps * 30)

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", None, 123456])
    def test_malformed_codes_never_match(self, code):
        assert totp.verify_totp(RFC_SECRET, code, at=STEP_START) is False

    @pytest.mark.parametrize("secret", ["", "not base32!", "1"])
    def test_malformed_secrets_never_match(self, secret):
        assert totp.verify_totp(secret, "123456", at=STEP_START) is False

    def test_secret_is_case_insensitive(self):
        code = totp.generate_code(RFC_SECRET, at=STEP_START)

        assert totp.verify_totp(RFC_SECRET.lower(), code, at=STEP_START)

    def test_generated_secret_is_base32_of_20_bytes(self):
        secret = totp.generate_base32_secret()

        assert "=" not in secret
        assert len(totp.decode_base32_secret(secret)) == 20
        assert secret != totp.generate_base32_secret()


class TestEnrollmentPayload:
    """Test cases for provisioning URIs and QR codes."""

    def test_provisioning_uri(self):
        uri = totp.provisioning_uri(RFC_SECRET, "alice@example.com", "TimeAM")

        assert uri.startswith("otpauth://totp/")
        assert f"secret={RFC_SECRET}" in uri
        assert "issuer=TimeAM" in uri

    def test_qr_code_is_svg_data_url(self):
        data_url = totp.qr_code_data_url("otpauth://totp/TimeAM:alice?secret=" + RFC_SECRET)

        prefix = "data:image/svg+xml;base64,"
        assert data_url.startswith(prefix)
        svg = base64.b64decode(data_url[len(prefix):])
        assert b"<svg" in svg
