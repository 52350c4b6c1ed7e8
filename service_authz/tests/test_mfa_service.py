"""
Tests for the MFA lifecycle service.
"""

import re
from unittest.mock import AsyncMock

import pytest

from shared.errors import InvalidMfaCode, MfaStateError, SecretCorrupted, ValidationError
from service_authz.app.mfa import totp
from service_authz.app.mfa.service import generate_backup_codes
from service_authz.app.store.models import MfaSetupState


SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


async def enroll(mfa, uid, codes=("AAAA1111", "BBBB2222")):
    """Bring ``uid`` to the ENABLED state with ``SECRET``."""
    await mfa.save_secret(uid, SECRET, list(codes))
    await mfa.enable_mfa(uid)


class TestEnrollment:
    """Test cases for setup and confirmation."""

    def test_generate_secret_persists_nothing(self, store, mfa):
        generated = mfa.generate_secret("u1", "u1@example.com")

        assert len(totp.decode_base32_secret(generated.secret)) == 20
        assert generated.otpauth_uri.startswith("otpauth://totp/")
        assert "issuer=TimeAM" in generated.otpauth_uri
        assert generated.qr_code.startswith("data:image/svg+xml;base64,")
        assert store.users == {}

    def test_backup_codes_format(self):
        codes = generate_backup_codes()

        assert len(codes) == 8
        assert all(re.fullmatch(r"[0-9A-F]{8}", code) for code in codes)

    @pytest.mark.asyncio
    async def test_save_secret_encrypts_and_sets_pending(self, store, mfa, vault):
        await mfa.save_secret("u1", SECRET, ["AAAA1111"])

        user = await store.get_user("u1")
        assert user.mfa_setup_state == MfaSetupState.PENDING
        assert user.mfa_session_verified is False
        assert user.mfa_enabled is False
        assert user.mfa_secret != SECRET
        assert vault.decrypt(user.mfa_secret) == SECRET
        assert [vault.decrypt(c) for c in user.mfa_backup_codes] == ["AAAA1111"]

    @pytest.mark.asyncio
    async def test_enable_requires_pending(self, mfa):
        with pytest.raises(MfaStateError):
            await mfa.enable_mfa("u1")

    @pytest.mark.asyncio
    async def test_begin_setup_new(self, store, mfa, vault):
        result = await mfa.begin_setup("u1", "u1@example.com")

        assert len(result.backup_codes) == 8
        user = await store.get_user("u1")
        assert user.mfa_setup_state == MfaSetupState.PENDING
        assert vault.decrypt(user.mfa_secret) == result.secret

    @pytest.mark.asyncio
    async def test_begin_setup_reissues_pending_secret(self, mfa):
        first = await mfa.begin_setup("u1", "u1@example.com")
        second = await mfa.begin_setup("u1", "u1@example.com")

        assert second.secret == first.secret
        assert second.backup_codes == first.backup_codes

    @pytest.mark.asyncio
    async def test_begin_setup_regenerates_unreadable_backup_codes(self, store, mfa):
        first = await mfa.begin_setup("u1", "u1@example.com")
        await store.update_user("u1", {"mfa_backup_codes": ["garbage"]})

        second = await mfa.begin_setup("u1", "u1@example.com")

        assert second.secret == first.secret
        assert len(second.backup_codes) == 8
        assert await mfa.verify_backup_code("u1", second.backup_codes[0])

    @pytest.mark.asyncio
    async def test_begin_setup_refused_when_enabled(self, mfa):
        await enroll(mfa, "u1")

        with pytest.raises(MfaStateError):
            await mfa.begin_setup("u1", "u1@example.com")

    @pytest.mark.asyncio
    async def test_begin_setup_requires_email(self, mfa):
        with pytest.raises(ValidationError):
            await mfa.begin_setup("u1", None)

    @pytest.mark.asyncio
    async def test_confirm_setup_enables_mfa(self, store, mfa):
        result = await mfa.begin_setup("u1", "u1@example.com")

        await mfa.confirm_setup("u1", totp.generate_code(result.secret))

        status = await mfa.get_status("u1")
        assert status.enabled is True
        assert status.setup_in_progress is False
        assert status.session_verified is False

    @pytest.mark.asyncio
    async def test_confirm_setup_rejects_wrong_code(self, mfa):
        result = await mfa.begin_setup("u1", "u1@example.com")
        wrong = "000000" if totp.generate_code(result.secret) != "000000" else "111111"

        with pytest.raises(InvalidMfaCode):
            await mfa.confirm_setup("u1", wrong)
        assert (await mfa.get_status("u1")).setup_in_progress is True

    @pytest.mark.asyncio
    async def test_confirm_setup_without_pending(self, mfa):
        with pytest.raises(MfaStateError):
            await mfa.confirm_setup("u1", "123456")

    @pytest.mark.asyncio
    async def test_disable_mfa_clears_everything(self, store, mfa):
        await enroll(mfa, "u1")
        await mfa.mark_session_verified("u1", now=100)

        await mfa.disable_mfa("u1")

        user = await store.get_user("u1")
        assert user.mfa_setup_state == MfaSetupState.NONE
        assert user.mfa_secret is None
        assert user.mfa_backup_codes is None
        assert user.mfa_session_verified is False


class TestVerification:
    """Test cases for login verification and backup codes."""

    def test_verify_code_uses_configured_window(self, mfa):
        code = totp.generate_code(SECRET, at=1_700_000_010)

        assert mfa.verify_code(SECRET, code, at=1_700_000_010 + 60)
        assert not mfa.verify_code(SECRET, code, at=1_700_000_010 + 90)

    @pytest.mark.asyncio
    async def test_backup_code_is_single_use(self, store, mfa):
        await enroll(mfa, "u1", codes=["AAAA1111", "BBBB2222"])

        assert await mfa.verify_backup_code("u1", "bbbb2222") is True
        assert await mfa.verify_backup_code("u1", "BBBB2222") is False
        assert len((await store.get_user("u1")).mfa_backup_codes) == 1

    @pytest.mark.asyncio
    async def test_backup_code_skips_undecryptable_entries(self, store, mfa, vault):
        await store.update_user("u1", {
            "mfa_backup_codes": ["not-an-envelope", vault.encrypt("CCCC3333")],
        })

        assert await mfa.verify_backup_code("u1", "CCCC3333") is True
        assert (await store.get_user("u1")).mfa_backup_codes == ["not-an-envelope"]

    @pytest.mark.asyncio
    async def test_backup_code_without_codes(self, mfa):
        assert await mfa.verify_backup_code("u1", "AAAA1111") is False

    @pytest.mark.asyncio
    async def test_verify_login_with_totp(self, store, mfa):
        await enroll(mfa, "u1")

        method = await mfa.verify_login("u1", totp.generate_code(SECRET))

        assert method == "totp"
        user = await store.get_user("u1")
        assert user.mfa_session_verified is True
        assert user.mfa_verified_at is not None

    @pytest.mark.asyncio
    async def test_verify_login_with_backup_code(self, mfa):
        await enroll(mfa, "u1", codes=["AAAA1111"])

        assert await mfa.verify_login("u1", "aaaa1111") == "backup_code"
        assert (await mfa.get_status("u1")).session_verified is True

    @pytest.mark.asyncio
    async def test_verify_login_rejects_wrong_code(self, mfa):
        await enroll(mfa, "u1", codes=["AAAA1111"])

        with pytest.raises(InvalidMfaCode):
            await mfa.verify_login("u1", "ZZZZ9999")
        assert (await mfa.get_status("u1")).session_verified is False

    @pytest.mark.asyncio
    async def test_verify_login_requires_enabled(self, mfa):
        with pytest.raises(MfaStateError):
            await mfa.verify_login("u1", "123456")


class TestCorruptSecrets:
    """Test cases for the corrupt secret policy."""

    @pytest.mark.asyncio
    async def test_no_secret_returns_none(self, mfa):
        assert await mfa.get_secret("u1") is None

    @pytest.mark.asyncio
    async def test_corrupt_secret_blocks_normal_user(self, store, mfa):
        await enroll(mfa, "u1")
        await store.update_user("u1", {"mfa_secret": "only:two"})

        with pytest.raises(SecretCorrupted) as exc_info:
            await mfa.get_secret("u1")

        assert exc_info.value.status_code == 409
        user = await store.get_user("u1")
        assert user.mfa_enabled is True
        assert user.mfa_secret == "only:two"

    @pytest.mark.asyncio
    async def test_tampered_secret_blocks_normal_user(self, store, mfa, vault):
        await enroll(mfa, "u1")
        other_key_envelope = type(vault)(bytes(32)).encrypt(SECRET)
        await store.update_user("u1", {"mfa_secret": other_key_envelope})

        with pytest.raises(SecretCorrupted):
            await mfa.get_secret("u1")

    @pytest.mark.asyncio
    async def test_corrupt_secret_auto_repairs_for_staff(self, store, mfa):
        store.add_staff_member("eng1")
        await enroll(mfa, "eng1")
        await store.update_user("eng1", {"mfa_secret": "broken"})

        assert await mfa.get_secret("eng1") is None

        user = await store.get_user("eng1")
        assert user.mfa_setup_state == MfaSetupState.NONE
        assert user.mfa_secret is None
        assert user.mfa_backup_codes is None

    @pytest.mark.asyncio
    async def test_verify_login_surfaces_corruption(self, store, mfa):
        await enroll(mfa, "u1")
        await store.update_user("u1", {"mfa_secret": "broken"})

        with pytest.raises(SecretCorrupted):
            await mfa.verify_login("u1", "123456")

    @pytest.mark.asyncio
    async def test_staff_lookup_failure_propagates(self, store, mfa):
        await enroll(mfa, "u1")
        await store.update_user("u1", {"mfa_secret": "broken"})
        mfa.staff.is_verified_platform_staff = AsyncMock(side_effect=RuntimeError("down"))

        with pytest.raises(RuntimeError):
            await mfa.get_secret("u1")


class TestSessionReset:
    """Test cases for check_and_reset_for_new_session."""

    @pytest.mark.asyncio
    async def test_no_op_when_mfa_disabled(self, store, mfa):
        await store.update_user("u1", {"mfa_session_verified": True})
        store.update_user = AsyncMock()

        await mfa.check_and_reset_for_new_session("u1")

        store.update_user.assert_not_called()

    @pytest.mark.asyncio
    async def test_without_issued_at_always_clears(self, mfa):
        await enroll(mfa, "u1")
        await mfa.mark_session_verified("u1", now=2_000)

        await mfa.check_and_reset_for_new_session("u1")

        assert (await mfa.get_status("u1")).session_verified is False

    @pytest.mark.asyncio
    async def test_token_older_than_verification_keeps_flag(self, mfa):
        await enroll(mfa, "u1")
        await mfa.mark_session_verified("u1", now=2_000)

        await mfa.check_and_reset_for_new_session("u1", token_issued_at=1_500)
        assert (await mfa.get_status("u1")).session_verified is True

        await mfa.check_and_reset_for_new_session("u1", token_issued_at=2_000)
        assert (await mfa.get_status("u1")).session_verified is True

    @pytest.mark.asyncio
    async def test_token_newer_than_verification_clears(self, mfa):
        await enroll(mfa, "u1")
        await mfa.mark_session_verified("u1", now=2_000)

        await mfa.check_and_reset_for_new_session("u1", token_issued_at=2_001)

        assert (await mfa.get_status("u1")).session_verified is False

    @pytest.mark.asyncio
    async def test_missing_verified_at_clears(self, store, mfa):
        await enroll(mfa, "u1")
        await store.update_user("u1", {"mfa_session_verified": True})

        await mfa.check_and_reset_for_new_session("u1", token_issued_at=1_000)

        assert (await mfa.get_status("u1")).session_verified is False
