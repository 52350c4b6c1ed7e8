"""
MFA lifecycle service.

Per-user states::

    DISABLED --save_secret--> PENDING --enable_mfa--> ENABLED
    ENABLED --mark_session_verified--> SESSION_VERIFIED
    SESSION_VERIFIED --check_and_reset_for_new_session--> ENABLED

``mfa_setup_state`` records enrollment (NONE, PENDING, CONFIRMED) and
``mfa_session_verified`` records whether the current session passed a
TOTP or backup-code check. Secrets and backup codes are stored as vault
envelopes.
"""

import os
import time
from dataclasses import dataclass, field
from typing import List, Optional

from shared.errors import (
    InvalidMfaCode, MfaStateError, SecretCorrupted, ValidationError,
)
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..staff.capability import StaffCapability
from ..store.base import DocumentStore
from ..store.models import MfaSetupState
from ..vault.cipher import DecryptionError, SecretVault
from . import totp


BACKUP_CODE_COUNT = 8
BACKUP_CODE_BYTES = 4


@dataclass
class GeneratedSecret:
    secret: str
    otpauth_uri: str
    qr_code: str


@dataclass
class MfaSetupResult:
    secret: str
    qr_code: str
    otpauth_uri: str
    backup_codes: List[str] = field(default_factory=list)


@dataclass
class MfaStatus:
    enabled: bool
    setup_in_progress: bool
    session_verified: bool


def generate_backup_codes(count: int = BACKUP_CODE_COUNT) -> List[str]:
    """Return ``count`` single-use codes of 8 uppercase hex characters."""
    return [os.urandom(BACKUP_CODE_BYTES).hex().upper() for _ in range(count)]


class MfaService:
    """Enrollment, verification and session state of second factors."""

    def __init__(
        self,
        store: DocumentStore,
        vault: SecretVault,
        staff: StaffCapability,
        issuer: str = "TimeAM",
        window: int = 2,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.store = store
        self.vault = vault
        self.staff = staff
        self.issuer = issuer
        self.window = window
        self.metrics = metrics
        self.logger = get_logger("authz.mfa")

    # Secrets

    def generate_secret(self, uid: str, email: str) -> GeneratedSecret:
        """Create a TOTP secret and its enrollment QR code. Persists nothing."""
        secret = totp.generate_base32_secret()
        return self._describe_secret(secret, email or uid)

    def _describe_secret(self, secret: str, account_name: str) -> GeneratedSecret:
        uri = totp.provisioning_uri(secret, account_name, self.issuer)
        return GeneratedSecret(secret=secret, otpauth_uri=uri, qr_code=totp.qr_code_data_url(uri))

    def generate_backup_codes(self, count: int = BACKUP_CODE_COUNT) -> List[str]:
        return generate_backup_codes(count)

    async def save_secret(self, uid: str, secret: str, backup_codes: List[str]) -> None:
        await self.store.update_user(uid, {
            "mfa_secret": self.vault.encrypt(secret),
            "mfa_backup_codes": [self.vault.encrypt(code) for code in backup_codes],
            "mfa_setup_state": MfaSetupState.PENDING,
            "mfa_session_verified": False,
        })
        self.logger.info("MFA secret saved, setup pending", uid=uid)

    async def get_secret(self, uid: str) -> Optional[str]:
        """Return the decrypted TOTP secret, or None when none is stored.

        A corrupt envelope blocks a normal user with `SecretCorrupted` and
        leaves the record untouched. Verified platform staff are reset to
        the unenrolled state instead so they cannot be locked out.
        """
        user = await self.store.get_user(uid)
        if user is None or not user.mfa_secret:
            return None

        try:
            return self.vault.decrypt(user.mfa_secret)
        except DecryptionError as e:
            reason = type(e).__name__
            if await self.staff.is_verified_platform_staff(uid):
                self.logger.warning(
                    "Corrupt MFA secret for platform staff, resetting MFA",
                    security_event="mfa_secret_auto_repaired",
                    uid=uid,
                    reason=reason,
                )
                await self._reset(uid)
                return None

            self.logger.error(
                "Corrupt MFA secret, blocking login",
                security_event="mfa_secret_corrupted",
                uid=uid,
                reason=reason,
            )
            raise SecretCorrupted(uid, reason) from e

    # State transitions

    async def enable_mfa(self, uid: str) -> None:
        user = await self.store.get_user(uid)
        if user is None or user.mfa_setup_state != MfaSetupState.PENDING:
            raise MfaStateError("No MFA setup in progress")
        await self.store.update_user(uid, {
            "mfa_setup_state": MfaSetupState.CONFIRMED,
            "mfa_session_verified": False,
        })
        self.logger.info("MFA enabled", uid=uid)

    async def disable_mfa(self, uid: str) -> None:
        await self._reset(uid)
        self.logger.info("MFA disabled", uid=uid)

    async def _reset(self, uid: str) -> None:
        await self.store.update_user(uid, {
            "mfa_setup_state": MfaSetupState.NONE,
            "mfa_session_verified": False,
            "mfa_secret": None,
            "mfa_backup_codes": None,
            "mfa_verified_at": None,
        })

    async def mark_session_verified(self, uid: str, now: Optional[int] = None) -> None:
        verified_at = int(time.time()) if now is None else int(now)
        await self.store.update_user(uid, {
            "mfa_session_verified": True,
            "mfa_verified_at": verified_at,
        })

    async def check_and_reset_for_new_session(
        self, uid: str, token_issued_at: Optional[int] = None
    ) -> None:
        """Clear the session-verified flag when a new session has started.

        Without ``token_issued_at`` the flag is always cleared. Otherwise it
        is cleared when there is no recorded verification or the token was
        issued after the last one.
        """
        user = await self.store.get_user(uid)
        if user is None or not user.mfa_enabled:
            return

        if token_issued_at is None:
            reset = True
        else:
            reset = user.mfa_verified_at is None or user.mfa_verified_at < token_issued_at

        if reset and user.mfa_session_verified:
            await self.store.update_user(uid, {"mfa_session_verified": False})
            self.logger.debug("MFA session verification cleared", uid=uid)

    # Verification

    def verify_code(self, secret: str, code: str, at: Optional[float] = None) -> bool:
        return totp.verify_totp(secret, code, window=self.window, at=at)

    async def verify_backup_code(self, uid: str, code: str) -> bool:
        """Consume a matching backup code. Undecryptable stored codes are skipped."""
        user = await self.store.get_user(uid)
        if user is None or not user.mfa_backup_codes or not isinstance(code, str):
            return False

        wanted = code.strip().upper()
        for index, envelope in enumerate(user.mfa_backup_codes):
            try:
                stored = self.vault.decrypt(envelope)
            except DecryptionError:
                continue
            if stored.upper() == wanted:
                remaining = user.mfa_backup_codes[:index] + user.mfa_backup_codes[index + 1:]
                await self.store.update_user(uid, {"mfa_backup_codes": remaining})
                self.logger.info("Backup code consumed", uid=uid, remaining=len(remaining))
                return True
        return False

    async def get_status(self, uid: str) -> MfaStatus:
        user = await self.store.get_user(uid)
        if user is None:
            return MfaStatus(enabled=False, setup_in_progress=False, session_verified=False)
        return MfaStatus(
            enabled=user.mfa_enabled,
            setup_in_progress=user.mfa_setup_state == MfaSetupState.PENDING,
            session_verified=user.mfa_session_verified,
        )

    # Flows

    async def begin_setup(self, uid: str, email: Optional[str]) -> MfaSetupResult:
        """Start enrollment, or re-issue the pending enrollment."""
        user = await self.store.get_user(uid)
        if user is not None and user.mfa_enabled:
            raise MfaStateError("MFA is already enabled")

        if user is not None and user.mfa_setup_state == MfaSetupState.PENDING:
            secret = await self.get_secret(uid)
            if secret is not None:
                described = self._describe_secret(secret, email or uid)
                codes = await self._pending_backup_codes(uid, user.mfa_backup_codes or [])
                return MfaSetupResult(
                    secret=secret,
                    qr_code=described.qr_code,
                    otpauth_uri=described.otpauth_uri,
                    backup_codes=codes,
                )

        if not email:
            raise ValidationError("Email is required for MFA setup", {"field": "email"})

        generated = self.generate_secret(uid, email)
        codes = self.generate_backup_codes()
        await self.save_secret(uid, generated.secret, codes)
        return MfaSetupResult(
            secret=generated.secret,
            qr_code=generated.qr_code,
            otpauth_uri=generated.otpauth_uri,
            backup_codes=codes,
        )

    async def _pending_backup_codes(self, uid: str, envelopes: List[str]) -> List[str]:
        codes = []
        for envelope in envelopes:
            try:
                codes.append(self.vault.decrypt(envelope))
            except DecryptionError:
                continue
        if codes:
            return codes

        codes = self.generate_backup_codes()
        await self.store.update_user(uid, {
            "mfa_backup_codes": [self.vault.encrypt(code) for code in codes],
        })
        return codes

    async def confirm_setup(self, uid: str, code: str) -> None:
        """Verify the first code against the pending secret and enable MFA."""
        status = await self.get_status(uid)
        if not status.setup_in_progress:
            raise MfaStateError("No MFA setup in progress")

        secret = await self.get_secret(uid)
        if secret is None:
            raise MfaStateError("MFA secret not found", {"requires_new_setup": True})

        if not self.verify_code(secret, code):
            self._count("setup", "invalid")
            raise InvalidMfaCode()

        await self.enable_mfa(uid)
        self._count("setup", "success")

    async def verify_login(self, uid: str, code: str) -> str:
        """Verify a login code and mark the session verified.

        Returns the method that matched, ``"totp"`` or ``"backup_code"``.
        """
        status = await self.get_status(uid)
        if not status.enabled:
            raise MfaStateError("MFA is not enabled")

        secret = await self.get_secret(uid)
        if secret is None:
            raise MfaStateError(
                "MFA secret not found. Please set up MFA again.",
                {"requires_new_setup": True},
            )

        if self.verify_code(secret, code):
            method = "totp"
        elif await self.verify_backup_code(uid, code):
            method = "backup_code"
        else:
            self._count("login", "invalid")
            raise InvalidMfaCode()

        await self.mark_session_verified(uid)
        self._count(method, "success")
        self.logger.info("MFA session verified", uid=uid, method=method)
        return method

    def _count(self, method: str, result: str) -> None:
        if self.metrics:
            self.metrics.record_mfa_verification(method, result)
