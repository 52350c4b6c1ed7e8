"""
MFA lifecycle package: TOTP enrollment, verification and session state.
"""

from .service import (
    GeneratedSecret,
    MfaService,
    MfaSetupResult,
    MfaStatus,
    generate_backup_codes,
)

__all__ = [
    "GeneratedSecret",
    "MfaService",
    "MfaSetupResult",
    "MfaStatus",
    "generate_backup_codes",
]
