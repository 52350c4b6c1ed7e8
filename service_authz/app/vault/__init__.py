"""
Secret vault package.
"""

from .cipher import (
    AuthenticationFailedError,
    DecryptionError,
    EnvelopeFormatError,
    SecretVault,
    VaultConfigurationError,
)

__all__ = [
    "AuthenticationFailedError",
    "DecryptionError",
    "EnvelopeFormatError",
    "SecretVault",
    "VaultConfigurationError",
]
