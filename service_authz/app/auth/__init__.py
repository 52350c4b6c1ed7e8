"""
Authentication package.
"""

from .jwks import Caller, JWKSAuthenticator, caller_from_claims, extract_bearer_token

__all__ = ["Caller", "JWKSAuthenticator", "caller_from_claims", "extract_bearer_token"]
