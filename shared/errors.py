"""
Shared error handling for the Workforce Access Core.
"""

from typing import Dict, Any, List, Optional
from pydantic import BaseModel
from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for access core services."""

    status_code: int = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class AuthenticationError(AccessLayerException):
    """Authentication-related errors."""

    status_code = 401

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("AUTHENTICATION_ERROR", message, details)


class AuthorizationError(AccessLayerException):
    """Authorization-related errors."""

    status_code = 403

    def __init__(
        self,
        message: str = "Authorization failed",
        details: Optional[Dict[str, Any]] = None,
        code: str = "AUTHORIZATION_ERROR",
    ):
        super().__init__(code, message, details)


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class NoMembership(AuthorizationError):
    """Caller has no resolvable tenant."""

    def __init__(self, uid: str, message: str = "No tenant membership"):
        super().__init__(message, {"uid": uid}, code="NO_TENANT")
        self.uid = uid


class MissingEntitlement(AuthorizationError):
    """Caller's tenant lacks one or more required entitlements."""

    def __init__(self, keys: List[str]):
        super().__init__(
            f"Missing entitlements: {', '.join(keys)}",
            {"missing_entitlements": list(keys)},
            code="MISSING_ENTITLEMENT",
        )
        self.keys = list(keys)


class MfaRequired(AuthorizationError):
    """MFA is active but the current session has not been verified."""

    def __init__(self, message: str = "MFA verification required"):
        super().__init__(message, {"mfa_required": True}, code="MFA_REQUIRED")


class MfaCheckFailed(AccessLayerException):
    """Unexpected fault while evaluating the MFA gate. Always rejects."""

    status_code = 500

    def __init__(self, message: str = "MFA verification check failed", details: Optional[Dict[str, Any]] = None):
        merged = {"mfa_required": True}
        merged.update(details or {})
        super().__init__("MFA_CHECK_ERROR", message, merged)


class SecretCorrupted(AccessLayerException):
    """Stored MFA secret failed format or authentication checks."""

    status_code = 409

    def __init__(self, uid: str, reason: str):
        super().__init__(
            "MFA_SECRET_CORRUPTED",
            "Stored MFA secret is corrupted. Contact support to reset MFA.",
            {"uid": uid, "reason": reason},
        )
        self.uid = uid


class InvalidMfaCode(AccessLayerException):
    """Submitted TOTP or backup code did not match."""

    def __init__(self, message: str = "Invalid code"):
        super().__init__("INVALID_MFA_CODE", message)


class MfaStateError(AccessLayerException):
    """Requested MFA transition is not valid from the user's current state."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__("MFA_STATE_ERROR", message, details)


class ScopeNotFound(AccessLayerException):
    """Tenant or freelancer addressed by an entitlement write does not exist."""

    status_code = 404

    def __init__(self, kind: str, owner_id: str):
        super().__init__(
            "SCOPE_NOT_FOUND",
            f"{kind.title()} {owner_id} not found",
            {"kind": kind, "owner_id": owner_id},
        )


class TenantAlreadyAssigned(AccessLayerException):
    """Caller already belongs to a tenant and cannot create another."""

    status_code = 409

    def __init__(self, uid: str, tenant_id: str):
        super().__init__(
            "ALREADY_HAS_TENANT",
            "User is already a member of a tenant",
            {"uid": uid, "tenant_id": tenant_id},
        )
