"""
Request and response models for the authz HTTP API.
"""

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field


EntitlementMap = Dict[str, Union[bool, int, float, str]]


class TenantInfo(BaseModel):
    id: str
    name: str


class MfaState(BaseModel):
    enabled: bool = False
    setup_in_progress: bool = False
    required: bool = False


class MeResponse(BaseModel):
    """Profile of the calling user, including tenant and MFA state."""
    uid: str
    email: Optional[str] = None
    needs_onboarding: bool
    is_freelancer: bool = False
    tenant: Optional[TenantInfo] = None
    role: Optional[str] = None
    entitlements: EntitlementMap = Field(default_factory=dict)
    mfa: MfaState = Field(default_factory=MfaState)


class TenantContextResponse(BaseModel):
    tenant: Optional[TenantInfo] = None
    role: Optional[str] = None
    entitlements: EntitlementMap = Field(default_factory=dict)


class CreateTenantRequest(BaseModel):
    tenant_name: str


class RenameTenantRequest(BaseModel):
    name: str


class MfaStatusResponse(BaseModel):
    enabled: bool
    setup_in_progress: bool = False
    session_verified: bool = False


class MfaSetupResponse(BaseModel):
    qr_code: str
    secret: str
    otpauth_uri: str
    backup_codes: List[str]


class MfaCodeRequest(BaseModel):
    code: str = Field(..., min_length=1)


class MfaVerifyResponse(BaseModel):
    verified: bool
    method: Optional[str] = None


class MfaDisableResponse(BaseModel):
    success: bool
