"""
Platform staff capability package.
"""

from .capability import PlatformStaffVerifier, StaffCapability

__all__ = ["PlatformStaffVerifier", "StaffCapability"]
