"""Caller privilege resolution.

Services:
    - OriginPrivilegeOracle: moderator privilege from the caller's network origin.
"""
from .privilege import OriginPrivilegeOracle

__all__ = ["OriginPrivilegeOracle"]
