"""
Authentication Services Package

Identity-provider adapter plus the session object every other
component reads the active user from.
"""

from hisabkitab.services.auth.identity import (
    FirebaseIdentityProvider,
    IdentityProvider,
    SignInResult,
)
from hisabkitab.services.auth.session import AuthSession

__all__ = [
    "AuthSession",
    "FirebaseIdentityProvider",
    "IdentityProvider",
    "SignInResult",
]
