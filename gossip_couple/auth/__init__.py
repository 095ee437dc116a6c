"""Authentication and the per-user application context."""

from gossip_couple.auth.context import AppContext, MissingScopeError, OwnershipError
from gossip_couple.auth.session import (
    AlreadyRegisteredError,
    AuthError,
    AuthIdentity,
    AuthService,
    InvalidCredentialsError,
)

__all__ = [
    "AppContext",
    "MissingScopeError",
    "OwnershipError",
    "AlreadyRegisteredError",
    "AuthError",
    "AuthIdentity",
    "AuthService",
    "InvalidCredentialsError",
]
