"""
Request-scoped authorization context.

AuthContext is built once per request by TenantIsolationMiddleware and
handed explicitly to the guard and services. It is never mutated.
"""
import uuid
from dataclasses import dataclass, field
from typing import FrozenSet, Optional


@dataclass(frozen=True)
class AuthContext:
    """Who is calling, in which tenant, holding which permission strings."""

    user_id: uuid.UUID
    tenant_id: uuid.UUID
    granted_permissions: FrozenSet[str] = field(default_factory=frozenset)

    def holds(self, permission: str) -> bool:
        """Literal membership test, without hierarchy rules."""
        return permission in self.granted_permissions


@dataclass(frozen=True)
class VerifiedIdentity:
    """
    Identity whose credentials have already been verified.

    ``tenant_claim`` is the raw claim value from the token and may be
    missing or malformed; TenantIsolationGuard decides what to do with it.
    ``security_stamp`` is compared with the user's current stamp so that
    logout and credential changes revoke earlier tokens.
    """

    user_id: uuid.UUID
    tenant_claim: object = None
    permission_claims: tuple = ()
    security_stamp: Optional[str] = None
