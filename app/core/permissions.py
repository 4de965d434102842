"""
Branch isolation policy.

Reads and mutations of bookings, manifests and customers are scoped to the
caller's branch. Elevated roles (admin-equivalent) see the whole
organization. The predicate is a pure function of
(role, caller branch, target branch); services receive the caller as an
explicit ``AuthContext`` instead of reading any ambient session.
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, Optional
import uuid

from sqlalchemy import false, or_, true

from app.config import settings
from app.core.exceptions import NotFoundFailure


ELEVATED_ROLES: FrozenSet[str] = frozenset(role.lower() for role in settings.ELEVATED_ROLES)


def is_elevated(role: Optional[str]) -> bool:
    """Check if a role sees every branch of its organization."""
    return bool(role) and role.lower() in ELEVATED_ROLES


def can_access_branch(
    role: Optional[str],
    caller_branch_id: Optional[uuid.UUID],
    target_branch_id: Optional[uuid.UUID],
) -> bool:
    """
    Decide whether a caller may see or mutate data owned by a branch.

    Args:
        role: Caller's role code
        caller_branch_id: Caller's effective branch
        target_branch_id: Branch owning the record

    Returns:
        True if access is allowed
    """
    if is_elevated(role):
        return True
    if caller_branch_id is None or target_branch_id is None:
        return False
    return caller_branch_id == target_branch_id


@dataclass(frozen=True)
class AuthContext:
    """Identity of the caller, threaded through every engine entry point."""

    caller_id: uuid.UUID
    role: str
    branch_id: Optional[uuid.UUID]
    organization_id: uuid.UUID

    @property
    def is_elevated(self) -> bool:
        return is_elevated(self.role)

    def can_access(self, *target_branch_ids: Optional[uuid.UUID]) -> bool:
        """True if any of the target branches is visible to the caller."""
        return any(
            can_access_branch(self.role, self.branch_id, target)
            for target in target_branch_ids
        )


def ensure_branch_access(
    auth: AuthContext,
    *target_branch_ids: Optional[uuid.UUID],
    entity: str = "Record",
) -> None:
    """
    Raise NotFoundFailure unless one of the target branches is visible.

    Records outside the caller's scope are reported as missing, not forbidden.
    """
    if not auth.can_access(*target_branch_ids):
        raise NotFoundFailure(f"{entity} not found")


def branch_scope_clause(auth: AuthContext, columns: Iterable):
    """
    Build a WHERE clause restricting rows to the caller's branch.

    A row is visible when any of the given branch columns equals the
    caller's branch. Elevated callers get an always-true clause.

    Usage:
        stmt = select(Booking).where(
            branch_scope_clause(auth, [Booking.from_branch_id, Booking.to_branch_id])
        )
    """
    if auth.is_elevated:
        return true()
    if auth.branch_id is None:
        return false()
    return or_(*[column == auth.branch_id for column in columns])
