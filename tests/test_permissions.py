"""Tests for the branch isolation policy"""
import uuid

import pytest
from sqlalchemy import select

from app.core.exceptions import NotFoundFailure
from app.core.permissions import (
    AuthContext,
    branch_scope_clause,
    can_access_branch,
    ensure_branch_access,
    is_elevated,
)
from app.models import Branch


BRANCH_A = uuid.uuid4()
BRANCH_B = uuid.uuid4()


def _auth(role: str, branch_id=None) -> AuthContext:
    return AuthContext(
        caller_id=uuid.uuid4(),
        role=role,
        branch_id=branch_id,
        organization_id=uuid.uuid4(),
    )


@pytest.mark.parametrize("role,caller,target,expected", [
    ("admin", None, BRANCH_A, True),
    ("SuperAdmin", BRANCH_A, BRANCH_B, True),
    ("branch_manager", BRANCH_A, BRANCH_A, True),
    ("branch_manager", BRANCH_A, BRANCH_B, False),
    ("branch_manager", None, BRANCH_A, False),
    ("branch_manager", BRANCH_A, None, False),
    (None, BRANCH_A, BRANCH_A, True),
    ("", None, None, False),
])
def test_can_access_branch(role, caller, target, expected):
    assert can_access_branch(role, caller, target) is expected


def test_is_elevated_is_case_insensitive():
    assert is_elevated("ADMIN")
    assert not is_elevated("clerk")
    assert not is_elevated(None)


def test_auth_context_matches_any_target():
    auth = _auth("clerk", BRANCH_A)

    assert auth.can_access(BRANCH_B, BRANCH_A)
    assert not auth.can_access(BRANCH_B)
    assert not auth.is_elevated


def test_ensure_branch_access_reports_not_found():
    with pytest.raises(NotFoundFailure) as exc_info:
        ensure_branch_access(_auth("clerk", BRANCH_A), BRANCH_B, entity="Booking")
    assert exc_info.value.message == "Booking not found"

    ensure_branch_access(_auth("admin"), BRANCH_B)


async def test_branch_scope_clause_filters_rows(db, seed, delhi_auth, admin_auth):
    def visible(auth):
        return select(Branch.code).where(
            Branch.organization_id == seed.org.id,
            branch_scope_clause(auth, [Branch.id]),
        )

    assert (await db.execute(visible(delhi_auth))).scalars().all() == ["DEL"]
    assert sorted((await db.execute(visible(admin_auth))).scalars().all()) == ["BOM", "DEL", "PNQ"]

    no_branch = AuthContext(
        caller_id=uuid.uuid4(), role="clerk", branch_id=None, organization_id=seed.org.id,
    )
    assert (await db.execute(visible(no_branch))).scalars().all() == []
