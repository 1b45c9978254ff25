from datetime import timedelta

import pytest
from fastapi import HTTPException

from schoolhub.edge.middleware import (
    RoleGrant,
    has_role,
    is_admin_for_school,
    is_global_admin,
    is_teacher,
    resolve_session,
    user_school_ids,
    validate_session,
)
from schoolhub.edge.models import AppRole


GLOBAL = RoleGrant(AppRole.GLOBAL_ADMIN, None)
ADMIN_A = RoleGrant(AppRole.SCHOOL_ADMIN, "school-a")
TEACHER_B = RoleGrant(AppRole.TEACHER, "school-b")


def test_role_predicates():
    assert is_global_admin([GLOBAL])
    assert not is_global_admin([ADMIN_A, TEACHER_B])

    assert is_admin_for_school([ADMIN_A], "school-a")
    assert not is_admin_for_school([ADMIN_A], "school-b")
    assert not is_admin_for_school([TEACHER_B], "school-b")
    assert is_admin_for_school([GLOBAL], "anything")

    assert has_role([TEACHER_B], AppRole.TEACHER)
    assert has_role([TEACHER_B], AppRole.TEACHER, "school-b")
    assert not has_role([TEACHER_B], AppRole.TEACHER, "school-a")
    assert has_role([GLOBAL], AppRole.PARENT, "school-z")

    assert is_teacher([TEACHER_B])
    assert not is_teacher([TEACHER_B], "school-a")
    assert not is_teacher([ADMIN_A])


def test_user_school_ids():
    assert user_school_ids([GLOBAL, ADMIN_A]) == []
    assert user_school_ids([ADMIN_A, TEACHER_B, RoleGrant(AppRole.TEACHER, "school-a")]) == ["school-a", "school-b"]
    assert user_school_ids([RoleGrant(AppRole.PARENT, None)]) == []


def _status_of(callable_, *args, **kwargs):
    with pytest.raises(HTTPException) as exc:
        callable_(*args, **kwargs)
    return exc.value.status_code, exc.value.detail


def test_resolve_session_rejections(db, make_user):
    assert _status_of(resolve_session, db, None) == (401, "Session token required")
    assert _status_of(resolve_session, db, "nope") == (401, "Invalid session")

    disabled = make_user("disabled@x.test", active=False)
    assert _status_of(resolve_session, db, disabled.session_token) == (401, "Account disabled")

    stale = make_user("stale@x.test", expires_in=timedelta(minutes=-1))
    assert _status_of(resolve_session, db, stale.session_token) == (401, "Session expired")


def test_resolve_session_loads_roles(db, school_admin, school):
    ctx = resolve_session(db, school_admin.session_token)
    assert ctx.user_id == school_admin.id
    assert ctx.roles == [RoleGrant(AppRole.SCHOOL_ADMIN, school.id)]


def test_validate_session_role_and_school_checks(db, school_admin, teacher, global_admin, school, other_school):
    validate_session(db, school_admin.session_token, required_roles=[AppRole.SCHOOL_ADMIN], required_school_id=school.id)

    assert _status_of(
        validate_session, db, school_admin.session_token,
        required_roles=[AppRole.SCHOOL_ADMIN], required_school_id=other_school.id,
    ) == (403, "Insufficient permissions")

    assert _status_of(
        validate_session, db, teacher.session_token, required_roles=[AppRole.SCHOOL_ADMIN]
    ) == (403, "Insufficient permissions")

    assert _status_of(
        validate_session, db, teacher.session_token, required_school_id=other_school.id
    ) == (403, "No access to this school")

    ctx = validate_session(
        db, global_admin.session_token,
        required_roles=[AppRole.GLOBAL_ADMIN, AppRole.SCHOOL_ADMIN], required_school_id=other_school.id,
    )
    assert ctx.user_id == global_admin.id
