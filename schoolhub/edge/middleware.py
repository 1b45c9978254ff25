import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from .models import AppRole, AppUser, AppUserRole, as_utc


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleGrant:
    role: AppRole
    school_id: str | None = None

    def as_dict(self) -> dict:
        return {"role": self.role.value, "school_id": self.school_id}


@dataclass
class SessionContext:
    user: AppUser
    roles: list[RoleGrant] = field(default_factory=list)

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def email(self) -> str:
        return self.user.email


def is_global_admin(roles: Iterable[RoleGrant]) -> bool:
    return any(r.role == AppRole.GLOBAL_ADMIN for r in roles)


def is_admin_for_school(roles: Iterable[RoleGrant], school_id: str | None) -> bool:
    return any(
        r.role == AppRole.GLOBAL_ADMIN or (r.role == AppRole.SCHOOL_ADMIN and r.school_id == school_id)
        for r in roles
    )


def has_role(roles: Iterable[RoleGrant], role: AppRole, school_id: str | None = None) -> bool:
    for r in roles:
        if r.role == AppRole.GLOBAL_ADMIN:
            return True
        if r.role != role:
            continue
        if school_id and r.school_id != school_id:
            continue
        return True
    return False


def is_teacher(roles: Iterable[RoleGrant], school_id: str | None = None) -> bool:
    return any(
        r.role == AppRole.GLOBAL_ADMIN
        or (r.role == AppRole.TEACHER and (not school_id or r.school_id == school_id))
        for r in roles
    )


def user_school_ids(roles: Sequence[RoleGrant]) -> list[str]:
    """School ids reachable through the grants; empty for a global admin, who reaches all."""
    if is_global_admin(roles):
        return []
    seen: list[str] = []
    for r in roles:
        if r.school_id and r.school_id not in seen:
            seen.append(r.school_id)
    return seen


def load_role_grants(db: Session, user_id: str) -> list[RoleGrant]:
    rows = db.query(AppUserRole).filter(AppUserRole.user_id == user_id).all()
    return [RoleGrant(role=row.role, school_id=row.school_id) for row in rows]


def resolve_session(db: Session, session_token: str | None) -> SessionContext:
    if not session_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session token required")

    user = db.query(AppUser).filter(AppUser.session_token == session_token).first()
    if not user:
        logger.warning("Session validation failed: unknown token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid session")
    if not user.is_active:
        logger.warning(f"Session validation failed: account {user.id} disabled")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account disabled")

    expires_at = as_utc(user.session_expires_at)
    if expires_at and expires_at < datetime.now(timezone.utc):
        logger.warning(f"Session validation failed: session expired for {user.id}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")

    return SessionContext(user=user, roles=load_role_grants(db, user.id))


def validate_session(
    db: Session,
    session_token: str | None,
    *,
    required_roles: Sequence[AppRole] | None = None,
    required_school_id: str | None = None,
) -> SessionContext:
    ctx = resolve_session(db, session_token)

    if required_roles:
        allowed = set(required_roles)

        def grant_matches(grant: RoleGrant) -> bool:
            if grant.role not in allowed:
                return False
            if grant.role == AppRole.GLOBAL_ADMIN:
                return True
            if required_school_id:
                return grant.school_id == required_school_id
            return True

        if not any(grant_matches(g) for g in ctx.roles):
            logger.warning(f"Session validation failed: insufficient permissions for {ctx.user_id}")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")

    if required_school_id:
        if not any(r.role == AppRole.GLOBAL_ADMIN or r.school_id == required_school_id for r in ctx.roles):
            logger.warning(f"Session validation failed: {ctx.user_id} has no access to school {required_school_id}")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="No access to this school")

    return ctx


def require_school_admin(ctx: SessionContext, school_id: str | None) -> None:
    if not is_admin_for_school(ctx.roles, school_id):
        logger.warning(f"User {ctx.user_id} is not an administrator of school {school_id}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
