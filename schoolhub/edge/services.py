import logging
from datetime import date, datetime, timedelta, timezone

from fastapi import HTTPException, status
from sqlalchemy.orm import Session

from .config import settings
from .middleware import RoleGrant, is_global_admin, load_role_grants, resolve_session, validate_session
from .models import (
    AppRole,
    AppUser,
    AppUserRole,
    School,
    SchoolRolePermission,
    Student,
    StudentSchool,
    Subscription,
    UserSchoolRole,
    as_utc,
    utcnow,
)
from .notifications import NotificationDispatchError, notify_login, send_password_reset_email
from .rate_limit import CHANGE_PASSWORD_LIMIT, LOGIN_LIMIT, limiter
from .schemas import AuthSessionResponse, InvitationValidationResponse, PasswordResetResponse, RoleOut, UserOut
from .security import (
    ValidationError,
    generate_session_token,
    hash_password,
    is_legacy_hash,
    normalize_email,
    password_errors,
    session_expiration,
    verify_password,
)


logger = logging.getLogger(__name__)

ROLE_PRIORITY = ["global_admin", "admin", "school_admin", "school_staff", "teacher", "student"]
INVALID_CREDENTIALS = "Incorrect email or password"


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


def _ensure_password_complexity(password: str | None) -> None:
    errors = password_errors(password)
    if errors:
        raise _bad_request(". ".join(errors))


def primary_role_for(user: AppUser, roles: list[RoleGrant]) -> tuple[str, str | None]:
    for candidate in ROLE_PRIORITY:
        found = next((r for r in roles if r.role.value == candidate), None)
        if found:
            return candidate, found.school_id or user.school_id
    return "student", user.school_id


def build_session_payload(
    db: Session, user: AppUser, roles: list[RoleGrant], token: str, expires_at: datetime
) -> AuthSessionResponse:
    primary_role, primary_school_id = primary_role_for(user, roles)
    identifier = None
    if primary_school_id:
        school = db.query(School).filter(School.id == primary_school_id).first()
        if school:
            identifier = school.identifier
    return AuthSessionResponse(
        user=UserOut.model_validate(user),
        roles=[RoleOut(**r.as_dict()) for r in roles],
        primary_role=primary_role,
        primary_school_id=primary_school_id,
        primary_school_identifier=identifier,
        session_token=token,
        session_expires_at=expires_at,
    )


def authenticate_user(db: Session, *, email: str | None, password: str | None, client_ip: str) -> AuthSessionResponse:
    try:
        normalized = normalize_email(email)
    except ValidationError as exc:
        raise _bad_request(str(exc)) from exc
    if not password:
        raise _bad_request("Password required")

    limit_key = f"login:{normalized}"
    rate = limiter.check(limit_key, LOGIN_LIMIT)
    if not rate.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=f"Too many attempts. Try again in {rate.wait_minutes()} minute(s).",
        )

    logger.info(f"Authentication attempt for: {normalized}")
    user = db.query(AppUser).filter(AppUser.email == normalized).first()
    if not user:
        raise _unauthorized(INVALID_CREDENTIALS)
    if not user.is_active:
        raise _unauthorized("Account inactive. Please contact your administrator.")
    if not user.password_hash:
        raise _unauthorized("Account awaiting activation. Check your email.")
    if not verify_password(password, user.password_hash):
        raise _unauthorized(INVALID_CREDENTIALS)

    limiter.reset(limit_key, LOGIN_LIMIT)
    if is_legacy_hash(user.password_hash):
        logger.info(f"Upgrading legacy password hash for {user.id}")
        user.password_hash = hash_password(password)

    now = utcnow()
    user.session_token = generate_session_token()
    user.session_expires_at = session_expiration(now)
    user.last_login = now
    db.commit()
    db.refresh(user)

    roles = load_role_grants(db, user.id)
    notify_login(recipient_email=user.email, first_name=user.first_name, ip_address=client_ip)
    return build_session_payload(db, user, roles, user.session_token, as_utc(user.session_expires_at))


def refresh_session(db: Session, *, session_token: str | None) -> AuthSessionResponse:
    if not session_token:
        raise _bad_request("Session token required")

    user = db.query(AppUser).filter(AppUser.session_token == session_token).first()
    if not user:
        raise _unauthorized("Invalid session")

    now = datetime.now(timezone.utc)
    expires_at = as_utc(user.session_expires_at)
    if expires_at is None or expires_at < now:
        user.session_token = None
        user.session_expires_at = None
        db.commit()
        raise _unauthorized("Session expired")
    if not user.is_active:
        raise _unauthorized("Account disabled")

    if expires_at < now + timedelta(hours=settings.session_refresh_window_hours):
        logger.info(f"Rotating session token for {user.id}")
        user.session_token = generate_session_token()
        user.session_expires_at = session_expiration(now)
        db.commit()
        db.refresh(user)
        expires_at = as_utc(user.session_expires_at)

    roles = load_role_grants(db, user.id)
    return build_session_payload(db, user, roles, user.session_token, expires_at)


def logout(db: Session, *, session_token: str | None) -> None:
    if not session_token:
        return
    user = db.query(AppUser).filter(AppUser.session_token == session_token).first()
    if user:
        user.session_token = None
        user.session_expires_at = None
        db.commit()


def change_password(
    db: Session,
    *,
    session_token: str | None,
    user_id: str | None,
    current_password: str | None,
    new_password: str | None,
) -> None:
    if not user_id or not current_password or not new_password or not session_token:
        raise _bad_request("Missing data")

    ctx = resolve_session(db, session_token)
    if ctx.user_id != user_id:
        raise _unauthorized("Invalid session")

    rate = limiter.check(f"change-password:{user_id}", CHANGE_PASSWORD_LIMIT)
    if not rate.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many attempts. Try again in an hour.",
        )

    _ensure_password_complexity(new_password)

    user = ctx.user
    if not user.password_hash or not verify_password(current_password, user.password_hash):
        raise _unauthorized("Current password is incorrect")

    user.password_hash = hash_password(new_password)
    user.updated_at = utcnow()
    db.commit()
    logger.info(f"Password changed for {user.id}")


def _find_by_invitation(db: Session, token: str) -> AppUser | None:
    return db.query(AppUser).filter(AppUser.invitation_token == token).first()


def validate_invitation_token(db: Session, *, token: str | None) -> InvitationValidationResponse:
    if not token:
        raise _bad_request("Token required")

    account = _find_by_invitation(db, token.strip())
    if not account:
        return InvitationValidationResponse(valid=False, error="Invalid or expired token")
    if account.is_active and account.password_hash:
        return InvitationValidationResponse(valid=False, error="This account is already active")

    expires_at = as_utc(account.invitation_expires_at)
    if not expires_at:
        return InvitationValidationResponse(valid=False, error="Invalid token")
    if datetime.now(timezone.utc) > expires_at:
        return InvitationValidationResponse(valid=False, error="Link expired. Request a new link.")

    mode = "reset" if account.password_hash else "activation"
    return InvitationValidationResponse(valid=True, mode=mode, email=account.email)


def set_password_with_invitation(db: Session, *, token: str | None, password: str | None) -> AppUser:
    if not token or not password:
        raise _bad_request("Token and password required")
    _ensure_password_complexity(password)

    user = _find_by_invitation(db, token.strip())
    expires_at = as_utc(user.invitation_expires_at) if user else None
    if not user or not expires_at or expires_at < datetime.now(timezone.utc):
        raise _bad_request("Invalid or expired token")

    user.password_hash = hash_password(password)
    user.is_active = True
    user.email_verified = True
    user.invitation_token = None
    user.invitation_expires_at = None
    user.session_token = None
    user.session_expires_at = None
    user.updated_at = utcnow()
    db.commit()
    db.refresh(user)
    logger.info(f"Password set through invitation for {user.email}")
    return user


def _reset_base_url(app_url: str | None, origin: str | None) -> str:
    if app_url and app_url.startswith("http"):
        return app_url.rstrip("/")
    return (origin or settings.site_url).rstrip("/")


def request_password_reset(
    db: Session, *, email: str | None, app_url: str | None = None, origin: str | None = None
) -> PasswordResetResponse:
    """Issue a fresh invitation token for an active account and email the reset link.

    Unknown and inactive accounts get a ``success=False`` body with an ``error``
    code rather than an HTTP error, so the sign-in page can show the message.
    """
    try:
        normalized = normalize_email(email)
    except ValidationError as exc:
        raise _bad_request(str(exc)) from exc

    user = db.query(AppUser).filter(AppUser.email == normalized).first()
    if not user:
        logger.info(f"Password reset requested for unknown account: {normalized}")
        return PasswordResetResponse(
            success=False,
            error="not_found",
            message="No account found with this email address. Please contact your school administration.",
        )
    if not user.is_active:
        logger.info(f"Password reset requested for inactive account: {normalized}")
        return PasswordResetResponse(
            success=False,
            error="inactive",
            message="Your account is inactive. Please contact your school administration.",
        )

    user.invitation_token = generate_session_token()
    user.invitation_expires_at = utcnow() + timedelta(hours=settings.password_reset_hours)
    db.commit()

    school = db.query(School).filter(School.id == user.school_id).first() if user.school_id else None
    reset_url = f"{_reset_base_url(app_url, origin)}/set-password?token={user.invitation_token}"
    try:
        send_password_reset_email(
            recipient_email=user.email,
            full_name=f"{user.first_name} {user.last_name}".strip(),
            school_name=school.name if school else None,
            school_identifier=school.identifier if school else None,
            reset_url=reset_url,
        )
    except NotificationDispatchError as exc:
        logger.error(f"Password reset email to {user.email} failed: {exc}")
        return PasswordResetResponse(success=False, error="email_failed", message="The reset email could not be sent")

    logger.info(f"Password reset email sent to {user.email}")
    return PasswordResetResponse(message="A password reset email has been sent to your address.")


def get_user_permissions(db: Session, *, session_token: str | None, school_id: str | None) -> list[str]:
    if not session_token or not school_id:
        raise _bad_request("sessionToken and schoolId required")

    ctx = resolve_session(db, session_token)
    role_ids = [
        row.school_role_id
        for row in db.query(UserSchoolRole)
        .filter(UserSchoolRole.user_id == ctx.user_id, UserSchoolRole.school_id == school_id)
        .all()
        if row.school_role_id
    ]
    if not role_ids:
        return []

    keys = db.query(SchoolRolePermission.permission_key).filter(SchoolRolePermission.role_id.in_(role_ids)).all()
    return sorted({key for (key,) in keys if key})


def school_block_reason(db: Session, school: School, today: date | None = None) -> str | None:
    if not school.is_active:
        return "deactivated"

    today = today or datetime.now(timezone.utc).date()
    latest = (
        db.query(Subscription)
        .filter(Subscription.school_id == school.id, Subscription.status == "active")
        .order_by(Subscription.start_date.desc())
        .first()
    )
    if not latest:
        return "no-subscription"
    if latest.end_date and latest.end_date < today:
        return "expired"
    return None


def check_school_access(db: Session, *, session_token: str | None, school_id: str | None) -> str | None:
    if not session_token or not school_id:
        raise _bad_request("Missing parameters")

    ctx = validate_session(db, session_token, required_school_id=school_id)
    school = db.query(School).filter(School.id == school_id).first()
    if not school:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="School not found")
    if is_global_admin(ctx.roles):
        return None

    reason = school_block_reason(db, school)
    if reason:
        logger.warning(f"Access to school {school_id} blocked: {reason}")
    return reason


def find_student_by_email(db: Session, *, school_id: str | None, email: str | None) -> Student:
    if not school_id or not email:
        raise _bad_request("Missing parameters")

    normalized = email.strip().lower()
    student = (
        db.query(Student)
        .join(StudentSchool, StudentSchool.student_id == Student.id)
        .filter(
            StudentSchool.school_id == school_id,
            StudentSchool.is_active.is_(True),
            Student.email == normalized,
        )
        .first()
    )
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student email not found in this school")
    return student


def seed_global_admin(db: Session) -> None:
    if not settings.global_admin_email or not settings.global_admin_password:
        return

    email = normalize_email(settings.global_admin_email)
    if db.query(AppUser).filter(AppUser.email == email).first():
        return

    user = AppUser(
        email=email,
        password_hash=hash_password(settings.global_admin_password),
        first_name="Global",
        last_name="Administrator",
        is_active=True,
        email_verified=True,
    )
    user.roles.append(AppUserRole(role=AppRole.GLOBAL_ADMIN, school_id=None))
    db.add(user)
    db.commit()
    logger.info(f"Seeded global administrator {email}")
