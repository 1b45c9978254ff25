from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .database import get_db_session
from .schemas import (
    AuthSessionResponse,
    ChangePasswordRequest,
    FindStudentRequest,
    InvitationTokenRequest,
    InvitationValidationResponse,
    LoginRequest,
    PasswordResetRequest,
    PasswordResetResponse,
    PermissionsResponse,
    SchoolAccessResponse,
    SchoolScopedRequest,
    SessionTokenRequest,
    SetPasswordRequest,
    SetPasswordResponse,
    StudentLookupResponse,
    StudentOut,
    SuccessResponse,
)
from .services import (
    authenticate_user,
    change_password,
    check_school_access,
    find_student_by_email,
    get_user_permissions,
    logout,
    refresh_session,
    request_password_reset,
    set_password_with_invitation,
    validate_invitation_token,
)

router = APIRouter(prefix="/functions/v1", tags=["Auth & Accounts"])


def client_ip(request: Request) -> str:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


@router.post("/authenticate-user", response_model=AuthSessionResponse, response_model_exclude={"valid"})
def authenticate(payload: LoginRequest, request: Request, db: Session = Depends(get_db_session)):
    return authenticate_user(db, email=payload.email, password=payload.password, client_ip=client_ip(request))


@router.post("/validate-session", response_model=AuthSessionResponse)
def validate_session_route(payload: SessionTokenRequest, db: Session = Depends(get_db_session)):
    return refresh_session(db, session_token=payload.session_token)


@router.post("/logout", response_model=SuccessResponse)
def logout_route(payload: SessionTokenRequest, db: Session = Depends(get_db_session)):
    logout(db, session_token=payload.session_token)
    return SuccessResponse(message="Signed out")


@router.post("/change-password", response_model=SuccessResponse)
def change_password_route(payload: ChangePasswordRequest, db: Session = Depends(get_db_session)):
    change_password(
        db,
        session_token=payload.session_token,
        user_id=payload.user_id,
        current_password=payload.current_password,
        new_password=payload.new_password,
    )
    return SuccessResponse(message="Password changed successfully")


@router.post("/validate-invitation-token", response_model=InvitationValidationResponse, response_model_exclude_none=True)
def validate_invitation_route(payload: InvitationTokenRequest, db: Session = Depends(get_db_session)):
    if not payload.token:
        return JSONResponse(status_code=400, content={"valid": False, "error": "Token required"})
    return validate_invitation_token(db, token=payload.token)


@router.post("/set-user-password", response_model=SetPasswordResponse)
def set_user_password_route(payload: SetPasswordRequest, db: Session = Depends(get_db_session)):
    user = set_password_with_invitation(db, token=payload.token, password=payload.password)
    return SetPasswordResponse(
        message="Password updated. You can now sign in.",
        email=user.email,
    )


@router.post("/request-password-reset", response_model=PasswordResetResponse)
def request_password_reset_route(payload: PasswordResetRequest, request: Request, db: Session = Depends(get_db_session)):
    return request_password_reset(
        db, email=payload.email, app_url=payload.app_url, origin=request.headers.get("origin")
    )


@router.post("/get-user-permissions", response_model=PermissionsResponse)
def user_permissions_route(payload: SchoolScopedRequest, db: Session = Depends(get_db_session)):
    permissions = get_user_permissions(db, session_token=payload.session_token, school_id=payload.school_id)
    return PermissionsResponse(permissions=permissions)


@router.post("/check-school-access", response_model=SchoolAccessResponse)
def school_access_route(payload: SchoolScopedRequest, db: Session = Depends(get_db_session)):
    reason = check_school_access(db, session_token=payload.session_token, school_id=payload.school_id)
    return SchoolAccessResponse(blocked=reason is not None, reason=reason)


@router.post("/find-student-by-email", response_model=StudentLookupResponse)
def find_student_route(payload: FindStudentRequest, db: Session = Depends(get_db_session)):
    student = find_student_by_email(db, school_id=payload.school_id, email=payload.email)
    return StudentLookupResponse(student=StudentOut.model_validate(student))
