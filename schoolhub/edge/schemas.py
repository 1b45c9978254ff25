from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class CamelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class OrmModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# --- requests ---------------------------------------------------------------


class LoginRequest(CamelRequest):
    email: str | None = None
    password: str | None = None


class SessionTokenRequest(CamelRequest):
    session_token: str | None = Field(default=None, alias="sessionToken")


class ChangePasswordRequest(SessionTokenRequest):
    user_id: str | None = Field(default=None, alias="userId")
    current_password: str | None = Field(default=None, alias="currentPassword")
    new_password: str | None = Field(default=None, alias="newPassword")


class InvitationTokenRequest(CamelRequest):
    token: str | None = None


class SetPasswordRequest(InvitationTokenRequest):
    password: str | None = None


class PasswordResetRequest(CamelRequest):
    email: str | None = None
    app_url: str | None = Field(default=None, alias="appUrl")


class SchoolScopedRequest(SessionTokenRequest):
    school_id: str | None = Field(default=None, alias="schoolId")


class FindStudentRequest(CamelRequest):
    school_id: str | None = Field(default=None, alias="schoolId")
    email: str | None = None


class CreateAttendanceSessionRequest(SessionTokenRequest):
    event_id: str | None = Field(default=None, alias="eventId")
    school_id: str | None = Field(default=None, alias="schoolId")
    expiration_minutes: int | None = Field(default=None, alias="expirationMinutes")


class DeactivateAttendanceSessionRequest(SessionTokenRequest):
    session_id: str | None = Field(default=None, alias="sessionId")


class EventAttendanceRequest(SessionTokenRequest):
    event_id: str | None = Field(default=None, alias="eventId")


class ScanContextRequest(CamelRequest):
    session_code: str | None = Field(default=None, alias="sessionCode")


class MarkAttendanceRequest(ScanContextRequest):
    participant_name: str | None = Field(default=None, alias="participantName")
    participant_email: str | None = Field(default=None, alias="participantEmail")
    participant_phone: str | None = Field(default=None, alias="participantPhone")
    student_id: str | None = Field(default=None, alias="studentId")


# --- records ----------------------------------------------------------------


class UserOut(OrmModel):
    id: str
    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    avatar_url: str | None = None
    school_id: str | None = None
    teacher_id: str | None = None
    student_id: str | None = None
    is_active: bool


class RoleOut(BaseModel):
    role: str
    school_id: str | None = None


class StudentOut(OrmModel):
    id: str
    firstname: str
    lastname: str
    email: str | None = None


class SchoolSummaryOut(OrmModel):
    id: str
    name: str
    logo_url: str | None = None


class EventOut(OrmModel):
    id: str
    title: str
    description: str | None = None
    start_at: datetime
    end_at: datetime
    location: str | None = None
    school_id: str | None = None


class AttendanceSessionOut(OrmModel):
    id: str
    event_id: str
    school_id: str
    session_code: str
    expires_at: datetime
    is_active: bool
    created_at: datetime


class AttendanceOut(OrmModel):
    id: str
    event_id: str
    session_id: str
    school_id: str
    participant_name: str
    participant_email: str | None = None
    participant_phone: str | None = None
    student_id: str | None = None
    marked_at: datetime
    method: str


class AttendanceWithStudentOut(AttendanceOut):
    student: StudentOut | None = None


# --- responses --------------------------------------------------------------


class SuccessResponse(BaseModel):
    success: bool = True
    message: str | None = None


class AuthSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    valid: bool = True
    user: UserOut
    roles: list[RoleOut]
    primary_role: str = Field(alias="primaryRole")
    primary_school_id: str | None = Field(default=None, alias="primarySchoolId")
    primary_school_identifier: str | None = Field(default=None, alias="primarySchoolIdentifier")
    session_token: str = Field(alias="sessionToken")
    session_expires_at: datetime = Field(alias="sessionExpiresAt")


class InvitationValidationResponse(BaseModel):
    valid: bool
    mode: str | None = None
    email: str | None = None
    error: str | None = None


class SetPasswordResponse(SuccessResponse):
    email: str


class PasswordResetResponse(SuccessResponse):
    error: str | None = None


class PermissionsResponse(SuccessResponse):
    permissions: list[str]


class SchoolAccessResponse(SuccessResponse):
    blocked: bool
    reason: str | None = None


class StudentLookupResponse(SuccessResponse):
    student: StudentOut


class AttendanceSessionResponse(SuccessResponse):
    session: AttendanceSessionOut


class AttendanceRecordResponse(SuccessResponse):
    attendance: AttendanceOut


class AttendanceListResponse(SuccessResponse):
    attendance: list[AttendanceWithStudentOut]


class ScanContextResponse(SuccessResponse):
    session: AttendanceSessionOut
    event: EventOut
    school: SchoolSummaryOut | None = None
