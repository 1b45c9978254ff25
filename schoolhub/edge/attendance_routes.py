from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .attendance import (
    create_attendance_session,
    deactivate_attendance_session,
    get_event_attendance,
    get_scan_context,
    mark_attendance,
)
from .database import get_db_session
from .schemas import (
    AttendanceListResponse,
    AttendanceOut,
    AttendanceRecordResponse,
    AttendanceSessionOut,
    AttendanceSessionResponse,
    AttendanceWithStudentOut,
    CreateAttendanceSessionRequest,
    DeactivateAttendanceSessionRequest,
    EventAttendanceRequest,
    EventOut,
    MarkAttendanceRequest,
    ScanContextRequest,
    ScanContextResponse,
    SchoolSummaryOut,
    SuccessResponse,
)

router = APIRouter(prefix="/functions/v1", tags=["Event Attendance"])


@router.post("/create-event-attendance-session", response_model=AttendanceSessionResponse)
def create_session_route(payload: CreateAttendanceSessionRequest, db: Session = Depends(get_db_session)):
    session = create_attendance_session(
        db,
        session_token=payload.session_token,
        event_id=payload.event_id,
        school_id=payload.school_id,
        expiration_minutes=payload.expiration_minutes,
    )
    return AttendanceSessionResponse(session=AttendanceSessionOut.model_validate(session))


@router.post("/deactivate-event-attendance-session", response_model=SuccessResponse)
def deactivate_session_route(payload: DeactivateAttendanceSessionRequest, db: Session = Depends(get_db_session)):
    deactivate_attendance_session(db, session_token=payload.session_token, session_id=payload.session_id)
    return SuccessResponse()


@router.post("/get-event-attendance", response_model=AttendanceListResponse)
def event_attendance_route(payload: EventAttendanceRequest, db: Session = Depends(get_db_session)):
    records = get_event_attendance(db, session_token=payload.session_token, event_id=payload.event_id)
    return AttendanceListResponse(attendance=[AttendanceWithStudentOut.model_validate(r) for r in records])


@router.post("/get-event-attendance-scan-context", response_model=ScanContextResponse)
def scan_context_route(payload: ScanContextRequest, db: Session = Depends(get_db_session)):
    session, event, school = get_scan_context(db, session_code=payload.session_code)
    return ScanContextResponse(
        session=AttendanceSessionOut.model_validate(session),
        event=EventOut.model_validate(event),
        school=SchoolSummaryOut.model_validate(school) if school else None,
    )


@router.post("/mark-event-attendance", response_model=AttendanceRecordResponse)
def mark_attendance_route(payload: MarkAttendanceRequest, db: Session = Depends(get_db_session)):
    record = mark_attendance(
        db,
        session_code=payload.session_code,
        participant_name=payload.participant_name,
        participant_email=payload.participant_email,
        participant_phone=payload.participant_phone,
        student_id=payload.student_id,
    )
    return AttendanceRecordResponse(attendance=AttendanceOut.model_validate(record))
