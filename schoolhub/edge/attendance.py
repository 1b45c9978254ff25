"""QR-code event attendance.

An administrator opens a time-boxed session for an event; the session code is
rendered as a QR code and participants submit their name (and optionally an
email or student id) against it. The duplicate check runs as a read before the
insert, so two simultaneous scans for the same participant can both succeed.
"""

import logging
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, status
from sqlalchemy.orm import Session, joinedload

from .config import settings
from .middleware import require_school_admin, resolve_session
from .models import Event, EventAttendance, EventAttendanceSession, School, as_utc
from .security import generate_session_code


logger = logging.getLogger(__name__)

MISSING_PARAMETERS = "Missing parameters"
SESSION_EXPIRED = "The session has expired"
ALREADY_MARKED = "You have already marked your attendance for this event"
CODE_ATTEMPTS = 5


def _not_found(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


def _unique_session_code(db: Session) -> str:
    for _ in range(CODE_ATTEMPTS):
        code = generate_session_code()
        taken = db.query(EventAttendanceSession.id).filter(EventAttendanceSession.session_code == code).first()
        if not taken:
            return code
    raise RuntimeError("Could not allocate a unique attendance session code")


def create_attendance_session(
    db: Session,
    *,
    session_token: str | None,
    event_id: str | None,
    school_id: str | None,
    expiration_minutes: int | None = None,
) -> EventAttendanceSession:
    if not session_token or not event_id or not school_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_PARAMETERS)

    minutes = expiration_minutes if expiration_minutes is not None else settings.attendance_session_default_minutes
    if minutes < 1 or minutes > settings.attendance_session_max_minutes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"expirationMinutes must be between 1 and {settings.attendance_session_max_minutes}",
        )

    ctx = resolve_session(db, session_token)
    require_school_admin(ctx, school_id)

    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise _not_found("Event not found")
    if event.school_id != school_id:
        logger.warning(f"Event {event_id} does not belong to school {school_id}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    session = EventAttendanceSession(
        event_id=event_id,
        school_id=school_id,
        session_code=_unique_session_code(db),
        expires_at=datetime.now(timezone.utc) + timedelta(minutes=minutes),
        is_active=True,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    logger.info(f"Attendance session {session.id} opened for event {event_id} by {ctx.user_id}")
    return session


def deactivate_attendance_session(db: Session, *, session_token: str | None, session_id: str | None) -> None:
    if not session_token or not session_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_PARAMETERS)

    ctx = resolve_session(db, session_token)
    session = db.query(EventAttendanceSession).filter(EventAttendanceSession.id == session_id).first()
    if not session:
        raise _not_found("Session not found")
    require_school_admin(ctx, session.school_id)

    session.is_active = False
    db.commit()
    logger.info(f"Attendance session {session_id} closed by {ctx.user_id}")


def get_event_attendance(db: Session, *, session_token: str | None, event_id: str | None) -> list[EventAttendance]:
    if not session_token or not event_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_PARAMETERS)

    ctx = resolve_session(db, session_token)
    event = db.query(Event).filter(Event.id == event_id).first()
    if not event:
        raise _not_found("Event not found")
    require_school_admin(ctx, event.school_id)

    return (
        db.query(EventAttendance)
        .options(joinedload(EventAttendance.student))
        .filter(EventAttendance.event_id == event_id)
        .order_by(EventAttendance.marked_at.desc())
        .all()
    )


def _active_session_for_code(db: Session, session_code: str, invalid_message: str) -> EventAttendanceSession:
    session = (
        db.query(EventAttendanceSession)
        .filter(EventAttendanceSession.session_code == session_code, EventAttendanceSession.is_active.is_(True))
        .first()
    )
    if not session:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=invalid_message)

    if as_utc(session.expires_at) < datetime.now(timezone.utc):
        session.is_active = False
        try:
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(f"Could not close expired attendance session {session.id}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=SESSION_EXPIRED)
    return session


def get_scan_context(
    db: Session, *, session_code: str | None
) -> tuple[EventAttendanceSession, Event, School | None]:
    if not session_code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Session code required")

    session = _active_session_for_code(db, session_code, "Invalid or expired session")
    event = db.query(Event).filter(Event.id == session.event_id).first()
    if not event:
        raise _not_found("Event not found")
    school = db.query(School).filter(School.id == session.school_id).first()
    return session, event, school


def mark_attendance(
    db: Session,
    *,
    session_code: str | None,
    participant_name: str | None,
    participant_email: str | None = None,
    participant_phone: str | None = None,
    student_id: str | None = None,
) -> EventAttendance:
    if not session_code or not participant_name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_PARAMETERS)

    session = _active_session_for_code(db, session_code, "Invalid QR code or expired session")
    normalized_email = (participant_email or "").strip().lower() or None

    duplicate = db.query(EventAttendance.id).filter(EventAttendance.event_id == session.event_id)
    if student_id:
        duplicate = duplicate.filter(EventAttendance.student_id == student_id)
    elif normalized_email:
        duplicate = duplicate.filter(EventAttendance.participant_email == normalized_email)
    else:
        duplicate = None

    if duplicate is not None and duplicate.first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=ALREADY_MARKED)

    record = EventAttendance(
        event_id=session.event_id,
        session_id=session.id,
        school_id=session.school_id,
        participant_name=participant_name,
        participant_email=normalized_email,
        participant_phone=participant_phone,
        student_id=student_id,
        method="qr_scan",
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    logger.info(f"Attendance recorded for event {session.event_id} via session {session.id}")
    return record
