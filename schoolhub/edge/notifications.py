import logging
import smtplib
from datetime import datetime, timezone
from email.mime.text import MIMEText

from .config import settings


logger = logging.getLogger(__name__)


class NotificationDispatchError(Exception):
    pass


def _send_email(*, recipient_email: str, subject: str, body: str) -> None:
    if not settings.smtp_username or not settings.smtp_password:
        raise NotificationDispatchError("SMTP credentials are missing")

    msg = MIMEText(body)
    msg["Subject"] = subject
    msg["From"] = settings.smtp_username
    msg["To"] = recipient_email

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            server.starttls()
            server.login(settings.smtp_username, settings.smtp_password)
            server.sendmail(settings.smtp_username, [recipient_email], msg.as_string())
    except Exception as exc:
        raise NotificationDispatchError(f"Failed to send email: {exc}") from exc


def send_login_notification(
    *,
    recipient_email: str,
    first_name: str | None,
    ip_address: str,
    logged_in_at: datetime | None = None,
) -> None:
    logged_in_at = logged_in_at or datetime.now(timezone.utc)
    greeting = f"Hello {first_name}," if first_name else "Hello,"
    body = (
        f"{greeting}\n\n"
        "A new sign-in to your school account was recorded.\n"
        f"Time: {logged_in_at.strftime('%Y-%m-%d %H:%M UTC')}\n"
        f"IP address: {ip_address}\n\n"
        "If this was not you, change your password and contact your administrator."
    )
    _send_email(recipient_email=recipient_email, subject="New sign-in to your account", body=body)


def send_password_reset_email(
    *,
    recipient_email: str,
    full_name: str,
    school_name: str | None,
    school_identifier: str | None,
    reset_url: str,
) -> None:
    lines = [
        f"Hello {full_name},",
        "",
        "You asked to reset the password of your school account.",
    ]
    if school_name:
        lines.append(f"School: {school_name}")
    if school_identifier:
        lines.append(f"School identifier: {school_identifier}")
    lines += [
        "",
        f"Choose a new password here: {reset_url}",
        "",
        f"This link is valid for {settings.password_reset_hours} hours. "
        "If you did not ask for a reset, ignore this email.",
    ]
    _send_email(recipient_email=recipient_email, subject="Reset your password", body="\n".join(lines))


def notify_login(*, recipient_email: str, first_name: str | None, ip_address: str) -> bool:
    """Best-effort wrapper used by the login flow; a failed send never fails the login."""
    if not settings.login_notifications_enabled:
        return False
    try:
        send_login_notification(recipient_email=recipient_email, first_name=first_name, ip_address=ip_address)
        return True
    except NotificationDispatchError as exc:
        logger.error(f"Login notification to {recipient_email} failed: {exc}")
        return False
