import os
from dataclasses import dataclass


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    session_ttl_days: int = int(os.getenv("SESSION_TTL_DAYS", "7"))
    session_refresh_window_hours: int = int(os.getenv("SESSION_REFRESH_WINDOW_HOURS", "24"))
    attendance_session_default_minutes: int = int(os.getenv("ATTENDANCE_SESSION_DEFAULT_MINUTES", "120"))
    attendance_session_max_minutes: int = int(os.getenv("ATTENDANCE_SESSION_MAX_MINUTES", "1440"))
    login_max_attempts: int = int(os.getenv("LOGIN_MAX_ATTEMPTS", "5"))
    login_window_minutes: int = int(os.getenv("LOGIN_WINDOW_MINUTES", "15"))
    change_password_max_attempts: int = int(os.getenv("CHANGE_PASSWORD_MAX_ATTEMPTS", "3"))
    change_password_window_minutes: int = int(os.getenv("CHANGE_PASSWORD_WINDOW_MINUTES", "60"))
    login_notifications_enabled: bool = _env_bool("LOGIN_NOTIFICATIONS_ENABLED", "false")
    smtp_host: str = os.getenv("SMTP_SERVER", "smtp.gmail.com")
    smtp_port: int = int(os.getenv("SMTP_PORT", "587"))
    smtp_username: str = os.getenv("SMTP_EMAIL", "")
    smtp_password: str = os.getenv("SMTP_PASSWORD", "").replace(" ", "")
    password_reset_hours: int = int(os.getenv("PASSWORD_RESET_HOURS", "2"))
    site_url: str = os.getenv("SITE_URL", "http://localhost:5173")
    global_admin_email: str = os.getenv("GLOBAL_ADMIN_EMAIL", "")
    global_admin_password: str = os.getenv("GLOBAL_ADMIN_PASSWORD", "")


settings = Settings()
