import hashlib
import hmac
import re
import secrets
import string
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt

from .config import settings


EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
SPECIAL_CHARACTERS = re.compile(r"[!@#$%^&*(),.?\":{}|<>\-_=+\[\]\\;'/~`]")
LEGACY_SHA256_PATTERN = re.compile(r"^[0-9a-f]{64}$")
SESSION_CODE_ALPHABET = string.ascii_uppercase + string.digits
SESSION_CODE_LENGTH = 8
MAX_EMAIL_LENGTH = 254


class ValidationError(Exception):
    pass


def normalize_email(value: str | None) -> str:
    if not value or not isinstance(value, str) or not value.strip():
        raise ValidationError("Email required")
    normalized = value.strip().lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValidationError("Invalid email format")
    if len(normalized) > MAX_EMAIL_LENGTH:
        raise ValidationError("Email too long")
    return normalized


def password_errors(password: str | None) -> list[str]:
    """Return every complexity rule the password breaks; empty means valid."""
    if not password or not isinstance(password, str):
        return ["Password required"]

    errors = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")
    if len(password) > 128:
        errors.append("Password cannot exceed 128 characters")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one digit")
    if not SPECIAL_CHARACTERS.search(password):
        errors.append("Password must contain at least one special character")
    return errors


def _bcrypt_bytes(password: str) -> bytes:
    # bcrypt reads at most 72 bytes; newer releases reject longer input.
    return password.encode("utf-8")[:72]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_bcrypt_bytes(password), bcrypt.gensalt()).decode("utf-8")


def is_legacy_hash(password_hash: str) -> bool:
    return bool(LEGACY_SHA256_PATTERN.match(password_hash or ""))


def verify_password(password: str, password_hash: str) -> bool:
    if is_legacy_hash(password_hash):
        digest = hashlib.sha256(password.encode("utf-8")).hexdigest()
        return hmac.compare_digest(digest, password_hash)
    try:
        return bcrypt.checkpw(_bcrypt_bytes(password), password_hash.encode("utf-8"))
    except Exception:
        return False


def generate_session_token() -> str:
    return f"{uuid.uuid4()}-{uuid.uuid4()}"


def session_expiration(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return now + timedelta(days=settings.session_ttl_days)


def generate_session_code(length: int = SESSION_CODE_LENGTH) -> str:
    return "".join(secrets.choice(SESSION_CODE_ALPHABET) for _ in range(length))
