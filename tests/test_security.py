import hashlib

import pytest

from schoolhub.edge.security import (
    SESSION_CODE_ALPHABET,
    ValidationError,
    generate_session_code,
    generate_session_token,
    hash_password,
    is_legacy_hash,
    normalize_email,
    password_errors,
    verify_password,
)


def test_normalize_email_trims_and_lowercases():
    assert normalize_email("  Teacher@School.ORG ") == "teacher@school.org"


@pytest.mark.parametrize("value", ["", "   ", None, "invalid-email", "a@b", "with space@x.com"])
def test_normalize_email_rejects_invalid(value):
    with pytest.raises(ValidationError):
        normalize_email(value)


def test_normalize_email_rejects_overlong_address():
    with pytest.raises(ValidationError, match="too long"):
        normalize_email("a" * 250 + "@example.com")


def test_strong_password_has_no_errors():
    assert password_errors("SecurePass123!") == []


@pytest.mark.parametrize(
    "password",
    ["Short1!", "lowercase123!", "UPPERCASE123!", "NoNumberHere!", "NoSpecial1234", "A1!" + "a" * 130],
)
def test_weak_passwords_are_rejected(password):
    assert password_errors(password)


def test_password_errors_are_reported_together():
    errors = password_errors("abc")
    assert len(errors) >= 4


def test_bcrypt_round_trip():
    hashed = hash_password("SecurePass123!")
    assert hashed.startswith("$2")
    assert verify_password("SecurePass123!", hashed)
    assert not verify_password("WrongPass123!", hashed)


def test_legacy_sha256_hash_still_verifies():
    legacy = hashlib.sha256(b"OldPassword1!").hexdigest()
    assert is_legacy_hash(legacy)
    assert verify_password("OldPassword1!", legacy)
    assert not verify_password("Other1!", legacy)


def test_verify_password_tolerates_garbage_hash():
    assert verify_password("anything", "not-a-hash") is False


def test_session_token_is_two_uuids():
    token = generate_session_token()
    assert len(token) == 73
    assert token != generate_session_token()


def test_session_code_shape():
    code = generate_session_code()
    assert len(code) == 8
    assert all(ch in SESSION_CODE_ALPHABET for ch in code)
