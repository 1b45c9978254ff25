import hashlib
from datetime import datetime, timedelta, timezone

from schoolhub.edge.models import AppRole, AppUser, as_utc
from schoolhub.edge.security import verify_password

from .conftest import PASSWORD


def login(client, email, password=PASSWORD, **headers):
    return client.post("/functions/v1/authenticate-user", json={"email": email, "password": password}, headers=headers)


def test_login_issues_session_and_primary_role(client, db, school_admin, school):
    res = login(client, "  ADMIN@ibn-khaldoun.test ")
    assert res.status_code == 200
    body = res.json()

    assert body["user"]["email"] == "admin@ibn-khaldoun.test"
    assert body["roles"] == [{"role": "school_admin", "school_id": school.id}]
    assert body["primaryRole"] == "school_admin"
    assert body["primarySchoolId"] == school.id
    assert body["primarySchoolIdentifier"] == "ibn-khaldoun"
    assert "valid" not in body

    db.expire_all()
    user = db.get(AppUser, school_admin.id)
    assert user.session_token == body["sessionToken"]
    assert user.last_login is not None
    assert as_utc(user.session_expires_at) > datetime.now(timezone.utc) + timedelta(days=6)


def test_primary_role_follows_priority(client, make_user, school):
    make_user("multi@x.test", [(AppRole.TEACHER, school.id), (AppRole.GLOBAL_ADMIN, None)], logged_in=False)
    body = login(client, "multi@x.test").json()
    assert body["primaryRole"] == "global_admin"
    assert body["primarySchoolId"] is None


def test_login_rejections(client, db, make_user):
    make_user("inactive@x.test", active=False)
    pending = make_user("pending@x.test")
    pending.password_hash = None
    db.commit()

    assert login(client, "not-an-email").status_code == 400
    assert login(client, "someone@x.test", password="").status_code == 400

    res = login(client, "ghost@x.test")
    assert res.status_code == 401
    assert res.json() == {"success": False, "message": "Incorrect email or password"}

    assert login(client, "inactive@x.test").status_code == 401
    assert login(client, "pending@x.test").json()["message"].startswith("Account awaiting activation")
    assert login(client, "pending@x.test", password="Wrong#Pass1").status_code == 401


def test_login_is_rate_limited(client, teacher):
    for _ in range(5):
        assert login(client, teacher.email, password="Wrong#Pass1").status_code == 401
    res = login(client, teacher.email)
    assert res.status_code == 429
    assert "15 minute" in res.json()["message"]


def test_successful_login_resets_the_counter(client, teacher):
    for _ in range(4):
        login(client, teacher.email, password="Wrong#Pass1")
    assert login(client, teacher.email).status_code == 200
    for _ in range(4):
        assert login(client, teacher.email, password="Wrong#Pass1").status_code == 401


def test_legacy_hash_is_upgraded_on_login(client, db, make_user):
    user = make_user("legacy@x.test", logged_in=False)
    user.password_hash = hashlib.sha256(b"Legacy#Pass1").hexdigest()
    db.commit()

    assert login(client, "legacy@x.test", password="Legacy#Pass1").status_code == 200
    db.expire_all()
    upgraded = db.get(AppUser, user.id).password_hash
    assert upgraded.startswith("$2")
    assert verify_password("Legacy#Pass1", upgraded)


def test_validate_session_returns_payload(client, teacher):
    res = client.post("/functions/v1/validate-session", json={"sessionToken": teacher.session_token})
    assert res.status_code == 200
    body = res.json()
    assert body["valid"] is True
    assert body["sessionToken"] == teacher.session_token
    assert body["primaryRole"] == "teacher"


def test_validate_session_rotates_token_near_expiry(client, db, make_user):
    user = make_user("soon@x.test", expires_in=timedelta(hours=2))
    old_token = user.session_token

    body = client.post("/functions/v1/validate-session", json={"sessionToken": old_token}).json()
    assert body["sessionToken"] != old_token

    db.expire_all()
    assert db.get(AppUser, user.id).session_token == body["sessionToken"]


def test_validate_session_clears_expired_token(client, db, make_user):
    user = make_user("old@x.test", expires_in=timedelta(minutes=-5))
    res = client.post("/functions/v1/validate-session", json={"sessionToken": user.session_token})
    assert res.status_code == 401
    assert res.json()["message"] == "Session expired"

    db.expire_all()
    assert db.get(AppUser, user.id).session_token is None


def test_validate_session_requires_token(client):
    assert client.post("/functions/v1/validate-session", json={}).status_code == 400
    assert client.post("/functions/v1/validate-session", json={"sessionToken": "x"}).status_code == 401


def test_logout_clears_session(client, db, teacher):
    res = client.post("/functions/v1/logout", json={"sessionToken": teacher.session_token})
    assert res.status_code == 200
    assert res.json()["success"] is True

    db.expire_all()
    assert db.get(AppUser, teacher.id).session_token is None


def test_change_password(client, db, teacher):
    payload = {
        "sessionToken": teacher.session_token,
        "userId": teacher.id,
        "currentPassword": PASSWORD,
        "newPassword": "Brand#New2024",
    }
    res = client.post("/functions/v1/change-password", json=payload)
    assert res.status_code == 200

    db.expire_all()
    assert verify_password("Brand#New2024", db.get(AppUser, teacher.id).password_hash)


def test_change_password_rejections(client, teacher, school_admin):
    base = {"sessionToken": teacher.session_token, "userId": teacher.id, "currentPassword": PASSWORD}

    assert client.post("/functions/v1/change-password", json={**base}).status_code == 400

    other = {**base, "userId": school_admin.id, "newPassword": "Brand#New2024"}
    assert client.post("/functions/v1/change-password", json=other).status_code == 401

    weak = client.post("/functions/v1/change-password", json={**base, "newPassword": "weak"})
    assert weak.status_code == 400

    wrong = {**base, "currentPassword": "Wrong#Pass1", "newPassword": "Brand#New2024"}
    assert client.post("/functions/v1/change-password", json=wrong).status_code == 401
    assert client.post("/functions/v1/change-password", json=wrong).status_code == 401

    assert client.post("/functions/v1/change-password", json=wrong).status_code == 429
