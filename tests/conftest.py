from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from schoolhub.edge.database import Base, get_db_session
from schoolhub.edge.models import AppRole, AppUser, AppUserRole, Event, School, Student, StudentSchool
from schoolhub.edge.rate_limit import limiter
from schoolhub.edge.security import generate_session_token, hash_password
from schoolhub.server import app


PASSWORD = "Secure#Pass123"
PASSWORD_HASH = hash_password(PASSWORD)


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture(autouse=True)
def reset_limiter():
    limiter.clear()
    yield
    limiter.clear()


@pytest.fixture
def client(db):
    def override():
        yield db

    app.dependency_overrides[get_db_session] = override
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def school(db):
    school = School(name="Lycee Ibn Khaldoun", identifier="ibn-khaldoun")
    db.add(school)
    db.commit()
    return school


@pytest.fixture
def other_school(db):
    school = School(name="College Al Amal", identifier="al-amal")
    db.add(school)
    db.commit()
    return school


@pytest.fixture
def make_user(db):
    def factory(email, roles=(), *, active=True, logged_in=True, expires_in=timedelta(days=7), **fields):
        user = AppUser(
            email=email,
            password_hash=PASSWORD_HASH,
            first_name=fields.pop("first_name", "Test"),
            last_name=fields.pop("last_name", "User"),
            is_active=active,
            **fields,
        )
        if logged_in:
            user.session_token = generate_session_token()
            user.session_expires_at = datetime.now(timezone.utc) + expires_in
        for role, school_id in roles:
            user.roles.append(AppUserRole(role=role, school_id=school_id))
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return factory


@pytest.fixture
def school_admin(make_user, school):
    return make_user("admin@ibn-khaldoun.test", [(AppRole.SCHOOL_ADMIN, school.id)])


@pytest.fixture
def global_admin(make_user):
    return make_user("root@schoolhub.test", [(AppRole.GLOBAL_ADMIN, None)])


@pytest.fixture
def teacher(make_user, school):
    return make_user("teacher@ibn-khaldoun.test", [(AppRole.TEACHER, school.id)])


@pytest.fixture
def event(db, school):
    start = datetime.now(timezone.utc) + timedelta(hours=1)
    event = Event(
        school_id=school.id,
        title="Open day",
        description="Parents and students visit",
        start_at=start,
        end_at=start + timedelta(hours=3),
        location="Main hall",
    )
    db.add(event)
    db.commit()
    return event


@pytest.fixture
def enrolled_student(db, school):
    student = Student(firstname="Salma", lastname="Bennani", email="salma.bennani@example.com")
    db.add(student)
    db.flush()
    db.add(StudentSchool(student_id=student.id, school_id=school.id, class_id=None, is_active=True))
    db.commit()
    return student
