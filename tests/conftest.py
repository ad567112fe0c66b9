import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from quiz_engine.core.security import create_access_token
from quiz_engine.db.database import Base, get_db
from quiz_engine.models import User, UserRole, ClassEnrollment, TeachingAssignment
from quiz_engine.schemas.quiz import QuizCreate
from quiz_engine.services import quiz_service

SCHOOL_ID = "school-1"
CLASS_ID = "class-10a"
SUBJECT_ID = "math"

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def single_choice(text="2 + 2 = ?", marks=5, negative_marks=1):
    return {
        "question_text": text,
        "question_type": "single_choice",
        "marks": marks,
        "negative_marks": negative_marks,
        "options": [
            {"text": "3", "is_correct": False},
            {"text": "4", "is_correct": True, "explanation": "Two pairs make four"},
            {"text": "5", "is_correct": False},
        ],
    }


def true_false(text="The earth is round", correct=True, marks=2):
    return {
        "question_text": text,
        "question_type": "true_false",
        "marks": marks,
        "options": [
            {"text": "True", "is_correct": correct},
            {"text": "False", "is_correct": not correct},
        ],
    }


def essay(text="Explain the Pythagorean theorem", marks=10):
    return {"question_text": text, "question_type": "essay", "marks": marks, "correct_answer": "a^2 + b^2 = c^2"}


def quiz_payload(now=NOW, questions=None, settings=None, grading=None, duration=10, **overrides):
    data = {
        "title": "Algebra check",
        "description": "Weekly check",
        "instructions": "Answer every question",
        "class_id": CLASS_ID,
        "subject_id": SUBJECT_ID,
        "start_date": now - timedelta(hours=1),
        "end_date": now + timedelta(days=1),
        "duration": duration,
        "questions": questions if questions is not None else [single_choice(), single_choice("3 + 1 = ?")],
        "settings": {"max_attempts": 1, "show_results": "immediately", **(settings or {})},
        "grading": grading or {},
    }
    data.update(overrides)
    return data


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def _user(db, user_id, role, email):
    user = User(id=user_id, name=user_id.title(), email=email, role=role, school_id=SCHOOL_ID)
    db.add(user)
    return user


@pytest.fixture
def teacher(db):
    user = _user(db, "teacher-1", UserRole.teacher, "teacher1@school.edu")
    user.teaching_assignments = [TeachingAssignment(class_id=CLASS_ID, subject_id=SUBJECT_ID)]
    db.commit()
    return user


@pytest.fixture
def other_teacher(db):
    user = _user(db, "teacher-2", UserRole.teacher, "teacher2@school.edu")
    user.teaching_assignments = [TeachingAssignment(class_id="class-9b", subject_id=SUBJECT_ID)]
    db.commit()
    return user


@pytest.fixture
def admin(db):
    user = _user(db, "admin-1", UserRole.school_admin, "admin@school.edu")
    db.commit()
    return user


@pytest.fixture
def student(db):
    user = _user(db, "student-1", UserRole.student, "student1@school.edu")
    user.enrollments = [ClassEnrollment(class_id=CLASS_ID)]
    db.commit()
    return user


@pytest.fixture
def second_student(db):
    user = _user(db, "student-2", UserRole.student, "student2@school.edu")
    user.enrollments = [ClassEnrollment(class_id=CLASS_ID)]
    db.commit()
    return user


@pytest.fixture
def outsider(db):
    user = _user(db, "student-3", UserRole.student, "student3@school.edu")
    user.enrollments = [ClassEnrollment(class_id="class-9b")]
    db.commit()
    return user


@pytest.fixture
def make_quiz(db, teacher):
    """Create (and by default publish) a quiz owned by ``teacher``."""
    def _make(publish=True, now=NOW, **kwargs):
        quiz = quiz_service.create_quiz(db, QuizCreate(**quiz_payload(now=now, **kwargs)), teacher, now=now)
        if publish:
            quiz = quiz_service.publish_quiz(db, quiz.id, teacher, now=now)
        return quiz
    return _make


@pytest.fixture
def client(db):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}
