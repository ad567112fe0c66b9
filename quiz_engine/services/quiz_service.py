"""
Quiz Service
=====================================
Service layer for quiz definitions: validation, storage, derived fields,
publishing and the structure lock.

Features:
- Structural validation of choice questions with the offending question index
- Numeric normalization (marks, negative marks, time limits, attempt caps)
- Derived grading fields (total marks, default passing marks)
- Publish / cancel / delete with their preconditions
- Structure lock once any student has attempted the quiz
- Tenant-scoped lookups and teacher/student listings

Dependencies:
- Database models for persistence
- Security helpers for quiz password hashing
"""

import math
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from quiz_engine.core.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from quiz_engine.core.exceptions import (
    AuthzError, ImmutableStructureError, NotFoundError, PublishError, StructureError, ValidationError
)
from quiz_engine.core.security import get_password_hash
from quiz_engine.models.quiz import (
    Quiz, Question, QuestionOption, QuizAttempt, QuizStatus, QuestionType, CHOICE_TYPES
)
from quiz_engine.models.user import User, UserRole, TEACHING_ROLES
from quiz_engine.schemas.quiz import QuizCreate, QuizUpdate, QuestionCreate
from quiz_engine.services.validity import as_utc, utcnow, is_quiz_active, is_attempt_valid

logger = logging.getLogger(__name__)

MUTABLE_AFTER_ATTEMPTS = {"description", "instructions", "end_date"}

MIN_MARKS, MAX_MARKS = 0.5, 100
MIN_TIME_LIMIT, MAX_TIME_LIMIT = 10, 3600
MIN_DURATION, MAX_DURATION = 1, 300
MIN_ATTEMPTS, MAX_ATTEMPTS = 1, 10


def _clamp(value, low, high):
    return max(low, min(high, value))


def validate_questions(questions: List[QuestionCreate]) -> None:
    """Raise StructureError for the first structurally invalid question (1-based index)."""
    for index, question in enumerate(questions, start=1):
        if not (question.question_text or "").strip():
            raise StructureError(f"Question {index}: question text is required", question_index=index)

        if question.question_type not in CHOICE_TYPES:
            continue

        if len(question.options) < 2:
            raise StructureError(
                f"Question {index}: At least 2 options are required for choice questions",
                question_index=index,
            )

        correct_count = sum(1 for option in question.options if option.is_correct)
        if correct_count == 0:
            raise StructureError(
                f"Question {index}: At least one correct option is required",
                question_index=index,
            )
        if question.question_type == QuestionType.single_choice and correct_count != 1:
            raise StructureError(
                f"Question {index}: Single choice questions must have exactly one correct option",
                question_index=index,
            )


def normalize_question(question: QuestionCreate, order_index: int) -> Question:
    time_limit = None
    if question.time_limit is not None:
        time_limit = int(_clamp(question.time_limit, MIN_TIME_LIMIT, MAX_TIME_LIMIT))

    row = Question(
        order_index=order_index,
        question_text=question.question_text.strip(),
        question_type=question.question_type,
        correct_answer=(question.correct_answer or "").strip(),
        marks=float(_clamp(question.marks, MIN_MARKS, MAX_MARKS)),
        negative_marks=float(max(0, question.negative_marks or 0)),
        difficulty_level=question.difficulty_level,
        time_limit=time_limit,
        required=question.required,
        attachments=question.attachments or [],
    )
    if question.question_type in CHOICE_TYPES:
        row.options = [
            QuestionOption(
                text=option.text.strip(),
                is_correct=option.is_correct,
                explanation=option.explanation,
                order_index=i,
            )
            for i, option in enumerate(question.options)
        ]
    return row


def compute_derived(quiz: Quiz, passing_marks: Optional[float] = None) -> Quiz:
    """Recompute total marks; default passing marks to ceil(50%) when unset."""
    quiz.total_marks = sum(question.marks or 0 for question in quiz.questions)
    if passing_marks is not None:
        quiz.passing_marks = passing_marks
    if not quiz.passing_marks:
        quiz.passing_marks = math.ceil(quiz.total_marks * 0.5)
    return quiz


def _validate_window(start_date: datetime, end_date: datetime, now: datetime) -> None:
    if as_utc(start_date) >= as_utc(end_date):
        raise ValidationError("End date must be after start date")
    if as_utc(end_date) <= now:
        raise ValidationError("End date must be in the future")


def _validate_duration(duration: int) -> None:
    if duration < MIN_DURATION or duration > MAX_DURATION:
        raise ValidationError(f"Duration must be between {MIN_DURATION} and {MAX_DURATION} minutes")


def _apply_settings(quiz: Quiz, settings) -> None:
    quiz.max_attempts = int(_clamp(settings.max_attempts, MIN_ATTEMPTS, MAX_ATTEMPTS))
    quiz.shuffle_questions = settings.shuffle_questions
    quiz.shuffle_options = settings.shuffle_options
    quiz.show_results = settings.show_results
    quiz.show_correct_answers = settings.show_correct_answers
    quiz.allow_review = settings.allow_review
    quiz.require_password = settings.require_password
    if settings.require_password:
        if settings.password:
            quiz.password_hash = get_password_hash(settings.password)
        elif not quiz.password_hash:
            raise ValidationError("A password is required when require_password is enabled")
    else:
        quiz.password_hash = None
    quiz.proctoring = settings.proctoring.model_dump()


def ensure_teacher_access(quiz: Quiz, user: User) -> None:
    """Creator, a teacher of the quiz's class+subject, or an admin of the school."""
    if quiz.school_id != user.school_id:
        raise NotFoundError("Quiz not found")
    if user.role == UserRole.school_admin:
        return
    if user.role not in TEACHING_ROLES:
        raise AuthzError("You don't have access to this quiz")
    if quiz.created_by == user.id or user.teaches(quiz.class_id, quiz.subject_id):
        return
    raise AuthzError("You don't have access to this quiz")


def ensure_owner(quiz: Quiz, user: User, action: str) -> None:
    if quiz.created_by != user.id:
        raise AuthzError(f"You can only {action} your own quizzes")


def get_quiz(db: Session, quiz_id: int, school_id: str) -> Quiz:
    quiz = db.query(Quiz).filter(Quiz.id == quiz_id, Quiz.school_id == school_id).first()
    if not quiz:
        raise NotFoundError("Quiz not found")
    return quiz


def get_quiz_for_user(db: Session, quiz_id: int, user: User) -> Quiz:
    """Tenant-scoped lookup with role-aware access checks."""
    quiz = get_quiz(db, quiz_id, user.school_id)
    if user.role == UserRole.student:
        if not user.is_enrolled_in(quiz.class_id):
            raise AuthzError("You are not enrolled in this class")
    else:
        ensure_teacher_access(quiz, user)
    return quiz


def has_attempts(db: Session, quiz_id: int) -> bool:
    return db.query(QuizAttempt.id).filter(QuizAttempt.quiz_id == quiz_id).first() is not None


def create_quiz(db: Session, data: QuizCreate, creator: User, now: Optional[datetime] = None) -> Quiz:
    now = as_utc(now) or utcnow()

    _validate_window(data.start_date, data.end_date, now)
    _validate_duration(data.duration)

    if creator.role in TEACHING_ROLES and not creator.teaches(data.class_id, data.subject_id):
        logger.warning(f"User {creator.id} tried to create a quiz for class {data.class_id} / subject {data.subject_id}")
        raise AuthzError("You are not authorized to create quizzes for this class and subject")

    validate_questions(data.questions)

    quiz = Quiz(
        title=data.title.strip(),
        description=(data.description or "").strip(),
        instructions=(data.instructions or "").strip(),
        school_id=creator.school_id,
        class_id=data.class_id,
        subject_id=data.subject_id,
        created_by=creator.id,
        start_date=as_utc(data.start_date),
        end_date=as_utc(data.end_date),
        duration=data.duration,
        grading_method=data.grading.grading_method,
        partial_credits=data.grading.partial_credits,
        features=data.features.model_dump(),
        status=QuizStatus.draft,
    )
    _apply_settings(quiz, data.settings)
    quiz.questions = [normalize_question(question, i) for i, question in enumerate(data.questions)]
    compute_derived(quiz, data.grading.passing_marks)

    db.add(quiz)
    db.commit()
    db.refresh(quiz)

    logger.info(f"Created quiz {quiz.id} with {len(quiz.questions)} questions (total marks {quiz.total_marks})")
    return quiz


def publish_quiz(db: Session, quiz_id: int, user: User, now: Optional[datetime] = None) -> Quiz:
    now = as_utc(now) or utcnow()
    quiz = get_quiz(db, quiz_id, user.school_id)
    ensure_owner(quiz, user, "publish")

    if quiz.status == QuizStatus.cancelled:
        raise PublishError("Cannot publish a cancelled quiz")
    if not quiz.questions:
        raise PublishError("Cannot publish quiz without questions")
    if as_utc(quiz.end_date) <= now:
        raise PublishError("Cannot publish quiz with end date in the past")

    quiz.status = QuizStatus.published
    quiz.published_at = now
    db.commit()
    db.refresh(quiz)

    logger.info(f"Quiz {quiz.id} published by {user.id}")
    return quiz


def update_quiz(db: Session, quiz_id: int, patch: QuizUpdate, user: User, now: Optional[datetime] = None) -> Quiz:
    now = as_utc(now) or utcnow()
    quiz = get_quiz(db, quiz_id, user.school_id)
    ensure_owner(quiz, user, "update")

    requested = patch.model_dump(exclude_unset=True)
    if has_attempts(db, quiz.id):
        restricted = sorted(set(requested) - MUTABLE_AFTER_ATTEMPTS)
        if restricted:
            logger.warning(f"Rejected structural update of quiz {quiz.id}: {restricted}")
            raise ImmutableStructureError(
                "Cannot modify quiz structure after students have attempted it. "
                "Only description, instructions, and end date can be updated.",
                {"fields": restricted},
            )

    if "end_date" in requested or "start_date" in requested:
        start_date = patch.start_date if "start_date" in requested else quiz.start_date
        end_date = patch.end_date if "end_date" in requested else quiz.end_date
        if start_date is None or end_date is None:
            raise ValidationError("Start and end dates cannot be cleared")
        _validate_window(start_date, end_date, now)
        quiz.start_date = as_utc(start_date)
        quiz.end_date = as_utc(end_date)

    if "duration" in requested:
        if patch.duration is None:
            raise ValidationError("Duration cannot be cleared")
        _validate_duration(patch.duration)
        quiz.duration = patch.duration

    if "title" in requested and patch.title is not None:
        quiz.title = patch.title.strip()
    if "description" in requested:
        quiz.description = (patch.description or "").strip()
    if "instructions" in requested:
        quiz.instructions = (patch.instructions or "").strip()
    if patch.settings is not None:
        _apply_settings(quiz, patch.settings)
    if patch.features is not None:
        quiz.features = patch.features.model_dump()

    passing_marks = None
    if patch.grading is not None:
        quiz.grading_method = patch.grading.grading_method
        quiz.partial_credits = patch.grading.partial_credits
        passing_marks = patch.grading.passing_marks

    if patch.questions is not None:
        validate_questions(patch.questions)
        quiz.questions = [normalize_question(question, i) for i, question in enumerate(patch.questions)]
    compute_derived(quiz, passing_marks)

    db.commit()
    db.refresh(quiz)

    logger.info(f"Quiz {quiz.id} updated by {user.id}: {sorted(requested)}")
    return quiz


def cancel_quiz(db: Session, quiz_id: int, user: User) -> Quiz:
    quiz = get_quiz(db, quiz_id, user.school_id)
    ensure_owner(quiz, user, "cancel")
    if has_attempts(db, quiz.id):
        raise ImmutableStructureError("Cannot cancel quiz with existing student attempts")

    quiz.status = QuizStatus.cancelled
    db.commit()
    db.refresh(quiz)
    logger.info(f"Quiz {quiz.id} cancelled by {user.id}")
    return quiz


def delete_quiz(db: Session, quiz_id: int, user: User) -> None:
    quiz = get_quiz(db, quiz_id, user.school_id)
    ensure_owner(quiz, user, "delete")
    if has_attempts(db, quiz.id):
        raise ImmutableStructureError("Cannot delete quiz with existing student attempts")

    db.delete(quiz)
    db.commit()
    logger.info(f"Quiz {quiz_id} deleted by {user.id}")


def _page(page: int, limit: Optional[int]) -> tuple:
    limit = _clamp(limit or DEFAULT_PAGE_SIZE, 1, MAX_PAGE_SIZE)
    page = max(1, page)
    return page, limit, (page - 1) * limit


def list_teacher_quizzes(
    db: Session,
    teacher: User,
    status: Optional[QuizStatus] = None,
    class_id: Optional[str] = None,
    subject_id: Optional[str] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    page, limit, offset = _page(page, limit)

    query = db.query(Quiz).filter(Quiz.created_by == teacher.id, Quiz.school_id == teacher.school_id)
    if status is not None:
        query = query.filter(Quiz.status == status)
    if class_id:
        query = query.filter(Quiz.class_id == class_id)
    if subject_id:
        query = query.filter(Quiz.subject_id == subject_id)

    total = query.count()
    quizzes = query.order_by(Quiz.created_at.desc(), Quiz.id.desc()).offset(offset).limit(limit).all()
    return {
        "quizzes": quizzes,
        "total": total,
        "total_pages": math.ceil(total / limit) if total else 0,
        "current_page": page,
    }


def list_student_quizzes(
    db: Session,
    student: User,
    window: Optional[str] = None,
    subject_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Published quizzes of the student's classes with per-student attempt info.
    window: "upcoming", "active" or "completed".
    """
    now = as_utc(now) or utcnow()
    class_ids = [enrollment.class_id for enrollment in student.enrollments]
    if not class_ids:
        return []

    query = db.query(Quiz).filter(
        Quiz.school_id == student.school_id,
        Quiz.class_id.in_(class_ids),
        Quiz.status == QuizStatus.published,
    )
    if subject_id:
        query = query.filter(Quiz.subject_id == subject_id)

    results = []
    for quiz in query.order_by(Quiz.start_date.asc()).all():
        start, end = as_utc(quiz.start_date), as_utc(quiz.end_date)
        if window == "upcoming" and not start > now:
            continue
        if window == "active" and not (start <= now <= end):
            continue
        if window == "completed" and not end < now:
            continue

        attempts = (
            db.query(QuizAttempt)
            .filter(QuizAttempt.quiz_id == quiz.id, QuizAttempt.student_id == student.id)
            .order_by(QuizAttempt.attempt_number.desc())
            .all()
        )
        scores = [attempt.percentage for attempt in attempts if attempt.percentage is not None]
        resumable = any(is_attempt_valid(attempt, quiz, now) for attempt in attempts)
        results.append({
            "quiz": quiz,
            "student_attempts": len(attempts),
            "can_attempt": is_quiz_active(quiz, now) and (resumable or len(attempts) < quiz.max_attempts),
            "best_score": max(scores) if scores else None,
            "last_attempt": attempts[0] if attempts else None,
        })
    return results
