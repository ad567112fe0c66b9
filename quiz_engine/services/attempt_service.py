"""
Attempt Service
=====================================
Service layer for the quiz attempt lifecycle: start/resume, answer recording,
submission, lazy expiry and manual grading.

State machine:
    in_progress -> submitted | auto_submitted | abandoned   (terminal)

Features:
- Reproducible per-student question/option order (seeded by quiz and student)
- Frozen question snapshot per attempt; grading always reads the snapshot
- Lazy expiry: an attempt past its validity window is auto-submitted the next
  time any operation touches it, never by a timer
- Optimistic concurrency: every write bumps QuizAttempt.version; a conflicting
  write is re-read and retried once before giving up
- Batch grading that reports per-item failures instead of aborting

Dependencies:
- Randomization engine, auto grader and validity clock (leaf services)
- Analytics service for recomputation after each mutation
"""

import logging
from collections import OrderedDict
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from quiz_engine.core.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from quiz_engine.core.exceptions import (
    AlreadySubmittedError, AttemptLimitError, AuthzError, ConcurrentUpdateError, ExpiredAttemptError,
    InactiveQuizError, NotFoundError, PasswordError, QuizEngineError, ValidationError
)
from quiz_engine.core.security import verify_password
from quiz_engine.models.quiz import (
    Quiz, QuizAttempt, QuizAnswer, AttemptStatus, QuestionType, DifficultyLevel
)
from quiz_engine.models.user import User, UserRole
from quiz_engine.services.analytics_service import recompute_attempt
from quiz_engine.services.grading import grade
from quiz_engine.services.quiz_service import ensure_teacher_access, get_quiz
from quiz_engine.services.randomization import attempt_seed, presented_questions
from quiz_engine.services.validity import (
    as_utc, utcnow, elapsed_seconds, is_attempt_valid, is_quiz_active, time_remaining
)

logger = logging.getLogger(__name__)


def _run_guarded(db: Session, operation: Callable[[], Any], description: str) -> Any:
    """Run a read-modify-write; on an optimistic-lock conflict re-run it once."""
    try:
        return operation()
    except StaleDataError:
        db.rollback()
        logger.warning(f"Concurrent update detected on {description}, retrying once")
    try:
        return operation()
    except StaleDataError:
        db.rollback()
        logger.error(f"Concurrent update on {description} persisted after retry")
        raise ConcurrentUpdateError(f"{description} was modified concurrently. Please retry.")


def _get_attempt(db: Session, quiz_id: int, attempt_id: int) -> QuizAttempt:
    attempt = db.query(QuizAttempt).filter(
        QuizAttempt.id == attempt_id,
        QuizAttempt.quiz_id == quiz_id,
    ).first()
    if not attempt:
        raise NotFoundError("Quiz attempt not found")
    return attempt


def _get_student_attempt(db: Session, quiz_id: int, attempt_id: int, student: User) -> QuizAttempt:
    attempt = _get_attempt(db, quiz_id, attempt_id)
    if attempt.student_id != student.id:
        raise NotFoundError("Quiz attempt not found")
    return attempt


def apply_auto_grading(attempt: QuizAttempt, now: datetime) -> None:
    """Grade every objective answer from the attempt's snapshot."""
    questions = {question["id"]: question for question in attempt.question_snapshot or []}
    for answer in attempt.answers:
        question = questions.get(answer.question_id)
        if question is None:
            continue
        answer.max_marks = question["marks"]
        result = grade(question, answer.selected_options, answer.boolean_answer)
        if result is None:
            # Subjective: pending manual grading unless a teacher already graded it.
            if answer.graded_by is None:
                answer.marks = 0
                answer.is_correct = None
                answer.auto_graded = False
            continue
        answer.marks = result.marks
        answer.is_correct = result.is_correct
        answer.auto_graded = True
        answer.graded_at = now


def _finalize(attempt: QuizAttempt, quiz: Quiz, status: AttemptStatus, now: datetime) -> None:
    attempt.status = status
    attempt.submitted_at = now
    attempt.time_spent = elapsed_seconds(attempt.started_at, now)
    attempt.last_activity_at = now
    apply_auto_grading(attempt, now)
    recompute_attempt(attempt, quiz.passing_marks)


def expire_if_needed(db: Session, attempt: QuizAttempt, now: Optional[datetime] = None) -> bool:
    """Auto-submit an in-progress attempt whose window has elapsed. Returns True if it did."""
    now = as_utc(now) or utcnow()
    attempt_id, quiz_id = attempt.id, attempt.quiz_id

    def operation():
        current = _get_attempt(db, quiz_id, attempt_id)
        if current.status != AttemptStatus.in_progress or is_attempt_valid(current, current.quiz, now):
            return False
        _finalize(current, current.quiz, AttemptStatus.auto_submitted, now)
        db.commit()
        logger.info(f"Attempt {attempt_id} auto-submitted after its time window elapsed")
        return True

    expired = _run_guarded(db, operation, f"Attempt {attempt_id}")
    if expired:
        db.refresh(attempt)
    return expired


def start_attempt(
    db: Session,
    quiz_id: int,
    student: User,
    password: Optional[str] = None,
    device_info: Optional[Dict[str, Any]] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Start a new attempt or resume the student's live one.

    Returns {"attempt", "questions", "time_remaining", "resumed"}. Questions carry
    correctness flags; callers must pass them through the presentation layer.
    """
    now = as_utc(now) or utcnow()

    quiz = db.query(Quiz).filter(Quiz.id == quiz_id, Quiz.school_id == student.school_id).first()
    if not quiz:
        raise NotFoundError("Quiz not found")

    if not student.is_enrolled_in(quiz.class_id):
        logger.warning(f"Student {student.id} is not enrolled in class {quiz.class_id} of quiz {quiz.id}")
        raise AuthzError("You are not enrolled in this class")

    if not is_quiz_active(quiz, now):
        raise InactiveQuizError("Quiz is not currently active")

    if quiz.require_password:
        if not password or not quiz.password_hash or not verify_password(password, quiz.password_hash):
            logger.warning(f"Incorrect password for quiz {quiz.id} from student {student.id}")
            raise PasswordError("Incorrect quiz password")

    seed = attempt_seed(quiz.id, student.id)
    existing = (
        db.query(QuizAttempt)
        .filter(QuizAttempt.quiz_id == quiz.id, QuizAttempt.student_id == student.id)
        .order_by(QuizAttempt.attempt_number.desc())
        .all()
    )

    active = next((attempt for attempt in existing if attempt.status == AttemptStatus.in_progress), None)
    if active is not None:
        if is_attempt_valid(active, quiz, now):
            logger.info(f"Resuming attempt {active.id} for student {student.id} on quiz {quiz.id}")
            return {
                "attempt": active,
                "questions": presented_questions(quiz, seed),
                "time_remaining": time_remaining(active, quiz, now),
                "resumed": True,
            }
        expire_if_needed(db, active, now)

    if len(existing) >= quiz.max_attempts:
        logger.warning(f"Student {student.id} reached the attempt limit on quiz {quiz.id}")
        raise AttemptLimitError(
            f"Maximum attempts ({quiz.max_attempts}) exceeded",
            {"max_attempts": quiz.max_attempts, "attempts": len(existing)},
        )

    questions = presented_questions(quiz, seed)
    attempt = QuizAttempt(
        quiz_id=quiz.id,
        student_id=student.id,
        school_id=quiz.school_id,
        attempt_number=len(existing) + 1,
        started_at=now,
        status=AttemptStatus.in_progress,
        question_snapshot=questions,
        device_info=device_info or {},
        last_activity_at=now,
    )
    attempt.answers = [
        QuizAnswer(
            question_id=question["id"],
            order_index=index,
            question_type=QuestionType(question["question_type"]),
            difficulty_level=DifficultyLevel(question["difficulty_level"]),
            max_marks=question["marks"],
            marks=0,
            time_spent=0,
            attempts=0,
            flagged=False,
            visited_at=now,
        )
        for index, question in enumerate(questions)
    ]
    recompute_attempt(attempt, quiz.passing_marks)

    db.add(attempt)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning(f"Concurrent start for student {student.id} on quiz {quiz.id}")
        raise ConcurrentUpdateError("Another attempt was started at the same time. Please retry.")
    db.refresh(attempt)

    logger.info(f"Started attempt {attempt.id} (#{attempt.attempt_number}) for student {student.id}, quiz {quiz.id}")
    return {
        "attempt": attempt,
        "questions": questions,
        "time_remaining": time_remaining(attempt, quiz, now),
        "resumed": False,
    }


def _coerce_boolean(value: Any) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise ValidationError("True/false questions take a boolean answer")


def _selected_option_ids(question: Dict[str, Any], value: Any) -> List[int]:
    if value is None:
        return []
    if isinstance(value, bool):
        raise ValidationError("Choice questions take option ids")
    raw = value if isinstance(value, list) else [value]
    try:
        selected = [int(option_id) for option_id in raw]
    except (TypeError, ValueError):
        raise ValidationError("Choice questions take option ids")

    valid_ids = {option["id"] for option in question.get("options", [])}
    unknown = [option_id for option_id in selected if option_id not in valid_ids]
    if unknown:
        raise ValidationError("Selected options do not belong to this question", {"unknown_options": unknown})
    return list(OrderedDict.fromkeys(selected))


def _store_payload(answer: QuizAnswer, question: Dict[str, Any], value: Any) -> None:
    question_type = QuestionType(question["question_type"])
    if question_type in (QuestionType.single_choice, QuestionType.multiple_choice):
        answer.selected_options = _selected_option_ids(question, value)
    elif question_type == QuestionType.true_false:
        answer.boolean_answer = _coerce_boolean(value)
    else:
        answer.text_answer = "" if value is None else str(value).strip()


def record_answer(
    db: Session,
    quiz_id: int,
    attempt_id: int,
    student: User,
    question_id: int,
    answer_value: Any,
    time_spent: int = 0,
    flagged: Optional[bool] = None,
    now: Optional[datetime] = None,
    answer_provided: bool = True,
) -> QuizAnswer:
    """
    Save one answer. Payload fields are overwritten; time_spent is accumulated.
    With answer_provided=False only the flag and time are applied, so a flag
    toggle leaves the saved payload and revision count alone.

    An expired attempt is auto-submitted first and ExpiredAttemptError raised
    instead of applying the answer.
    """
    now = as_utc(now) or utcnow()
    delta = max(0, int(time_spent or 0))

    def operation():
        attempt = _get_student_attempt(db, quiz_id, attempt_id, student)
        quiz = attempt.quiz

        if attempt.status == AttemptStatus.auto_submitted:
            raise ExpiredAttemptError("Quiz attempt has expired", {"attempt_id": attempt.id})
        if attempt.status != AttemptStatus.in_progress:
            raise AlreadySubmittedError("Attempt has already been submitted", {"attempt_id": attempt.id})

        if not is_attempt_valid(attempt, quiz, now):
            _finalize(attempt, quiz, AttemptStatus.auto_submitted, now)
            db.commit()
            logger.info(f"Attempt {attempt.id} expired while saving an answer; auto-submitted")
            raise ExpiredAttemptError("Quiz attempt has expired", {"attempt_id": attempt.id})

        answer = attempt.answer_for(question_id)
        if answer is None:
            raise NotFoundError("Question not found in this attempt")
        question = next(q for q in attempt.question_snapshot if q["id"] == question_id)

        if answer_provided:
            _store_payload(answer, question, answer_value)
            answer.attempts = (answer.attempts or 0) + 1
            answer.answered_at = now
        answer.time_spent = (answer.time_spent or 0) + delta
        if flagged is not None:
            answer.flagged = flagged

        attempt.last_activity_at = now
        recompute_attempt(attempt, quiz.passing_marks)
        db.commit()
        return answer

    answer = _run_guarded(db, operation, f"Attempt {attempt_id}")
    logger.debug(f"Saved answer for question {question_id} on attempt {attempt_id}")
    return answer


def submit_attempt(
    db: Session,
    quiz_id: int,
    attempt_id: int,
    student: User,
    now: Optional[datetime] = None,
) -> QuizAttempt:
    """Finalize an attempt; one found past its window is finalized as auto_submitted."""
    now = as_utc(now) or utcnow()

    def operation():
        attempt = _get_student_attempt(db, quiz_id, attempt_id, student)
        if attempt.status != AttemptStatus.in_progress:
            raise AlreadySubmittedError("Attempt has already been submitted", {"attempt_id": attempt.id})

        quiz = attempt.quiz
        status = AttemptStatus.submitted if is_attempt_valid(attempt, quiz, now) else AttemptStatus.auto_submitted
        _finalize(attempt, quiz, status, now)
        db.commit()
        db.refresh(attempt)
        return attempt

    attempt = _run_guarded(db, operation, f"Attempt {attempt_id}")
    logger.info(
        f"Attempt {attempt.id} {attempt.status.value}: {attempt.obtained_marks}/{attempt.total_marks} "
        f"({attempt.percentage}%) in {attempt.time_spent}s"
    )
    return attempt


def _prepare_for_grading(attempt: QuizAttempt, quiz: Quiz, now: datetime) -> None:
    if attempt.status == AttemptStatus.abandoned:
        raise ValidationError("Cannot grade an abandoned attempt")
    if attempt.status == AttemptStatus.in_progress:
        if is_attempt_valid(attempt, quiz, now):
            raise ValidationError("Cannot grade an attempt that is still in progress")
        _finalize(attempt, quiz, AttemptStatus.auto_submitted, now)
        logger.info(f"Attempt {attempt.id} auto-submitted before grading")


def _grade_one(attempt: QuizAttempt, question_id: int, marks: float, feedback: Optional[str], grader: User, now: datetime) -> QuizAnswer:
    answer = attempt.answer_for(question_id)
    if answer is None:
        raise NotFoundError("Question not found in this attempt")
    if marks < 0 or marks > answer.max_marks:
        raise ValidationError(f"Marks must be between 0 and {answer.max_marks}")

    answer.marks = float(marks)
    answer.feedback = feedback or ""
    answer.graded_by = grader.id
    answer.graded_at = now
    answer.auto_graded = False
    return answer


def _grade_attempt_items(
    db: Session,
    quiz: Quiz,
    attempt_id: int,
    grades: List[Any],
    grader: User,
    teacher_comments: Optional[str],
    now: datetime,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    def operation():
        attempt = _get_attempt(db, quiz.id, attempt_id)
        _prepare_for_grading(attempt, quiz, now)

        graded, failed = [], []
        for item in grades:
            try:
                answer = _grade_one(attempt, item.question_id, item.marks, item.feedback, grader, now)
                graded.append({"attempt_id": attempt.id, "question_id": item.question_id, "marks": answer.marks})
            except (NotFoundError, ValidationError) as e:
                logger.warning(f"Failed to grade question {item.question_id} of attempt {attempt.id}: {e.message}")
                failed.append({"attempt_id": attempt.id, "question_id": item.question_id, "error": e.message})

        if teacher_comments:
            attempt.teacher_comments = teacher_comments
            attempt.reviewed_by = grader.id
            attempt.reviewed_at = now

        attempt.last_activity_at = now
        recompute_attempt(attempt, quiz.passing_marks)
        db.commit()
        return graded, failed

    return _run_guarded(db, operation, f"Attempt {attempt_id}")


def _bulk_response(graded: List[Dict[str, Any]], failed: List[Dict[str, Any]]) -> Dict[str, Any]:
    success_count, failed_count = len(graded), len(failed)
    if success_count == 0 and failed_count:
        message = f"No answers graded. {failed_count} failed."
    elif failed_count:
        message = f"Graded {success_count} answers, {failed_count} failed"
    else:
        message = f"Successfully graded {success_count} answers"
    return {"success": failed_count == 0, "message": message, "graded": graded, "failed": failed}


def grade_answer(
    db: Session,
    quiz_id: int,
    attempt_id: int,
    question_id: int,
    marks: float,
    feedback: Optional[str],
    grader: User,
    now: Optional[datetime] = None,
) -> QuizAttempt:
    """Manually grade (or override the auto grade of) a single answer."""
    now = as_utc(now) or utcnow()
    quiz = get_quiz(db, quiz_id, grader.school_id)
    ensure_teacher_access(quiz, grader)

    def operation():
        attempt = _get_attempt(db, quiz.id, attempt_id)
        _prepare_for_grading(attempt, quiz, now)
        _grade_one(attempt, question_id, marks, feedback, grader, now)
        attempt.last_activity_at = now
        recompute_attempt(attempt, quiz.passing_marks)
        db.commit()
        db.refresh(attempt)
        return attempt

    attempt = _run_guarded(db, operation, f"Attempt {attempt_id}")
    logger.info(f"Question {question_id} of attempt {attempt_id} graded by {grader.id}: {marks}")
    return attempt


def grade_attempt(
    db: Session,
    quiz_id: int,
    attempt_id: int,
    grades: List[Any],
    grader: User,
    teacher_comments: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Grade several answers of one attempt; per-answer failures are reported, not raised."""
    now = as_utc(now) or utcnow()
    quiz = get_quiz(db, quiz_id, grader.school_id)
    ensure_teacher_access(quiz, grader)

    graded, failed = _grade_attempt_items(db, quiz, attempt_id, grades, grader, teacher_comments, now)
    logger.info(f"Attempt {attempt_id} graded by {grader.id}: {len(graded)} graded, {len(failed)} failed")
    return _bulk_response(graded, failed)


def bulk_grade(
    db: Session,
    quiz_id: int,
    items: List[Any],
    grader: User,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Grade answers across many attempts of one quiz. Each attempt is committed on
    its own; a failing attempt or answer is reported and the rest proceed.
    """
    now = as_utc(now) or utcnow()
    quiz = get_quiz(db, quiz_id, grader.school_id)
    ensure_teacher_access(quiz, grader)

    by_attempt: "OrderedDict[int, List[Any]]" = OrderedDict()
    for item in items:
        by_attempt.setdefault(item.attempt_id, []).append(item)

    graded, failed = [], []
    logger.info(f"Bulk grading {len(items)} answers across {len(by_attempt)} attempts of quiz {quiz.id}")
    for attempt_id, attempt_items in by_attempt.items():
        try:
            attempt_graded, attempt_failed = _grade_attempt_items(db, quiz, attempt_id, attempt_items, grader, None, now)
            graded.extend(attempt_graded)
            failed.extend(attempt_failed)
        except QuizEngineError as e:
            db.rollback()
            logger.warning(f"Failed to grade attempt {attempt_id}: {e.message}")
            failed.extend(
                {"attempt_id": attempt_id, "question_id": item.question_id, "error": e.message}
                for item in attempt_items
            )

    return _bulk_response(graded, failed)


def get_student_attempts(db: Session, quiz_id: int, student: User, now: Optional[datetime] = None) -> List[QuizAttempt]:
    quiz = get_quiz(db, quiz_id, student.school_id)
    attempts = (
        db.query(QuizAttempt)
        .filter(QuizAttempt.quiz_id == quiz.id, QuizAttempt.student_id == student.id)
        .order_by(QuizAttempt.attempt_number.desc())
        .all()
    )
    for attempt in attempts:
        if attempt.status == AttemptStatus.in_progress:
            expire_if_needed(db, attempt, now)
    return attempts


def get_quiz_attempts(
    db: Session,
    quiz_id: int,
    user: User,
    status: Optional[AttemptStatus] = None,
    page: int = 1,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    quiz = get_quiz(db, quiz_id, user.school_id)
    ensure_teacher_access(quiz, user)

    limit = max(1, min(MAX_PAGE_SIZE, limit or DEFAULT_PAGE_SIZE))
    page = max(1, page)

    query = db.query(QuizAttempt).filter(QuizAttempt.quiz_id == quiz.id)
    if status is not None:
        query = query.filter(QuizAttempt.status == status)

    total = query.count()
    attempts = (
        query.order_by(QuizAttempt.submitted_at.desc(), QuizAttempt.started_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "attempts": attempts,
        "total": total,
        "total_pages": -(-total // limit),
        "current_page": page,
    }


def get_attempt_details(
    db: Session,
    quiz_id: int,
    attempt_id: int,
    user: User,
    now: Optional[datetime] = None,
) -> Tuple[QuizAttempt, Quiz]:
    """Fetch one attempt for its owner or a teacher of the quiz. Touching it applies lazy expiry."""
    quiz = get_quiz(db, quiz_id, user.school_id)
    if user.role == UserRole.student:
        attempt = _get_student_attempt(db, quiz.id, attempt_id, user)
    else:
        ensure_teacher_access(quiz, user)
        attempt = _get_attempt(db, quiz.id, attempt_id)

    if attempt.status == AttemptStatus.in_progress:
        expire_if_needed(db, attempt, now)
    return attempt, quiz
