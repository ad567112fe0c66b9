"""
Attempt API Routes
==================

FastAPI endpoints for taking and grading quizzes.

Student endpoints:
- POST /quizzes/{quiz_id}/attempt - Start or resume an attempt
- POST /quizzes/{quiz_id}/attempt/{attempt_id}/answer - Save one answer
- POST /quizzes/{quiz_id}/attempt/{attempt_id}/submit - Submit an attempt
- GET /quizzes/{quiz_id}/attempts/student - Caller's own attempts

Teacher endpoints:
- GET /quizzes/{quiz_id}/attempts - All attempts of a quiz (paginated)
- POST /quizzes/{quiz_id}/attempts/{attempt_id}/grade - Grade answers of one attempt
- POST /quizzes/{quiz_id}/grades - Bulk grading across attempts

Shared:
- GET /quizzes/{quiz_id}/attempts/{attempt_id} - Attempt details (owner or teacher)
"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session
from typing import Optional
import logging

from quiz_engine.db.database import get_db
from quiz_engine.models.quiz import AttemptStatus
from quiz_engine.models.user import User, UserRole
from quiz_engine.schemas.attempt import (
    AttemptStartRequest, AnswerSubmit, AnswerAck, AttemptGradeRequest, BulkGradeRequest, BulkGradeResponse
)
from quiz_engine.schemas.user import UserSummary
from quiz_engine.services import attempt_service
from quiz_engine.services.presentation import (
    attempt_to_dict, results_visible, student_attempt_view, student_questions,
    teacher_attempt_view, time_spent_formatted
)
from quiz_engine.services.analytics_service import results_dict
from quiz_engine.services.validity import utcnow
from quiz_engine.core.security import get_current_user, require_teacher, require_staff, require_student

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Attempts"])


@router.post("/quizzes/{quiz_id}/attempt")
def start_attempt_endpoint(
    quiz_id: int,
    request: Request,
    payload: AttemptStartRequest = AttemptStartRequest(),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_student)
):
    """
    Start a new attempt, or resume the caller's live one.

    Returns the attempt id, the questions in this student's order (answer keys
    stripped unless the quiz reveals them) and the seconds left.
    """
    device_info = {
        "user_agent": request.headers.get("user-agent"),
        "ip_address": request.client.host if request.client else None,
    }
    result = attempt_service.start_attempt(
        db, quiz_id, current_user, password=payload.password, device_info=device_info
    )
    attempt = result["attempt"]
    quiz = attempt.quiz

    return {
        "success": True,
        "message": "Resumed existing attempt" if result["resumed"] else "Quiz attempt started",
        "attempt_id": attempt.id,
        "attempt_number": attempt.attempt_number,
        "resumed": result["resumed"],
        "time_remaining": result["time_remaining"],
        "quiz": {
            "id": quiz.id,
            "title": quiz.title,
            "instructions": quiz.instructions,
            "duration": quiz.duration,
            "features": quiz.features or {},
            "proctoring": quiz.proctoring or {},
        },
        "questions": student_questions(result["questions"], quiz),
    }


@router.post("/quizzes/{quiz_id}/attempt/{attempt_id}/answer", response_model=AnswerAck)
def record_answer_endpoint(
    quiz_id: int,
    attempt_id: int,
    payload: AnswerSubmit,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_student)
):
    answer = attempt_service.record_answer(
        db,
        quiz_id,
        attempt_id,
        current_user,
        question_id=payload.question_id,
        answer_value=payload.answer,
        time_spent=payload.time_spent,
        flagged=payload.flagged,
        answer_provided="answer" in payload.model_fields_set,
    )
    return AnswerAck(question_id=answer.question_id, time_spent=answer.time_spent, attempts=answer.attempts)


@router.post("/quizzes/{quiz_id}/attempt/{attempt_id}/submit")
def submit_attempt_endpoint(
    quiz_id: int,
    attempt_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_student)
):
    attempt = attempt_service.submit_attempt(db, quiz_id, attempt_id, current_user)
    quiz = attempt.quiz
    visible = results_visible(quiz, utcnow())

    return {
        "success": True,
        "message": "Quiz submitted successfully",
        "attempt_id": attempt.id,
        "status": attempt.status.value,
        "time_spent": attempt.time_spent,
        "time_spent_formatted": time_spent_formatted(attempt.time_spent),
        "results": results_dict(attempt) if visible else None,
    }


@router.get("/quizzes/{quiz_id}/attempts/student")
def student_attempts_endpoint(
    quiz_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_student)
):
    now = utcnow()
    attempts = attempt_service.get_student_attempts(db, quiz_id, current_user, now)
    views = []
    for attempt in attempts:
        view = student_attempt_view(attempt, attempt.quiz, now)
        view.pop("questions")
        view.pop("answers")
        views.append(view)
    return {"attempts": views, "total": len(views)}


@router.get("/quizzes/{quiz_id}/attempts")
def quiz_attempts_endpoint(
    quiz_id: int,
    status: Optional[AttemptStatus] = Query(None, description="Filter by attempt status"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff)
):
    result = attempt_service.get_quiz_attempts(db, quiz_id, current_user, status=status, page=page, limit=limit)
    attempts = []
    for attempt in result["attempts"]:
        data = attempt_to_dict(attempt)
        data.pop("answers")
        data["student"] = UserSummary.model_validate(attempt.student).model_dump(mode="json")
        attempts.append(data)

    return {
        "attempts": attempts,
        "total": result["total"],
        "total_pages": result["total_pages"],
        "current_page": result["current_page"],
    }


@router.get("/quizzes/{quiz_id}/attempts/{attempt_id}")
def attempt_details_endpoint(
    quiz_id: int,
    attempt_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    now = utcnow()
    attempt, quiz = attempt_service.get_attempt_details(db, quiz_id, attempt_id, current_user, now)
    if current_user.role == UserRole.student:
        return {"attempt": student_attempt_view(attempt, quiz, now)}
    return {"attempt": teacher_attempt_view(attempt)}


@router.post("/quizzes/{quiz_id}/attempts/{attempt_id}/grade", response_model=BulkGradeResponse)
def grade_attempt_endpoint(
    quiz_id: int,
    attempt_id: int,
    payload: AttemptGradeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_teacher)
):
    logger.info(f"User {current_user.id} grading {len(payload.grades)} answers of attempt {attempt_id}")
    return attempt_service.grade_attempt(
        db, quiz_id, attempt_id, payload.grades, current_user, teacher_comments=payload.teacher_comments
    )


@router.post("/quizzes/{quiz_id}/grades", response_model=BulkGradeResponse)
def bulk_grade_endpoint(
    quiz_id: int,
    payload: BulkGradeRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_teacher)
):
    return attempt_service.bulk_grade(db, quiz_id, payload.items, current_user)
