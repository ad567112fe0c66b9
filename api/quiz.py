"""
Quiz API Routes
================

FastAPI endpoints for quiz definitions: authoring, publishing and listings.

Endpoints:
- POST /quizzes - Create a draft quiz
- GET /quizzes/teacher - Quizzes created by the caller (paginated)
- GET /quizzes/student - Published quizzes of the caller's classes
- GET /quizzes/{quiz_id} - Role-aware quiz view
- PUT /quizzes/{quiz_id} - Partial update (structure locked once attempted)
- DELETE /quizzes/{quiz_id} - Delete a quiz without attempts
- POST /quizzes/{quiz_id}/publish - Publish a draft
- POST /quizzes/{quiz_id}/cancel - Cancel a quiz without attempts
- GET /quizzes/{quiz_id}/statistics - Aggregate results
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
import logging

from quiz_engine.db.database import get_db
from quiz_engine.models.quiz import QuizStatus
from quiz_engine.models.user import User, UserRole
from quiz_engine.schemas.quiz import QuizCreate, QuizUpdate, QuizStatisticsResponse
from quiz_engine.services import quiz_service
from quiz_engine.services.analytics_service import quiz_statistics
from quiz_engine.services.presentation import (
    attempt_to_dict, quiz_to_dict, student_quiz_view, results_visible
)
from quiz_engine.services.validity import utcnow
from quiz_engine.core.security import get_current_user, require_teacher, require_staff, require_student

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Quiz"])


@router.post("/quizzes")
def create_quiz_endpoint(
    payload: QuizCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_teacher)
):
    logger.info(f"User {current_user.id} creating quiz '{payload.title}' for class {payload.class_id}")
    quiz = quiz_service.create_quiz(db, payload, current_user)
    return {
        "success": True,
        "message": "Quiz created successfully",
        "quiz": quiz_to_dict(quiz),
    }


@router.get("/quizzes/teacher")
def list_teacher_quizzes_endpoint(
    status: Optional[QuizStatus] = Query(None, description="Filter by stored status"),
    class_id: Optional[str] = Query(None, description="Filter by class"),
    subject_id: Optional[str] = Query(None, description="Filter by subject"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_teacher)
):
    now = utcnow()
    result = quiz_service.list_teacher_quizzes(
        db, current_user, status=status, class_id=class_id, subject_id=subject_id, page=page, limit=limit
    )
    quizzes = []
    for quiz in result["quizzes"]:
        data = quiz_to_dict(quiz, now, include_answers=False)
        data.pop("questions")
        data["attempt_count"] = len(quiz.attempts)
        quizzes.append(data)

    return {
        "quizzes": quizzes,
        "total": result["total"],
        "total_pages": result["total_pages"],
        "current_page": result["current_page"],
    }


@router.get("/quizzes/student")
def list_student_quizzes_endpoint(
    window: Optional[str] = Query(None, pattern="^(upcoming|active|completed)$"),
    subject_id: Optional[str] = Query(None, description="Filter by subject"),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_student)
):
    now = utcnow()
    entries = quiz_service.list_student_quizzes(db, current_user, window=window, subject_id=subject_id, now=now)

    quizzes = []
    for entry in entries:
        quiz = entry["quiz"]
        data = student_quiz_view(quiz, now)
        data.pop("questions")
        last_attempt = entry["last_attempt"]
        reveal = last_attempt is not None and last_attempt.is_finalized and results_visible(quiz, now)
        data.update({
            "student_attempts": entry["student_attempts"],
            "can_attempt": entry["can_attempt"],
            "best_score": entry["best_score"] if results_visible(quiz, now) else None,
            "last_attempt": attempt_to_dict(last_attempt, reveal_grading=reveal) if last_attempt else None,
        })
        if data["last_attempt"]:
            data["last_attempt"].pop("answers")
        quizzes.append(data)

    return {"quizzes": quizzes, "total": len(quizzes)}


@router.get("/quizzes/{quiz_id}")
def get_quiz_endpoint(
    quiz_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    quiz = quiz_service.get_quiz_for_user(db, quiz_id, current_user)
    now = utcnow()
    if current_user.role == UserRole.student:
        return {"quiz": student_quiz_view(quiz, now)}
    return {"quiz": quiz_to_dict(quiz, now)}


@router.put("/quizzes/{quiz_id}")
def update_quiz_endpoint(
    quiz_id: int,
    payload: QuizUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_teacher)
):
    quiz = quiz_service.update_quiz(db, quiz_id, payload, current_user)
    return {
        "success": True,
        "message": "Quiz updated successfully",
        "quiz": quiz_to_dict(quiz),
    }


@router.delete("/quizzes/{quiz_id}")
def delete_quiz_endpoint(
    quiz_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_teacher)
):
    quiz_service.delete_quiz(db, quiz_id, current_user)
    return {"success": True, "message": "Quiz deleted successfully"}


@router.post("/quizzes/{quiz_id}/publish")
def publish_quiz_endpoint(
    quiz_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_teacher)
):
    quiz = quiz_service.publish_quiz(db, quiz_id, current_user)
    return {
        "success": True,
        "message": "Quiz published successfully",
        "quiz": quiz_to_dict(quiz),
    }


@router.post("/quizzes/{quiz_id}/cancel")
def cancel_quiz_endpoint(
    quiz_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_teacher)
):
    quiz = quiz_service.cancel_quiz(db, quiz_id, current_user)
    return {
        "success": True,
        "message": "Quiz cancelled",
        "quiz": quiz_to_dict(quiz),
    }


@router.get("/quizzes/{quiz_id}/statistics", response_model=QuizStatisticsResponse)
def quiz_statistics_endpoint(
    quiz_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_staff)
):
    quiz = quiz_service.get_quiz_for_user(db, quiz_id, current_user)
    return quiz_statistics(db, quiz)
