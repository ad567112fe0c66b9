"""
Presentation
============

The serialization boundary between the engine and its callers.

Contract: any view built for a student omits ``is_correct``, ``explanation``
and ``correct_answer`` unless the quiz has ``show_correct_answers`` enabled,
and results are included only when the quiz's ``show_results`` policy allows.
The quiz password hash is never serialized. Routes must build student
responses through the ``student_*`` helpers below.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from quiz_engine.models.quiz import Quiz, QuizAttempt, QuizAnswer, ShowResultsPolicy
from quiz_engine.services.analytics_service import results_dict
from quiz_engine.services.randomization import question_snapshot
from quiz_engine.services.validity import current_status, has_quiz_ended

HIDDEN_QUESTION_FIELDS = ("correct_answer",)
HIDDEN_OPTION_FIELDS = ("is_correct", "explanation")


def duration_formatted(minutes: int) -> str:
    hours, rest = divmod(int(minutes or 0), 60)
    if hours > 0:
        return f"{hours}h {rest}m"
    return f"{rest}m"


def time_spent_formatted(seconds: int) -> str:
    seconds = int(seconds or 0)
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def question_view(question: Dict[str, Any], show_correct: bool) -> Dict[str, Any]:
    """Copy of a snapshot question, stripped of answer keys unless show_correct."""
    view = {key: value for key, value in question.items() if key != "options"}
    view["options"] = [dict(option) for option in question.get("options", [])]
    if show_correct:
        return view
    for field in HIDDEN_QUESTION_FIELDS:
        view.pop(field, None)
    for option in view["options"]:
        for field in HIDDEN_OPTION_FIELDS:
            option.pop(field, None)
    return view


def student_questions(questions: List[Dict[str, Any]], quiz: Quiz) -> List[Dict[str, Any]]:
    return [question_view(question, quiz.show_correct_answers) for question in questions]


def results_visible(quiz: Quiz, now: Optional[datetime] = None) -> bool:
    if quiz.show_results == ShowResultsPolicy.immediately:
        return True
    if quiz.show_results == ShowResultsPolicy.after_end:
        return has_quiz_ended(quiz, now)
    return False


def settings_dict(quiz: Quiz) -> Dict[str, Any]:
    return {
        "max_attempts": quiz.max_attempts,
        "shuffle_questions": quiz.shuffle_questions,
        "shuffle_options": quiz.shuffle_options,
        "show_results": quiz.show_results.value,
        "show_correct_answers": quiz.show_correct_answers,
        "allow_review": quiz.allow_review,
        "require_password": quiz.require_password,
        "proctoring": quiz.proctoring or {},
    }


def quiz_to_dict(quiz: Quiz, now: Optional[datetime] = None, include_answers: bool = True) -> Dict[str, Any]:
    questions = [question_snapshot(question) for question in quiz.questions]
    return {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "instructions": quiz.instructions,
        "school_id": quiz.school_id,
        "class_id": quiz.class_id,
        "subject_id": quiz.subject_id,
        "created_by": quiz.created_by,
        "start_date": _isoformat(quiz.start_date),
        "end_date": _isoformat(quiz.end_date),
        "duration": quiz.duration,
        "duration_formatted": duration_formatted(quiz.duration),
        "settings": settings_dict(quiz),
        "grading": {
            "total_marks": quiz.total_marks,
            "passing_marks": quiz.passing_marks,
            "grading_method": quiz.grading_method.value,
            "partial_credits": quiz.partial_credits,
        },
        "features": quiz.features or {},
        "status": quiz.status.value,
        "current_status": current_status(quiz, now),
        "published_at": _isoformat(quiz.published_at),
        "question_count": len(questions),
        "questions": [question_view(question, include_answers) for question in questions],
    }


def student_quiz_view(quiz: Quiz, now: Optional[datetime] = None) -> Dict[str, Any]:
    return quiz_to_dict(quiz, now, include_answers=quiz.show_correct_answers)


def answer_to_dict(answer: QuizAnswer, reveal_grading: bool = True) -> Dict[str, Any]:
    data = {
        "question_id": answer.question_id,
        "question_type": answer.question_type.value,
        "selected_options": answer.selected_options or [],
        "boolean_answer": answer.boolean_answer,
        "text_answer": answer.text_answer,
        "time_spent": answer.time_spent,
        "attempts": answer.attempts,
        "flagged": answer.flagged,
        "answered_at": _isoformat(answer.answered_at),
        "max_marks": answer.max_marks,
    }
    if reveal_grading:
        data.update({
            "marks": answer.marks,
            "is_correct": answer.is_correct,
            "auto_graded": answer.auto_graded,
            "feedback": answer.feedback,
            "graded_at": _isoformat(answer.graded_at),
        })
    return data


def attempt_to_dict(attempt: QuizAttempt, reveal_grading: bool = True) -> Dict[str, Any]:
    return {
        "id": attempt.id,
        "quiz_id": attempt.quiz_id,
        "student_id": attempt.student_id,
        "attempt_number": attempt.attempt_number,
        "status": attempt.status.value,
        "started_at": _isoformat(attempt.started_at),
        "submitted_at": _isoformat(attempt.submitted_at),
        "time_spent": attempt.time_spent,
        "time_spent_formatted": time_spent_formatted(attempt.time_spent),
        "results": results_dict(attempt) if reveal_grading else None,
        "analytics": attempt.analytics or {},
        "teacher_comments": attempt.teacher_comments if reveal_grading else None,
        "answers": [answer_to_dict(answer, reveal_grading) for answer in attempt.answers],
    }


def teacher_attempt_view(attempt: QuizAttempt) -> Dict[str, Any]:
    """Full attempt with each answer joined to its snapshot question."""
    data = attempt_to_dict(attempt, reveal_grading=True)
    questions = {question["id"]: question for question in attempt.question_snapshot or []}
    for answer in data["answers"]:
        answer["question"] = questions.get(answer["question_id"])
    data["reviewed_by"] = attempt.reviewed_by
    data["reviewed_at"] = _isoformat(attempt.reviewed_at)
    return data


def student_attempt_view(attempt: QuizAttempt, quiz: Quiz, now: Optional[datetime] = None) -> Dict[str, Any]:
    reveal = attempt.is_finalized and results_visible(quiz, now)
    data = attempt_to_dict(attempt, reveal_grading=reveal)
    data["questions"] = student_questions(attempt.question_snapshot or [], quiz)
    return data
