"""
Analytics Service
=================

Attempt-level and quiz-level aggregation.

- recompute_attempt(): called explicitly after every answer, grade or status
  change of an attempt; refreshes analytics and, once finalized, the results.
- summarize_attempts(): pure reduction over attempt records, used by
  quiz_statistics() for the on-demand teacher view.
"""

import math
import logging
from collections import Counter, defaultdict
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from quiz_engine.models.quiz import Quiz, QuizAttempt, DifficultyLevel, FINALIZED_STATUSES

logger = logging.getLogger(__name__)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percentage_of(obtained: float, total: float) -> int:
    return round_half_up(obtained / total * 100) if total > 0 else 0


def _empty_breakdown() -> Dict[str, Dict[str, int]]:
    return {level.value: {"attempted": 0, "correct": 0} for level in DifficultyLevel}


def recompute_attempt(attempt: QuizAttempt, passing_marks: Optional[float] = None) -> QuizAttempt:
    """Refresh analytics, and results when the attempt is finalized."""
    attempted = correct = incorrect = skipped = 0
    total_time = 0
    breakdown = _empty_breakdown()

    for answer in attempt.answers:
        total_time += answer.time_spent or 0
        level = getattr(answer.difficulty_level, "value", answer.difficulty_level) or DifficultyLevel.medium.value
        if answer.is_answered:
            attempted += 1
            breakdown[level]["attempted"] += 1
            if answer.is_correct is True:
                correct += 1
                breakdown[level]["correct"] += 1
            elif answer.is_correct is False:
                incorrect += 1
        else:
            skipped += 1

    question_count = len(attempt.answers)
    attempt.analytics = {
        "questions_attempted": attempted,
        "questions_correct": correct,
        "questions_incorrect": incorrect,
        "questions_skipped": skipped,
        "average_time_per_question": round_half_up(total_time / attempted) if attempted else 0,
        "completion_percentage": percentage_of(attempted, question_count),
        "difficulty_breakdown": breakdown,
    }

    if attempt.is_finalized:
        obtained = sum(answer.marks or 0 for answer in attempt.answers)
        total = sum(answer.max_marks or 0 for answer in attempt.answers)
        if passing_marks is None:
            passing_marks = attempt.quiz.passing_marks if attempt.quiz is not None else 0
        attempt.obtained_marks = obtained
        attempt.total_marks = total
        attempt.percentage = percentage_of(obtained, total)
        attempt.passed = obtained >= (passing_marks or 0)

    return attempt


def results_dict(attempt: QuizAttempt) -> Optional[Dict[str, Any]]:
    if not attempt.is_finalized:
        return None
    return {
        "total_marks": attempt.total_marks,
        "obtained_marks": attempt.obtained_marks,
        "percentage": attempt.percentage,
        "passed": attempt.passed,
    }


def _question_breakdown(attempts: List[QuizAttempt], question_texts: Dict[int, str]) -> List[Dict[str, Any]]:
    stats = defaultdict(lambda: {"attempted": 0, "correct": 0, "time": 0})
    order: List[int] = []
    for attempt in attempts:
        for answer in attempt.answers:
            if answer.question_id not in stats:
                order.append(answer.question_id)
            entry = stats[answer.question_id]
            if answer.is_answered:
                entry["attempted"] += 1
                entry["time"] += answer.time_spent or 0
                if answer.is_correct is True:
                    entry["correct"] += 1

    ordered_ids = [qid for qid in question_texts if qid in stats] + [qid for qid in order if qid not in question_texts]
    breakdown = []
    for question_id in ordered_ids:
        entry = stats[question_id]
        attempted = entry["attempted"]
        breakdown.append({
            "question_id": question_id,
            "question_text": question_texts.get(question_id),
            "attempted": attempted,
            "correct": entry["correct"],
            "correct_rate": round(entry["correct"] / attempted, 4) if attempted else 0.0,
            "average_time_spent": round(entry["time"] / attempted, 2) if attempted else 0.0,
        })
    return breakdown


def summarize_attempts(attempts: Iterable[QuizAttempt], question_texts: Optional[Dict[int, str]] = None) -> Dict[str, Any]:
    """
    Aggregate attempt records of one quiz.

    Scores and pass rate come from finalized attempts only; status_counts covers
    every attempt handed in.
    """
    attempts = list(attempts)
    status_counts = Counter(getattr(a.status, "value", a.status) for a in attempts)
    finalized = [a for a in attempts if a.status in FINALIZED_STATUSES]

    summary: Dict[str, Any] = {
        "total_attempts": len(finalized),
        "average_score": 0.0,
        "average_completion_time": 0.0,
        "pass_rate": 0.0,
        "max_score": None,
        "min_score": None,
        "status_counts": dict(status_counts),
        "questions": _question_breakdown(finalized, question_texts or {}),
    }
    if not finalized:
        return summary

    scores = [a.percentage or 0 for a in finalized]
    summary["average_score"] = round(sum(scores) / len(scores), 2)
    summary["average_completion_time"] = round(sum(a.time_spent or 0 for a in finalized) / len(finalized), 2)
    summary["pass_rate"] = round(sum(1 for a in finalized if a.passed) / len(finalized), 4)
    summary["max_score"] = max(scores)
    summary["min_score"] = min(scores)
    return summary


def quiz_statistics(db: Session, quiz: Quiz) -> Dict[str, Any]:
    attempts = db.query(QuizAttempt).filter(QuizAttempt.quiz_id == quiz.id).all()
    question_texts = {question.id: question.question_text for question in quiz.questions}
    summary = summarize_attempts(attempts, question_texts)
    summary["quiz_id"] = quiz.id
    logger.info(f"Computed statistics for quiz {quiz.id}: {summary['total_attempts']} finalized attempts")
    return summary
