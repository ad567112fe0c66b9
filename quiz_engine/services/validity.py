# --------------------------------------------------
# Validity Clock
#
# Time rules for quizzes and attempts:
# - attempt_deadline(): min(started_at + duration, quiz.end_date)
# - is_attempt_valid(): in_progress and now <= deadline
# - time_remaining(): whole seconds left before the deadline
# - is_quiz_active() / current_status(): quiz window vs. now
#
# There is no timer. Callers check validity whenever they touch an attempt.
# SQLite hands datetimes back naive, so everything is normalized to aware UTC.
# --------------------------------------------------

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from quiz_engine.models.quiz import AttemptStatus, QuizStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def attempt_deadline(attempt, quiz) -> datetime:
    by_duration = as_utc(attempt.started_at) + timedelta(minutes=quiz.duration)
    return min(by_duration, as_utc(quiz.end_date))


def is_attempt_valid(attempt, quiz, now: Optional[datetime] = None) -> bool:
    if attempt.status != AttemptStatus.in_progress:
        return False
    now = as_utc(now) or utcnow()
    return now <= attempt_deadline(attempt, quiz)


def time_remaining(attempt, quiz, now: Optional[datetime] = None) -> int:
    now = as_utc(now) or utcnow()
    remaining = (attempt_deadline(attempt, quiz) - now).total_seconds()
    return max(0, int(remaining))


def elapsed_seconds(started_at: datetime, until: datetime) -> int:
    return max(0, math.floor((as_utc(until) - as_utc(started_at)).total_seconds()))


def is_quiz_active(quiz, now: Optional[datetime] = None) -> bool:
    now = as_utc(now) or utcnow()
    return (
        quiz.status == QuizStatus.published
        and as_utc(quiz.start_date) <= now <= as_utc(quiz.end_date)
    )


def has_quiz_ended(quiz, now: Optional[datetime] = None) -> bool:
    now = as_utc(now) or utcnow()
    return now > as_utc(quiz.end_date)


def current_status(quiz, now: Optional[datetime] = None) -> str:
    """Presentation status, never stored."""
    if quiz.status == QuizStatus.draft:
        return "draft"
    if quiz.status == QuizStatus.cancelled:
        return "cancelled"
    now = as_utc(now) or utcnow()
    if now < as_utc(quiz.start_date):
        return "scheduled"
    if now <= as_utc(quiz.end_date):
        return "active"
    return "ended"
