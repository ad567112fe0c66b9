from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from quiz_engine.models.quiz import AttemptStatus, QuizStatus
from quiz_engine.services.validity import (
    as_utc, attempt_deadline, current_status, is_attempt_valid, is_quiz_active, time_remaining
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _quiz(duration=10, start=T0 - timedelta(hours=1), end=T0 + timedelta(days=1), status=QuizStatus.published):
    return SimpleNamespace(duration=duration, start_date=start, end_date=end, status=status)


def _attempt(started_at=T0, status=AttemptStatus.in_progress):
    return SimpleNamespace(started_at=started_at, status=status)


def test_deadline_is_start_plus_duration():
    assert attempt_deadline(_attempt(), _quiz()) == T0 + timedelta(minutes=10)


def test_deadline_is_capped_by_quiz_end():
    quiz = _quiz(end=T0 + timedelta(minutes=4))
    assert attempt_deadline(_attempt(), quiz) == T0 + timedelta(minutes=4)
    assert time_remaining(_attempt(), quiz, T0) == 240


def test_attempt_valid_until_deadline_inclusive():
    quiz = _quiz()
    assert is_attempt_valid(_attempt(), quiz, T0 + timedelta(minutes=10))
    assert not is_attempt_valid(_attempt(), quiz, T0 + timedelta(minutes=10, seconds=1))


def test_finalized_attempt_is_never_valid():
    assert not is_attempt_valid(_attempt(status=AttemptStatus.submitted), _quiz(), T0)


def test_time_remaining_never_negative():
    assert time_remaining(_attempt(), _quiz(), T0 + timedelta(minutes=3)) == 420
    assert time_remaining(_attempt(), _quiz(), T0 + timedelta(hours=2)) == 0


def test_naive_datetimes_are_treated_as_utc():
    naive = datetime(2026, 3, 2, 9, 0)
    assert as_utc(naive) == T0
    assert attempt_deadline(_attempt(started_at=naive), _quiz()) == T0 + timedelta(minutes=10)


def test_quiz_active_only_when_published_and_in_window():
    assert is_quiz_active(_quiz(), T0)
    assert not is_quiz_active(_quiz(status=QuizStatus.draft), T0)
    assert not is_quiz_active(_quiz(start=T0 + timedelta(minutes=5)), T0)
    assert not is_quiz_active(_quiz(end=T0 - timedelta(minutes=5), start=T0 - timedelta(hours=2)), T0)


def test_current_status_is_derived_from_clock():
    quiz = _quiz(start=T0, end=T0 + timedelta(hours=1))
    assert current_status(quiz, T0 - timedelta(minutes=1)) == "scheduled"
    assert current_status(quiz, T0 + timedelta(minutes=30)) == "active"
    assert current_status(quiz, T0 + timedelta(hours=2)) == "ended"
    assert current_status(_quiz(status=QuizStatus.draft), T0) == "draft"
    assert current_status(_quiz(status=QuizStatus.cancelled), T0) == "cancelled"
