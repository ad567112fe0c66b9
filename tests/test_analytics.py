from quiz_engine.models.quiz import QuizAttempt, QuizAnswer, AttemptStatus, DifficultyLevel, QuestionType
from quiz_engine.services.analytics_service import (
    percentage_of, recompute_attempt, round_half_up, summarize_attempts
)


def _answer(question_id, marks=0.0, max_marks=5.0, is_correct=None, selected=None, time_spent=0,
            difficulty=DifficultyLevel.medium):
    return QuizAnswer(
        question_id=question_id,
        order_index=question_id,
        question_type=QuestionType.single_choice,
        difficulty_level=difficulty,
        selected_options=selected or [],
        marks=marks,
        max_marks=max_marks,
        is_correct=is_correct,
        time_spent=time_spent,
    )


def _attempt(status, answers, percentage=None, passed=None, time_spent=0):
    return QuizAttempt(status=status, answers=answers, percentage=percentage, passed=passed, time_spent=time_spent)


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_half_up(2.4) == 2
    assert percentage_of(1, 8) == 13
    assert percentage_of(3, 0) == 0


def test_in_progress_attempt_gets_analytics_but_no_results():
    attempt = _attempt(AttemptStatus.in_progress, [
        _answer(1, selected=[10], time_spent=30),
        _answer(2),
    ])
    recompute_attempt(attempt, passing_marks=5)

    assert attempt.analytics["questions_attempted"] == 1
    assert attempt.analytics["questions_skipped"] == 1
    assert attempt.analytics["completion_percentage"] == 50
    assert attempt.analytics["average_time_per_question"] == 30
    assert attempt.obtained_marks is None
    assert attempt.percentage is None


def test_finalized_attempt_results():
    attempt = _attempt(AttemptStatus.submitted, [
        _answer(1, marks=5, is_correct=True, selected=[10], time_spent=20, difficulty=DifficultyLevel.easy),
        _answer(2, marks=-1, is_correct=False, selected=[21], time_spent=40, difficulty=DifficultyLevel.hard),
    ])
    recompute_attempt(attempt, passing_marks=5)

    assert attempt.obtained_marks == 4
    assert attempt.total_marks == 10
    assert attempt.percentage == 40
    assert attempt.passed is False
    assert attempt.analytics["questions_correct"] == 1
    assert attempt.analytics["questions_incorrect"] == 1
    assert attempt.analytics["average_time_per_question"] == 30
    assert attempt.analytics["difficulty_breakdown"]["easy"] == {"attempted": 1, "correct": 1}
    assert attempt.analytics["difficulty_breakdown"]["hard"] == {"attempted": 1, "correct": 0}


def test_negative_total_is_not_floored():
    attempt = _attempt(AttemptStatus.submitted, [
        _answer(1, marks=-1, is_correct=False, selected=[11]),
        _answer(2, marks=-1, is_correct=False, selected=[21]),
    ])
    recompute_attempt(attempt, passing_marks=5)
    assert attempt.obtained_marks == -2
    assert attempt.percentage == -20


def test_pass_threshold_is_inclusive():
    attempt = _attempt(AttemptStatus.submitted, [_answer(1, marks=5, is_correct=True, selected=[10])])
    recompute_attempt(attempt, passing_marks=5)
    assert attempt.passed is True


def test_summary_uses_finalized_attempts_only():
    attempts = [
        _attempt(AttemptStatus.submitted, [_answer(1, marks=5, is_correct=True, selected=[10], time_spent=10)],
                 percentage=100, passed=True, time_spent=120),
        _attempt(AttemptStatus.auto_submitted, [_answer(1, marks=0, is_correct=False, selected=[11], time_spent=30)],
                 percentage=0, passed=False, time_spent=600),
        _attempt(AttemptStatus.in_progress, [_answer(1)]),
        _attempt(AttemptStatus.abandoned, [_answer(1)]),
    ]
    summary = summarize_attempts(attempts, {1: "2 + 2 = ?"})

    assert summary["total_attempts"] == 2
    assert summary["average_score"] == 50
    assert summary["average_completion_time"] == 360
    assert summary["pass_rate"] == 0.5
    assert summary["max_score"] == 100
    assert summary["min_score"] == 0
    assert summary["status_counts"] == {"submitted": 1, "auto_submitted": 1, "in_progress": 1, "abandoned": 1}
    assert summary["questions"] == [{
        "question_id": 1,
        "question_text": "2 + 2 = ?",
        "attempted": 2,
        "correct": 1,
        "correct_rate": 0.5,
        "average_time_spent": 20.0,
    }]


def test_summary_of_no_attempts():
    summary = summarize_attempts([])
    assert summary["total_attempts"] == 0
    assert summary["pass_rate"] == 0.0
    assert summary["max_score"] is None
