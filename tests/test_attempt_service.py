from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy.orm.exc import StaleDataError

from conftest import NOW, essay, single_choice, true_false
from quiz_engine.core.exceptions import (
    AlreadySubmittedError, AttemptLimitError, AuthzError, ConcurrentUpdateError, ExpiredAttemptError,
    InactiveQuizError, NotFoundError, PasswordError, ValidationError
)
from quiz_engine.models.quiz import AttemptStatus, QuizAttempt
from quiz_engine.services import attempt_service


def _option(question, correct):
    return next(o["id"] for o in question["options"] if o["is_correct"] is correct)


def _question(started, text):
    return next(q for q in started["questions"] if q["question_text"] == text)


def test_two_question_scenario(db, student, make_quiz):
    quiz = make_quiz(questions=[single_choice("Q1"), single_choice("Q2")])
    started = attempt_service.start_attempt(db, quiz.id, student, now=NOW)
    attempt = started["attempt"]
    q1, q2 = _question(started, "Q1"), _question(started, "Q2")

    assert started["resumed"] is False
    assert started["time_remaining"] == 600
    assert attempt.attempt_number == 1

    attempt_service.record_answer(db, quiz.id, attempt.id, student, q1["id"], [_option(q1, True)], now=NOW)
    attempt_service.record_answer(db, quiz.id, attempt.id, student, q2["id"], _option(q2, False), now=NOW)
    attempt = attempt_service.submit_attempt(db, quiz.id, attempt.id, student, now=NOW + timedelta(minutes=3))

    assert attempt.status == AttemptStatus.submitted
    assert attempt.obtained_marks == 4
    assert attempt.total_marks == 10
    assert attempt.percentage == 40
    assert attempt.passed is False
    assert attempt.time_spent == 180

    with pytest.raises(AttemptLimitError):
        attempt_service.start_attempt(db, quiz.id, student, now=NOW + timedelta(minutes=4))


def test_resume_returns_same_attempt_and_order(db, student, make_quiz):
    quiz = make_quiz(questions=[single_choice(f"Q{n}") for n in range(6)])
    first = attempt_service.start_attempt(db, quiz.id, student, now=NOW)
    second = attempt_service.start_attempt(db, quiz.id, student, now=NOW + timedelta(minutes=2))

    assert second["resumed"] is True
    assert second["attempt"].id == first["attempt"].id
    assert second["questions"] == first["questions"]
    assert [q["id"] for q in second["questions"]] == [q["id"] for q in second["attempt"].question_snapshot]
    assert second["time_remaining"] == 480


def test_lazy_expiry_on_read(db, student, make_quiz):
    quiz = make_quiz(duration=10)
    attempt = attempt_service.start_attempt(db, quiz.id, student, now=NOW)["attempt"]

    attempt, _ = attempt_service.get_attempt_details(
        db, quiz.id, attempt.id, student, now=NOW + timedelta(minutes=11)
    )
    assert attempt.status == AttemptStatus.auto_submitted
    assert attempt.time_spent == 660
    assert attempt.submitted_at is not None
    assert attempt.obtained_marks == -2


def test_answer_after_expiry_auto_submits(db, student, make_quiz):
    quiz = make_quiz(duration=10)
    started = attempt_service.start_attempt(db, quiz.id, student, now=NOW)
    attempt_id = started["attempt"].id
    question = started["questions"][0]

    with pytest.raises(ExpiredAttemptError):
        attempt_service.record_answer(
            db, quiz.id, attempt_id, student, question["id"], [_option(question, True)],
            now=NOW + timedelta(minutes=10, seconds=1),
        )

    attempt = db.get(QuizAttempt, attempt_id)
    db.refresh(attempt)
    assert attempt.status == AttemptStatus.auto_submitted
    assert not attempt.answer_for(question["id"]).selected_options

    with pytest.raises(ExpiredAttemptError):
        attempt_service.record_answer(db, quiz.id, attempt_id, student, question["id"], [], now=NOW)


def test_expired_attempt_frees_slot_for_next_start(db, student, make_quiz):
    quiz = make_quiz(duration=10, settings={"max_attempts": 2, "show_results": "immediately"})
    first = attempt_service.start_attempt(db, quiz.id, student, now=NOW)["attempt"]

    started = attempt_service.start_attempt(db, quiz.id, student, now=NOW + timedelta(minutes=20))
    assert started["resumed"] is False
    assert started["attempt"].attempt_number == 2

    db.refresh(first)
    assert first.status == AttemptStatus.auto_submitted


def test_submit_after_window_is_auto_submitted(db, student, make_quiz):
    quiz = make_quiz(duration=10)
    attempt = attempt_service.start_attempt(db, quiz.id, student, now=NOW)["attempt"]
    attempt = attempt_service.submit_attempt(db, quiz.id, attempt.id, student, now=NOW + timedelta(minutes=15))
    assert attempt.status == AttemptStatus.auto_submitted
    assert attempt.time_spent == 900


def test_double_submit_fails(db, student, make_quiz):
    quiz = make_quiz()
    attempt = attempt_service.start_attempt(db, quiz.id, student, now=NOW)["attempt"]
    attempt_service.submit_attempt(db, quiz.id, attempt.id, student, now=NOW)
    with pytest.raises(AlreadySubmittedError):
        attempt_service.submit_attempt(db, quiz.id, attempt.id, student, now=NOW)
    with pytest.raises(AlreadySubmittedError):
        attempt_service.record_answer(db, quiz.id, attempt.id, student, 1, [], now=NOW)


def test_start_preconditions(db, student, outsider, make_quiz):
    draft = make_quiz(publish=False)
    with pytest.raises(InactiveQuizError):
        attempt_service.start_attempt(db, draft.id, student, now=NOW)

    quiz = make_quiz()
    with pytest.raises(AuthzError):
        attempt_service.start_attempt(db, quiz.id, outsider, now=NOW)
    with pytest.raises(InactiveQuizError):
        attempt_service.start_attempt(db, quiz.id, student, now=NOW + timedelta(days=2))
    with pytest.raises(NotFoundError):
        attempt_service.start_attempt(db, quiz.id + 100, student, now=NOW)


def test_password_protected_quiz(db, student, make_quiz):
    quiz = make_quiz(settings={"require_password": True, "password": "open sesame"})
    with pytest.raises(PasswordError):
        attempt_service.start_attempt(db, quiz.id, student, now=NOW)
    with pytest.raises(PasswordError):
        attempt_service.start_attempt(db, quiz.id, student, password="wrong", now=NOW)

    started = attempt_service.start_attempt(db, quiz.id, student, password="open sesame", now=NOW)
    assert started["attempt"].status == AttemptStatus.in_progress


def test_answer_overwrites_payload_and_accumulates_time(db, student, make_quiz):
    quiz = make_quiz(questions=[single_choice("Q1")])
    started = attempt_service.start_attempt(db, quiz.id, student, now=NOW)
    attempt, question = started["attempt"], started["questions"][0]

    attempt_service.record_answer(db, quiz.id, attempt.id, student, question["id"], [_option(question, False)], time_spent=20, now=NOW)
    answer = attempt_service.record_answer(
        db, quiz.id, attempt.id, student, question["id"], [_option(question, True)], time_spent=15, flagged=True, now=NOW
    )

    assert answer.selected_options == [_option(question, True)]
    assert answer.time_spent == 35
    assert answer.attempts == 2
    assert answer.flagged is True
    db.refresh(attempt)
    assert attempt.analytics["questions_attempted"] == 1


def test_flag_only_save_keeps_answer(db, student, make_quiz):
    quiz = make_quiz(questions=[single_choice("Q1")])
    started = attempt_service.start_attempt(db, quiz.id, student, now=NOW)
    attempt, question = started["attempt"], started["questions"][0]
    correct = _option(question, True)

    attempt_service.record_answer(db, quiz.id, attempt.id, student, question["id"], [correct], time_spent=10, now=NOW)
    answer = attempt_service.record_answer(
        db, quiz.id, attempt.id, student, question["id"], None, time_spent=5, flagged=True, now=NOW,
        answer_provided=False,
    )

    assert answer.selected_options == [correct]
    assert answer.attempts == 1
    assert answer.flagged is True
    assert answer.time_spent == 15

    submitted = attempt_service.submit_attempt(db, quiz.id, attempt.id, student, now=NOW)
    assert submitted.obtained_marks == 5


def test_answer_validation(db, student, make_quiz):
    quiz = make_quiz(questions=[single_choice("Q1"), true_false("T1")])
    started = attempt_service.start_attempt(db, quiz.id, student, now=NOW)
    attempt = started["attempt"]
    choice, boolean = _question(started, "Q1"), _question(started, "T1")

    with pytest.raises(ValidationError):
        attempt_service.record_answer(db, quiz.id, attempt.id, student, choice["id"], [999999], now=NOW)
    with pytest.raises(ValidationError):
        attempt_service.record_answer(db, quiz.id, attempt.id, student, boolean["id"], "maybe", now=NOW)
    with pytest.raises(NotFoundError):
        attempt_service.record_answer(db, quiz.id, attempt.id, student, 999999, [], now=NOW)

    answer = attempt_service.record_answer(db, quiz.id, attempt.id, student, boolean["id"], "true", now=NOW)
    assert answer.boolean_answer is True


def test_other_student_cannot_touch_attempt(db, student, second_student, make_quiz):
    quiz = make_quiz()
    attempt = attempt_service.start_attempt(db, quiz.id, student, now=NOW)["attempt"]
    with pytest.raises(NotFoundError):
        attempt_service.submit_attempt(db, quiz.id, attempt.id, second_student, now=NOW)
    with pytest.raises(NotFoundError):
        attempt_service.get_attempt_details(db, quiz.id, attempt.id, second_student, now=NOW)


def test_conflicting_write_is_retried_once(db, student, make_quiz, monkeypatch):
    quiz = make_quiz(questions=[single_choice("Q1")])
    started = attempt_service.start_attempt(db, quiz.id, student, now=NOW)
    attempt, question = started["attempt"], started["questions"][0]

    original_commit = db.commit
    calls = {"count": 0}

    def flaky_commit():
        calls["count"] += 1
        if calls["count"] == 1:
            raise StaleDataError("row was updated by another transaction")
        return original_commit()

    monkeypatch.setattr(db, "commit", flaky_commit)
    answer = attempt_service.record_answer(
        db, quiz.id, attempt.id, student, question["id"], [_option(question, True)], time_spent=10, now=NOW
    )

    assert calls["count"] == 2
    assert answer.attempts == 1
    assert answer.time_spent == 10


def test_persistent_conflict_raises(db, student, make_quiz, monkeypatch):
    quiz = make_quiz()
    attempt = attempt_service.start_attempt(db, quiz.id, student, now=NOW)["attempt"]

    def always_stale():
        raise StaleDataError("row was updated by another transaction")

    monkeypatch.setattr(db, "commit", always_stale)
    with pytest.raises(ConcurrentUpdateError):
        attempt_service.submit_attempt(db, quiz.id, attempt.id, student, now=NOW)


def test_manual_grading_of_essay(db, teacher, student, make_quiz):
    quiz = make_quiz(questions=[single_choice("Q1"), essay("E1")])
    started = attempt_service.start_attempt(db, quiz.id, student, now=NOW)
    attempt = started["attempt"]
    q1, e1 = _question(started, "Q1"), _question(started, "E1")

    attempt_service.record_answer(db, quiz.id, attempt.id, student, q1["id"], [_option(q1, True)], now=NOW)
    attempt_service.record_answer(db, quiz.id, attempt.id, student, e1["id"], "  c squared  ", now=NOW)
    attempt = attempt_service.submit_attempt(db, quiz.id, attempt.id, student, now=NOW)

    essay_answer = attempt.answer_for(e1["id"])
    assert essay_answer.text_answer == "c squared"
    assert essay_answer.is_correct is None
    assert essay_answer.auto_graded is False
    assert attempt.obtained_marks == 5

    grades = [
        SimpleNamespace(question_id=e1["id"], marks=8, feedback="Good"),
        SimpleNamespace(question_id=q1["id"], marks=50, feedback=None),
    ]
    result = attempt_service.grade_attempt(
        db, quiz.id, attempt.id, grades, teacher, teacher_comments="Nice work", now=NOW
    )

    assert result["success"] is False
    assert [g["question_id"] for g in result["graded"]] == [e1["id"]]
    assert result["failed"][0]["question_id"] == q1["id"]

    db.refresh(attempt)
    assert attempt.obtained_marks == 13
    assert attempt.percentage == 87
    assert attempt.teacher_comments == "Nice work"
    assert attempt.reviewed_by == teacher.id
    graded = attempt.answer_for(e1["id"])
    assert graded.graded_by == teacher.id
    assert graded.feedback == "Good"


def test_grading_live_attempt_fails(db, teacher, student, make_quiz):
    quiz = make_quiz()
    attempt = attempt_service.start_attempt(db, quiz.id, student, now=NOW)["attempt"]
    question_id = attempt.answers[0].question_id
    with pytest.raises(ValidationError):
        attempt_service.grade_answer(db, quiz.id, attempt.id, question_id, 1, None, teacher, now=NOW)


def test_grading_requires_teacher_access(db, other_teacher, student, make_quiz):
    quiz = make_quiz()
    attempt = attempt_service.start_attempt(db, quiz.id, student, now=NOW)["attempt"]
    with pytest.raises(AuthzError):
        attempt_service.grade_answer(db, quiz.id, attempt.id, 1, 1, None, other_teacher, now=NOW)


def test_bulk_grade_reports_failures_and_applies_the_rest(db, teacher, student, second_student, make_quiz):
    quiz = make_quiz(questions=[essay("E1")])
    attempts = []
    for learner in (student, second_student):
        attempt = attempt_service.start_attempt(db, quiz.id, learner, now=NOW)["attempt"]
        attempts.append(attempt_service.submit_attempt(db, quiz.id, attempt.id, learner, now=NOW))
    question_id = attempts[0].answers[0].question_id

    items = [
        SimpleNamespace(attempt_id=attempts[0].id, question_id=question_id, marks=7, feedback="ok"),
        SimpleNamespace(attempt_id=attempts[1].id, question_id=question_id, marks=-1, feedback=None),
        SimpleNamespace(attempt_id=999999, question_id=question_id, marks=5, feedback=None),
    ]
    result = attempt_service.bulk_grade(db, quiz.id, items, teacher, now=NOW)

    assert len(result["graded"]) == 1
    assert {f["attempt_id"] for f in result["failed"]} == {attempts[1].id, 999999}
    assert result["message"] == "Graded 1 answers, 2 failed"

    db.refresh(attempts[0])
    assert attempts[0].obtained_marks == 7


def test_teacher_attempt_listing(db, teacher, student, second_student, make_quiz):
    quiz = make_quiz()
    for learner in (student, second_student):
        attempt_service.start_attempt(db, quiz.id, learner, now=NOW)

    result = attempt_service.get_quiz_attempts(db, quiz.id, teacher, status=AttemptStatus.in_progress)
    assert result["total"] == 2
    assert len(attempt_service.get_student_attempts(db, quiz.id, student, now=NOW)) == 1
