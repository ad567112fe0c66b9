"""
Auto Grader
===========

Pure mapping from a snapshot question and a submitted answer to marks and
correctness. Only objective types are graded here; short answer and essay
questions wait for a teacher.

Marks: full marks when correct, minus negative_marks when incorrect (0 if the
question has no negative marking). There is no floor at zero, per question or
per attempt.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from quiz_engine.models.quiz import QuestionType, SUBJECTIVE_TYPES


@dataclass(frozen=True)
class GradeResult:
    marks: float
    is_correct: bool


def _correct_option_ids(question: Dict[str, Any]) -> set:
    return {option["id"] for option in question.get("options", []) if option.get("is_correct")}


def is_single_choice_correct(question: Dict[str, Any], selected: Iterable[int]) -> bool:
    selected = list(selected or [])
    correct = _correct_option_ids(question)
    return len(correct) == 1 and len(selected) == 1 and selected[0] in correct


def is_multiple_choice_correct(question: Dict[str, Any], selected: Iterable[int]) -> bool:
    return set(selected or []) == _correct_option_ids(question)


def is_true_false_correct(question: Dict[str, Any], boolean_answer: Optional[bool]) -> bool:
    if boolean_answer is None:
        return False
    correct_option = next((option for option in question.get("options", []) if option.get("is_correct")), None)
    if correct_option is None:
        return False
    text = (correct_option.get("text") or "").strip().lower()
    if text == "true":
        return boolean_answer is True
    if text == "false":
        return boolean_answer is False
    return False


def awarded_marks(question: Dict[str, Any], is_correct: bool) -> float:
    if is_correct:
        return question["marks"]
    negative = question.get("negative_marks") or 0
    return -negative if negative > 0 else 0


def grade(question: Dict[str, Any], selected_options=None, boolean_answer=None) -> Optional[GradeResult]:
    """
    Grade one answer. Returns None for subjective questions.

    An unanswered objective question is simply a non-matching answer and is
    graded as incorrect.
    """
    question_type = QuestionType(question["question_type"])
    if question_type in SUBJECTIVE_TYPES:
        return None

    if question_type == QuestionType.single_choice:
        correct = is_single_choice_correct(question, selected_options)
    elif question_type == QuestionType.multiple_choice:
        correct = is_multiple_choice_correct(question, selected_options)
    elif question_type == QuestionType.true_false:
        correct = is_true_false_correct(question, boolean_answer)
    else:
        raise ValueError(f"Unsupported question type: {question_type.value}")

    return GradeResult(marks=awarded_marks(question, correct), is_correct=correct)
