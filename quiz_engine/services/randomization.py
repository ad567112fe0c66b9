# --------------------------------------------------
# Randomization Engine
#
# Seeded, reproducible presentation order for questions and options.
# - Same seed always yields the same permutation (resume, re-fetch)
# - Different seeds yield independent-looking permutations
# - Option order is seeded per question so questions don't share one order
#
# Not a security control: random.Random is predictable by design. Its job is
# to vary presentation between neighbouring students, nothing more.
# --------------------------------------------------

import random
from typing import Any, Dict, List, Sequence, TypeVar

T = TypeVar("T")


def attempt_seed(quiz_id: int, student_id: str) -> str:
    """Seed identifying one (quiz, student) pair."""
    return f"{quiz_id}:{student_id}"


def seeded_random(seed: str) -> random.Random:
    # String seeds are hashed with SHA-512 by random.Random, independent of PYTHONHASHSEED.
    return random.Random(seed)


def _fisher_yates(items: Sequence[T], rng: random.Random) -> List[T]:
    result = list(items)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randrange(i + 1)
        result[i], result[j] = result[j], result[i]
    return result


def shuffled_questions(questions: Sequence[T], seed: str, enabled: bool = True) -> List[T]:
    if not enabled:
        return list(questions)
    return _fisher_yates(questions, seeded_random(seed))


def shuffled_options(options: Sequence[T], seed: str, question_id: Any, enabled: bool = True) -> List[T]:
    if not enabled or not options:
        return list(options)
    return _fisher_yates(options, seeded_random(f"{seed}:{question_id}"))


def question_snapshot(question) -> Dict[str, Any]:
    """Freeze a Question row into the dict stored on an attempt."""
    return {
        "id": question.id,
        "question_text": question.question_text,
        "question_type": question.question_type.value,
        "correct_answer": question.correct_answer,
        "marks": question.marks,
        "negative_marks": question.negative_marks or 0,
        "difficulty_level": question.difficulty_level.value,
        "time_limit": question.time_limit,
        "required": bool(question.required),
        "attachments": question.attachments or [],
        "options": [
            {
                "id": option.id,
                "text": option.text,
                "is_correct": bool(option.is_correct),
                "explanation": option.explanation,
            }
            for option in question.options
        ],
    }


def presented_questions(quiz, seed: str) -> List[Dict[str, Any]]:
    """The quiz's questions, with their options, in the order a given seed presents them."""
    ordered = shuffled_questions(quiz.questions, seed, enabled=quiz.shuffle_questions)
    presented = []
    for question in ordered:
        snapshot = question_snapshot(question)
        snapshot["options"] = shuffled_options(
            snapshot["options"], seed, question.id, enabled=quiz.shuffle_options
        )
        presented.append(snapshot)
    return presented
