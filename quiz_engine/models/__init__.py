from .user import User, UserRole, ClassEnrollment, TeachingAssignment
from .quiz import (
    Quiz, Question, QuestionOption, QuizAttempt, QuizAnswer,
    QuestionType, DifficultyLevel, ShowResultsPolicy, GradingMethod, QuizStatus, AttemptStatus
)

__all__ = [
    "User", "UserRole", "ClassEnrollment", "TeachingAssignment",
    "Quiz", "Question", "QuestionOption", "QuizAttempt", "QuizAnswer",
    "QuestionType", "DifficultyLevel", "ShowResultsPolicy", "GradingMethod", "QuizStatus", "AttemptStatus"
]
