"""
Quiz Data Models
================

SQLAlchemy ORM models for the quiz assessment engine.

Models:
- Quiz: A timed assessment owned by a class/subject within a school
- Question: Individual questions within a quiz, ordered by order_index
- QuestionOption: Options for choice-type questions with correctness flags
- QuizAttempt: One student's timed, gradable instance of taking a quiz
- QuizAnswer: The per-question answer slot of an attempt

Features:
- Stored status (draft/published/cancelled) separate from the time-derived status
- Frozen question snapshot per attempt so quiz edits never reach in-flight attempts
- Optimistic concurrency on attempts through SQLAlchemy's version_id_col
- Unique (quiz, student, attempt_number) to keep attempt numbering sequential
"""

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Boolean, Float,
    ForeignKey, Enum, JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
import enum
from quiz_engine.db.database import Base


class QuestionType(str, enum.Enum):
    """Question type enumeration."""
    multiple_choice = "multiple_choice"
    single_choice = "single_choice"
    true_false = "true_false"
    short_answer = "short_answer"
    essay = "essay"


CHOICE_TYPES = (QuestionType.multiple_choice, QuestionType.single_choice, QuestionType.true_false)
SUBJECTIVE_TYPES = (QuestionType.short_answer, QuestionType.essay)


class DifficultyLevel(str, enum.Enum):
    easy = "easy"
    medium = "medium"
    hard = "hard"


class ShowResultsPolicy(str, enum.Enum):
    """When a student may see their results after submitting."""
    immediately = "immediately"
    after_end = "after_end"
    manual = "manual"
    never = "never"


class GradingMethod(str, enum.Enum):
    automatic = "automatic"
    manual = "manual"
    hybrid = "hybrid"


class QuizStatus(str, enum.Enum):
    """Stored quiz status. Scheduled/active/ended are derived from the time window."""
    draft = "draft"
    published = "published"
    cancelled = "cancelled"


class AttemptStatus(str, enum.Enum):
    in_progress = "in_progress"
    submitted = "submitted"
    auto_submitted = "auto_submitted"
    abandoned = "abandoned"


FINALIZED_STATUSES = (AttemptStatus.submitted, AttemptStatus.auto_submitted)


def _utcnow():
    return datetime.now(timezone.utc)


class Quiz(Base):
    """
    Quiz definition and settings.

    Once any attempt exists only description, instructions and end_date may change.
    """
    __tablename__ = "quizzes"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    school_id = Column(String, nullable=False, index=True)
    class_id = Column(String, nullable=False, index=True)
    subject_id = Column(String, nullable=False, index=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    start_date = Column(DateTime(timezone=True), nullable=False, index=True)
    end_date = Column(DateTime(timezone=True), nullable=False, index=True)
    duration = Column(Integer, nullable=False)  # minutes

    max_attempts = Column(Integer, nullable=False, default=1)
    shuffle_questions = Column(Boolean, nullable=False, default=True)
    shuffle_options = Column(Boolean, nullable=False, default=True)
    show_results = Column(Enum(ShowResultsPolicy), nullable=False, default=ShowResultsPolicy.after_end)
    show_correct_answers = Column(Boolean, nullable=False, default=False)
    allow_review = Column(Boolean, nullable=False, default=True)
    require_password = Column(Boolean, nullable=False, default=False)
    password_hash = Column(String, nullable=True)
    proctoring = Column(JSON, nullable=True)

    total_marks = Column(Float, nullable=False, default=0)
    passing_marks = Column(Float, nullable=False, default=0)
    grading_method = Column(Enum(GradingMethod), nullable=False, default=GradingMethod.automatic)
    partial_credits = Column(Boolean, nullable=False, default=False)
    features = Column(JSON, nullable=True)

    status = Column(Enum(QuizStatus), nullable=False, default=QuizStatus.draft, index=True)
    published_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    creator = relationship("User")
    questions = relationship("Question", back_populates="quiz", cascade="all, delete-orphan", order_by="Question.order_index")
    attempts = relationship("QuizAttempt", back_populates="quiz", cascade="all, delete-orphan")


class Question(Base):
    """Individual questions within a quiz."""
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
    order_index = Column(Integer, nullable=False)
    question_text = Column(Text, nullable=False)
    question_type = Column(Enum(QuestionType), nullable=False)
    correct_answer = Column(Text, nullable=True)  # reference answer for subjective types
    marks = Column(Float, nullable=False)
    negative_marks = Column(Float, nullable=False, default=0)
    difficulty_level = Column(Enum(DifficultyLevel), nullable=False, default=DifficultyLevel.medium)
    time_limit = Column(Integer, nullable=True)  # seconds
    required = Column(Boolean, nullable=False, default=False)
    attachments = Column(JSON, nullable=True)

    quiz = relationship("Quiz", back_populates="questions")
    options = relationship("QuestionOption", back_populates="question", cascade="all, delete-orphan", order_by="QuestionOption.order_index")


class QuestionOption(Base):
    """Options for choice-type questions."""
    __tablename__ = "question_options"

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    text = Column(Text, nullable=False)
    is_correct = Column(Boolean, nullable=False, default=False)
    explanation = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False)

    question = relationship("Question", back_populates="options")


class QuizAttempt(Base):
    """
    A student's attempt at a quiz.

    question_snapshot holds the randomized question set presented at start,
    including correctness flags, and is what grading reads.
    """
    __tablename__ = "quiz_attempts"
    __table_args__ = (
        UniqueConstraint("quiz_id", "student_id", "attempt_number", name="uq_attempt_quiz_student_number"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    quiz_id = Column(Integer, ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    school_id = Column(String, nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False)

    started_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    time_spent = Column(Integer, nullable=False, default=0)  # seconds
    status = Column(Enum(AttemptStatus), nullable=False, default=AttemptStatus.in_progress, index=True)

    question_snapshot = Column(JSON, nullable=False)

    total_marks = Column(Float, nullable=True)
    obtained_marks = Column(Float, nullable=True)
    percentage = Column(Integer, nullable=True)
    passed = Column(Boolean, nullable=True)
    analytics = Column(JSON, nullable=True)

    teacher_comments = Column(Text, nullable=True)
    reviewed_by = Column(String, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    device_info = Column(JSON, nullable=True)
    last_activity_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)

    quiz = relationship("Quiz", back_populates="attempts")
    student = relationship("User", foreign_keys=[student_id])
    answers = relationship("QuizAnswer", back_populates="attempt", cascade="all, delete-orphan", order_by="QuizAnswer.order_index")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_finalized(self) -> bool:
        return self.status in FINALIZED_STATUSES

    def answer_for(self, question_id: int):
        for answer in self.answers:
            if answer.question_id == question_id:
                return answer
        return None


class QuizAnswer(Base):
    """The answer slot for one snapshot question of an attempt."""
    __tablename__ = "quiz_answers"
    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_answer_attempt_question"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True, index=True)
    attempt_id = Column(Integer, ForeignKey("quiz_attempts.id", ondelete="CASCADE"), nullable=False, index=True)
    question_id = Column(Integer, nullable=False, index=True)
    order_index = Column(Integer, nullable=False)
    question_type = Column(Enum(QuestionType), nullable=False)
    difficulty_level = Column(Enum(DifficultyLevel), nullable=False, default=DifficultyLevel.medium)

    selected_options = Column(JSON, nullable=True)
    boolean_answer = Column(Boolean, nullable=True)
    text_answer = Column(Text, nullable=True)

    time_spent = Column(Integer, nullable=False, default=0)  # seconds, accumulated
    attempts = Column(Integer, nullable=False, default=0)
    flagged = Column(Boolean, nullable=False, default=False)
    visited_at = Column(DateTime(timezone=True), nullable=True)
    answered_at = Column(DateTime(timezone=True), nullable=True)

    marks = Column(Float, nullable=False, default=0)
    max_marks = Column(Float, nullable=False)
    is_correct = Column(Boolean, nullable=True)
    feedback = Column(Text, nullable=True)
    graded_by = Column(String, ForeignKey("users.id"), nullable=True)
    graded_at = Column(DateTime(timezone=True), nullable=True)
    auto_graded = Column(Boolean, nullable=False, default=False)

    attempt = relationship("QuizAttempt", back_populates="answers")

    @property
    def is_answered(self) -> bool:
        return bool(self.selected_options) or bool((self.text_answer or "").strip()) or self.boolean_answer is not None
