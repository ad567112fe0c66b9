"""
Quiz Schemas
============

Pydantic models for quiz authoring requests and analytics responses.

Field-level typing lives here; structural rules (option counts, correct-option
counts) and numeric clamping are applied by the quiz service so that callers get
a StructureError naming the offending question.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any
from datetime import datetime
from quiz_engine.models.quiz import QuestionType, DifficultyLevel, ShowResultsPolicy, GradingMethod


class OptionCreate(BaseModel):
    """A single option of a choice-type question."""
    text: str = ""
    is_correct: bool = False
    explanation: Optional[str] = None


class QuestionCreate(BaseModel):
    """Question definition as submitted by the quiz author."""
    question_text: str = ""
    question_type: QuestionType
    options: List[OptionCreate] = []
    correct_answer: Optional[str] = Field(default=None, description="Reference answer for short answer and essay questions")
    marks: float
    negative_marks: float = 0
    difficulty_level: DifficultyLevel = DifficultyLevel.medium
    time_limit: Optional[int] = Field(default=None, description="Per-question time limit in seconds")
    required: bool = False
    attachments: List[Dict[str, Any]] = []


class ProctoringSettings(BaseModel):
    enabled: bool = False
    lockdown_browser: bool = False
    webcam_required: bool = False
    plagiarism_check: bool = False


class QuizSettings(BaseModel):
    max_attempts: int = 1
    shuffle_questions: bool = True
    shuffle_options: bool = True
    show_results: ShowResultsPolicy = ShowResultsPolicy.after_end
    show_correct_answers: bool = False
    allow_review: bool = True
    require_password: bool = False
    password: Optional[str] = None
    proctoring: ProctoringSettings = Field(default_factory=ProctoringSettings)


class GradingSettings(BaseModel):
    passing_marks: Optional[float] = None
    grading_method: GradingMethod = GradingMethod.automatic
    partial_credits: bool = False


class QuizFeatures(BaseModel):
    calculator: bool = False
    formula_sheet: bool = False
    dictionary: bool = False
    notepad: bool = False


class QuizCreate(BaseModel):
    """Request model for creating a quiz."""
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    instructions: Optional[str] = Field(default=None, max_length=2000)
    class_id: str
    subject_id: str
    start_date: datetime
    end_date: datetime
    duration: int = Field(..., description="Duration in minutes (1-300)")
    questions: List[QuestionCreate] = []
    settings: QuizSettings = Field(default_factory=QuizSettings)
    grading: GradingSettings = Field(default_factory=GradingSettings)
    features: QuizFeatures = Field(default_factory=QuizFeatures)


class QuizUpdate(BaseModel):
    """
    Partial update. Only fields present in the request body are applied, and
    presence is what the structure lock inspects.
    """
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    instructions: Optional[str] = Field(default=None, max_length=2000)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    duration: Optional[int] = None
    questions: Optional[List[QuestionCreate]] = None
    settings: Optional[QuizSettings] = None
    grading: Optional[GradingSettings] = None
    features: Optional[QuizFeatures] = None


class QuestionStatistics(BaseModel):
    question_id: int
    question_text: Optional[str] = None
    attempted: int
    correct: int
    correct_rate: float
    average_time_spent: float


class QuizStatisticsResponse(BaseModel):
    """Quiz-level aggregate computed over finalized attempts."""
    quiz_id: int
    total_attempts: int
    average_score: float
    average_completion_time: float
    pass_rate: float
    max_score: Optional[int] = None
    min_score: Optional[int] = None
    status_counts: Dict[str, int] = {}
    questions: List[QuestionStatistics] = []
