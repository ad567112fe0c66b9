"""
Attempt Schemas
===============

Pydantic models for attempt lifecycle and grading requests/responses.

Grading Schemas:
- GradeItem: Marks and feedback for one answer of an attempt
- AttemptGradeRequest: Several answers of one attempt plus teacher comments
- BulkGradeRequest: Items spanning many attempts of the same quiz
- BulkGradeResponse: Per-item success/failure report
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Union, Dict, Any


class AttemptStartRequest(BaseModel):
    password: Optional[str] = None


class AnswerSubmit(BaseModel):
    """
    Answer payload. Choice questions take an option id or a list of option ids,
    true/false takes a boolean, short answer and essay take text.
    """
    question_id: int
    answer: Union[List[int], bool, int, str, None] = None
    time_spent: int = Field(default=0, description="Seconds spent since the previous save of this answer")
    flagged: Optional[bool] = None


class AnswerAck(BaseModel):
    question_id: int
    time_spent: int
    attempts: int


class GradeItem(BaseModel):
    question_id: int
    marks: float
    feedback: Optional[str] = None


class AttemptGradeRequest(BaseModel):
    grades: List[GradeItem] = []
    teacher_comments: Optional[str] = None


class BulkGradeItem(GradeItem):
    attempt_id: int


class BulkGradeRequest(BaseModel):
    items: List[BulkGradeItem]


class GradeFailure(BaseModel):
    attempt_id: Optional[int] = None
    question_id: int
    error: str


class BulkGradeResponse(BaseModel):
    success: bool
    message: str
    graded: List[Dict[str, Any]] = []
    failed: List[GradeFailure] = []
