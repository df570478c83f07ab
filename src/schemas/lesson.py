"""Pydantic v2 schemas for validated lessons and their questions."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Question(BaseModel):
    """One quiz question.

    Attributes:
        type: Question type tag (``multiple_choice`` by default).
        content: Question text shown to the learner.
        options: The four answer options, in display order.
        correct_answer: Should equal exactly one option (soft invariant).
        score: Points awarded for a correct answer.
        time_limit: Seconds allowed to answer.
        explanation: Optional rationale supplied by the model.
    """

    model_config = ConfigDict(strict=False, populate_by_name=True)

    type: str = Field(default="multiple_choice")
    content: str = Field(..., min_length=1)
    options: list[str] = Field(..., min_length=4, max_length=4)
    correct_answer: str = Field(..., alias="correctAnswer", min_length=1)
    score: int = Field(default=100, ge=0)
    time_limit: int = Field(default=30, alias="timeLimit", gt=0)
    explanation: str | None = None


class LessonSchema(BaseModel):
    """A validated lesson.

    Attributes:
        title: Non-empty lesson title.
        questions: Questions in presentation order.
    """

    model_config = ConfigDict(strict=False, populate_by_name=True)

    title: str = Field(..., min_length=1)
    questions: list[Question]
