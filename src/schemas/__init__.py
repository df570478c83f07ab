"""Pydantic v2 schemas for the lesson extraction core."""

from src.schemas.generation import (
    AttemptOutcome,
    ConnectionCheck,
    ErrorKind,
    GenerationRequest,
    GenerationResult,
    ProviderConfig,
    RepairDiagnostics,
    Strictness,
    TerminalState,
)
from src.schemas.lesson import LessonSchema, Question
from src.schemas.validation import (
    ValidationCheck,
    ValidationReportModel,
    ValidationWarning,
)

__all__ = [
    "AttemptOutcome",
    "ConnectionCheck",
    "ErrorKind",
    "GenerationRequest",
    "GenerationResult",
    "ProviderConfig",
    "RepairDiagnostics",
    "Strictness",
    "TerminalState",
    "LessonSchema",
    "Question",
    "ValidationCheck",
    "ValidationWarning",
    "ValidationReportModel",
]
