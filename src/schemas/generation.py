"""Pydantic v2 schemas for generation requests, attempt outcomes and results."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from src.schemas.lesson import LessonSchema
from src.schemas.validation import ValidationReportModel, ValidationWarning


class ErrorKind(str, Enum):
    """Machine-readable failure tag attached to outcomes and results."""

    MISSING_CREDENTIAL = "MissingCredential"
    PROVIDER_DISABLED = "ProviderDisabled"
    UNKNOWN_PROVIDER = "UnknownProvider"
    RATE_LIMITED = "RateLimited"
    SERVICE_UNAVAILABLE = "ServiceUnavailable"
    CONNECTION_FAILURE = "ConnectionFailure"
    TIMED_OUT = "TimedOut"
    REQUEST_REJECTED = "RequestRejected"
    INVALID_RESPONSE_SHAPE = "InvalidResponseShape"
    MALFORMED_OUTPUT = "MalformedOutput"
    SCHEMA_VIOLATION = "SchemaViolation"
    DEADLINE_EXCEEDED = "DeadlineExceeded"
    INTERNAL_ERROR = "InternalError"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE_KINDS


_RETRYABLE_KINDS = frozenset(
    {
        ErrorKind.RATE_LIMITED,
        ErrorKind.SERVICE_UNAVAILABLE,
        ErrorKind.CONNECTION_FAILURE,
        ErrorKind.TIMED_OUT,
    }
)


class Strictness(str, Enum):
    """Repair heuristics level.

    ``conservative`` only performs structural repair. ``relaxed`` also runs
    value-coercion heuristics whose output is flagged non-authoritative.
    """

    CONSERVATIVE = "conservative"
    RELAXED = "relaxed"


class TerminalState(str, Enum):
    """Final state of one orchestrated generation call."""

    SUCCEEDED = "Succeeded"
    FAILED_FATAL = "FailedFatal"
    FAILED_EXHAUSTED = "FailedExhausted"


class ProviderConfig(BaseModel):
    """Read-only configuration for one external model endpoint.

    Attributes:
        name: Provider identifier used in requests (e.g. ``openrouter``).
        api_style: Wire dialect, ``openai`` (chat completions) or ``anthropic``.
        base_url: API base URL.
        model: Model identifier sent with each request.
        api_key: Credential; empty means missing.
        enabled: ``False`` when force-skipped by configuration.
    """

    model_config = ConfigDict(strict=False, populate_by_name=True, frozen=True)

    name: str
    api_style: Literal["openai", "anthropic"] = "openai"
    base_url: str
    model: str
    api_key: str = Field(default="", repr=False)
    enabled: bool = True


class GenerationRequest(BaseModel):
    """One caller request, owned by a single generation call.

    Attributes:
        prompt: Fully-formed user prompt.
        provider: Provider identifier to commit to for this sequence.
        max_attempts: Attempt budget.
        timeout_ms: Per-attempt timeout in milliseconds.
        strictness: Repair heuristics level.
        system_prompt: Optional system message.
        temperature: Sampling temperature.
        top_p: Nucleus-sampling value.
        max_tokens: Output token budget.
        json_hint: Ask the provider for JSON-object output when supported.
        target_question_count: Soft target checked by the validator.
        deadline_ms: Optional overall deadline for the whole sequence.
    """

    model_config = ConfigDict(strict=False, populate_by_name=True)

    prompt: str = Field(..., min_length=1)
    provider: str = Field(default="openrouter", min_length=1)
    max_attempts: int = Field(default=3, ge=1, le=10)
    timeout_ms: int = Field(default=30000, gt=0)
    strictness: Strictness = Strictness.CONSERVATIVE
    system_prompt: str | None = None
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, gt=0.0, le=1.0)
    max_tokens: int = Field(default=4000, gt=0)
    json_hint: bool = True
    target_question_count: int = Field(default=10, gt=0)
    deadline_ms: int | None = Field(default=None, gt=0)


class AttemptOutcome(BaseModel):
    """Tagged result of one provider attempt.

    The success variant has ``error_kind is None`` and carries ``raw_text``;
    every failure variant carries an :class:`ErrorKind` and a detail message.
    """

    model_config = ConfigDict(strict=False, populate_by_name=True, frozen=True)

    attempt: int = Field(..., ge=1)
    provider: str
    raw_text: str | None = None
    status_code: int | None = None
    error_kind: ErrorKind | None = None
    detail: str = ""
    elapsed_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.error_kind is None and bool(self.raw_text)

    @property
    def retryable(self) -> bool:
        return self.error_kind is not None and self.error_kind.retryable


class RepairDiagnostics(BaseModel):
    """What the repair engine did to the raw text.

    Attributes:
        raw_text: Model output as received.
        cleaned_text: Text handed to the strict parser.
        heuristics: Names of repair steps that changed the text.
        non_authoritative: ``True`` when a relaxed-only coercion fired.
    """

    model_config = ConfigDict(strict=False, populate_by_name=True)

    raw_text: str = ""
    cleaned_text: str = ""
    heuristics: list[str] = Field(default_factory=list)
    non_authoritative: bool = False


class GenerationResult(BaseModel):
    """Final outcome of one orchestrated generation call.

    Always fully populated; callers never need to catch exceptions.
    """

    model_config = ConfigDict(strict=False, populate_by_name=True)

    success: bool
    state: TerminalState
    provider: str
    message: str
    lesson: LessonSchema | None = None
    data: dict[str, Any] | None = None
    error_kind: ErrorKind | None = None
    attempts: list[AttemptOutcome] = Field(default_factory=list)
    warnings: list[ValidationWarning] = Field(default_factory=list)
    diagnostics: RepairDiagnostics | None = None
    validation_report: ValidationReportModel | None = None
    elapsed_ms: float = 0.0

    @computed_field
    @property
    def total_attempts(self) -> int:
        return len(self.attempts)

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)


class ConnectionCheck(BaseModel):
    """Result of a single-attempt provider probe."""

    model_config = ConfigDict(strict=False, populate_by_name=True)

    provider: str
    success: bool
    message: str
    response_preview: str = ""
    error_kind: ErrorKind | None = None
