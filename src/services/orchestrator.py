"""Retry/backoff orchestrator for structured lesson generation.

Drives repeated :class:`~src.services.provider_client.ProviderClient`
attempts for one request, then hands the first successful response to the
repair engine and the lesson validator. Every path ends in a fully-populated
:class:`~src.schemas.generation.GenerationResult`; nothing escapes a call to
:meth:`GenerationOrchestrator.run` except task cancellation.

State machine::

    Attempting --success--> Succeeded
    Attempting --fatal kind--> FailedFatal
    Attempting --retryable, budget left--> BackingOff --sleep--> Attempting
    Attempting --retryable, budget spent--> FailedExhausted
    (deadline cannot fit next attempt) --> FailedExhausted / DeadlineExceeded

Retry policy: delay = ``base_ms * attempt + uniform(0, jitter_ms)``, capped
at ``max_backoff_ms`` (2 s → 4 s → 6 s … plus up to 1 s jitter by default).
"""

import asyncio
import logging
import random
import time
from enum import Enum
from typing import Awaitable, Callable

from src.config import Settings, get_settings
from src.exceptions import MalformedOutputError, SchemaViolationError
from src.schemas.generation import (
    AttemptOutcome,
    ErrorKind,
    GenerationRequest,
    GenerationResult,
    RepairDiagnostics,
    TerminalState,
)
from src.schemas.validation import ValidationReportModel, ValidationWarning
from src.services.provider_client import ProviderClient
from src.services.repair import RepairEngine
from src.services.validator import LessonValidator

logger = logging.getLogger(__name__)


class AttemptState(str, Enum):
    """Non-terminal states of the retry loop."""

    ATTEMPTING = "Attempting"
    BACKING_OFF = "BackingOff"


def compute_backoff_ms(
    base_ms: float,
    attempt: int,
    jitter_ms: float,
    rng: random.Random,
    cap_ms: float | None = None,
) -> float:
    """Delay before the attempt following ``attempt``.

    Args:
        base_ms: Linear base delay per attempt.
        attempt: Number of the attempt that just failed (1-based).
        jitter_ms: Upper bound of the uniform random jitter.
        rng: Random source providing ``uniform``.
        cap_ms: Optional ceiling on the returned delay.

    Returns:
        Delay in milliseconds.
    """
    delay = base_ms * attempt + (rng.uniform(0, jitter_ms) if jitter_ms > 0 else 0.0)
    if cap_ms is not None:
        delay = min(delay, cap_ms)
    return max(0.0, delay)


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class GenerationOrchestrator:
    """Run one request against one provider with retries, repair and validation.

    Args:
        client: Single-attempt provider client. Defaults to a new
            :class:`ProviderClient` built from ``settings``.
        settings: Application settings (backoff schedule, default deadline).
        validator: Lesson validator; defaults to :class:`LessonValidator`.
        sleep: Awaitable sleep in seconds; the only suspension point.
        clock: Monotonic clock in seconds.
        rng: Random source for backoff jitter.
    """

    def __init__(
        self,
        client: ProviderClient | None = None,
        settings: Settings | None = None,
        validator: LessonValidator | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or ProviderClient(self._settings)
        self._validator = validator or LessonValidator()
        self._sleep = sleep
        self._clock = clock
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, request: GenerationRequest) -> GenerationResult:
        """Execute the retry state machine for ``request``.

        Args:
            request: The generation request; its provider is fixed for the
                whole sequence.

        Returns:
            A :class:`GenerationResult` in one of the terminal states.
        """
        start = self._clock()
        attempts: list[AttemptOutcome] = []
        deadline_ms = request.deadline_ms or self._settings.default_deadline_ms
        deadline_at = start + deadline_ms / 1000 if deadline_ms else None

        logger.info(
            "Starting generation via provider=%s (max_attempts=%d, strictness=%s)",
            request.provider,
            request.max_attempts,
            request.strictness.value,
        )

        try:
            attempt = 1
            state = AttemptState.ATTEMPTING

            while True:
                if state is AttemptState.ATTEMPTING:
                    if not self._fits_deadline(deadline_at, request.timeout_ms):
                        return self._deadline_result(request, attempts, start)

                    logger.info(
                        "Generation attempt %d/%d via %s",
                        attempt,
                        request.max_attempts,
                        request.provider,
                    )
                    outcome = await self._client.send(request, attempt)
                    attempts.append(outcome)

                    if outcome.succeeded:
                        return self._complete(request, outcome, attempts, start)

                    kind = outcome.error_kind or ErrorKind.INVALID_RESPONSE_SHAPE
                    if not kind.retryable:
                        logger.error(
                            "Attempt %d via %s failed fatally (%s): %s",
                            attempt,
                            request.provider,
                            kind.value,
                            outcome.detail,
                        )
                        return self._failure(
                            request,
                            TerminalState.FAILED_FATAL,
                            kind,
                            f"Generation failed: {outcome.detail or kind.value}",
                            attempts,
                            start,
                        )

                    logger.warning(
                        "Attempt %d/%d via %s failed (%s): %s",
                        attempt,
                        request.max_attempts,
                        request.provider,
                        kind.value,
                        outcome.detail,
                    )
                    if attempt >= request.max_attempts:
                        logger.error(
                            "Generation via %s exhausted %d attempts",
                            request.provider,
                            request.max_attempts,
                        )
                        return self._failure(
                            request,
                            TerminalState.FAILED_EXHAUSTED,
                            kind,
                            (
                                f"Generation failed after {attempt} attempts: "
                                f"{outcome.detail or kind.value}"
                            ),
                            attempts,
                            start,
                        )
                    state = AttemptState.BACKING_OFF

                else:
                    delay_ms = compute_backoff_ms(
                        self._settings.backoff_base_ms,
                        attempt,
                        self._settings.backoff_jitter_ms,
                        self._rng,
                        self._settings.max_backoff_ms,
                    )
                    if not self._fits_deadline(deadline_at, request.timeout_ms + delay_ms):
                        return self._deadline_result(request, attempts, start)

                    logger.info("Retrying in %.1f seconds…", delay_ms / 1000)
                    await self._sleep(delay_ms / 1000)
                    attempt += 1
                    state = AttemptState.ATTEMPTING

        except Exception as exc:
            logger.exception("Unexpected error during generation via %s", request.provider)
            return self._failure(
                request,
                TerminalState.FAILED_FATAL,
                ErrorKind.INTERNAL_ERROR,
                f"Internal error during generation: {exc}",
                attempts,
                start,
            )

    # ------------------------------------------------------------------
    # Post-success pipeline: repair → validate → build
    # ------------------------------------------------------------------

    def _complete(
        self,
        request: GenerationRequest,
        outcome: AttemptOutcome,
        attempts: list[AttemptOutcome],
        start: float,
    ) -> GenerationResult:
        raw_text = outcome.raw_text or ""
        engine = RepairEngine(request.strictness)

        try:
            repaired = engine.repair(raw_text)
        except MalformedOutputError as exc:
            logger.error(
                "Unrepairable output from %s (first 500 chars): %s",
                request.provider,
                raw_text[:500],
            )
            return self._failure(
                request,
                TerminalState.FAILED_FATAL,
                ErrorKind.MALFORMED_OUTPUT,
                f"Model output could not be parsed: {exc}",
                attempts,
                start,
                diagnostics=RepairDiagnostics(
                    raw_text=exc.original_text, cleaned_text=exc.cleaned_text
                ),
            )

        diagnostics = repaired.to_diagnostics()
        report = self._validator.validate(repaired.data, request.target_question_count)
        report_model = report.to_schema()

        if not report.passed:
            logger.error(
                "Lesson from %s violates schema: %s",
                request.provider,
                report.error_messages(),
            )
            return self._failure(
                request,
                TerminalState.FAILED_FATAL,
                ErrorKind.SCHEMA_VIOLATION,
                f"Lesson failed validation: {'; '.join(report.error_messages())}",
                attempts,
                start,
                diagnostics=diagnostics,
                report=report_model,
            )

        try:
            lesson = self._validator.build_lesson(repaired.data)
        except SchemaViolationError as exc:
            logger.error("Lesson from %s could not be built: %s", request.provider, exc)
            return self._failure(
                request,
                TerminalState.FAILED_FATAL,
                ErrorKind.SCHEMA_VIOLATION,
                str(exc),
                attempts,
                start,
                diagnostics=diagnostics,
                report=report_model,
            )

        warnings = list(report_model.warnings)
        if repaired.non_authoritative:
            warnings.append(
                ValidationWarning(
                    type="non_authoritative_repair",
                    message=(
                        "Output was repaired with value-coercion heuristics: "
                        + ", ".join(repaired.heuristics)
                    ),
                    severity="medium",
                )
            )

        elapsed_ms = self._elapsed_ms(start)
        logger.info(
            "Generation completed in %.2f seconds via %s (%d attempt(s), %d question(s))",
            elapsed_ms / 1000,
            request.provider,
            len(attempts),
            len(lesson.questions),
        )
        return GenerationResult(
            success=True,
            state=TerminalState.SUCCEEDED,
            provider=request.provider,
            message=f"Generated {len(lesson.questions)} question(s) via {request.provider}",
            lesson=lesson,
            data=repaired.data,
            attempts=attempts,
            warnings=warnings,
            diagnostics=diagnostics,
            validation_report=report_model,
            elapsed_ms=elapsed_ms,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fits_deadline(self, deadline_at: float | None, needed_ms: float) -> bool:
        if deadline_at is None:
            return True
        remaining_ms = (deadline_at - self._clock()) * 1000
        return remaining_ms >= needed_ms

    def _deadline_result(
        self,
        request: GenerationRequest,
        attempts: list[AttemptOutcome],
        start: float,
    ) -> GenerationResult:
        logger.error(
            "Deadline leaves no room for another attempt via %s after %d attempt(s)",
            request.provider,
            len(attempts),
        )
        last_detail = attempts[-1].detail if attempts else ""
        message = "Deadline exceeded before another attempt could complete"
        if last_detail:
            message = f"{message}; last error: {last_detail}"
        return self._failure(
            request,
            TerminalState.FAILED_EXHAUSTED,
            ErrorKind.DEADLINE_EXCEEDED,
            message,
            attempts,
            start,
        )

    def _failure(
        self,
        request: GenerationRequest,
        state: TerminalState,
        kind: ErrorKind,
        message: str,
        attempts: list[AttemptOutcome],
        start: float,
        diagnostics: RepairDiagnostics | None = None,
        report: ValidationReportModel | None = None,
    ) -> GenerationResult:
        return GenerationResult(
            success=False,
            state=state,
            provider=request.provider,
            message=message,
            error_kind=kind,
            attempts=list(attempts),
            diagnostics=diagnostics,
            validation_report=report,
            elapsed_ms=self._elapsed_ms(start),
        )

    def _elapsed_ms(self, start: float) -> float:
        return round((self._clock() - start) * 1000, 1)
