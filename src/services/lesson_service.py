"""Caller-level lesson generation with provider failover.

Composes independent :class:`~src.services.orchestrator.GenerationOrchestrator`
invocations: one per provider in the configured order (sequential, never in
parallel), plus at most one re-run with relaxed repair strictness when a
provider's output could not be parsed under conservative strictness.

Usage::

    from src.services.lesson_service import LessonGenerationService

    service = LessonGenerationService()
    result = await service.generate_lesson("Chủ nghĩa duy vật biện chứng")
    if result.success:
        print(result.lesson.title)
"""

import logging
import time

from src.config import Settings, get_settings
from src.schemas.generation import (
    ConnectionCheck,
    ErrorKind,
    GenerationRequest,
    GenerationResult,
    Strictness,
)
from src.services.orchestrator import GenerationOrchestrator
from src.services.prompts import assemble_lesson_prompt
from src.services.provider_client import ProviderClient

logger = logging.getLogger(__name__)


class LessonGenerationService:
    """Generate lessons across providers.

    Args:
        settings: Application settings; defaults to :func:`get_settings`.
        client: Provider client shared by connection checks and the default
            orchestrator.
        orchestrator: Orchestrator to run each provider sequence with.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: ProviderClient | None = None,
        orchestrator: GenerationOrchestrator | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or ProviderClient(self._settings)
        self._orchestrator = orchestrator or GenerationOrchestrator(
            client=self._client, settings=self._settings
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def build_request(
        self,
        prompt: str,
        provider: str,
        strictness: Strictness,
        question_count: int,
    ) -> GenerationRequest:
        """Build a request for ``provider`` from the configured defaults."""
        s = self._settings
        return GenerationRequest(
            prompt=prompt,
            provider=provider,
            max_attempts=s.default_max_attempts,
            timeout_ms=s.default_timeout_ms,
            strictness=strictness,
            system_prompt=s.system_prompt or None,
            temperature=s.temperature,
            top_p=s.top_p,
            max_tokens=s.max_output_tokens,
            target_question_count=question_count,
            deadline_ms=s.default_deadline_ms,
        )

    async def generate_lesson(
        self,
        topic_prompt: str,
        providers: list[str] | None = None,
        strictness: Strictness | None = None,
        question_count: int | None = None,
    ) -> GenerationResult:
        """Generate one lesson, failing over across providers.

        Args:
            topic_prompt: Caller's topic description.
            providers: Provider order to try; defaults to ``provider_order``.
            strictness: Initial repair strictness; defaults to
                ``default_strictness``.
            question_count: Target question count; defaults to
                ``target_question_count``.

        Returns:
            The first successful :class:`GenerationResult`, otherwise the
            last failure.

        Raises:
            ValueError: If ``topic_prompt`` is blank.
        """
        start = time.monotonic()
        count = question_count or self._settings.target_question_count
        level = strictness or self._settings.default_strictness
        order = list(providers or self._settings.provider_order) or [
            self._settings.default_provider
        ]
        prompt = assemble_lesson_prompt(
            topic_prompt, question_count=count, language=self._settings.lesson_language
        )

        for index, provider in enumerate(order, start=1):
            request = self.build_request(prompt, provider, level, count)
            result = await self._run_with_escalation(request)
            if result.success:
                logger.info(
                    "Lesson generated via %s in %.2f seconds (provider %d/%d)",
                    provider,
                    time.monotonic() - start,
                    index,
                    len(order),
                )
                return result

            if index < len(order):
                logger.warning(
                    "Provider %s failed (%s); trying %s",
                    provider,
                    result.error_kind.value if result.error_kind else "unknown",
                    order[index],
                )

        logger.error("All %d provider(s) failed: %s", len(order), result.message)
        if len(order) == 1:
            return result
        return result.model_copy(
            update={"message": f"All providers failed; last error: {result.message}"}
        )

    async def check_connection(self, provider: str | None = None) -> ConnectionCheck:
        """Probe one provider (default provider when omitted)."""
        return await self._client.check_connection(provider or self._settings.default_provider)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run_with_escalation(self, request: GenerationRequest) -> GenerationResult:
        result = await self._orchestrator.run(request)
        if (
            result.error_kind is ErrorKind.MALFORMED_OUTPUT
            and request.strictness is Strictness.CONSERVATIVE
            and self._settings.escalate_strictness
        ):
            logger.warning(
                "Output from %s unparseable under conservative repair; retrying relaxed",
                request.provider,
            )
            relaxed = request.model_copy(update={"strictness": Strictness.RELAXED})
            result = await self._orchestrator.run(relaxed)
        return result
