"""Single-attempt provider client for external language-model endpoints.

Performs exactly one network exchange per :meth:`ProviderClient.send` call
and classifies the outcome into an :class:`~src.schemas.generation.AttemptOutcome`.
No retry logic lives here; the orchestrator owns the retry budget.

Two wire styles are supported, selected per provider by ``ProviderConfig.api_style``:

- ``openai``: OpenAI-compatible ``POST {base_url}/chat/completions`` over
  ``httpx`` (OpenRouter, Groq).
- ``anthropic``: Anthropic Messages API through the ``anthropic`` SDK, with
  SDK-level retries disabled.

Usage::

    from src.services.provider_client import ProviderClient

    client = ProviderClient()
    outcome = await client.send(GenerationRequest(prompt="...", provider="groq"))
    if outcome.succeeded:
        print(outcome.raw_text)
"""

import asyncio
import logging
import time
from typing import Any

import anthropic
import httpx

from src.config import Settings, get_settings
from src.exceptions import InvalidResponseShapeError, ProviderConfigError
from src.schemas.generation import (
    AttemptOutcome,
    ConnectionCheck,
    ErrorKind,
    GenerationRequest,
    ProviderConfig,
)

logger = logging.getLogger(__name__)

_PROBE_PROMPT = "Reply with the single word OK."
_PROBE_MAX_TOKENS = 16
_PREVIEW_CHARS = 100
_BODY_CHARS = 200


def classify_status(status_code: int) -> ErrorKind:
    """Map an HTTP status code from a provider to an :class:`ErrorKind`.

    Args:
        status_code: HTTP status returned by the provider.

    Returns:
        ``RateLimited`` for 429, ``TimedOut`` for 408, ``ServiceUnavailable``
        for 5xx (and Anthropic's 529), ``RequestRejected`` for other 4xx and
        ``InvalidResponseShape`` for anything else.
    """
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code == 408:
        return ErrorKind.TIMED_OUT
    if status_code >= 500:
        return ErrorKind.SERVICE_UNAVAILABLE
    if 400 <= status_code < 500:
        return ErrorKind.REQUEST_REJECTED
    return ErrorKind.INVALID_RESPONSE_SHAPE


class ProviderClient:
    """Send one request to one configured provider.

    Args:
        settings: Application settings; defaults to :func:`get_settings`.
        http_client: Optional shared ``httpx.AsyncClient`` for the
            OpenAI-compatible style. When omitted, a client is opened and
            closed per call.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._providers: dict[str, ProviderConfig] = self._settings.provider_configs()
        self._http_client = http_client

    def get_config(self, provider: str) -> ProviderConfig:
        """Return the configuration for ``provider``.

        Raises:
            ProviderConfigError: If the provider has no configuration.
        """
        try:
            return self._providers[provider]
        except KeyError:
            raise ProviderConfigError(provider) from None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def send(self, request: GenerationRequest, attempt: int = 1) -> AttemptOutcome:
        """Perform one network exchange and classify the result.

        Never raises for provider failures; every failure is returned as an
        outcome carrying an :class:`ErrorKind`. Task cancellation propagates.

        Args:
            request: The generation request (prompt, provider, sampling, timeout).
            attempt: Attempt number within the caller's retry sequence.

        Returns:
            The :class:`AttemptOutcome` of this single attempt.
        """
        start = time.monotonic()

        try:
            config = self.get_config(request.provider)
        except ProviderConfigError as exc:
            return self._outcome(request, attempt, start, ErrorKind.UNKNOWN_PROVIDER, str(exc))

        if not config.enabled:
            return self._outcome(
                request,
                attempt,
                start,
                ErrorKind.PROVIDER_DISABLED,
                f"Provider {config.name!r} is disabled by configuration",
            )
        if not config.api_key:
            return self._outcome(
                request,
                attempt,
                start,
                ErrorKind.MISSING_CREDENTIAL,
                f"No API key configured for provider {config.name!r}",
            )

        logger.debug(
            "Calling %s (attempt %d, model=%s, timeout=%dms)",
            config.name,
            attempt,
            config.model,
            request.timeout_ms,
        )

        try:
            raw_text = await asyncio.wait_for(
                self._exchange(config, request), timeout=request.timeout_ms / 1000
            )
        except (asyncio.TimeoutError, httpx.TimeoutException, anthropic.APITimeoutError):
            return self._outcome(
                request,
                attempt,
                start,
                ErrorKind.TIMED_OUT,
                f"No response from {config.name} within {request.timeout_ms}ms",
            )
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            return self._outcome(
                request,
                attempt,
                start,
                classify_status(status),
                f"{config.name} returned HTTP {status}: {exc.response.text[:_BODY_CHARS]}",
                status_code=status,
            )
        except anthropic.APIStatusError as exc:
            return self._outcome(
                request,
                attempt,
                start,
                classify_status(exc.status_code),
                f"{config.name} returned HTTP {exc.status_code}: {exc.message}",
                status_code=exc.status_code,
            )
        except (httpx.TransportError, anthropic.APIConnectionError) as exc:
            return self._outcome(
                request,
                attempt,
                start,
                ErrorKind.CONNECTION_FAILURE,
                f"Connection to {config.name} failed: {exc}",
            )
        except InvalidResponseShapeError as exc:
            return self._outcome(
                request,
                attempt,
                start,
                ErrorKind.INVALID_RESPONSE_SHAPE,
                f"{config.name}: {exc}",
                status_code=200,
            )
        except Exception as exc:
            logger.exception("Unexpected error calling %s", config.name)
            return self._outcome(
                request,
                attempt,
                start,
                ErrorKind.INTERNAL_ERROR,
                f"Unexpected error calling {config.name}: {exc}",
            )

        return AttemptOutcome(
            attempt=attempt,
            provider=request.provider,
            raw_text=raw_text,
            status_code=200,
            elapsed_ms=_elapsed_ms(start),
        )

    async def check_connection(self, provider: str) -> ConnectionCheck:
        """Probe ``provider`` with one short prompt (single attempt, no retries).

        Args:
            provider: Provider identifier to probe.

        Returns:
            A :class:`ConnectionCheck`; never raises.
        """
        if not provider:
            return ConnectionCheck(
                provider="",
                success=False,
                message="No provider given",
                error_kind=ErrorKind.UNKNOWN_PROVIDER,
            )

        request = GenerationRequest(
            prompt=_PROBE_PROMPT,
            provider=provider,
            max_attempts=1,
            timeout_ms=self._settings.default_timeout_ms,
            temperature=0.0,
            max_tokens=_PROBE_MAX_TOKENS,
            json_hint=False,
        )
        outcome = await self.send(request)

        if outcome.succeeded:
            logger.info("Connection check to %s succeeded", provider)
            return ConnectionCheck(
                provider=provider,
                success=True,
                message=f"Connected to {provider}",
                response_preview=(outcome.raw_text or "")[:_PREVIEW_CHARS],
            )

        logger.warning("Connection check to %s failed: %s", provider, outcome.detail)
        return ConnectionCheck(
            provider=provider,
            success=False,
            message=outcome.detail,
            error_kind=outcome.error_kind,
        )

    # ------------------------------------------------------------------
    # Wire styles
    # ------------------------------------------------------------------

    async def _exchange(self, config: ProviderConfig, request: GenerationRequest) -> str:
        if config.api_style == "anthropic":
            return await self._call_anthropic(config, request)
        return await self._call_openai_compatible(config, request)

    async def _call_openai_compatible(
        self, config: ProviderConfig, request: GenerationRequest
    ) -> str:
        url = f"{config.base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {config.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self._settings.site_url,
            "X-Title": self._settings.site_name,
        }
        body = self._openai_body(config, request)

        if self._http_client is not None:
            response = await self._http_client.post(url, headers=headers, json=body)
        else:
            async with httpx.AsyncClient(timeout=request.timeout_ms / 1000) as client:
                response = await client.post(url, headers=headers, json=body)

        response.raise_for_status()

        try:
            payload = response.json()
        except ValueError as exc:
            raise InvalidResponseShapeError(
                "Response body is not JSON", body=response.text[:_BODY_CHARS]
            ) from exc
        return _extract_chat_text(payload)

    def _openai_body(self, config: ProviderConfig, request: GenerationRequest) -> dict[str, Any]:
        messages: list[dict[str, str]] = []
        if request.system_prompt:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.append({"role": "user", "content": request.prompt})

        body: dict[str, Any] = {
            "model": config.model,
            "messages": messages,
            "temperature": request.temperature,
            "top_p": request.top_p,
            "max_tokens": request.max_tokens,
            "stream": False,
        }
        if request.json_hint:
            body["response_format"] = {"type": "json_object"}
        return body

    async def _call_anthropic(self, config: ProviderConfig, request: GenerationRequest) -> str:
        client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=request.timeout_ms / 1000,
            max_retries=0,
        )
        kwargs: dict[str, Any] = {
            "model": config.model,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "messages": [{"role": "user", "content": request.prompt}],
        }
        if request.system_prompt:
            kwargs["system"] = request.system_prompt

        async with client:
            message = await client.messages.create(**kwargs)

        for block in getattr(message, "content", None) or []:
            text = getattr(block, "text", None)
            if isinstance(text, str) and text.strip():
                return text
        raise InvalidResponseShapeError("Response contains no text content block")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _outcome(
        self,
        request: GenerationRequest,
        attempt: int,
        start: float,
        kind: ErrorKind,
        detail: str,
        status_code: int | None = None,
    ) -> AttemptOutcome:
        return AttemptOutcome(
            attempt=attempt,
            provider=request.provider,
            status_code=status_code,
            error_kind=kind,
            detail=detail,
            elapsed_ms=_elapsed_ms(start),
        )


def _extract_chat_text(payload: Any) -> str:
    """Pull ``choices[0].message.content`` out of a chat-completions payload."""
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise InvalidResponseShapeError(
            "Response has no choices[0].message.content", body=str(payload)[:_BODY_CHARS]
        ) from exc
    if not isinstance(content, str) or not content.strip():
        raise InvalidResponseShapeError("Response message content is empty")
    return content


def _elapsed_ms(start: float) -> float:
    return round((time.monotonic() - start) * 1000, 1)
