"""Custom exception classes for the lesson extraction core.

These are raised inside the core (repair engine, validator, provider
configuration, flashcard cache) and converted into a fully-populated
``GenerationResult`` at the orchestrator boundary, so callers never see
them escape a generation call.
"""


class ProviderConfigError(Exception):
    """Raised when a provider identifier has no configuration.

    Args:
        provider: The provider name that could not be resolved.
    """

    def __init__(self, provider: str) -> None:
        super().__init__(f"Provider {provider!r} is not configured")
        self.provider: str = provider


class MalformedOutputError(Exception):
    """Raised when the repair engine cannot produce parseable text.

    Args:
        message: Description of the parse failure.
        original_text: The raw model output as received.
        cleaned_text: The text after repair, as handed to the strict parser.
    """

    def __init__(
        self,
        message: str,
        original_text: str = "",
        cleaned_text: str = "",
    ) -> None:
        super().__init__(message)
        self.original_text: str = original_text
        self.cleaned_text: str = cleaned_text


class SchemaViolationError(Exception):
    """Raised when a parsed lesson fails a hard schema check.

    Args:
        message: Summary of which checks failed.
        violations: One human-readable line per violated rule.
    """

    def __init__(self, message: str, violations: list[str] | None = None) -> None:
        super().__init__(message)
        self.violations: list[str] = violations or []


class FlashcardLoadError(Exception):
    """Raised when the flashcard source file cannot be read or parsed.

    Args:
        message: Detail from the underlying failure.
        path: Filesystem path of the flashcard source.
    """

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path: str = path


class InvalidResponseShapeError(Exception):
    """Raised when a provider response lacks the expected message content.

    Args:
        message: What was missing or malformed.
        body: First part of the response body, for diagnosis.
    """

    def __init__(self, message: str, body: str = "") -> None:
        super().__init__(message)
        self.body: str = body
