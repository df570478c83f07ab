"""Application configuration using Pydantic BaseSettings.

Loads settings from environment variables with sensible defaults for
local development. Provider credentials must be set via environment
or a .env file; a missing credential surfaces as a ``MissingCredential``
outcome at call time, never at import time.
"""

from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.schemas.generation import ProviderConfig, Strictness


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # OpenRouter (OpenAI-compatible)
    openrouter_api_key: str = Field(
        default="",
        description="Bearer credential for the OpenRouter chat completions endpoint",
    )
    openrouter_base_url: str = Field(
        default="https://openrouter.ai/api/v1",
        description="OpenRouter API base URL (``/chat/completions`` is appended)",
    )
    openrouter_model: str = Field(
        default="x-ai/grok-4-fast:free",
        description="Model identifier sent to OpenRouter",
    )

    # Groq (OpenAI-compatible)
    groq_api_key: str = Field(default="", description="Bearer credential for Groq")
    groq_base_url: str = Field(
        default="https://api.groq.com/openai/v1",
        description="Groq OpenAI-compatible API base URL",
    )
    groq_model: str = Field(
        default="llama-3.3-70b-versatile",
        description="Model identifier sent to Groq",
    )

    # Anthropic
    anthropic_api_key: str = Field(
        default="",
        description="Anthropic API key for Claude lesson generation",
    )
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com",
        description="Anthropic API base URL",
    )
    anthropic_model: str = Field(
        default="claude-sonnet-4-6",
        description="Claude model identifier",
    )

    # Caller identity (sent as attribution headers to OpenAI-compatible providers)
    site_url: str = Field(default="https://marx-edu.netlify.app", description="HTTP-Referer header")
    site_name: str = Field(default="Marx-Edu Lesson Generator", description="X-Title header")

    # Provider selection
    default_provider: str = Field(
        default="openrouter", min_length=1, description="Provider used when none is given"
    )
    provider_order: List[str] = Field(
        default=["openrouter", "groq", "anthropic"],
        description="Caller-level failover order for LessonGenerationService",
    )
    disabled_providers: List[str] = Field(
        default=[],
        description=(
            "Providers forced off; calls to them return an immediate ProviderDisabled "
            "outcome without touching the network"
        ),
    )

    # Retry / timing
    default_timeout_ms: int = Field(
        default=30000, gt=0, description="Per-attempt timeout (15000–45000 is typical)"
    )
    default_max_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempt budget per request"
    )
    backoff_base_ms: int = Field(default=2000, ge=0, description="Backoff base: base * attempt")
    backoff_jitter_ms: int = Field(default=1000, ge=0, description="Upper bound of random jitter")
    max_backoff_ms: int = Field(default=10000, ge=0, description="Cap on a single backoff delay")
    default_deadline_ms: int | None = Field(
        default=None,
        gt=0,
        description="Overall deadline for a whole retry sequence (None = unbounded)",
    )

    # Sampling
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, gt=0.0, le=1.0)
    max_output_tokens: int = Field(default=4000, gt=0)

    # Extraction
    default_strictness: Strictness = Field(
        default=Strictness.CONSERVATIVE,
        description="Repair heuristics level; 'relaxed' enables non-authoritative coercions",
    )
    escalate_strictness: bool = Field(
        default=True,
        description=(
            "Re-run once with relaxed strictness after MalformedOutput under conservative "
            "strictness (LessonGenerationService only)"
        ),
    )
    target_question_count: int = Field(default=10, gt=0, description="Soft target per lesson")
    lesson_language: str = Field(default="Vietnamese", description="Language of generated lessons")
    system_prompt: str = Field(
        default=(
            "You are an expert in Vietnamese Marxist-Leninist philosophy. "
            "Always respond in Vietnamese with a single valid JSON object."
        ),
        description="System message establishing domain and language constraints",
    )

    # Flashcards
    flashcard_json_path: str = Field(
        default="flashcards_triet_hoc_MLN.json",
        description="JSON array of flashcards served through FlashcardCache",
    )

    # Runtime
    log_level: str = Field(default="INFO", description="Python logging level")
    app_version: str = Field(default="1.0.0", description="Application version string")

    def provider_configs(self) -> dict[str, ProviderConfig]:
        """Build the per-provider configuration objects.

        Returns:
            Mapping of provider name to :class:`ProviderConfig`, with the
            ``disabled_providers`` flag already applied.
        """
        disabled = {name.strip().lower() for name in self.disabled_providers}
        configs = [
            ProviderConfig(
                name="openrouter",
                api_style="openai",
                base_url=self.openrouter_base_url,
                model=self.openrouter_model,
                api_key=self.openrouter_api_key,
            ),
            ProviderConfig(
                name="groq",
                api_style="openai",
                base_url=self.groq_base_url,
                model=self.groq_model,
                api_key=self.groq_api_key,
            ),
            ProviderConfig(
                name="anthropic",
                api_style="anthropic",
                base_url=self.anthropic_base_url,
                model=self.anthropic_model,
                api_key=self.anthropic_api_key,
            ),
        ]
        return {
            cfg.name: cfg.model_copy(update={"enabled": cfg.name not in disabled})
            for cfg in configs
        }


_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Return a cached singleton Settings instance.

    Returns:
        The application settings, loaded from environment on first call.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
