from __future__ import annotations

from reviewflow.core.config import Settings, get_settings
from reviewflow.core.errors import ConfigError
from reviewflow.providers.llm.base import DraftingProvider
from reviewflow.providers.llm.fake import FakeDraftingProvider
from reviewflow.providers.llm.gemini import GeminiDraftingProvider


def get_drafting_provider(settings: Settings | None = None) -> DraftingProvider:
    settings = settings or get_settings()
    provider = (settings.llm_provider or "gemini").lower()

    if provider == "fake":
        return FakeDraftingProvider()
    if provider != "gemini":
        raise ConfigError(f"Unknown LLM provider: {provider}", missing={"llm_provider": True})
    gemini = GeminiDraftingProvider(settings=settings)
    gemini.validate_config()
    return gemini
