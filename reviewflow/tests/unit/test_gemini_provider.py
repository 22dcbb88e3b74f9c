from __future__ import annotations

from types import SimpleNamespace

import pytest

from reviewflow.agent.prompts import build_draft_prompt
from reviewflow.core.config import Settings
from reviewflow.core.errors import ConfigError, GenerationError
from reviewflow.providers.llm.base import DraftRequest
from reviewflow.providers.llm.gemini import GeminiDraftingProvider


class _DummyModels:
    def __init__(self, text: str | None = None, error: Exception | None = None) -> None:
        self._text = text
        self._error = error
        self.calls: list[dict] = []

    async def generate_content(self, *, model: str, contents: str):
        self.calls.append({"model": model, "contents": contents})
        if self._error is not None:
            raise self._error
        return SimpleNamespace(text=self._text)


def _client(models: _DummyModels) -> SimpleNamespace:
    # Mirrors the google-genai async surface: client.aio.models.generate_content.
    return SimpleNamespace(aio=SimpleNamespace(models=models))


def _request(rating: int = 5, **overrides) -> DraftRequest:
    values = {
        "review_id": "rev-1",
        "text": "Lovely staff and great coffee",
        "rating": rating,
        "author_name": "Marie",
        "business_name": "Chez Nous",
        "industry": "cafe",
    }
    values.update(overrides)
    return DraftRequest(**values)


def test_prompt_adapts_to_rating_and_brand() -> None:
    positive = build_draft_prompt(_request(5, tone="friendly", language_style="casual"))
    assert "Tone: friendly" in positive
    assert "informally" in positive
    assert "Thank the customer warmly" in positive

    negative = build_draft_prompt(_request(1, knowledge_base="Open 7am to 7pm."))
    assert "empathetic" in negative
    assert "Open 7am to 7pm." in negative
    assert "Tone: professional" in negative


def test_missing_api_key_is_config_error() -> None:
    provider = GeminiDraftingProvider(settings=Settings(gemini_api_key=None, gemini_use_vertex=False))
    with pytest.raises(ConfigError) as excinfo:
        provider.validate_config()
    assert excinfo.value.missing == {"gemini_api_key": True}


def test_vertex_mode_requires_project_and_location() -> None:
    provider = GeminiDraftingProvider(
        settings=Settings(gemini_use_vertex=True, google_cloud_project=None, google_cloud_location=None)
    )
    with pytest.raises(ConfigError) as excinfo:
        provider.validate_config()
    assert set(excinfo.value.missing) == {"google_cloud_project", "google_cloud_location"}


@pytest.mark.asyncio
async def test_generate_returns_stripped_text_and_model() -> None:
    models = _DummyModels(text='  "Thanks Marie, see you soon!"  ')
    provider = GeminiDraftingProvider(settings=Settings(gemini_model="gemini-2.5-flash"), client=_client(models))

    result = await provider.generate(_request())

    assert result.text == "Thanks Marie, see you soon!"
    assert result.model == "gemini-2.5-flash"
    assert models.calls[0]["model"] == "gemini-2.5-flash"
    assert "Lovely staff" in models.calls[0]["contents"]


@pytest.mark.asyncio
async def test_generate_empty_reply_is_generation_error() -> None:
    provider = GeminiDraftingProvider(settings=Settings(), client=_client(_DummyModels(text="")))
    with pytest.raises(GenerationError):
        await provider.generate(_request())


@pytest.mark.asyncio
async def test_generate_wraps_transport_failures() -> None:
    models = _DummyModels(error=ConnectionError("reset by peer"))
    provider = GeminiDraftingProvider(settings=Settings(), client=_client(models))
    with pytest.raises(GenerationError, match="ConnectionError"):
        await provider.generate(_request())
