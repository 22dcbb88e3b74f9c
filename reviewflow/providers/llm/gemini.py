from __future__ import annotations

import logging
import time
from typing import Any

from google import genai
from google.genai import errors as genai_errors

from reviewflow.agent.prompts import build_draft_prompt
from reviewflow.core.config import Settings, get_settings
from reviewflow.core.errors import GenerationError, require_settings
from reviewflow.providers.llm.base import DraftRequest, DraftResult
from reviewflow.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


class GeminiDraftingProvider:
    def __init__(self, *, settings: Settings | None = None, client: Any | None = None) -> None:
        self._settings = settings or get_settings()
        self._client = client
        self._model = self._settings.gemini_model

    @property
    def model(self) -> str:
        return self._model

    def validate_config(self) -> None:
        if self._client is not None:
            return
        if self._settings.gemini_use_vertex:
            require_settings(
                google_cloud_project=self._settings.google_cloud_project,
                google_cloud_location=self._settings.google_cloud_location,
                gemini_model=self._model,
            )
        else:
            require_settings(gemini_api_key=self._settings.gemini_api_key, gemini_model=self._model)

    def _get_client(self) -> Any:
        if self._client is None:
            self.validate_config()
            if self._settings.gemini_use_vertex:
                self._client = genai.Client(
                    vertexai=True,
                    project=self._settings.google_cloud_project,
                    location=self._settings.google_cloud_location,
                )
            else:
                self._client = genai.Client(api_key=self._settings.gemini_api_key)
        return self._client

    async def generate(self, request: DraftRequest) -> DraftResult:
        client = self._get_client()
        prompt = build_draft_prompt(request)
        start = time.monotonic()
        try:
            response = await client.aio.models.generate_content(model=self._model, contents=prompt)
        except genai_errors.APIError as exc:
            record_external_call(
                integration="gemini", latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            logger.warning(
                "gemini_generate_failed review_id=%s code=%s", request.review_id, getattr(exc, "code", None)
            )
            raise GenerationError(f"Gemini request failed ({exc.code}): {exc.message}") from exc
        except Exception as exc:  # noqa: BLE001 - SDK transport errors vary by version
            record_external_call(
                integration="gemini", latency_ms=(time.monotonic() - start) * 1000.0, success=False
            )
            logger.warning("gemini_generate_error review_id=%s", request.review_id, exc_info=exc)
            raise GenerationError(f"Gemini request failed: {exc.__class__.__name__}") from exc

        text = (getattr(response, "text", None) or "").strip().strip('"').strip()
        record_external_call(
            integration="gemini",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=bool(text),
        )
        if not text:
            raise GenerationError("Gemini returned an empty reply")
        return DraftResult(text=text, model=self._model)
