from __future__ import annotations

from reviewflow.core.errors import GenerationError
from reviewflow.providers.llm.base import DraftRequest, DraftResult


class FakeDraftingProvider:
    def __init__(
        self,
        response: str = "Thank you for taking the time to share your feedback.",
        *,
        fail_review_ids: set[str] | None = None,
    ) -> None:
        # Deterministic reply; selected review ids fail like an upstream outage.
        self._response = response
        self._fail_review_ids = set(fail_review_ids or ())
        self.requests: list[DraftRequest] = []

    def validate_config(self) -> None:
        return None

    async def generate(self, request: DraftRequest) -> DraftResult:
        self.requests.append(request)
        if request.review_id in self._fail_review_ids:
            raise GenerationError("Fake drafting provider unavailable")
        return DraftResult(text=self._response, model="fake")
