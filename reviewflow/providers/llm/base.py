from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class DraftRequest:
    review_id: str
    text: str
    rating: int
    author_name: str | None
    business_name: str
    industry: str | None = None
    tone: str = "professional"
    language_style: str | None = None
    language: str | None = None
    knowledge_base: str | None = None


@dataclass(frozen=True)
class DraftResult:
    text: str
    model: str


class DraftingProvider(Protocol):
    async def generate(self, request: DraftRequest) -> DraftResult:
        ...
