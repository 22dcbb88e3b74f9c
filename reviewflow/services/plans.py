from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from reviewflow.core.config import Settings


class PlanTier(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    ELITE = "elite"


# Entitlement order; independent of the enum declaration order.
_TIER_RANK: Mapping[PlanTier, int] = MappingProxyType(
    {
        PlanTier.FREE: 0,
        PlanTier.STARTER: 1,
        PlanTier.PRO: 2,
        PlanTier.ELITE: 3,
    }
)


@dataclass(frozen=True)
class PlanThresholds:
    # Checkout amounts in minor currency units; a tier applies when the amount is strictly above.
    pro_min_amount: int
    elite_min_amount: int | None = None

    def __post_init__(self) -> None:
        if self.elite_min_amount is not None and self.elite_min_amount < self.pro_min_amount:
            raise ValueError("elite_min_amount must not be below pro_min_amount")


@dataclass(frozen=True)
class PlanCatalog:
    thresholds: PlanThresholds


def load_plan_catalog(settings: Settings) -> PlanCatalog:
    # Built once at startup and passed to the webhook consumer explicitly.
    thresholds = PlanThresholds(
        pro_min_amount=settings.plan_pro_min_amount,
        elite_min_amount=settings.plan_elite_min_amount,
    )
    return PlanCatalog(thresholds=thresholds)


def classify_plan(amount: int | None, thresholds: PlanThresholds) -> PlanTier:
    """Map a paid checkout amount to the plan tier it buys.

    Pure and monotonic in ``amount``. A completed checkout always buys at least
    ``starter``; a missing amount is treated as zero.
    """
    value = int(amount or 0)
    if thresholds.elite_min_amount is not None and value > thresholds.elite_min_amount:
        return PlanTier.ELITE
    if value > thresholds.pro_min_amount:
        return PlanTier.PRO
    return PlanTier.STARTER


def tier_rank(tier: PlanTier | str) -> int:
    return _TIER_RANK[PlanTier(tier)]


def requires_manual_approval(rating: int | None, threshold: int) -> bool:
    # Low ratings always go through a human before a reply is published.
    return int(rating or 0) <= threshold
