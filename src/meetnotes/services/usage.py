"""Monthly meeting quotas per subscription plan."""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from meetnotes.core.errors import UsageLimitExceededError
from meetnotes.db.models import utcnow
from meetnotes.db.repositories import MeetingStore


class PlanTier(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    BUSINESS = "business"


# None means unlimited
MONTHLY_MEETING_LIMITS: dict[PlanTier, int | None] = {
    PlanTier.FREE: 3,
    PlanTier.STARTER: 20,
    PlanTier.PRO: 100,
    PlanTier.BUSINESS: None,
}


@dataclass(frozen=True, slots=True)
class PlanEntitlement:
    """What the billing collaborator tells us about a user."""

    tier: PlanTier = PlanTier.FREE
    active: bool = False

    @property
    def effective_tier(self) -> PlanTier:
        return self.tier if self.active else PlanTier.FREE


@dataclass(slots=True)
class UsageLimits:
    plan: PlanTier
    max_meetings: int | None
    current_usage: int

    @property
    def can_upload(self) -> bool:
        return self.max_meetings is None or self.current_usage < self.max_meetings

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan.value,
            "max_meetings": self.max_meetings,
            "current_usage": self.current_usage,
            "can_upload": self.can_upload,
        }


def start_of_month(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class UsageService:
    def __init__(self, store: MeetingStore, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    async def get_limits(self, owner_id: str, entitlement: PlanEntitlement) -> UsageLimits:
        plan = entitlement.effective_tier
        current = await self._store.count_created_since(owner_id, start_of_month(self._clock()))
        return UsageLimits(plan=plan, max_meetings=MONTHLY_MEETING_LIMITS[plan], current_usage=current)

    async def ensure_can_upload(self, owner_id: str, entitlement: PlanEntitlement) -> UsageLimits:
        limits = await self.get_limits(owner_id, entitlement)
        if not limits.can_upload:
            raise UsageLimitExceededError(
                f"You've reached your monthly limit of {limits.max_meetings} meetings "
                f"on the {limits.plan.value.title()} plan. Upgrade to process more meetings.",
                limits=limits.to_dict(),
            )
        return limits
