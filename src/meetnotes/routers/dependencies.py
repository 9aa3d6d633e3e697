"""FastAPI dependency helpers for the auth/billing collaborators and services."""
from __future__ import annotations

from fastapi import Depends, Header, Request

from meetnotes.container import ServiceContainer
from meetnotes.core.errors import UnauthorizedError, ValidationError
from meetnotes.services.ingestion import TeamsIngestionService
from meetnotes.services.meetings import MeetingService
from meetnotes.services.usage import PlanEntitlement, PlanTier


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container  # type: ignore[no-any-return]


def get_meeting_service(
    container: ServiceContainer = Depends(get_container),  # noqa: B008 - FastAPI DI
) -> MeetingService:
    return container.meetings


def get_ingestion_service(
    container: ServiceContainer = Depends(get_container),  # noqa: B008 - FastAPI DI
) -> TeamsIngestionService:
    return container.ingestion


def get_current_user(x_user_id: str | None = Header(default=None)) -> str:
    """Identity asserted by the upstream auth collaborator."""
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedError()
    return x_user_id.strip()


def get_entitlement(
    x_plan_tier: str | None = Header(default=None),
    x_subscription_active: bool = Header(default=False),
) -> PlanEntitlement:
    if not x_plan_tier:
        return PlanEntitlement()
    try:
        tier = PlanTier(x_plan_tier.lower())
    except ValueError as err:
        raise ValidationError(f"Unknown plan tier: {x_plan_tier}") from err
    return PlanEntitlement(tier=tier, active=x_subscription_active)
