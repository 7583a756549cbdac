"""FastAPI dependencies for dependency injection."""

from dataclasses import dataclass
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from commission_engine.config import Settings
from commission_engine.events import NotificationDispatcher
from commission_engine.identity import Actor, ActorRole
from commission_engine.services import CommissionService, ComplianceService
from commission_engine.stores import (
    CommissionStore,
    ComplianceStore,
    SqlCommissionStore,
    SqlComplianceStore,
)


@dataclass
class ServiceContainer:
    """Services shared by every request."""

    commissions: CommissionService
    compliance: ComplianceService
    dispatcher: NotificationDispatcher
    session_factory: async_sessionmaker[AsyncSession] | None = None


def build_services(
    commission_store: CommissionStore,
    compliance_store: ComplianceStore,
    settings: Settings,
    dispatcher: NotificationDispatcher | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> ServiceContainer:
    """Wire services to stores using the configured rules and timeouts."""
    dispatcher = dispatcher or NotificationDispatcher()
    return ServiceContainer(
        commissions=CommissionService(
            commission_store,
            compliance_store,
            notifier=dispatcher,
            draw_rules=settings.draw_rules,
            override_rules=settings.override_rules,
            pay_date_rules=settings.pay_date_rules,
            timeout=settings.store_timeout_seconds,
            audit_log_retries=settings.audit_log_retries,
        ),
        compliance=ComplianceService(
            compliance_store,
            notifier=dispatcher,
            timeout=settings.store_timeout_seconds,
            audit_log_retries=settings.audit_log_retries,
        ),
        dispatcher=dispatcher,
        session_factory=session_factory,
    )


def build_sql_services(
    session_factory: async_sessionmaker[AsyncSession], settings: Settings
) -> ServiceContainer:
    return build_services(
        SqlCommissionStore(session_factory),
        SqlComplianceStore(session_factory),
        settings,
        session_factory=session_factory,
    )


def get_services(request: Request) -> ServiceContainer:
    """Service container attached to the application."""
    return request.app.state.services


async def get_actor(
    x_actor_id: Annotated[str | None, Header()] = None,
    x_actor_role: Annotated[str | None, Header()] = None,
) -> Actor:
    """Resolve the acting user from request headers."""
    if not x_actor_id or not x_actor_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id and X-Actor-Role headers are required",
        )
    try:
        actor_id = UUID(x_actor_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-Actor-Id format",
        )
    try:
        role = ActorRole(x_actor_role.lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown role '{x_actor_role}'",
        )
    return Actor(id=actor_id, role=role)


def get_commission_service(
    services: Annotated[ServiceContainer, Depends(get_services)],
) -> CommissionService:
    return services.commissions


def get_compliance_service(
    services: Annotated[ServiceContainer, Depends(get_services)],
) -> ComplianceService:
    return services.compliance


# Type aliases for cleaner dependency injection
Services = Annotated[ServiceContainer, Depends(get_services)]
CurrentActor = Annotated[Actor, Depends(get_actor)]
Commissions = Annotated[CommissionService, Depends(get_commission_service)]
Compliance = Annotated[ComplianceService, Depends(get_compliance_service)]
