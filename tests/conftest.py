"""Pytest fixtures for commission engine tests."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable
from uuid import uuid4

import pytest

from commission_engine.events import Notification, NotificationDispatcher
from commission_engine.identity import Actor, ActorRole
from commission_engine.services import CommissionService, ComplianceService
from commission_engine.stores import InMemoryCommissionStore, InMemoryComplianceStore

# Monday 2026-02-23, 10:00 MST: before the Tuesday cutoff, paid Friday 2026-02-27
FIXED_NOW = datetime(2026, 2, 23, 17, 0, tzinfo=timezone.utc)


@pytest.fixture
def rep() -> Actor:
    return Actor(id=uuid4(), role=ActorRole.USER)


@pytest.fixture
def other_rep() -> Actor:
    return Actor(id=uuid4(), role=ActorRole.USER)


@pytest.fixture
def manager() -> Actor:
    return Actor(id=uuid4(), role=ActorRole.MANAGER)


@pytest.fixture
def compliance_officer() -> Actor:
    return Actor(id=uuid4(), role=ActorRole.COMPLIANCE)


@pytest.fixture
def accountant() -> Actor:
    return Actor(id=uuid4(), role=ActorRole.ACCOUNTING)


@pytest.fixture
def admin() -> Actor:
    return Actor(id=uuid4(), role=ActorRole.ADMIN)


@pytest.fixture
def commission_store() -> InMemoryCommissionStore:
    return InMemoryCommissionStore()


@pytest.fixture
def compliance_store() -> InMemoryComplianceStore:
    return InMemoryComplianceStore()


@pytest.fixture
def sent() -> list[Notification]:
    """Every notification the test dispatcher delivers, in order."""
    return []


@pytest.fixture
def dispatcher(sent: list[Notification]) -> NotificationDispatcher:
    dispatcher = NotificationDispatcher()
    dispatcher.on_all(sent.append)
    return dispatcher


@pytest.fixture
def commission_service(
    commission_store: InMemoryCommissionStore,
    compliance_store: InMemoryComplianceStore,
    dispatcher: NotificationDispatcher,
) -> CommissionService:
    """Commission service over in-memory stores with a fixed clock."""
    return CommissionService(
        commission_store,
        compliance_store,
        notifier=dispatcher,
        clock=lambda: FIXED_NOW,
    )


@pytest.fixture
def compliance_service(
    compliance_store: InMemoryComplianceStore,
    dispatcher: NotificationDispatcher,
) -> ComplianceService:
    return ComplianceService(compliance_store, notifier=dispatcher)


@pytest.fixture
def worksheet() -> Callable[..., dict[str, Any]]:
    """Factory for commission worksheet data.

    Defaults: $20,000 contract at 10% with no advances, so gross and net
    commission are both $2,000.00.
    """

    def _make(**overrides: Any) -> dict[str, Any]:
        data: dict[str, Any] = {
            "job_name": "Smith roof replacement",
            "acculynx_job_id": "1234",
            "contract_amount": Decimal("20000.00"),
            "supplements_approved": Decimal("0"),
            "commission_percentage": Decimal("10"),
            "advances_paid": Decimal("0"),
        }
        data.update(overrides)
        return data

    return _make


@pytest.fixture
def eligibility() -> dict[str, bool]:
    """A fully confirmed draw eligibility checklist."""
    from commission_engine.rules import DRAW_ELIGIBILITY_ITEMS

    return {item: True for item in DRAW_ELIGIBILITY_ITEMS}
