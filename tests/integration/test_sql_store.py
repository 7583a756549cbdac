"""SQL store integration tests.

Runs the stores and services against a real SQLAlchemy database to check
conditional updates, unit-of-work rollback and the compliance queries.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from commission_engine.errors import ComplianceBlockedError, JobDeniedError, NotFoundError
from commission_engine.identity import Actor, ActorRole
from commission_engine.records import (
    ApprovalStage,
    CommissionRecord,
    CommissionState,
    CommissionStatus,
    ComplianceEntity,
    DeniedJobNumber,
    Hold,
    HoldStatus,
    HoldType,
    OverrideTracking,
    StatusLogEntry,
    Violation,
    ViolationSeverity,
    ViolationStatus,
)
from commission_engine.services import CommissionService, ComplianceService
from commission_engine.stores import CommissionFilter

from ..conftest import FIXED_NOW


def make_record(**overrides) -> CommissionRecord:
    data = {
        "id": uuid4(),
        "submitted_by": uuid4(),
        "acculynx_job_id": "4321",
        "contract_amount": Decimal("15000.00"),
        "commission_percentage": Decimal("10"),
        "total_job_revenue": Decimal("15000.00"),
        "gross_commission": Decimal("1500.00"),
        "net_commission_owed": Decimal("1500.00"),
    }
    data.update(overrides)
    return CommissionRecord(**data)


class TestCommissionStore:
    """Row operations on the commission tables."""

    async def test_insert_and_get(self, sql_commission_store):
        record = make_record(previous_submission_snapshot={"contract_amount": "12000.00"})
        await sql_commission_store.insert(record)

        loaded = await sql_commission_store.get(record.id)
        assert loaded.id == record.id
        assert loaded.status == CommissionStatus.DRAFT
        assert loaded.approval_stage is None
        assert loaded.net_commission_owed == Decimal("1500.00")
        assert loaded.previous_submission_snapshot == {"contract_amount": "12000.00"}

    async def test_get_missing(self, sql_commission_store):
        with pytest.raises(NotFoundError):
            await sql_commission_store.get(uuid4())

    async def test_update_where_matches_expected_state(self, sql_commission_store):
        record = make_record()
        await sql_commission_store.insert(record)
        draft = CommissionState(CommissionStatus.DRAFT)

        ok = await sql_commission_store.update_where(
            record.id,
            draft,
            {
                "status": CommissionStatus.PENDING_REVIEW,
                "approval_stage": ApprovalStage.PENDING_MANAGER,
            },
        )
        assert ok is True

        # Second writer planned against the stale draft state
        stale = await sql_commission_store.update_where(
            record.id, draft, {"status": CommissionStatus.PENDING_REVIEW}
        )
        assert stale is False

        loaded = await sql_commission_store.get(record.id)
        assert loaded.state == CommissionState(
            CommissionStatus.PENDING_REVIEW, ApprovalStage.PENDING_MANAGER
        )

    async def test_unit_of_work_rolls_back(self, sql_commission_store):
        record = make_record()
        await sql_commission_store.insert(record)

        with pytest.raises(RuntimeError):
            async with sql_commission_store.unit_of_work():
                await sql_commission_store.update_where(
                    record.id,
                    CommissionState(CommissionStatus.DRAFT),
                    {
                        "status": CommissionStatus.PENDING_REVIEW,
                        "approval_stage": ApprovalStage.PENDING_MANAGER,
                    },
                )
                await sql_commission_store.append_status_log(
                    StatusLogEntry(
                        id=uuid4(),
                        commission_id=record.id,
                        previous_status=CommissionStatus.DRAFT,
                        new_status=CommissionStatus.PENDING_REVIEW,
                        new_stage=ApprovalStage.PENDING_MANAGER,
                        changed_by=record.submitted_by,
                    )
                )
                raise RuntimeError("fail before commit")

        loaded = await sql_commission_store.get(record.id)
        assert loaded.status == CommissionStatus.DRAFT
        assert await sql_commission_store.list_status_log(record.id) == []

    async def test_status_log_append_is_idempotent(self, sql_commission_store):
        record = make_record()
        await sql_commission_store.insert(record)
        entry = StatusLogEntry(
            id=uuid4(),
            commission_id=record.id,
            previous_status=None,
            new_status=CommissionStatus.DRAFT,
            changed_by=record.submitted_by,
        )
        await sql_commission_store.append_status_log(entry)
        await sql_commission_store.append_status_log(entry)

        log = await sql_commission_store.list_status_log(record.id)
        assert len(log) == 1
        assert log[0].new_status == CommissionStatus.DRAFT

    async def test_list_by_filter(self, sql_commission_store):
        rep_id = uuid4()
        await sql_commission_store.insert(make_record(submitted_by=rep_id))
        await sql_commission_store.insert(make_record(submitted_by=rep_id, is_draw=True))
        await sql_commission_store.insert(make_record())

        page = await sql_commission_store.list_by_filter(CommissionFilter(submitted_by=rep_id))
        assert page.total == 2

        draws = await sql_commission_store.list_by_filter(
            CommissionFilter(submitted_by=rep_id, is_draw=True), page_size=1
        )
        assert draws.total == 1
        assert draws.items[0].is_draw is True

    async def test_delete_removes_logs(self, sql_commission_store):
        record = make_record()
        await sql_commission_store.insert(record)
        await sql_commission_store.append_status_log(
            StatusLogEntry(
                id=uuid4(),
                commission_id=record.id,
                previous_status=None,
                new_status=CommissionStatus.DRAFT,
                changed_by=record.submitted_by,
            )
        )

        assert await sql_commission_store.delete(record.id) is True
        assert await sql_commission_store.delete(record.id) is False
        assert await sql_commission_store.list_status_log(record.id) == []

    async def test_deny_list(self, sql_commission_store):
        entry = DeniedJobNumber(job_number="9999", denied_by=uuid4(), reason="duplicate")

        assert await sql_commission_store.add_denied_job(entry) is True
        assert await sql_commission_store.add_denied_job(entry) is False
        assert await sql_commission_store.is_job_denied("9999") is True
        assert await sql_commission_store.is_job_denied("1111") is False

    async def test_duplicate_denial_keeps_transaction(self, sql_commission_store):
        first = DeniedJobNumber(job_number="8888", denied_by=uuid4())
        second = DeniedJobNumber(job_number="8888", denied_by=uuid4(), reason="again")
        record = make_record()

        async with sql_commission_store.unit_of_work():
            await sql_commission_store.insert(record)
            assert await sql_commission_store.add_denied_job(first) is True
            assert await sql_commission_store.add_denied_job(second) is False

        assert (await sql_commission_store.get(record.id)).id == record.id
        assert await sql_commission_store.is_job_denied("8888") is True

    async def test_override_tracking_conditional_save(self, sql_commission_store):
        rep_id, manager_id = uuid4(), uuid4()
        assert await sql_commission_store.get_override_tracking(rep_id) is None

        first = OverrideTracking(
            sales_rep_id=rep_id, manager_id=manager_id, approved_commission_count=1
        )
        assert await sql_commission_store.save_override_tracking(first, None) is True
        # The row exists now, so a second "create" loses.
        assert await sql_commission_store.save_override_tracking(first, None) is False

        second = OverrideTracking(
            sales_rep_id=rep_id,
            manager_id=manager_id,
            approved_commission_count=2,
            phase_complete=True,
        )
        assert await sql_commission_store.save_override_tracking(second, 0) is False
        assert await sql_commission_store.save_override_tracking(second, 1) is True

        tracking = await sql_commission_store.get_override_tracking(rep_id)
        assert tracking.approved_commission_count == 2
        assert tracking.phase_complete is True


class TestComplianceStore:
    async def test_violation_round_trip(self, sql_compliance_store):
        violation = Violation(
            id=uuid4(),
            violation_type="missing permit",
            severity=ViolationSeverity.MAJOR,
            reported_by=uuid4(),
            job_id="1234",
        )
        await sql_compliance_store.insert(ComplianceEntity.VIOLATION, violation)

        loaded = await sql_compliance_store.get(ComplianceEntity.VIOLATION, violation.id)
        assert loaded.severity == ViolationSeverity.MAJOR
        assert loaded.status == ViolationStatus.OPEN

        ok = await sql_compliance_store.update_where(
            ComplianceEntity.VIOLATION,
            violation.id,
            ViolationStatus.OPEN,
            {"status": ViolationStatus.BLOCKED},
        )
        assert ok is True
        assert not await sql_compliance_store.update_where(
            ComplianceEntity.VIOLATION,
            violation.id,
            ViolationStatus.OPEN,
            {"status": ViolationStatus.RESOLVED},
        )

    async def test_find_active_hold_by_job_or_user(self, sql_compliance_store):
        user_id = uuid4()
        job_hold = Hold(
            id=uuid4(), hold_type=HoldType.COMMISSION_HOLD, placed_by=uuid4(), job_id="1234"
        )
        user_hold = Hold(
            id=uuid4(), hold_type=HoldType.ACCESS_HOLD, placed_by=uuid4(), user_id=user_id
        )
        await sql_compliance_store.insert(ComplianceEntity.HOLD, job_hold)
        await sql_compliance_store.insert(ComplianceEntity.HOLD, user_hold)

        found = await sql_compliance_store.find_active_hold(job_id="1234")
        assert found.id == job_hold.id
        found = await sql_compliance_store.find_active_hold(job_id="5555", user_id=user_id)
        assert found.id == user_hold.id
        assert await sql_compliance_store.find_active_hold(job_id="5555") is None
        assert await sql_compliance_store.find_active_hold() is None

    async def test_release_holds_for_related_entity(self, sql_compliance_store):
        violation_id = uuid4()
        for job in ("1111", "2222"):
            await sql_compliance_store.insert(
                ComplianceEntity.HOLD,
                Hold(
                    id=uuid4(),
                    hold_type=HoldType.VIOLATION_HOLD,
                    placed_by=uuid4(),
                    job_id=job,
                    related_entity_type="violation",
                    related_entity_id=violation_id,
                ),
            )

        released = await sql_compliance_store.release_holds_for(
            violation_id, {"released_by": uuid4()}
        )
        assert released == 2
        assert await sql_compliance_store.release_holds_for(violation_id, {}) == 0

        page = await sql_compliance_store.list_by_filter(
            ComplianceEntity.HOLD, {"status": HoldStatus.RELEASED}
        )
        assert page.total == 2


class TestServicesOnSql:
    """End-to-end service flows against the SQL stores."""

    @pytest.fixture
    def sql_commission_service(self, sql_commission_store, sql_compliance_store):
        return CommissionService(
            sql_commission_store, sql_compliance_store, clock=lambda: FIXED_NOW
        )

    @pytest.fixture
    def sql_compliance_service(self, sql_compliance_store):
        return ComplianceService(sql_compliance_store)

    async def test_full_approval_chain(self, sql_commission_service, worksheet):
        rep = Actor(id=uuid4(), role=ActorRole.USER)
        compliance = Actor(id=uuid4(), role=ActorRole.COMPLIANCE)
        accounting = Actor(id=uuid4(), role=ActorRole.ACCOUNTING)

        record = await sql_commission_service.create(rep, worksheet(), submit=True)
        assert record.approval_stage == ApprovalStage.PENDING_MANAGER

        record = await sql_commission_service.compliance_approve(compliance, record.id)
        assert record.approval_stage == ApprovalStage.PENDING_ACCOUNTING

        record = await sql_commission_service.accounting_approve(accounting, record.id)
        assert record.status == CommissionStatus.APPROVED
        assert record.approval_stage == ApprovalStage.COMPLETED

        record = await sql_commission_service.mark_paid(accounting, record.id)
        assert record.status == CommissionStatus.PAID
        assert record.paid_by == accounting.id

        log = await sql_commission_service.status_log(record.id)
        assert [entry.new_status for entry in log] == [
            CommissionStatus.PENDING_REVIEW,
            CommissionStatus.PENDING_REVIEW,
            CommissionStatus.APPROVED,
            CommissionStatus.PAID,
        ]

    async def test_reject_and_resubmit_records_snapshot(self, sql_commission_service, worksheet):
        rep = Actor(id=uuid4(), role=ActorRole.USER)
        admin = Actor(id=uuid4(), role=ActorRole.ADMIN)

        record = await sql_commission_service.create(rep, worksheet(), submit=True)
        record = await sql_commission_service.reject(admin, record.id, "Wrong contract amount")
        assert record.status == CommissionStatus.REJECTED
        assert record.revision_count == 1

        record = await sql_commission_service.resubmit(
            rep, record.id, {"contract_amount": Decimal("22000.00")}
        )
        assert record.status == CommissionStatus.PENDING_REVIEW
        assert record.previous_submission_snapshot["contract_amount"] == "20000.00"
        assert record.net_commission_owed == Decimal("2200.00")

        revisions = await sql_commission_service.revision_log(record.id)
        assert [r.reason for r in revisions] == ["Wrong contract amount"]

    async def test_deny_blocks_job_number(self, sql_commission_service, worksheet):
        rep = Actor(id=uuid4(), role=ActorRole.USER)
        admin = Actor(id=uuid4(), role=ActorRole.ADMIN)

        record = await sql_commission_service.create(rep, worksheet(), submit=True)
        await sql_commission_service.deny(admin, record.id, "Fraudulent")

        with pytest.raises(JobDeniedError):
            await sql_commission_service.create(rep, worksheet(), submit=True)

    async def test_hold_blocks_then_escalation_releases(
        self, sql_commission_service, sql_compliance_service, worksheet
    ):
        rep = Actor(id=uuid4(), role=ActorRole.USER)
        compliance = Actor(id=uuid4(), role=ActorRole.COMPLIANCE)
        admin = Actor(id=uuid4(), role=ActorRole.ADMIN)

        record = await sql_commission_service.create(rep, worksheet(), submit=True)
        violation = await sql_compliance_service.log_violation(
            compliance, "unsafe ladder", ViolationSeverity.SEVERE, job_id="1234"
        )
        await sql_compliance_service.apply_hold(compliance, violation.id)

        with pytest.raises(ComplianceBlockedError):
            await sql_commission_service.compliance_approve(compliance, record.id)

        escalation = await sql_compliance_service.escalate(compliance, violation.id, "needs owner")
        await sql_compliance_service.decide_escalation(admin, escalation.id, approve=True)

        violation = await sql_compliance_service.get_violation(violation.id)
        assert violation.status == ViolationStatus.RESOLVED

        record = await sql_commission_service.compliance_approve(compliance, record.id)
        assert record.approval_stage == ApprovalStage.PENDING_ACCOUNTING
