# backend/modules/payroll/tests/test_payslip_service.py

"""
Tests for payslip generation, approval and release.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy import text

from modules.payroll.enums import (
    PayslipApprovalAction,
    PayslipApprovalLevel,
    PayslipStatus,
)
from modules.payroll.exceptions import (
    ConcurrencyConflictError,
    DuplicateRecordError,
    InvalidStateTransitionError,
    NotificationDeliveryError,
    PayrollNotFoundError,
    PayrollValidationError,
    PayslipRenderError,
)
from modules.payroll.schemas.audit_schemas import AuditEventType
from modules.payroll.schemas.payslip_schemas import (
    CreatePayslipGenerationRequest,
    PayslipGenerationResponse,
)
from modules.payroll.services.audit_service import PayrollAuditService
from modules.payroll.services.payslip_notifier import PayslipNotifier
from modules.payroll.services.payslip_renderer import PayslipRenderer
from modules.payroll.services.payslip_service import PayslipService

HR = PayslipApprovalLevel.HR
FINANCE = PayslipApprovalLevel.FINANCE


@pytest.fixture
def adapter():
    adapter = MagicMock()
    adapter.send_to_user = AsyncMock(return_value=True)
    adapter.get_adapter_name.return_value = "mock"
    return adapter


@pytest.fixture
def payslip_service(db_session, adapter, tmp_path, clock):
    return PayslipService(
        db_session,
        renderer=PayslipRenderer(storage_dir=str(tmp_path)),
        notifier=PayslipNotifier(adapter=adapter, timeout_seconds=1, enabled=True),
        clock=clock,
    )


@pytest.fixture
def template(payslip_template_factory, organization):
    return payslip_template_factory(organization)


@pytest.fixture
def generate(payslip_service, payroll_record_factory, employee, template):
    months = iter(range(1, 13))

    def generate_payslip(record=None, **kwargs):
        record = record or payroll_record_factory(employee, month=next(months))
        request = CreatePayslipGenerationRequest(
            payroll_record_id=record.id,
            payslip_template_id=template.id,
            generated_by=1,
            **kwargs,
        )
        return payslip_service.generate_payslip(request)

    return generate_payslip


@pytest.fixture
def approved(payslip_service, generate):
    def approved_payslip():
        payslip = generate()
        payslip_service.approve(payslip.id, HR, approver_id=2, approver_name="Hana HR")
        payslip_service.approve(payslip.id, FINANCE, approver_id=3, approver_name="Finn Finance")
        return payslip

    return approved_payslip


def history_actions(payslip):
    return [(h.action, h.new_status) for h in payslip.approval_history]


class TestGeneratePayslip:
    def test_generate_renders_and_records(self, generate, tmp_path):
        payslip = generate()

        assert payslip.status == PayslipStatus.GENERATED
        assert payslip.version == 1
        assert payslip.file_name == "payslip_EMP0001_2024_01_v1.html"
        assert (tmp_path / "2024" / "01" / payslip.file_name).exists()
        assert payslip.payslip_data["net_salary"] == "5000.00"
        assert history_actions(payslip) == [
            (PayslipApprovalAction.GENERATED, PayslipStatus.GENERATED)
        ]

    def test_auto_submit(self, generate):
        payslip = generate(auto_submit_for_approval=True)

        assert payslip.status == PayslipStatus.PENDING_HR_APPROVAL
        assert history_actions(payslip)[-1] == (
            PayslipApprovalAction.SUBMITTED, PayslipStatus.PENDING_HR_APPROVAL
        )

    def test_one_live_payslip_per_record(self, generate, payroll_record_factory, employee):
        record = payroll_record_factory(employee)
        generate(record)

        with pytest.raises(DuplicateRecordError):
            generate(record)

    def test_unknown_record(self, payslip_service, template):
        request = CreatePayslipGenerationRequest(
            payroll_record_id=999, payslip_template_id=template.id, generated_by=1
        )

        with pytest.raises(PayrollNotFoundError):
            payslip_service.generate_payslip(request)

    def test_inactive_template(
        self, payslip_service, payslip_template_factory, organization,
        payroll_record_factory, employee
    ):
        template = payslip_template_factory(organization, is_active=False)
        request = CreatePayslipGenerationRequest(
            payroll_record_id=payroll_record_factory(employee).id,
            payslip_template_id=template.id,
            generated_by=1,
        )

        with pytest.raises(PayrollValidationError):
            payslip_service.generate_payslip(request)

    def test_template_without_net_salary(
        self, payslip_service, payslip_template_factory, organization,
        payroll_record_factory, employee
    ):
        template = payslip_template_factory(organization, body="<p>{{ employee.name }}</p>")
        request = CreatePayslipGenerationRequest(
            payroll_record_id=payroll_record_factory(employee).id,
            payslip_template_id=template.id,
            generated_by=1,
        )

        with pytest.raises(PayslipRenderError):
            payslip_service.generate_payslip(request)


class TestApproval:
    def test_two_level_approval(self, payslip_service, generate):
        payslip = generate()

        payslip_service.submit_for_approval(payslip.id, submitted_by=1)
        payslip_service.approve(payslip.id, HR, approver_id=2, approver_name="Hana HR")
        assert payslip.status == PayslipStatus.PENDING_FINANCE_APPROVAL

        payslip_service.approve(payslip.id, FINANCE, approver_id=3, notes="Budget ok")

        assert payslip.status == PayslipStatus.APPROVED
        assert payslip.hr_approved_at < payslip.finance_approved_at
        response = PayslipGenerationResponse.from_model(payslip)
        assert response.hr_approval.approver_name == "Hana HR"
        assert response.finance_approval.notes == "Budget ok"
        assert [entry.action for entry in response.approval_history] == [
            PayslipApprovalAction.GENERATED,
            PayslipApprovalAction.SUBMITTED,
            PayslipApprovalAction.APPROVED,
            PayslipApprovalAction.APPROVED,
        ]

    def test_hr_approval_submits_implicitly(self, payslip_service, generate):
        payslip = generate()

        payslip_service.approve_hr(payslip.id, approver_id=2)

        assert [action for action, _ in history_actions(payslip)] == [
            PayslipApprovalAction.GENERATED,
            PayslipApprovalAction.SUBMITTED,
            PayslipApprovalAction.APPROVED,
        ]

    def test_finance_cannot_approve_first(self, payslip_service, generate):
        payslip = generate(auto_submit_for_approval=True)

        with pytest.raises(InvalidStateTransitionError) as exc_info:
            payslip_service.approve(payslip.id, FINANCE, approver_id=3)

        assert exc_info.value.details[0].message == "pending_hr_approval"
        assert payslip_service.get_payslip(payslip.id).finance_approved_at is None

    def test_hr_cannot_approve_twice(self, payslip_service, generate):
        payslip = generate()
        payslip_service.approve(payslip.id, HR, approver_id=2)

        with pytest.raises(InvalidStateTransitionError):
            payslip_service.approve(payslip.id, HR, approver_id=2)

    def test_reject_at_finance(self, payslip_service, generate):
        payslip = generate()
        payslip_service.approve(payslip.id, HR, approver_id=2)

        payslip_service.reject(payslip.id, FINANCE, rejected_by=3, reason="Wrong bank")

        assert payslip.status == PayslipStatus.FINANCE_REJECTED
        assert payslip.rejection_reason == "Wrong bank"
        with pytest.raises(InvalidStateTransitionError):
            payslip_service.approve(payslip.id, FINANCE, approver_id=3)

    def test_reject_requires_reason(self, payslip_service, generate):
        payslip = generate()

        with pytest.raises(PayrollValidationError):
            payslip_service.reject(payslip.id, HR, rejected_by=2, reason="")

    def test_expected_version(self, payslip_service, generate):
        payslip = generate()

        with pytest.raises(ConcurrencyConflictError):
            payslip_service.approve(payslip.id, HR, approver_id=2, expected_version=42)

        payslip_service.approve(payslip.id, HR, approver_id=2, expected_version=payslip.version_id)

    def test_pending_queues(self, payslip_service, generate, branch):
        first = generate(auto_submit_for_approval=True)
        second = generate()
        payslip_service.approve(second.id, HR, approver_id=2)

        assert [p.id for p in payslip_service.get_pending_approvals(HR)] == [first.id]
        assert [p.id for p in payslip_service.get_pending_approvals(FINANCE, branch.id)] == [
            second.id
        ]
        assert payslip_service.get_pending_approvals(FINANCE, branch.id + 1) == []


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_notifies(self, payslip_service, approved, adapter, db_session):
        payslip = approved()

        await payslip_service.release(payslip.id, released_by=4, released_by_name="Rae")

        assert payslip.status == PayslipStatus.RELEASED
        assert payslip.released_by_name == "Rae"
        assert payslip.is_notification_sent
        assert payslip.released_at <= payslip.notification_sent_at
        adapter.send_to_user.assert_awaited_once()
        assert history_actions(payslip)[-2:] == [
            (PayslipApprovalAction.RELEASED, PayslipStatus.RELEASED),
            (PayslipApprovalAction.NOTIFIED, PayslipStatus.RELEASED),
        ]
        events = [
            log.event_type for log in PayrollAuditService(db_session).get_entity_history(
                "payslip_generation", payslip.id
            )
        ]
        assert events[-1] == AuditEventType.PAYSLIP_RELEASED

    @pytest.mark.asyncio
    async def test_release_survives_failed_notification(
        self, payslip_service, approved, adapter, db_session
    ):
        payslip = approved()
        adapter.send_to_user.return_value = False

        await payslip_service.release(payslip.id, released_by=4)

        db_session.expire_all()
        stored = payslip_service.get_payslip(payslip.id)
        assert stored.status == PayslipStatus.RELEASED
        assert not stored.is_notification_sent

    @pytest.mark.asyncio
    async def test_release_survives_unrecorded_notification(
        self, payslip_service, approved, adapter, db_session
    ):
        payslip = approved()

        async def deliver_then_bump(user_id, message):
            db_session.execute(
                text("UPDATE payslip_generations SET version_id = version_id + 1 WHERE id = :id"),
                {"id": message.metadata["payslip_id"]},
            )
            return True

        adapter.send_to_user.side_effect = deliver_then_bump

        released = await payslip_service.release(payslip.id, released_by=4)

        assert released.id == payslip.id
        db_session.expire_all()
        stored = payslip_service.get_payslip(payslip.id)
        assert stored.status == PayslipStatus.RELEASED
        assert not stored.is_notification_sent
        assert history_actions(stored)[-1] == (PayslipApprovalAction.RELEASED, PayslipStatus.RELEASED)

        adapter.send_to_user.side_effect = None
        retried = await payslip_service.retry_notification(payslip.id)
        assert retried.is_notification_sent

    @pytest.mark.asyncio
    async def test_release_requires_approval(self, payslip_service, generate):
        payslip = generate()
        payslip_service.approve(payslip.id, HR, approver_id=2)

        with pytest.raises(InvalidStateTransitionError):
            await payslip_service.release(payslip.id, released_by=4)

    @pytest.mark.asyncio
    async def test_retry_notification(self, payslip_service, approved, adapter):
        payslip = approved()
        adapter.send_to_user.return_value = False
        await payslip_service.release(payslip.id, released_by=4)

        with pytest.raises(NotificationDeliveryError):
            await payslip_service.retry_notification(payslip.id)

        adapter.send_to_user.return_value = True
        retried = await payslip_service.retry_notification(payslip.id)
        assert retried.is_notification_sent

        with pytest.raises(InvalidStateTransitionError):
            await payslip_service.retry_notification(payslip.id)

    @pytest.mark.asyncio
    async def test_bulk_release_reports_failed_notification(
        self, payslip_service, approved, adapter, db_session
    ):
        payslips = [approved(), approved(), approved()]
        second_id = payslips[1].id

        async def deliver(user_id, message):
            return message.metadata["payslip_id"] != second_id

        adapter.send_to_user.side_effect = deliver

        report = await payslip_service.bulk_release(
            [p.id for p in payslips], released_by=4, released_by_name="Rae"
        )

        assert report.requested == 3
        assert report.released == 3
        assert report.notifications_sent == 2
        assert report.failed_ids == [second_id]
        assert report.partial_failure

        db_session.expire_all()
        stored = [payslip_service.get_payslip(p.id) for p in payslips]
        assert [p.status for p in stored] == [PayslipStatus.RELEASED] * 3
        assert [p.is_notification_sent for p in stored] == [True, False, True]

    @pytest.mark.asyncio
    async def test_bulk_release_reports_unrecorded_notification(
        self, payslip_service, approved, adapter, db_session
    ):
        payslips = [approved(), approved(), approved()]
        second_id = payslips[1].id

        async def deliver(user_id, message):
            if message.metadata["payslip_id"] == second_id:
                db_session.execute(
                    text(
                        "UPDATE payslip_generations SET version_id = version_id + 1 WHERE id = :id"
                    ),
                    {"id": second_id},
                )
            return True

        adapter.send_to_user.side_effect = deliver

        report = await payslip_service.bulk_release([p.id for p in payslips], released_by=4)

        assert report.released == 3
        assert report.notifications_sent == 2
        assert report.failed_ids == [second_id]
        items = {item.payslip_id: item for item in report.items}
        assert items[second_id].released
        assert not items[second_id].notification_sent
        assert items[second_id].error == "Notification delivered but could not be recorded"

        db_session.expire_all()
        stored = [payslip_service.get_payslip(p.id) for p in payslips]
        assert [p.status for p in stored] == [PayslipStatus.RELEASED] * 3
        assert [p.is_notification_sent for p in stored] == [True, False, True]

    @pytest.mark.asyncio
    async def test_bulk_release_isolates_invalid_items(
        self, payslip_service, approved, generate, db_session
    ):
        ready = approved()
        not_ready = generate()

        report = await payslip_service.bulk_release(
            [ready.id, not_ready.id, ready.id, 999], released_by=4
        )

        assert report.requested == 3
        assert report.released == 1
        assert report.failed_ids == [not_ready.id, 999]
        items = {item.payslip_id: item for item in report.items}
        assert items[ready.id].notification_sent
        assert "generated" in items[not_ready.id].error

        db_session.expire_all()
        assert payslip_service.get_payslip(ready.id).status == PayslipStatus.RELEASED
        assert payslip_service.get_payslip(not_ready.id).status == PayslipStatus.GENERATED


class TestRegenerate:
    @pytest.mark.asyncio
    async def test_regenerate_released_payslip(self, payslip_service, approved, tmp_path):
        payslip = approved()
        await payslip_service.release(payslip.id, released_by=4)

        new = payslip_service.regenerate(payslip.id, reason="Bonus added", regenerated_by=5)

        assert new.version == 2
        assert new.status == PayslipStatus.GENERATED
        assert new.previous_payslip_id == payslip.id
        assert new.regeneration_reason == "Bonus added"
        assert new.file_name.endswith("_v2.html")
        assert payslip.status == PayslipStatus.SUPERSEDED
        assert history_actions(payslip)[-1] == (
            PayslipApprovalAction.REGENERATED, PayslipStatus.SUPERSEDED
        )
        assert payslip_service.get_live_payslip(payslip.payroll_record_id).id == new.id

    def test_regenerate_requires_reason(self, payslip_service, generate):
        payslip = generate()

        with pytest.raises(PayrollValidationError):
            payslip_service.regenerate(payslip.id, reason=" ", regenerated_by=5)

    def test_pending_payslip_cannot_be_regenerated(self, payslip_service, generate):
        payslip = generate()

        with pytest.raises(InvalidStateTransitionError):
            payslip_service.regenerate(payslip.id, reason="typo", regenerated_by=5)

    def test_rejected_payslip_can_be_regenerated(self, payslip_service, generate):
        payslip = generate()
        payslip_service.reject(payslip.id, HR, rejected_by=2, reason="Typo in name")

        new = payslip_service.regenerate(payslip.id, reason="Name fixed", regenerated_by=5)

        assert new.version == 2


class TestSummary:
    @pytest.mark.asyncio
    async def test_approval_summary(self, payslip_service, generate, approved, adapter, branch):
        generate(auto_submit_for_approval=True)
        rejected = generate()
        payslip_service.reject(rejected.id, HR, rejected_by=2, reason="Typo")
        released = approved()
        adapter.send_to_user.return_value = False
        await payslip_service.release(released.id, released_by=4)
        approved()

        summary = payslip_service.get_approval_summary(branch.id, 2024, 1)
        assert summary.total_payslips == 1
        assert summary.pending_hr_approval == 1

        totals = {"pending": 0, "rejected": 0, "released": 0, "approved": 0, "unnotified": 0}
        for month in range(1, 5):
            summary = payslip_service.get_approval_summary(branch.id, 2024, month)
            totals["pending"] += summary.pending_hr_approval
            totals["rejected"] += summary.rejected
            totals["released"] += summary.released
            totals["approved"] += summary.approved
            totals["unnotified"] += summary.notifications_pending

        assert totals == {
            "pending": 1, "rejected": 1, "released": 1, "approved": 1, "unnotified": 1
        }
