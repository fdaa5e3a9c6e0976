# backend/modules/payroll/services/payslip_service.py

"""
Payslip generation, approval and release.

    generated -> pending_hr_approval -> pending_finance_approval -> approved -> released
    generated | pending_hr_approval -> hr_rejected
    pending_finance_approval -> finance_rejected
    released | hr_rejected | finance_rejected -> superseded (by a regenerated payslip)

HR and finance approvals are each recorded once and in that order. Every
action appends an approval-history row. Notification delivery happens after
the release is committed, so a failed delivery never undoes a release.
"""

import asyncio
import logging
from collections import Counter
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from core.mixins import stamp_audit_fields
from ..enums import PayslipApprovalAction, PayslipApprovalLevel, PayslipStatus
from ..exceptions import (
    ConcurrencyConflictError,
    DuplicateRecordError,
    InvalidStateTransitionError,
    NotificationDeliveryError,
    PayrollException,
    PayrollNotFoundError,
    PayrollValidationError,
    PayslipRenderError,
)
from ..models.payroll_models import PayrollRecord
from ..models.payslip_models import (
    PayslipApprovalHistory,
    PayslipGeneration,
    PayslipTemplate,
)
from ..schemas.audit_schemas import AuditEventType
from ..schemas.payslip_schemas import (
    BulkReleaseItemResult,
    BulkReleaseReport,
    CreatePayslipGenerationRequest,
    PayslipApprovalSummary,
)
from .audit_service import PayrollAuditService
from .payroll_calculation_service import result_from_record
from .payslip_notifier import PayslipNotice, PayslipNotifier
from .payslip_renderer import PayslipRenderer

logger = logging.getLogger(__name__)

Status = PayslipStatus
Action = PayslipApprovalAction
Level = PayslipApprovalLevel

REGENERATABLE_STATUSES = {Status.RELEASED, Status.HR_REJECTED, Status.FINANCE_REJECTED}
HR_PENDING_STATUSES = {Status.GENERATED, Status.PENDING_HR_APPROVAL}


class PayslipService:
    """Generates payslips and drives them through approval and release"""

    def __init__(
        self,
        db: Session,
        renderer: Optional[PayslipRenderer] = None,
        notifier: Optional[PayslipNotifier] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.renderer = renderer or PayslipRenderer()
        self.notifier = notifier or PayslipNotifier()
        self.clock = clock
        self.audit = PayrollAuditService(db)

    # Queries

    def get_payslip(self, payslip_id: int) -> PayslipGeneration:
        payslip = (
            self.db.query(PayslipGeneration)
            .filter(PayslipGeneration.id == payslip_id)
            .first()
        )
        if not payslip:
            raise PayrollNotFoundError("PayslipGeneration", payslip_id)
        return payslip

    def get_template(self, template_id: int) -> PayslipTemplate:
        template = (
            self.db.query(PayslipTemplate)
            .filter(PayslipTemplate.id == template_id)
            .first()
        )
        if not template:
            raise PayrollNotFoundError("PayslipTemplate", template_id)
        if not template.is_active:
            raise PayrollValidationError(
                f"Payslip template {template_id} is inactive", field="payslip_template_id"
            )
        return template

    def get_live_payslip(self, payroll_record_id: int) -> Optional[PayslipGeneration]:
        return (
            self.db.query(PayslipGeneration)
            .filter(
                PayslipGeneration.payroll_record_id == payroll_record_id,
                PayslipGeneration.status != Status.SUPERSEDED,
            )
            .first()
        )

    def get_pending_approvals(
        self, level: PayslipApprovalLevel, branch_id: Optional[int] = None
    ) -> List[PayslipGeneration]:
        status = (
            Status.PENDING_HR_APPROVAL if level == Level.HR else Status.PENDING_FINANCE_APPROVAL
        )
        query = self.db.query(PayslipGeneration).filter(PayslipGeneration.status == status)
        if branch_id is not None:
            query = query.join(PayrollRecord).filter(PayrollRecord.branch_id == branch_id)
        return query.order_by(PayslipGeneration.generated_at, PayslipGeneration.id).all()

    def get_approval_summary(
        self, branch_id: int, payroll_year: int, payroll_month: int
    ) -> PayslipApprovalSummary:
        payslips = (
            self.db.query(PayslipGeneration)
            .join(PayrollRecord)
            .filter(
                PayrollRecord.branch_id == branch_id,
                PayrollRecord.payroll_year == payroll_year,
                PayrollRecord.payroll_month == payroll_month,
                PayslipGeneration.status != Status.SUPERSEDED,
            )
            .all()
        )
        counts = Counter(p.status for p in payslips)
        return PayslipApprovalSummary(
            branch_id=branch_id,
            payroll_year=payroll_year,
            payroll_month=payroll_month,
            total_payslips=len(payslips),
            status_counts={status.value: count for status, count in counts.items()},
            pending_hr_approval=counts[Status.PENDING_HR_APPROVAL],
            pending_finance_approval=counts[Status.PENDING_FINANCE_APPROVAL],
            approved=counts[Status.APPROVED],
            released=counts[Status.RELEASED],
            rejected=sum(1 for p in payslips if p.status.is_rejected),
            notifications_pending=sum(
                1 for p in payslips
                if p.status == Status.RELEASED and not p.is_notification_sent
            ),
        )

    # Helpers

    def _next_timestamp(self, payslip: PayslipGeneration) -> datetime:
        """Clock time, never earlier than a timestamp already on the payslip."""
        now = self.clock()
        previous = [
            ts for ts in (
                payslip.generated_at,
                payslip.hr_approved_at,
                payslip.finance_approved_at,
                payslip.rejected_at,
                payslip.released_at,
                payslip.notification_sent_at,
            )
            if ts is not None
        ]
        if previous and now < max(previous):
            return max(previous)
        return now

    def _load(
        self,
        payslip_id: int,
        allowed: Sequence[PayslipStatus],
        action: str,
        expected_version: Optional[int] = None,
    ) -> PayslipGeneration:
        payslip = self.get_payslip(payslip_id)
        if expected_version is not None and payslip.version_id != expected_version:
            raise ConcurrencyConflictError("PayslipGeneration", payslip_id)
        if payslip.status not in allowed:
            raise InvalidStateTransitionError("payslip", payslip_id, payslip.status, action)
        return payslip

    def _add_history(
        self,
        payslip: PayslipGeneration,
        action: PayslipApprovalAction,
        action_by: int,
        action_at: datetime,
        previous_status: Optional[PayslipStatus],
        level: Optional[PayslipApprovalLevel] = None,
        action_by_name: Optional[str] = None,
        notes: Optional[str] = None,
    ):
        payslip.approval_history.append(
            PayslipApprovalHistory(
                level=level,
                action=action,
                action_by=action_by,
                action_by_name=action_by_name,
                action_at=action_at,
                notes=notes,
                previous_status=previous_status,
                new_status=payslip.status,
            )
        )

    def _audit(
        self,
        payslip: PayslipGeneration,
        event_type: AuditEventType,
        user_id: Optional[int],
        previous_status: Optional[PayslipStatus],
        timestamp: datetime,
        **extra,
    ):
        stamp_audit_fields(payslip, timestamp)
        new_values = {"status": payslip.status}
        new_values.update(extra)
        self.audit.log_event(
            event_type,
            entity_type="payslip_generation",
            entity_id=payslip.id,
            action=f"Payslip {payslip.id}: {event_type.value}",
            user_id=user_id,
            old_values={"status": previous_status} if previous_status else None,
            new_values=new_values,
            timestamp=timestamp,
        )

    def _commit(self, payslip: PayslipGeneration, action: str):
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning(f"Concurrent update on payslip {payslip.id} during {action}")
            raise ConcurrencyConflictError("PayslipGeneration", payslip.id)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to {action} payslip {payslip.id}")
            raise

    def _render(self, record: PayrollRecord, template: PayslipTemplate, version: int, generated_at):
        problems = self.renderer.validate_template(template.body)
        if problems:
            raise PayslipRenderError(f"Template {template.id} is not usable: {'; '.join(problems)}")

        employee = record.employee
        branch = record.branch
        result = result_from_record(record, employee.full_name)
        context = self.renderer.build_context(
            result,
            employee=employee,
            branch=branch,
            organization=branch.organization if branch else None,
            version=version,
            generated_at=generated_at,
        )
        file_stem = (
            f"payslip_{employee.employee_code}_{record.payroll_year}_"
            f"{record.payroll_month:02d}_v{version}"
        )
        rendered = self.renderer.render(template, result, context, file_stem)
        return rendered, result

    def _new_payslip(
        self,
        record: PayrollRecord,
        template: PayslipTemplate,
        generated_by: int,
        now: datetime,
        version: int = 1,
        **fields,
    ) -> PayslipGeneration:
        rendered, result = self._render(record, template, version, now)
        payslip = PayslipGeneration(
            payroll_record_id=record.id,
            payslip_template_id=template.id,
            status=Status.GENERATED,
            file_path=rendered.file_path,
            file_name=rendered.file_name,
            payslip_data=result.model_dump(mode="json"),
            generated_by=generated_by,
            generated_at=now,
            is_notification_sent=False,
            version=version,
            **fields,
        )
        stamp_audit_fields(payslip, now)
        self._add_history(
            payslip, Action.GENERATED, generated_by, now, None,
            notes=fields.get("regeneration_reason"),
        )
        return payslip

    # Generation

    def generate_payslip(self, request: CreatePayslipGenerationRequest) -> PayslipGeneration:
        """
        Render a payslip from a finalized payroll record.

        Only one live payslip may exist per payroll record; use ``regenerate``
        to replace one.
        """
        record = (
            self.db.query(PayrollRecord)
            .filter(PayrollRecord.id == request.payroll_record_id)
            .first()
        )
        if not record:
            raise PayrollNotFoundError("PayrollRecord", request.payroll_record_id)
        template = self.get_template(request.payslip_template_id)

        existing = self.get_live_payslip(record.id)
        if existing:
            raise DuplicateRecordError(
                f"Payslip {existing.id} already exists for payroll record {record.id}"
            )

        now = self.clock()
        payslip = self._new_payslip(record, template, request.generated_by, now)
        if request.auto_submit_for_approval:
            payslip.status = Status.PENDING_HR_APPROVAL
            self._add_history(
                payslip, Action.SUBMITTED, request.generated_by, now,
                Status.GENERATED, level=Level.HR,
            )

        try:
            self.db.add(payslip)
            self.db.flush()
            self._audit(
                payslip, AuditEventType.PAYSLIP_GENERATED, request.generated_by, None, now,
                version=payslip.version, file_name=payslip.file_name,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to store payslip for payroll record {record.id}")
            raise

        logger.info(
            f"Generated payslip {payslip.id} for payroll record {record.id} "
            f"({payslip.status.value})"
        )
        return payslip

    def regenerate(
        self,
        payslip_id: int,
        reason: str,
        regenerated_by: int,
        regenerated_by_name: Optional[str] = None,
    ) -> PayslipGeneration:
        """Supersede a released or rejected payslip with a new version."""
        if not reason or not reason.strip():
            raise PayrollValidationError("A regeneration reason is required", field="reason")
        old = self._load(payslip_id, REGENERATABLE_STATUSES, "regenerate")
        template = self.get_template(old.payslip_template_id)
        now = self._next_timestamp(old)

        new = self._new_payslip(
            old.payroll_record, template, regenerated_by, now,
            version=old.version + 1,
            regeneration_reason=reason,
            previous_payslip_id=old.id,
        )
        previous = old.status
        old.status = Status.SUPERSEDED
        stamp_audit_fields(old, now)
        self._add_history(
            old, Action.REGENERATED, regenerated_by, now, previous,
            action_by_name=regenerated_by_name, notes=reason,
        )

        self.db.add(new)
        try:
            self.db.flush()
        except StaleDataError:
            self.db.rollback()
            raise ConcurrencyConflictError("PayslipGeneration", payslip_id)
        self._audit(
            new, AuditEventType.PAYSLIP_REGENERATED, regenerated_by, None, now,
            version=new.version, previous_payslip_id=old.id, reason=reason,
        )
        self._commit(new, "regenerate")

        logger.info(f"Payslip {old.id} superseded by payslip {new.id} (version {new.version})")
        return new

    # Approval

    def submit_for_approval(
        self,
        payslip_id: int,
        submitted_by: int,
        submitted_by_name: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> PayslipGeneration:
        payslip = self._load(payslip_id, {Status.GENERATED}, "submit", expected_version)
        now = self._next_timestamp(payslip)
        payslip.status = Status.PENDING_HR_APPROVAL
        self._add_history(
            payslip, Action.SUBMITTED, submitted_by, now, Status.GENERATED,
            level=Level.HR, action_by_name=submitted_by_name,
        )
        self._audit(payslip, AuditEventType.PAYSLIP_SUBMITTED, submitted_by, Status.GENERATED, now)
        self._commit(payslip, "submit")
        return payslip

    def approve(
        self,
        payslip_id: int,
        level: PayslipApprovalLevel,
        approver_id: int,
        approver_name: Optional[str] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> PayslipGeneration:
        if level == Level.HR:
            return self.approve_hr(payslip_id, approver_id, approver_name, notes, expected_version)
        return self.approve_finance(payslip_id, approver_id, approver_name, notes, expected_version)

    def approve_hr(
        self,
        payslip_id: int,
        approver_id: int,
        approver_name: Optional[str] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> PayslipGeneration:
        """
        Record the HR approval.

        A payslip still in ``generated`` is submitted implicitly first.
        """
        payslip = self._load(payslip_id, HR_PENDING_STATUSES, "approve at HR level", expected_version)
        if payslip.hr_approved_at is not None:
            raise InvalidStateTransitionError(
                "payslip", payslip_id, payslip.status, "approve at HR level"
            )

        now = self._next_timestamp(payslip)
        if payslip.status == Status.GENERATED:
            payslip.status = Status.PENDING_HR_APPROVAL
            self._add_history(
                payslip, Action.SUBMITTED, approver_id, now, Status.GENERATED,
                level=Level.HR, action_by_name=approver_name,
            )

        payslip.hr_approved_by = approver_id
        payslip.hr_approved_by_name = approver_name
        payslip.hr_approved_at = now
        payslip.hr_approval_notes = notes
        payslip.status = Status.PENDING_FINANCE_APPROVAL
        self._add_history(
            payslip, Action.APPROVED, approver_id, now, Status.PENDING_HR_APPROVAL,
            level=Level.HR, action_by_name=approver_name, notes=notes,
        )
        self._audit(
            payslip, AuditEventType.PAYSLIP_HR_APPROVED, approver_id,
            Status.PENDING_HR_APPROVAL, now,
        )
        self._commit(payslip, "approve at HR level")
        logger.info(f"Payslip {payslip.id} approved by HR ({approver_id})")
        return payslip

    def approve_finance(
        self,
        payslip_id: int,
        approver_id: int,
        approver_name: Optional[str] = None,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> PayslipGeneration:
        payslip = self._load(
            payslip_id, {Status.PENDING_FINANCE_APPROVAL}, "approve at finance level",
            expected_version,
        )
        if payslip.hr_approved_at is None or payslip.finance_approved_at is not None:
            raise InvalidStateTransitionError(
                "payslip", payslip_id, payslip.status, "approve at finance level"
            )

        now = self._next_timestamp(payslip)
        payslip.finance_approved_by = approver_id
        payslip.finance_approved_by_name = approver_name
        payslip.finance_approved_at = now
        payslip.finance_approval_notes = notes
        payslip.status = Status.APPROVED
        self._add_history(
            payslip, Action.APPROVED, approver_id, now, Status.PENDING_FINANCE_APPROVAL,
            level=Level.FINANCE, action_by_name=approver_name, notes=notes,
        )
        self._audit(
            payslip, AuditEventType.PAYSLIP_FINANCE_APPROVED, approver_id,
            Status.PENDING_FINANCE_APPROVAL, now,
        )
        self._commit(payslip, "approve at finance level")
        logger.info(f"Payslip {payslip.id} approved by finance ({approver_id})")
        return payslip

    def reject(
        self,
        payslip_id: int,
        level: PayslipApprovalLevel,
        rejected_by: int,
        reason: str,
        rejected_by_name: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> PayslipGeneration:
        if not reason or not reason.strip():
            raise PayrollValidationError("A rejection reason is required", field="reason")

        if level == Level.HR:
            allowed, target = HR_PENDING_STATUSES, Status.HR_REJECTED
        else:
            allowed, target = {Status.PENDING_FINANCE_APPROVAL}, Status.FINANCE_REJECTED
        payslip = self._load(
            payslip_id, allowed, f"reject at {level.value} level", expected_version
        )

        previous = payslip.status
        now = self._next_timestamp(payslip)
        payslip.rejected_by = rejected_by
        payslip.rejected_at = now
        payslip.rejection_reason = reason
        payslip.status = target
        self._add_history(
            payslip, Action.REJECTED, rejected_by, now, previous,
            level=level, action_by_name=rejected_by_name, notes=reason,
        )
        self._audit(
            payslip, AuditEventType.PAYSLIP_REJECTED, rejected_by, previous, now,
            level=level, reason=reason,
        )
        self._commit(payslip, "reject")
        logger.info(f"Payslip {payslip.id} rejected at {level.value} level by {rejected_by}")
        return payslip

    # Release

    def _apply_release(
        self,
        payslip_id: int,
        released_by: int,
        released_by_name: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> PayslipGeneration:
        payslip = self._load(payslip_id, {Status.APPROVED}, "release", expected_version)
        if payslip.hr_approved_at is None or payslip.finance_approved_at is None:
            raise InvalidStateTransitionError("payslip", payslip_id, payslip.status, "release")

        now = self._next_timestamp(payslip)
        payslip.status = Status.RELEASED
        payslip.released_by = released_by
        payslip.released_by_name = released_by_name
        payslip.released_at = now
        self._add_history(
            payslip, Action.RELEASED, released_by, now, Status.APPROVED,
            action_by_name=released_by_name,
        )
        self._audit(payslip, AuditEventType.PAYSLIP_RELEASED, released_by, Status.APPROVED, now)
        return payslip

    def _notice(self, payslip: PayslipGeneration) -> PayslipNotice:
        record = payslip.payroll_record
        return PayslipNotice(
            payslip_id=payslip.id,
            employee_id=record.employee_id,
            employee_name=record.employee.full_name,
            payroll_year=record.payroll_year,
            payroll_month=record.payroll_month,
            net_salary=str(record.net_salary),
            currency=record.currency,
            version=payslip.version,
        )

    def _mark_notified(self, payslip: PayslipGeneration):
        now = self._next_timestamp(payslip)
        payslip.is_notification_sent = True
        payslip.notification_sent_at = now
        stamp_audit_fields(payslip, now)
        self._add_history(
            payslip, Action.NOTIFIED, payslip.released_by, now, Status.RELEASED,
            action_by_name=payslip.released_by_name,
        )

    async def _deliver(self, payslip: PayslipGeneration) -> bool:
        """
        Send the release notice and record a confirmed delivery.

        Returns False when delivery failed or when the notified flag could not
        be committed; the payslip then stays released with
        ``is_notification_sent`` unset so the notification can be retried.
        """
        delivered = await self.notifier.notify_released(self._notice(payslip))
        if not delivered:
            return False
        self._mark_notified(payslip)
        try:
            self._commit(payslip, "record notification for")
        except (ConcurrencyConflictError, SQLAlchemyError):
            logger.warning(f"Payslip {payslip.id} was notified but the notification was not recorded")
            return False
        return True

    async def release(
        self,
        payslip_id: int,
        released_by: int,
        released_by_name: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> PayslipGeneration:
        """
        Release an approved payslip and notify the employee.

        The release is committed before delivery is attempted;
        ``is_notification_sent`` is only set when delivery was confirmed.
        """
        payslip = self._apply_release(payslip_id, released_by, released_by_name, expected_version)
        self._commit(payslip, "release")
        logger.info(f"Payslip {payslip.id} released by {released_by}")

        if not await self._deliver(payslip):
            logger.warning(f"Payslip {payslip.id} released without confirmed notification")
        return payslip

    async def retry_notification(self, payslip_id: int) -> PayslipGeneration:
        payslip = self.get_payslip(payslip_id)
        if payslip.status != Status.RELEASED or payslip.is_notification_sent:
            raise InvalidStateTransitionError(
                "payslip", payslip_id, payslip.status, "retry notification for"
            )
        if not await self._deliver(payslip):
            raise NotificationDeliveryError(
                f"Notification for payslip {payslip_id} was not delivered"
            )
        return payslip

    async def bulk_release(
        self,
        payslip_ids: Sequence[int],
        released_by: int,
        released_by_name: Optional[str] = None,
    ) -> BulkReleaseReport:
        """
        Release several payslips independently.

        Each release runs in its own savepoint, so one failure leaves the
        others released. Notifications for the released payslips are sent
        concurrently and each outcome is reported per item.
        """
        items: Dict[int, BulkReleaseItemResult] = {}
        released: List[PayslipGeneration] = []

        for payslip_id in dict.fromkeys(payslip_ids):
            item = BulkReleaseItemResult(payslip_id=payslip_id)
            items[payslip_id] = item
            savepoint = self.db.begin_nested()
            try:
                payslip = self._apply_release(payslip_id, released_by, released_by_name)
                savepoint.commit()
            except PayrollException as e:
                savepoint.rollback()
                item.error = e.message
                logger.warning(f"Bulk release skipped payslip {payslip_id}: {e.message}")
                continue
            except StaleDataError:
                savepoint.rollback()
                item.error = f"PayslipGeneration {payslip_id} was modified by another operation"
                logger.warning(f"Bulk release lost a concurrent update on payslip {payslip_id}")
                continue

            item.released = True
            item.status = Status.RELEASED
            released.append(payslip)

        self.db.commit()

        notices = [self._notice(payslip) for payslip in released]
        outcomes = await asyncio.gather(
            *(self.notifier.notify_released(notice) for notice in notices),
            return_exceptions=True,
        )
        for payslip, outcome in zip(released, outcomes):
            item = items[payslip.id]
            if isinstance(outcome, Exception):
                item.error = f"Notification failed: {outcome}"
                logger.error(f"Notification for payslip {payslip.id} raised: {outcome}")
            elif outcome:
                savepoint = self.db.begin_nested()
                try:
                    self._mark_notified(payslip)
                    savepoint.commit()
                except StaleDataError:
                    savepoint.rollback()
                    item.error = "Notification delivered but could not be recorded"
                    logger.warning(f"Concurrent update on payslip {payslip.id} while recording notification")
                    continue
                item.notification_sent = True
            else:
                item.error = "Notification was not delivered"
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to record bulk release notifications by {released_by}")
            for item in items.values():
                if item.notification_sent:
                    item.notification_sent = False
                    item.error = "Notification delivered but could not be recorded"

        failed_ids = [item.payslip_id for item in items.values() if item.is_partial_failure]
        report = BulkReleaseReport(
            requested=len(items),
            released=sum(1 for item in items.values() if item.released),
            notifications_sent=sum(1 for item in items.values() if item.notification_sent),
            items=list(items.values()),
            failed_ids=failed_ids,
            partial_failure=bool(failed_ids),
        )
        logger.info(
            f"Bulk release by {released_by}: {report.released}/{report.requested} released, "
            f"{report.notifications_sent} notified"
        )
        return report
