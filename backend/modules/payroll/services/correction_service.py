# backend/modules/payroll/services/correction_service.py

"""
Payroll error-correction workflow.

    pending -> under_review -> approved -> processed
    pending | under_review -> rejected
    pending | under_review | approved -> cancelled

Every transition is atomic: the status change, its lifecycle fields and the
audit entry are committed together or rolled back together. Concurrent
transitions on the same correction are detected through the row version.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from core.config import settings
from core.mixins import stamp_audit_fields
from ..enums import PayrollCorrectionStatus, PayrollErrorType
from ..exceptions import (
    ConcurrencyConflictError,
    InvalidStateTransitionError,
    PayrollException,
    PayrollNotFoundError,
    PayrollValidationError,
)
from ..models.correction_models import PayrollErrorCorrection
from ..models.payroll_models import PayrollRecord
from ..schemas.audit_schemas import AuditEventType
from ..schemas.correction_schemas import (
    PayrollCorrectionChange,
    PayrollErrorCorrectionRequest,
    PayrollErrorCorrectionResult,
)
from ..schemas.error_schemas import PayrollErrorCodes
from ..schemas.payroll_schemas import PayrollCalculationResult
from .audit_service import PayrollAuditService
from .payroll_calculation_service import (
    PayrollCalculationService,
    RECORD_AMOUNT_FIELDS,
    apply_result_to_record,
    normalize_field_name,
    parse_override_value,
    record_values,
)

logger = logging.getLogger(__name__)

Status = PayrollCorrectionStatus

# action -> (allowed source states, target state)
TRANSITIONS = {
    "review": ({Status.PENDING}, Status.UNDER_REVIEW),
    "approve": ({Status.PENDING, Status.UNDER_REVIEW}, Status.APPROVED),
    "reject": ({Status.PENDING, Status.UNDER_REVIEW}, Status.REJECTED),
    "process": ({Status.APPROVED}, Status.PROCESSED),
    "cancel": ({Status.PENDING, Status.UNDER_REVIEW, Status.APPROVED}, Status.CANCELLED),
}

FIELD_DISPLAY_NAMES = {
    "basic_salary": "Basic Salary",
    "total_allowances": "Total Allowances",
    "overtime_amount": "Overtime Amount",
    "gross_salary": "Gross Salary",
    "total_deductions": "Total Deductions",
    "net_salary": "Net Salary",
}

# Keys that count as a salary correction for calculation errors
SALARY_FIELDS = {"basicsalary", "grosssalary", "overtimeamount", "overtimehours"}


def diff_calculations(
    original: Dict[str, Any],
    corrected: Dict[str, Any],
    reason: Optional[str] = None,
) -> List[PayrollCorrectionChange]:
    """
    Field-level differences between two value snapshots.

    Monetary totals come first in a fixed order, then allowance and
    deduction breakdown entries. Unchanged fields produce no entry.
    """
    changes = []

    def add(field_name, display_name, old, new):
        old = Decimal(str(old or 0))
        new = Decimal(str(new or 0))
        if old != new:
            changes.append(
                PayrollCorrectionChange(
                    field_name=field_name,
                    field_display_name=display_name,
                    old_value=old,
                    new_value=new,
                    impact_amount=new - old,
                    change_reason=reason,
                )
            )

    for field_name in RECORD_AMOUNT_FIELDS:
        add(
            field_name,
            FIELD_DISPLAY_NAMES[field_name],
            original.get(field_name),
            corrected.get(field_name),
        )

    for breakdown, label in (
        ("allowance_breakdown", "Allowance"),
        ("deduction_breakdown", "Deduction"),
    ):
        old_map = original.get(breakdown) or {}
        new_map = corrected.get(breakdown) or {}
        for name in list(old_map) + [n for n in new_map if n not in old_map]:
            add(f"{breakdown}.{name}", f"{label}: {name}", old_map.get(name), new_map.get(name))

    return changes


def result_values(result: PayrollCalculationResult) -> Dict[str, Any]:
    values = {
        field_name: str(getattr(result, field_name)) for field_name in RECORD_AMOUNT_FIELDS
    }
    values["allowance_breakdown"] = {k: str(v) for k, v in result.allowance_breakdown.items()}
    values["deduction_breakdown"] = {k: str(v) for k, v in result.deduction_breakdown.items()}
    return values


class PayrollErrorCorrectionService:
    """Submits, reviews and applies payroll corrections"""

    def __init__(
        self,
        db: Session,
        calculation_service: Optional[PayrollCalculationService] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self.calculation_service = calculation_service or PayrollCalculationService(db)
        self.clock = clock
        self.audit = PayrollAuditService(db)

    # Queries

    def get_correction(self, correction_id: int) -> PayrollErrorCorrection:
        correction = (
            self.db.query(PayrollErrorCorrection)
            .filter(PayrollErrorCorrection.id == correction_id)
            .first()
        )
        if not correction:
            raise PayrollNotFoundError("PayrollErrorCorrection", correction_id)
        return correction

    def list_for_record(self, payroll_record_id: int) -> List[PayrollErrorCorrection]:
        return (
            self.db.query(PayrollErrorCorrection)
            .filter(PayrollErrorCorrection.payroll_record_id == payroll_record_id)
            .order_by(PayrollErrorCorrection.requested_at, PayrollErrorCorrection.id)
            .all()
        )

    def list_pending(self, branch_id: Optional[int] = None) -> List[PayrollErrorCorrection]:
        query = self.db.query(PayrollErrorCorrection).filter(
            PayrollErrorCorrection.status.in_([Status.PENDING, Status.UNDER_REVIEW])
        )
        if branch_id is not None:
            query = query.join(PayrollRecord).filter(PayrollRecord.branch_id == branch_id)
        return query.order_by(PayrollErrorCorrection.requested_at).all()

    # Workflow

    def _validate_request(self, request: PayrollErrorCorrectionRequest):
        if not request.correction_data:
            raise PayrollValidationError(
                "Correction data is required",
                field="correction_data",
                code=PayrollErrorCodes.INVALID_CORRECTION_DATA,
            )
        for key, value in request.correction_data.items():
            parse_override_value(key, value)

        if request.error_type == PayrollErrorType.CALCULATION_ERROR:
            keys = {normalize_field_name(k) for k in request.correction_data}
            if not keys & SALARY_FIELDS:
                raise PayrollValidationError(
                    "At least one salary field must be corrected for calculation errors",
                    field="correction_data",
                    code=PayrollErrorCodes.INVALID_CORRECTION_DATA,
                )

    async def submit_correction(
        self, request: PayrollErrorCorrectionRequest
    ) -> PayrollErrorCorrectionResult:
        """
        Record a correction request against a payroll record.

        The record's current values are snapshotted, and the returned result
        carries a preview of the changes the correction would make.
        """
        record = self.db.query(PayrollRecord).filter(
            PayrollRecord.id == request.payroll_record_id
        ).first()
        if not record:
            raise PayrollNotFoundError("PayrollRecord", request.payroll_record_id)
        self._validate_request(request)

        preview = await self.calculation_service.calculate_from_correction(
            record, request.correction_data
        )
        original = record_values(record)
        now = self.clock()

        correction = PayrollErrorCorrection(
            payroll_record_id=record.id,
            error_type=request.error_type,
            error_description=request.error_description,
            correction_data=dict(request.correction_data),
            reason=request.reason,
            requires_approval=request.requires_approval,
            status=Status.PENDING,
            original_values=original,
            requested_by=request.requested_by,
            requested_at=now,
        )

        auto_approve = (
            not request.requires_approval
            and not settings.payroll_corrections_require_approval
        )
        if auto_approve:
            correction.status = Status.APPROVED
            correction.approved_by = request.requested_by
            correction.approved_at = now
            correction.approval_notes = "Approved automatically; approval not required"
        stamp_audit_fields(correction, now)

        try:
            self.db.add(correction)
            self.db.flush()
            self.audit.log_event(
                AuditEventType.CORRECTION_SUBMITTED,
                entity_type="payroll_error_correction",
                entity_id=correction.id,
                action=f"Correction requested for payroll record {record.id}",
                user_id=request.requested_by,
                new_values={
                    "status": correction.status,
                    "correction_data": correction.correction_data,
                },
                timestamp=now,
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to submit correction for payroll record {record.id}")
            raise

        logger.info(
            f"Correction {correction.id} submitted for payroll record {record.id} "
            f"({correction.status.value})"
        )
        result = PayrollErrorCorrectionResult.model_validate(correction)
        result.changes = diff_calculations(original, result_values(preview), request.reason)
        return result

    def _next_timestamp(self, correction: PayrollErrorCorrection) -> datetime:
        """Clock time, never earlier than a timestamp already on the row."""
        now = self.clock()
        previous = [
            ts for ts in (
                correction.requested_at,
                correction.reviewed_at,
                correction.approved_at,
                correction.processed_at,
            )
            if ts is not None
        ]
        if previous and now < max(previous):
            return max(previous)
        return now

    def _begin_transition(
        self,
        correction_id: int,
        action: str,
        expected_version: Optional[int] = None,
    ) -> PayrollErrorCorrection:
        correction = self.get_correction(correction_id)
        if expected_version is not None and correction.version_id != expected_version:
            raise ConcurrencyConflictError("PayrollErrorCorrection", correction_id)

        allowed, _ = TRANSITIONS[action]
        if correction.status not in allowed:
            raise InvalidStateTransitionError(
                "correction", correction_id, correction.status, action
            )
        return correction

    def _commit_transition(
        self,
        correction: PayrollErrorCorrection,
        action: str,
        event_type: AuditEventType,
        user_id: int,
        previous_status: PayrollCorrectionStatus,
        timestamp: datetime,
        extra: Optional[Dict[str, Any]] = None,
    ):
        _, target = TRANSITIONS[action]
        correction.status = target
        stamp_audit_fields(correction, timestamp)
        new_values = {"status": target}
        new_values.update(extra or {})
        try:
            self.audit.log_event(
                event_type,
                entity_type="payroll_error_correction",
                entity_id=correction.id,
                action=f"Correction {correction.id}: {action}",
                user_id=user_id,
                old_values={"status": previous_status},
                new_values=new_values,
                timestamp=timestamp,
            )
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            logger.warning(f"Concurrent update on correction {correction.id} during {action}")
            raise ConcurrencyConflictError("PayrollErrorCorrection", correction.id)
        except SQLAlchemyError:
            self.db.rollback()
            logger.error(f"Failed to {action} correction {correction.id}")
            raise

        logger.info(
            f"Correction {correction.id} {previous_status.value} -> {target.value} "
            f"by {user_id}"
        )
        return correction

    def start_review(
        self, correction_id: int, reviewer_id: int, expected_version: Optional[int] = None
    ) -> PayrollErrorCorrection:
        correction = self._begin_transition(correction_id, "review", expected_version)
        previous = correction.status
        now = self._next_timestamp(correction)
        correction.reviewed_by = reviewer_id
        correction.reviewed_at = now
        return self._commit_transition(
            correction, "review", AuditEventType.CORRECTION_REVIEW_STARTED,
            reviewer_id, previous, now,
        )

    def approve(
        self,
        correction_id: int,
        approver_id: int,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> PayrollErrorCorrection:
        correction = self._begin_transition(correction_id, "approve", expected_version)
        previous = correction.status
        now = self._next_timestamp(correction)
        correction.approved_by = approver_id
        correction.approved_at = now
        correction.approval_notes = notes
        return self._commit_transition(
            correction, "approve", AuditEventType.CORRECTION_APPROVED,
            approver_id, previous, now, {"approved_by": approver_id},
        )

    def reject(
        self,
        correction_id: int,
        rejected_by: int,
        reason: str,
        expected_version: Optional[int] = None,
    ) -> PayrollErrorCorrection:
        """Reject a correction; the decision is stored in the approval fields."""
        if not reason or not reason.strip():
            raise PayrollValidationError("A rejection reason is required", field="reason")
        correction = self._begin_transition(correction_id, "reject", expected_version)
        previous = correction.status
        now = self._next_timestamp(correction)
        correction.approved_by = rejected_by
        correction.approved_at = now
        correction.approval_notes = reason
        return self._commit_transition(
            correction, "reject", AuditEventType.CORRECTION_REJECTED,
            rejected_by, previous, now, {"reason": reason},
        )

    def cancel(
        self,
        correction_id: int,
        cancelled_by: int,
        reason: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> PayrollErrorCorrection:
        correction = self._begin_transition(correction_id, "cancel", expected_version)
        previous = correction.status
        now = self._next_timestamp(correction)
        correction.processed_by = cancelled_by
        correction.processed_at = now
        correction.processing_notes = reason
        return self._commit_transition(
            correction, "cancel", AuditEventType.CORRECTION_CANCELLED,
            cancelled_by, previous, now, {"reason": reason},
        )

    async def process(
        self,
        correction_id: int,
        processed_by: int,
        notes: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> PayrollErrorCorrectionResult:
        """
        Apply an approved correction.

        Recalculates the payroll with the correction data as overrides,
        diffs it against the original snapshot, updates the payroll record and
        marks the correction processed, all in one transaction.
        """
        correction = self._begin_transition(correction_id, "process", expected_version)
        record = correction.payroll_record
        if record is None:
            raise PayrollNotFoundError("PayrollRecord", correction.payroll_record_id)

        try:
            corrected = await self.calculation_service.calculate_from_correction(
                record, correction.correction_data
            )
        except PayrollException:
            self.db.rollback()
            raise

        corrected_values = result_values(corrected)
        changes = diff_calculations(
            correction.original_values, corrected_values, correction.reason
        )
        previous = correction.status
        now = self._next_timestamp(correction)
        record_before = record_values(record)

        apply_result_to_record(record, corrected)
        record.notes = f"Corrected by correction {correction.id}"
        stamp_audit_fields(record, now)
        correction.corrected_values = corrected_values
        correction.changes = [change.model_dump(mode="json") for change in changes]
        correction.processed_by = processed_by
        correction.processed_at = now
        correction.processing_notes = notes

        self.audit.log_event(
            AuditEventType.PAYROLL_RECORD_CORRECTED,
            entity_type="payroll_record",
            entity_id=record.id,
            action=f"Payroll record corrected by correction {correction.id}",
            user_id=processed_by,
            old_values=record_before,
            new_values=corrected_values,
            timestamp=now,
        )
        self._commit_transition(
            correction, "process", AuditEventType.CORRECTION_PROCESSED,
            processed_by, previous, now, {"changes": len(changes)},
        )
        if corrected.errors:
            logger.warning(
                f"Correction {correction.id} processed with formula errors: {corrected.errors}"
            )
        return PayrollErrorCorrectionResult.model_validate(correction)
