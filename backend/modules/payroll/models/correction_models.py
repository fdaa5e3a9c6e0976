# backend/modules/payroll/models/correction_models.py

from sqlalchemy import (
    Column, Integer, ForeignKey, DateTime, Boolean, Text, Enum, JSON, Index
)
from sqlalchemy.orm import relationship
from core.database import Base
from core.mixins import TimestampMixin, OptimisticLockMixin
from ..enums import PayrollErrorType, PayrollCorrectionStatus


class PayrollErrorCorrection(Base, TimestampMixin, OptimisticLockMixin):
    """
    Error report and correction request against a finalized payroll record.

    Lifecycle fields (approved_*, processed_*) are written exactly once by the
    transition that owns them. ``version_id`` guards against concurrent
    transitions on the same row.
    """
    __tablename__ = "payroll_error_corrections"

    id = Column(Integer, primary_key=True, index=True)
    payroll_record_id = Column(
        Integer, ForeignKey("payroll_records.id"), nullable=False, index=True
    )
    error_type = Column(Enum(PayrollErrorType), nullable=False)
    error_description = Column(Text, nullable=False)
    correction_data = Column(JSON, nullable=False)
    reason = Column(Text, nullable=False)
    requires_approval = Column(Boolean, default=True, nullable=False)
    status = Column(
        Enum(PayrollCorrectionStatus),
        default=PayrollCorrectionStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Snapshots
    original_values = Column(JSON, nullable=False)
    corrected_values = Column(JSON, nullable=True)
    changes = Column(JSON, nullable=True)

    requested_by = Column(Integer, nullable=False)
    requested_at = Column(DateTime, nullable=False)
    reviewed_by = Column(Integer, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    approved_by = Column(Integer, nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approval_notes = Column(Text, nullable=True)
    processed_by = Column(Integer, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    processing_notes = Column(Text, nullable=True)

    payroll_record = relationship("PayrollRecord")

    __table_args__ = (
        Index("ix_payroll_corrections_record_status", "payroll_record_id", "status"),
    )
