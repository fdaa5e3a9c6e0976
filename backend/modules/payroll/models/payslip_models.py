# backend/modules/payroll/models/payslip_models.py

from sqlalchemy import (
    Column, Integer, String, ForeignKey, DateTime, Boolean, Text, Enum, JSON, Index
)
from sqlalchemy.orm import relationship
from core.database import Base
from core.mixins import TimestampMixin, OptimisticLockMixin
from ..enums import PayslipStatus, PayslipApprovalLevel, PayslipApprovalAction


class PayslipTemplate(Base, TimestampMixin):
    __tablename__ = "payslip_templates"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True)
    # Jinja2 HTML body
    body = Column(Text, nullable=False)
    section_config = Column(JSON, nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(Integer, nullable=True)


class PayslipGeneration(Base, TimestampMixin, OptimisticLockMixin):
    """
    Generated payslip document and its approval state.

    HR approval must be recorded before finance approval, and release is only
    possible once both exist. Regeneration supersedes the row and creates a new
    one with ``version + 1``.
    """
    __tablename__ = "payslip_generations"

    id = Column(Integer, primary_key=True, index=True)
    payroll_record_id = Column(
        Integer, ForeignKey("payroll_records.id"), nullable=False, index=True
    )
    payslip_template_id = Column(
        Integer, ForeignKey("payslip_templates.id"), nullable=False
    )
    status = Column(
        Enum(PayslipStatus), default=PayslipStatus.GENERATED, nullable=False, index=True
    )
    file_path = Column(String(500), nullable=True)
    file_name = Column(String(255), nullable=True)
    payslip_data = Column(JSON, nullable=True)

    generated_by = Column(Integer, nullable=False)
    generated_at = Column(DateTime, nullable=False)

    hr_approved_by = Column(Integer, nullable=True)
    hr_approved_by_name = Column(String(200), nullable=True)
    hr_approved_at = Column(DateTime, nullable=True)
    hr_approval_notes = Column(Text, nullable=True)

    finance_approved_by = Column(Integer, nullable=True)
    finance_approved_by_name = Column(String(200), nullable=True)
    finance_approved_at = Column(DateTime, nullable=True)
    finance_approval_notes = Column(Text, nullable=True)

    rejected_by = Column(Integer, nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    released_by = Column(Integer, nullable=True)
    released_by_name = Column(String(200), nullable=True)
    released_at = Column(DateTime, nullable=True)
    is_notification_sent = Column(Boolean, default=False, nullable=False)
    notification_sent_at = Column(DateTime, nullable=True)

    version = Column(Integer, default=1, nullable=False)
    regeneration_reason = Column(Text, nullable=True)
    previous_payslip_id = Column(
        Integer, ForeignKey("payslip_generations.id"), nullable=True
    )

    payroll_record = relationship("PayrollRecord")
    template = relationship("PayslipTemplate")
    approval_history = relationship(
        "PayslipApprovalHistory",
        back_populates="payslip",
        order_by="PayslipApprovalHistory.id",
    )

    __table_args__ = (
        Index("ix_payslip_generations_record_status", "payroll_record_id", "status"),
    )


class PayslipApprovalHistory(Base):
    __tablename__ = "payslip_approval_history"

    id = Column(Integer, primary_key=True, index=True)
    payslip_generation_id = Column(
        Integer, ForeignKey("payslip_generations.id"), nullable=False, index=True
    )
    level = Column(Enum(PayslipApprovalLevel), nullable=True)
    action = Column(Enum(PayslipApprovalAction), nullable=False)
    action_by = Column(Integer, nullable=False)
    action_by_name = Column(String(200), nullable=True)
    action_at = Column(DateTime, nullable=False)
    notes = Column(Text, nullable=True)
    previous_status = Column(Enum(PayslipStatus), nullable=True)
    new_status = Column(Enum(PayslipStatus), nullable=False)

    payslip = relationship("PayslipGeneration", back_populates="approval_history")
