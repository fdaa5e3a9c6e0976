# backend/modules/payroll/models/payroll_models.py

from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, DateTime, Date, Boolean, Text,
    Enum, JSON, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from core.database import Base
from core.mixins import TimestampMixin, SoftDeleteMixin
from ..enums import PayrollFormulaType, PayrollRecordStatus


class PayrollFormula(Base, TimestampMixin, SoftDeleteMixin):
    """
    Named payroll formula with an optional scope.

    A formula with no scope fields applies organization-wide. Narrower scopes
    (branch, department, designation) override broader ones for the same name.
    """
    __tablename__ = "payroll_formulas"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)
    type = Column(Enum(PayrollFormulaType), nullable=False)
    formula = Column(Text, nullable=False)
    variables = Column(JSON, nullable=False, default=list)
    priority = Column(Integer, nullable=False, default=100)
    conditions = Column(Text, nullable=True)

    # Scope narrowing
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=True)
    department = Column(String(100), nullable=True)
    designation = Column(String(100), nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    created_by = Column(Integer, nullable=True)

    __table_args__ = (
        Index("ix_payroll_formulas_scope", "organization_id", "branch_id", "is_active"),
    )


class PayrollRecord(Base, TimestampMixin):
    """Finalized payroll calculation for one employee and one month."""
    __tablename__ = "payroll_records"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)

    payroll_period_start = Column(Date, nullable=False)
    payroll_period_end = Column(Date, nullable=False)
    payroll_month = Column(Integer, nullable=False)
    payroll_year = Column(Integer, nullable=False)

    # Amounts
    basic_salary = Column(Numeric(12, 2), nullable=False)
    total_allowances = Column(Numeric(12, 2), default=0, nullable=False)
    overtime_hours = Column(Numeric(6, 2), default=0, nullable=False)
    overtime_amount = Column(Numeric(12, 2), default=0, nullable=False)
    gross_salary = Column(Numeric(12, 2), nullable=False)
    total_deductions = Column(Numeric(12, 2), default=0, nullable=False)
    net_salary = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    exchange_rate = Column(Numeric(18, 6), default=1, nullable=False)

    # Attendance snapshot
    working_days = Column(Integer, default=0, nullable=False)
    actual_working_days = Column(Integer, default=0, nullable=False)
    absent_days = Column(Integer, default=0, nullable=False)
    leave_days = Column(Integer, default=0, nullable=False)

    # Breakdown maps, name -> amount string
    allowance_breakdown = Column(JSON, nullable=True)
    deduction_breakdown = Column(JSON, nullable=True)
    custom_calculations = Column(JSON, nullable=True)

    status = Column(Enum(PayrollRecordStatus), default=PayrollRecordStatus.CALCULATED, nullable=False)
    processed_by = Column(Integer, nullable=True)
    processed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    employee = relationship("Employee")
    branch = relationship("Branch")

    __table_args__ = (
        UniqueConstraint(
            "employee_id", "payroll_year", "payroll_month",
            name="uq_payroll_record_employee_period"
        ),
        Index("ix_payroll_records_branch_period", "branch_id", "payroll_year", "payroll_month"),
    )
