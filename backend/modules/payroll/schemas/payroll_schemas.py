# backend/modules/payroll/schemas/payroll_schemas.py

"""
Pydantic schemas for payroll calculation.

Provides request/response models for:
- Payroll calculations
- Stored payroll records
- Branch payroll runs
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional, List, Dict
from datetime import date, datetime
from decimal import Decimal

from ..enums import PayrollRecordStatus


class PayrollCalculationRequest(BaseModel):
    """
    Immutable calculation request keyed by employee and period.

    ``custom_values`` are caller supplied overrides made available to
    formulas by name. ``target_currency`` defaults to the configured
    reporting currency.
    """

    employee_id: int = Field(..., gt=0)
    payroll_period_start: date
    payroll_period_end: date
    payroll_month: int = Field(..., ge=1, le=12)
    payroll_year: int = Field(..., ge=1900, le=9999)
    include_custom_formulas: bool = True
    custom_values: Dict[str, Decimal] = Field(default_factory=dict)
    target_currency: Optional[str] = Field(None, min_length=3, max_length=3)

    model_config = ConfigDict(frozen=True)

    @field_validator("target_currency")
    def normalize_currency(cls, v):
        return v.upper() if v else v

    @model_validator(mode="after")
    def validate_period(self):
        if self.payroll_period_start > self.payroll_period_end:
            raise ValueError("payroll_period_start must not be after payroll_period_end")
        if (self.payroll_month, self.payroll_year) != (
            self.payroll_period_start.month,
            self.payroll_period_start.year,
        ):
            raise ValueError("payroll_month and payroll_year must match payroll_period_start")
        return self


class PayrollCalculationResult(BaseModel):
    """Result of one payroll calculation; always structurally valid"""

    employee_id: int
    employee_name: str
    payroll_period_start: date
    payroll_period_end: date
    payroll_month: int
    payroll_year: int

    basic_salary: Decimal = Decimal("0.00")
    total_allowances: Decimal = Decimal("0.00")
    overtime_hours: Decimal = Decimal("0.00")
    overtime_amount: Decimal = Decimal("0.00")
    gross_salary: Decimal = Decimal("0.00")
    total_deductions: Decimal = Decimal("0.00")
    net_salary: Decimal = Decimal("0.00")
    currency: str = "USD"
    exchange_rate: Decimal = Decimal("1.0")

    working_days: int = 0
    actual_working_days: int = 0
    absent_days: int = 0
    leave_days: int = 0

    allowance_breakdown: Dict[str, Decimal] = Field(default_factory=dict)
    deduction_breakdown: Dict[str, Decimal] = Field(default_factory=dict)
    custom_calculations: Dict[str, Decimal] = Field(default_factory=dict)

    warnings: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


class PayrollRecordResponse(BaseModel):
    id: int
    employee_id: int
    branch_id: int
    payroll_period_start: date
    payroll_period_end: date
    payroll_month: int
    payroll_year: int
    basic_salary: Decimal
    total_allowances: Decimal
    overtime_amount: Decimal
    gross_salary: Decimal
    total_deductions: Decimal
    net_salary: Decimal
    currency: str
    exchange_rate: Decimal
    allowance_breakdown: Optional[Dict[str, Decimal]] = None
    deduction_breakdown: Optional[Dict[str, Decimal]] = None
    custom_calculations: Optional[Dict[str, Decimal]] = None
    status: PayrollRecordStatus
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BranchPayrollRequest(BaseModel):
    branch_id: int = Field(..., gt=0)
    payroll_year: int = Field(..., ge=1900, le=9999)
    payroll_month: int = Field(..., ge=1, le=12)


class BranchPayrollResponse(BaseModel):
    branch_id: int
    payroll_year: int
    payroll_month: int
    total_employees: int
    successful: int
    failed: int
    results: List[PayrollCalculationResult]
