# backend/modules/payroll/services/evaluation_context.py

"""
Per-employee evaluation context for payroll formulas.

A context is built fresh for every calculation and discarded afterwards.
It holds the salary and attendance figures for the period plus any
caller-supplied variables, and exposes them to the formula engine as a
case-insensitive name -> Decimal mapping.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..exceptions import PayrollValidationError
from ..schemas.error_schemas import PayrollErrorCodes

# Largest magnitude a stored Numeric(12, 2) amount can hold
MAX_AMOUNT = Decimal("9999999999.99")

# Built-in variable names and their descriptions, in binding order
BUILTIN_VARIABLES = {
    "basicSalary": "Monthly basic salary",
    "overtimeHours": "Overtime hours worked in the period",
    "overtimeAmount": "Overtime pay for the period",
    "workingDays": "Weekdays in the payroll period",
    "actualWorkingDays": "Days the employee was present",
    "absentDays": "Days the employee was absent",
    "leaveDays": "Days the employee was on leave",
    "daysInMonth": "Calendar days in the payroll month",
    "payrollMonth": "Payroll month (1-12)",
    "payrollYear": "Payroll year",
}

# Running totals the engine refreshes after every formula
AGGREGATE_VARIABLES = {
    "totalAllowances": "Sum of allowance results so far",
    "totalDeductions": "Sum of deduction and tax results so far",
    "grossSalary": "basicSalary + totalAllowances + overtimeAmount",
    "netSalary": "grossSalary - totalDeductions",
}


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


@dataclass(frozen=True)
class FormulaVariable:
    """One named value available to formulas"""

    name: str
    value: Decimal
    data_type: str = "decimal"
    description: Optional[str] = None


@dataclass
class FormulaEvaluationContext:
    payroll_period_start: date
    payroll_period_end: date
    basic_salary: Decimal
    employee: Any = None
    branch: Any = None
    organization: Any = None
    overtime_hours: Decimal = Decimal("0")
    overtime_amount: Decimal = Decimal("0")
    working_days: int = 0
    actual_working_days: int = 0
    absent_days: int = 0
    leave_days: int = 0
    payroll_month: Optional[int] = None
    payroll_year: Optional[int] = None
    variables: Dict[str, Decimal] = field(default_factory=dict)
    custom_values: Dict[str, Decimal] = field(default_factory=dict)
    custom_values_override: bool = True

    def __post_init__(self):
        self.basic_salary = _to_decimal(self.basic_salary)
        self.overtime_hours = _to_decimal(self.overtime_hours)
        self.overtime_amount = _to_decimal(self.overtime_amount)
        if self.payroll_month is None:
            self.payroll_month = self.payroll_period_start.month
        if self.payroll_year is None:
            self.payroll_year = self.payroll_period_start.year

    # Scope attributes used for formula selection

    @property
    def organization_id(self) -> Optional[int]:
        if self.organization is not None:
            return self.organization.id
        if self.branch is not None:
            return self.branch.organization_id
        return None

    @property
    def branch_id(self) -> Optional[int]:
        if self.branch is not None:
            return self.branch.id
        if self.employee is not None:
            return self.employee.branch_id
        return None

    @property
    def department(self) -> Optional[str]:
        return getattr(self.employee, "department", None)

    @property
    def designation(self) -> Optional[str]:
        return getattr(self.employee, "designation", None)

    @property
    def days_in_month(self) -> int:
        return calendar.monthrange(self.payroll_year, self.payroll_month)[1]

    def validate(self):
        """Raise PayrollValidationError if the context is inconsistent."""
        if self.payroll_period_start > self.payroll_period_end:
            raise PayrollValidationError(
                "Payroll period start must not be after period end",
                field="payroll_period_start",
                code=PayrollErrorCodes.INVALID_DATE_RANGE,
            )
        for name in ("basic_salary", "overtime_hours", "overtime_amount"):
            value = getattr(self, name)
            if not value.is_finite() or abs(value) > MAX_AMOUNT:
                raise PayrollValidationError(
                    f"{name} is out of range",
                    field=name,
                    code=PayrollErrorCodes.INVALID_AMOUNT,
                )
            if value < 0:
                raise PayrollValidationError(
                    f"{name} must not be negative",
                    field=name,
                    code=PayrollErrorCodes.INVALID_AMOUNT,
                )
        for name in ("working_days", "actual_working_days", "absent_days", "leave_days"):
            if getattr(self, name) < 0:
                raise PayrollValidationError(
                    f"{name} must not be negative",
                    field=name,
                    code=PayrollErrorCodes.INVALID_ATTENDANCE,
                )

        accounted = self.actual_working_days + self.absent_days + self.leave_days
        if accounted > self.working_days:
            raise PayrollValidationError(
                f"Attendance days ({accounted}) exceed working days ({self.working_days})",
                field="working_days",
                code=PayrollErrorCodes.INVALID_ATTENDANCE,
            )

    def _builtin_values(self) -> Dict[str, Decimal]:
        return {
            "basicSalary": self.basic_salary,
            "overtimeHours": self.overtime_hours,
            "overtimeAmount": self.overtime_amount,
            "workingDays": Decimal(self.working_days),
            "actualWorkingDays": Decimal(self.actual_working_days),
            "absentDays": Decimal(self.absent_days),
            "leaveDays": Decimal(self.leave_days),
            "daysInMonth": Decimal(self.days_in_month),
            "payrollMonth": Decimal(self.payroll_month),
            "payrollYear": Decimal(self.payroll_year),
        }

    def available_variables(self) -> List[FormulaVariable]:
        """
        Every variable a formula can reference, one entry per name.

        Built-ins come first, then ``variables``, then ``custom_values``.
        When a name repeats (case-insensitively) the later source replaces the
        earlier one, except that custom values only fill gaps when
        ``custom_values_override`` is off.
        """
        resolved: Dict[str, FormulaVariable] = {}

        for name, value in self._builtin_values().items():
            resolved[name.lower()] = FormulaVariable(
                name=name, value=value, description=BUILTIN_VARIABLES[name]
            )

        for name, value in self.variables.items():
            resolved[name.lower()] = FormulaVariable(
                name=name, value=_to_decimal(value), description="Context variable"
            )

        for name, value in self.custom_values.items():
            key = name.lower()
            if key in resolved and not self.custom_values_override:
                continue
            resolved[key] = FormulaVariable(
                name=name,
                value=_to_decimal(value),
                data_type="custom",
                description="Custom value",
            )

        return list(resolved.values())

    def bindings(self) -> Dict[str, Decimal]:
        """Lower-cased name -> value mapping for the formula engine."""
        return {var.name.lower(): var.value for var in self.available_variables()}
