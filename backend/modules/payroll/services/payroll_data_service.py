# backend/modules/payroll/services/payroll_data_service.py

"""
Data-access facade used by the payroll calculation.

Employee, branch, organization and attendance rows are owned by the HR core;
this service only reads them. Calls block on the session, so the calculation
runs them on a worker thread with a session of its own.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import List

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..enums import AttendanceStatus, EmployeeStatus
from ..exceptions import PayrollNotFoundError
from ..models.organization_models import AttendanceRecord, Branch, Employee, Organization
from ..models.payroll_models import PayrollFormula, PayrollRecord
from .formula_service import PayrollFormulaService

logger = logging.getLogger(__name__)

PRESENT_STATUSES = (AttendanceStatus.PRESENT, AttendanceStatus.HALF_DAY)


@dataclass(frozen=True)
class AttendanceSummary:
    working_days: int
    actual_working_days: int
    absent_days: int
    leave_days: int
    overtime_hours: Decimal


def count_weekdays(start: date, end: date) -> int:
    """Monday-Friday days in the inclusive range."""
    if start > end:
        return 0
    days = (end - start).days + 1
    full_weeks, remainder = divmod(days, 7)
    count = full_weeks * 5
    for offset in range(remainder):
        if (start + timedelta(days=full_weeks * 7 + offset)).weekday() < 5:
            count += 1
    return count


class PayrollDataService:
    """Reads employees, attendance and payroll records for calculations"""

    def __init__(self, db: Session):
        self.db = db
        self.formula_service = PayrollFormulaService(db)

    def get_employee(self, employee_id: int) -> Employee:
        employee = self.db.query(Employee).filter(Employee.id == employee_id).first()
        if not employee:
            raise PayrollNotFoundError("Employee", employee_id)
        return employee

    def get_branch(self, branch_id: int) -> Branch:
        branch = self.db.query(Branch).filter(Branch.id == branch_id).first()
        if not branch:
            raise PayrollNotFoundError("Branch", branch_id)
        return branch

    def get_organization(self, organization_id: int) -> Organization:
        organization = (
            self.db.query(Organization)
            .filter(Organization.id == organization_id)
            .first()
        )
        if not organization:
            raise PayrollNotFoundError("Organization", organization_id)
        return organization

    def get_active_employees(self, branch_id: int) -> List[Employee]:
        return (
            self.db.query(Employee)
            .filter(
                Employee.branch_id == branch_id,
                Employee.status == EmployeeStatus.ACTIVE,
            )
            .order_by(Employee.id)
            .all()
        )

    def get_attendance_summary(
        self, employee_id: int, start: date, end: date
    ) -> AttendanceSummary:
        """
        Attendance counts for the period.

        Working days are the weekdays in the period; only weekday attendance
        rows count towards present/absent/leave days.
        """
        records = (
            self.db.query(AttendanceRecord)
            .filter(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.date >= start,
                AttendanceRecord.date <= end,
            )
            .all()
        )

        actual = absent = leave = 0
        for record in records:
            if record.date.weekday() >= 5:
                continue
            if record.status in PRESENT_STATUSES:
                actual += 1
            elif record.status == AttendanceStatus.ABSENT:
                absent += 1
            elif record.status == AttendanceStatus.ON_LEAVE:
                leave += 1

        overtime = self.get_overtime_hours(employee_id, start, end)
        summary = AttendanceSummary(
            working_days=count_weekdays(start, end),
            actual_working_days=actual,
            absent_days=absent,
            leave_days=leave,
            overtime_hours=overtime,
        )
        logger.debug(f"Attendance for employee {employee_id} {start}..{end}: {summary}")
        return summary

    def get_overtime_hours(self, employee_id: int, start: date, end: date) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(AttendanceRecord.overtime_hours), 0))
            .filter(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.date >= start,
                AttendanceRecord.date <= end,
            )
            .scalar()
        )
        return Decimal(str(total or 0))

    def get_payroll_record(self, payroll_record_id: int) -> PayrollRecord:
        record = (
            self.db.query(PayrollRecord)
            .filter(PayrollRecord.id == payroll_record_id)
            .first()
        )
        if not record:
            raise PayrollNotFoundError("PayrollRecord", payroll_record_id)
        return record

    def get_formulas_for_employee(self, employee: Employee) -> List[PayrollFormula]:
        return self.formula_service.get_formulas_for_employee(employee)
