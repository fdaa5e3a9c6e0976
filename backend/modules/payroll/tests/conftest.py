# backend/modules/payroll/tests/conftest.py

"""
Pytest fixtures and factories for payroll module tests.

Every test gets a fresh SQLite database file with the payroll tables.
"""

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from core.database import Base, enable_sqlite_savepoints
from modules.payroll.enums import (
    AttendanceStatus,
    EmployeeStatus,
    PayrollFormulaType,
    PayrollRecordStatus,
)
from modules.payroll.models import (
    AttendanceRecord,
    Branch,
    Employee,
    Organization,
    PayrollFormula,
    PayrollRecord,
    PayslipTemplate,
)
from modules.payroll.services.currency_service import CurrencyService
from modules.payroll.services.formula_engine import FormulaEngine
from modules.payroll.services.payroll_calculation_service import PayrollCalculationService
from modules.payroll.services.payslip_renderer import DEFAULT_PAYSLIP_TEMPLATE


# Database fixtures
@pytest.fixture
def db_engine(tmp_path):
    """SQLite engine with the payroll schema.

    File backed so calculation worker threads get connections of their own.
    """
    engine = create_engine(
        f"sqlite:///{tmp_path / 'payroll.db'}",
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


class SteppingClock:
    """Deterministic clock; every call advances by ``step``."""

    def __init__(self, start: datetime = datetime(2024, 3, 1, 9, 0), step=timedelta(minutes=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        now = self.current
        self.current = self.current + self.step
        return now


@pytest.fixture
def clock():
    return SteppingClock()


# Organization factories
@pytest.fixture
def organization_factory(db_session):
    def create_organization(
        name: str = "Stride Labs",
        currency: str = "USD",
        overtime_rate: Optional[Decimal] = None,
    ) -> Organization:
        organization = Organization(name=name, currency=currency, overtime_rate=overtime_rate)
        db_session.add(organization)
        db_session.commit()
        return organization

    return create_organization


@pytest.fixture
def branch_factory(db_session):
    def create_branch(organization: Organization, name: str = "Head Office", currency: str = "USD"):
        branch = Branch(
            organization_id=organization.id,
            name=name,
            currency=currency,
            country="US",
        )
        db_session.add(branch)
        db_session.commit()
        return branch

    return create_branch


@pytest.fixture
def employee_factory(db_session):
    counter = {"n": 0}

    def create_employee(
        branch: Branch,
        basic_salary: Decimal = Decimal("5000.00"),
        department: Optional[str] = "Engineering",
        designation: Optional[str] = "Developer",
        status: EmployeeStatus = EmployeeStatus.ACTIVE,
        first_name: str = "Ada",
        last_name: str = "Lovelace",
    ) -> Employee:
        counter["n"] += 1
        employee = Employee(
            employee_code=f"EMP{counter['n']:04d}",
            branch_id=branch.id,
            first_name=first_name,
            last_name=last_name,
            email=f"employee{counter['n']}@example.com",
            department=department,
            designation=designation,
            basic_salary=basic_salary,
            status=status,
        )
        db_session.add(employee)
        db_session.commit()
        return employee

    return create_employee


@pytest.fixture
def attendance_factory(db_session):
    def create_attendance(
        employee: Employee,
        day: date,
        status: AttendanceStatus = AttendanceStatus.PRESENT,
        overtime_hours: Decimal = Decimal("0"),
    ) -> AttendanceRecord:
        record = AttendanceRecord(
            employee_id=employee.id,
            date=day,
            status=status,
            overtime_hours=overtime_hours,
        )
        db_session.add(record)
        db_session.commit()
        return record

    return create_attendance


@pytest.fixture
def formula_factory(db_session):
    def create_formula(
        name: str,
        formula: str,
        type: PayrollFormulaType = PayrollFormulaType.ALLOWANCE,
        priority: int = 100,
        conditions: Optional[str] = None,
        variables=None,
        **scope,
    ) -> PayrollFormula:
        row = PayrollFormula(
            name=name,
            type=type,
            formula=formula,
            variables=list(variables or []),
            priority=priority,
            conditions=conditions,
            is_active=scope.pop("is_active", True),
            is_deleted=False,
            **scope,
        )
        db_session.add(row)
        db_session.commit()
        return row

    return create_formula


@pytest.fixture
def payroll_record_factory(db_session):
    def create_record(
        employee: Employee,
        year: int = 2024,
        month: int = 3,
        basic_salary: Decimal = Decimal("5000.00"),
        total_allowances: Decimal = Decimal("0.00"),
        total_deductions: Decimal = Decimal("0.00"),
        currency: str = "USD",
    ) -> PayrollRecord:
        gross = basic_salary + total_allowances
        record = PayrollRecord(
            employee_id=employee.id,
            branch_id=employee.branch_id,
            payroll_period_start=date(year, month, 1),
            payroll_period_end=date(year, month, 28),
            payroll_month=month,
            payroll_year=year,
            basic_salary=basic_salary,
            total_allowances=total_allowances,
            overtime_hours=Decimal("0"),
            overtime_amount=Decimal("0"),
            gross_salary=gross,
            total_deductions=total_deductions,
            net_salary=gross - total_deductions,
            currency=currency,
            exchange_rate=Decimal("1"),
            working_days=20,
            actual_working_days=20,
            absent_days=0,
            leave_days=0,
            allowance_breakdown={},
            deduction_breakdown={},
            custom_calculations={},
            status=PayrollRecordStatus.CALCULATED,
        )
        db_session.add(record)
        db_session.commit()
        return record

    return create_record


@pytest.fixture
def payslip_template_factory(db_session):
    def create_template(
        organization: Organization,
        body: str = DEFAULT_PAYSLIP_TEMPLATE,
        is_active: bool = True,
    ) -> PayslipTemplate:
        template = PayslipTemplate(
            name="Standard",
            organization_id=organization.id,
            body=body,
            is_default=True,
            is_active=is_active,
        )
        db_session.add(template)
        db_session.commit()
        return template

    return create_template


# Common graph
@pytest.fixture
def organization(organization_factory):
    return organization_factory()


@pytest.fixture
def branch(branch_factory, organization):
    return branch_factory(organization)


@pytest.fixture
def employee(employee_factory, branch):
    return employee_factory(branch)


@pytest.fixture
def calculation_service(db_session):
    return PayrollCalculationService(
        db_session,
        currency_service=CurrencyService(),
        engine=FormulaEngine(hours_per_day=8, days_per_month=30),
        timeout_seconds=5,
        custom_values_override=True,
        base_currency="USD",
    )
