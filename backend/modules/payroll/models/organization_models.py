# backend/modules/payroll/models/organization_models.py

"""
Organization, branch, employee and attendance rows the payroll module reads.

These tables are owned by the HR core; payroll only queries them.
"""

from sqlalchemy import (
    Column, Integer, String, Numeric, ForeignKey, Date, Enum, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from core.database import Base
from core.mixins import TimestampMixin
from ..enums import AttendanceStatus, EmployeeStatus


class Organization(Base, TimestampMixin):
    __tablename__ = "organizations"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    # Multiplier applied to the hourly rate for overtime; falls back to settings
    overtime_rate = Column(Numeric(5, 2), nullable=True)

    branches = relationship("Branch", back_populates="organization")


class Branch(Base, TimestampMixin):
    __tablename__ = "branches"

    id = Column(Integer, primary_key=True, index=True)
    organization_id = Column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)
    country = Column(String(100), nullable=True)

    organization = relationship("Organization", back_populates="branches")
    employees = relationship("Employee", back_populates="branch")


class Employee(Base, TimestampMixin):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    employee_code = Column(String(50), nullable=False, unique=True)
    branch_id = Column(Integer, ForeignKey("branches.id"), nullable=False, index=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    department = Column(String(100), nullable=True)
    designation = Column(String(100), nullable=True)
    basic_salary = Column(Numeric(12, 2), default=0, nullable=False)
    status = Column(Enum(EmployeeStatus), default=EmployeeStatus.ACTIVE, nullable=False)

    branch = relationship("Branch", back_populates="employees")
    attendance_records = relationship("AttendanceRecord", back_populates="employee")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class AttendanceRecord(Base, TimestampMixin):
    __tablename__ = "attendance_records"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False)
    date = Column(Date, nullable=False)
    status = Column(Enum(AttendanceStatus), nullable=False)
    overtime_hours = Column(Numeric(6, 2), default=0, nullable=False)

    employee = relationship("Employee", back_populates="attendance_records")

    __table_args__ = (
        UniqueConstraint("employee_id", "date", name="uq_attendance_employee_date"),
        Index("ix_attendance_employee_date", "employee_id", "date"),
    )
