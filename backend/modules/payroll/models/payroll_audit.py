# backend/modules/payroll/models/payroll_audit.py

"""
Audit trail model for payroll operations.

One row per workflow transition, holding who acted and the values
before and after the change.
"""

from sqlalchemy import (
    Column, Integer, String, DateTime, Text, JSON,
    Index, Enum as SQLEnum
)
from core.database import Base
from core.mixins import TimestampMixin
from ..schemas.audit_schemas import AuditEventType


class PayrollAuditLog(Base, TimestampMixin):
    """Audit log for payroll, correction and payslip transitions."""
    __tablename__ = "payroll_audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # Event information
    event_type = Column(
        SQLEnum(AuditEventType),
        nullable=False,
        index=True
    )
    timestamp = Column(DateTime, nullable=False, index=True)

    # Entity information
    entity_type = Column(String(50), nullable=False, index=True)
    entity_id = Column(Integer, nullable=True, index=True)

    # User information
    user_id = Column(Integer, nullable=True, index=True)

    # Action details
    action = Column(Text, nullable=False)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    audit_metadata = Column(JSON, nullable=True)

    __table_args__ = (
        Index('idx_audit_user_timestamp', 'user_id', 'timestamp'),
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
        Index('idx_audit_event_timestamp', 'event_type', 'timestamp'),
    )
