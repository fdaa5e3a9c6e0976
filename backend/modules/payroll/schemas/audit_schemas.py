# backend/modules/payroll/schemas/audit_schemas.py

"""
Audit trail schemas for payroll operations.

Every workflow transition in the payroll module writes one audit entry
with the values before and after the change.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Dict, Any
from datetime import datetime
from enum import Enum


class AuditEventType(str, Enum):
    """Types of audit events for payroll operations."""

    # Payroll calculation events
    PAYROLL_RECORD_CREATED = "payroll.record_created"
    PAYROLL_RECORD_CORRECTED = "payroll.record_corrected"

    # Formula events
    FORMULA_CREATED = "formula.created"
    FORMULA_UPDATED = "formula.updated"
    FORMULA_DEACTIVATED = "formula.deactivated"

    # Correction workflow events
    CORRECTION_SUBMITTED = "correction.submitted"
    CORRECTION_REVIEW_STARTED = "correction.review_started"
    CORRECTION_APPROVED = "correction.approved"
    CORRECTION_REJECTED = "correction.rejected"
    CORRECTION_PROCESSED = "correction.processed"
    CORRECTION_CANCELLED = "correction.cancelled"

    # Payslip workflow events
    PAYSLIP_GENERATED = "payslip.generated"
    PAYSLIP_SUBMITTED = "payslip.submitted"
    PAYSLIP_HR_APPROVED = "payslip.hr_approved"
    PAYSLIP_FINANCE_APPROVED = "payslip.finance_approved"
    PAYSLIP_REJECTED = "payslip.rejected"
    PAYSLIP_RELEASED = "payslip.released"
    PAYSLIP_REGENERATED = "payslip.regenerated"


class AuditLogEntry(BaseModel):
    """Individual audit log entry."""

    id: int = Field(..., description="Unique audit log ID")
    timestamp: datetime = Field(..., description="When the event occurred")
    event_type: AuditEventType = Field(..., description="Type of audit event")
    entity_type: str = Field(
        ..., description="Type of entity affected (correction, payslip, etc.)"
    )
    entity_id: Optional[int] = Field(None, description="ID of the affected entity")
    user_id: Optional[int] = Field(None, description="ID of user who performed action")
    action: str = Field(..., description="Human-readable description of action")
    old_values: Optional[Dict[str, Any]] = Field(
        None, description="Previous values (for updates)"
    )
    new_values: Optional[Dict[str, Any]] = Field(
        None, description="New values (for updates)"
    )

    model_config = ConfigDict(from_attributes=True)


class AuditLogResponse(BaseModel):
    """Response for audit log queries."""

    total: int = Field(..., description="Total number of matching logs")
    logs: List[AuditLogEntry] = Field(..., description="List of audit log entries")


__all__ = [
    "AuditEventType",
    "AuditLogEntry",
    "AuditLogResponse",
]
