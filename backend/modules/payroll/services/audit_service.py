# backend/modules/payroll/services/audit_service.py

"""
Audit trail writer for payroll workflows.

Entries are added to the caller's session and committed together with the
change they describe, so an audit row never outlives a rolled back
transition.
"""

import logging
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models.payroll_audit import PayrollAuditLog
from ..schemas.audit_schemas import AuditEventType

logger = logging.getLogger(__name__)


def to_audit_value(value: Any) -> Any:
    """JSON-safe representation of a value for old/new snapshots."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_audit_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_audit_value(v) for v in value]
    return value


class PayrollAuditService:
    """Records payroll audit events"""

    def __init__(self, db: Session):
        self.db = db

    def log_event(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: Optional[int],
        action: str,
        user_id: Optional[int] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> PayrollAuditLog:
        entry = PayrollAuditLog(
            event_type=event_type,
            timestamp=timestamp or datetime.utcnow(),
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            action=action,
            old_values=to_audit_value(old_values) if old_values else None,
            new_values=to_audit_value(new_values) if new_values else None,
            audit_metadata=to_audit_value(metadata) if metadata else None,
        )
        self.db.add(entry)

        logger.info(
            f"Audit: {event_type.value} on {entity_type} {entity_id} "
            f"by {user_id if user_id is not None else 'system'}"
        )
        return entry

    def get_entity_history(self, entity_type: str, entity_id: int) -> List[PayrollAuditLog]:
        return (
            self.db.query(PayrollAuditLog)
            .filter(
                PayrollAuditLog.entity_type == entity_type,
                PayrollAuditLog.entity_id == entity_id,
            )
            .order_by(PayrollAuditLog.timestamp, PayrollAuditLog.id)
            .all()
        )
