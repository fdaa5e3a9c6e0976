from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer
from sqlalchemy.orm import declared_attr
from sqlalchemy.sql import func


class TimestampMixin:
    created_at = Column(DateTime, default=func.now(), nullable=False)
    updated_at = Column(DateTime, default=func.now(),
                        onupdate=func.now(), nullable=False)


class SoftDeleteMixin:
    """Rows are flagged instead of removed; queries filter with `not_deleted`."""
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime, nullable=True)

    def mark_deleted(self, when: datetime = None):
        self.is_deleted = True
        self.deleted_at = when or datetime.utcnow()


class OptimisticLockMixin:
    """
    Row-version column for optimistic concurrency.

    SQLAlchemy bumps ``version_id`` on every UPDATE and raises
    ``StaleDataError`` when the row was changed underneath the session.
    """
    version_id = Column(Integer, nullable=False)

    @declared_attr
    def __mapper_args__(cls):
        return {"version_id_col": cls.version_id}


def stamp_audit_fields(obj, when: datetime = None):
    """Set created_at/updated_at explicitly right before a flush."""
    when = when or datetime.utcnow()
    if hasattr(obj, "created_at") and getattr(obj, "created_at", None) is None:
        obj.created_at = when
    if hasattr(obj, "updated_at"):
        obj.updated_at = when
    return obj


def not_deleted(model):
    """Soft-delete predicate for query builders."""
    return model.is_deleted.is_(False)
