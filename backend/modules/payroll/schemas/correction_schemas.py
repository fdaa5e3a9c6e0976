# backend/modules/payroll/schemas/correction_schemas.py

"""
Schemas for the payroll error-correction workflow.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal

from ..enums import PayrollErrorType, PayrollCorrectionStatus


class PayrollErrorCorrectionRequest(BaseModel):
    """Error report against a finalized payroll record"""

    payroll_record_id: int = Field(..., gt=0)
    error_type: PayrollErrorType
    error_description: str = Field(..., min_length=1, max_length=2000)
    correction_data: Dict[str, Any] = Field(
        ..., description="Field name to corrected value, e.g. {'basicSalary': 5500}"
    )
    reason: str = Field(..., min_length=1, max_length=1000)
    requires_approval: bool = True
    requested_by: int = Field(..., gt=0)

    @field_validator("correction_data")
    def validate_correction_data(cls, v):
        if not v:
            raise ValueError("correction_data must contain at least one value")
        return v


class PayrollCorrectionChange(BaseModel):
    """One field-level difference between original and corrected payroll"""

    field_name: str
    field_display_name: str
    old_value: Decimal
    new_value: Decimal
    impact_amount: Decimal
    change_reason: Optional[str] = None


class CorrectionDecisionRequest(BaseModel):
    user_id: int = Field(..., gt=0)
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class CorrectionRejectRequest(BaseModel):
    user_id: int = Field(..., gt=0)
    reason: str = Field(..., min_length=1)
    expected_version: Optional[int] = None


class PayrollErrorCorrectionResult(BaseModel):
    id: int
    payroll_record_id: int
    error_type: PayrollErrorType
    error_description: str
    reason: str
    status: PayrollCorrectionStatus
    correction_data: Dict[str, Any]
    original_values: Dict[str, Any]
    corrected_values: Optional[Dict[str, Any]] = None
    changes: List[PayrollCorrectionChange] = Field(default_factory=list)
    requested_by: int
    requested_at: datetime
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    approved_by: Optional[int] = None
    approved_at: Optional[datetime] = None
    approval_notes: Optional[str] = None
    processed_by: Optional[int] = None
    processed_at: Optional[datetime] = None
    processing_notes: Optional[str] = None
    version_id: int

    model_config = ConfigDict(from_attributes=True)

    @field_validator("changes", mode="before")
    def none_changes_to_list(cls, v):
        return v or []
