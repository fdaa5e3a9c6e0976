# backend/modules/payroll/schemas/error_schemas.py

"""
Error response schemas for structured error handling.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime


class ErrorDetail(BaseModel):
    """Detailed error information"""

    field: Optional[str] = None
    message: str
    code: Optional[str] = None


class ErrorResponse(BaseModel):
    """Standardized error response"""

    error: str = Field(..., description="Error type or category")
    message: str = Field(..., description="Human-readable error message")
    code: str = Field(..., description="Machine-readable error code")
    details: Optional[List[ErrorDetail]] = Field(
        None, description="Additional error details"
    )
    retryable: bool = Field(False, description="Whether the caller may retry")
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "error": "InvalidStateTransitionError",
                "message": "Cannot process correction 12 while it is pending",
                "code": "PAYROLL_INVALID_STATE_TRANSITION",
                "details": [
                    {
                        "field": "status",
                        "message": "pending",
                        "code": "CURRENT_STATE",
                    }
                ],
                "retryable": False,
                "timestamp": "2025-01-30T12:00:00Z",
            }
        }
    )


class PayrollErrorCodes:
    """Centralized error codes for payroll module"""

    # Validation errors
    VALIDATION_ERROR = "PAYROLL_VALIDATION_ERROR"
    INVALID_AMOUNT = "PAYROLL_INVALID_AMOUNT"
    INVALID_DATE_RANGE = "PAYROLL_INVALID_DATE_RANGE"
    INVALID_ATTENDANCE = "PAYROLL_INVALID_ATTENDANCE"
    INVALID_CORRECTION_DATA = "PAYROLL_INVALID_CORRECTION_DATA"

    # Formula errors
    FORMULA_EVALUATION_FAILED = "PAYROLL_FORMULA_EVALUATION_FAILED"
    FORMULA_SYNTAX_ERROR = "PAYROLL_FORMULA_SYNTAX_ERROR"
    FORMULA_UNKNOWN_VARIABLE = "PAYROLL_FORMULA_UNKNOWN_VARIABLE"
    FORMULA_DIVISION_BY_ZERO = "PAYROLL_FORMULA_DIVISION_BY_ZERO"

    # Business logic errors
    DUPLICATE_RECORD = "PAYROLL_DUPLICATE_RECORD"
    INVALID_STATE_TRANSITION = "PAYROLL_INVALID_STATE_TRANSITION"

    # Lookup errors
    RECORD_NOT_FOUND = "PAYROLL_RECORD_NOT_FOUND"

    # Concurrency errors
    CONCURRENCY_CONFLICT = "PAYROLL_CONCURRENCY_CONFLICT"

    # External service errors
    EXTERNAL_SERVICE_ERROR = "PAYROLL_EXTERNAL_SERVICE_ERROR"
    CURRENCY_CONVERSION_FAILED = "PAYROLL_CURRENCY_CONVERSION_FAILED"
    NOTIFICATION_FAILED = "PAYROLL_NOTIFICATION_FAILED"
    RENDER_FAILED = "PAYROLL_RENDER_FAILED"

    # Timeouts
    CALCULATION_TIMEOUT = "PAYROLL_CALCULATION_TIMEOUT"

    # Generic errors
    DATABASE_ERROR = "PAYROLL_DATABASE_ERROR"
