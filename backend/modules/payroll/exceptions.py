# backend/modules/payroll/exceptions.py

"""
Custom exceptions for payroll module.
"""

import logging
from typing import Optional, List, Any

from fastapi import Request
from fastapi.responses import JSONResponse

from .schemas.error_schemas import ErrorDetail, ErrorResponse, PayrollErrorCodes

logger = logging.getLogger(__name__)


class PayrollException(Exception):
    """Base exception for payroll module"""
    retryable = False

    def __init__(
        self,
        message: str,
        code: str = PayrollErrorCodes.DATABASE_ERROR,
        details: Optional[List[ErrorDetail]] = None,
        status_code: int = 400
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or []
        self.status_code = status_code

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=type(self).__name__,
            message=self.message,
            code=self.code,
            details=self.details or None,
            retryable=self.retryable,
        )


class PayrollValidationError(PayrollException):
    """Malformed request; raised before any computation"""
    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[List[ErrorDetail]] = None,
        code: str = PayrollErrorCodes.VALIDATION_ERROR,
    ):
        if field and not details:
            details = [ErrorDetail(field=field, message=message)]
        super().__init__(
            message=message,
            code=code,
            details=details,
            status_code=422
        )
        self.field = field


class PayrollNotFoundError(PayrollException):
    """Resource not found error"""
    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} with identifier {identifier} not found",
            code=PayrollErrorCodes.RECORD_NOT_FOUND,
            status_code=404
        )
        self.resource = resource
        self.identifier = identifier


class FormulaEvaluationError(PayrollException):
    """
    A single formula could not be evaluated.

    Never escapes a payroll calculation; the engine records it in the
    result's error list and carries on with the remaining formulas.
    """
    def __init__(
        self,
        message: str,
        formula_name: Optional[str] = None,
        code: str = PayrollErrorCodes.FORMULA_EVALUATION_FAILED,
    ):
        details = []
        if formula_name:
            details.append(ErrorDetail(field=formula_name, message=message, code=code))
        super().__init__(
            message=message,
            code=code,
            details=details,
            status_code=422
        )
        self.formula_name = formula_name


class FormulaSyntaxError(FormulaEvaluationError):
    """Expression text could not be parsed"""
    def __init__(self, message: str, formula_name: Optional[str] = None):
        super().__init__(
            message=message,
            formula_name=formula_name,
            code=PayrollErrorCodes.FORMULA_SYNTAX_ERROR,
        )


class UnknownVariableError(FormulaEvaluationError):
    def __init__(self, variable: str, formula_name: Optional[str] = None):
        super().__init__(
            message=f"Unknown variable '{variable}'",
            formula_name=formula_name,
            code=PayrollErrorCodes.FORMULA_UNKNOWN_VARIABLE,
        )
        self.variable = variable


class FormulaDivisionByZeroError(FormulaEvaluationError):
    def __init__(self, formula_name: Optional[str] = None):
        super().__init__(
            message="Division by zero",
            formula_name=formula_name,
            code=PayrollErrorCodes.FORMULA_DIVISION_BY_ZERO,
        )


class InvalidStateTransitionError(PayrollException):
    """Workflow action attempted from an incompatible state"""
    def __init__(self, entity: str, identifier: Any, current_state: Any, action: str):
        state_value = getattr(current_state, "value", current_state)
        super().__init__(
            message=f"Cannot {action} {entity} {identifier} while it is {state_value}",
            code=PayrollErrorCodes.INVALID_STATE_TRANSITION,
            details=[
                ErrorDetail(field="status", message=str(state_value), code="CURRENT_STATE"),
                ErrorDetail(field="action", message=action, code="ATTEMPTED_ACTION"),
            ],
            status_code=409
        )
        self.entity = entity
        self.identifier = identifier
        self.current_state = current_state
        self.action = action


class ConcurrencyConflictError(PayrollException):
    """Stale workflow write; caller should reload and retry"""
    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} {identifier} was modified by another operation",
            code=PayrollErrorCodes.CONCURRENCY_CONFLICT,
            status_code=409
        )
        self.resource = resource
        self.identifier = identifier


class DuplicateRecordError(PayrollException):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            code=PayrollErrorCodes.DUPLICATE_RECORD,
            status_code=409
        )


class ExternalServiceError(PayrollException):
    """Failure in a collaborating service (currency, notification, render)"""
    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        code: str = PayrollErrorCodes.EXTERNAL_SERVICE_ERROR,
    ):
        if service:
            message = f"{service}: {message}"
        super().__init__(
            message=message,
            code=code,
            status_code=502
        )
        self.service = service


class CurrencyConversionError(ExternalServiceError):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            service="currency",
            code=PayrollErrorCodes.CURRENCY_CONVERSION_FAILED,
        )


class NotificationDeliveryError(ExternalServiceError):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            service="notification",
            code=PayrollErrorCodes.NOTIFICATION_FAILED,
        )


class PayslipRenderError(ExternalServiceError):
    def __init__(self, message: str):
        super().__init__(
            message=message,
            service="renderer",
            code=PayrollErrorCodes.RENDER_FAILED,
        )


class PayrollTimeoutError(PayrollException):
    """Calculation exceeded its time budget; safe to retry"""
    retryable = True

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            message=f"{operation} timed out after {timeout_seconds} seconds",
            code=PayrollErrorCodes.CALCULATION_TIMEOUT,
            status_code=504
        )
        self.timeout_seconds = timeout_seconds


async def handle_payroll_exception(request: Request, exc: PayrollException) -> JSONResponse:
    """Render payroll errors as ErrorResponse bodies"""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} at {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__} at {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response().model_dump(mode="json"),
    )


def register_payroll_exception_handlers(app):
    app.add_exception_handler(PayrollException, handle_payroll_exception)
