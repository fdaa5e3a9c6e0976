"""Payroll schemas module."""

from .error_schemas import ErrorDetail, ErrorResponse, PayrollErrorCodes
from .formula_schemas import (
    CreatePayrollFormulaDto,
    PayrollFormulaUpdate,
    PayrollFormulaResponse,
    FormulaValidationRequest,
    FormulaValidationResult,
    FormulaEvaluationRequest,
    FormulaEvaluationResponse,
)
from .payroll_schemas import (
    PayrollCalculationRequest,
    PayrollCalculationResult,
    PayrollRecordResponse,
    BranchPayrollRequest,
    BranchPayrollResponse,
)
from .correction_schemas import (
    PayrollErrorCorrectionRequest,
    PayrollCorrectionChange,
    PayrollErrorCorrectionResult,
    CorrectionDecisionRequest,
    CorrectionRejectRequest,
)
from .payslip_schemas import (
    CreatePayslipGenerationRequest,
    PayslipApprovalInfo,
    PayslipApprovalRequest,
    PayslipRejectRequest,
    PayslipActionRequest,
    RegeneratePayslipRequest,
    BulkReleaseRequest,
    BulkReleaseItemResult,
    BulkReleaseReport,
    PayslipGenerationResponse,
    PayslipApprovalSummary,
)

__all__ = [
    'ErrorDetail',
    'ErrorResponse',
    'PayrollErrorCodes',
    'CreatePayrollFormulaDto',
    'PayrollFormulaUpdate',
    'PayrollFormulaResponse',
    'FormulaValidationRequest',
    'FormulaValidationResult',
    'FormulaEvaluationRequest',
    'FormulaEvaluationResponse',
    'PayrollCalculationRequest',
    'PayrollCalculationResult',
    'PayrollRecordResponse',
    'BranchPayrollRequest',
    'BranchPayrollResponse',
    'PayrollErrorCorrectionRequest',
    'PayrollCorrectionChange',
    'PayrollErrorCorrectionResult',
    'CorrectionDecisionRequest',
    'CorrectionRejectRequest',
    'CreatePayslipGenerationRequest',
    'PayslipApprovalInfo',
    'PayslipApprovalRequest',
    'PayslipRejectRequest',
    'PayslipActionRequest',
    'RegeneratePayslipRequest',
    'BulkReleaseRequest',
    'BulkReleaseItemResult',
    'BulkReleaseReport',
    'PayslipGenerationResponse',
    'PayslipApprovalSummary',
]
