from .payroll_enums import (
    PayrollFormulaType,
    PayrollRecordStatus,
    AttendanceStatus,
    EmployeeStatus,
    PayrollErrorType,
    PayrollCorrectionStatus,
    PayslipStatus,
    PayslipApprovalLevel,
    PayslipApprovalAction,
)

__all__ = [
    "PayrollFormulaType",
    "PayrollRecordStatus",
    "AttendanceStatus",
    "EmployeeStatus",
    "PayrollErrorType",
    "PayrollCorrectionStatus",
    "PayslipStatus",
    "PayslipApprovalLevel",
    "PayslipApprovalAction",
]
