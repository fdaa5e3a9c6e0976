from enum import Enum


class PayrollFormulaType(str, Enum):
    ALLOWANCE = "allowance"
    DEDUCTION = "deduction"
    TAX = "tax"
    GROSS = "gross"
    NET = "net"
    CUSTOM = "custom"

    @property
    def is_allowance(self) -> bool:
        return self is PayrollFormulaType.ALLOWANCE

    @property
    def is_deduction(self) -> bool:
        return self in (PayrollFormulaType.DEDUCTION, PayrollFormulaType.TAX)


class PayrollRecordStatus(str, Enum):
    DRAFT = "draft"
    CALCULATED = "calculated"
    APPROVED = "approved"
    PROCESSED = "processed"
    PAID = "paid"
    CANCELLED = "cancelled"


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"
    ON_LEAVE = "on_leave"
    HALF_DAY = "half_day"
    HOLIDAY = "holiday"
    WEEKEND = "weekend"


class EmployeeStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TERMINATED = "terminated"


class PayrollErrorType(str, Enum):
    CALCULATION_ERROR = "calculation_error"
    DATA_ENTRY_ERROR = "data_entry_error"
    FORMULA_ERROR = "formula_error"
    ATTENDANCE_ERROR = "attendance_error"
    DEDUCTION_ERROR = "deduction_error"
    ALLOWANCE_ERROR = "allowance_error"
    TAX_CALCULATION_ERROR = "tax_calculation_error"
    CURRENCY_CONVERSION_ERROR = "currency_conversion_error"
    SYSTEM_ERROR = "system_error"


class PayrollCorrectionStatus(str, Enum):
    """Lifecycle of an error-correction request."""
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    PROCESSED = "processed"
    CANCELLED = "cancelled"


class PayslipStatus(str, Enum):
    """Lifecycle of a generated payslip."""
    GENERATED = "generated"
    PENDING_HR_APPROVAL = "pending_hr_approval"
    PENDING_FINANCE_APPROVAL = "pending_finance_approval"
    APPROVED = "approved"
    RELEASED = "released"
    HR_REJECTED = "hr_rejected"
    FINANCE_REJECTED = "finance_rejected"
    SUPERSEDED = "superseded"

    @property
    def is_rejected(self) -> bool:
        return self in (PayslipStatus.HR_REJECTED, PayslipStatus.FINANCE_REJECTED)


class PayslipApprovalLevel(str, Enum):
    HR = "hr"
    FINANCE = "finance"


class PayslipApprovalAction(str, Enum):
    GENERATED = "generated"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    RELEASED = "released"
    REGENERATED = "regenerated"
    NOTIFIED = "notified"
