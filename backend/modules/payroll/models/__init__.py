from .organization_models import (
    Organization,
    Branch,
    Employee,
    AttendanceRecord,
)
from .payroll_models import (
    PayrollFormula,
    PayrollRecord,
)
from .correction_models import PayrollErrorCorrection
from .payslip_models import (
    PayslipTemplate,
    PayslipGeneration,
    PayslipApprovalHistory,
)
from .payroll_audit import PayrollAuditLog

__all__ = [
    "Organization",
    "Branch",
    "Employee",
    "AttendanceRecord",
    "PayrollFormula",
    "PayrollRecord",
    "PayrollErrorCorrection",
    "PayslipTemplate",
    "PayslipGeneration",
    "PayslipApprovalHistory",
    "PayrollAuditLog",
]
