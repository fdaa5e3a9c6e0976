"""Payroll services module."""

from .formula_engine import FormulaEngine
from .formula_service import PayrollFormulaService
from .payroll_calculation_service import PayrollCalculationService
from .correction_service import PayrollErrorCorrectionService
from .payslip_service import PayslipService

__all__ = [
    'FormulaEngine',
    'PayrollFormulaService',
    'PayrollCalculationService',
    'PayrollErrorCorrectionService',
    'PayslipService',
]
