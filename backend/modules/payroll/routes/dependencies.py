# backend/modules/payroll/routes/dependencies.py

"""
Service factories for payroll routes.

Tests override these with ``app.dependency_overrides`` to inject fakes.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from core.database import get_db
from ..services.correction_service import PayrollErrorCorrectionService
from ..services.formula_engine import FormulaEngine
from ..services.formula_service import PayrollFormulaService
from ..services.payroll_calculation_service import PayrollCalculationService
from ..services.payslip_notifier import PayslipNotifier
from ..services.payslip_renderer import PayslipRenderer
from ..services.payslip_service import PayslipService


def get_formula_engine() -> FormulaEngine:
    return FormulaEngine()


def get_formula_service(db: Session = Depends(get_db)) -> PayrollFormulaService:
    return PayrollFormulaService(db)


def get_calculation_service(db: Session = Depends(get_db)) -> PayrollCalculationService:
    return PayrollCalculationService(db)


def get_correction_service(
    db: Session = Depends(get_db),
    calculation_service: PayrollCalculationService = Depends(get_calculation_service),
) -> PayrollErrorCorrectionService:
    return PayrollErrorCorrectionService(db, calculation_service)


def get_payslip_renderer() -> PayslipRenderer:
    return PayslipRenderer()


def get_payslip_notifier() -> PayslipNotifier:
    return PayslipNotifier()


def get_payslip_service(
    db: Session = Depends(get_db),
    renderer: PayslipRenderer = Depends(get_payslip_renderer),
    notifier: PayslipNotifier = Depends(get_payslip_notifier),
) -> PayslipService:
    return PayslipService(db, renderer=renderer, notifier=notifier)
