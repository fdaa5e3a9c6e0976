# backend/modules/payroll/routes/__init__.py

"""
Payroll Module Routes Package

This package contains API routes for:
- Payroll calculation
- Formula management
- Error corrections
- Payslip generation, approval and release
"""

from .payroll_routes import router as payroll_router
from .calculation_routes import router as calculation_router
from .formula_routes import router as formula_router
from .correction_routes import router as correction_router
from .payslip_routes import router as payslip_router

__all__ = [
    "payroll_router",
    "calculation_router",
    "formula_router",
    "correction_router",
    "payslip_router",
]
