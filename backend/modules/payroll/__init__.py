# backend/modules/payroll/__init__.py

"""
Payroll Module

Payroll calculation core with:
- Formula registration and evaluation
- Payroll calculation with currency conversion
- Error-correction workflow with audit trail
- Payslip generation, two-stage approval and release
"""

from .routes.payroll_routes import router as payroll_router

__version__ = "1.0.0"
__all__ = ["payroll_router"]
