# backend/modules/payroll/routes/payroll_routes.py

"""
Main payroll routes combining all payroll module endpoints.

This router aggregates:
- Payroll calculation and stored records
- Formula management
- Error corrections
- Payslip generation and approval
"""

from fastapi import APIRouter
from datetime import datetime
from .calculation_routes import router as calculation_router
from .formula_routes import router as formula_router
from .correction_routes import router as correction_router
from .payslip_routes import router as payslip_router

# Create main payroll router
router = APIRouter(prefix="/api/v1/payroll", tags=["Payroll"])

# Include sub-routers
router.include_router(calculation_router, tags=["Payroll Calculation"])
router.include_router(formula_router, prefix="/formulas", tags=["Payroll Formulas"])
router.include_router(
    correction_router, prefix="/corrections", tags=["Payroll Corrections"]
)
router.include_router(payslip_router, prefix="/payslips", tags=["Payslips"])


@router.get("/health")
async def payroll_health_check():
    """
    Health check endpoint for payroll module.

    Returns:
        dict: Health status of payroll module
    """
    return {
        "status": "healthy",
        "module": "payroll",
        "timestamp": datetime.utcnow().isoformat(),
    }
