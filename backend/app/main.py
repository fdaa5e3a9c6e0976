# backend/app/main.py

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import settings, validate_production_config
from core.logging_config import configure_logging
from modules.payroll import payroll_router
from modules.payroll.exceptions import register_payroll_exception_handlers


def create_app() -> FastAPI:
    """Build the payroll API application."""
    configure_logging()
    if settings.is_production:
        validate_production_config()

    app = FastAPI(
        title="StrideHR Payroll API",
        description="""
    ## StrideHR payroll core

    * **Formulas** - Register and validate allowance, deduction and custom formulas
    * **Calculation** - Per-employee payroll calculation with currency conversion
    * **Corrections** - Reviewed corrections with before/after change diffs
    * **Payslips** - Template rendering, HR and finance approval, release with notification
    """,
        version="1.0.0",
    )

    # Register exception handlers for consistent error responses
    register_payroll_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(payroll_router)

    @app.get("/", tags=["health"])
    def read_root():
        return {"status": "ok", "service": "stridehr-payroll"}

    return app


app = create_app()
