# backend/modules/payroll/routes/calculation_routes.py

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from ..schemas.payroll_schemas import (
    BranchPayrollRequest,
    BranchPayrollResponse,
    PayrollCalculationRequest,
    PayrollCalculationResult,
    PayrollRecordResponse,
)
from ..services.payroll_calculation_service import PayrollCalculationService
from .dependencies import get_calculation_service

router = APIRouter()


@router.post("/calculate", response_model=PayrollCalculationResult)
async def calculate_payroll(
    request: PayrollCalculationRequest,
    service: PayrollCalculationService = Depends(get_calculation_service),
):
    """
    Calculate payroll for one employee and period without storing it.

    Formula failures are reported in ``errors``; the remaining formulas
    still contribute to the result.

    ## Error Responses
    - **404**: Employee, branch or organization not found
    - **422**: Invalid period or attendance figures
    - **504**: Calculation timed out (retryable)
    """
    return await service.calculate_payroll(request)


@router.post(
    "/records",
    response_model=PayrollRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_payroll_record(
    request: PayrollCalculationRequest,
    created_by: Optional[int] = Query(None),
    service: PayrollCalculationService = Depends(get_calculation_service),
):
    """Calculate and store the payroll record for the request's month."""
    return await service.create_payroll_record(request, created_by=created_by)


@router.post("/branch-run", response_model=BranchPayrollResponse)
async def process_branch_payroll(
    request: BranchPayrollRequest,
    service: PayrollCalculationService = Depends(get_calculation_service),
):
    results = await service.process_branch_payroll(
        request.branch_id, request.payroll_year, request.payroll_month
    )
    failed = sum(1 for result in results if result.has_errors)
    return BranchPayrollResponse(
        branch_id=request.branch_id,
        payroll_year=request.payroll_year,
        payroll_month=request.payroll_month,
        total_employees=len(results),
        successful=len(results) - failed,
        failed=failed,
        results=results,
    )
