# backend/modules/payroll/routes/formula_routes.py

"""
Payroll formula endpoints.

Formulas are validated on registration; ``/validate`` and ``/evaluate``
let callers check an expression without storing it.
"""

from decimal import InvalidOperation
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..exceptions import FormulaEvaluationError
from ..schemas.formula_schemas import (
    CreatePayrollFormulaDto,
    FormulaEvaluationRequest,
    FormulaEvaluationResponse,
    FormulaValidationRequest,
    FormulaValidationResult,
    PayrollFormulaResponse,
    PayrollFormulaUpdate,
)
from ..services.formula_engine import FormulaEngine, round_money
from ..services.formula_service import PayrollFormulaService
from .dependencies import get_formula_engine, get_formula_service

router = APIRouter()


@router.post(
    "", response_model=PayrollFormulaResponse, status_code=status.HTTP_201_CREATED
)
async def create_formula(
    dto: CreatePayrollFormulaDto,
    created_by: Optional[int] = Query(None, description="Acting user id"),
    service: PayrollFormulaService = Depends(get_formula_service),
):
    """
    Register a payroll formula.

    ## Error Responses
    - **422**: Syntax error, undeclared variable or mismatched assignment target
    - **404**: Branch scope does not exist
    """
    return service.create_formula(dto, created_by=created_by)


@router.get("", response_model=List[PayrollFormulaResponse])
async def list_formulas(
    organization_id: Optional[int] = Query(None),
    branch_id: Optional[int] = Query(None),
    include_inactive: bool = Query(False),
    service: PayrollFormulaService = Depends(get_formula_service),
):
    return service.list_formulas(organization_id, branch_id, include_inactive)


@router.post("/validate", response_model=FormulaValidationResult)
async def validate_formula(
    request: FormulaValidationRequest,
    service: PayrollFormulaService = Depends(get_formula_service),
):
    return service.validate_formula(
        request.formula, request.variables, request.conditions, request.name
    )


@router.post("/evaluate", response_model=FormulaEvaluationResponse)
async def evaluate_formula(
    request: FormulaEvaluationRequest,
    engine: FormulaEngine = Depends(get_formula_engine),
):
    """Evaluate a single expression against the supplied bindings."""
    value = engine.evaluate(request.formula, request.bindings)
    try:
        rounded = round_money(value)
    except InvalidOperation:
        raise FormulaEvaluationError("Result is out of range")
    return FormulaEvaluationResponse(
        formula=request.formula, value=value, rounded_value=rounded
    )


@router.get("/{formula_id}", response_model=PayrollFormulaResponse)
async def get_formula(
    formula_id: int,
    service: PayrollFormulaService = Depends(get_formula_service),
):
    return service.get_formula(formula_id)


@router.put("/{formula_id}", response_model=PayrollFormulaResponse)
async def update_formula(
    formula_id: int,
    update: PayrollFormulaUpdate,
    updated_by: Optional[int] = Query(None),
    service: PayrollFormulaService = Depends(get_formula_service),
):
    return service.update_formula(formula_id, update, updated_by=updated_by)


@router.delete("/{formula_id}", response_model=PayrollFormulaResponse)
async def deactivate_formula(
    formula_id: int,
    deactivated_by: Optional[int] = Query(None),
    service: PayrollFormulaService = Depends(get_formula_service),
):
    return service.deactivate_formula(formula_id, deactivated_by=deactivated_by)
