# backend/modules/payroll/routes/correction_routes.py

"""
Payroll error-correction endpoints.

Transition requests may carry ``expected_version``; a mismatch with the
stored row version is answered with 409.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..schemas.correction_schemas import (
    CorrectionDecisionRequest,
    CorrectionRejectRequest,
    PayrollErrorCorrectionRequest,
    PayrollErrorCorrectionResult,
)
from ..services.correction_service import PayrollErrorCorrectionService
from .dependencies import get_correction_service

router = APIRouter()


@router.post(
    "",
    response_model=PayrollErrorCorrectionResult,
    status_code=status.HTTP_201_CREATED,
)
async def submit_correction(
    request: PayrollErrorCorrectionRequest,
    service: PayrollErrorCorrectionService = Depends(get_correction_service),
):
    """
    Submit a correction for a payroll record.

    The response includes a preview of the field changes the correction
    would make once processed.
    """
    return await service.submit_correction(request)


@router.get("/pending", response_model=List[PayrollErrorCorrectionResult])
async def list_pending_corrections(
    branch_id: Optional[int] = Query(None),
    service: PayrollErrorCorrectionService = Depends(get_correction_service),
):
    return service.list_pending(branch_id)


@router.get("/record/{payroll_record_id}", response_model=List[PayrollErrorCorrectionResult])
async def list_record_corrections(
    payroll_record_id: int,
    service: PayrollErrorCorrectionService = Depends(get_correction_service),
):
    return service.list_for_record(payroll_record_id)


@router.get("/{correction_id}", response_model=PayrollErrorCorrectionResult)
async def get_correction(
    correction_id: int,
    service: PayrollErrorCorrectionService = Depends(get_correction_service),
):
    return service.get_correction(correction_id)


@router.post("/{correction_id}/review", response_model=PayrollErrorCorrectionResult)
async def start_review(
    correction_id: int,
    request: CorrectionDecisionRequest,
    service: PayrollErrorCorrectionService = Depends(get_correction_service),
):
    return service.start_review(correction_id, request.user_id, request.expected_version)


@router.post("/{correction_id}/approve", response_model=PayrollErrorCorrectionResult)
async def approve_correction(
    correction_id: int,
    request: CorrectionDecisionRequest,
    service: PayrollErrorCorrectionService = Depends(get_correction_service),
):
    return service.approve(
        correction_id, request.user_id, request.notes, request.expected_version
    )


@router.post("/{correction_id}/reject", response_model=PayrollErrorCorrectionResult)
async def reject_correction(
    correction_id: int,
    request: CorrectionRejectRequest,
    service: PayrollErrorCorrectionService = Depends(get_correction_service),
):
    return service.reject(
        correction_id, request.user_id, request.reason, request.expected_version
    )


@router.post("/{correction_id}/process", response_model=PayrollErrorCorrectionResult)
async def process_correction(
    correction_id: int,
    request: CorrectionDecisionRequest,
    service: PayrollErrorCorrectionService = Depends(get_correction_service),
):
    """
    Apply an approved correction to its payroll record.

    ## Error Responses
    - **409**: Correction is not approved, or was modified concurrently
    - **504**: Recalculation timed out (retryable)
    """
    return await service.process(
        correction_id, request.user_id, request.notes, request.expected_version
    )


@router.post("/{correction_id}/cancel", response_model=PayrollErrorCorrectionResult)
async def cancel_correction(
    correction_id: int,
    request: CorrectionDecisionRequest,
    service: PayrollErrorCorrectionService = Depends(get_correction_service),
):
    return service.cancel(
        correction_id, request.user_id, request.notes, request.expected_version
    )
