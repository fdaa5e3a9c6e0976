# backend/modules/payroll/routes/payslip_routes.py

"""
Payslip generation, approval and release endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ..enums import PayslipApprovalLevel
from ..schemas.payslip_schemas import (
    BulkReleaseReport,
    BulkReleaseRequest,
    CreatePayslipGenerationRequest,
    PayslipActionRequest,
    PayslipApprovalRequest,
    PayslipApprovalSummary,
    PayslipGenerationResponse,
    PayslipRejectRequest,
    RegeneratePayslipRequest,
)
from ..services.payslip_service import PayslipService
from .dependencies import get_payslip_service

router = APIRouter()


@router.post(
    "",
    response_model=PayslipGenerationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_payslip(
    request: CreatePayslipGenerationRequest,
    service: PayslipService = Depends(get_payslip_service),
):
    """
    Render a payslip for a finalized payroll record.

    ## Error Responses
    - **404**: Payroll record or template not found
    - **409**: A live payslip already exists for the record
    - **502**: Rendering or storing the document failed
    """
    payslip = service.generate_payslip(request)
    return PayslipGenerationResponse.from_model(payslip)


@router.post("/bulk-release", response_model=BulkReleaseReport)
async def bulk_release(
    request: BulkReleaseRequest,
    service: PayslipService = Depends(get_payslip_service),
):
    """
    Release several approved payslips.

    Each payslip is released independently; the report lists per-item
    release and notification outcomes and flags partial failures.
    """
    return await service.bulk_release(
        request.payslip_ids, request.released_by, request.released_by_name
    )


@router.get("/approval-summary", response_model=PayslipApprovalSummary)
async def get_approval_summary(
    branch_id: int = Query(..., gt=0),
    payroll_year: int = Query(..., ge=1900, le=9999),
    payroll_month: int = Query(..., ge=1, le=12),
    service: PayslipService = Depends(get_payslip_service),
):
    return service.get_approval_summary(branch_id, payroll_year, payroll_month)


@router.get("/pending", response_model=List[PayslipGenerationResponse])
async def get_pending_approvals(
    level: PayslipApprovalLevel = Query(...),
    branch_id: Optional[int] = Query(None),
    service: PayslipService = Depends(get_payslip_service),
):
    return [
        PayslipGenerationResponse.from_model(payslip)
        for payslip in service.get_pending_approvals(level, branch_id)
    ]


@router.get("/{payslip_id}", response_model=PayslipGenerationResponse)
async def get_payslip(
    payslip_id: int,
    service: PayslipService = Depends(get_payslip_service),
):
    return PayslipGenerationResponse.from_model(service.get_payslip(payslip_id))


@router.post("/{payslip_id}/submit", response_model=PayslipGenerationResponse)
async def submit_for_approval(
    payslip_id: int,
    request: PayslipActionRequest,
    service: PayslipService = Depends(get_payslip_service),
):
    payslip = service.submit_for_approval(
        payslip_id, request.user_id, request.user_name, request.expected_version
    )
    return PayslipGenerationResponse.from_model(payslip)


@router.post("/{payslip_id}/approve", response_model=PayslipGenerationResponse)
async def approve_payslip(
    payslip_id: int,
    request: PayslipApprovalRequest,
    service: PayslipService = Depends(get_payslip_service),
):
    """HR approval must come before finance approval."""
    payslip = service.approve(
        payslip_id,
        request.level,
        request.approver_id,
        request.approver_name,
        request.notes,
        request.expected_version,
    )
    return PayslipGenerationResponse.from_model(payslip)


@router.post("/{payslip_id}/reject", response_model=PayslipGenerationResponse)
async def reject_payslip(
    payslip_id: int,
    request: PayslipRejectRequest,
    service: PayslipService = Depends(get_payslip_service),
):
    payslip = service.reject(
        payslip_id,
        request.level,
        request.user_id,
        request.reason,
        request.user_name,
        request.expected_version,
    )
    return PayslipGenerationResponse.from_model(payslip)


@router.post("/{payslip_id}/release", response_model=PayslipGenerationResponse)
async def release_payslip(
    payslip_id: int,
    request: PayslipActionRequest,
    service: PayslipService = Depends(get_payslip_service),
):
    payslip = await service.release(
        payslip_id, request.user_id, request.user_name, request.expected_version
    )
    return PayslipGenerationResponse.from_model(payslip)


@router.post("/{payslip_id}/retry-notification", response_model=PayslipGenerationResponse)
async def retry_notification(
    payslip_id: int,
    service: PayslipService = Depends(get_payslip_service),
):
    payslip = await service.retry_notification(payslip_id)
    return PayslipGenerationResponse.from_model(payslip)


@router.post(
    "/{payslip_id}/regenerate",
    response_model=PayslipGenerationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def regenerate_payslip(
    payslip_id: int,
    request: RegeneratePayslipRequest,
    service: PayslipService = Depends(get_payslip_service),
):
    payslip = service.regenerate(payslip_id, request.reason, request.regenerated_by)
    return PayslipGenerationResponse.from_model(payslip)
