# backend/modules/payroll/schemas/payslip_schemas.py

"""
Schemas for payslip generation, approval and release.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List, Dict
from datetime import datetime

from ..enums import PayslipStatus, PayslipApprovalLevel, PayslipApprovalAction


class CreatePayslipGenerationRequest(BaseModel):
    payroll_record_id: int = Field(..., gt=0)
    payslip_template_id: int = Field(..., gt=0)
    auto_submit_for_approval: bool = False
    generated_by: int = Field(..., gt=0)


class PayslipApprovalInfo(BaseModel):
    """Approval recorded at one level; set once"""

    approver_id: int
    approver_name: Optional[str] = None
    approved_at: datetime
    notes: Optional[str] = None


class PayslipApprovalRequest(BaseModel):
    level: PayslipApprovalLevel
    approver_id: int = Field(..., gt=0)
    approver_name: Optional[str] = None
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class PayslipRejectRequest(BaseModel):
    level: PayslipApprovalLevel
    user_id: int = Field(..., gt=0)
    user_name: Optional[str] = None
    reason: str = Field(..., min_length=1)
    expected_version: Optional[int] = None


class PayslipActionRequest(BaseModel):
    user_id: int = Field(..., gt=0)
    user_name: Optional[str] = None
    expected_version: Optional[int] = None


class RegeneratePayslipRequest(BaseModel):
    reason: str = Field(..., min_length=1, description="Mandatory regeneration reason")
    regenerated_by: int = Field(..., gt=0)


class BulkReleaseRequest(BaseModel):
    payslip_ids: List[int] = Field(..., min_length=1)
    released_by: int = Field(..., gt=0)
    released_by_name: Optional[str] = None


class BulkReleaseItemResult(BaseModel):
    payslip_id: int
    released: bool = False
    notification_sent: bool = False
    status: Optional[PayslipStatus] = None
    error: Optional[str] = None

    @property
    def is_partial_failure(self) -> bool:
        return not (self.released and self.notification_sent)


class BulkReleaseReport(BaseModel):
    """Per-item outcome of a bulk release"""

    requested: int
    released: int
    notifications_sent: int
    items: List[BulkReleaseItemResult]
    failed_ids: List[int] = Field(default_factory=list)
    partial_failure: bool = False


class PayslipApprovalHistoryEntry(BaseModel):
    id: int
    level: Optional[PayslipApprovalLevel] = None
    action: PayslipApprovalAction
    action_by: int
    action_by_name: Optional[str] = None
    action_at: datetime
    notes: Optional[str] = None
    previous_status: Optional[PayslipStatus] = None
    new_status: PayslipStatus

    model_config = ConfigDict(from_attributes=True)


class PayslipGenerationResponse(BaseModel):
    id: int
    payroll_record_id: int
    payslip_template_id: int
    status: PayslipStatus
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    generated_by: int
    generated_at: datetime
    hr_approval: Optional[PayslipApprovalInfo] = None
    finance_approval: Optional[PayslipApprovalInfo] = None
    rejection_reason: Optional[str] = None
    released_at: Optional[datetime] = None
    released_by_name: Optional[str] = None
    is_notification_sent: bool = False
    version: int
    regeneration_reason: Optional[str] = None
    previous_payslip_id: Optional[int] = None
    version_id: int
    approval_history: List[PayslipApprovalHistoryEntry] = Field(default_factory=list)

    @classmethod
    def from_model(cls, payslip) -> "PayslipGenerationResponse":
        hr_approval = None
        if payslip.hr_approved_at is not None:
            hr_approval = PayslipApprovalInfo(
                approver_id=payslip.hr_approved_by,
                approver_name=payslip.hr_approved_by_name,
                approved_at=payslip.hr_approved_at,
                notes=payslip.hr_approval_notes,
            )
        finance_approval = None
        if payslip.finance_approved_at is not None:
            finance_approval = PayslipApprovalInfo(
                approver_id=payslip.finance_approved_by,
                approver_name=payslip.finance_approved_by_name,
                approved_at=payslip.finance_approved_at,
                notes=payslip.finance_approval_notes,
            )
        return cls(
            id=payslip.id,
            payroll_record_id=payslip.payroll_record_id,
            payslip_template_id=payslip.payslip_template_id,
            status=payslip.status,
            file_path=payslip.file_path,
            file_name=payslip.file_name,
            generated_by=payslip.generated_by,
            generated_at=payslip.generated_at,
            hr_approval=hr_approval,
            finance_approval=finance_approval,
            rejection_reason=payslip.rejection_reason,
            released_at=payslip.released_at,
            released_by_name=payslip.released_by_name,
            is_notification_sent=payslip.is_notification_sent,
            version=payslip.version,
            regeneration_reason=payslip.regeneration_reason,
            previous_payslip_id=payslip.previous_payslip_id,
            version_id=payslip.version_id,
            approval_history=[
                PayslipApprovalHistoryEntry.model_validate(entry)
                for entry in payslip.approval_history
            ],
        )


class PayslipApprovalSummary(BaseModel):
    branch_id: int
    payroll_year: int
    payroll_month: int
    total_payslips: int = 0
    status_counts: Dict[str, int] = Field(default_factory=dict)
    pending_hr_approval: int = 0
    pending_finance_approval: int = 0
    approved: int = 0
    released: int = 0
    rejected: int = 0
    notifications_pending: int = 0
