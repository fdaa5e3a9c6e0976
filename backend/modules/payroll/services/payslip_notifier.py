# backend/modules/payroll/services/payslip_notifier.py

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from core.config import settings
from core.notification_adapter import (
    LoggingAdapter,
    NotificationAdapter,
    NotificationMessage,
    NotificationPriority,
    WebhookAdapter,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PayslipNotice:
    """What an employee is told when their payslip is released"""

    payslip_id: int
    employee_id: int
    employee_name: str
    payroll_year: int
    payroll_month: int
    net_salary: str
    currency: str
    version: int = 1


def build_default_adapter() -> NotificationAdapter:
    if settings.payslip_notification_webhook_url:
        return WebhookAdapter(
            settings.payslip_notification_webhook_url,
            timeout_seconds=settings.payslip_notification_timeout_seconds,
        )
    return LoggingAdapter()


class PayslipNotifier:
    """
    Delivers payslip release notifications.

    Never raises: a delivery failure or timeout is logged and reported as
    False so a released payslip stays released.
    """

    def __init__(
        self,
        adapter: Optional[NotificationAdapter] = None,
        timeout_seconds: Optional[float] = None,
        enabled: Optional[bool] = None,
    ):
        self.adapter = adapter or build_default_adapter()
        self.timeout_seconds = timeout_seconds or settings.payslip_notification_timeout_seconds
        self.enabled = settings.payslip_notifications_enabled if enabled is None else enabled

    def build_message(self, notice: PayslipNotice) -> NotificationMessage:
        return NotificationMessage(
            subject=f"Payslip for {notice.payroll_month:02d}/{notice.payroll_year} released",
            message=(
                f"Hello {notice.employee_name}, your payslip for "
                f"{notice.payroll_month:02d}/{notice.payroll_year} is available. "
                f"Net salary: {notice.net_salary} {notice.currency}."
            ),
            priority=NotificationPriority.NORMAL,
            metadata={
                "payslip_id": notice.payslip_id,
                "payroll_year": notice.payroll_year,
                "payroll_month": notice.payroll_month,
                "version": notice.version,
            },
        )

    async def notify_released(self, notice: PayslipNotice) -> bool:
        if not self.enabled:
            logger.debug(f"Payslip notifications disabled; skipping payslip {notice.payslip_id}")
            return False

        message = self.build_message(notice)
        try:
            delivered = await asyncio.wait_for(
                self.adapter.send_to_user(notice.employee_id, message),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Notification for payslip {notice.payslip_id} timed out "
                f"after {self.timeout_seconds}s"
            )
            return False
        except Exception as e:
            logger.error(
                f"Notification for payslip {notice.payslip_id} via "
                f"{self.adapter.get_adapter_name()} failed: {str(e)}"
            )
            return False

        if not delivered:
            logger.warning(f"Notification for payslip {notice.payslip_id} was not confirmed")
        return bool(delivered)
