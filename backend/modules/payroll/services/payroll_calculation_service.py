# backend/modules/payroll/services/payroll_calculation_service.py

"""
Payroll calculation orchestrator.

Loads the employee and attendance figures, builds the evaluation context,
runs the formula engine and aggregates the results into a
PayrollCalculationResult. Formula failures are reported in the result and
never abort the calculation; missing employees, branches or organizations
do.
"""

import asyncio
import calendar
import logging
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, sessionmaker

from core.config import settings
from core.mixins import stamp_audit_fields
from ..enums import PayrollRecordStatus
from ..exceptions import (
    DuplicateRecordError,
    ExternalServiceError,
    PayrollException,
    PayrollTimeoutError,
    PayrollValidationError,
)
from ..models.payroll_models import PayrollRecord
from ..schemas.audit_schemas import AuditEventType
from ..schemas.error_schemas import PayrollErrorCodes
from ..schemas.payroll_schemas import (
    PayrollCalculationRequest,
    PayrollCalculationResult,
)
from .audit_service import PayrollAuditService
from .currency_service import CurrencyService
from .evaluation_context import MAX_AMOUNT, FormulaEvaluationContext
from .formula_engine import FormulaEngine, FormulaEvaluationOutcome, round_money
from .payroll_data_service import PayrollDataService

logger = logging.getLogger(__name__)

# Override keys (normalized) that map onto context fields instead of custom values
CONTEXT_OVERRIDE_FIELDS = {
    "basicsalary": "basic_salary",
    "overtimehours": "overtime_hours",
    "overtimeamount": "overtime_amount",
    "workingdays": "working_days",
    "actualworkingdays": "actual_working_days",
    "absentdays": "absent_days",
    "leavedays": "leave_days",
}

INTEGER_FIELDS = {"working_days", "actual_working_days", "absent_days", "leave_days"}


def normalize_field_name(name: str) -> str:
    """'basicSalary', 'basic_salary' and 'BasicSalary' all become 'basicsalary'."""
    return name.replace("_", "").replace(" ", "").lower()


def parse_override_value(key: str, value: Any) -> Decimal:
    """
    Numeric value of a correction override.

    Raises:
        PayrollValidationError: the value is not a number, is not finite, or
            exceeds what a stored amount can hold
    """
    if isinstance(value, bool):
        amount = None
    else:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            amount = None
    if amount is None:
        raise PayrollValidationError(
            f"Correction value for {key} must be numeric",
            field=key,
            code=PayrollErrorCodes.INVALID_CORRECTION_DATA,
        )
    if not amount.is_finite() or abs(amount) > MAX_AMOUNT:
        raise PayrollValidationError(
            f"Correction value for {key} is out of range",
            field=key,
            code=PayrollErrorCodes.INVALID_CORRECTION_DATA,
        )
    return amount


def split_overrides(overrides: Dict[str, Any]) -> Tuple[Dict[str, Any], Dict[str, Decimal]]:
    """Separate context-field overrides from plain custom values."""
    context_fields = {}
    custom_values = {}
    for key, value in (overrides or {}).items():
        amount = parse_override_value(key, value)
        field_name = CONTEXT_OVERRIDE_FIELDS.get(normalize_field_name(key))
        if field_name in INTEGER_FIELDS:
            context_fields[field_name] = int(amount)
        elif field_name:
            context_fields[field_name] = amount
        else:
            custom_values[key] = amount
    return context_fields, custom_values


def month_period(year: int, month: int) -> Tuple[date, date]:
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


class PayrollCalculationService:
    """
    Calculates payroll for one employee and period.

    Collaborators (data access, currency, formula engine) can be injected;
    defaults are built from the session and settings.

    The loads and formula evaluation block, so they run in the default
    executor on a session from ``session_factory``; the caller's session is
    never shared with that thread. A calculation still running when the
    timeout expires is abandoned and its result discarded.
    """

    def __init__(
        self,
        db: Session,
        data_service_factory: Callable[[Session], PayrollDataService] = PayrollDataService,
        currency_service: Optional[CurrencyService] = None,
        engine: Optional[FormulaEngine] = None,
        timeout_seconds: Optional[float] = None,
        custom_values_override: Optional[bool] = None,
        base_currency: Optional[str] = None,
        session_factory: Optional[Callable[[], Session]] = None,
    ):
        self.db = db
        self.data_service_factory = data_service_factory
        self.data_service = data_service_factory(db)
        self.session_factory = session_factory or sessionmaker(
            bind=db.get_bind(), autocommit=False, autoflush=False
        )
        self.currency_service = currency_service or CurrencyService()
        self.engine = engine or FormulaEngine(
            settings.payroll_hours_per_day, settings.payroll_days_per_month
        )
        self.timeout_seconds = timeout_seconds or settings.payroll_calculation_timeout_seconds
        self.custom_values_override = (
            settings.payroll_custom_values_override_variables
            if custom_values_override is None
            else custom_values_override
        )
        self.base_currency = (base_currency or settings.payroll_base_currency).upper()
        self.audit = PayrollAuditService(db)

    async def calculate_payroll(
        self, request: PayrollCalculationRequest
    ) -> PayrollCalculationResult:
        """
        Calculate payroll under the configured timeout.

        Raises:
            PayrollNotFoundError: employee, branch or organization missing
            PayrollValidationError: inconsistent attendance figures
            PayrollTimeoutError: calculation exceeded the timeout (retryable)
            ExternalServiceError: currency conversion failed while mandatory
        """
        return await self._run_with_timeout(self._calculate(request))

    async def calculate_from_correction(
        self, record: PayrollRecord, overrides: Dict[str, Any]
    ) -> PayrollCalculationResult:
        """
        Recalculate a stored payroll record with corrected values.

        Salary, overtime and attendance overrides replace the context fields;
        any other key is passed to formulas as a custom value.
        """
        context_fields, custom_values = split_overrides(overrides)
        request = PayrollCalculationRequest(
            employee_id=record.employee_id,
            payroll_period_start=record.payroll_period_start,
            payroll_period_end=record.payroll_period_end,
            payroll_month=record.payroll_month,
            payroll_year=record.payroll_year,
            include_custom_formulas=True,
            custom_values=custom_values,
            target_currency=self.base_currency,
        )
        return await self._run_with_timeout(self._calculate(request, context_fields))

    async def _run_with_timeout(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            logger.error(f"Payroll calculation timed out after {self.timeout_seconds}s")
            raise PayrollTimeoutError("Payroll calculation", self.timeout_seconds)

    async def _calculate(
        self,
        request: PayrollCalculationRequest,
        context_fields: Optional[Dict[str, Any]] = None,
    ) -> PayrollCalculationResult:
        result = await asyncio.get_event_loop().run_in_executor(
            None,
            self._calculate_in_session,
            request,
            context_fields or {},
        )
        await self._apply_exchange_rate(result, request)

        logger.info(
            f"Payroll calculated for employee {result.employee_id}: "
            f"net {result.net_salary} {result.currency}"
            + (f" with {len(result.errors)} formula error(s)" if result.errors else "")
        )
        return result

    def _calculate_in_session(
        self, request: PayrollCalculationRequest, context_fields: Dict[str, Any]
    ) -> PayrollCalculationResult:
        session = self.session_factory()
        try:
            return self._evaluate(self.data_service_factory(session), request, context_fields)
        finally:
            session.close()

    def _evaluate(
        self,
        data_service: PayrollDataService,
        request: PayrollCalculationRequest,
        context_fields: Dict[str, Any],
    ) -> PayrollCalculationResult:
        employee = data_service.get_employee(request.employee_id)
        branch = data_service.get_branch(employee.branch_id)
        organization = data_service.get_organization(branch.organization_id)
        attendance = data_service.get_attendance_summary(
            employee.id, request.payroll_period_start, request.payroll_period_end
        )

        context = FormulaEvaluationContext(
            employee=employee,
            branch=branch,
            organization=organization,
            payroll_period_start=request.payroll_period_start,
            payroll_period_end=request.payroll_period_end,
            payroll_month=request.payroll_month,
            payroll_year=request.payroll_year,
            basic_salary=context_fields.get("basic_salary", employee.basic_salary),
            overtime_hours=context_fields.get("overtime_hours", attendance.overtime_hours),
            working_days=context_fields.get("working_days", attendance.working_days),
            actual_working_days=context_fields.get(
                "actual_working_days", attendance.actual_working_days
            ),
            absent_days=context_fields.get("absent_days", attendance.absent_days),
            leave_days=context_fields.get("leave_days", attendance.leave_days),
            custom_values=dict(request.custom_values),
            custom_values_override=self.custom_values_override,
        )

        overtime_rate = Decimal(
            str(organization.overtime_rate or settings.payroll_default_overtime_rate)
        )
        if "overtime_amount" in context_fields:
            context.overtime_amount = context_fields["overtime_amount"]
        else:
            context.overtime_amount = self.engine.calculate_overtime_amount(
                context.overtime_hours, context.basic_salary, overtime_rate
            )
        context.variables = self._derived_variables(context, overtime_rate)
        context.validate()

        if request.include_custom_formulas:
            formulas = data_service.get_formulas_for_employee(employee)
            outcome = self.engine.evaluate_all(context, formulas)
        else:
            # Baseline: basic salary passthrough, no allowances or deductions
            outcome = FormulaEvaluationOutcome()

        return self._aggregate(request, employee, branch, context, outcome)

    @staticmethod
    def _derived_variables(
        context: FormulaEvaluationContext, overtime_rate: Decimal
    ) -> Dict[str, Decimal]:
        per_day = Decimal("0")
        if context.working_days > 0:
            per_day = context.basic_salary / Decimal(context.working_days)
        return {
            "perDaySalary": per_day,
            "overtimeRate": overtime_rate,
        }

    @staticmethod
    def _aggregate(
        request: PayrollCalculationRequest,
        employee,
        branch,
        context: FormulaEvaluationContext,
        outcome: FormulaEvaluationOutcome,
    ) -> PayrollCalculationResult:
        allowance_breakdown = outcome.allowance_breakdown
        deduction_breakdown = outcome.deduction_breakdown

        try:
            basic = round_money(context.basic_salary)
            overtime = round_money(context.overtime_amount)
            overtime_hours = round_money(context.overtime_hours)
            total_allowances = round_money(sum(allowance_breakdown.values(), Decimal("0")))
            total_deductions = round_money(sum(deduction_breakdown.values(), Decimal("0")))
        except InvalidOperation:
            raise PayrollValidationError(
                f"Payroll amounts for employee {employee.id} are out of range",
                code=PayrollErrorCodes.INVALID_AMOUNT,
            )
        gross = basic + total_allowances + overtime
        net = gross - total_deductions

        return PayrollCalculationResult(
            employee_id=employee.id,
            employee_name=employee.full_name,
            payroll_period_start=request.payroll_period_start,
            payroll_period_end=request.payroll_period_end,
            payroll_month=request.payroll_month,
            payroll_year=request.payroll_year,
            basic_salary=basic,
            total_allowances=total_allowances,
            overtime_hours=overtime_hours,
            overtime_amount=overtime,
            gross_salary=gross,
            total_deductions=total_deductions,
            net_salary=net,
            currency=(branch.currency or "USD").upper(),
            working_days=context.working_days,
            actual_working_days=context.actual_working_days,
            absent_days=context.absent_days,
            leave_days=context.leave_days,
            allowance_breakdown=allowance_breakdown,
            deduction_breakdown=deduction_breakdown,
            custom_calculations=outcome.custom_calculations,
            warnings=list(outcome.warnings),
            errors=list(outcome.errors),
        )

    async def _apply_exchange_rate(
        self, result: PayrollCalculationResult, request: PayrollCalculationRequest
    ):
        target = (request.target_currency or self.base_currency).upper()
        if result.currency == target:
            return

        try:
            result.exchange_rate = await self.currency_service.get_exchange_rate(
                result.currency, target, request.payroll_period_end
            )
        except ExternalServiceError as e:
            if settings.payroll_currency_conversion_mandatory:
                logger.error(f"Mandatory currency conversion failed: {e.message}")
                raise
            logger.warning(f"Currency conversion {result.currency}->{target} failed: {e.message}")
            result.warnings.append(
                f"Exchange rate {result.currency}->{target} unavailable; using 1.0"
            )

    async def create_payroll_record(
        self,
        request: PayrollCalculationRequest,
        created_by: Optional[int] = None,
    ) -> PayrollRecord:
        """Calculate and persist a payroll record for the request's month."""
        existing = (
            self.db.query(PayrollRecord)
            .filter(
                PayrollRecord.employee_id == request.employee_id,
                PayrollRecord.payroll_year == request.payroll_year,
                PayrollRecord.payroll_month == request.payroll_month,
            )
            .first()
        )
        if existing:
            raise DuplicateRecordError(
                f"Payroll record already exists for employee {request.employee_id} "
                f"in {request.payroll_year}-{request.payroll_month:02d}"
            )

        result = await self.calculate_payroll(request)
        employee = self.data_service.get_employee(request.employee_id)

        record = PayrollRecord(
            employee_id=result.employee_id,
            branch_id=employee.branch_id,
            payroll_period_start=result.payroll_period_start,
            payroll_period_end=result.payroll_period_end,
            payroll_month=result.payroll_month,
            payroll_year=result.payroll_year,
            status=PayrollRecordStatus.CALCULATED,
            processed_by=created_by,
            processed_at=datetime.utcnow(),
            notes="; ".join(result.errors) or None,
        )
        apply_result_to_record(record, result)
        stamp_audit_fields(record, record.processed_at)
        self.db.add(record)
        self.db.flush()

        self.audit.log_event(
            AuditEventType.PAYROLL_RECORD_CREATED,
            entity_type="payroll_record",
            entity_id=record.id,
            action=f"Payroll record created for employee {record.employee_id}",
            user_id=created_by,
            new_values=record_values(record),
        )
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Created payroll record {record.id} for employee {record.employee_id}")
        return record

    async def process_branch_payroll(
        self, branch_id: int, payroll_year: int, payroll_month: int
    ) -> List[PayrollCalculationResult]:
        """Calculate every active employee in a branch; failures become error results."""
        self.data_service.get_branch(branch_id)
        start, end = month_period(payroll_year, payroll_month)
        employees = self.data_service.get_active_employees(branch_id)

        results = []
        for employee in employees:
            request = PayrollCalculationRequest(
                employee_id=employee.id,
                payroll_period_start=start,
                payroll_period_end=end,
                payroll_month=payroll_month,
                payroll_year=payroll_year,
            )
            try:
                results.append(await self.calculate_payroll(request))
            except PayrollException as e:
                logger.error(f"Payroll failed for employee {employee.id}: {e.message}")
                results.append(
                    PayrollCalculationResult(
                        employee_id=employee.id,
                        employee_name=employee.full_name,
                        payroll_period_start=start,
                        payroll_period_end=end,
                        payroll_month=payroll_month,
                        payroll_year=payroll_year,
                        errors=[e.message],
                    )
                )

        logger.info(
            f"Branch {branch_id} payroll {payroll_year}-{payroll_month:02d}: "
            f"{len(results)} employee(s) processed"
        )
        return results


# Monetary fields copied between results and stored records, in diff order
RECORD_AMOUNT_FIELDS = (
    "basic_salary",
    "total_allowances",
    "overtime_amount",
    "gross_salary",
    "total_deductions",
    "net_salary",
)


def _breakdown_json(values: Dict[str, Decimal]) -> Dict[str, str]:
    return {name: str(value) for name, value in values.items()}


def apply_result_to_record(record: PayrollRecord, result: PayrollCalculationResult):
    for field_name in RECORD_AMOUNT_FIELDS:
        setattr(record, field_name, getattr(result, field_name))
    record.overtime_hours = result.overtime_hours
    record.currency = result.currency
    record.exchange_rate = result.exchange_rate
    record.working_days = result.working_days
    record.actual_working_days = result.actual_working_days
    record.absent_days = result.absent_days
    record.leave_days = result.leave_days
    record.allowance_breakdown = _breakdown_json(result.allowance_breakdown)
    record.deduction_breakdown = _breakdown_json(result.deduction_breakdown)
    record.custom_calculations = _breakdown_json(result.custom_calculations)


def record_values(record: PayrollRecord) -> Dict[str, Any]:
    """JSON snapshot of a record's monetary values and breakdowns."""
    values = {
        field_name: str(Decimal(str(getattr(record, field_name) or 0)))
        for field_name in RECORD_AMOUNT_FIELDS
    }
    values["allowance_breakdown"] = dict(record.allowance_breakdown or {})
    values["deduction_breakdown"] = dict(record.deduction_breakdown or {})
    return values


def result_from_record(record: PayrollRecord, employee_name: str) -> PayrollCalculationResult:
    """Finalized calculation as stored on a payroll record."""
    return PayrollCalculationResult(
        employee_id=record.employee_id,
        employee_name=employee_name,
        payroll_period_start=record.payroll_period_start,
        payroll_period_end=record.payroll_period_end,
        payroll_month=record.payroll_month,
        payroll_year=record.payroll_year,
        basic_salary=record.basic_salary,
        total_allowances=record.total_allowances,
        overtime_hours=record.overtime_hours,
        overtime_amount=record.overtime_amount,
        gross_salary=record.gross_salary,
        total_deductions=record.total_deductions,
        net_salary=record.net_salary,
        currency=record.currency,
        exchange_rate=record.exchange_rate,
        working_days=record.working_days,
        actual_working_days=record.actual_working_days,
        absent_days=record.absent_days,
        leave_days=record.leave_days,
        allowance_breakdown=record.allowance_breakdown or {},
        deduction_breakdown=record.deduction_breakdown or {},
        custom_calculations=record.custom_calculations or {},
    )
