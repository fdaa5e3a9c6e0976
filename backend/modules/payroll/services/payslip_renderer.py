# backend/modules/payroll/services/payslip_renderer.py

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
from typing import Any, Dict, List, Optional

from jinja2 import Environment, StrictUndefined, TemplateError, nodes, select_autoescape

from core.config import settings
from ..exceptions import PayslipRenderError
from ..schemas.payroll_schemas import PayrollCalculationResult
from .currency_service import CURRENCY_INFO

logger = logging.getLogger(__name__)

# Placeholders every payslip template must show
REQUIRED_PLACEHOLDERS = ("employee.name", "salary.net")

DEFAULT_PAYSLIP_TEMPLATE = """<html>
<body style="font-family: Arial, sans-serif;">
<div class="header">
  <h2>{{ organization.name }}</h2>
  <p>{{ branch.name }}</p>
  <h3>Payslip for {{ period.label }}</h3>
</div>
<div class="employee">
  <p>{{ employee.name }} ({{ employee.code }})</p>
  {% if employee.designation %}<p>{{ employee.designation }}, {{ employee.department }}</p>{% endif %}
</div>
<table class="earnings">
  <tr><td>Basic Salary</td><td>{{ salary.basic | format_currency(salary.currency) }}</td></tr>
  {% for name, amount in allowances.items() %}
  <tr><td>{{ name }}</td><td>{{ amount | format_currency(salary.currency) }}</td></tr>
  {% endfor %}
  {% if salary.overtime %}
  <tr><td>Overtime</td><td>{{ salary.overtime | format_currency(salary.currency) }}</td></tr>
  {% endif %}
  <tr><th>Gross Salary</th><th>{{ salary.gross | format_currency(salary.currency) }}</th></tr>
</table>
<table class="deductions">
  {% for name, amount in deductions.items() %}
  <tr><td>{{ name }}</td><td>{{ amount | format_currency(salary.currency) }}</td></tr>
  {% endfor %}
  <tr><th>Total Deductions</th><th>{{ salary.deductions | format_currency(salary.currency) }}</th></tr>
</table>
<div class="summary">
  <h3>Net Salary: {{ salary.net | format_currency(salary.currency) }}</h3>
  <p>Working days {{ attendance.working_days }}, present {{ attendance.actual_working_days }}</p>
</div>
<p class="footer">Version {{ payslip.version }}, generated {{ payslip.generated_at | format_date }}</p>
</body>
</html>
"""


@dataclass(frozen=True)
class RenderedPayslip:
    file_path: str
    file_name: str
    html: str


class PayslipRenderer:
    """Renders payslip templates to HTML documents"""

    def __init__(self, storage_dir: Optional[str] = None):
        self.storage_dir = Path(storage_dir or settings.payslip_storage_dir)
        self.jinja_env = Environment(
            autoescape=select_autoescape(['html', 'xml'], default_for_string=True),
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
        )

        self.jinja_env.filters['format_currency'] = self._format_currency
        self.jinja_env.filters['format_date'] = self._format_date

    @staticmethod
    def _format_currency(value: Any, currency: str = "USD") -> str:
        info = CURRENCY_INFO.get((currency or "").upper())
        places = info.decimal_places if info else 2
        quantum = Decimal(1).scaleb(-places)
        amount = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
        if info:
            return f"{info.symbol}{amount:,}"
        return f"{amount:,} {currency}"

    @staticmethod
    def _format_date(value: Any, format: str = "%d %b %Y") -> str:
        if isinstance(value, str):
            value = datetime.fromisoformat(value)
        return value.strftime(format)

    def validate_template(self, body: str) -> List[str]:
        """Problems with a template body; empty when it is usable."""
        try:
            parsed = self.jinja_env.parse(body)
        except TemplateError as e:
            return [f"Template syntax error: {e}"]

        used = {
            f"{node.node.name}.{node.attr}"
            for node in parsed.find_all(nodes.Getattr)
            if isinstance(node.node, nodes.Name)
        }
        return [
            f"Template must include {{{{ {placeholder} }}}}"
            for placeholder in REQUIRED_PLACEHOLDERS
            if placeholder not in used
        ]

    def build_context(
        self,
        result: PayrollCalculationResult,
        employee=None,
        branch=None,
        organization=None,
        version: int = 1,
        generated_at: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        period_label = datetime(result.payroll_year, result.payroll_month, 1).strftime("%B %Y")
        return {
            "employee": {
                "name": result.employee_name,
                "code": getattr(employee, "employee_code", ""),
                "department": getattr(employee, "department", None) or "",
                "designation": getattr(employee, "designation", None) or "",
                "email": getattr(employee, "email", None) or "",
            },
            "branch": {
                "name": getattr(branch, "name", ""),
                "currency": result.currency,
            },
            "organization": {"name": getattr(organization, "name", "")},
            "period": {
                "start": result.payroll_period_start,
                "end": result.payroll_period_end,
                "month": result.payroll_month,
                "year": result.payroll_year,
                "label": period_label,
            },
            "salary": {
                "basic": result.basic_salary,
                "allowances": result.total_allowances,
                "overtime": result.overtime_amount,
                "gross": result.gross_salary,
                "deductions": result.total_deductions,
                "net": result.net_salary,
                "currency": result.currency,
                "exchange_rate": result.exchange_rate,
            },
            "allowances": dict(result.allowance_breakdown),
            "deductions": dict(result.deduction_breakdown),
            "custom": dict(result.custom_calculations),
            "attendance": {
                "working_days": result.working_days,
                "actual_working_days": result.actual_working_days,
                "absent_days": result.absent_days,
                "leave_days": result.leave_days,
            },
            "payslip": {
                "version": version,
                "generated_at": generated_at or datetime.utcnow(),
            },
        }

    def render_html(self, body: str, context: Dict[str, Any]) -> str:
        try:
            return self.jinja_env.from_string(body).render(**context)
        except TemplateError as e:
            logger.error(f"Payslip template rendering failed: {e}")
            raise PayslipRenderError(f"Template rendering failed: {e}")

    def render(
        self,
        template,
        result: PayrollCalculationResult,
        context: Dict[str, Any],
        file_stem: str,
    ) -> RenderedPayslip:
        """
        Render a template and store the document.

        The file lands in ``<storage_dir>/<year>/<month>/<file_stem>.html``.
        """
        html = self.render_html(template.body, context)
        directory = self.storage_dir / str(result.payroll_year) / f"{result.payroll_month:02d}"
        file_name = f"{file_stem}.html"
        try:
            directory.mkdir(parents=True, exist_ok=True)
            path = directory / file_name
            path.write_text(html, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to store payslip {file_name}: {e}")
            raise PayslipRenderError(f"Could not write payslip document: {e}")

        logger.info(f"Rendered payslip {path}")
        return RenderedPayslip(file_path=str(path), file_name=file_name, html=html)
