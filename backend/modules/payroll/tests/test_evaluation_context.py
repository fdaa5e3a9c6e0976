# backend/modules/payroll/tests/test_evaluation_context.py

import pytest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from modules.payroll.exceptions import PayrollValidationError
from modules.payroll.services.evaluation_context import (
    BUILTIN_VARIABLES,
    FormulaEvaluationContext,
)


def build_context(**overrides):
    values = dict(
        payroll_period_start=date(2024, 2, 1),
        payroll_period_end=date(2024, 2, 29),
        basic_salary=Decimal("4200"),
        working_days=21,
        actual_working_days=19,
        absent_days=1,
        leave_days=1,
    )
    values.update(overrides)
    return FormulaEvaluationContext(**values)


class TestBindings:
    def test_builtins_are_bound_lowercase(self):
        bindings = build_context().bindings()

        for name in BUILTIN_VARIABLES:
            assert name.lower() in bindings
        assert bindings["basicsalary"] == Decimal("4200")
        assert bindings["daysinmonth"] == Decimal("29")
        assert bindings["payrollmonth"] == Decimal("2")
        assert bindings["payrollyear"] == Decimal("2024")

    def test_variables_extend_builtins(self):
        context = build_context(variables={"perDaySalary": Decimal("200")})

        assert context.bindings()["perdaysalary"] == Decimal("200")

    def test_custom_values_override_by_default(self):
        context = build_context(custom_values={"BasicSalary": Decimal("9000")})

        assert context.bindings()["basicsalary"] == Decimal("9000")

    def test_custom_values_only_fill_gaps_when_override_disabled(self):
        context = build_context(
            custom_values={"basicSalary": Decimal("9000"), "bonus": Decimal("50")},
            custom_values_override=False,
        )

        bindings = context.bindings()
        assert bindings["basicsalary"] == Decimal("4200")
        assert bindings["bonus"] == Decimal("50")

    def test_one_entry_per_name(self):
        context = build_context(
            variables={"Bonus": Decimal("1")}, custom_values={"bonus": Decimal("2")}
        )

        names = [v.name.lower() for v in context.available_variables()]
        assert names.count("bonus") == 1

    def test_numeric_inputs_become_decimals(self):
        context = build_context(basic_salary=3000, overtime_hours="2.5")

        assert context.basic_salary == Decimal("3000")
        assert context.overtime_hours == Decimal("2.5")


class TestScope:
    def test_scope_from_related_objects(self):
        context = build_context(
            employee=SimpleNamespace(branch_id=3, department="Finance", designation="Analyst"),
            branch=SimpleNamespace(id=3, organization_id=8),
        )

        assert context.branch_id == 3
        assert context.organization_id == 8
        assert context.department == "Finance"
        assert context.designation == "Analyst"

    def test_scope_is_empty_without_relations(self):
        context = build_context()

        assert context.organization_id is None
        assert context.branch_id is None
        assert context.department is None


class TestValidate:
    def test_valid_context(self):
        build_context().validate()

    def test_period_order(self):
        with pytest.raises(PayrollValidationError):
            build_context(payroll_period_end=date(2024, 1, 31)).validate()

    def test_negative_salary(self):
        with pytest.raises(PayrollValidationError) as exc_info:
            build_context(basic_salary=Decimal("-1")).validate()
        assert exc_info.value.status_code == 422

    def test_attendance_cannot_exceed_working_days(self):
        with pytest.raises(PayrollValidationError, match="exceed working days"):
            build_context(actual_working_days=21, absent_days=1).validate()
