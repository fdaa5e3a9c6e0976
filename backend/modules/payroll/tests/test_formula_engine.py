# backend/modules/payroll/tests/test_formula_engine.py

"""
Unit tests for the formula evaluation engine.

Formulas and scope objects are plain namespaces; no database is needed.
"""

import pytest
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

from modules.payroll.enums import PayrollFormulaType
from modules.payroll.exceptions import (
    FormulaDivisionByZeroError,
    FormulaEvaluationError,
    UnknownVariableError,
)
from modules.payroll.services.evaluation_context import FormulaEvaluationContext
from modules.payroll.services.formula_engine import FormulaEngine, round_money


def make_formula(
    id,
    name,
    formula,
    type=PayrollFormulaType.ALLOWANCE,
    priority=100,
    conditions=None,
    organization_id=None,
    branch_id=None,
    department=None,
    designation=None,
    is_active=True,
):
    return SimpleNamespace(
        id=id,
        name=name,
        formula=formula,
        type=type,
        priority=priority,
        conditions=conditions,
        organization_id=organization_id,
        branch_id=branch_id,
        department=department,
        designation=designation,
        is_active=is_active,
        is_deleted=False,
    )


@pytest.fixture
def engine():
    return FormulaEngine(hours_per_day=8, days_per_month=30)


@pytest.fixture
def context():
    organization = SimpleNamespace(id=1)
    branch = SimpleNamespace(id=10, organization_id=1)
    employee = SimpleNamespace(
        id=100, branch_id=10, department="Engineering", designation="Developer"
    )
    return FormulaEvaluationContext(
        payroll_period_start=date(2024, 3, 1),
        payroll_period_end=date(2024, 3, 31),
        basic_salary=Decimal("5000"),
        employee=employee,
        branch=branch,
        organization=organization,
        working_days=21,
        actual_working_days=20,
        absent_days=1,
    )


class TestEvaluate:
    def test_arithmetic_uses_decimals(self, engine):
        assert engine.evaluate("0.1 + 0.2", {}) == Decimal("0.3")

    def test_bindings_are_case_insensitive(self, engine):
        value = engine.evaluate("BASICSALARY * Rate", {"basicSalary": Decimal("100"), "rate": Decimal("0.5")})

        assert value == Decimal("50.0")

    def test_functions(self, engine):
        bindings = {"x": Decimal("2.345")}

        assert engine.evaluate("round(x, 2)", bindings) == Decimal("2.35")
        assert engine.evaluate("floor(x)", bindings) == Decimal("2")
        assert engine.evaluate("ceiling(x)", bindings) == Decimal("3")
        assert engine.evaluate("max(1, x, 2)", bindings) == Decimal("2.345")
        assert engine.evaluate("min(1, x)", bindings) == Decimal("1")
        assert engine.evaluate("abs(-x)", bindings) == Decimal("2.345")

    def test_comparisons_and_logic_yield_one_or_zero(self, engine):
        bindings = {"a": Decimal("3")}

        assert engine.evaluate("a > 2 and a < 5", bindings) == Decimal("1")
        assert engine.evaluate("1 < a < 2", bindings) == Decimal("0")
        assert engine.evaluate("not a", bindings) == Decimal("0")
        assert engine.evaluate("100 if a >= 3 else 0", bindings) == Decimal("100")

    def test_unknown_variable(self, engine):
        with pytest.raises(UnknownVariableError):
            engine.evaluate("bonus * 2", {})

    def test_division_by_zero(self, engine):
        with pytest.raises(FormulaDivisionByZeroError):
            engine.evaluate("10 / (a - a)", {"a": Decimal("1")})

    def test_oversized_exponent_rejected(self, engine):
        with pytest.raises(FormulaEvaluationError):
            engine.evaluate("2 ** 1000", {})

    def test_round_places_must_be_whole(self, engine):
        with pytest.raises(FormulaEvaluationError):
            engine.evaluate("round(1.234, 1.5)", {})

    def test_deep_nesting_is_an_evaluation_error(self, engine):
        with pytest.raises(FormulaEvaluationError, match="nested too deeply"):
            engine.evaluate("-" * 1500 + "1", {})

    def test_condition(self, engine):
        assert engine.evaluate_condition("absentDays == 0", {"absentdays": Decimal("0")})
        assert not engine.evaluate_condition("absentDays == 0", {"absentdays": Decimal("2")})


class TestSelection:
    def test_more_specific_scope_wins_regardless_of_priority(self, engine, context):
        broad = make_formula(1, "HRA", "basicSalary * 0.1", priority=1)
        narrow = make_formula(2, "hra", "basicSalary * 0.3", priority=50, branch_id=10)

        selected = engine.select_applicable(context, [broad, narrow])

        assert selected == [narrow]

    def test_lower_priority_number_wins_at_equal_scope(self, engine, context):
        first = make_formula(1, "Bonus", "100", priority=20)
        second = make_formula(2, "Bonus", "200", priority=10)

        assert engine.select_applicable(context, [first, second]) == [second]

    def test_lower_id_breaks_full_ties(self, engine, context):
        first = make_formula(7, "Bonus", "100", priority=10)
        second = make_formula(3, "Bonus", "200", priority=10)

        assert engine.select_applicable(context, [first, second]) == [second]

    def test_out_of_scope_and_inactive_formulas_are_ignored(self, engine, context):
        formulas = [
            make_formula(1, "A", "1", branch_id=99),
            make_formula(2, "B", "1", organization_id=2),
            make_formula(3, "C", "1", department="Sales"),
            make_formula(4, "D", "1", designation="developer"),
            make_formula(5, "E", "1", is_active=False),
        ]

        selected = engine.select_applicable(context, formulas)

        assert [f.name for f in selected] == ["D"]

    def test_evaluation_order_is_priority_then_id(self, engine, context):
        formulas = [
            make_formula(3, "C", "1", priority=5),
            make_formula(1, "A", "1", priority=10),
            make_formula(2, "B", "1", priority=5),
        ]

        assert [f.name for f in engine.select_applicable(context, formulas)] == ["B", "C", "A"]

    def test_scope_specificity_weights(self, engine):
        assert engine.scope_specificity(make_formula(1, "x", "1")) == 0
        assert engine.scope_specificity(make_formula(1, "x", "1", organization_id=1)) == 1
        assert engine.scope_specificity(
            make_formula(1, "x", "1", branch_id=1, designation="Dev")
        ) == 10


class TestEvaluateAll:
    def test_allowance_then_deduction_on_running_gross(self, engine, context):
        formulas = [
            make_formula(1, "HRA", "HRA = basicSalary * 0.2", priority=1),
            make_formula(2, "Tax", "grossSalary * 0.1", PayrollFormulaType.DEDUCTION, priority=2),
        ]

        outcome = engine.evaluate_all(context, formulas)

        assert outcome.errors == []
        assert outcome.allowance_breakdown == {"HRA": Decimal("1000.00")}
        assert outcome.deduction_breakdown == {"Tax": Decimal("600.00")}

    def test_results_feed_later_formulas(self, engine, context):
        formulas = [
            make_formula(1, "Base", "basicSalary / 3", PayrollFormulaType.CUSTOM, priority=1),
            make_formula(2, "Bonus", "base * 2", priority=2),
        ]

        outcome = engine.evaluate_all(context, formulas)

        # Base is rounded before Bonus sees it
        assert outcome.custom_calculations == {"Base": Decimal("1666.67")}
        assert outcome.allowance_breakdown == {"Bonus": Decimal("3333.34")}

    def test_partial_failure_keeps_valid_results(self, engine, context):
        formulas = [
            make_formula(1, "HRA", "basicSalary * 0.2", priority=1),
            make_formula(2, "Broken", "basicSalary * (", priority=2),
            make_formula(3, "Transport", "150", priority=3),
        ]

        outcome = engine.evaluate_all(context, formulas)

        assert outcome.values() == {"HRA": Decimal("1000.00"), "Transport": Decimal("150.00")}
        assert len(outcome.errors) == 1
        assert outcome.errors[0].startswith("Broken:")

    def test_runtime_errors_are_collected(self, engine, context):
        formulas = [
            make_formula(1, "Ratio", "basicSalary / leaveDays", priority=1),
            make_formula(2, "Extra", "missingVar + 1", priority=2),
            make_formula(3, "Ok", "10", priority=3),
        ]

        outcome = engine.evaluate_all(context, formulas)

        assert outcome.values() == {"Ok": Decimal("10.00")}
        assert outcome.errors == [
            "Ratio: Division by zero",
            "Extra: Unknown variable 'missingVar'",
        ]

    def test_out_of_range_results_are_collected(self, engine, context):
        formulas = [
            make_formula(1, "Huge", "basicSalary * 10 ** 10", priority=1),
            make_formula(2, "Beyond", "10 ** 30", priority=2),
            make_formula(3, "Ok", "10", priority=3),
        ]

        outcome = engine.evaluate_all(context, formulas)

        assert outcome.values() == {"Ok": Decimal("10.00")}
        assert outcome.errors == [
            "Huge: result is out of range",
            "Beyond: result is out of range",
        ]

    def test_false_condition_skips_formula(self, engine, context):
        formulas = [
            make_formula(1, "Attendance", "500", conditions="absentDays == 0"),
            make_formula(2, "Meal", "100", conditions="actualWorkingDays >= 20"),
        ]

        outcome = engine.evaluate_all(context, formulas)

        assert outcome.skipped == ["Attendance"]
        assert outcome.values() == {"Meal": Decimal("100.00")}

    def test_mismatched_assignment_target_is_an_error(self, engine, context):
        outcome = engine.evaluate_all(context, [make_formula(1, "HRA", "DA = basicSalary * 0.1")])

        assert outcome.results == []
        assert "does not match" in outcome.errors[0]

    def test_net_salary_aggregate_tracks_deductions(self, engine, context):
        formulas = [
            make_formula(1, "Pension", "100", PayrollFormulaType.DEDUCTION, priority=1),
            make_formula(2, "Check", "netSalary", PayrollFormulaType.CUSTOM, priority=2),
        ]

        outcome = engine.evaluate_all(context, formulas)

        assert outcome.custom_calculations == {"Check": Decimal("4900.00")}


class TestOvertime:
    def test_overtime_amount(self, engine):
        amount = engine.calculate_overtime_amount(Decimal("10"), Decimal("4800"), Decimal("1.5"))

        # 4800 / 240 = 20 per hour
        assert amount == Decimal("300.00")

    def test_no_overtime_without_hours(self, engine):
        assert engine.calculate_overtime_amount(Decimal("0"), Decimal("4800"), Decimal("1.5")) == Decimal("0.00")


def test_round_money_half_up():
    assert round_money(Decimal("2.345")) == Decimal("2.35")
    assert round_money(Decimal("-2.345")) == Decimal("-2.35")
