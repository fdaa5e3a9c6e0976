# backend/modules/payroll/services/formula_engine.py

"""
Payroll formula evaluation engine.

Selects the formulas that apply to an employee, evaluates them in priority
order against the evaluation context, and collects named results. A failing
formula is reported in the outcome's error list and never stops the
remaining formulas from being evaluated.
"""

import logging
from dataclasses import dataclass, field
from decimal import (
    Decimal, ROUND_HALF_UP, ROUND_FLOOR, ROUND_CEILING,
    InvalidOperation, DivisionByZero, Overflow
)
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from core.config import settings
from ..enums import PayrollFormulaType
from ..exceptions import (
    FormulaEvaluationError,
    FormulaSyntaxError,
    FormulaDivisionByZeroError,
    UnknownVariableError,
)
from .evaluation_context import MAX_AMOUNT, FormulaEvaluationContext
from .formula_parser import (
    Node, Literal, VariableRef, BinaryOp, UnaryOp, Comparison, BoolOp,
    FunctionCall, Conditional, CompiledFormula, get_compiled,
)

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
ONE = Decimal(1)
ZERO = Decimal(0)

# Exponents above this are rejected as invalid operations
MAX_EXPONENT = 64
MAX_ROUND_PLACES = 10

# Scope weights; summed to rank how specific a formula is
SCOPE_WEIGHTS = {
    "organization_id": 1,
    "branch_id": 2,
    "department": 4,
    "designation": 8,
}


def round_money(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _truthy(value: Decimal) -> bool:
    return value != ZERO


def _as_bool(flag: bool) -> Decimal:
    return ONE if flag else ZERO


@dataclass
class FormulaResult:
    name: str
    type: PayrollFormulaType
    value: Decimal
    formula_id: Optional[int] = None
    priority: int = 0


@dataclass
class FormulaEvaluationOutcome:
    """Ordered results plus the formulas that were skipped or failed"""

    results: List[FormulaResult] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def values(self) -> Dict[str, Decimal]:
        return {r.name: r.value for r in self.results}

    @property
    def allowance_breakdown(self) -> Dict[str, Decimal]:
        return {r.name: r.value for r in self.results if r.type.is_allowance}

    @property
    def deduction_breakdown(self) -> Dict[str, Decimal]:
        return {r.name: r.value for r in self.results if r.type.is_deduction}

    @property
    def custom_calculations(self) -> Dict[str, Decimal]:
        return {
            r.name: r.value
            for r in self.results
            if not (r.type.is_allowance or r.type.is_deduction)
        }


class FormulaEngine:
    """Evaluates payroll formulas against a FormulaEvaluationContext."""

    def __init__(
        self,
        hours_per_day: Optional[int] = None,
        days_per_month: Optional[int] = None,
    ):
        self.hours_per_day = hours_per_day or settings.payroll_hours_per_day
        self.days_per_month = days_per_month or settings.payroll_days_per_month

    # Expression evaluation

    def evaluate(self, expression: str, bindings: Mapping[str, Decimal]) -> Decimal:
        """
        Evaluate expression text at full precision.

        ``bindings`` keys are matched case-insensitively.

        Raises:
            FormulaEvaluationError: on parse failure, unknown identifier,
                division by zero or an invalid operation
        """
        compiled = get_compiled(expression)
        lookup = {name.lower(): value for name, value in bindings.items()}
        return self.evaluate_compiled(compiled, lookup)

    def evaluate_compiled(
        self, compiled: CompiledFormula, lookup: Mapping[str, Decimal]
    ) -> Decimal:
        """Evaluate a parsed formula; ``lookup`` keys must be lower-case."""
        try:
            return self._eval(compiled.expression, lookup)
        except (InvalidOperation, Overflow) as e:
            raise FormulaEvaluationError(f"Invalid operation: {type(e).__name__}")
        except DivisionByZero:
            raise FormulaDivisionByZeroError()

    def _eval(self, node: Node, lookup: Mapping[str, Decimal]) -> Decimal:
        if isinstance(node, Literal):
            return node.value

        if isinstance(node, VariableRef):
            key = node.name.lower()
            if key not in lookup:
                raise UnknownVariableError(node.name)
            return lookup[key]

        if isinstance(node, BinaryOp):
            left = self._eval(node.left, lookup)
            right = self._eval(node.right, lookup)
            return self._binary(node.op, left, right)

        if isinstance(node, UnaryOp):
            operand = self._eval(node.operand, lookup)
            if node.op == "-":
                return -operand
            if node.op == "+":
                return +operand
            return _as_bool(not _truthy(operand))

        if isinstance(node, Comparison):
            left = self._eval(node.left, lookup)
            for op, comparator in zip(node.ops, node.comparators):
                right = self._eval(comparator, lookup)
                if not self._compare(op, left, right):
                    return ZERO
                left = right
            return ONE

        if isinstance(node, BoolOp):
            if node.op == "and":
                for value in node.values:
                    if not _truthy(self._eval(value, lookup)):
                        return ZERO
                return ONE
            for value in node.values:
                if _truthy(self._eval(value, lookup)):
                    return ONE
            return ZERO

        if isinstance(node, Conditional):
            if _truthy(self._eval(node.test, lookup)):
                return self._eval(node.body, lookup)
            return self._eval(node.orelse, lookup)

        if isinstance(node, FunctionCall):
            args = [self._eval(arg, lookup) for arg in node.args]
            return self._call(node.name, args)

        raise FormulaSyntaxError(f"Unsupported node: {type(node).__name__}")

    @staticmethod
    def _binary(op: str, left: Decimal, right: Decimal) -> Decimal:
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if op in ("/", "//", "%"):
            if right == ZERO:
                raise FormulaDivisionByZeroError()
            if op == "/":
                return left / right
            if op == "//":
                return (left / right).to_integral_value(rounding=ROUND_FLOOR)
            return left % right
        if op == "**":
            if abs(right) > MAX_EXPONENT:
                raise FormulaEvaluationError(
                    f"Invalid operation: exponent {right} exceeds {MAX_EXPONENT}"
                )
            if left == ZERO and right < ZERO:
                raise FormulaDivisionByZeroError()
            return left ** right
        raise FormulaSyntaxError(f"Unsupported operator: {op}")

    @staticmethod
    def _compare(op: str, left: Decimal, right: Decimal) -> bool:
        if op == "<":
            return left < right
        if op == "<=":
            return left <= right
        if op == ">":
            return left > right
        if op == ">=":
            return left >= right
        if op == "==":
            return left == right
        return left != right

    @staticmethod
    def _call(name: str, args: List[Decimal]) -> Decimal:
        if name == "min":
            return min(args)
        if name == "max":
            return max(args)
        if name == "abs":
            return abs(args[0])
        if name == "floor":
            return args[0].to_integral_value(rounding=ROUND_FLOOR)
        if name == "ceiling":
            return args[0].to_integral_value(rounding=ROUND_CEILING)
        if name == "round":
            places = args[1] if len(args) > 1 else ZERO
            if places != places.to_integral_value() or not 0 <= places <= MAX_ROUND_PLACES:
                raise FormulaEvaluationError(
                    f"round() places must be a whole number between 0 and {MAX_ROUND_PLACES}"
                )
            exponent = Decimal(1).scaleb(-int(places))
            return args[0].quantize(exponent, rounding=ROUND_HALF_UP)
        raise FormulaSyntaxError(f"Unknown function '{name}'")

    def evaluate_condition(self, condition: str, lookup: Mapping[str, Decimal]) -> bool:
        compiled = get_compiled(condition)
        if compiled.target is not None:
            raise FormulaSyntaxError("Conditions cannot contain an assignment")
        return _truthy(self.evaluate_compiled(compiled, lookup))

    def extract_variables(self, expression: str) -> List[str]:
        """Identifiers an expression references, excluding function names."""
        return list(get_compiled(expression).variables)

    # Formula selection

    @staticmethod
    def scope_specificity(formula) -> int:
        return sum(
            weight
            for attr, weight in SCOPE_WEIGHTS.items()
            if getattr(formula, attr, None) not in (None, "")
        )

    @staticmethod
    def _same_text(left: Optional[str], right: Optional[str]) -> bool:
        if right is None:
            return False
        return left.strip().lower() == right.strip().lower()

    def matches_scope(self, formula, context: FormulaEvaluationContext) -> bool:
        if formula.organization_id is not None and formula.organization_id != context.organization_id:
            return False
        if formula.branch_id is not None and formula.branch_id != context.branch_id:
            return False
        if formula.department and not self._same_text(formula.department, context.department):
            return False
        if formula.designation and not self._same_text(formula.designation, context.designation):
            return False
        return True

    def select_applicable(
        self, context: FormulaEvaluationContext, formulas: Iterable
    ) -> List:
        """
        Formulas that apply to the context, in evaluation order.

        For formulas sharing a result name the most specific scope wins; at
        equal specificity the lower priority number wins, then the lower id.
        """
        best: Dict[str, object] = {}
        for formula in formulas:
            if getattr(formula, "is_active", True) is False:
                continue
            if getattr(formula, "is_deleted", False):
                continue
            if not self.matches_scope(formula, context):
                continue

            key = formula.name.lower()
            current = best.get(key)
            if current is None or self._rank(formula) < self._rank(current):
                best[key] = formula

        return sorted(best.values(), key=self._order)

    def _rank(self, formula):
        return (-self.scope_specificity(formula), formula.priority or 0, formula.id or 0)

    @staticmethod
    def _order(formula):
        return (formula.priority or 0, formula.id or 0, formula.name.lower())

    # Batch evaluation

    def evaluate_all(
        self, context: FormulaEvaluationContext, formulas: Sequence
    ) -> FormulaEvaluationOutcome:
        """
        Evaluate every applicable formula sequentially in priority order.

        Each result becomes a variable for later formulas, and the running
        totals (totalAllowances, totalDeductions, grossSalary, netSalary) are
        refreshed after every formula.
        """
        outcome = FormulaEvaluationOutcome()
        lookup = context.bindings()
        produced = set()
        totals = {"allowances": ZERO, "deductions": ZERO}
        self._refresh_aggregates(lookup, context, totals, produced)

        for formula in self.select_applicable(context, formulas):
            name = formula.name
            try:
                formula_type = PayrollFormulaType(formula.type)
            except ValueError:
                outcome.errors.append(f"{name}: unknown formula type '{formula.type}'")
                continue
            try:
                compiled = get_compiled(formula.formula)
                if compiled.target is not None and compiled.target.lower() != name.lower():
                    raise FormulaSyntaxError(
                        f"Assignment target '{compiled.target}' does not match formula name"
                    )
                if formula.conditions and not self.evaluate_condition(formula.conditions, lookup):
                    outcome.skipped.append(name)
                    logger.debug(f"Formula {name} skipped: condition is false")
                    continue
                value = round_money(self.evaluate_compiled(compiled, lookup))
            except InvalidOperation:
                value = None
            except FormulaEvaluationError as e:
                outcome.errors.append(f"{name}: {e.message}")
                logger.warning(f"Formula {name} failed: {e.message}")
                continue

            if value is None or abs(value) > MAX_AMOUNT:
                outcome.errors.append(f"{name}: result is out of range")
                logger.warning(f"Formula {name} failed: result is out of range")
                continue

            outcome.results.append(
                FormulaResult(
                    name=name,
                    type=formula_type,
                    value=value,
                    formula_id=formula.id,
                    priority=formula.priority or 0,
                )
            )
            logger.debug(f"Formula {name} = {value}")

            key = name.lower()
            if key in lookup and key not in produced:
                outcome.warnings.append(f"{name}: result shadows an existing variable")
            lookup[key] = value
            produced.add(key)

            if formula_type.is_allowance:
                totals["allowances"] += value
            elif formula_type.is_deduction:
                totals["deductions"] += value
            self._refresh_aggregates(lookup, context, totals, produced)

        return outcome

    @staticmethod
    def _refresh_aggregates(lookup, context, totals, produced):
        gross = context.basic_salary + totals["allowances"] + context.overtime_amount
        aggregates = {
            "totalallowances": totals["allowances"],
            "totaldeductions": totals["deductions"],
            "grosssalary": gross,
            "netsalary": gross - totals["deductions"],
        }
        for key, value in aggregates.items():
            if key not in produced:
                lookup[key] = value

    # Overtime

    def calculate_overtime_amount(
        self, overtime_hours: Decimal, basic_salary: Decimal, overtime_rate: Decimal
    ) -> Decimal:
        """basic / (hours_per_day * days_per_month) * hours * rate, 2 dp."""
        hours = Decimal(str(overtime_hours))
        basic = Decimal(str(basic_salary))
        if hours <= ZERO or basic <= ZERO:
            return Decimal("0.00")
        hourly_rate = basic / Decimal(self.hours_per_day * self.days_per_month)
        return round_money(hourly_rate * hours * Decimal(str(overtime_rate)))
