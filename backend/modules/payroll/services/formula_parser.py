# backend/modules/payroll/services/formula_parser.py

"""
Formula expression parser.

Formula text is parsed once with Python's ``ast`` module and converted into
a small tree of immutable nodes. Only a safe arithmetic subset is accepted:

- decimal literals, identifiers, ``+ - * / // % **`` and unary ``+ -``
- comparisons (``<``, ``<=``, ``>``, ``>=``, ``==``, ``!=``), chains allowed
- ``and``, ``or``, ``not``
- ``a if condition else b``
- ``min``, ``max``, ``abs``, ``round``, ``floor``, ``ceiling``

A formula may be written as an assignment (``HRA = basicSalary * 0.2``); the
target name is kept on the compiled formula so callers can check it against
the formula's registered name.
"""

import ast
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Optional, Tuple, Union

from ..exceptions import FormulaSyntaxError

logger = logging.getLogger(__name__)

MAX_FORMULA_LENGTH = 2000
# Deepest operator nesting a formula may use; evaluation recurses once per level
MAX_NESTING_DEPTH = 100

# name -> (min args, max args); None means unbounded
FUNCTIONS = {
    "min": (1, None),
    "max": (1, None),
    "abs": (1, 1),
    "round": (1, 2),
    "floor": (1, 1),
    "ceiling": (1, 1),
}

# Accepted aliases, resolved to the canonical names above
FUNCTION_ALIASES = {
    "ceil": "ceiling",
}

_BINARY_OPS = {
    ast.Add: "+",
    ast.Sub: "-",
    ast.Mult: "*",
    ast.Div: "/",
    ast.FloorDiv: "//",
    ast.Mod: "%",
    ast.Pow: "**",
}

_UNARY_OPS = {
    ast.UAdd: "+",
    ast.USub: "-",
    ast.Not: "not",
}

_COMPARE_OPS = {
    ast.Lt: "<",
    ast.LtE: "<=",
    ast.Gt: ">",
    ast.GtE: ">=",
    ast.Eq: "==",
    ast.NotEq: "!=",
}

_BOOL_OPS = {
    ast.And: "and",
    ast.Or: "or",
}


@dataclass(frozen=True)
class Literal:
    value: Decimal


@dataclass(frozen=True)
class VariableRef:
    name: str


@dataclass(frozen=True)
class BinaryOp:
    op: str
    left: "Node"
    right: "Node"


@dataclass(frozen=True)
class UnaryOp:
    op: str
    operand: "Node"


@dataclass(frozen=True)
class Comparison:
    left: "Node"
    ops: Tuple[str, ...]
    comparators: Tuple["Node", ...]


@dataclass(frozen=True)
class BoolOp:
    op: str
    values: Tuple["Node", ...]


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: Tuple["Node", ...]


@dataclass(frozen=True)
class Conditional:
    test: "Node"
    body: "Node"
    orelse: "Node"


Node = Union[
    Literal, VariableRef, BinaryOp, UnaryOp, Comparison, BoolOp, FunctionCall, Conditional
]


@dataclass(frozen=True)
class CompiledFormula:
    """Parsed formula, safe to share between calculations"""

    source: str
    expression: Node
    target: Optional[str] = None
    variables: Tuple[str, ...] = ()


class _TreeBuilder:
    """Converts a Python ``ast`` expression into formula nodes."""

    def __init__(self, source: str):
        self.source = source
        self.variables = []
        self.depth = 0

    def build(self, node: ast.AST) -> Node:
        self.depth += 1
        if self.depth > MAX_NESTING_DEPTH:
            raise FormulaSyntaxError(
                f"Formula is nested too deeply (limit {MAX_NESTING_DEPTH} levels)"
            )
        try:
            return self._build(node)
        finally:
            self.depth -= 1

    def _build(self, node: ast.AST) -> Node:
        if isinstance(node, ast.Constant):
            return self._literal(node)

        if isinstance(node, ast.Name):
            if node.id not in self.variables:
                self.variables.append(node.id)
            return VariableRef(node.id)

        if isinstance(node, ast.BinOp):
            op = _BINARY_OPS.get(type(node.op))
            if op is None:
                raise FormulaSyntaxError(f"Unsupported operator: {type(node.op).__name__}")
            return BinaryOp(op, self.build(node.left), self.build(node.right))

        if isinstance(node, ast.UnaryOp):
            op = _UNARY_OPS.get(type(node.op))
            if op is None:
                raise FormulaSyntaxError(f"Unsupported operator: {type(node.op).__name__}")
            return UnaryOp(op, self.build(node.operand))

        if isinstance(node, ast.Compare):
            ops = []
            for op_node in node.ops:
                op = _COMPARE_OPS.get(type(op_node))
                if op is None:
                    raise FormulaSyntaxError(
                        f"Unsupported comparison: {type(op_node).__name__}"
                    )
                ops.append(op)
            return Comparison(
                self.build(node.left),
                tuple(ops),
                tuple(self.build(c) for c in node.comparators),
            )

        if isinstance(node, ast.BoolOp):
            return BoolOp(
                _BOOL_OPS[type(node.op)], tuple(self.build(v) for v in node.values)
            )

        if isinstance(node, ast.IfExp):
            return Conditional(
                self.build(node.test), self.build(node.body), self.build(node.orelse)
            )

        if isinstance(node, ast.Call):
            return self._call(node)

        raise FormulaSyntaxError(f"Unsupported syntax: {type(node).__name__}")

    def _literal(self, node: ast.Constant) -> Literal:
        value = node.value
        if isinstance(value, bool):
            return Literal(Decimal(1) if value else Decimal(0))
        if isinstance(value, (int, float)):
            # Use the source text so 0.1 stays exactly 0.1
            text = ast.get_source_segment(self.source, node) or repr(value)
            try:
                return Literal(Decimal(text))
            except InvalidOperation:
                raise FormulaSyntaxError(f"Invalid number: {text}")
        raise FormulaSyntaxError(f"Unsupported literal: {value!r}")

    def _call(self, node: ast.Call) -> FunctionCall:
        if not isinstance(node.func, ast.Name):
            raise FormulaSyntaxError("Only plain function calls are allowed")
        name = node.func.id.lower()
        name = FUNCTION_ALIASES.get(name, name)
        if name not in FUNCTIONS:
            raise FormulaSyntaxError(f"Unknown function '{node.func.id}'")
        if node.keywords:
            raise FormulaSyntaxError(f"Function '{name}' does not accept keyword arguments")

        min_args, max_args = FUNCTIONS[name]
        count = len(node.args)
        if count < min_args or (max_args is not None and count > max_args):
            raise FormulaSyntaxError(
                f"Function '{name}' takes {min_args if min_args == max_args else f'{min_args}+'}"
                f" argument(s), got {count}"
            )
        return FunctionCall(name, tuple(self.build(arg) for arg in node.args))


def parse_formula(text: str) -> CompiledFormula:
    """
    Parse formula text into a ``CompiledFormula``.

    Raises:
        FormulaSyntaxError: if the text is empty, malformed or uses syntax
            outside the supported subset
    """
    if text is None or not text.strip():
        raise FormulaSyntaxError("Formula is empty")
    source = text.strip()
    if len(source) > MAX_FORMULA_LENGTH:
        raise FormulaSyntaxError(
            f"Formula exceeds maximum length of {MAX_FORMULA_LENGTH} characters"
        )

    try:
        module = ast.parse(source, mode="exec")
    except SyntaxError as e:
        raise FormulaSyntaxError(f"Invalid syntax: {e.msg}")
    except (RecursionError, MemoryError):
        raise FormulaSyntaxError("Formula is nested too deeply")

    if len(module.body) != 1:
        raise FormulaSyntaxError("Formula must be a single expression")

    statement = module.body[0]
    target = None
    if isinstance(statement, ast.Assign):
        if len(statement.targets) != 1 or not isinstance(statement.targets[0], ast.Name):
            raise FormulaSyntaxError("Assignment target must be a single name")
        target = statement.targets[0].id
        value = statement.value
    elif isinstance(statement, ast.Expr):
        value = statement.value
    else:
        raise FormulaSyntaxError(f"Unsupported statement: {type(statement).__name__}")

    builder = _TreeBuilder(source)
    expression = builder.build(value)
    return CompiledFormula(
        source=source,
        expression=expression,
        target=target,
        variables=tuple(builder.variables),
    )


@lru_cache(maxsize=1024)
def get_compiled(text: str) -> CompiledFormula:
    """Cached ``parse_formula``; failures are not cached."""
    compiled = parse_formula(text)
    logger.debug(f"Compiled formula: {compiled.source}")
    return compiled


def extract_variables(text: str) -> Tuple[str, ...]:
    """Identifiers referenced by the formula, in order of first use."""
    return get_compiled(text).variables
