# backend/modules/payroll/schemas/formula_schemas.py

"""
Schemas for payroll formula definitions.
"""

import re
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Optional, List, Dict
from datetime import datetime
from decimal import Decimal

from ..enums import PayrollFormulaType

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _check_identifier(value: str) -> str:
    value = value.strip()
    if not _IDENTIFIER.match(value):
        raise ValueError(
            f"'{value}' is not a valid identifier (letters, digits and underscore)"
        )
    return value


class CreatePayrollFormulaDto(BaseModel):
    """Request model for registering a payroll formula"""

    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    type: PayrollFormulaType
    formula: str = Field(..., min_length=1, description="Expression text, e.g. basicSalary * 0.2")
    variables: List[str] = Field(default_factory=list, description="Declared variable names")
    priority: int = Field(100, ge=0, description="Lower number is evaluated first")
    conditions: Optional[str] = Field(None, description="Optional predicate expression")
    organization_id: Optional[int] = None
    branch_id: Optional[int] = None
    department: Optional[str] = Field(None, max_length=100)
    designation: Optional[str] = Field(None, max_length=100)
    is_active: bool = True

    @field_validator("name")
    def validate_name(cls, v):
        return _check_identifier(v)

    @field_validator("variables")
    def validate_variables(cls, v):
        seen = set()
        ordered = []
        for name in v:
            name = _check_identifier(name)
            if name.lower() not in seen:
                seen.add(name.lower())
                ordered.append(name)
        return ordered

    @field_validator("conditions")
    def blank_conditions_are_none(cls, v):
        if v is not None and not v.strip():
            return None
        return v


class PayrollFormulaUpdate(BaseModel):
    """Partial update; fields left out are unchanged"""

    description: Optional[str] = None
    formula: Optional[str] = Field(None, min_length=1)
    variables: Optional[List[str]] = None
    priority: Optional[int] = Field(None, ge=0)
    conditions: Optional[str] = None
    department: Optional[str] = Field(None, max_length=100)
    designation: Optional[str] = Field(None, max_length=100)
    is_active: Optional[bool] = None

    @field_validator("variables")
    def validate_variables(cls, v):
        if v is None:
            return v
        return [_check_identifier(name) for name in v]


class PayrollFormulaResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    type: PayrollFormulaType
    formula: str
    variables: List[str]
    priority: int
    conditions: Optional[str] = None
    organization_id: Optional[int] = None
    branch_id: Optional[int] = None
    department: Optional[str] = None
    designation: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class FormulaValidationRequest(BaseModel):
    formula: str = Field(..., min_length=1)
    variables: List[str] = Field(default_factory=list)
    conditions: Optional[str] = None
    name: Optional[str] = None


class FormulaValidationResult(BaseModel):
    """Outcome of validating an expression without persisting it"""

    is_valid: bool
    referenced_variables: List[str] = Field(default_factory=list)
    undeclared_variables: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class FormulaEvaluationRequest(BaseModel):
    """Preview a single expression against explicit bindings"""

    formula: str = Field(..., min_length=1)
    bindings: Dict[str, Decimal] = Field(default_factory=dict)


class FormulaEvaluationResponse(BaseModel):
    formula: str
    value: Decimal
    rounded_value: Decimal
