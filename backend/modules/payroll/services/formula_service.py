# backend/modules/payroll/services/formula_service.py

"""
Formula definition store.

Formulas are parsed when they are registered; the parsed tree is cached by
expression text so calculations reuse it instead of parsing again.
"""

import logging
from typing import List, Optional, Sequence

from sqlalchemy import or_
from sqlalchemy.orm import Session

from core.mixins import not_deleted, stamp_audit_fields
from ..exceptions import (
    FormulaSyntaxError,
    PayrollNotFoundError,
    PayrollValidationError,
)
from ..models.organization_models import Branch, Employee
from ..models.payroll_models import PayrollFormula
from ..schemas.audit_schemas import AuditEventType
from ..schemas.error_schemas import ErrorDetail, PayrollErrorCodes
from ..schemas.formula_schemas import (
    CreatePayrollFormulaDto,
    PayrollFormulaUpdate,
    FormulaValidationResult,
)
from .audit_service import PayrollAuditService
from .evaluation_context import BUILTIN_VARIABLES, AGGREGATE_VARIABLES
from .formula_parser import get_compiled

logger = logging.getLogger(__name__)

KNOWN_VARIABLES = frozenset(
    name.lower() for name in list(BUILTIN_VARIABLES) + list(AGGREGATE_VARIABLES)
)


class PayrollFormulaService:
    """Registers, validates and looks up payroll formulas"""

    def __init__(self, db: Session):
        self.db = db
        self.audit = PayrollAuditService(db)

    def validate_formula(
        self,
        formula: str,
        variables: Sequence[str] = (),
        conditions: Optional[str] = None,
        name: Optional[str] = None,
    ) -> FormulaValidationResult:
        """
        Check an expression (and optional condition) without persisting.

        Every identifier must be a built-in, a running total or one of the
        declared ``variables``.
        """
        errors = []
        referenced = []

        for label, text in (("formula", formula), ("conditions", conditions)):
            if not text:
                continue
            try:
                compiled = get_compiled(text)
            except FormulaSyntaxError as e:
                errors.append(f"{label}: {e.message}")
                continue

            if compiled.target is not None:
                if label == "conditions":
                    errors.append("conditions: assignment is not allowed")
                elif name and compiled.target.lower() != name.lower():
                    errors.append(
                        f"formula: assignment target '{compiled.target}' "
                        f"does not match formula name '{name}'"
                    )
            for var in compiled.variables:
                if var not in referenced:
                    referenced.append(var)

        declared = {v.lower() for v in variables}
        undeclared = [
            var for var in referenced
            if var.lower() not in declared and var.lower() not in KNOWN_VARIABLES
        ]
        for var in undeclared:
            errors.append(f"Variable '{var}' is not declared")

        return FormulaValidationResult(
            is_valid=not errors,
            referenced_variables=referenced,
            undeclared_variables=undeclared,
            errors=errors,
        )

    def _ensure_valid(self, name, formula, variables, conditions):
        try:
            compiled = get_compiled(formula)
            if conditions:
                get_compiled(conditions)
        except FormulaSyntaxError as e:
            raise FormulaSyntaxError(e.message, formula_name=name)

        if compiled.target is not None and compiled.target.lower() != name.lower():
            raise FormulaSyntaxError(
                f"Assignment target '{compiled.target}' does not match formula name",
                formula_name=name,
            )

        result = self.validate_formula(formula, variables, conditions, name)
        if result.is_valid:
            return compiled
        raise PayrollValidationError(
            f"Formula {name} is invalid: {'; '.join(result.errors)}",
            details=[
                ErrorDetail(field="formula", message=error, code="INVALID_FORMULA")
                for error in result.errors
            ],
            code=(
                PayrollErrorCodes.FORMULA_UNKNOWN_VARIABLE
                if result.undeclared_variables
                else PayrollErrorCodes.VALIDATION_ERROR
            ),
        )

    def _check_scope(self, organization_id, branch_id):
        if branch_id is None:
            return organization_id
        branch = self.db.query(Branch).filter(Branch.id == branch_id).first()
        if not branch:
            raise PayrollNotFoundError("Branch", branch_id)
        if organization_id is not None and branch.organization_id != organization_id:
            raise PayrollValidationError(
                f"Branch {branch_id} does not belong to organization {organization_id}",
                field="branch_id",
            )
        return branch.organization_id

    def create_formula(
        self, dto: CreatePayrollFormulaDto, created_by: Optional[int] = None
    ) -> PayrollFormula:
        compiled = self._ensure_valid(dto.name, dto.formula, dto.variables, dto.conditions)
        organization_id = self._check_scope(dto.organization_id, dto.branch_id)

        formula = PayrollFormula(
            name=dto.name,
            description=dto.description,
            type=dto.type,
            formula=compiled.source,
            variables=list(dto.variables),
            priority=dto.priority,
            conditions=dto.conditions,
            organization_id=organization_id,
            branch_id=dto.branch_id,
            department=dto.department,
            designation=dto.designation,
            is_active=dto.is_active,
            is_deleted=False,
            created_by=created_by,
        )
        stamp_audit_fields(formula)
        self.db.add(formula)
        self.db.flush()
        self.audit.log_event(
            AuditEventType.FORMULA_CREATED,
            entity_type="payroll_formula",
            entity_id=formula.id,
            action=f"Created formula {formula.name}",
            user_id=created_by,
            new_values={"formula": formula.formula, "priority": formula.priority},
        )
        self.db.commit()
        self.db.refresh(formula)

        logger.info(f"Created payroll formula {formula.name} (id={formula.id})")
        return formula

    def get_formula(self, formula_id: int) -> PayrollFormula:
        formula = (
            self.db.query(PayrollFormula)
            .filter(PayrollFormula.id == formula_id, not_deleted(PayrollFormula))
            .first()
        )
        if not formula:
            raise PayrollNotFoundError("PayrollFormula", formula_id)
        return formula

    def update_formula(
        self,
        formula_id: int,
        update: PayrollFormulaUpdate,
        updated_by: Optional[int] = None,
    ) -> PayrollFormula:
        formula = self.get_formula(formula_id)
        changes = update.model_dump(exclude_unset=True)

        new_formula = changes.get("formula", formula.formula)
        new_variables = changes.get("variables", formula.variables or [])
        new_conditions = changes.get("conditions", formula.conditions)
        self._ensure_valid(formula.name, new_formula, new_variables, new_conditions)

        old_values = {key: getattr(formula, key) for key in changes}
        for key, value in changes.items():
            setattr(formula, key, value)
        stamp_audit_fields(formula)

        self.audit.log_event(
            AuditEventType.FORMULA_UPDATED,
            entity_type="payroll_formula",
            entity_id=formula.id,
            action=f"Updated formula {formula.name}",
            user_id=updated_by,
            old_values=old_values,
            new_values=changes,
        )
        self.db.commit()
        self.db.refresh(formula)
        logger.info(f"Updated payroll formula {formula.name}: {sorted(changes)}")
        return formula

    def deactivate_formula(
        self, formula_id: int, deactivated_by: Optional[int] = None
    ) -> PayrollFormula:
        formula = self.get_formula(formula_id)
        formula.is_active = False
        formula.mark_deleted()
        stamp_audit_fields(formula, formula.deleted_at)
        self.audit.log_event(
            AuditEventType.FORMULA_DEACTIVATED,
            entity_type="payroll_formula",
            entity_id=formula.id,
            action=f"Deactivated formula {formula.name}",
            user_id=deactivated_by,
        )
        self.db.commit()
        logger.info(f"Deactivated payroll formula {formula.name}")
        return formula

    def list_formulas(
        self,
        organization_id: Optional[int] = None,
        branch_id: Optional[int] = None,
        include_inactive: bool = False,
    ) -> List[PayrollFormula]:
        query = self.db.query(PayrollFormula).filter(not_deleted(PayrollFormula))
        if not include_inactive:
            query = query.filter(PayrollFormula.is_active.is_(True))
        if organization_id is not None:
            query = query.filter(PayrollFormula.organization_id == organization_id)
        if branch_id is not None:
            query = query.filter(PayrollFormula.branch_id == branch_id)
        return query.order_by(PayrollFormula.priority, PayrollFormula.id).all()

    def get_formulas_for_employee(self, employee: Employee) -> List[PayrollFormula]:
        """Active formulas whose scope matches the employee or is broader."""
        branch = employee.branch
        organization_id = branch.organization_id if branch else None

        candidates = (
            self.db.query(PayrollFormula)
            .filter(
                not_deleted(PayrollFormula),
                PayrollFormula.is_active.is_(True),
                or_(
                    PayrollFormula.organization_id.is_(None),
                    PayrollFormula.organization_id == organization_id,
                ),
                or_(
                    PayrollFormula.branch_id.is_(None),
                    PayrollFormula.branch_id == employee.branch_id,
                ),
            )
            .order_by(PayrollFormula.priority, PayrollFormula.id)
            .all()
        )

        # Department and designation match case-insensitively
        return [
            f for f in candidates
            if (not f.department or (employee.department or "").strip().lower()
                == f.department.strip().lower())
            and (not f.designation or (employee.designation or "").strip().lower()
                 == f.designation.strip().lower())
        ]
