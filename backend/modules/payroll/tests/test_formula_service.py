# backend/modules/payroll/tests/test_formula_service.py

"""
Tests for the formula definition store.
"""

import pytest

from pydantic import ValidationError

from modules.payroll.enums import PayrollFormulaType
from modules.payroll.exceptions import (
    FormulaSyntaxError,
    PayrollNotFoundError,
    PayrollValidationError,
)
from modules.payroll.models import PayrollAuditLog, PayrollFormula
from modules.payroll.schemas.audit_schemas import AuditEventType
from modules.payroll.schemas.error_schemas import PayrollErrorCodes
from modules.payroll.schemas.formula_schemas import (
    CreatePayrollFormulaDto,
    PayrollFormulaUpdate,
)
from modules.payroll.services.formula_service import PayrollFormulaService


@pytest.fixture
def service(db_session):
    return PayrollFormulaService(db_session)


def make_dto(**overrides):
    values = dict(
        name="HRA",
        type=PayrollFormulaType.ALLOWANCE,
        formula="HRA = basicSalary * 0.2",
        priority=1,
    )
    values.update(overrides)
    return CreatePayrollFormulaDto(**values)


class TestValidateFormula:
    def test_builtins_and_aggregates_are_known(self, service):
        result = service.validate_formula("grossSalary * 0.1 + basicSalary - totalDeductions")

        assert result.is_valid
        assert result.undeclared_variables == []

    def test_undeclared_variable(self, service):
        result = service.validate_formula("basicSalary * rate")

        assert not result.is_valid
        assert result.undeclared_variables == ["rate"]

    def test_declared_variable_case_insensitive(self, service):
        assert service.validate_formula("basicSalary * Rate", variables=["rate"]).is_valid

    def test_syntax_error_reported_not_raised(self, service):
        result = service.validate_formula("basicSalary *")

        assert not result.is_valid
        assert result.errors[0].startswith("formula:")

    def test_condition_cannot_assign(self, service):
        result = service.validate_formula("100", conditions="x = 1", variables=["x"])

        assert "conditions: assignment is not allowed" in result.errors

    def test_assignment_target_must_match_name(self, service):
        result = service.validate_formula("DA = basicSalary * 0.1", name="HRA")

        assert not result.is_valid


class TestCreateFormula:
    def test_create_persists_and_audits(self, service, db_session, organization):
        formula = service.create_formula(make_dto(organization_id=organization.id), created_by=7)

        assert formula.id is not None
        assert formula.is_active
        assert formula.organization_id == organization.id

        audit = db_session.query(PayrollAuditLog).filter_by(entity_id=formula.id).one()
        assert audit.event_type == AuditEventType.FORMULA_CREATED
        assert audit.user_id == 7

    def test_branch_scope_fills_organization(self, service, branch):
        formula = service.create_formula(make_dto(branch_id=branch.id))

        assert formula.organization_id == branch.organization_id

    def test_branch_must_belong_to_organization(self, service, branch, organization_factory):
        other = organization_factory(name="Other Co")

        with pytest.raises(PayrollValidationError):
            service.create_formula(make_dto(organization_id=other.id, branch_id=branch.id))

    def test_unknown_branch(self, service):
        with pytest.raises(PayrollNotFoundError):
            service.create_formula(make_dto(branch_id=999))

    def test_syntax_error_names_formula(self, service):
        with pytest.raises(FormulaSyntaxError) as exc_info:
            service.create_formula(make_dto(formula="basicSalary * ("))

        assert exc_info.value.details[0].field == "HRA"

    def test_undeclared_variable_rejected(self, service, db_session):
        with pytest.raises(PayrollValidationError) as exc_info:
            service.create_formula(make_dto(formula="basicSalary * rate"))

        assert exc_info.value.code == PayrollErrorCodes.FORMULA_UNKNOWN_VARIABLE
        assert db_session.query(PayrollFormula).count() == 0

    def test_mismatched_target_rejected(self, service):
        with pytest.raises(FormulaSyntaxError):
            service.create_formula(make_dto(formula="DA = basicSalary * 0.1"))

    def test_invalid_name_rejected_by_schema(self):
        with pytest.raises(ValidationError):
            make_dto(name="House Rent")

    def test_variables_deduplicated(self):
        dto = make_dto(formula="basicSalary * rate", variables=["rate", "Rate", "bonus"])

        assert dto.variables == ["rate", "bonus"]


class TestUpdateAndDeactivate:
    def test_update_revalidates(self, service):
        formula = service.create_formula(make_dto())

        with pytest.raises(PayrollValidationError):
            service.update_formula(formula.id, PayrollFormulaUpdate(formula="basicSalary * x"))

        updated = service.update_formula(
            formula.id, PayrollFormulaUpdate(formula="basicSalary * x", variables=["x"])
        )
        assert updated.formula == "basicSalary * x"
        assert updated.variables == ["x"]

    def test_deactivate_hides_formula(self, service):
        formula = service.create_formula(make_dto())

        service.deactivate_formula(formula.id, deactivated_by=3)

        with pytest.raises(PayrollNotFoundError):
            service.get_formula(formula.id)
        assert service.list_formulas(include_inactive=True) == []


class TestLookup:
    def test_list_orders_by_priority(self, service):
        service.create_formula(make_dto(name="Late", formula="1", priority=50))
        service.create_formula(make_dto(name="Early", formula="2", priority=5))

        assert [f.name for f in service.list_formulas()] == ["Early", "Late"]

    def test_formulas_for_employee_respect_scope(
        self, service, formula_factory, employee, branch, branch_factory, organization
    ):
        other_branch = branch_factory(organization, name="Remote")
        formula_factory("OrgWide", "1")
        formula_factory("BranchOnly", "1", branch_id=branch.id)
        formula_factory("OtherBranch", "1", branch_id=other_branch.id)
        formula_factory("Engineers", "1", department="engineering")
        formula_factory("Sales", "1", department="Sales")
        formula_factory("Off", "1", is_active=False)

        names = {f.name for f in service.get_formulas_for_employee(employee)}

        assert names == {"OrgWide", "BranchOnly", "Engineers"}
