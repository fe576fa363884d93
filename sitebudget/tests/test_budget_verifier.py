# sitebudget/tests/test_budget_verifier.py
from decimal import Decimal

import pytest

from sitebudget.config import LedgerPolicy
from sitebudget.db.enums import BudgetCheckStatus, WBSCodeStatus
from sitebudget.models.material_request import MaterialRequestItem
from sitebudget.services.budget_verifier import BudgetVerifier
from sitebudget.tests.fakes import PROJECT_ID


def item(wbs_code, quantity, price):
    return MaterialRequestItem(
        material_name="m", unit="pcs", wbs_code=wbs_code,
        quantity=Decimal(quantity), estimated_unit_price=Decimal(price),
    )


@pytest.fixture
def funded(make_node):
    # available budgets: 1.1 -> 10000, 1.2 -> 1100, 1.3 -> 500
    root = make_node("1", budget="0")
    make_node("1.1", parent=root, budget="12000", actual="1000", commitments="1000")
    make_node("1.2", parent=root, budget="1100")
    make_node("1.3", parent=root, budget="500")


@pytest.fixture
def verifier(db):
    return BudgetVerifier(db)


def test_no_wbs_codes_needs_reallocation(verifier):
    result = verifier.verify(PROJECT_ID, [item(None, "1", "10")])
    assert result.status == BudgetCheckStatus.needs_reallocation
    assert result.breakdown == []
    assert result.total_required == Decimal("10")


def test_all_sufficient(funded, verifier):
    result = verifier.verify(PROJECT_ID, [item("1.1", "2", "1000"), item("1.1", "1", "500")])
    assert result.status == BudgetCheckStatus.sufficient
    assert result.total_required == Decimal("2500")
    assert result.breakdown[0].status == WBSCodeStatus.sufficient
    assert result.breakdown[0].available == Decimal("10000")


def test_total_required_includes_uncoded_items(funded, verifier):
    result = verifier.verify(PROJECT_ID, [item("1.1", "2", "1000"), item(None, "3", "100")])
    assert result.status == BudgetCheckStatus.sufficient
    assert result.total_required == Decimal("2300")
    assert [b.required for b in result.breakdown] == [Decimal("2000")]


def test_only_tight_needs_reallocation(funded, verifier):
    # 1000 required, 1100 available < 1200
    result = verifier.verify(PROJECT_ID, [item("1.2", "1", "1000")])
    assert result.status == BudgetCheckStatus.needs_reallocation
    assert result.breakdown[0].status == WBSCodeStatus.tight


def test_insufficient_and_tight_is_insufficient(funded, verifier):
    result = verifier.verify(PROJECT_ID, [item("1.2", "1", "1000"), item("1.3", "1", "600")])
    assert result.status == BudgetCheckStatus.insufficient
    assert [b.status for b in result.breakdown] == [WBSCodeStatus.tight, WBSCodeStatus.insufficient]
    assert "1.3" in result.message


def test_unknown_code_is_insufficient(funded, verifier):
    result = verifier.verify(PROJECT_ID, [item("1.1", "1", "10"), item("9.9", "1", "10")])
    assert result.status == BudgetCheckStatus.insufficient
    assert result.breakdown[1].status == WBSCodeStatus.not_found


def test_available_is_node_variance_not_subtree(funded, verifier):
    # root "1" has zero own budget even though its children are funded
    result = verifier.verify(PROJECT_ID, [item("1", "1", "1")])
    assert result.status == BudgetCheckStatus.insufficient


def test_tight_factor_comes_from_policy(funded, db):
    verifier = BudgetVerifier(db, LedgerPolicy(tight_factor=Decimal("1.05")))
    result = verifier.verify(PROJECT_ID, [item("1.2", "1", "1000")])
    assert result.status == BudgetCheckStatus.sufficient


def test_verifier_does_not_write(funded, verifier, db, node_service):
    before = {e.code: (e.available_budget, e.version) for e in node_service.list_elements(PROJECT_ID)}
    verifier.verify(PROJECT_ID, [item("1.1", "100", "1000")])
    after = {e.code: (e.available_budget, e.version) for e in node_service.list_elements(PROJECT_ID)}
    assert before == after
    assert not db.dirty
