# sitebudget/tests/test_budget_ledger.py
from decimal import Decimal

import pandas as pd
import pytest

from sitebudget.config import LedgerPolicy
from sitebudget.models.wbs_element import WBSElement
from sitebudget.services.budget_ledger import BudgetLedger


def node(id, code, level, budget, actual, commitments, progress="0", status="In Progress", rab=0, tasks=0):
    element = WBSElement(
        id=id, project_id="p", code=code, name=code, level=level,
        budget_amount=Decimal(budget), actual_amount=Decimal(actual),
        commitments=Decimal(commitments), progress=Decimal(progress),
        status=status, rab_item_count=rab, task_count=tasks,
    )
    element.recompute_derived()
    return element


@pytest.fixture
def subtree():
    root = node("r", "1", 1, "300000", "80000", "30000", progress="40", rab=2, tasks=3)
    child_a = node("a", "1.1", 2, "100000", "50000", "10000", progress="60", status="Completed", rab=1)
    child_b = node("b", "1.2", 2, "200000", "30000", "20000", progress="25", tasks=4)
    return root, [child_a, child_b]


def test_rollup_totals(subtree):
    root, descendants = subtree
    summary = BudgetLedger().rollup(root, descendants)

    assert summary.total_budget == Decimal("600000")
    assert summary.total_actual == Decimal("160000")
    assert summary.total_commitments == Decimal("60000")
    assert summary.total_variance == Decimal("380000")
    assert summary.child_count == 2
    assert summary.completed_child_count == 1
    assert summary.total_rab_items == 3
    assert summary.total_tasks == 7


def test_weighted_progress(subtree):
    root, descendants = subtree
    summary = BudgetLedger().rollup(root, descendants)
    assert float(summary.overall_progress) == pytest.approx(38.33, abs=0.01)


def test_weighted_progress_without_budget_is_zero():
    elements = [node("x", "1", 1, "0", "0", "0", progress="80")]
    assert BudgetLedger().weighted_progress(elements) == Decimal("0")


def test_zero_budget_rollup_has_no_percentages():
    root = node("x", "1", 1, "0", "10", "0")
    summary = BudgetLedger().rollup(root, [])
    assert summary.variance_percentage == Decimal("0")
    assert summary.budget_utilization == Decimal("0")


@pytest.mark.parametrize("status,pct,expected", [
    ("Completed", "-50", "Completed"),
    ("In Progress", "-10", "Over Budget"),
    ("In Progress", "-25", "Over Budget"),
    ("In Progress", "-9.99", "At Risk"),
    ("In Progress", "-5", "At Risk"),
    ("In Progress", "-4.99", "On Track"),
    ("Not Started", "30", "On Track"),
])
def test_classify_thresholds(status, pct, expected):
    assert BudgetLedger().classify(status, Decimal(pct)) == expected


def test_policy_overrides_thresholds_and_label():
    ledger = BudgetLedger(LedgerPolicy(over_budget_pct=Decimal("-20"), default_completion_label="Healthy"))
    assert ledger.classify("In Progress", Decimal("-15")) == "At Risk"
    assert ledger.classify("In Progress", Decimal("0")) == "Healthy"


def test_rollup_by_level_is_per_level_not_cumulative(subtree):
    root, descendants = subtree
    rollups = BudgetLedger().rollup_by_level([descendants[1], root, descendants[0]])

    assert [r.level for r in rollups] == [1, 2]
    assert rollups[0].total_budget == Decimal("300000")
    assert rollups[1].total_budget == Decimal("300000")
    assert rollups[1].total_actual == Decimal("80000")
    assert rollups[1].total_commitments == Decimal("30000")
    assert [e.code for e in rollups[1].elements] == ["1.1", "1.2"]


def test_export_level_rollup_writes_workbook(subtree):
    root, descendants = subtree
    ledger = BudgetLedger()
    output = ledger.export_level_rollup(ledger.rollup_by_level([root] + descendants))

    df = pd.read_excel(output, sheet_name="WBS by level")
    assert list(df.columns)[:3] == ["Level", "Code", "Name"]
    # 3 element rows + 2 subtotal rows
    assert len(df) == 5
    assert df.loc[df["Name"] == "Level 2 total", "Budget"].iloc[0] == 300000
