# sitebudget/services/budget_ledger.py
import io
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import pandas as pd

from sitebudget.config import LedgerPolicy
from sitebudget.db.enums import CompletionStatus
from sitebudget.models.wbs_element import WBSElement

ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass
class WBSSummary:
    wbs_id: str
    wbs_code: str
    wbs_name: str
    total_budget: Decimal
    total_actual: Decimal
    total_commitments: Decimal
    total_variance: Decimal
    variance_percentage: Decimal
    budget_utilization: Decimal
    overall_progress: Decimal
    child_count: int
    completed_child_count: int
    total_rab_items: int
    total_tasks: int
    completion_status: str


@dataclass
class LevelRollup:
    level: int
    elements: List[WBSElement] = field(default_factory=list)
    total_budget: Decimal = ZERO
    total_actual: Decimal = ZERO
    total_commitments: Decimal = ZERO
    total_variance: Decimal = ZERO


def _d(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value or 0))


class BudgetLedger:
    """
    Read-side budget math over WBS elements: completion classification,
    subtree rollups, budget-weighted progress and per-level slices.
    Pure computation, no database access.
    """

    def __init__(self, policy: Optional[LedgerPolicy] = None):
        self.policy = policy or LedgerPolicy()

    def classify(self, status: Optional[str], variance_percentage) -> str:
        '''
        Completed short-circuits; otherwise the variance percentage decides.
        '''
        if status == CompletionStatus.completed.value:
            return CompletionStatus.completed.value
        pct = _d(variance_percentage)
        if pct <= self.policy.over_budget_pct:
            return CompletionStatus.over_budget.value
        if pct <= self.policy.at_risk_pct:
            return CompletionStatus.at_risk.value
        return self.policy.default_completion_label

    def completion_status(self, element: WBSElement) -> str:
        return self.classify(element.status, element.variance_percentage)

    def weighted_progress(self, elements: Iterable[WBSElement]) -> Decimal:
        '''
        Budget-weighted average progress: sum(progress * budget) / sum(budget), 0 when no budget.
        '''
        weighted = ZERO
        total_budget = ZERO
        for element in elements:
            budget = _d(element.budget_amount)
            weighted += _d(element.progress) * budget
            total_budget += budget
        if total_budget == 0:
            return ZERO
        return weighted / total_budget

    def rollup(self, element: WBSElement, descendants: List[WBSElement]) -> WBSSummary:
        '''
        Roll up a node and all of its descendants.

        :param element: subtree root
        :param descendants: every descendant (not including the root itself)
        '''
        members = [element] + list(descendants)

        total_budget = sum((_d(e.budget_amount) for e in members), ZERO)
        total_actual = sum((_d(e.actual_amount) for e in members), ZERO)
        total_commitments = sum((_d(e.commitments) for e in members), ZERO)
        total_variance = total_budget - (total_actual + total_commitments)

        if total_budget > 0:
            variance_percentage = total_variance / total_budget * HUNDRED
            budget_utilization = (total_actual + total_commitments) / total_budget * HUNDRED
        else:
            variance_percentage = ZERO
            budget_utilization = ZERO

        return WBSSummary(
            wbs_id=element.id,
            wbs_code=element.code,
            wbs_name=element.name,
            total_budget=total_budget,
            total_actual=total_actual,
            total_commitments=total_commitments,
            total_variance=total_variance,
            variance_percentage=variance_percentage,
            budget_utilization=budget_utilization,
            overall_progress=self.weighted_progress(members),
            child_count=len(descendants),
            completed_child_count=sum(
                1 for d in descendants if d.status == CompletionStatus.completed.value
            ),
            total_rab_items=sum(int(e.rab_item_count or 0) for e in members),
            total_tasks=sum(int(e.task_count or 0) for e in members),
            completion_status=self.classify(element.status, variance_percentage),
        )

    def rollup_by_level(self, elements: Iterable[WBSElement]) -> List[LevelRollup]:
        '''
        Group elements by level. Each level is an independent slice, not cumulative.
        '''
        by_level: Dict[int, LevelRollup] = {}
        for element in sorted(elements, key=lambda e: (e.level, e.code or "")):
            rollup = by_level.setdefault(element.level, LevelRollup(level=element.level))
            rollup.elements.append(element)
            rollup.total_budget += _d(element.budget_amount)
            rollup.total_actual += _d(element.actual_amount)
            rollup.total_commitments += _d(element.commitments)
            rollup.total_variance += _d(element.variance)
        return [by_level[level] for level in sorted(by_level)]

    def level_rollup_frame(self, rollups: List[LevelRollup]) -> pd.DataFrame:
        '''One row per element plus a subtotal row per level.'''
        rows = []
        for rollup in rollups:
            for e in rollup.elements:
                rows.append({
                    "Level": rollup.level,
                    "Code": e.code,
                    "Name": e.name,
                    "Budget": float(_d(e.budget_amount)),
                    "Actual": float(_d(e.actual_amount)),
                    "Commitments": float(_d(e.commitments)),
                    "Variance": float(_d(e.variance)),
                    "Variance %": round(float(_d(e.variance_percentage)), 2),
                    "Progress": float(_d(e.progress)),
                    "Status": self.completion_status(e),
                })
            rows.append({
                "Level": rollup.level,
                "Code": "",
                "Name": f"Level {rollup.level} total",
                "Budget": float(rollup.total_budget),
                "Actual": float(rollup.total_actual),
                "Commitments": float(rollup.total_commitments),
                "Variance": float(rollup.total_variance),
                "Variance %": None,
                "Progress": None,
                "Status": "",
            })
        return pd.DataFrame(rows, columns=[
            "Level", "Code", "Name", "Budget", "Actual", "Commitments",
            "Variance", "Variance %", "Progress", "Status",
        ])

    def export_level_rollup(self, rollups: List[LevelRollup]) -> io.BytesIO:
        '''Write the level rollup into an in-memory xlsx workbook.'''
        df = self.level_rollup_frame(rollups)
        output = io.BytesIO()
        with pd.ExcelWriter(output, engine="openpyxl") as writer:
            df.to_excel(writer, index=False, sheet_name="WBS by level")
        output.seek(0)
        return output
