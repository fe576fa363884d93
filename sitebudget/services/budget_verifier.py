# sitebudget/services/budget_verifier.py
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from sitebudget.config import LedgerPolicy
from sitebudget.db.enums import BudgetCheckStatus, WBSCodeStatus
from sitebudget.models.material_request import MaterialRequestItem
from sitebudget.models.wbs_element import WBSElement

ZERO = Decimal("0")


@dataclass
class WBSBudgetBreakdown:
    wbs_code: str
    wbs_name: Optional[str]
    required: Decimal
    available: Decimal
    status: WBSCodeStatus


@dataclass
class BudgetCheckResult:
    status: BudgetCheckStatus
    message: str
    total_required: Decimal = ZERO
    total_available: Decimal = ZERO
    breakdown: List[WBSBudgetBreakdown] = field(default_factory=list)


class BudgetVerifier:
    """
    Read-only funding verdict for material request items against the WBS.

    Items are grouped by wbs_code; each code is compared with the node's own
    available budget (its variance, not a subtree rollup). Nothing is written.
    """

    def __init__(self, db: Session, policy: Optional[LedgerPolicy] = None):
        self.db = db
        self.policy = policy or LedgerPolicy()

    def _classify_code(self, required: Decimal, available: Decimal) -> WBSCodeStatus:
        if available < required:
            return WBSCodeStatus.insufficient
        if available < required * self.policy.tight_factor:
            return WBSCodeStatus.tight
        return WBSCodeStatus.sufficient

    def verify(self, project_id: str, items: Iterable[MaterialRequestItem]) -> BudgetCheckResult:
        '''
        :param project_id: project whose WBS funds the items
        :param items: request items; only those carrying a wbs_code are checked per code,
            but total_required covers every item
        :return: overall verdict with per-code breakdown
        '''
        items = list(items)
        total_required = sum((item.estimated_total_price for item in items), ZERO)

        # 1. required amount per code, first-seen order
        required_by_code: "OrderedDict[str, Decimal]" = OrderedDict()
        for item in items:
            if not item.wbs_code:
                continue
            required_by_code[item.wbs_code] = (
                required_by_code.get(item.wbs_code, ZERO) + item.estimated_total_price
            )

        if not required_by_code:
            return BudgetCheckResult(
                status=BudgetCheckStatus.needs_reallocation,
                message="No WBS codes assigned to items. Budget check cannot be performed.",
                total_required=total_required,
            )

        # 2. node lookup by code within the project
        nodes = {
            e.code: e
            for e in self.db.scalars(
                select(WBSElement).where(
                    WBSElement.project_id == project_id,
                    WBSElement.code.in_(list(required_by_code)),
                )
            )
        }

        breakdown: List[WBSBudgetBreakdown] = []
        for code, required in required_by_code.items():
            node = nodes.get(code)
            if node is None:
                breakdown.append(WBSBudgetBreakdown(code, None, required, ZERO, WBSCodeStatus.not_found))
                continue
            available = Decimal(node.available_budget or 0)
            breakdown.append(
                WBSBudgetBreakdown(code, node.name, required, available, self._classify_code(required, available))
            )

        total_available = sum((b.available for b in breakdown), ZERO)

        # 3. overall verdict
        failing = [b for b in breakdown if b.status in (WBSCodeStatus.insufficient, WBSCodeStatus.not_found)]
        tight = [b for b in breakdown if b.status == WBSCodeStatus.tight]

        if not failing and not tight:
            status = BudgetCheckStatus.sufficient
            message = "Budget is sufficient for all WBS codes"
        elif failing and tight:
            status = BudgetCheckStatus.insufficient
            message = f"Budget insufficient for {len(failing)} WBS code(s), tight for {len(tight)}"
        elif tight:
            status = BudgetCheckStatus.needs_reallocation
            message = f"Budget is tight for {len(tight)} WBS code(s). Consider reallocation."
        else:
            status = BudgetCheckStatus.insufficient
            message = f"Budget insufficient for {len(failing)} WBS code(s)"

        if failing:
            message += ": " + ", ".join(
                f"{b.wbs_code} ({b.status.value}, required {b.required}, available {b.available})"
                for b in failing
            )

        return BudgetCheckResult(
            status=status,
            message=message,
            total_required=total_required,
            total_available=total_available,
            breakdown=breakdown,
        )
