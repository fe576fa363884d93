# sitebudget/models/wbs_element.py
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from sitebudget.db.base import Base

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class WBSElement(Base):
    """
    One line of a project's cost breakdown structure.

    Invariants:
    - code is unique inside a project
    - parent_id (if set) points to a node of the same project
    - level == parent.level + 1, roots are level 1
    - variance / variance_percentage / available_budget are derived, never supplied
    """

    __tablename__ = "wbs_elements"
    __table_args__ = (
        UniqueConstraint("project_id", "code", name="uq_wbs_project_code"),
    )

    # =========
    # 🔒 Identity
    # =========
    id: Mapped[str] = mapped_column(String(36), primary_key=True, comment="WBS element UUID")
    project_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True, comment="Owning project ID")
    code: Mapped[str] = mapped_column(String(50), nullable=False, comment="Hierarchical code, e.g. 1.1.2")
    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Display name")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # =========
    # 🌳 Hierarchy
    # =========
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36), nullable=True, index=True, comment="Parent WBS element ID, NULL for roots"
    )
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1, comment="Depth, root = 1")
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="Sibling sort key")

    # =========
    # 💰 Financials (caller supplied)
    # =========
    budget_amount: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False, default=ZERO)
    actual_amount: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False, default=ZERO)
    commitments: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False, default=ZERO)

    # =========
    # 🔁 Derived (system maintained)
    # =========
    variance: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False, default=ZERO)
    variance_percentage: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False, default=ZERO)
    available_budget: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False, default=ZERO)

    # =========
    # 📋 Bookkeeping
    # =========
    rab_item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    task_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_deliverable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_billable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="Not Started")
    progress: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=ZERO)

    # =========
    # ⏱ Concurrency & timestamps
    # =========
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __mapper_args__ = {"version_id_col": version}

    def recompute_derived(self) -> None:
        '''Recompute variance fields from the current (merged) financials.'''
        budget = Decimal(self.budget_amount or 0)
        spent = Decimal(self.actual_amount or 0) + Decimal(self.commitments or 0)
        self.variance = budget - spent
        self.variance_percentage = (self.variance / budget * HUNDRED) if budget > 0 else ZERO
        self.available_budget = self.variance

    def __repr__(self) -> str:
        return f"<WBSElement id={self.id} code={self.code} level={self.level}>"
