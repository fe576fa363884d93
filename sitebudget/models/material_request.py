# sitebudget/models/material_request.py
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from sitebudget.db.base import Base
from sitebudget.db.enums import MRPriority, MRStatus


class MaterialRequest(Base):
    """
    Spending request aggregate: header + ordered items + per-stage approval metadata.

    Invariants:
    - a request with zero items never leaves draft
    - total_estimated_value is always the sum of item totals at read time
    - only the approval workflow and the conversion engine change status
    """

    __tablename__ = "material_requests"

    # =========
    # 🔒 Identity
    # =========
    id: Mapped[str] = mapped_column(String(36), primary_key=True, comment="Material request UUID")
    mr_number: Mapped[str] = mapped_column(
        String(32), nullable=False, index=True, comment="MR-YYYYMMDD-NNNN, unique per project per day"
    )
    project_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    # =========
    # 🔁 Workflow state
    # =========
    status: Mapped[MRStatus] = mapped_column(
        Enum(MRStatus, name="mr_status"), nullable=False, default=MRStatus.draft, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # =========
    # ✍️ Request header (editable while draft)
    # =========
    priority: Mapped[MRPriority] = mapped_column(
        Enum(MRPriority, name="mr_priority"), nullable=False, default=MRPriority.normal
    )
    required_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    purpose: Mapped[str] = mapped_column(String(500), nullable=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    requested_by: Mapped[str] = mapped_column(String(36), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    submitted_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # =========
    # ✅ Stage metadata
    # =========
    site_manager_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    site_manager_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    site_manager_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    pm_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    pm_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    pm_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    budget_checked_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    budget_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    budget_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    budget_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    final_approved_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    final_approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    final_approval_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    rejected_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_stage: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # =========
    # 📦 Conversion
    # =========
    po_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    converted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    converted_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    items: Mapped[List["MaterialRequestItem"]] = relationship(
        back_populates="material_request",
        cascade="all, delete-orphan",
        order_by="MaterialRequestItem.position",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def total_items(self) -> int:
        return len(self.items)

    @property
    def total_estimated_value(self) -> Decimal:
        return sum((item.estimated_total_price for item in self.items), Decimal("0"))

    @property
    def converted_to_po(self) -> bool:
        return bool(self.po_ids)

    def get_item(self, item_id: str) -> Optional["MaterialRequestItem"]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def __repr__(self) -> str:
        return f"<MaterialRequest id={self.id} number={self.mr_number} status={self.status.value}>"


class MaterialRequestItem(Base):
    """
    One requested material line. Owned by its MaterialRequest; never addressed on its own
    outside of the aggregate.
    """

    __tablename__ = "material_request_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, comment="MR item UUID")
    mr_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("material_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # =========
    # 🔤 Material
    # =========
    material_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    material_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    justification: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # =========
    # 🔢 Quantity & pricing
    # =========
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    unit: Mapped[str] = mapped_column(String(50), nullable=False)
    estimated_unit_price: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)

    # =========
    # 🌳 Budget link
    # =========
    wbs_element_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    wbs_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # =========
    # 📦 Conversion
    # =========
    converted_to_po: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    po_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    po_item_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)

    material_request: Mapped[MaterialRequest] = relationship(back_populates="items")

    @property
    def estimated_total_price(self) -> Decimal:
        return Decimal(self.quantity or 0) * Decimal(self.estimated_unit_price or 0)

    def __repr__(self) -> str:
        return (
            f"<MaterialRequestItem id={self.id} "
            f"material={self.material_code or self.material_name} "
            f"qty={self.quantity}>"
        )
