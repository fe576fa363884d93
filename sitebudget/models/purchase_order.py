# sitebudget/models/purchase_order.py
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Enum, Numeric, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from sitebudget.db.base import Base
from sitebudget.db.enums import PurchaseOrderStatus


class PurchaseOrder(Base):
    """
    Purchase order produced by converting an approved material request.
    A void order is kept (never deleted) so the compensation trail stays visible.
    """

    __tablename__ = "purchase_orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, comment="Purchase order UUID")
    po_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)
    mr_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True, comment="Source material request")

    vendor_id: Mapped[str] = mapped_column(String(36), nullable=False)
    vendor_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    status: Mapped[PurchaseOrderStatus] = mapped_column(
        Enum(PurchaseOrderStatus, name="purchase_order_status"),
        nullable=False,
        default=PurchaseOrderStatus.created,
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(16, 2), nullable=False)
    lines: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    void_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PurchaseOrder id={self.id} number={self.po_number} total={self.total_amount}>"
