# sitebudget/services/collaborators.py
"""
Narrow interfaces to the systems the workflow talks to, plus the default
database-backed / logging implementations used by the Flask app.

- OrderSink         create_order / void_order (conversion engine only)
- VendorLookup      get_vendor_name, failures must never block a conversion
- AuditSink         record(...), fire-and-forget
- NotificationSink  notify(...), fire-and-forget
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Protocol
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from sitebudget.db.enums import PurchaseOrderStatus
from sitebudget.logger import get_logger
from sitebudget.models.purchase_order import PurchaseOrder
from sitebudget.models.vendor import Vendor

logger = get_logger(__name__)


class OrderSink(Protocol):
    def create_order(self, items: List[Dict[str, Any]], vendor_id: str, metadata: Dict[str, Any]) -> str:
        ...

    def void_order(self, order_id: str, reason: str) -> None:
        ...


class VendorLookup(Protocol):
    def get_vendor_name(self, vendor_id: str) -> Optional[str]:
        ...


class AuditSink(Protocol):
    def record(self, event_kind: str, entity_id: str, before: Any, after: Any,
               metadata: Optional[Dict[str, Any]] = None) -> None:
        ...


class NotificationSink(Protocol):
    def notify(self, recipient: str, template_kind: str, data: Dict[str, Any]) -> None:
        ...


def fire_and_forget(action: str, func: Callable[..., Any], *args, **kwargs) -> None:
    '''
    Call a collaborator whose failure must never fail the primary operation.
    The error is logged with its traceback and dropped.
    '''
    try:
        func(*args, **kwargs)
    except Exception:
        logger.exception("Collaborator call failed (%s); primary operation continues", action)


class SqlOrderSink:
    """
    Writes purchase orders into the same database session as the material request,
    so a rollback of the request also drops the order.
    """

    def __init__(self, db: Session):
        self.db = db

    def _next_po_number(self, base_number: str) -> str:
        taken = set(
            self.db.scalars(
                select(PurchaseOrder.po_number).where(PurchaseOrder.po_number.like(f"{base_number}%"))
            )
        )
        if base_number not in taken:
            return base_number
        suffix = 2
        while f"{base_number}-{suffix}" in taken:
            suffix += 1
        return f"{base_number}-{suffix}"

    def create_order(self, items: List[Dict[str, Any]], vendor_id: str, metadata: Dict[str, Any]) -> str:
        '''
        :param items: synthesized order lines (quantity / unit_price / total_price already final)
        :param vendor_id: target vendor
        :param metadata: mr_id, mr_number, project_id, vendor_name, total_amount, notes, created_by
        :return: id of the created order
        '''
        mr_number = metadata.get("mr_number") or ""
        base_number = f"PO-{mr_number.replace('MR-', '', 1)}" if mr_number else f"PO-{uuid4().hex[:12].upper()}"
        order = PurchaseOrder(
            id=str(uuid4()),
            po_number=self._next_po_number(base_number),
            project_id=metadata.get("project_id"),
            mr_id=metadata.get("mr_id"),
            vendor_id=vendor_id,
            vendor_name=metadata.get("vendor_name") or "",
            status=PurchaseOrderStatus.created,
            total_amount=Decimal(metadata["total_amount"]),
            lines=items,
            notes=metadata.get("notes"),
            created_by=metadata.get("created_by"),
        )
        self.db.add(order)
        self.db.flush()
        logger.info("Purchase order created: %s (%s)", order.id, order.po_number)
        return order.id

    def void_order(self, order_id: str, reason: str) -> None:
        order = self.db.get(PurchaseOrder, order_id)
        if order is None:
            # the order shares the request's transaction; a rollback already discarded it
            logger.warning("Purchase order %s already discarded with its transaction (%s)", order_id, reason)
            return
        order.status = PurchaseOrderStatus.void
        order.void_reason = reason
        order.voided_at = datetime.now()
        self.db.flush()
        logger.warning("Purchase order voided: %s (%s)", order_id, reason)


class SqlVendorLookup:
    def __init__(self, db: Session):
        self.db = db

    def get_vendor_name(self, vendor_id: str) -> Optional[str]:
        vendor = self.db.get(Vendor, vendor_id)
        return vendor.name if vendor else None


class LoggingNotificationSink:
    """
    Notification delivery (email/SMS/push) is a separate service; this sink only
    records what would have been sent.
    """

    def notify(self, recipient: str, template_kind: str, data: Dict[str, Any]) -> None:
        logger.info("Notify %s [%s]: %s", recipient, template_kind, data)
