# sitebudget/services/conversion_service.py
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy.orm import Session

from sitebudget.db.enums import MRStatus
from sitebudget.errors import (
    ConversionError,
    DuplicateConversionError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from sitebudget.logger import get_logger
from sitebudget.models.material_request import MaterialRequest, MaterialRequestItem
from sitebudget.schemas.material_request import ItemMapping
from sitebudget.services.collaborators import (
    AuditSink,
    NotificationSink,
    OrderSink,
    VendorLookup,
    fire_and_forget,
)
from sitebudget.services.material_request_service import MaterialRequestService

logger = get_logger(__name__)

ZERO = Decimal("0")


@dataclass
class ConversionResult:
    order_id: str
    mr: MaterialRequest
    vendor_name: str
    lines: List[Dict[str, Any]]
    total_amount: Decimal


class ConversionService:
    """
    Turn an approved material request into a purchase order.

    Staged commit:
      1. the order is written through the order sink
      2. item flags, po_ids and status converted_to_po are flushed
      3. if step 2 fails, the session is rolled back and the order is voided
         through the sink; ConversionError says whether the void went through
    """

    def __init__(
        self,
        db: Session,
        order_sink: OrderSink,
        vendor_lookup: Optional[VendorLookup] = None,
        audit_sink: Optional[AuditSink] = None,
        notification_sink: Optional[NotificationSink] = None,
    ):
        self.db = db
        self.order_sink = order_sink
        self.vendor_lookup = vendor_lookup
        self.audit_sink = audit_sink
        self.notification_sink = notification_sink
        self.requests = MaterialRequestService(db)

    # ======================================================
    # 🔐 Internal helpers
    # ======================================================

    def _resolve_vendor_name(self, vendor_id: str) -> str:
        if self.vendor_lookup is None:
            return ""
        try:
            return self.vendor_lookup.get_vendor_name(vendor_id) or ""
        except Exception:
            logger.warning("Vendor lookup failed for %s; converting with empty vendor name", vendor_id, exc_info=True)
            return ""

    def _resolve_items(
        self, mr: MaterialRequest, item_mappings: Sequence[ItemMapping]
    ) -> List[MaterialRequestItem]:
        if not item_mappings:
            raise ValidationError("At least one item mapping is required", field="item_mappings")

        seen = set()
        items = []
        for mapping in item_mappings:
            if mapping.mr_item_id in seen:
                raise ValidationError(
                    f"Item {mapping.mr_item_id} is mapped more than once", field="item_mappings"
                )
            seen.add(mapping.mr_item_id)
            item = mr.get_item(mapping.mr_item_id)
            if item is None:
                raise NotFoundError("Material request item", mapping.mr_item_id)
            items.append(item)

        already = [item.id for item in items if item.converted_to_po]
        if already:
            raise DuplicateConversionError(mr.mr_number, already)
        return items

    def _build_lines(
        self, items: List[MaterialRequestItem], item_mappings: Sequence[ItemMapping]
    ) -> List[Dict[str, Any]]:
        '''Order lines priced with the final quantity / unit price of the mapping, not the estimate.'''
        lines = []
        for line_no, (item, mapping) in enumerate(zip(items, item_mappings), start=1):
            total = mapping.final_quantity * mapping.final_unit_price
            lines.append({
                "id": str(uuid4()),
                "line_no": line_no,
                "mr_item_id": item.id,
                "material_code": item.material_code,
                "material_name": item.material_name,
                "description": item.description,
                "unit": item.unit,
                "wbs_code": item.wbs_code,
                "quantity": str(mapping.final_quantity),
                "unit_price": str(mapping.final_unit_price),
                "total_price": str(total),
            })
        return lines

    def _apply_conversion(
        self,
        mr: MaterialRequest,
        items: List[MaterialRequestItem],
        lines: List[Dict[str, Any]],
        order_id: str,
        operator_id: str,
    ) -> None:
        for item, line in zip(items, lines):
            item.converted_to_po = True
            item.po_id = order_id
            item.po_item_id = line["id"]
        # new list so the JSON column registers the change
        mr.po_ids = list(mr.po_ids or []) + [order_id]
        mr.status = MRStatus.converted_to_po
        mr.converted_at = datetime.now()
        mr.converted_by = operator_id
        self.requests.flush(mr)

    def _compensate(self, order_id: str, reason: str) -> bool:
        try:
            self.order_sink.void_order(order_id, reason)
            return True
        except Exception:
            logger.exception("Compensating void failed for order %s; order left dangling", order_id)
            return False

    # ======================================================
    # 📦 Conversion
    # ======================================================

    def convert_mr(
        self,
        *,
        mr_id: str,
        vendor_id: str,
        item_mappings: Sequence[ItemMapping],
        operator_id: str,
        terms: Optional[str] = None,
        expected_version: Optional[int] = None,
    ) -> ConversionResult:
        '''
        Convert the mapped items of an approved request into one purchase order.

        :param mr_id: approved material request
        :param vendor_id: target vendor
        :param item_mappings: final quantity / unit price per converted item; authoritative over the estimate
        :param operator_id: user running the conversion
        :param terms: free text copied into the order notes
        :param expected_version: optimistic concurrency token
        :return: order id, synthesized lines and total
        :rtype: ConversionResult
        '''
        mr = self.requests.get_mr(mr_id)

        # 1. guards, nothing written yet
        if mr.status != MRStatus.approved:
            raise InvalidStateError(
                f"Cannot convert material request {mr.mr_number}: status is {mr.status.value}, expected approved",
                current_status=mr.status.value,
                expected_status=MRStatus.approved.value,
            )
        self.requests.check_version(mr, expected_version)
        if not vendor_id:
            raise ValidationError("vendor_id is required", field="vendor_id")
        items = self._resolve_items(mr, item_mappings)

        # 2. lines + total
        vendor_name = self._resolve_vendor_name(vendor_id)
        lines = self._build_lines(items, item_mappings)
        total_amount = sum((Decimal(line["total_price"]) for line in lines), ZERO)

        # 3. stage one: the order
        order_id = self.order_sink.create_order(
            lines,
            vendor_id,
            {
                "mr_id": mr.id,
                "mr_number": mr.mr_number,
                "project_id": mr.project_id,
                "vendor_name": vendor_name,
                "total_amount": str(total_amount),
                "notes": terms or f"Converted from {mr.mr_number}",
                "created_by": operator_id,
            },
        )

        # 4. stage two: the request, with compensation
        try:
            self._apply_conversion(mr, items, lines, order_id, operator_id)
        except Exception as e:
            self.db.rollback()
            reason = f"Material request {mr_id} update failed during conversion: {e}"
            voided = self._compensate(order_id, reason)
            logger.error("Conversion of %s failed after order %s was created (voided=%s)", mr_id, order_id, voided)
            raise ConversionError(
                f"Conversion failed after order {order_id} was created: {e}",
                order_id=order_id,
                order_voided=voided,
            ) from e

        logger.info(
            "Material request %s converted to order %s (%d line(s), total %s)",
            mr.mr_number, order_id, len(lines), total_amount,
        )

        # 5. side effects
        if self.audit_sink is not None:
            fire_and_forget(
                "material_request.transition",
                self.audit_sink.record,
                "material_request.transition",
                mr.id,
                MRStatus.approved.value,
                MRStatus.converted_to_po.value,
                {"project_id": mr.project_id, "operator_id": operator_id,
                 "order_id": order_id, "item_ids": [i.id for i in items]},
            )
        if self.notification_sink is not None:
            fire_and_forget(
                "notify requester",
                self.notification_sink.notify,
                mr.requested_by,
                "mr_converted_to_po",
                {"mr_id": mr.id, "mr_number": mr.mr_number, "order_id": order_id,
                 "total_amount": str(total_amount)},
            )

        return ConversionResult(
            order_id=order_id,
            mr=mr,
            vendor_name=vendor_name,
            lines=lines,
            total_amount=total_amount,
        )
