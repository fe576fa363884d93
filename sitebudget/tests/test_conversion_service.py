# sitebudget/tests/test_conversion_service.py
from decimal import Decimal

import pytest

from sitebudget.db.enums import MRStatus, PurchaseOrderStatus
from sitebudget.errors import (
    ConversionError,
    DuplicateConversionError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from sitebudget.models.material_request import MaterialRequest
from sitebudget.models.purchase_order import PurchaseOrder
from sitebudget.models.vendor import Vendor
from sitebudget.schemas.material_request import ItemMapping
from sitebudget.services.approval_workflow import ApprovalWorkflow
from sitebudget.services.collaborators import SqlOrderSink, SqlVendorLookup
from sitebudget.services.conversion_service import ConversionService
from sitebudget.tests.fakes import OPERATOR


class MemoryOrderSink:
    """Order sink living outside the database transaction."""

    def __init__(self, fail_void=False):
        self.orders = {}
        self.voided = {}
        self.fail_void = fail_void

    def create_order(self, items, vendor_id, metadata):
        order_id = f"ext-{len(self.orders) + 1}"
        self.orders[order_id] = (items, vendor_id, metadata)
        return order_id

    def void_order(self, order_id, reason):
        if self.fail_void:
            raise RuntimeError("ERP unreachable")
        self.voided[order_id] = reason


class ExplodingVendorLookup:
    def get_vendor_name(self, vendor_id):
        raise TimeoutError("vendor service timeout")


def boom(*args, **kwargs):
    raise RuntimeError("write failed")


@pytest.fixture
def vendor(db):
    v = Vendor(id="v-1", name="PT Beton Jaya")
    db.add(v)
    db.flush()
    return v


@pytest.fixture
def approved_mr(db, make_node, make_mr):
    make_node("1.1", budget="100000")
    mr = make_mr(items=[
        {"material_name": "Concrete", "quantity": "10", "unit": "m3", "estimated_unit_price": "1000", "wbs_code": "1.1"},
        {"material_name": "Rebar", "quantity": "200", "unit": "kg", "estimated_unit_price": "12", "wbs_code": "1.1"},
    ])
    workflow = ApprovalWorkflow(db)
    workflow.submit_mr(mr_id=mr.id, operator_id="requester")
    workflow.approve_mr(mr_id=mr.id, role="site_manager", decision=True, operator_id="sm-1")
    workflow.approve_mr(mr_id=mr.id, role="pm", decision=True, operator_id="pm-1")
    workflow.approve_mr(mr_id=mr.id, role="budget_controller", decision=True, operator_id="bc-1")
    assert mr.status == MRStatus.approved
    return mr


@pytest.fixture
def service(db, audit_sink):
    return ConversionService(db, order_sink=SqlOrderSink(db), vendor_lookup=SqlVendorLookup(db), audit_sink=audit_sink)


def mappings(mr, quantity="10", price="950"):
    return [ItemMapping(mr_item_id=i.id, final_quantity=Decimal(quantity), final_unit_price=Decimal(price))
            for i in mr.items]


def test_convert_uses_final_quantities_and_prices(db, service, approved_mr, vendor):
    mapping = [
        ItemMapping(mr_item_id=approved_mr.items[0].id, final_quantity=Decimal("8"), final_unit_price=Decimal("950")),
        ItemMapping(mr_item_id=approved_mr.items[1].id, final_quantity=Decimal("200"), final_unit_price=Decimal("11.5")),
    ]
    result = service.convert_mr(mr_id=approved_mr.id, vendor_id=vendor.id, item_mappings=mapping, operator_id=OPERATOR)

    assert result.total_amount == Decimal("7600") + Decimal("2300")
    assert [line["total_price"] for line in result.lines] == ["7600", "2300.0"]
    assert result.vendor_name == "PT Beton Jaya"

    order = db.get(PurchaseOrder, result.order_id)
    assert order.total_amount == Decimal("9900")
    assert order.po_number == "PO-" + approved_mr.mr_number[len("MR-"):]
    assert order.status == PurchaseOrderStatus.created

    assert approved_mr.status == MRStatus.converted_to_po
    assert approved_mr.po_ids == [result.order_id]
    assert all(i.converted_to_po and i.po_id == result.order_id for i in approved_mr.items)
    assert approved_mr.converted_by == OPERATOR


def test_convert_twice_fails(service, approved_mr, vendor):
    service.convert_mr(mr_id=approved_mr.id, vendor_id=vendor.id, item_mappings=mappings(approved_mr), operator_id=OPERATOR)
    with pytest.raises(InvalidStateError):
        service.convert_mr(mr_id=approved_mr.id, vendor_id=vendor.id, item_mappings=mappings(approved_mr), operator_id=OPERATOR)


def test_already_converted_item_is_refused(db, service, approved_mr, vendor):
    approved_mr.items[0].converted_to_po = True
    db.flush()
    with pytest.raises(DuplicateConversionError) as exc:
        service.convert_mr(mr_id=approved_mr.id, vendor_id=vendor.id, item_mappings=mappings(approved_mr), operator_id=OPERATOR)
    assert exc.value.item_ids == [approved_mr.items[0].id]
    assert db.query(PurchaseOrder).count() == 0


def test_convert_requires_approved_status(service, make_mr, vendor):
    mr = make_mr()
    with pytest.raises(InvalidStateError) as exc:
        service.convert_mr(mr_id=mr.id, vendor_id=vendor.id, item_mappings=mappings(mr), operator_id=OPERATOR)
    assert exc.value.expected_status == "approved"


def test_mapping_validation(service, approved_mr, vendor):
    with pytest.raises(ValidationError):
        service.convert_mr(mr_id=approved_mr.id, vendor_id=vendor.id, item_mappings=[], operator_id=OPERATOR)
    doubled = mappings(approved_mr)[:1] * 2
    with pytest.raises(ValidationError):
        service.convert_mr(mr_id=approved_mr.id, vendor_id=vendor.id, item_mappings=doubled, operator_id=OPERATOR)
    ghost = [ItemMapping(mr_item_id="ghost", final_quantity=Decimal("1"), final_unit_price=Decimal("1"))]
    with pytest.raises(NotFoundError):
        service.convert_mr(mr_id=approved_mr.id, vendor_id=vendor.id, item_mappings=ghost, operator_id=OPERATOR)


def test_vendor_lookup_failure_does_not_block(db, approved_mr):
    service = ConversionService(db, order_sink=SqlOrderSink(db), vendor_lookup=ExplodingVendorLookup())
    result = service.convert_mr(mr_id=approved_mr.id, vendor_id="v-x", item_mappings=mappings(approved_mr), operator_id=OPERATOR)
    assert result.vendor_name == ""
    assert db.get(PurchaseOrder, result.order_id).vendor_name == ""


def test_partial_conversion_keeps_other_items_open(service, approved_mr, vendor):
    service.convert_mr(
        mr_id=approved_mr.id, vendor_id=vendor.id,
        item_mappings=mappings(approved_mr)[:1], operator_id=OPERATOR,
    )
    assert [i.converted_to_po for i in approved_mr.items] == [True, False]


def test_failed_request_write_discards_order_in_same_transaction(db, service, approved_mr, vendor, monkeypatch):
    db.commit()
    monkeypatch.setattr(service, "_apply_conversion", boom)

    with pytest.raises(ConversionError) as exc:
        service.convert_mr(mr_id=approved_mr.id, vendor_id=vendor.id, item_mappings=mappings(approved_mr), operator_id=OPERATOR)

    assert exc.value.order_voided is True
    assert db.get(PurchaseOrder, exc.value.order_id) is None
    mr = db.get(MaterialRequest, approved_mr.id)
    assert mr.status == MRStatus.approved
    assert not any(i.converted_to_po for i in mr.items)
    assert mr.po_ids == []


def test_failed_request_write_voids_external_order(db, approved_mr, monkeypatch):
    db.commit()
    sink = MemoryOrderSink()
    service = ConversionService(db, order_sink=sink)
    monkeypatch.setattr(service, "_apply_conversion", boom)

    with pytest.raises(ConversionError) as exc:
        service.convert_mr(mr_id=approved_mr.id, vendor_id="v-1", item_mappings=mappings(approved_mr), operator_id=OPERATOR)

    assert exc.value.order_id == "ext-1"
    assert exc.value.order_voided is True
    assert "ext-1" in sink.voided
    assert db.get(MaterialRequest, approved_mr.id).status == MRStatus.approved


def test_failed_void_is_reported(db, approved_mr, monkeypatch):
    db.commit()
    service = ConversionService(db, order_sink=MemoryOrderSink(fail_void=True))
    monkeypatch.setattr(service, "_apply_conversion", boom)

    with pytest.raises(ConversionError) as exc:
        service.convert_mr(mr_id=approved_mr.id, vendor_id="v-1", item_mappings=mappings(approved_mr), operator_id=OPERATOR)
    assert exc.value.order_voided is False
    assert exc.value.order_id == "ext-1"


def test_conversion_is_audited(service, approved_mr, vendor, audit_sink):
    result = service.convert_mr(mr_id=approved_mr.id, vendor_id=vendor.id, item_mappings=mappings(approved_mr), operator_id=OPERATOR)
    kind, entity_id, before, after, metadata = audit_sink.events[-1]
    assert (kind, before, after) == ("material_request.transition", "approved", "converted_to_po")
    assert metadata["order_id"] == result.order_id
