# sitebudget/schemas/material_request.py
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from sitebudget.db.enums import ApproverRole, MRPriority
from sitebudget.schemas.base import BaseDTO, Command


# ======================================================
# ✍️ Commands
# ======================================================

class MRItemInput(Command):
    material_code: Optional[str] = Field(default=None, max_length=100)
    material_name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    justification: Optional[str] = None
    quantity: Decimal = Field(gt=0)
    unit: str = Field(min_length=1, max_length=50)
    estimated_unit_price: Decimal = Field(ge=0)
    wbs_element_id: Optional[str] = None
    wbs_code: Optional[str] = Field(default=None, max_length=50)


class MaterialRequestCreate(Command):
    purpose: str = Field(min_length=1, max_length=500)
    priority: MRPriority = MRPriority.normal
    required_date: Optional[date] = None
    remarks: Optional[str] = None
    items: List[MRItemInput] = Field(default_factory=list)


class MaterialRequestUpdate(Command):
    """
    Draft-editable header fields. Passing ``items`` replaces the whole item list.
    """
    purpose: Optional[str] = Field(default=None, min_length=1, max_length=500)
    priority: Optional[MRPriority] = None
    required_date: Optional[date] = None
    remarks: Optional[str] = None
    items: Optional[List[MRItemInput]] = None
    expected_version: Optional[int] = None


class SubmitCommand(Command):
    expected_version: Optional[int] = None


class ApproveCommand(Command):
    role: ApproverRole
    decision: bool
    notes: Optional[str] = None
    expected_version: Optional[int] = None


class ItemMapping(Command):
    mr_item_id: str
    final_quantity: Decimal = Field(gt=0)
    final_unit_price: Decimal = Field(ge=0)


class ConvertCommand(Command):
    vendor_id: str = Field(min_length=1)
    item_mappings: List[ItemMapping] = Field(min_length=1)
    terms: Optional[str] = None
    expected_version: Optional[int] = None


# ======================================================
# 📤 DTOs
# ======================================================

class MRItemDTO(BaseDTO):
    id: str
    position: int
    material_code: Optional[str] = None
    material_name: str
    description: Optional[str] = None
    justification: Optional[str] = None
    quantity: Decimal
    unit: str
    estimated_unit_price: Decimal
    estimated_total_price: Decimal
    wbs_element_id: Optional[str] = None
    wbs_code: Optional[str] = None
    converted_to_po: bool
    po_id: Optional[str] = None
    po_item_id: Optional[str] = None

    @classmethod
    def from_orm_model(cls, item) -> "MRItemDTO":
        return cls.model_validate(item)


class MaterialRequestDTO(BaseDTO):
    id: str
    mr_number: str
    project_id: str
    status: str
    version: int
    priority: str
    required_date: Optional[date] = None
    purpose: str
    remarks: Optional[str] = None

    requested_by: str
    requested_at: datetime
    submitted_by: Optional[str] = None
    submitted_at: Optional[datetime] = None

    site_manager_id: Optional[str] = None
    site_manager_approved_at: Optional[datetime] = None
    site_manager_notes: Optional[str] = None
    pm_id: Optional[str] = None
    pm_approved_at: Optional[datetime] = None
    pm_notes: Optional[str] = None
    budget_checked_by: Optional[str] = None
    budget_checked_at: Optional[datetime] = None
    budget_notes: Optional[str] = None
    budget_status: Optional[str] = None
    final_approved_by: Optional[str] = None
    final_approved_at: Optional[datetime] = None
    final_approval_notes: Optional[str] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejected_stage: Optional[str] = None
    rejection_reason: Optional[str] = None

    po_ids: List[str] = []
    converted_at: Optional[datetime] = None
    converted_by: Optional[str] = None

    items: List[MRItemDTO] = []
    total_items: int
    total_estimated_value: Decimal

    @classmethod
    def from_orm_model(cls, mr) -> "MaterialRequestDTO":
        return cls(
            id=mr.id,
            mr_number=mr.mr_number,
            project_id=mr.project_id,
            status=mr.status.value,
            version=mr.version,
            priority=mr.priority.value,
            required_date=mr.required_date,
            purpose=mr.purpose,
            remarks=mr.remarks,
            requested_by=mr.requested_by,
            requested_at=mr.requested_at,
            submitted_by=mr.submitted_by,
            submitted_at=mr.submitted_at,
            site_manager_id=mr.site_manager_id,
            site_manager_approved_at=mr.site_manager_approved_at,
            site_manager_notes=mr.site_manager_notes,
            pm_id=mr.pm_id,
            pm_approved_at=mr.pm_approved_at,
            pm_notes=mr.pm_notes,
            budget_checked_by=mr.budget_checked_by,
            budget_checked_at=mr.budget_checked_at,
            budget_notes=mr.budget_notes,
            budget_status=mr.budget_status,
            final_approved_by=mr.final_approved_by,
            final_approved_at=mr.final_approved_at,
            final_approval_notes=mr.final_approval_notes,
            rejected_by=mr.rejected_by,
            rejected_at=mr.rejected_at,
            rejected_stage=mr.rejected_stage,
            rejection_reason=mr.rejection_reason,
            po_ids=list(mr.po_ids or []),
            converted_at=mr.converted_at,
            converted_by=mr.converted_by,
            items=[MRItemDTO.from_orm_model(i) for i in mr.items],
            total_items=mr.total_items,
            total_estimated_value=mr.total_estimated_value,
        )


class WBSBudgetBreakdownDTO(BaseDTO):
    wbs_code: str
    wbs_name: Optional[str] = None
    required: Decimal
    available: Decimal
    status: str


class BudgetCheckResultDTO(BaseDTO):
    status: str
    message: str
    total_required: Decimal
    total_available: Decimal
    breakdown: List[WBSBudgetBreakdownDTO]

    @classmethod
    def from_orm_model(cls, result) -> "BudgetCheckResultDTO":
        return cls(
            status=result.status.value,
            message=result.message,
            total_required=result.total_required,
            total_available=result.total_available,
            breakdown=[
                WBSBudgetBreakdownDTO(
                    wbs_code=line.wbs_code,
                    wbs_name=line.wbs_name,
                    required=line.required,
                    available=line.available,
                    status=line.status.value,
                )
                for line in result.breakdown
            ],
        )


class MRValidationResultDTO(BaseModel):
    is_valid: bool
    errors: List[str]
    warnings: List[str]


class MRSummaryDTO(BaseModel):
    project_id: str
    total: int
    by_status: Dict[str, int]
    pending_approval: int
    total_estimated_value: Decimal
    approved_value: Decimal
    converted_value: Decimal


class PurchaseOrderDTO(BaseDTO):
    id: str
    po_number: str
    project_id: Optional[str] = None
    mr_id: Optional[str] = None
    vendor_id: str
    vendor_name: str
    status: str
    total_amount: Decimal
    lines: List[dict]
    notes: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_orm_model(cls, order) -> "PurchaseOrderDTO":
        return cls(
            id=order.id,
            po_number=order.po_number,
            project_id=order.project_id,
            mr_id=order.mr_id,
            vendor_id=order.vendor_id,
            vendor_name=order.vendor_name,
            status=order.status.value,
            total_amount=order.total_amount,
            lines=list(order.lines or []),
            notes=order.notes,
            created_by=order.created_by,
            created_at=order.created_at,
        )
