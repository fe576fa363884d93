# sitebudget/services/material_request_service.py
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from sitebudget.db.enums import MRStatus, PENDING_STATUSES
from sitebudget.errors import ConcurrencyError, InvalidStateError, NotFoundError, ValidationError
from sitebudget.logger import get_logger
from sitebudget.models.material_request import MaterialRequest, MaterialRequestItem
from sitebudget.models.wbs_element import WBSElement
from sitebudget.schemas.material_request import (
    MaterialRequestCreate,
    MaterialRequestUpdate,
    MRItemInput,
    MRSummaryDTO,
    MRValidationResultDTO,
)
from sitebudget.services.collaborators import AuditSink, fire_and_forget

logger = get_logger(__name__)

ZERO = Decimal("0")


def mr_snapshot(mr: MaterialRequest) -> dict:
    return {
        "mr_number": mr.mr_number,
        "status": mr.status,
        "priority": mr.priority,
        "purpose": mr.purpose,
        "required_date": mr.required_date,
        "total_items": mr.total_items,
        "total_estimated_value": mr.total_estimated_value,
    }


class MaterialRequestService:
    """
    Request store: create, read, list, and draft-only edit / delete of material requests.
    Status changes belong to ApprovalWorkflow and ConversionService.
    """

    def __init__(self, db: Session, audit_sink: Optional[AuditSink] = None):
        self.db = db
        self.audit_sink = audit_sink

    # ======================================================
    # 🔐 Internal helpers
    # ======================================================

    def _audit(self, kind: str, mr: MaterialRequest, before, after, operator_id: str, **extra) -> None:
        if self.audit_sink is None:
            return
        fire_and_forget(
            kind,
            self.audit_sink.record,
            kind,
            mr.id,
            before,
            after,
            {"project_id": mr.project_id, "operator_id": operator_id,
             "changed_attribute": extra.pop("changed_attribute", "__all__"), **extra},
        )

    def _next_mr_number(self, project_id: str, today: date) -> str:
        prefix = f"MR-{today.strftime('%Y%m%d')}-"
        numbers = self.db.scalars(
            select(MaterialRequest.mr_number).where(
                MaterialRequest.project_id == project_id,
                MaterialRequest.mr_number.like(f"{prefix}%"),
            )
        )
        highest = 0
        for number in numbers:
            tail = number[len(prefix):]
            if tail.isdigit():
                highest = max(highest, int(tail))
        return f"{prefix}{highest + 1:04d}"

    def _build_items(self, project_id: str, inputs: List[MRItemInput]) -> List[MaterialRequestItem]:
        items = []
        for position, data in enumerate(inputs):
            wbs_element_id = data.wbs_element_id
            wbs_code = data.wbs_code
            if wbs_element_id:
                element = self.db.get(WBSElement, wbs_element_id)
                if element is None:
                    raise NotFoundError("WBS element", wbs_element_id)
                if element.project_id != project_id:
                    raise ValidationError(
                        f"Item {position + 1}: WBS element belongs to another project",
                        field=f"items.{position}.wbs_element_id",
                    )
                if wbs_code and wbs_code != element.code:
                    raise ValidationError(
                        f"Item {position + 1}: wbs_code {wbs_code} does not match WBS element {element.code}",
                        field=f"items.{position}.wbs_code",
                    )
                wbs_code = element.code
            elif wbs_code:
                element = self.db.scalars(
                    select(WBSElement).where(WBSElement.project_id == project_id, WBSElement.code == wbs_code)
                ).first()
                # an unknown code is kept; the budget check reports it as not found
                wbs_element_id = element.id if element else None

            items.append(
                MaterialRequestItem(
                    id=str(uuid4()),
                    position=position,
                    material_code=data.material_code,
                    material_name=data.material_name,
                    description=data.description,
                    justification=data.justification,
                    quantity=data.quantity,
                    unit=data.unit,
                    estimated_unit_price=data.estimated_unit_price,
                    wbs_element_id=wbs_element_id,
                    wbs_code=wbs_code,
                    converted_to_po=False,
                )
            )
        return items

    def _require_draft(self, mr: MaterialRequest, action: str) -> None:
        if mr.status != MRStatus.draft:
            raise InvalidStateError(
                f"Cannot {action} material request in status {mr.status.value}; only draft requests can be changed",
                current_status=mr.status.value,
                expected_status=MRStatus.draft.value,
            )

    def check_version(self, mr: MaterialRequest, expected_version: Optional[int]) -> None:
        if expected_version is not None and mr.version != expected_version:
            raise ConcurrencyError("material_request", mr.id, expected_version, mr.version)

    def flush(self, mr: MaterialRequest) -> None:
        '''Flush pending changes; a concurrent writer surfaces as ConcurrencyError.'''
        try:
            self.db.flush()
        except StaleDataError as e:
            raise ConcurrencyError("material_request", mr.id) from e

    # ======================================================
    # 🔎 Queries
    # ======================================================

    def get_mr(self, mr_id: str) -> MaterialRequest:
        mr = self.db.get(MaterialRequest, mr_id)
        if mr is None:
            raise NotFoundError("Material request", mr_id)
        return mr

    def list_mrs(
        self,
        project_id: Optional[str] = None,
        status: Optional[MRStatus] = None,
    ) -> List[MaterialRequest]:
        stmt = select(MaterialRequest)
        if project_id:
            stmt = stmt.where(MaterialRequest.project_id == project_id)
        if status is not None:
            stmt = stmt.where(MaterialRequest.status == status)
        stmt = stmt.order_by(MaterialRequest.requested_at.desc(), MaterialRequest.mr_number.desc())
        return list(self.db.scalars(stmt))

    def validate_mr(self, mr: MaterialRequest) -> MRValidationResultDTO:
        '''
        Check a request before submission.

        Errors block submission: no items, empty purpose, non-positive quantity,
        negative price, missing material name or unit.
        Warnings do not: items without a WBS code, zero price, required date in the past.
        '''
        errors: List[str] = []
        warnings: List[str] = []

        if not (mr.purpose or "").strip():
            errors.append("Purpose is required")
        if not mr.items:
            errors.append("At least one item is required")

        for index, item in enumerate(mr.items, start=1):
            if not (item.material_name or "").strip():
                errors.append(f"Item {index}: material name is required")
            if item.quantity is None or Decimal(item.quantity) <= 0:
                errors.append(f"Item {index}: quantity must be greater than 0")
            if not (item.unit or "").strip():
                errors.append(f"Item {index}: unit is required")
            if item.estimated_unit_price is None or Decimal(item.estimated_unit_price) < 0:
                errors.append(f"Item {index}: estimated unit price cannot be negative")
            elif Decimal(item.estimated_unit_price) == 0:
                warnings.append(f"Item {index}: estimated unit price is 0")
            if not item.wbs_code:
                warnings.append(f"Item {index}: no WBS code, budget cannot be verified for this line")

        if mr.required_date is not None and mr.required_date < date.today():
            warnings.append("Required date is in the past")

        return MRValidationResultDTO(is_valid=not errors, errors=errors, warnings=warnings)

    def mr_summary(self, project_id: str) -> MRSummaryDTO:
        mrs = self.list_mrs(project_id=project_id)
        by_status = {s.value: 0 for s in MRStatus}
        total_value = approved_value = converted_value = ZERO
        for mr in mrs:
            by_status[mr.status.value] += 1
            value = mr.total_estimated_value
            total_value += value
            if mr.status == MRStatus.approved:
                approved_value += value
            elif mr.status == MRStatus.converted_to_po:
                converted_value += value
        return MRSummaryDTO(
            project_id=project_id,
            total=len(mrs),
            by_status=by_status,
            pending_approval=sum(by_status[s.value] for s in PENDING_STATUSES),
            total_estimated_value=total_value,
            approved_value=approved_value,
            converted_value=converted_value,
        )

    # ======================================================
    # ✍️ Commands
    # ======================================================

    def create_mr(
        self,
        *,
        project_id: str,
        data: MaterialRequestCreate,
        operator_id: str,
    ) -> MaterialRequest:
        '''
        Create a draft material request with its items.

        :param project_id: owning project
        :param data: header and items
        :param operator_id: requester
        :return: the draft request
        :rtype: MaterialRequest
        '''
        if not project_id:
            raise ValidationError("project_id is required", field="project_id")
        if not operator_id:
            raise ValidationError("operator_id is required", field="operator_id")

        now = datetime.now()
        mr = MaterialRequest(
            id=str(uuid4()),
            mr_number=self._next_mr_number(project_id, now.date()),
            project_id=project_id,
            status=MRStatus.draft,
            priority=data.priority,
            required_date=data.required_date,
            purpose=data.purpose,
            remarks=data.remarks,
            requested_by=operator_id,
            requested_at=now,
            po_ids=[],
        )
        mr.items = self._build_items(project_id, data.items)

        self.db.add(mr)
        self.flush(mr)

        self._audit("material_request.create", mr, None, mr_snapshot(mr), operator_id)
        logger.info("Material request created: %s (%s), %d item(s)", mr.id, mr.mr_number, mr.total_items)
        return mr

    def update_mr(
        self,
        *,
        mr_id: str,
        data: MaterialRequestUpdate,
        operator_id: str,
        expected_version: Optional[int] = None,
    ) -> MaterialRequest:
        mr = self.get_mr(mr_id)
        self._require_draft(mr, "update")
        self.check_version(mr, expected_version)

        updates = data.model_dump(exclude_unset=True, exclude={"items", "expected_version"})
        for required in ("purpose", "priority"):
            if required in updates and updates[required] is None:
                raise ValidationError(f"Field '{required}' cannot be null", field=required)

        before = mr_snapshot(mr)
        for field_name, value in updates.items():
            setattr(mr, field_name, value)
        if "items" in data.model_fields_set:
            mr.items = self._build_items(mr.project_id, data.items or [])
            # replacing child rows alone does not bump the header version
            mr.updated_at = datetime.now()

        self.flush(mr)

        self._audit("material_request.update", mr, before, mr_snapshot(mr), operator_id)
        logger.info("Material request updated: %s", mr.mr_number)
        return mr

    def delete_mr(self, *, mr_id: str, operator_id: str) -> None:
        mr = self.get_mr(mr_id)
        self._require_draft(mr, "delete")

        snapshot = mr_snapshot(mr)
        self.db.delete(mr)
        self.flush(mr)

        self._audit("material_request.delete", mr, snapshot, None, operator_id)
        logger.info("Material request deleted: %s", snapshot["mr_number"])
