# sitebudget/services/approval_workflow.py
from datetime import datetime
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from sitebudget.config import LedgerPolicy
from sitebudget.db.enums import ROLE_STAGE, ApproverRole, BudgetCheckStatus, MRStatus
from sitebudget.errors import InvalidStateError, ValidationError
from sitebudget.logger import get_logger
from sitebudget.models.material_request import MaterialRequest
from sitebudget.services.budget_verifier import BudgetCheckResult, BudgetVerifier
from sitebudget.services.collaborators import AuditSink, NotificationSink, fire_and_forget
from sitebudget.services.material_request_service import MaterialRequestService

logger = get_logger(__name__)

# who hears about a request entering a stage
STAGE_RECIPIENT = {
    MRStatus.site_manager_review: ApproverRole.site_manager.value,
    MRStatus.pm_review: ApproverRole.pm.value,
    MRStatus.budget_check: ApproverRole.budget_controller.value,
}


class ApprovalWorkflow:
    """
    Material request state machine.

        draft -> submitted -> site_manager_review -> pm_review -> budget_check
              -> approved | rejected
        approved -> converted_to_po  (ConversionService)

    Every transition checks the current status first and raises InvalidStateError
    before writing anything. The write itself is conditional on the row version,
    so a concurrent transition on the same request fails with ConcurrencyError.
    """

    def __init__(
        self,
        db: Session,
        audit_sink: Optional[AuditSink] = None,
        notification_sink: Optional[NotificationSink] = None,
        verifier: Optional[BudgetVerifier] = None,
        policy: Optional[LedgerPolicy] = None,
    ):
        self.db = db
        self.audit_sink = audit_sink
        self.notification_sink = notification_sink
        self.verifier = verifier or BudgetVerifier(db, policy)
        self.requests = MaterialRequestService(db)

    # ======================================================
    # 🔐 Internal helpers
    # ======================================================

    def _after_transition(
        self,
        mr: MaterialRequest,
        before: MRStatus,
        operator_id: str,
        **extra,
    ) -> None:
        '''Audit + notify once the write went through. Neither may fail the transition.'''
        if self.audit_sink is not None:
            fire_and_forget(
                "material_request.transition",
                self.audit_sink.record,
                "material_request.transition",
                mr.id,
                before.value,
                mr.status.value,
                {"project_id": mr.project_id, "operator_id": operator_id,
                 "mr_number": mr.mr_number, **extra},
            )
        if self.notification_sink is None:
            return
        data = {"mr_id": mr.id, "mr_number": mr.mr_number, "status": mr.status.value, **extra}
        if mr.status in STAGE_RECIPIENT:
            fire_and_forget(
                "notify approver", self.notification_sink.notify,
                STAGE_RECIPIENT[mr.status], "mr_pending_approval", data,
            )
        elif mr.status in (MRStatus.approved, MRStatus.rejected):
            fire_and_forget(
                "notify requester", self.notification_sink.notify,
                mr.requested_by, f"mr_{mr.status.value}", data,
            )

    def _normalize_role(self, role: Union[str, ApproverRole]) -> ApproverRole:
        if isinstance(role, ApproverRole):
            return role
        try:
            return ApproverRole(str(role).strip().lower())
        except ValueError:
            raise ValidationError(
                f"Invalid approver role: {role}. Valid roles: {[r.value for r in ApproverRole]}",
                field="role",
            )

    # ======================================================
    # 🔁 Transitions
    # ======================================================

    def submit_mr(self, *, mr_id: str, operator_id: str, expected_version: Optional[int] = None) -> MaterialRequest:
        '''
        Submit a draft for approval. The request passes through ``submitted``
        and rests in ``site_manager_review``.
        '''
        mr = self.requests.get_mr(mr_id)

        # 1. guard
        if mr.status != MRStatus.draft:
            raise InvalidStateError(
                f"Cannot submit material request {mr.mr_number}: status is {mr.status.value}, expected draft",
                current_status=mr.status.value,
                expected_status=MRStatus.draft.value,
            )
        self.requests.check_version(mr, expected_version)
        if not mr.items:
            raise ValidationError(
                f"Cannot submit material request {mr.mr_number} without items", field="items"
            )
        validation = self.requests.validate_mr(mr)
        if not validation.is_valid:
            raise ValidationError(
                f"Cannot submit material request {mr.mr_number}: " + "; ".join(validation.errors),
                errors=validation.errors,
            )

        # 2. write
        now = datetime.now()
        mr.status = MRStatus.submitted
        mr.submitted_by = operator_id
        mr.submitted_at = now
        mr.status = MRStatus.site_manager_review
        self.requests.flush(mr)

        # 3. side effects
        logger.info("Material request submitted: %s -> %s", mr.mr_number, mr.status.value)
        self._after_transition(mr, MRStatus.draft, operator_id, via=MRStatus.submitted.value)
        return mr

    def approve_mr(
        self,
        *,
        mr_id: str,
        role: Union[str, ApproverRole],
        decision: bool,
        notes: Optional[str] = None,
        operator_id: str,
        expected_version: Optional[int] = None,
    ) -> MaterialRequest:
        '''
        Record one stage decision.

        :param role: site_manager / pm / budget_controller / final_approver
        :param decision: False rejects at any stage
        :param notes: free text kept in the stage metadata (rejection reason when rejecting)
        :param operator_id: approver
        :param expected_version: optimistic concurrency token
        :return: the request after the transition
        :rtype: MaterialRequest
        '''
        role = self._normalize_role(role)
        mr = self.requests.get_mr(mr_id)

        # 1. guard
        expected = ROLE_STAGE[role]
        if mr.status != expected:
            raise InvalidStateError(
                f"Cannot approve as {role.value}: material request {mr.mr_number} "
                f"is {mr.status.value}, expected {expected.value}",
                current_status=mr.status.value,
                expected_status=expected.value,
            )
        self.requests.check_version(mr, expected_version)

        before = mr.status
        now = datetime.now()
        extra = {"role": role.value, "decision": decision}

        # 2. transition
        if not decision:
            self._reject(mr, role, operator_id, now, notes or "Rejected")
        elif role == ApproverRole.site_manager:
            mr.site_manager_id = operator_id
            mr.site_manager_approved_at = now
            mr.site_manager_notes = notes
            mr.status = MRStatus.pm_review
        elif role == ApproverRole.pm:
            mr.pm_id = operator_id
            mr.pm_approved_at = now
            mr.pm_notes = notes
            mr.status = MRStatus.budget_check
        elif role == ApproverRole.budget_controller:
            result = self.verifier.verify(mr.project_id, mr.items)
            mr.budget_checked_by = operator_id
            mr.budget_checked_at = now
            mr.budget_status = result.status.value
            mr.budget_notes = notes
            extra["budget_status"] = result.status.value
            if result.status == BudgetCheckStatus.sufficient:
                mr.status = MRStatus.approved
            else:
                self._reject(mr, role, operator_id, now, result.message)
        else:
            mr.final_approved_by = operator_id
            mr.final_approved_at = now
            mr.final_approval_notes = notes

        # 3. conditional write
        self.requests.flush(mr)

        logger.info(
            "Material request %s: %s by %s (%s) -> %s",
            mr.mr_number, "approved" if decision else "rejected", role.value, operator_id, mr.status.value,
        )
        self._after_transition(mr, before, operator_id, **extra)
        return mr

    def _reject(self, mr: MaterialRequest, role: ApproverRole, operator_id: str, when: datetime, reason: str) -> None:
        mr.status = MRStatus.rejected
        mr.rejected_by = operator_id
        mr.rejected_at = when
        mr.rejected_stage = role.value
        mr.rejection_reason = reason

    def check_budget(self, mr_id: str) -> BudgetCheckResult:
        '''Dry run of the budget check stage; nothing is written.'''
        mr = self.requests.get_mr(mr_id)
        return self.verifier.verify(mr.project_id, mr.items)

    def pending_approvals(
        self,
        role: Union[str, ApproverRole],
        project_id: Optional[str] = None,
    ) -> List[MaterialRequest]:
        '''Requests waiting in the role's stage, oldest first.'''
        role = self._normalize_role(role)
        stmt = select(MaterialRequest).where(MaterialRequest.status == ROLE_STAGE[role])
        if project_id:
            stmt = stmt.where(MaterialRequest.project_id == project_id)
        stmt = stmt.order_by(MaterialRequest.submitted_at.asc(), MaterialRequest.mr_number.asc())
        return list(self.db.scalars(stmt))
