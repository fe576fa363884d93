# sitebudget/db/enums.py
import enum


# MaterialRequest related enums
class MRStatus(enum.Enum):
    draft = "draft"
    submitted = "submitted"
    site_manager_review = "site_manager_review"
    pm_review = "pm_review"
    budget_check = "budget_check"
    approved = "approved"
    rejected = "rejected"
    converted_to_po = "converted_to_po"


class MRPriority(enum.Enum):
    low = "low"
    normal = "normal"
    high = "high"
    urgent = "urgent"


class ApproverRole(enum.Enum):
    site_manager = "site_manager"
    pm = "pm"
    budget_controller = "budget_controller"
    final_approver = "final_approver"


# stage an approver acts on
ROLE_STAGE = {
    ApproverRole.site_manager: MRStatus.site_manager_review,
    ApproverRole.pm: MRStatus.pm_review,
    ApproverRole.budget_controller: MRStatus.budget_check,
    ApproverRole.final_approver: MRStatus.approved,
}

PENDING_STATUSES = (
    MRStatus.submitted,
    MRStatus.site_manager_review,
    MRStatus.pm_review,
    MRStatus.budget_check,
)


# Budget verification enums
class BudgetCheckStatus(enum.Enum):
    sufficient = "sufficient"
    insufficient = "insufficient"
    needs_reallocation = "needs_reallocation"


class WBSCodeStatus(enum.Enum):
    sufficient = "sufficient"
    tight = "tight"
    insufficient = "insufficient"
    not_found = "not_found"


# WBS completion classification
class CompletionStatus(str, enum.Enum):
    completed = "Completed"
    over_budget = "Over Budget"
    at_risk = "At Risk"
    on_track = "On Track"


# PurchaseOrder related enums
class PurchaseOrderStatus(enum.Enum):
    created = "created"
    void = "void"


# AuditLog related enums
class AuditEntityType(enum.Enum):
    WBSElement = "wbs_element"
    MaterialRequest = "material_request"
    PurchaseOrder = "purchase_order"


class AuditAction(enum.Enum):
    create = "create"
    update = "update"
    delete = "delete"
    transition = "transition"
    system = "system"
