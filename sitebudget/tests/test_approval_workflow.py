# sitebudget/tests/test_approval_workflow.py
import pytest

from sitebudget.db.enums import MRStatus
from sitebudget.errors import ConcurrencyError, InvalidStateError, ValidationError
from sitebudget.services.approval_workflow import ApprovalWorkflow
from sitebudget.tests.fakes import (
    OPERATOR,
    PROJECT_ID,
    BrokenSink,
    RecordingNotificationSink,
    RefusingVerifier,
)


@pytest.fixture
def notifications():
    return RecordingNotificationSink()


@pytest.fixture
def workflow(db, audit_sink, notifications):
    return ApprovalWorkflow(db, audit_sink=audit_sink, notification_sink=notifications)


@pytest.fixture
def funded_wbs(make_node):
    root = make_node("1", budget="0")
    return make_node("1.1", parent=root, budget="50000")


def advance_to_budget_check(workflow, mr):
    workflow.submit_mr(mr_id=mr.id, operator_id="requester")
    workflow.approve_mr(mr_id=mr.id, role="site_manager", decision=True, operator_id="sm-1")
    workflow.approve_mr(mr_id=mr.id, role="pm", decision=True, operator_id="pm-1")
    return mr


def test_submit_without_items_fails(workflow, make_mr):
    mr = make_mr(items=[])
    with pytest.raises(ValidationError):
        workflow.submit_mr(mr_id=mr.id, operator_id=OPERATOR)
    assert mr.status == MRStatus.draft


def test_submit_lands_in_site_manager_review(workflow, make_mr, notifications):
    mr = make_mr()
    workflow.submit_mr(mr_id=mr.id, operator_id=OPERATOR)

    assert mr.status == MRStatus.site_manager_review
    assert mr.submitted_by == OPERATOR
    assert mr.submitted_at is not None
    assert notifications.sent[-1][:2] == ("site_manager", "mr_pending_approval")


def test_submit_twice_is_invalid_state(workflow, make_mr):
    mr = make_mr()
    workflow.submit_mr(mr_id=mr.id, operator_id=OPERATOR)
    with pytest.raises(InvalidStateError):
        workflow.submit_mr(mr_id=mr.id, operator_id=OPERATOR)


def test_full_approval_path(workflow, make_mr, funded_wbs):
    mr = advance_to_budget_check(workflow, make_mr())
    assert mr.status == MRStatus.budget_check
    assert mr.site_manager_id == "sm-1"
    assert mr.pm_id == "pm-1"

    workflow.approve_mr(mr_id=mr.id, role="budget_controller", decision=True, operator_id="bc-1", notes="ok")
    assert mr.status == MRStatus.approved
    assert mr.budget_status == "sufficient"
    assert mr.budget_checked_by == "bc-1"

    workflow.approve_mr(mr_id=mr.id, role="final_approver", decision=True, operator_id="dir-1")
    assert mr.status == MRStatus.approved
    assert mr.final_approved_by == "dir-1"


def test_site_manager_rejection_is_terminal(workflow, make_mr):
    mr = make_mr()
    workflow.submit_mr(mr_id=mr.id, operator_id=OPERATOR)
    workflow.approve_mr(mr_id=mr.id, role="site_manager", decision=False,
                        notes="wrong grade", operator_id="sm-1")

    assert mr.status == MRStatus.rejected
    assert (mr.rejected_by, mr.rejected_stage, mr.rejection_reason) == ("sm-1", "site_manager", "wrong grade")
    with pytest.raises(InvalidStateError):
        workflow.approve_mr(mr_id=mr.id, role="pm", decision=True, operator_id="pm-1")


@pytest.mark.parametrize("role, approvals_before", [
    ("site_manager", []),
    ("pm", ["site_manager"]),
    ("budget_controller", ["site_manager", "pm"]),
])
def test_rejection_at_each_review_stage(db, audit_sink, make_mr, role, approvals_before):
    workflow = ApprovalWorkflow(db, audit_sink=audit_sink, verifier=RefusingVerifier())
    mr = make_mr()
    workflow.submit_mr(mr_id=mr.id, operator_id="requester")
    for earlier in approvals_before:
        workflow.approve_mr(mr_id=mr.id, role=earlier, decision=True, operator_id=f"{earlier}-1")

    workflow.approve_mr(mr_id=mr.id, role=role, decision=False,
                        notes="not this month", operator_id="approver-1")

    assert mr.status == MRStatus.rejected
    assert mr.rejected_stage == role
    assert mr.rejection_reason == "not this month"
    assert mr.rejected_by == "approver-1"
    assert mr.budget_status is None
    assert mr.budget_checked_by is None


def test_budget_controller_approval_with_insufficient_budget_rejects(workflow, make_mr, make_node):
    make_node("1.1", budget="5000")  # 10000 requested
    mr = advance_to_budget_check(workflow, make_mr())

    workflow.approve_mr(mr_id=mr.id, role="budget_controller", decision=True, operator_id="bc-1")

    assert mr.status == MRStatus.rejected
    assert mr.budget_status == "insufficient"
    assert mr.rejected_stage == "budget_controller"
    assert "1.1" in mr.rejection_reason


def test_budget_controller_with_tight_budget_rejects(workflow, make_mr, make_node):
    make_node("1.1", budget="11000")  # tight: 10000 <= 11000 < 12000
    mr = advance_to_budget_check(workflow, make_mr())
    workflow.approve_mr(mr_id=mr.id, role="budget_controller", decision=True, operator_id="bc-1")

    assert mr.status == MRStatus.rejected
    assert mr.budget_status == "needs_reallocation"


def test_wrong_stage_names_both_statuses(workflow, make_mr):
    mr = make_mr()
    workflow.submit_mr(mr_id=mr.id, operator_id=OPERATOR)
    with pytest.raises(InvalidStateError) as exc:
        workflow.approve_mr(mr_id=mr.id, role="pm", decision=True, operator_id="pm-1")
    assert exc.value.current_status == "site_manager_review"
    assert exc.value.expected_status == "pm_review"
    assert mr.status == MRStatus.site_manager_review


def test_unknown_role_is_validation_error(workflow, make_mr):
    mr = make_mr()
    with pytest.raises(ValidationError):
        workflow.approve_mr(mr_id=mr.id, role="janitor", decision=True, operator_id="x")


def test_expected_version_guards_concurrent_approvals(workflow, make_mr):
    mr = make_mr()
    workflow.submit_mr(mr_id=mr.id, operator_id=OPERATOR)
    read_version = mr.version

    workflow.approve_mr(mr_id=mr.id, role="site_manager", decision=True,
                        operator_id="sm-1", expected_version=read_version)
    with pytest.raises(InvalidStateError):
        # same stage again: status guard fires first
        workflow.approve_mr(mr_id=mr.id, role="site_manager", decision=True,
                            operator_id="sm-2", expected_version=read_version)
    with pytest.raises(ConcurrencyError):
        workflow.approve_mr(mr_id=mr.id, role="pm", decision=True,
                            operator_id="pm-1", expected_version=read_version)


def test_pending_approvals_by_role(workflow, make_mr):
    first = make_mr()
    second = make_mr()
    make_mr()
    workflow.submit_mr(mr_id=first.id, operator_id=OPERATOR)
    workflow.submit_mr(mr_id=second.id, operator_id=OPERATOR)
    workflow.approve_mr(mr_id=second.id, role="site_manager", decision=True, operator_id="sm-1")

    assert [m.id for m in workflow.pending_approvals("site_manager")] == [first.id]
    assert [m.id for m in workflow.pending_approvals("pm", project_id=PROJECT_ID)] == [second.id]
    assert workflow.pending_approvals("pm", project_id="other") == []


def test_transitions_are_audited(workflow, make_mr, audit_sink):
    mr = make_mr()
    workflow.submit_mr(mr_id=mr.id, operator_id=OPERATOR)
    kind, entity_id, before, after, metadata = audit_sink.events[-1]
    assert (kind, entity_id, before, after) == (
        "material_request.transition", mr.id, "draft", "site_manager_review"
    )
    assert metadata["operator_id"] == OPERATOR


def test_broken_collaborators_never_fail_a_transition(db, make_mr):
    broken = BrokenSink()
    workflow = ApprovalWorkflow(db, audit_sink=broken, notification_sink=broken)
    mr = make_mr()
    workflow.submit_mr(mr_id=mr.id, operator_id=OPERATOR)
    workflow.approve_mr(mr_id=mr.id, role="site_manager", decision=False, operator_id="sm-1")
    assert mr.status == MRStatus.rejected


def test_check_budget_is_a_dry_run(workflow, make_mr, funded_wbs):
    mr = make_mr()
    result = workflow.check_budget(mr.id)
    assert result.status.value == "sufficient"
    assert mr.status == MRStatus.draft
