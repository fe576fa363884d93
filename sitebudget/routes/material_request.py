# sitebudget/routes/material_request.py
from flask import Blueprint, jsonify, request

from sitebudget.db.enums import MRStatus
from sitebudget.db.session import get_session
from sitebudget.errors import ValidationError
from sitebudget.models.purchase_order import PurchaseOrder
from sitebudget.routes.common import json_body, ledger_policy, operator_id
from sitebudget.schemas.base import parse_command
from sitebudget.schemas.material_request import (
    ApproveCommand,
    BudgetCheckResultDTO,
    ConvertCommand,
    MaterialRequestCreate,
    MaterialRequestDTO,
    MaterialRequestUpdate,
    PurchaseOrderDTO,
    SubmitCommand,
)
from sitebudget.services.approval_workflow import ApprovalWorkflow
from sitebudget.services.audit_log_service import AuditLogService
from sitebudget.services.collaborators import LoggingNotificationSink, SqlOrderSink, SqlVendorLookup
from sitebudget.services.conversion_service import ConversionService
from sitebudget.services.material_request_service import MaterialRequestService

material_request_bp = Blueprint('material_request', __name__, url_prefix='/material-requests')


def _workflow(db) -> ApprovalWorkflow:
    return ApprovalWorkflow(
        db,
        audit_sink=AuditLogService(db),
        notification_sink=LoggingNotificationSink(),
        policy=ledger_policy(),
    )


def _mr_json(mr) -> dict:
    return MaterialRequestDTO.from_orm_model(mr).model_dump(mode="json")


def _status_arg():
    value = request.args.get('status')
    if not value:
        return None
    try:
        return MRStatus(value)
    except ValueError:
        raise ValidationError(
            f"Invalid status: {value}. Valid values: {[s.value for s in MRStatus]}", field="status"
        )


@material_request_bp.route('', methods=['POST'])
def create_material_request():
    db = get_session()
    try:
        payload = dict(json_body())
        project_id = payload.pop('project_id', None)
        command = parse_command(MaterialRequestCreate, payload)
        service = MaterialRequestService(db, audit_sink=AuditLogService(db))
        mr = service.create_mr(project_id=project_id, data=command, operator_id=operator_id())
        db.commit()
        return jsonify(_mr_json(mr)), 201
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@material_request_bp.route('', methods=['GET'])
def list_material_requests():
    db = get_session()
    try:
        mrs = MaterialRequestService(db).list_mrs(
            project_id=request.args.get('project_id'),
            status=_status_arg(),
        )
        return jsonify([_mr_json(mr) for mr in mrs])
    finally:
        db.close()


@material_request_bp.route('/pending', methods=['GET'])
def pending_approvals():
    """Requests waiting for ?role=, oldest first"""
    db = get_session()
    try:
        role = request.args.get('role')
        if not role:
            raise ValidationError("role query parameter is required", field="role")
        mrs = _workflow(db).pending_approvals(role, project_id=request.args.get('project_id'))
        return jsonify([_mr_json(mr) for mr in mrs])
    finally:
        db.close()


@material_request_bp.route('/summary', methods=['GET'])
def summary():
    db = get_session()
    try:
        project_id = request.args.get('project_id')
        if not project_id:
            raise ValidationError("project_id query parameter is required", field="project_id")
        return jsonify(MaterialRequestService(db).mr_summary(project_id).model_dump(mode="json"))
    finally:
        db.close()


@material_request_bp.route('/<mr_id>', methods=['GET'])
def get_material_request(mr_id):
    db = get_session()
    try:
        service = MaterialRequestService(db)
        mr = service.get_mr(mr_id)
        data = _mr_json(mr)
        data['validation'] = service.validate_mr(mr).model_dump(mode="json")
        return jsonify(data)
    finally:
        db.close()


@material_request_bp.route('/<mr_id>', methods=['PATCH'])
def update_material_request(mr_id):
    db = get_session()
    try:
        command = parse_command(MaterialRequestUpdate, json_body())
        service = MaterialRequestService(db, audit_sink=AuditLogService(db))
        mr = service.update_mr(
            mr_id=mr_id,
            data=command,
            operator_id=operator_id(),
            expected_version=command.expected_version,
        )
        db.commit()
        return jsonify(_mr_json(mr))
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@material_request_bp.route('/<mr_id>', methods=['DELETE'])
def delete_material_request(mr_id):
    db = get_session()
    try:
        service = MaterialRequestService(db, audit_sink=AuditLogService(db))
        service.delete_mr(mr_id=mr_id, operator_id=operator_id())
        db.commit()
        return '', 204
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@material_request_bp.route('/<mr_id>/submit', methods=['POST'])
def submit_material_request(mr_id):
    db = get_session()
    try:
        command = parse_command(SubmitCommand, request.get_json(silent=True) or {})
        mr = _workflow(db).submit_mr(
            mr_id=mr_id,
            operator_id=operator_id(),
            expected_version=command.expected_version,
        )
        db.commit()
        return jsonify(_mr_json(mr))
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@material_request_bp.route('/<mr_id>/approve', methods=['POST'])
def approve_material_request(mr_id):
    db = get_session()
    try:
        command = parse_command(ApproveCommand, json_body())
        mr = _workflow(db).approve_mr(
            mr_id=mr_id,
            role=command.role,
            decision=command.decision,
            notes=command.notes,
            operator_id=operator_id(),
            expected_version=command.expected_version,
        )
        db.commit()
        return jsonify(_mr_json(mr))
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@material_request_bp.route('/<mr_id>/budget-check', methods=['GET'])
def budget_check(mr_id):
    """Dry run of the budget check stage"""
    db = get_session()
    try:
        result = _workflow(db).check_budget(mr_id)
        return jsonify(BudgetCheckResultDTO.from_orm_model(result).model_dump(mode="json"))
    finally:
        db.close()


@material_request_bp.route('/<mr_id>/convert', methods=['POST'])
def convert_material_request(mr_id):
    db = get_session()
    try:
        command = parse_command(ConvertCommand, json_body())
        service = ConversionService(
            db,
            order_sink=SqlOrderSink(db),
            vendor_lookup=SqlVendorLookup(db),
            audit_sink=AuditLogService(db),
            notification_sink=LoggingNotificationSink(),
        )
        result = service.convert_mr(
            mr_id=mr_id,
            vendor_id=command.vendor_id,
            item_mappings=command.item_mappings,
            operator_id=operator_id(),
            terms=command.terms,
            expected_version=command.expected_version,
        )
        db.commit()
        order = db.get(PurchaseOrder, result.order_id)
        return jsonify({
            "order": PurchaseOrderDTO.from_orm_model(order).model_dump(mode="json"),
            "material_request": _mr_json(result.mr),
        }), 201
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
