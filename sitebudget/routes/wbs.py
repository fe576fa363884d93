# sitebudget/routes/wbs.py
from flask import Blueprint, jsonify, send_file

from sitebudget.db.session import get_session
from sitebudget.errors import NotFoundError
from sitebudget.routes.common import json_body, ledger_policy, operator_id, query_flag
from sitebudget.schemas.base import parse_command
from sitebudget.schemas.wbs import (
    BudgetNodeCreate,
    BudgetNodeUpdate,
    LevelRollupDTO,
    ReorderCommand,
    StructuralIssueDTO,
    WBSElementDTO,
    WBSHierarchyDTO,
    WBSSummaryDTO,
    WBSTreeNodeDTO,
    WBSValidationResultDTO,
)
from sitebudget.services.audit_log_service import AuditLogService
from sitebudget.services.budget_node_service import BudgetNodeService

wbs_bp = Blueprint('wbs', __name__, url_prefix='/projects/<project_id>/wbs')


def _service(db) -> BudgetNodeService:
    return BudgetNodeService(db, audit_sink=AuditLogService(db), policy=ledger_policy())


def _element_in_project(service: BudgetNodeService, project_id: str, element_id: str):
    element = service.get_budget_node(element_id)
    if element.project_id != project_id:
        raise NotFoundError("WBS element", element_id)
    return element


def _element_dto(service: BudgetNodeService, element) -> dict:
    return WBSElementDTO.from_orm_model(
        element, completion_status=service.completion_status(element)
    ).model_dump(mode="json")


def _tree_dto(service: BudgetNodeService, node) -> WBSTreeNodeDTO:
    return WBSTreeNodeDTO(
        element=WBSElementDTO.from_orm_model(node.element, service.completion_status(node.element)),
        children=[_tree_dto(service, child) for child in node.children],
    )


@wbs_bp.route('', methods=['GET'])
def get_hierarchy(project_id):
    """WBS forest of the project with orphan / cycle reports"""
    db = get_session()
    try:
        service = _service(db)
        hierarchy = service.get_hierarchy(project_id)
        dto = WBSHierarchyDTO(
            project_id=project_id,
            roots=[_tree_dto(service, root) for root in hierarchy.roots],
            orphans=[StructuralIssueDTO(**vars(i)) for i in hierarchy.orphans],
            cycles=[StructuralIssueDTO(**vars(i)) for i in hierarchy.cycles],
            total_elements=hierarchy.total_elements,
            max_level=hierarchy.max_level,
            root_count=hierarchy.root_count,
        )
        return jsonify(dto.model_dump(mode="json"))
    finally:
        db.close()


@wbs_bp.route('', methods=['POST'])
def create_element(project_id):
    db = get_session()
    try:
        command = parse_command(BudgetNodeCreate, json_body())
        service = _service(db)
        element = service.create_budget_node(
            project_id=project_id,
            data=command,
            operator_id=operator_id(),
        )
        db.commit()
        return jsonify(_element_dto(service, element)), 201
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@wbs_bp.route('/validate', methods=['GET'])
def validate_structure(project_id):
    db = get_session()
    try:
        result = _service(db).validate_structure(project_id)
        dto = WBSValidationResultDTO(is_valid=result.is_valid, errors=result.errors, warnings=result.warnings)
        return jsonify(dto.model_dump(mode="json"))
    finally:
        db.close()


@wbs_bp.route('/rollup-by-level', methods=['GET'])
def rollup_by_level(project_id):
    db = get_session()
    try:
        service = _service(db)
        rollups = service.rollup_by_level(project_id)
        return jsonify([
            LevelRollupDTO(
                level=r.level,
                elements=[WBSElementDTO.from_orm_model(e, service.completion_status(e)) for e in r.elements],
                total_budget=r.total_budget,
                total_actual=r.total_actual,
                total_commitments=r.total_commitments,
                total_variance=r.total_variance,
            ).model_dump(mode="json")
            for r in rollups
        ])
    finally:
        db.close()


@wbs_bp.route('/rollup-by-level/export', methods=['GET'])
def export_rollup_by_level(project_id):
    """Level rollup as an Excel workbook"""
    db = get_session()
    try:
        service = _service(db)
        output = service.ledger.export_level_rollup(service.rollup_by_level(project_id))
        return send_file(
            output,
            mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
            as_attachment=True,
            download_name=f'wbs_rollup_{project_id}.xlsx',
        )
    finally:
        db.close()


@wbs_bp.route('/reorder', methods=['POST'])
def reorder(project_id):
    db = get_session()
    try:
        command = parse_command(ReorderCommand, json_body())
        service = _service(db)
        elements = service.reorder(
            project_id=project_id,
            element_ids=command.element_ids,
            operator_id=operator_id(),
        )
        db.commit()
        return jsonify([_element_dto(service, e) for e in elements])
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@wbs_bp.route('/<element_id>', methods=['GET'])
def get_element(project_id, element_id):
    db = get_session()
    try:
        service = _service(db)
        return jsonify(_element_dto(service, _element_in_project(service, project_id, element_id)))
    finally:
        db.close()


@wbs_bp.route('/<element_id>', methods=['PATCH'])
def update_element(project_id, element_id):
    """Partial update; ``expected_version`` in the body enables the optimistic lock check"""
    db = get_session()
    try:
        command = parse_command(BudgetNodeUpdate, json_body())
        service = _service(db)
        _element_in_project(service, project_id, element_id)
        element = service.update_budget_node(
            element_id=element_id,
            data=command,
            operator_id=operator_id(),
            expected_version=command.expected_version,
        )
        db.commit()
        return jsonify(_element_dto(service, element))
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@wbs_bp.route('/<element_id>', methods=['DELETE'])
def delete_element(project_id, element_id):
    db = get_session()
    try:
        service = _service(db)
        _element_in_project(service, project_id, element_id)
        service.delete_budget_node(
            element_id=element_id,
            force=query_flag('force'),
            operator_id=operator_id(),
        )
        db.commit()
        return '', 204
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@wbs_bp.route('/<element_id>/summary', methods=['GET'])
def element_summary(project_id, element_id):
    """Rollup of the element and all of its descendants"""
    db = get_session()
    try:
        service = _service(db)
        _element_in_project(service, project_id, element_id)
        summary = service.summarize(element_id)
        return jsonify(WBSSummaryDTO.model_validate(summary).model_dump(mode="json"))
    finally:
        db.close()


@wbs_bp.route('/<element_id>/rab-items', methods=['POST'])
def link_rab_item(project_id, element_id):
    db = get_session()
    try:
        service = _service(db)
        _element_in_project(service, project_id, element_id)
        element = service.link_rab_item(element_id=element_id, operator_id=operator_id())
        db.commit()
        return jsonify(_element_dto(service, element))
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
