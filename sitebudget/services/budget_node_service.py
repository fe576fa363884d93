# sitebudget/services/budget_node_service.py
from typing import Dict, List, Optional
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from sitebudget.config import LedgerPolicy
from sitebudget.errors import (
    ConcurrencyError,
    DuplicateError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from sitebudget.logger import get_logger
from sitebudget.models.wbs_element import WBSElement
from sitebudget.schemas.wbs import BudgetNodeCreate, BudgetNodeUpdate
from sitebudget.services.budget_ledger import BudgetLedger, LevelRollup, WBSSummary
from sitebudget.services.collaborators import AuditSink, fire_and_forget
from sitebudget.services.hierarchy_builder import (
    HierarchyBuilder,
    WBSHierarchy,
    WBSValidationResult,
)

logger = get_logger(__name__)

SNAPSHOT_FIELDS = (
    "code", "name", "parent_id", "level", "order",
    "budget_amount", "actual_amount", "commitments",
    "variance", "variance_percentage", "available_budget",
    "status", "progress", "is_deliverable", "is_billable",
)


class BudgetNodeService:
    """
    Store for WBS elements with validation.

    - derived financial fields are recomputed from the merged record on every write
    - codes are unique per project
    - a parent always lives in the same project, and re-parenting never creates a cycle
    - elements with children are only deleted with force=True (descendants go too)
    """

    def __init__(
        self,
        db: Session,
        audit_sink: Optional[AuditSink] = None,
        policy: Optional[LedgerPolicy] = None,
        hierarchy_builder: Optional[HierarchyBuilder] = None,
    ):
        self.db = db
        self.audit_sink = audit_sink
        self.ledger = BudgetLedger(policy)
        self.hierarchy_builder = hierarchy_builder or HierarchyBuilder()

    # ======================================================
    # 🔐 Internal helpers
    # ======================================================

    def _snapshot(self, element: WBSElement) -> Dict:
        return {f: getattr(element, f) for f in SNAPSHOT_FIELDS}

    def _audit(self, kind: str, element: WBSElement, before, after, operator_id: str, **extra) -> None:
        if self.audit_sink is None:
            return
        fire_and_forget(
            kind,
            self.audit_sink.record,
            kind,
            element.id,
            before,
            after,
            {"project_id": element.project_id, "operator_id": operator_id,
             "changed_attribute": extra.pop("changed_attribute", "__all__"), **extra},
        )

    def _flush(self, element: WBSElement, expected_version: Optional[int] = None) -> None:
        try:
            self.db.flush()
        except StaleDataError as e:
            raise ConcurrencyError("wbs_element", element.id, expected_version) from e

    def _check_version(self, element: WBSElement, expected_version: Optional[int]) -> None:
        if expected_version is not None and element.version != expected_version:
            raise ConcurrencyError("wbs_element", element.id, expected_version, element.version)

    def _ensure_code_free(self, project_id: str, code: str, exclude_id: Optional[str] = None) -> None:
        existing = self.get_by_code(project_id, code)
        if existing is not None and existing.id != exclude_id:
            raise DuplicateError(
                f"WBS code {code} already exists in this project",
                code_value=code,
                existing_id=existing.id,
            )

    def _load_parent(self, project_id: str, parent_id: str) -> WBSElement:
        parent = self.db.get(WBSElement, parent_id)
        if parent is None:
            raise NotFoundError("Parent WBS element", parent_id)
        if parent.project_id != project_id:
            raise ValidationError("Parent WBS element must be in the same project", field="parent_id")
        return parent

    def _children_index(self, project_id: str) -> Dict[str, List[WBSElement]]:
        index: Dict[str, List[WBSElement]] = {}
        for element in self.list_elements(project_id):
            if element.parent_id:
                index.setdefault(element.parent_id, []).append(element)
        return index

    def _collect_descendants(self, element: WBSElement) -> List[WBSElement]:
        '''Breadth-first descendants; each node visited once even if the stored data holds a cycle.'''
        index = self._children_index(element.project_id)
        result: List[WBSElement] = []
        visited = {element.id}
        frontier = [element.id]
        while frontier:
            next_frontier = []
            for parent_id in frontier:
                for child in sorted(index.get(parent_id, []), key=lambda c: (c.order, c.code)):
                    if child.id in visited:
                        continue
                    visited.add(child.id)
                    result.append(child)
                    next_frontier.append(child.id)
            frontier = next_frontier
        return result

    def _assert_not_descendant(self, element: WBSElement, new_parent: WBSElement) -> None:
        '''Walk up from the new parent; meeting the element itself means the move creates a cycle.'''
        by_id = {e.id: e for e in self.list_elements(element.project_id)}
        current: Optional[WBSElement] = new_parent
        steps = 0
        while current is not None and steps <= len(by_id):
            if current.id == element.id:
                raise ValidationError(
                    f"Cannot move WBS element {element.code} under its own descendant {new_parent.code}",
                    field="parent_id",
                )
            current = by_id.get(current.parent_id) if current.parent_id else None
            steps += 1

    def _relevel_subtree(self, element: WBSElement, level: int) -> None:
        shift = level - element.level
        element.level = level
        if shift == 0:
            return
        for descendant in self._collect_descendants(element):
            descendant.level += shift

    # ======================================================
    # 🔎 Queries
    # ======================================================

    def get_budget_node(self, element_id: str) -> WBSElement:
        element = self.db.get(WBSElement, element_id)
        if element is None:
            raise NotFoundError("WBS element", element_id)
        return element

    def get_by_code(self, project_id: str, code: str) -> Optional[WBSElement]:
        return self.db.scalars(
            select(WBSElement).where(WBSElement.project_id == project_id, WBSElement.code == code)
        ).first()

    def list_elements(self, project_id: str) -> List[WBSElement]:
        return list(
            self.db.scalars(
                select(WBSElement)
                .where(WBSElement.project_id == project_id)
                .order_by(WBSElement.code, WBSElement.id)
            )
        )

    def get_children(self, parent_id: str) -> List[WBSElement]:
        return list(
            self.db.scalars(
                select(WBSElement)
                .where(WBSElement.parent_id == parent_id)
                .order_by(WBSElement.order, WBSElement.code)
            )
        )

    def get_hierarchy(self, project_id: str) -> WBSHierarchy:
        return self.hierarchy_builder.build(self.list_elements(project_id), project_id=project_id)

    def validate_structure(self, project_id: str) -> WBSValidationResult:
        result = self.hierarchy_builder.validate_structure(self.list_elements(project_id))
        if not result.is_valid:
            logger.warning(
                "WBS structure of project %s has %d error(s)", project_id, len(result.errors)
            )
        return result

    def summarize(self, element_id: str) -> WBSSummary:
        '''
        Roll up an element with all of its descendants.
        '''
        element = self.get_budget_node(element_id)
        return self.ledger.rollup(element, self._collect_descendants(element))

    def rollup_by_level(self, project_id: str) -> List[LevelRollup]:
        return self.ledger.rollup_by_level(self.list_elements(project_id))

    def completion_status(self, element: WBSElement) -> str:
        return self.ledger.completion_status(element)

    # ======================================================
    # ✍️ Commands
    # ======================================================

    def create_budget_node(
        self,
        *,
        project_id: str,
        data: BudgetNodeCreate,
        operator_id: str,
    ) -> WBSElement:
        '''
        Create a WBS element.

        :param project_id: owning project
        :type project_id: str
        :param data: all caller supplied fields, financials included
        :type data: BudgetNodeCreate
        :param operator_id: user creating the element
        :type operator_id: str
        :return: the created element with derived fields computed
        :rtype: WBSElement
        '''
        if not project_id:
            raise ValidationError("project_id is required", field="project_id")

        # 1. code uniqueness
        self._ensure_code_free(project_id, data.code)

        # 2. parent + level
        level = 1
        if data.parent_id:
            parent = self._load_parent(project_id, data.parent_id)
            level = parent.level + 1
        if data.level is not None and data.level != level:
            raise ValidationError(
                f"Level {data.level} does not match position in hierarchy (expected {level})",
                field="level",
            )

        element = WBSElement(
            id=str(uuid4()),
            project_id=project_id,
            code=data.code,
            name=data.name,
            description=data.description,
            parent_id=data.parent_id,
            level=level,
            order=data.order,
            budget_amount=data.budget_amount,
            actual_amount=data.actual_amount,
            commitments=data.commitments,
            rab_item_count=0,
            task_count=0,
            is_deliverable=data.is_deliverable,
            is_billable=data.is_billable,
            status=data.status,
            progress=data.progress,
            created_by=operator_id,
            updated_by=operator_id,
        )
        # 3. derived fields
        element.recompute_derived()

        self.db.add(element)
        self._flush(element)

        self._audit("wbs_element.create", element, None, self._snapshot(element), operator_id)
        logger.info("WBS element created: %s (%s) in project %s", element.id, element.code, project_id)
        return element

    def update_budget_node(
        self,
        *,
        element_id: str,
        data: BudgetNodeUpdate,
        operator_id: str,
        expected_version: Optional[int] = None,
    ) -> WBSElement:
        '''
        Partially update a WBS element. Only fields explicitly set on ``data`` change;
        derived fields are recomputed from the merged record.

        :param expected_version: optimistic concurrency token, the version the caller read
        '''
        element = self.get_budget_node(element_id)
        self._check_version(element, expected_version)

        updates = data.model_dump(exclude_unset=True, exclude={"expected_version"})
        if not updates:
            return element
        for required in ("code", "name", "budget_amount", "actual_amount", "commitments",
                         "order", "is_deliverable", "is_billable", "status", "progress"):
            if required in updates and updates[required] is None:
                raise ValidationError(f"Field '{required}' cannot be null", field=required)

        before = self._snapshot(element)

        # 1. code
        if "code" in updates and updates["code"] != element.code:
            self._ensure_code_free(element.project_id, updates["code"], exclude_id=element.id)

        # 2. parent (validated before anything is written)
        reparent = "parent_id" in updates and updates["parent_id"] != element.parent_id
        new_level = element.level
        if reparent:
            new_parent_id = updates["parent_id"]
            if new_parent_id is None:
                new_level = 1
            else:
                if new_parent_id == element.id:
                    raise ValidationError("A WBS element cannot be its own parent", field="parent_id")
                new_parent = self._load_parent(element.project_id, new_parent_id)
                self._assert_not_descendant(element, new_parent)
                new_level = new_parent.level + 1

        # 3. merge
        for field_name, value in updates.items():
            setattr(element, field_name, value)
        if reparent:
            self._relevel_subtree(element, new_level)
        element.recompute_derived()
        element.updated_by = operator_id

        self._flush(element, expected_version)

        after = self._snapshot(element)
        changed = sorted(k for k in after if before[k] != after[k])
        self._audit(
            "wbs_element.update", element,
            {k: before[k] for k in changed}, {k: after[k] for k in changed},
            operator_id, changed_attribute=",".join(changed)[:100] or "__none__",
        )
        logger.info("WBS element updated: %s fields=%s", element.id, changed)
        return element

    def delete_budget_node(
        self,
        *,
        element_id: str,
        force: bool = False,
        operator_id: str,
    ) -> None:
        '''
        Delete a WBS element.

        :param force: also delete every descendant; without it an element with children is refused
        '''
        element = self.get_budget_node(element_id)
        descendants = self._collect_descendants(element)
        if descendants and not force:
            raise InvalidStateError(
                "Cannot delete WBS element with children. Set force=true to delete its descendants too.",
                child_count=len(descendants),
            )

        # deepest first
        doomed = sorted(descendants, key=lambda e: e.level, reverse=True) + [element]
        for target in doomed:
            if target.rab_item_count > 0 or target.task_count > 0:
                logger.warning(
                    "WBS element %s (%s) still has linked entities (rab=%s, tasks=%s)",
                    target.id, target.code, target.rab_item_count, target.task_count,
                )
            snapshot = self._snapshot(target)
            self.db.delete(target)
            self._audit("wbs_element.delete", target, snapshot, None, operator_id)

        self._flush(element)
        logger.info("WBS element deleted: %s (+%d descendants)", element_id, len(descendants))

    def reorder(self, *, project_id: str, element_ids: List[str], operator_id: str) -> List[WBSElement]:
        '''
        Assign sibling order 0..n-1 following ``element_ids``. All ids must be siblings of one project.
        '''
        elements = [self.get_budget_node(i) for i in element_ids]
        if len(set(element_ids)) != len(element_ids):
            raise ValidationError("Duplicate ids in reorder list", field="element_ids")
        for e in elements:
            if e.project_id != project_id:
                raise ValidationError(f"WBS element {e.id} is not in project {project_id}", field="element_ids")
        if len({e.parent_id for e in elements}) > 1:
            raise ValidationError("Only siblings can be reordered together", field="element_ids")

        for index, element in enumerate(elements):
            if element.order != index:
                element.order = index
                element.updated_by = operator_id
        self._flush(elements[0])
        logger.info("Reordered %d WBS elements in project %s", len(elements), project_id)
        return elements

    def link_rab_item(self, *, element_id: str, operator_id: str) -> WBSElement:
        '''Count one more RAB (bill of quantities) item linked to the element.'''
        element = self.get_budget_node(element_id)
        element.rab_item_count = (element.rab_item_count or 0) + 1
        element.updated_by = operator_id
        self._flush(element)
        return element

    def link_task(self, *, element_id: str, operator_id: str) -> WBSElement:
        '''Count one more schedule task linked to the element.'''
        element = self.get_budget_node(element_id)
        element.task_count = (element.task_count or 0) + 1
        element.updated_by = operator_id
        self._flush(element)
        return element
