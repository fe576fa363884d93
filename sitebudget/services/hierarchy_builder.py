# sitebudget/services/hierarchy_builder.py
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set

from sitebudget.models.wbs_element import WBSElement


@dataclass
class WBSTreeNode:
    element: WBSElement
    children: List["WBSTreeNode"] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.element.id

    def walk(self):
        '''Yield this node and all descendants, depth first, in sibling order.'''
        yield self
        for child in self.children:
            yield from child.walk()


@dataclass
class StructuralIssue:
    kind: str  # duplicate_code / orphan / level_mismatch / cycle / empty_leaf
    element_id: str
    code: str
    message: str


@dataclass
class WBSHierarchy:
    project_id: Optional[str]
    roots: List[WBSTreeNode]
    flat_list: List[WBSElement]
    orphans: List[StructuralIssue]
    cycles: List[StructuralIssue]
    total_elements: int
    max_level: int

    @property
    def root_count(self) -> int:
        return len(self.roots)

    def find(self, element_id: str) -> Optional[WBSTreeNode]:
        for root in self.roots:
            for node in root.walk():
                if node.id == element_id:
                    return node
        return None


@dataclass
class WBSValidationResult:
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    issues: List[StructuralIssue] = field(default_factory=list)


def _sort_key(element: WBSElement):
    return (element.order or 0, element.code or "", element.id)


class HierarchyBuilder:
    """
    Assemble a WBS forest from the flat node list of one project.

    Nodes are held in an id-indexed arena; parent -> children adjacency is built
    explicitly. Before a node is placed in the tree its parent chain is walked
    (bounded by the node count): nodes on or under a cycle are reported and left
    out, nodes whose parent does not resolve are reported as orphans.
    """

    def _find_cycle_members(self, by_id: Dict[str, WBSElement]) -> Set[str]:
        '''
        Return ids of every node whose upward walk never reaches a root or a missing parent.
        '''
        limit = len(by_id) + 1
        doomed: Set[str] = set()
        safe: Set[str] = set()

        for start_id in by_id:
            path: List[str] = []
            seen: Set[str] = set()
            current: Optional[str] = start_id
            verdict_doomed = False
            steps = 0
            while current is not None and current in by_id and steps <= limit:
                if current in safe:
                    break
                if current in doomed or current in seen:
                    verdict_doomed = True
                    break
                seen.add(current)
                path.append(current)
                current = by_id[current].parent_id
                steps += 1
            else:
                if steps > limit:
                    verdict_doomed = True

            if verdict_doomed:
                doomed.update(path)
            else:
                safe.update(path)
        return doomed

    def build(self, elements: Iterable[WBSElement], project_id: Optional[str] = None) -> WBSHierarchy:
        '''
        Build the forest.

        :param elements: every WBS element of one project
        :param project_id: carried into the result for callers
        :return: roots with materialized children, orphan / cycle reports and stats
        '''
        flat_list = sorted(elements, key=lambda e: (e.code or "", e.id))
        by_id: Dict[str, WBSElement] = {}
        for element in flat_list:
            by_id.setdefault(element.id, element)

        cycle_ids = self._find_cycle_members(by_id)

        nodes: Dict[str, WBSTreeNode] = {
            element_id: WBSTreeNode(element=element)
            for element_id, element in by_id.items()
            if element_id not in cycle_ids
        }

        roots: List[WBSTreeNode] = []
        orphans: List[StructuralIssue] = []
        for element_id, node in nodes.items():
            parent_id = node.element.parent_id
            if parent_id is None:
                roots.append(node)
            elif parent_id in nodes:
                nodes[parent_id].children.append(node)
            else:
                orphans.append(
                    StructuralIssue(
                        kind="orphan",
                        element_id=element_id,
                        code=node.element.code,
                        message=f"Orphaned element: {node.element.code} (parent not found)",
                    )
                )

        # orphaned subtrees are reported, not silently attached anywhere
        for node in nodes.values():
            node.children.sort(key=lambda n: _sort_key(n.element))
        roots.sort(key=lambda n: _sort_key(n.element))

        cycles = [
            StructuralIssue(
                kind="cycle",
                element_id=element_id,
                code=by_id[element_id].code,
                message=f"Cycle detected: {by_id[element_id].code} is part of or below a parent cycle",
            )
            for element_id in sorted(cycle_ids, key=lambda i: (by_id[i].code or "", i))
        ]

        max_level = max((e.level or 0 for e in flat_list), default=0)

        return WBSHierarchy(
            project_id=project_id,
            roots=roots,
            flat_list=flat_list,
            orphans=orphans,
            cycles=cycles,
            total_elements=len(flat_list),
            max_level=max_level,
        )

    def validate_structure(self, elements: Iterable[WBSElement]) -> WBSValidationResult:
        '''
        Check a project's WBS for structural defects.

        Errors (blocking): duplicate codes, orphaned parents, level mismatches, cycles.
        Warnings: leaf elements carrying no budget.
        '''
        flat_list = sorted(elements, key=lambda e: (e.code or "", e.id))
        by_id: Dict[str, WBSElement] = {e.id: e for e in flat_list}
        issues: List[StructuralIssue] = []
        warnings: List[StructuralIssue] = []

        # 1. duplicate codes (different ids, same code)
        seen_codes: Set[str] = set()
        for element in flat_list:
            if element.code in seen_codes:
                issues.append(StructuralIssue(
                    kind="duplicate_code",
                    element_id=element.id,
                    code=element.code,
                    message=f"Duplicate WBS code: {element.code}",
                ))
            seen_codes.add(element.code)

        # 2. orphans
        for element in flat_list:
            if element.parent_id and element.parent_id not in by_id:
                issues.append(StructuralIssue(
                    kind="orphan",
                    element_id=element.id,
                    code=element.code,
                    message=f"Orphaned element: {element.code} (parent not found)",
                ))

        # 3. level consistency
        for element in flat_list:
            if element.parent_id is None:
                if element.level != 1:
                    issues.append(StructuralIssue(
                        kind="level_mismatch",
                        element_id=element.id,
                        code=element.code,
                        message=f"Level inconsistency: {element.code} (expected level 1, got {element.level})",
                    ))
                continue
            parent = by_id.get(element.parent_id)
            if parent is not None and element.level != parent.level + 1:
                issues.append(StructuralIssue(
                    kind="level_mismatch",
                    element_id=element.id,
                    code=element.code,
                    message=(
                        f"Level inconsistency: {element.code} "
                        f"(expected level {parent.level + 1}, got {element.level})"
                    ),
                ))

        # 4. cycles
        hierarchy = self.build(flat_list)
        issues.extend(hierarchy.cycles)

        # 5. leaves without budget (warning only)
        parent_ids = {e.parent_id for e in flat_list if e.parent_id}
        for element in flat_list:
            if element.id not in parent_ids and Decimal(element.budget_amount or 0) == 0:
                warnings.append(StructuralIssue(
                    kind="empty_leaf",
                    element_id=element.id,
                    code=element.code,
                    message=f"Leaf element without budget: {element.code}",
                ))

        return WBSValidationResult(
            is_valid=not issues,
            errors=[i.message for i in issues],
            warnings=[w.message for w in warnings],
            issues=issues + warnings,
        )
