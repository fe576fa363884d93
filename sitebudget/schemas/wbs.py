# sitebudget/schemas/wbs.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from sitebudget.schemas.base import BaseDTO, Command


class BudgetNodeCreate(Command):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    parent_id: Optional[str] = None
    level: Optional[int] = Field(default=None, ge=1)  # derived from parent when omitted
    order: int = 0

    budget_amount: Decimal = Field(ge=0)
    actual_amount: Decimal = Field(ge=0)
    commitments: Decimal = Field(ge=0)

    is_deliverable: bool = False
    is_billable: bool = False
    status: str = "Not Started"
    progress: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class BudgetNodeUpdate(Command):
    """
    Mutable WBS fields only. Derived fields (variance...) and link counters are
    not accepted here.
    """
    code: Optional[str] = Field(default=None, min_length=1, max_length=50)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    parent_id: Optional[str] = None
    order: Optional[int] = None

    budget_amount: Optional[Decimal] = Field(default=None, ge=0)
    actual_amount: Optional[Decimal] = Field(default=None, ge=0)
    commitments: Optional[Decimal] = Field(default=None, ge=0)

    is_deliverable: Optional[bool] = None
    is_billable: Optional[bool] = None
    status: Optional[str] = None
    progress: Optional[Decimal] = Field(default=None, ge=0, le=100)
    expected_version: Optional[int] = None


class ReorderCommand(Command):
    element_ids: List[str] = Field(min_length=1)


class WBSElementDTO(BaseDTO):
    id: str
    project_id: str
    code: str
    name: str
    description: Optional[str] = None
    parent_id: Optional[str] = None
    level: int
    order: int
    budget_amount: Decimal
    actual_amount: Decimal
    commitments: Decimal
    variance: Decimal
    variance_percentage: Decimal
    available_budget: Decimal
    rab_item_count: int
    task_count: int
    is_deliverable: bool
    is_billable: bool
    status: str
    progress: Decimal
    completion_status: Optional[str] = None
    version: int
    updated_at: Optional[datetime] = None

    @classmethod
    def from_orm_model(cls, element, completion_status: Optional[str] = None) -> "WBSElementDTO":
        dto = cls.model_validate(element)
        dto.completion_status = completion_status
        return dto


class WBSTreeNodeDTO(BaseModel):
    element: WBSElementDTO
    children: List["WBSTreeNodeDTO"] = []


class StructuralIssueDTO(BaseModel):
    kind: str
    element_id: str
    code: str
    message: str


class WBSHierarchyDTO(BaseModel):
    project_id: str
    roots: List[WBSTreeNodeDTO]
    orphans: List[StructuralIssueDTO]
    cycles: List[StructuralIssueDTO]
    total_elements: int
    max_level: int
    root_count: int


class WBSValidationResultDTO(BaseModel):
    is_valid: bool
    errors: List[str]
    warnings: List[str]


class WBSSummaryDTO(BaseDTO):
    wbs_id: str
    wbs_code: str
    wbs_name: str
    total_budget: Decimal
    total_actual: Decimal
    total_commitments: Decimal
    total_variance: Decimal
    variance_percentage: Decimal
    budget_utilization: Decimal
    overall_progress: Decimal
    child_count: int
    completed_child_count: int
    total_rab_items: int
    total_tasks: int
    completion_status: str


class LevelRollupDTO(BaseModel):
    level: int
    elements: List[WBSElementDTO]
    total_budget: Decimal
    total_actual: Decimal
    total_commitments: Decimal
    total_variance: Decimal
