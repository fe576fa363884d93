# sitebudget/tests/conftest.py
from decimal import Decimal

import pytest

from sitebudget.db.init_db import init_db
from sitebudget.db.session import get_session, init_engine
from sitebudget.schemas.material_request import MaterialRequestCreate, MRItemInput
from sitebudget.schemas.wbs import BudgetNodeCreate
from sitebudget.services.budget_node_service import BudgetNodeService
from sitebudget.services.material_request_service import MaterialRequestService
from sitebudget.tests.fakes import OPERATOR, PROJECT_ID, RecordingAuditSink


@pytest.fixture
def db():
    init_engine("sqlite://")
    init_db()
    session = get_session()
    yield session
    session.close()


@pytest.fixture
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture
def node_service(db, audit_sink):
    return BudgetNodeService(db, audit_sink=audit_sink)


@pytest.fixture
def make_node(node_service):
    def _make(code, parent=None, budget="0", actual="0", commitments="0", project_id=PROJECT_ID, **fields):
        data = BudgetNodeCreate(
            code=code,
            name=fields.pop("name", f"Element {code}"),
            parent_id=parent.id if parent is not None else None,
            budget_amount=Decimal(budget),
            actual_amount=Decimal(actual),
            commitments=Decimal(commitments),
            **fields,
        )
        return node_service.create_budget_node(project_id=project_id, data=data, operator_id=OPERATOR)
    return _make


@pytest.fixture
def mr_service(db, audit_sink):
    return MaterialRequestService(db, audit_sink=audit_sink)


@pytest.fixture
def make_mr(mr_service):
    def _make(items=None, project_id=PROJECT_ID, purpose="Concrete for level 2 slab"):
        if items is None:
            items = [{"material_name": "Ready-mix concrete K-300", "quantity": "10",
                      "unit": "m3", "estimated_unit_price": "1000", "wbs_code": "1.1"}]
        data = MaterialRequestCreate(
            purpose=purpose,
            items=[MRItemInput(**item) for item in items],
        )
        return mr_service.create_mr(project_id=project_id, data=data, operator_id=OPERATOR)
    return _make
