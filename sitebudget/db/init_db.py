from sitebudget.db.session import get_engine
from sitebudget.db.base import Base
#------------------- every table -----------------------
from sitebudget.models.wbs_element import WBSElement  # noqa: F401
from sitebudget.models.material_request import MaterialRequest, MaterialRequestItem  # noqa: F401
from sitebudget.models.purchase_order import PurchaseOrder  # noqa: F401
from sitebudget.models.vendor import Vendor  # noqa: F401
from sitebudget.models.audit_log import AuditLog  # noqa: F401


def init_db():
    engine = get_engine()
    Base.metadata.create_all(bind=engine)
