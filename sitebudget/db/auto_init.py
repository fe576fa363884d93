"""
Startup database check: create the tables when the database is empty.
"""
from sqlalchemy import inspect

from sitebudget.db.session import get_engine
from sitebudget.db.init_db import init_db
from sitebudget.logger import get_logger

logger = get_logger(__name__)

REQUIRED_TABLES = {"wbs_elements", "material_requests", "material_request_items", "purchase_orders"}


def check_tables_exist() -> bool:
    """Check whether the core tables exist."""
    try:
        inspector = inspect(get_engine())
        tables = set(inspector.get_table_names())
        return REQUIRED_TABLES.issubset(tables)
    except Exception:
        logger.exception("Failed to inspect database tables")
        return False


def auto_init():
    """
    Create the schema if the database has not been initialised yet.
    """
    logger.info("Checking database initialisation state...")

    if check_tables_exist():
        logger.info("Database tables already exist")
        return

    logger.info("Database tables missing, creating...")
    init_db()
    logger.info("Database tables created")


if __name__ == "__main__":
    auto_init()
