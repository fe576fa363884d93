# sitebudget/config.py
"""
Application configuration.

Infrastructure settings come from environment variables (a ``.env`` file is
loaded by the app factory). Business thresholds used by the budget ledger and
the budget verifier live in ``LedgerPolicy`` so that they are explicit and
overridable instead of being buried as literals in the services.
"""
import os
from decimal import Decimal

from pydantic import BaseModel, ConfigDict

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


class LedgerPolicy(BaseModel):
    '''
    Business policy for completion classification and budget verification.

    over_budget_pct    variance percentage at or below which a node is "Over Budget"
    at_risk_pct        variance percentage at or below which a node is "At Risk"
    tight_factor       available < required * tight_factor marks a WBS code as "tight"
    default_completion_label  label for nodes that are neither over budget nor at risk
    '''
    model_config = ConfigDict(frozen=True)

    over_budget_pct: Decimal = Decimal("-10")
    at_risk_pct: Decimal = Decimal("-5")
    tight_factor: Decimal = Decimal("1.2")
    default_completion_label: str = "On Track"

    @classmethod
    def from_env(cls) -> "LedgerPolicy":
        overrides = {}
        if os.getenv("SITEBUDGET_OVER_BUDGET_PCT"):
            overrides["over_budget_pct"] = Decimal(os.environ["SITEBUDGET_OVER_BUDGET_PCT"])
        if os.getenv("SITEBUDGET_AT_RISK_PCT"):
            overrides["at_risk_pct"] = Decimal(os.environ["SITEBUDGET_AT_RISK_PCT"])
        if os.getenv("SITEBUDGET_TIGHT_FACTOR"):
            overrides["tight_factor"] = Decimal(os.environ["SITEBUDGET_TIGHT_FACTOR"])
        return cls(**overrides)


class Config:
    """Base configuration shared by all environments."""

    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key-change-in-production")
    DATABASE_URL = os.getenv(
        "DATABASE_URL",
        f"sqlite:///{os.path.join(BASE_DIR, 'sitebudget.db')}",
    )
    TESTING = False


class DevelopmentConfig(Config):
    DEBUG = True


class TestingConfig(Config):
    TESTING = True
    DATABASE_URL = "sqlite://"


CONFIG_BY_NAME = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": Config,
}
