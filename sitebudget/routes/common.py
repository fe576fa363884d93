# sitebudget/routes/common.py
from flask import current_app, request

from sitebudget.config import LedgerPolicy
from sitebudget.errors import ValidationError


def operator_id() -> str:
    """Authenticated user id; authentication happens in front of this service."""
    value = (request.headers.get("X-Operator-Id") or "").strip()
    if not value:
        raise ValidationError("X-Operator-Id header is required", field="X-Operator-Id")
    return value


def json_body() -> dict:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def ledger_policy() -> LedgerPolicy:
    return current_app.config.get("LEDGER_POLICY") or LedgerPolicy()


def query_flag(name: str) -> bool:
    return (request.args.get(name) or "").strip().lower() in ("1", "true", "yes")
