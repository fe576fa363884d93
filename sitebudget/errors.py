# sitebudget/errors.py
"""
Typed exceptions raised by the budget ledger and the material request workflow.

Every class carries a machine readable ``code`` and the HTTP status the
Flask error handler answers with. Callers catch by type, never by message.

    SiteBudgetError
    +-- ValidationError
    +-- NotFoundError
    +-- DuplicateError
    +-- InvalidStateError
    |   +-- ConcurrencyError
    |   +-- DuplicateConversionError
    +-- ConversionError

A budget check that does not pass is NOT an exception: the request lands in
``rejected``, which is a normal terminal state.
"""
from typing import Any, Dict, Optional


class SiteBudgetError(Exception):
    """Base exception for all ledger / workflow errors."""

    code: str = "SITEBUDGET_ERROR"
    http_status: int = 500

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(SiteBudgetError):
    """Missing or malformed input (empty field, non-positive quantity...)."""

    code = "VALIDATION_ERROR"
    http_status = 400

    def __init__(self, message: str, field: Optional[str] = None, **details: Any):
        self.field = field
        if field is not None:
            details["field"] = field
        super().__init__(message, **details)


class NotFoundError(SiteBudgetError):
    """An id does not resolve."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type} not found: {entity_id}",
            entity_type=entity_type,
            entity_id=entity_id,
        )


class DuplicateError(SiteBudgetError):
    """Code collision inside a project."""

    code = "DUPLICATE"
    http_status = 409


class InvalidStateError(SiteBudgetError):
    """Operation attempted from a status that does not permit it."""

    code = "INVALID_STATE"
    http_status = 409

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        expected_status: Optional[str] = None,
        **details: Any,
    ):
        self.current_status = current_status
        self.expected_status = expected_status
        if current_status is not None:
            details["current_status"] = current_status
        if expected_status is not None:
            details["expected_status"] = expected_status
        super().__init__(message, **details)


class ConcurrencyError(InvalidStateError):
    """The record changed between read and write."""

    code = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, expected_version: Optional[int] = None,
                 current_version: Optional[int] = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "record was modified by another request",
            entity_type=entity_type,
            entity_id=entity_id,
            expected_version=expected_version,
            current_version=current_version,
        )


class DuplicateConversionError(InvalidStateError):
    """An item already converted to a purchase order was targeted again."""

    code = "ALREADY_CONVERTED"

    def __init__(self, mr_number: str, item_ids: list):
        self.item_ids = list(item_ids)
        super().__init__(
            f"Material request {mr_number}: items already converted to PO: "
            + ", ".join(self.item_ids),
            item_ids=self.item_ids,
        )


class ConversionError(SiteBudgetError):
    """
    Conversion failed after the order was written.

    ``order_voided`` tells the caller whether the compensating void went
    through; if it did not, ``order_id`` is the dangling order to clean up.
    """

    code = "CONVERSION_FAILED"
    http_status = 500

    def __init__(self, message: str, order_id: Optional[str], order_voided: bool):
        self.order_id = order_id
        self.order_voided = order_voided
        super().__init__(message, order_id=order_id, order_voided=order_voided)
