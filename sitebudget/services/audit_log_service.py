# sitebudget/services/audit_log_service.py
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional, Union
from uuid import uuid4

from sqlalchemy.orm import Session

from sitebudget.db.enums import AuditAction, AuditEntityType
from sitebudget.models.audit_log import AuditLog


class AuditLogService:
    """
    Centralized service for recording auditable actions.
    This service is the ONLY place where AuditLog records are created.

    It is the default audit sink of the workflow services through
    ``record(event_kind, entity_id, before, after, metadata)``; callers treat it
    as fire-and-forget.
    """

    def __init__(self, db: Session):
        self.db = db

    def serialize_audit_value(self, value) -> Any:
        if value is None:
            return None
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, (datetime, date)):
            return value.isoformat()
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, (int, float, str, bool)):
            return value
        if isinstance(value, dict):
            return {str(k): self.serialize_audit_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [self.serialize_audit_value(v) for v in value]
        return str(value)

    def _normalize_entity_type(self, entity_type: Union[str, AuditEntityType]) -> AuditEntityType:
        if isinstance(entity_type, AuditEntityType):
            return entity_type
        value = str(entity_type).strip()
        for member in AuditEntityType:
            if member.value == value.lower() or member.name.lower() == value.lower():
                return member
        raise ValueError(
            f"Unknown entity_type: {value}. Valid values: {[e.value for e in AuditEntityType]}"
        )

    def _add(
        self,
        *,
        project_id: Optional[str],
        entity_type: Union[str, AuditEntityType],
        entity_id: str,
        action: AuditAction,
        changed_attribute: str,
        before_value: Any,
        after_value: Any,
        operator_id: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        log = AuditLog(
            id=str(uuid4()),
            project_id=project_id,
            entity_type=self._normalize_entity_type(entity_type),
            entity_id=entity_id,
            action=action,
            changed_attribute=changed_attribute,
            before_value=self.serialize_audit_value(before_value),
            after_value=self.serialize_audit_value(after_value),
            extra=self.serialize_audit_value(extra) if extra else None,
            operator_id=operator_id or "SYSTEM",
            timestamp=datetime.now(),
        )
        self.db.add(log)
        return log

    def record(
        self,
        event_kind: str,
        entity_id: str,
        before: Any,
        after: Any,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        '''
        Generic audit sink entry point.

        :param event_kind: "<entity_type>.<action>", e.g. "material_request.transition"
        :param entity_id: id of the audited entity
        :param before: state before the event
        :param after: state after the event
        :param metadata: project_id / operator_id / changed_attribute plus free-form data
        '''
        metadata = dict(metadata or {})
        entity_type, _, action = event_kind.partition(".")
        self._add(
            project_id=metadata.pop("project_id", None),
            entity_type=entity_type,
            entity_id=entity_id,
            action=AuditAction(action or "system"),
            changed_attribute=metadata.pop("changed_attribute", "status"),
            before_value=before,
            after_value=after,
            operator_id=metadata.pop("operator_id", "SYSTEM"),
            extra=metadata,
        )
