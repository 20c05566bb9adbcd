"""
Error taxonomy for AuditFlow.

The core never retries and never swallows these. Batch operations collect
ValidationErrors per entity and keep going; InvariantViolations abort the
single operation that hit them.
"""
from typing import Optional


class AuditFlowError(Exception):
    """Base class for all domain errors."""

    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None
    ):
        self.message = message
        self.entity_type = entity_type
        self.entity_id = None if entity_id is None else str(entity_id)
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
        }


class ValidationError(AuditFlowError):
    """
    Malformed rule or template input.

    Reported per entity - never aborts work on sibling entities.
    """
    def __init__(
        self,
        message: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        field: Optional[str] = None
    ):
        self.field = field
        super().__init__(message, entity_type, entity_id)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field"] = self.field
        return data


class InvariantViolation(AuditFlowError):
    """An internal consistency check failed, e.g. writing to a completed audit."""
