"""
workflow_core/errors.py

Workflow error taxonomy.

State-machine errors propagate synchronously to the caller and abort the
mutation. Trigger-evaluation errors are caught by the evaluator and written
to the execution log instead.
"""
from typing import Any, Dict, Optional


class WorkflowError(Exception):
    """
    Base class for all workflow errors.

    Attributes:
        message: Human readable message
        code: Stable machine readable code
        details: Extra context (attempted state, allowed states, ...)
    """

    code = "workflow_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class ValidationError(WorkflowError):
    """Malformed rule, condition or action definition."""

    code = "validation_error"

    def __init__(
        self,
        message: str,
        field_errors: Optional[Dict[str, str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.field_errors = field_errors or {}

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result["field_errors"] = self.field_errors
        return result


class PreconditionFailed(WorkflowError):
    """Illegal state transition or unmet business precondition."""

    code = "precondition_failed"


class PermissionDenied(WorkflowError):
    """Actor role is not allowed to perform the transition."""

    code = "permission_denied"


class ConflictError(WorkflowError):
    """The entity is already in the requested state, or a resource is exhausted."""

    code = "conflict"


class ExternalError(WorkflowError):
    """An external collaborator (webhook receiver, notification sink) failed."""

    code = "external_error"


class NotFoundError(WorkflowError):
    """Unknown entity, rule or rule version."""

    code = "not_found"


__all__ = [
    "WorkflowError",
    "ValidationError",
    "PreconditionFailed",
    "PermissionDenied",
    "ConflictError",
    "ExternalError",
    "NotFoundError",
]
