"""
Typed scheduling errors.

Each error is scoped to the request that raised it. The HTTP layer renders
them through a single exception handler using ``status_code`` and ``to_dict``.
"""
from typing import Any, Dict, Optional
from fastapi import status


class SchedulingError(Exception):
    code = "scheduling_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "message": self.message}
        payload.update(self.details)
        return payload


class ValidationError(SchedulingError):
    """Malformed input, rejected before touching the ledger."""
    code = "validation_error"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY


class NotFoundError(SchedulingError):
    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, id=str(entity_id))


class ConflictError(SchedulingError):
    """Slot at capacity, in the past, or gone at reservation time."""
    code = "conflict"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, slot_id: Optional[str] = None, **details: Any):
        if slot_id is not None:
            details["slot_id"] = slot_id
        super().__init__(message, **details)


class InvalidTransitionError(SchedulingError):
    code = "invalid_transition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current_status, requested_status):
        current = getattr(current_status, "value", current_status)
        requested = getattr(requested_status, "value", requested_status)
        super().__init__(
            f"Cannot move appointment from {current} to {requested}",
            current_status=current,
            requested_status=requested,
        )
        self.current_status = current_status
        self.requested_status = requested_status


class ForbiddenError(SchedulingError):
    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN
