"""
Typed exceptions for the replenishment engine.

Every error carries a machine-readable ``code``, the HTTP status the API
maps it to, and structured ``details``. Callers catch by type, the API
layer renders them as ``{"error": {"code", "message", "details"}}``.

    ReplenishmentError
    +-- NotFound
    +-- InvalidQuantity
    +-- InvalidTransition
    +-- AlertAlreadyResolved
    +-- NoOpenDraftAllowed
    +-- PartialApplyRejected
    +-- BillAlreadyReconciled
    +-- ConfigurationError
    +-- PermissionDenied
    +-- StorageUnavailable
"""

from typing import Any


class ReplenishmentError(Exception):
    """Base class for all engine errors."""

    code: str = "replenishment_error"
    status_code: int = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": {k: _jsonable(v) for k, v in self.details.items()},
        }


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return str(value)


class NotFound(ReplenishmentError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", entity=entity, entity_id=entity_id)


class InvalidQuantity(ReplenishmentError):
    code = "invalid_quantity"
    status_code = 422


class InvalidTransition(ReplenishmentError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, entity_id: Any, from_status: str, to_status: str, entity: str = "alert"):
        super().__init__(
            f"Cannot move {entity} {entity_id} from '{from_status}' to '{to_status}'",
            entity=entity,
            entity_id=entity_id,
            from_status=from_status,
            to_status=to_status,
        )


class AlertAlreadyResolved(ReplenishmentError):
    code = "alert_already_resolved"
    status_code = 409

    def __init__(self, alert_id: Any):
        super().__init__(f"Alert {alert_id} is already resolved", alert_id=alert_id)


class NoOpenDraftAllowed(ReplenishmentError):
    code = "open_draft_exists"
    status_code = 409

    def __init__(self, alert_id: Any, draft_id: Any):
        super().__init__(
            f"Alert {alert_id} already has open draft {draft_id}",
            alert_id=alert_id,
            draft_id=draft_id,
        )


class PartialApplyRejected(ReplenishmentError):
    code = "partial_apply_rejected"
    status_code = 409

    def __init__(self, bill_number: str, line_index: int, reason: str):
        super().__init__(
            f"Bill {bill_number} rejected: line {line_index} could not be applied ({reason})",
            bill_number=bill_number,
            line_index=line_index,
            reason=reason,
        )


class BillAlreadyReconciled(ReplenishmentError):
    code = "bill_already_reconciled"
    status_code = 409

    def __init__(self, bill_number: str):
        super().__init__(f"Bill {bill_number} has already been reconciled", bill_number=bill_number)


class ConfigurationError(ReplenishmentError):
    code = "configuration_error"
    status_code = 422


class PermissionDenied(ReplenishmentError):
    code = "permission_denied"
    status_code = 403

    def __init__(self, permission: str):
        super().__init__(f"Missing permission '{permission}'", permission=permission)


class StorageUnavailable(ReplenishmentError):
    code = "storage_unavailable"
    status_code = 503

    def __init__(self, message: str = "Storage layer unavailable"):
        super().__init__(message)
