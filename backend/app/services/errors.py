"""Error taxonomy of the service-request lifecycle.

Every error carries a stable machine-readable ``kind`` and a human-readable
message. ``main.py`` maps ``http_status`` onto the response.
"""

from __future__ import annotations

from typing import Optional


class ServiceRequestError(Exception):
    kind = "service_request_error"
    http_status = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "detail": self.message}


class ValidationError(ServiceRequestError):
    kind = "validation_error"
    http_status = 400

    def __init__(self, field: str, message: Optional[str] = None) -> None:
        super().__init__(message or f"Invalid value for '{field}'")
        self.field = field

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["field"] = self.field
        return data


class DuplicateRequestError(ServiceRequestError):
    kind = "duplicate_request"
    http_status = 409


class NotFoundError(ServiceRequestError):
    kind = "not_found"
    http_status = 404


class NotOwnerError(ServiceRequestError):
    kind = "not_owner"
    http_status = 403


class InvalidTransitionError(ServiceRequestError):
    kind = "invalid_transition"
    http_status = 409


class PersistenceError(ServiceRequestError):
    kind = "persistence_error"
    http_status = 503
