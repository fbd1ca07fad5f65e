"""Error taxonomy shared by the pipeline, the aggregators and the API layer.

Every error carries a ``kind`` telling callers whether to retry later, fix the
label/model configuration, or fix their input, and an HTTP status the API
exception handler reports it with.
"""
from __future__ import annotations

from typing import Any, Optional

RETRY_LATER = "retry_later"
FIX_CONFIGURATION = "fix_configuration"
BAD_INPUT = "bad_input"


class PlantDxError(Exception):
    kind = BAD_INPUT
    status_code = 400
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict:
        return {
            "error": type(self).__name__,
            "kind": self.kind,
            "retryable": self.retryable,
            "detail": self.message,
        }


class InferenceFailure(PlantDxError):
    """Base class for anything that went wrong talking to the model server."""

    def __init__(self, message: str, integration: str = "model_serving") -> None:
        super().__init__(f"{integration}: {message}")
        self.integration = integration


class InferenceUnavailable(InferenceFailure):
    kind = RETRY_LATER
    status_code = 503
    retryable = True


class InferenceInvalidResponse(InferenceFailure):
    kind = FIX_CONFIGURATION
    status_code = 502


class NoMatchingLabel(PlantDxError):
    kind = FIX_CONFIGURATION
    status_code = 422

    def __init__(self, severity: float) -> None:
        super().__init__(
            f"No label range covers severity {severity:.4f}; audit the configured label ranges"
        )
        self.severity = severity


class PersistenceFailure(PlantDxError):
    kind = RETRY_LATER
    status_code = 500
    retryable = True


class NotFound(PlantDxError):
    status_code = 404

    def __init__(self, entity: str, identifier: Optional[Any] = None) -> None:
        if identifier is None:
            message = f"{entity} not found"
        else:
            message = f"{entity} {identifier} not found"
        super().__init__(message)
        self.entity = entity
        self.identifier = identifier


class InvalidImage(PlantDxError):
    pass


class InvalidFilter(PlantDxError):
    pass


__all__ = [
    "BAD_INPUT",
    "FIX_CONFIGURATION",
    "RETRY_LATER",
    "InferenceFailure",
    "InferenceInvalidResponse",
    "InferenceUnavailable",
    "InvalidFilter",
    "InvalidImage",
    "NoMatchingLabel",
    "NotFound",
    "PersistenceFailure",
    "PlantDxError",
]
