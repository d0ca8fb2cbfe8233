# Overview: Domain error taxonomy shared by services and routes.

"""
CheckRTO domain errors.

Every error carries the entity it refers to and the state the service
observed when it refused the operation, so the caller can render a precise
message ("already completed second inspection with result Rechazado").

    NotFoundError              404  entity missing or outside the workshop
    InvalidFormatError         400  malformed sticker number, plate, status
      InvalidStepError         400  step is not part of the configured set
    IllegalTransitionError     400  state change not allowed by the workflow
    ConflictError              409  lost a compare-and-set race
      PlateAlreadyBoundError   409  plate already holds an active sticker
    AlreadyFinalizedError      409  result slot already written
    NoStickersAvailableError   409  sticker pool exhausted

Only ConflictError is ever retried inside the core (auto-assign moves to the
next candidate). Everything else propagates to the caller.
"""

from __future__ import annotations

from typing import Any


class CheckRTOError(Exception):
    """Base class for domain errors."""

    code = "ERROR"
    http_status = 400

    def __init__(
        self,
        message: str,
        *,
        entity_type: str | None = None,
        entity_id: Any = None,
        observed: dict | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.observed = observed or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "observed": self.observed,
        }


class NotFoundError(CheckRTOError):
    code = "NOT_FOUND"
    http_status = 404


class InvalidFormatError(CheckRTOError):
    code = "INVALID_FORMAT"
    http_status = 400


class InvalidStepError(InvalidFormatError):
    code = "INVALID_STEP"


class IllegalTransitionError(CheckRTOError):
    code = "ILLEGAL_TRANSITION"
    http_status = 400


class ConflictError(CheckRTOError):
    code = "CONFLICT"
    http_status = 409


class PlateAlreadyBoundError(ConflictError):
    code = "PLATE_ALREADY_BOUND"


class AlreadyFinalizedError(CheckRTOError):
    code = "ALREADY_FINALIZED"
    http_status = 409


class NoStickersAvailableError(CheckRTOError):
    code = "NO_STICKERS_AVAILABLE"
    http_status = 409
