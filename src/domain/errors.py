"""
Error taxonomy shared by every operation.

Business-rule violations are *returned* inside an ``OperationResult``;
only ``ExternalServiceError`` is ever raised, by the gateway client, and
the calling service decides whether it is fatal or a warning.
"""

from __future__ import annotations

import enum


class ErrorKind(str, enum.Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    STATE_CONFLICT = "state_conflict"
    AUTHORIZATION = "authorization"
    EXTERNAL_SERVICE = "external_service"


class DomainError(Exception):
    kind: ErrorKind

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message}


class ValidationError(DomainError):
    kind = ErrorKind.VALIDATION


class NotFoundError(DomainError):
    kind = ErrorKind.NOT_FOUND


class StateConflictError(DomainError):
    kind = ErrorKind.STATE_CONFLICT


class AuthorizationError(DomainError):
    kind = ErrorKind.AUTHORIZATION


class ExternalServiceError(DomainError):
    """A gateway call failed, or timed out with an unknown outcome."""

    kind = ErrorKind.EXTERNAL_SERVICE

    def __init__(self, message: str, *, outcome_unknown: bool = False):
        super().__init__(message)
        self.outcome_unknown = outcome_unknown

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["outcome_unknown"] = self.outcome_unknown
        return data


# User-facing messages
ALREADY_CLAIMED = "this trip was already accepted by another driver"
ALREADY_PROCESSED = "this payout was already processed"
NOT_ASSIGNED_DRIVER = "only the assigned driver may perform this action"
NO_CONNECTED_ACCOUNT = "no connected account"
