"""Discriminated result returned by every exposed operation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from .errors import DomainError, ErrorKind


@dataclass
class OperationResult:
    success: bool
    error: Optional[DomainError] = None
    data: dict[str, Any] = field(default_factory=dict)
    warnings: list[DomainError] = field(default_factory=list)

    @classmethod
    def ok(cls, **data: Any) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: DomainError) -> "OperationResult":
        return cls(success=False, error=error)

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error else None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success, **self.data}
        if self.error is not None:
            body["error"] = self.error.to_dict()
        if self.warnings:
            body["warnings"] = [w.to_dict() for w in self.warnings]
        return body
