"""
Exception hierarchy for forge-mcp.

Validation failures are usually returned inside a ``ValidationResult`` rather
than raised, so that callers can collect problems across many files. The same
``ValidationError`` object can still be raised when a hard failure is wanted::

    result = validate_node(raw)
    node = result.unwrap()  # raises ValidationError on failure
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable machine-readable validation error codes."""

    MISSING_FIELD = "MISSING_FIELD"
    INVALID_VALUE = "INVALID_VALUE"
    INVALID_TYPE = "INVALID_TYPE"
    PARSE_ERROR = "PARSE_ERROR"


@dataclass(frozen=True)
class Issue:
    """One problem at one location, e.g. ``options[0].name``."""

    path: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "message": self.message}


class ForgeError(Exception):
    """
    Base exception for all forge-mcp errors.

    Attributes:
        message: Human-readable description
        context: Extra key/value information (file paths, ids, ...)
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value}" for key, value in self.context.items())
        return f"{self.message} ({details})"


class ValidationError(ForgeError):
    """Raw input could not be turned into a typed node or project."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        path: str | None = None,
        issues: list[Issue] | None = None,
    ):
        self.code = ErrorCode(code)
        self.path = path
        self.issues = list(issues or [])
        super().__init__(message, {"path": path} if path else None)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.path:
            data["path"] = self.path
        if self.issues:
            data["issues"] = [issue.to_dict() for issue in self.issues]
        return data


class CycleError(ForgeError):
    """A dependency cycle was found where the graph must be acyclic."""

    def __init__(self, cycle: list[str], message: str | None = None):
        self.cycle = list(cycle)
        super().__init__(message or f"Cycle detected: {' -> '.join(self.cycle)}")

