"""Structured error taxonomy shared by every service module.

Errors carry a machine-readable ``kind`` plus the fields that identify
what went wrong. Human-readable rendering happens at the HTTP layer.
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any, ParamSpec, TypeVar

import structlog
from sqlalchemy.exc import SQLAlchemyError

logger = structlog.get_logger()

P = ParamSpec("P")
R = TypeVar("R")


class TavernError(Exception):
    """Base class for all domain errors."""

    kind: str = "error"
    status_code: int = 400

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind}


class ValidationError(TavernError):
    """Malformed input. Raised before any persistence call."""

    kind = "validation_error"
    status_code = 422

    def __init__(self, field: str, reason: str) -> None:
        self.field = field
        self.reason = reason
        super().__init__(f"{field}: {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "field": self.field, "reason": self.reason}


class NotFoundError(TavernError):
    """A referenced entity does not exist."""

    kind = "not_found"
    status_code = 404

    def __init__(self, resource: str, resource_id: str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "resource": self.resource, "resource_id": self.resource_id}


class DuplicateError(TavernError):
    """A uniqueness constraint would be violated."""

    kind = "duplicate"
    status_code = 409

    def __init__(self, resource: str, key: str) -> None:
        self.resource = resource
        self.key = key
        super().__init__(f"{resource} already exists: {key}")

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "resource": self.resource, "key": self.key}


class PersistenceError(TavernError):
    """The storage layer failed. Never retried inside the core."""

    kind = "persistence_error"
    status_code = 503

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"{operation} failed: {reason}")

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "operation": self.operation}


def persistence_guard(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
    """Translate SQLAlchemy failures raised by a service operation into PersistenceError."""

    @functools.wraps(func)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.error("persistence_failure", operation=func.__name__, error=str(exc))
            raise PersistenceError(func.__name__, str(exc)) from exc

    return wrapper
