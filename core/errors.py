"""
Error taxonomy for the flow engine.

Every external call site (records client, report orchestrator, session store)
classifies its own failures into these types before anything reaches the
engine. The engine never inspects raw httpx / SQLAlchemy / OS errors.

Provides:
- ErrorKind: the classification the retry policy switches on
- FlowError and its subclasses
- Failure: a typed failure value returned instead of raising at call sites
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    CONNECTION = "connection"
    INVALID_RESPONSE = "invalid_response"
    EMPTY_RESULT = "empty_result"
    RENDER = "render"
    PERSISTENCE = "persistence"
    UNEXPECTED = "unexpected"


# ══════════════════════════════════════════════════════════════
#  ERRORS
# ══════════════════════════════════════════════════════════════

class FlowError(Exception):
    """Base exception for all classified failures."""

    kind: ErrorKind = ErrorKind.UNEXPECTED
    recoverable: bool = True

    def __init__(self, message: str, cause: Exception = None):
        self.cause = cause
        super().__init__(message)


class ValidationError(FlowError):
    kind = ErrorKind.VALIDATION


class NotFoundError(FlowError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource: str, identifier: str, cause: Exception = None):
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found: {identifier}", cause)


class ApiConnectionError(FlowError):
    """Transport failure or timeout talking to an external service."""
    kind = ErrorKind.CONNECTION

    def __init__(self, endpoint: str, cause: Exception = None, status_code: int = None):
        self.endpoint = endpoint
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code else ""
        super().__init__(f"Could not reach {endpoint}{detail}", cause)


class InvalidResponseShapeError(FlowError):
    kind = ErrorKind.INVALID_RESPONSE

    def __init__(self, endpoint: str, field: str, cause: Exception = None):
        self.endpoint = endpoint
        self.field = field
        super().__init__(f"Response from {endpoint} is missing '{field}'", cause)


class EmptyResultError(FlowError):
    """Raised when there is nothing to report on."""
    kind = ErrorKind.EMPTY_RESULT


# Report orchestrator name for the same condition
EmptyInputError = EmptyResultError


class RenderError(FlowError):
    kind = ErrorKind.RENDER


class PersistenceError(FlowError):
    """Session store I/O failure. Fatal for the current event only."""
    kind = ErrorKind.PERSISTENCE
    recoverable = False


# ══════════════════════════════════════════════════════════════
#  FAILURE VALUE
# ══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Failure:
    """A classified failure returned from a boundary call."""
    error: FlowError

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    def __bool__(self):
        return False

    def __repr__(self):
        return f"<Failure {self.kind.value}: {self.error}>"
