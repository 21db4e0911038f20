from __future__ import annotations


class CoordinationError(Exception):
    """Base class for every error raised by the coordination engine."""


class ValidationError(CoordinationError, ValueError):
    """Malformed or missing input, reported to the caller as-is."""


class NotFoundError(CoordinationError, LookupError):
    def __init__(self, kind: str, identifier: str) -> None:
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ConflictError(CoordinationError):
    """An operation is not allowed in the current state."""


class ExternalServiceError(CoordinationError):
    """A provider (LLM, maps) was unreachable or answered with garbage."""


class PersistenceError(CoordinationError):
    """The document store rejected a write."""
