"""Exception taxonomy raised by the CBT core and mapped to HTTP status codes by the server."""

from __future__ import annotations


class CbtError(Exception):
    """Base class for every error the core raises on purpose."""

    status_code: int = 500

    def __init__(self, message: str, details: list[dict[str, str]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class NotFoundError(CbtError):
    """A referenced entity id does not exist."""

    status_code = 404

    @classmethod
    def for_entity(cls, entity: str, entity_id: str) -> "NotFoundError":
        return cls(f"{entity} not found", details=[{"field": "id", "message": entity_id}])


class ValidationError(CbtError):
    """Malformed or missing fields on create/update."""

    status_code = 400


class InsufficientQuestionsError(CbtError):
    """The candidate pool is smaller than the requested subset size."""

    status_code = 422

    def __init__(self, requested: int, available: int) -> None:
        super().__init__(
            f"Requested {requested} questions but only {available} are available.",
            details=[{"field": "numberOfQuestionsToDisplay", "message": f"pool size {available}"}],
        )
        self.requested = requested
        self.available = available


class ConflictError(CbtError):
    """The operation conflicts with the current state of the entity."""

    status_code = 409


class SessionClosedError(ConflictError):
    """Progress was written to a session that has already been submitted."""


class SessionExpiredError(ConflictError):
    """Progress was written after the session's time budget ran out."""


class InternalError(CbtError):
    """Unexpected store failure. The message never exposes internals."""

    status_code = 500

    def __init__(self, message: str = "Internal error") -> None:
        super().__init__(message)
