class DomainError(Exception):
    """Base exception for sync engine errors."""


class ValidationError(DomainError):
    """Raised when a payload or input is structurally invalid. Never retried."""


class TransientExternalError(DomainError):
    """Network, timeout or 5xx failure from an external system. Retried by the queue."""


class NotFoundError(DomainError):
    """Raised when a course, participant or remote object does not exist."""


class ConflictError(DomainError):
    """Raised by a store when a task with the same unique name already exists."""

    def __init__(self, name: str):
        super().__init__(f"Task already exists: {name}")
        self.name = name


class InvalidTransitionError(DomainError):
    """Raised when a task state change is requested from an incompatible state."""
