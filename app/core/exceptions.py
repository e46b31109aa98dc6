"""Exceptions raised by the escalation engine."""


class EscalationError(Exception):
    """Base exception for escalation workflow errors."""


class InvalidEscalationRequest(EscalationError, ValueError):
    """Raised when a pause request is missing required fields or has bad values."""


class PersistenceError(EscalationError):
    """Raised when the escalation store fails to read or write.

    Always propagated: a lost write would strand a paused conversation.
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")
