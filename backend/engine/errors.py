"""
Exception hierarchy for the journal entry engine.
"""


class JournalError(Exception):
    """Base exception for journal engine errors."""
    pass


class FieldValidationError(JournalError, ValueError):
    """Raised when user input for a field fails local format validation."""

    def __init__(self, field, message: str):
        super().__init__(message)
        self.field = field
        self.message = message


class InvalidTransitionError(JournalError):
    """Raised when an action is not legal in the conversation's current state."""
    pass


class SchemaUnavailableError(JournalError):
    """Raised when the external schema source cannot be read."""
    pass
