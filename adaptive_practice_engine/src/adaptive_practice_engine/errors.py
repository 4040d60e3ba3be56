"""
Engine Error Types

Exceptions raised inside the practice engine. Most of them are recovered
locally and never reach the learner.
"""


class PracticeEngineError(Exception):
    """Base class for practice engine errors."""


class GenerationFailure(PracticeEngineError):
    """The primary question source returned an error or a malformed payload."""

    def __init__(self, message: str, payload=None):
        super().__init__(message)
        self.payload = payload


class PersistenceFailure(PracticeEngineError):
    """A history/persistence call failed. Logged and swallowed by the session."""

    def __init__(self, operation: str, cause: Exception = None):
        detail = f"{operation} failed"
        if cause is not None:
            detail += f": {type(cause).__name__}: {cause}"
        super().__init__(detail)
        self.operation = operation
        self.cause = cause


class InvalidSessionState(PracticeEngineError):
    """An operation was requested in a phase that does not allow it."""


class Unauthenticated(PracticeEngineError):
    """No authenticated user was supplied when starting a session."""
