class QuizbankError(Exception):
    """Base exception for quiz errors surfaced to the user."""

    status_code = 400


class EmptySetError(QuizbankError):
    """Raised when a selection yields no questions."""

    status_code = 404


class SourceUnavailable(QuizbankError):
    """Raised when question data cannot be fetched and no fallback exists."""

    status_code = 503


class StaleProgressMismatch(QuizbankError):
    """Raised when saved progress does not match the loaded question list."""

    status_code = 409


class MalformedPersistedState(QuizbankError):
    """Raised when a persisted progress entry cannot be decoded."""

    status_code = 500


class InvalidAnswerError(QuizbankError):
    """Raised when an answer targets the wrong question or an unknown option."""

    status_code = 400


class InvalidSessionStateError(QuizbankError):
    """Raised when the session is in the wrong state for an operation."""

    status_code = 409
