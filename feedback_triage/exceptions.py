"""Custom exceptions for the Feedback Triage Engine."""


class TriageError(Exception):
    """Base exception for the triage engine."""

    pass


class ServiceUnavailable(TriageError):
    """Raised when the external language-model service fails or times out."""

    kind = "ServiceUnavailable"


class ClassificationUnavailable(ServiceUnavailable):
    """Raised when feedback classification cannot be obtained."""

    kind = "ClassificationUnavailable"


class DuplicateCheckUnavailable(ServiceUnavailable):
    """Raised when similarity scoring cannot be obtained."""

    kind = "DuplicateCheckUnavailable"


class PriorityScoringUnavailable(ServiceUnavailable):
    """Raised when the priority factor estimates cannot be obtained."""

    kind = "PriorityScoringUnavailable"


class InvalidInput(TriageError):
    """Raised for a missing title or malformed batch parameters."""

    pass


class Unauthorized(TriageError):
    """Raised when the batch trigger does not carry a valid shared secret."""

    pass
