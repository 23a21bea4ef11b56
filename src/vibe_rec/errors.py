"""Exception hierarchy shared by the taste model, storage and metadata client."""


class VibeRecError(Exception):
    """Base class for all vibe_rec errors."""


class NotReadyError(VibeRecError):
    """The catalog has not finished initializing."""


class NotFoundError(VibeRecError, KeyError):
    """Unknown film or user id."""

    def __str__(self) -> str:
        # KeyError would repr() the message
        return str(self.args[0]) if self.args else ""


class InvalidInputError(VibeRecError, ValueError):
    """Out-of-range dimension value, malformed vector or empty required field."""


class OutOfOrderError(VibeRecError):
    """Onboarding submission for a film or dimension that is not current."""


class StorageError(VibeRecError):
    """Persistence load or save failed."""


class ExternalServiceError(VibeRecError):
    """The metadata service returned a non-success response."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class OperationCancelled(VibeRecError):
    """A long-running operation observed its cancellation token."""
