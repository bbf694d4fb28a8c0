"""Error taxonomy shared by the record store and the task service."""


class TaskflowError(Exception):
    """Base class for every error raised by TaskFlow."""


class ValidationError(TaskflowError):
    """Malformed or missing required input. Not retried."""


class ConflictError(TaskflowError):
    """Uniqueness, ownership or cascade violation. Not retried."""


class NotFoundError(TaskflowError):
    """A referenced record does not exist."""


class StoreTimeoutError(TaskflowError, TimeoutError):
    """The operation exceeded its time bound and was rolled back.

    Callers may retry with backoff.
    """


class StoreUnavailableError(TaskflowError):
    """The database could not be reached after the allowed retries."""


class ConfigurationError(TaskflowError):
    """Required settings are missing or invalid."""
