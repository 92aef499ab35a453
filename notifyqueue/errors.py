"""Error taxonomy shared by the queue store, worker and import pipeline."""


class QueueError(Exception):
    """Base class for all notifyqueue errors."""


class NotFoundError(QueueError):
    """The referenced queue row (or task) does not exist."""

    def __init__(self, message: str = "not found"):
        super().__init__(message)


class InvalidInputError(QueueError):
    """Malformed identifier or out-of-range value, rejected before any write."""

    def __init__(self, message: str = "invalid input"):
        super().__init__(message)


class StorageError(QueueError):
    """Transient infrastructure failure talking to the database."""


class TransportError(QueueError):
    """A notification could not be handed to its transport."""


class ImportCancelledError(QueueError):
    """The caller cancelled a bulk import before this item got its turn."""
