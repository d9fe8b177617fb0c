"""Error taxonomy for the notification and proximity core."""


class NearcastError(Exception):
    """Base class for all nearcast errors."""


class PersistenceError(NearcastError):
    """A read or write against the persistence layer failed."""


class WriteError(PersistenceError):
    """A notification row could not be inserted."""


class NotFoundError(NearcastError):
    """The requested record does not exist or belongs to someone else."""


class ConfigurationError(NearcastError):
    """A push provider is missing credentials. Indicates a deployment defect."""


class TransientDeliveryError(NearcastError):
    """A single device delivery failed (timeout, rate limit, non-2xx)."""


class InvalidPayloadError(NearcastError, ValueError):
    """Caller-supplied event payload failed validation."""
