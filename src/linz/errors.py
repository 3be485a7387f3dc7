"""Exceptions raised by the consolidation pipeline."""


class LinzError(Exception):
    """Base class for all consolidation errors."""


class ConfigurationError(LinzError):
    """Required configuration is missing or invalid.

    Fatal for a whole job cycle; raised before any batch is attempted.
    """


class StorageError(LinzError):
    """Reading from or writing to the record store failed."""


class PurgeError(StorageError):
    """The retention sweep could not delete consolidated records."""


class ExtractionError(LinzError):
    """The extraction model call failed for a single batch."""


class ExtractionTimeoutError(ExtractionError):
    """The extraction model did not answer within the configured timeout."""


class MalformedResponseError(ExtractionError):
    """The extraction model returned empty or non-JSON content."""


class ValidationError(ExtractionError):
    """The extraction model output does not match the result contract."""


class StaleBatchError(LinzError):
    """The batch's records were consolidated by another run in the meantime."""
