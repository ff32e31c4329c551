"""
Exception hierarchy for blob synchronization, archiving and restore errors.

Object-level failures (fetch, materialize) are recorded by the sync engine
and never abort sibling work. Container-level failures (listing, state
persistence) propagate to the orchestrator, which marks the container as
failed and carries on with the remaining containers.
"""

from typing import Optional


class BlobVaultError(Exception):
    """Base exception for all blobvault errors."""

    pass


class ConfigurationError(BlobVaultError):
    """
    Raised when the application is misconfigured.

    Reasons may include:
    - Missing storage account credentials
    - Non-positive concurrency limits
    - Concurrency limits whose product exceeds the store's safe concurrency
    - Unknown archive provider or time zone
    """

    pass


class TransientNetworkError(BlobVaultError):
    """
    Raised when a network call to a remote store fails in a way that may
    succeed if retried (timeouts, 5xx responses, throttling).
    """

    pass


class RetryExhaustedError(TransientNetworkError):
    """Raised after all retry attempts for a network call have been used."""

    def __init__(self, message: str, last_exception: Exception, attempts: int):
        """
        Initialize RetryExhaustedError.

        Args:
            message: Error message.
            last_exception: The last exception that was raised.
            attempts: Total number of attempts made.
        """
        self.message = message
        self.last_exception = last_exception
        self.attempts = attempts
        super().__init__(
            f"{message} (after {attempts} attempts). "
            f"Last error: {type(last_exception).__name__}: {last_exception}"
        )


class ListingError(BlobVaultError):
    """
    Raised when a container (or the container list) cannot be enumerated.

    Aborts the sub-pass of the affected container: without a complete
    listing there is nothing safe to diff against.
    """

    def __init__(self, message: str, container: Optional[str] = None):
        self.container = container
        super().__init__(message)


class ObjectError(BlobVaultError):
    """Base class for failures scoped to a single remote object."""

    def __init__(self, message: str, container: Optional[str] = None, key: Optional[str] = None):
        self.container = container
        self.key = key
        super().__init__(message)


class FetchError(ObjectError):
    """
    Raised when a single object cannot be fetched from the remote store.

    This includes exhausted retries of transient network errors.
    """

    pass


class UploadError(ObjectError):
    """Raised when a local file cannot be uploaded to the remote store."""

    pass


class MaterializeError(ObjectError):
    """
    Raised when fetched bytes cannot be written to (or a stale file removed
    from) the local filesystem.
    """

    pass


class UnsafeObjectKeyError(MaterializeError):
    """
    Raised when a remote object key would resolve outside the container's
    local root (absolute paths, '..' segments, backslashes, NUL bytes).
    """

    pass


class IncompleteWriteError(BlobVaultError):
    """Raised when a stream ends before delivering its announced size."""

    def __init__(self, message: str, expected: int, written: int):
        self.expected = expected
        self.written = written
        super().__init__(message)


class StatePersistenceError(BlobVaultError):
    """
    Raised when the sync state file cannot be read or written.

    A failed save never rolls back materialized files; the next pass simply
    re-evaluates those objects as must-fetch.
    """

    pass


class SyncCancelledError(BlobVaultError):
    """Raised when a pass-level cancellation or deadline interrupts work."""

    pass


class ArchiveError(BlobVaultError):
    """
    Raised when packing, unpacking or transferring an archive fails.

    Reasons may include:
    - Source directory missing
    - Corrupt zip file
    - Archive member escaping the destination directory
    - Archive store upload/download failure
    """

    pass
