"""Local storage errors.

Everything here is a local, non-retryable failure: the caller should surface
it to the user rather than try again.
"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for lazyreview_store errors."""


class QueueStorageError(StoreError):
    """A queue read or write failed at the storage layer (disk full, permissions, locked file)."""


class QueueCorruptedError(StoreError):
    """The queue database exists but is not a valid LazyReview queue.

    Raised at open time instead of re-initialising the file, so pending
    actions are never silently discarded.
    """


class SecretStoreError(StoreError):
    """A secret could not be stored, read or deleted."""


class SecretDecryptionError(SecretStoreError):
    """The key file or a stored ciphertext is corrupted or was tampered with."""
