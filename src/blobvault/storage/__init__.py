"""
Remote object store access.

Provides:
- Abstract interface for listing, fetching and uploading objects
- Azure Blob Storage implementation
- Retry policy with exponential backoff
"""

from .object_store import (
    FetchedObject,
    ObjectStore,
    RemoteObject,
)
from .retry import RetryPolicy
from .providers.azure import AzureBlobObjectStore

__all__ = [
    "FetchedObject",
    "ObjectStore",
    "RemoteObject",
    "RetryPolicy",
    # Providers
    "AzureBlobObjectStore",
]
