"""Object store provider implementations."""

from .azure import AzureBlobObjectStore

__all__ = [
    "AzureBlobObjectStore",
]
