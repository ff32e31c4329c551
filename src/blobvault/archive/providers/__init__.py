"""Archive store provider implementations."""

from .s3 import S3ArchiveStore
from .gcs import GCSArchiveStore
from .local import LocalArchiveStore

__all__ = [
    "S3ArchiveStore",
    "GCSArchiveStore",
    "LocalArchiveStore",
]
