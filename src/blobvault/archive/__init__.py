"""
Backup archives: zip packing and the archival stores they are kept in.

Provides:
- pack_directory / unpack_archive and archive naming helpers
- ArchiveStore interface with S3, GCS and local directory implementations
"""

from .archiver import (
    archive_name,
    pack_directory,
    parse_archive_name,
    unpack_archive,
)
from .base import ArchiveInfo, ArchiveStore
from .providers.s3 import S3ArchiveStore
from .providers.gcs import GCSArchiveStore
from .providers.local import LocalArchiveStore

__all__ = [
    # Archiver
    "archive_name",
    "pack_directory",
    "parse_archive_name",
    "unpack_archive",
    # Stores
    "ArchiveInfo",
    "ArchiveStore",
    "S3ArchiveStore",
    "GCSArchiveStore",
    "LocalArchiveStore",
]
