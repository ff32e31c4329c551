"""Backup and restore passes built on the sync engine and archive stores."""

from .backup import BackupReport, BackupService
from .restore import ContainerRestoreResult, RestoreReport, RestoreService

__all__ = [
    "BackupReport",
    "BackupService",
    "ContainerRestoreResult",
    "RestoreReport",
    "RestoreService",
]
