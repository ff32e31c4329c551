"""
blobvault: incremental mirror of Azure Blob Storage containers with archive
backup and restore.

Provides:
- A sync engine that lists, diffs, fetches with bounded concurrency,
  materializes crash-safely and persists per-object sync state
- Zip archiving of changed containers into S3, GCS or a local directory
- Restore of archived containers back into the blob store
- YAML / environment configuration and a command line interface
"""

__version__ = "0.1.0"
