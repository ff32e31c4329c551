"""
Google Cloud Storage (GCS) archive store.

Features:
- Integration with GCS buckets
- Configurable storage classes (STANDARD, NEARLINE, COLDLINE, ARCHIVE)
- Resumable uploads handled by the client library
"""

import logging
from pathlib import Path
from typing import Any, List, Optional

from google.api_core.exceptions import GoogleAPICallError, NotFound
from google.cloud import storage

from ...exceptions import ArchiveError, ConfigurationError
from ...utils.fileio import temp_sibling
from ..base import ArchiveInfo, ArchiveStore, archive_info_from_name, sort_newest_first

logger = logging.getLogger(__name__)


class GCSArchiveStore(ArchiveStore):
    """Google Cloud Storage implementation of ArchiveStore."""

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        project_id: Optional[str] = None,
        credentials_path: Optional[str] = None,
        storage_class: str = "STANDARD",
        client: Any = None,
    ):
        """
        Initialize GCS archive store.

        Args:
            bucket: GCS bucket name
            prefix: Object name prefix under which archives are kept
            project_id: Google Cloud project ID
            credentials_path: Path to service account JSON
            storage_class: Storage class (STANDARD, NEARLINE, COLDLINE, ARCHIVE)
            client: Pre-built ``google.cloud.storage.Client``
        """
        if not bucket:
            raise ConfigurationError("Archive bucket name is required for GCS")

        valid_classes = {"STANDARD", "NEARLINE", "COLDLINE", "ARCHIVE"}
        if storage_class not in valid_classes:
            raise ConfigurationError(f"Invalid storage class: {storage_class}")

        self.bucket_name = bucket
        self.prefix = prefix.strip("/")
        self.storage_class = storage_class

        if client is None:
            if credentials_path:
                client = storage.Client.from_service_account_json(credentials_path, project=project_id)
            else:
                client = storage.Client(project=project_id)
        self._client = client
        self._bucket = client.bucket(bucket)
        logger.info(f"Using GCS archive bucket {bucket}")

    def _name_for(self, name: str) -> str:
        return f"{self.prefix}/{name}" if self.prefix else name

    def upload_archive(self, archive_path: Path, container: str) -> ArchiveInfo:
        archive_path = Path(archive_path)
        name = self._name_for(archive_path.name)
        size = archive_path.stat().st_size
        info = archive_info_from_name(archive_path.name, name, size)
        if info is None:
            raise ArchiveError(f"Not a backup archive name: {archive_path.name}")

        logger.info(f"Uploading {archive_path.name} to gs://{self.bucket_name}/{name}")
        try:
            blob = self._bucket.blob(name)
            blob.storage_class = self.storage_class
            with open(archive_path, "rb") as f:
                blob.upload_from_file(f)
        except (GoogleAPICallError, OSError) as e:
            raise ArchiveError(f"GCS upload of {archive_path.name} failed: {e}") from e

        return info

    def list_archives(self, container: Optional[str] = None) -> List[ArchiveInfo]:
        prefix = self._name_for("")
        archives = []
        try:
            for blob in self._client.list_blobs(self.bucket_name, prefix=prefix or None):
                info = archive_info_from_name(blob.name, blob.name, blob.size or 0)
                if info is None:
                    continue
                if container is not None and info.container != container:
                    continue
                archives.append(info)
        except GoogleAPICallError as e:
            raise ArchiveError(f"Failed to list gs://{self.bucket_name}/{prefix}: {e}") from e
        return sort_newest_first(archives)

    def download_archive(self, info: ArchiveInfo, dest_dir: Path) -> Path:
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / info.name
        tmp_path = temp_sibling(target)

        logger.info(f"Downloading gs://{self.bucket_name}/{info.location} to {target}")
        try:
            with open(tmp_path, "wb") as f:
                self._client.download_blob_to_file(self._bucket.blob(info.location), f)
            tmp_path.replace(target)
        except (GoogleAPICallError, OSError) as e:
            tmp_path.unlink(missing_ok=True)
            raise ArchiveError(f"GCS download of {info.name} failed: {e}") from e
        return target

    def delete_archive(self, info: ArchiveInfo) -> None:
        try:
            self._bucket.blob(info.location).delete()
        except NotFound:
            logger.debug(f"Archive already gone: {info.location}")
            return
        except GoogleAPICallError as e:
            raise ArchiveError(f"Failed to delete {info.location}: {e}") from e
        logger.info(f"Deleted gs://{self.bucket_name}/{info.location}")
