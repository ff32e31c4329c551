"""
S3-compatible archive store.

Features:
- AWS S3 and S3-compatible endpoints (DigitalOcean Spaces, MinIO) via
  ``endpoint_url``
- Multipart upload for large archives
- Streaming downloads
- Adaptive client-side retries for transient failures
"""

import logging
from pathlib import Path
from typing import Any, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ...exceptions import ArchiveError, ConfigurationError
from ...utils.fileio import atomic_write_chunks
from ..base import ArchiveInfo, ArchiveStore, archive_info_from_name, sort_newest_first

logger = logging.getLogger(__name__)


class S3ArchiveStore(ArchiveStore):
    """S3 implementation of ArchiveStore."""

    # Multipart upload chunk size (5 MB minimum for S3)
    DEFAULT_CHUNK_SIZE = 5 * 1024 * 1024

    def __init__(
        self,
        bucket: str,
        prefix: str = "",
        region: str = "us-east-1",
        endpoint_url: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        storage_class: str = "STANDARD",
        multipart_threshold: int = 100 * 1024 * 1024,
        client: Any = None,
    ):
        """
        Initialize S3 archive store.

        Args:
            bucket: Bucket name
            prefix: Key prefix under which archives are kept
            region: Region name
            endpoint_url: Custom endpoint for S3-compatible services
            aws_access_key_id: Access key (uses the default chain if not provided)
            aws_secret_access_key: Secret key (uses the default chain if not provided)
            storage_class: Storage class (STANDARD, STANDARD_IA, GLACIER, DEEP_ARCHIVE)
            multipart_threshold: Use multipart for archives larger than this
            client: Pre-built boto3 S3 client

        Raises:
            ConfigurationError: If the bucket or storage class is invalid
        """
        if not bucket:
            raise ConfigurationError("Archive bucket name is required for S3")

        valid_classes = {"STANDARD", "STANDARD_IA", "GLACIER", "DEEP_ARCHIVE"}
        if storage_class not in valid_classes:
            raise ConfigurationError(f"Invalid storage class: {storage_class}")

        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.region = region
        self.endpoint_url = endpoint_url
        self.storage_class = storage_class
        self.multipart_threshold = multipart_threshold
        self._client = client or self._build_client(aws_access_key_id, aws_secret_access_key)

    def _build_client(self, access_key: Optional[str], secret_key: Optional[str]) -> Any:
        if access_key and secret_key:
            session = boto3.Session(
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=self.region,
            )
        else:
            session = boto3.Session(region_name=self.region)

        config = Config(
            retries={"max_attempts": 3, "mode": "adaptive"},
            max_pool_connections=10,
        )
        client = session.client("s3", endpoint_url=self.endpoint_url, config=config)
        logger.info(
            f"Using S3 archive bucket {self.bucket}"
            + (f" at {self.endpoint_url}" if self.endpoint_url else "")
        )
        return client

    def close(self) -> None:
        self._client.close()

    def _key_for(self, name: str) -> str:
        return f"{self.prefix}/{name}" if self.prefix else name

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    def upload_archive(self, archive_path: Path, container: str) -> ArchiveInfo:
        archive_path = Path(archive_path)
        key = self._key_for(archive_path.name)
        size = archive_path.stat().st_size
        info = archive_info_from_name(archive_path.name, key, size)
        if info is None:
            raise ArchiveError(f"Not a backup archive name: {archive_path.name}")

        logger.info(f"Uploading {archive_path.name} to s3://{self.bucket}/{key} ({size} bytes)")
        try:
            if size > self.multipart_threshold:
                self._multipart_upload(archive_path, key)
            else:
                with open(archive_path, "rb") as f:
                    self._client.put_object(
                        Bucket=self.bucket,
                        Key=key,
                        Body=f,
                        StorageClass=self.storage_class,
                    )
        except NoCredentialsError as e:
            raise ConfigurationError("S3 credentials not found") from e
        except (ClientError, BotoCoreError, OSError) as e:
            raise ArchiveError(f"S3 upload of {archive_path.name} failed: {e}") from e

        return info

    def _multipart_upload(self, local_path: Path, key: str) -> None:
        response = self._client.create_multipart_upload(
            Bucket=self.bucket,
            Key=key,
            StorageClass=self.storage_class,
        )
        upload_id = response["UploadId"]
        logger.debug(f"Started multipart upload {upload_id} for {local_path}")

        parts = []
        try:
            with open(local_path, "rb") as f:
                part_num = 1
                while True:
                    chunk = f.read(self.DEFAULT_CHUNK_SIZE)
                    if not chunk:
                        break
                    part = self._client.upload_part(
                        Bucket=self.bucket,
                        Key=key,
                        PartNumber=part_num,
                        UploadId=upload_id,
                        Body=chunk,
                    )
                    parts.append({"ETag": part["ETag"], "PartNumber": part_num})
                    part_num += 1

            self._client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
            logger.info(f"Completed multipart upload {upload_id} ({len(parts)} parts)")
        except Exception:
            logger.error(f"Multipart upload failed, aborting {upload_id}")
            self._client.abort_multipart_upload(Bucket=self.bucket, Key=key, UploadId=upload_id)
            raise

    # ------------------------------------------------------------------
    # Listing, download, delete
    # ------------------------------------------------------------------

    def list_archives(self, container: Optional[str] = None) -> List[ArchiveInfo]:
        prefix = self._key_for("")
        archives = []
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    info = archive_info_from_name(obj["Key"], obj["Key"], obj["Size"])
                    if info is None:
                        continue
                    if container is not None and info.container != container:
                        continue
                    archives.append(info)
        except (ClientError, BotoCoreError) as e:
            raise ArchiveError(f"Failed to list s3://{self.bucket}/{prefix}: {e}") from e
        return sort_newest_first(archives)

    def download_archive(self, info: ArchiveInfo, dest_dir: Path) -> Path:
        target = Path(dest_dir) / info.name
        logger.info(f"Downloading s3://{self.bucket}/{info.location} to {target}")
        try:
            body = self._client.get_object(Bucket=self.bucket, Key=info.location)["Body"]
            with body:
                written = atomic_write_chunks(
                    target, iter(lambda: body.read(self.DEFAULT_CHUNK_SIZE), b"")
                )
        except (ClientError, BotoCoreError, OSError) as e:
            raise ArchiveError(f"S3 download of {info.name} failed: {e}") from e
        logger.info(f"Downloaded {info.name} ({written} bytes)")
        return target

    def delete_archive(self, info: ArchiveInfo) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=info.location)
        except (ClientError, BotoCoreError) as e:
            raise ArchiveError(f"Failed to delete {info.location}: {e}") from e
        logger.info(f"Deleted s3://{self.bucket}/{info.location}")
