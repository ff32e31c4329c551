"""
Tests for archive stores: shared selection helpers, the local directory
store, and the S3 and GCS stores with mocked clients.
"""

import io
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import pytz
from botocore.exceptions import ClientError
from google.api_core.exceptions import NotFound

from blobvault.archive.archiver import archive_name
from blobvault.archive.base import ArchiveInfo, archive_info_from_name
from blobvault.archive.providers.gcs import GCSArchiveStore
from blobvault.archive.providers.local import LocalArchiveStore
from blobvault.archive.providers.s3 import S3ArchiveStore
from blobvault.exceptions import ArchiveError, ConfigurationError


def make_zip(directory: Path, container: str, when: datetime) -> Path:
    path = directory / archive_name(container, when)
    path.write_bytes(b"PK-fake-" + container.encode())
    return path


@pytest.fixture
def local_store(tmp_path):
    return LocalArchiveStore(tmp_path / "archives")


@pytest.fixture
def staging(tmp_path):
    path = tmp_path / "staging"
    path.mkdir()
    return path


# ============================================================================
# Tests: ArchiveInfo
# ============================================================================

class TestArchiveInfo:
    """Tests for archive_info_from_name."""

    def test_name_timestamp_is_utc(self):
        info = archive_info_from_name("p/videos_backup_20240115_090000.zip", "p/videos_backup_20240115_090000.zip", 7)

        assert info.container == "videos"
        assert info.name == "videos_backup_20240115_090000.zip"
        assert info.created_time == datetime(2024, 1, 15, 9, tzinfo=timezone.utc)

    def test_aware_time_is_stamped_in_utc(self):
        new_york = pytz.timezone("America/New_York")
        when = new_york.localize(datetime(2024, 1, 15, 4, 0))

        name = archive_name("videos", when)

        assert name == "videos_backup_20240115_090000.zip"
        assert archive_info_from_name(name, name, 1).created_time == when

    def test_non_archive(self):
        assert archive_info_from_name("readme.md", "readme.md", 1) is None


# ============================================================================
# Tests: LocalArchiveStore and shared helpers
# ============================================================================

class TestLocalArchiveStore:
    """Tests for LocalArchiveStore and ArchiveStore helpers."""

    def test_upload_and_list_newest_first(self, local_store, staging):
        for day in (10, 12, 11):
            local_store.upload_archive(make_zip(staging, "videos", datetime(2024, 1, day)), "videos")
        local_store.upload_archive(make_zip(staging, "docs", datetime(2024, 1, 13)), "docs")

        names = [a.name for a in local_store.list_archives("videos")]

        assert names == [
            "videos_backup_20240112_000000.zip",
            "videos_backup_20240111_000000.zip",
            "videos_backup_20240110_000000.zip",
        ]
        assert len(local_store.list_archives()) == 4

    def test_latest_archive(self, local_store, staging):
        local_store.upload_archive(make_zip(staging, "videos", datetime(2024, 1, 10)), "videos")
        local_store.upload_archive(make_zip(staging, "videos", datetime(2024, 1, 14)), "videos")

        assert local_store.latest_archive("videos").name == "videos_backup_20240114_000000.zip"
        assert local_store.latest_archive("unknown") is None

    def test_archive_closest_to_date(self, local_store, staging):
        for when in (datetime(2024, 1, 10, 23), datetime(2024, 1, 12, 1), datetime(2024, 1, 20)):
            local_store.upload_archive(make_zip(staging, "videos", when), "videos")

        closest = local_store.archive_closest_to("videos", date(2024, 1, 11))

        # 2024-01-10 23:00 is one hour from midnight of the 11th.
        assert closest.name == "videos_backup_20240110_230000.zip"

    def test_download(self, local_store, staging, tmp_path):
        info = local_store.upload_archive(make_zip(staging, "videos", datetime(2024, 1, 10)), "videos")

        path = local_store.download_archive(info, tmp_path / "download")

        assert path.read_bytes() == b"PK-fake-videos"

    def test_cleanup_old_archives(self, local_store, staging):
        now = datetime(2024, 1, 20, tzinfo=timezone.utc)
        for days_ago in (1, 6, 8, 30):
            when = (now - timedelta(days=days_ago)).replace(tzinfo=None)
            local_store.upload_archive(make_zip(staging, "videos", when), "videos")

        removed = local_store.cleanup_old_archives(retention_days=7, now=now)

        assert removed == 2
        assert len(local_store.list_archives()) == 2

    def test_upload_rejects_non_archive_name(self, local_store, staging):
        path = staging / "random.zip"
        path.write_bytes(b"x")

        with pytest.raises(ArchiveError):
            local_store.upload_archive(path, "videos")

    def test_ignores_foreign_files(self, local_store):
        (local_store.root / "notes.zip").write_bytes(b"x")

        assert local_store.list_archives() == []


# ============================================================================
# Tests: S3ArchiveStore
# ============================================================================

class TestS3ArchiveStore:
    """Tests for S3ArchiveStore with a mocked client."""

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def s3_store(self, client):
        return S3ArchiveStore(bucket="backups", prefix="azure/", client=client)

    def test_requires_bucket(self):
        with pytest.raises(ConfigurationError):
            S3ArchiveStore(bucket="", client=MagicMock())

    def test_invalid_storage_class(self):
        with pytest.raises(ConfigurationError):
            S3ArchiveStore(bucket="b", storage_class="FAST", client=MagicMock())

    def test_upload_small_archive(self, s3_store, client, staging):
        path = make_zip(staging, "videos", datetime(2024, 1, 10))

        info = s3_store.upload_archive(path, "videos")

        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "backups"
        assert kwargs["Key"] == "azure/videos_backup_20240110_000000.zip"
        assert info.location == "azure/videos_backup_20240110_000000.zip"
        assert info.container == "videos"

    def test_multipart_upload(self, client, staging):
        s3_store = S3ArchiveStore(bucket="backups", client=client, multipart_threshold=4)
        s3_store.DEFAULT_CHUNK_SIZE = 8
        client.create_multipart_upload.return_value = {"UploadId": "up-1"}
        client.upload_part.return_value = {"ETag": '"etag"'}
        path = make_zip(staging, "videos", datetime(2024, 1, 10))

        s3_store.upload_archive(path, "videos")

        parts = client.complete_multipart_upload.call_args.kwargs["MultipartUpload"]["Parts"]
        assert [p["PartNumber"] for p in parts] == list(range(1, len(parts) + 1))
        assert len(parts) == 2

    def test_multipart_failure_aborts(self, client, staging):
        s3_store = S3ArchiveStore(bucket="backups", client=client, multipart_threshold=1)
        client.create_multipart_upload.return_value = {"UploadId": "up-1"}
        client.upload_part.side_effect = ClientError({"Error": {"Code": "500"}}, "UploadPart")
        path = make_zip(staging, "videos", datetime(2024, 1, 10))

        with pytest.raises(ArchiveError):
            s3_store.upload_archive(path, "videos")

        client.abort_multipart_upload.assert_called_once()

    def test_list_archives(self, s3_store, client):
        paginator = MagicMock()
        paginator.paginate.return_value = [
            {
                "Contents": [
                    {
                        "Key": "azure/videos_backup_20240110_000000.zip",
                        "Size": 10,
                        "LastModified": datetime(2024, 1, 10, 0, 5, tzinfo=timezone.utc),
                    },
                    {
                        "Key": "azure/docs_backup_20240111_000000.zip",
                        "Size": 20,
                        "LastModified": datetime(2024, 1, 11, 0, 5, tzinfo=timezone.utc),
                    },
                    {"Key": "azure/readme.txt", "Size": 1, "LastModified": datetime(2024, 1, 1, tzinfo=timezone.utc)},
                ]
            },
            {},
        ]
        client.get_paginator.return_value = paginator

        archives = s3_store.list_archives()

        assert [a.container for a in archives] == ["docs", "videos"]
        assert archives[1].created_time == datetime(2024, 1, 10, tzinfo=timezone.utc)
        paginator.paginate.assert_called_once_with(Bucket="backups", Prefix="azure/")
        assert [a.name for a in s3_store.list_archives("videos")] == ["videos_backup_20240110_000000.zip"]

    def test_download_archive(self, s3_store, client, tmp_path):
        client.get_object.return_value = {"Body": io.BytesIO(b"zip-bytes")}
        info = ArchiveInfo(
            name="videos_backup_20240110_000000.zip",
            container="videos",
            created_time=datetime(2024, 1, 10, tzinfo=timezone.utc),
            location="azure/videos_backup_20240110_000000.zip",
        )

        path = s3_store.download_archive(info, tmp_path)

        assert path.read_bytes() == b"zip-bytes"
        client.get_object.assert_called_once_with(Bucket="backups", Key=info.location)

    def test_delete_failure(self, s3_store, client):
        client.delete_object.side_effect = ClientError({"Error": {"Code": "403"}}, "DeleteObject")
        info = ArchiveInfo("n", "videos", datetime(2024, 1, 10, tzinfo=timezone.utc), location="k")

        with pytest.raises(ArchiveError):
            s3_store.delete_archive(info)


# ============================================================================
# Tests: GCSArchiveStore
# ============================================================================

class TestGCSArchiveStore:
    """Tests for GCSArchiveStore with a mocked client."""

    @pytest.fixture
    def client(self):
        return MagicMock()

    @pytest.fixture
    def gcs_store(self, client):
        return GCSArchiveStore(bucket="backups", prefix="azure", client=client)

    def test_upload_sets_storage_class(self, gcs_store, client, staging):
        path = make_zip(staging, "videos", datetime(2024, 1, 10))

        info = gcs_store.upload_archive(path, "videos")

        client.bucket.return_value.blob.assert_called_with("azure/videos_backup_20240110_000000.zip")
        blob = client.bucket.return_value.blob.return_value
        assert blob.storage_class == "STANDARD"
        blob.upload_from_file.assert_called_once()
        assert info.container == "videos"

    def test_list_dates_archives_by_name(self, gcs_store, client):
        blob = MagicMock()
        blob.name = "azure/videos_backup_20240110_000000.zip"
        blob.size = 5
        blob.updated = datetime(2024, 1, 10, 0, 3, tzinfo=timezone.utc)
        client.list_blobs.return_value = [blob]

        archives = gcs_store.list_archives("videos")

        assert archives[0].created_time == datetime(2024, 1, 10, tzinfo=timezone.utc)
        client.list_blobs.assert_called_once_with("backups", prefix="azure/")

    def test_delete_missing_is_ignored(self, gcs_store, client):
        client.bucket.return_value.blob.return_value.delete.side_effect = NotFound("gone")
        info = ArchiveInfo("n", "videos", datetime(2024, 1, 10, tzinfo=timezone.utc), location="k")

        gcs_store.delete_archive(info)
