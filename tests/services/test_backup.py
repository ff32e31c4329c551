"""
Tests for BackupService: sync, archive changed containers, prune.
"""

import zipfile
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from blobvault.archive.archiver import archive_name
from blobvault.archive.providers.local import LocalArchiveStore
from blobvault.exceptions import ArchiveError
from blobvault.services.backup import BackupService
from blobvault.sync.models import PassStatus
from blobvault.sync.orchestrator import ContainerScope


@pytest.fixture
def archive_store(tmp_path):
    return LocalArchiveStore(tmp_path / "archives")


@pytest.fixture
def service(orchestrator, archive_store, backup_root, tmp_path):
    return BackupService(
        orchestrator,
        archive_store,
        backup_path=backup_root,
        temp_dir=tmp_path / "tmp",
        retention_days=7,
    )


@pytest.fixture
def populated(store):
    store.put("videos", "a.mp4", b"video-a")
    store.put("videos", "2024/b.mp4", b"video-b")
    store.put("docs", "readme.md", b"# docs")
    return store


# ============================================================================
# Tests: perform_backup
# ============================================================================

class TestPerformBackup:
    """Tests for BackupService.perform_backup."""

    def test_first_backup_archives_every_container(self, service, populated, archive_store):
        report = service.perform_backup(ContainerScope.all())

        assert report.ok
        assert set(report.archives) == {"videos", "docs"}
        assert {a.container for a in archive_store.list_archives()} == {"videos", "docs"}

    def test_archive_holds_the_local_mirror(self, service, populated, archive_store, tmp_path):
        service.perform_backup(ContainerScope.single("videos"))

        info = archive_store.latest_archive("videos")
        with zipfile.ZipFile(info.location) as zf:
            assert zf.read("a.mp4") == b"video-a"
            assert zf.read("2024/b.mp4") == b"video-b"

    def test_unchanged_containers_are_not_archived(self, service, populated):
        service.perform_backup(ContainerScope.all())

        report = service.perform_backup(ContainerScope.all())

        assert report.archives == {}
        assert report.pass_result.status == PassStatus.DONE

    def test_only_changed_container_is_archived(self, service, populated):
        service.perform_backup(ContainerScope.all())
        populated.touch("docs", "readme.md", b"# docs v2")

        report = service.perform_backup(ContainerScope.all())

        assert set(report.archives) == {"docs"}

    def test_deletion_counts_as_change(self, service, populated):
        service.perform_backup(ContainerScope.all())
        populated.remove("videos", "a.mp4")

        report = service.perform_backup(ContainerScope.all())

        assert set(report.archives) == {"videos"}

    def test_temp_zip_is_removed(self, service, populated, tmp_path):
        service.perform_backup(ContainerScope.all())

        assert list((tmp_path / "tmp").iterdir()) == []

    def test_upload_failure_is_isolated(self, service, populated, archive_store):
        original = archive_store.upload_archive

        def flaky(path, container):
            if container == "docs":
                raise ArchiveError("bucket unavailable")
            return original(path, container)

        with patch.object(archive_store, "upload_archive", side_effect=flaky):
            report = service.perform_backup(ContainerScope.all())

        assert not report.ok
        assert "bucket unavailable" in report.archive_errors["docs"]
        assert set(report.archives) == {"videos"}

    def test_failed_sync_still_archives_other_containers(self, service, populated):
        populated.failing_listings.add("docs")

        report = service.perform_backup(ContainerScope.all())

        assert report.pass_result.status == PassStatus.DONE_WITH_ERRORS
        assert set(report.archives) == {"videos"}
        assert not report.ok

    def test_old_archives_are_pruned(self, service, populated, archive_store, tmp_path):
        stale = tmp_path / "stale"
        stale.mkdir()
        old_when = datetime.now(timezone.utc) - timedelta(days=30)
        old_zip = stale / archive_name("videos", old_when.replace(tzinfo=None))
        old_zip.write_bytes(b"old")
        archive_store.upload_archive(old_zip, "videos")

        report = service.perform_backup(ContainerScope.all())

        assert report.archives_removed == 1
        assert all(a.created_time > old_when for a in archive_store.list_archives())

    def test_report_to_dict(self, service, populated):
        data = service.perform_backup(ContainerScope.single("docs")).to_dict()

        assert data["ok"] is True
        assert data["archives"]["docs"]["container"] == "docs"
        assert data["pass"]["status"] == "done"


# ============================================================================
# Tests: archive_container
# ============================================================================

class TestArchiveContainer:
    """Tests for BackupService.archive_container."""

    def test_name_uses_given_time(self, service, backup_root):
        (backup_root / "videos").mkdir()
        (backup_root / "videos" / "x.bin").write_bytes(b"x")

        info = service.archive_container("videos", when=datetime(2024, 1, 15, 9, 30))

        assert info.name == "videos_backup_20240115_093000.zip"

    def test_missing_directory(self, service):
        with pytest.raises(ArchiveError):
            service.archive_container("ghost")

    def test_zoned_time_is_named_in_utc(self, orchestrator, archive_store, backup_root, tmp_path):
        service = BackupService(
            orchestrator,
            archive_store,
            backup_path=backup_root,
            temp_dir=tmp_path / "tmp",
            timezone="America/New_York",
        )
        (backup_root / "videos").mkdir()
        (backup_root / "videos" / "x.bin").write_bytes(b"x")
        when = service.timezone.localize(datetime(2024, 1, 15, 4, 30))

        info = service.archive_container("videos", when=when)

        assert info.name == "videos_backup_20240115_093000.zip"
        assert archive_store.latest_archive("videos").created_time == when

    def test_retention_with_zoned_clock(self, orchestrator, archive_store, backup_root, tmp_path):
        service = BackupService(
            orchestrator,
            archive_store,
            backup_path=backup_root,
            temp_dir=tmp_path / "tmp",
            retention_days=7,
            timezone="America/New_York",
        )
        (backup_root / "videos").mkdir()
        (backup_root / "videos" / "x.bin").write_bytes(b"x")
        now = datetime.now(timezone.utc)
        # Two hours inside the window; a local-time stamp would read four or five hours older.
        service.archive_container("videos", when=(now - timedelta(days=6, hours=22)).astimezone(service.timezone))

        assert archive_store.cleanup_old_archives(retention_days=7) == 0
        assert len(archive_store.list_archives("videos")) == 1
