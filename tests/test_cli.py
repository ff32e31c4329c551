"""
Tests for the command line interface.
"""

import json
from datetime import date, datetime, timezone

import pytest
import yaml

from blobvault.archive.archiver import archive_name
from blobvault.cli import EXIT_ERROR, EXIT_OK, build_parser, main
from blobvault.sync.sync_state import ContainerSyncState, SyncRecord, SyncStateFile, SyncStateStore


@pytest.fixture
def config_file(tmp_path):
    config = {
        "azure": {"connection_string": "UseDevelopmentStorage=true"},
        "backup": {"path": str(tmp_path / "mirror"), "temp_dir": str(tmp_path / "tmp")},
        "archive": {"provider": "local", "path": str(tmp_path / "archives")},
        "log_level": "WARNING",
    }
    path = tmp_path / "blobvault.yaml"
    path.write_text(yaml.safe_dump(config, default_flow_style=False))
    return path


# ============================================================================
# Tests: Parser
# ============================================================================

class TestParser:
    """Tests for argument parsing."""

    def test_sync_options(self):
        args = build_parser().parse_args(
            ["sync", "--container", "videos", "--max-concurrent", "4", "--timeout", "30"]
        )

        assert args.container == "videos"
        assert args.max_concurrent == 4
        assert args.timeout == 30.0

    def test_restore_date(self):
        args = build_parser().parse_args(["restore", "--date", "2024-01-15"])

        assert args.date == date(2024, 1, 15)

    @pytest.mark.parametrize("argv", [
        ["restore", "--date", "15/01/2024"],
        ["sync", "--max-concurrent", "0"],
    ])
    def test_invalid_values(self, argv):
        with pytest.raises(SystemExit):
            build_parser().parse_args(argv)

    def test_no_command(self):
        assert main([]) == EXIT_ERROR


# ============================================================================
# Tests: Commands
# ============================================================================

class TestCommands:
    """Tests for commands that need no remote store."""

    def test_status_json(self, config_file, tmp_path, capsys):
        when = datetime(2024, 1, 15, 12, tzinfo=timezone.utc)
        state = SyncStateFile(
            last_sync=when,
            containers={
                "videos": ContainerSyncState(
                    last_sync=when,
                    files={"a.mp4": SyncRecord(key="a.mp4", last_modified=when, content_hash="", size=3)},
                )
            },
        )
        SyncStateStore(tmp_path / "mirror" / "sync_metadata.json").save(state)

        code = main(["--config", str(config_file), "status", "--json"])

        assert code == EXIT_OK
        out = capsys.readouterr().out
        # console log lines share stdout with the JSON document
        data = json.loads(out[out.index("{"):])
        assert "a.mp4" in data["containers"]["videos"]["files"]

    def test_status_without_state(self, config_file, capsys):
        assert main(["--config", str(config_file), "status"]) == EXIT_OK
        assert "Containers: 0" in capsys.readouterr().out

    def test_archives_listing(self, config_file, tmp_path, capsys):
        archives = tmp_path / "archives"
        archives.mkdir()
        (archives / archive_name("videos", datetime(2024, 1, 15, 9))).write_bytes(b"zip")
        (archives / archive_name("docs", datetime(2024, 1, 16, 9))).write_bytes(b"zip")

        code = main(["--config", str(config_file), "archives", "--container", "videos"])

        out = capsys.readouterr().out
        assert code == EXIT_OK
        assert "videos_backup_20240115_090000.zip" in out
        assert "docs_backup" not in out

    def test_bad_config_is_an_error(self, tmp_path):
        assert main(["--config", str(tmp_path / "missing.yaml"), "status"]) == EXIT_ERROR
