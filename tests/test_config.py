"""
Tests for configuration loading, validation and engine wiring.
"""

from pathlib import Path

import pytest
import yaml

from blobvault.archive.providers.local import LocalArchiveStore
from blobvault.config import (
    AppConfig,
    ArchiveStoreConfig,
    ArchiveStoreFactory,
    ConfigManager,
    EngineBuilder,
)
from blobvault.exceptions import ConfigurationError
from blobvault.sync.orchestrator import ContainerScope

from tests.conftest import FakeObjectStore

ENV_VARS = [
    "AZURE_CONNECTION_STRING", "AZURE_ACCOUNT_NAME", "AZURE_ACCOUNT_KEY", "AZURE_ACCOUNT_URL",
    "AZURE_CONTAINER_NAME", "AZURE_MAX_CONNECTIONS", "ARCHIVE_PROVIDER", "ARCHIVE_BUCKET",
    "ARCHIVE_PREFIX", "ARCHIVE_REGION", "ARCHIVE_ENDPOINT_URL", "ARCHIVE_STORAGE_CLASS",
    "ARCHIVE_PATH", "ARCHIVE_ACCESS_KEY_ID", "ARCHIVE_SECRET_ACCESS_KEY", "ARCHIVE_PROJECT_ID",
    "ARCHIVE_CREDENTIALS_PATH", "SYNC_STATE_FILE", "BACKUP_PATH", "TEMP_DIR",
    "BACKUP_RETENTION_DAYS", "TZ", "MAX_CONCURRENT_OPERATIONS", "MAX_CONCURRENT_CONTAINERS",
    "LOG_LEVEL",
]


@pytest.fixture
def clean_env(monkeypatch):
    # setenv first so values loaded from .env files are undone at teardown
    for name in ENV_VARS:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


def minimal(**overrides):
    config = {"azure": {"connection_string": "DefaultEndpointsProtocol=https;AccountName=acct"}}
    for section, values in overrides.items():
        config.setdefault(section, {}).update(values)
    return config


# ============================================================================
# Tests: from_dict / from_yaml
# ============================================================================

class TestFromDict:
    """Tests for building AppConfig from dictionaries and YAML."""

    def test_defaults(self):
        config = ConfigManager.from_dict(minimal())

        assert config.azure.container_name == "ALL"
        assert config.scope == ContainerScope.all()
        assert config.backup.max_concurrent == 10
        assert config.backup.max_concurrent_containers == 5
        assert config.backup.retention_days == 7
        assert config.archive.provider == "local"
        assert config.backup.state_path == Path("/backup/sync_metadata.json")

    def test_nested_values(self):
        config = ConfigManager.from_dict(minimal(
            azure={"container": "videos", "retry": {"attempts": 5, "delay_seconds": 1}},
            backup={"path": "/data/mirror", "state_file": "/var/lib/state.json", "max_concurrent": "4"},
            archive={"provider": "S3", "bucket": "backups", "prefix": "azure"},
        ))

        assert config.scope == ContainerScope.single("videos")
        assert config.azure.retry_attempts == 5
        assert config.azure.retry_delay_seconds == 1.0
        assert config.backup.max_concurrent == 4
        assert config.backup.state_path == Path("/var/lib/state.json")
        assert config.archive.provider == "s3"

    def test_env_substitution(self, clean_env):
        clean_env.setenv("MIRROR_ROOT", "/srv/mirror")

        config = ConfigManager.from_dict(minimal(
            backup={"path": "${MIRROR_ROOT}", "temp_dir": "${SCRATCH:/tmp/scratch}"},
        ))

        assert config.backup.backup_path == Path("/srv/mirror")
        assert config.backup.temp_dir == Path("/tmp/scratch")

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(minimal(backup={"retention_days": 14}), default_flow_style=False))

        config = ConfigManager.from_yaml(path)

        assert config.backup.retention_days == 14

    def test_missing_yaml(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigManager.from_yaml(tmp_path / "missing.yaml")

    def test_yaml_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError):
            ConfigManager.load_yaml(path)

    def test_secrets_are_masked(self):
        config = ConfigManager.from_dict(minimal(azure={"account_key": "supersecretkey"}))

        dumped = str(config.to_dict())
        assert "supersecretkey" not in dumped
        assert "AccountName=acct" not in dumped


# ============================================================================
# Tests: from_env
# ============================================================================

class TestFromEnv:
    """Tests for environment configuration."""

    def test_reads_variables(self, clean_env, tmp_path):
        clean_env.setenv("AZURE_ACCOUNT_NAME", "acct")
        clean_env.setenv("AZURE_ACCOUNT_KEY", "key")
        clean_env.setenv("AZURE_CONTAINER_NAME", "docs")
        clean_env.setenv("MAX_CONCURRENT_OPERATIONS", "3")
        clean_env.setenv("MAX_CONCURRENT_CONTAINERS", "2")
        clean_env.setenv("BACKUP_PATH", str(tmp_path / "mirror"))
        clean_env.setenv("ARCHIVE_PROVIDER", "gcs")
        clean_env.setenv("ARCHIVE_BUCKET", "bucket")
        clean_env.setenv("ARCHIVE_PROJECT_ID", "proj")

        config = ConfigManager.from_env(tmp_path / "absent.env")

        assert config.azure.account_name == "acct"
        assert config.scope == ContainerScope.single("docs")
        assert config.backup.max_concurrent == 3
        assert config.backup.max_concurrent_containers == 2
        assert config.archive.credentials == {"project_id": "proj"}

    def test_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("AZURE_CONNECTION_STRING=UseDevelopmentStorage=true\nBACKUP_RETENTION_DAYS=3\n")

        config = ConfigManager.from_env(env_file)

        assert config.azure.connection_string == "UseDevelopmentStorage=true"
        assert config.backup.retention_days == 3

    def test_missing_credentials(self, clean_env, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigManager.from_env(tmp_path / "absent.env")


# ============================================================================
# Tests: Validation
# ============================================================================

class TestValidation:
    """Tests for ConfigManager.validate."""

    @pytest.mark.parametrize("overrides", [
        {"backup": {"max_concurrent": 0}},
        {"backup": {"max_concurrent_containers": 0}},
        {"backup": {"retention_days": -1}},
        {"backup": {"timezone": "Mars/Olympus"}},
        {"backup": {"max_concurrent": "many"}},
        {"archive": {"provider": "ftp"}},
        {"archive": {"provider": "s3"}},
        {"azure": {"max_connections": 0}},
    ])
    def test_invalid(self, overrides):
        with pytest.raises(ConfigurationError):
            ConfigManager.from_dict(minimal(**overrides))

    def test_no_credentials(self):
        with pytest.raises(ConfigurationError):
            ConfigManager.validate(AppConfig())


# ============================================================================
# Tests: Factories
# ============================================================================

class TestFactories:
    """Tests for ArchiveStoreFactory and EngineBuilder."""

    def test_local_archive_store(self, tmp_path):
        store = ArchiveStoreFactory.create(ArchiveStoreConfig(provider="local", path=str(tmp_path / "a")))

        assert isinstance(store, LocalArchiveStore)

    def test_local_store_needs_a_path(self):
        with pytest.raises(ConfigurationError):
            ArchiveStoreFactory.create(ArchiveStoreConfig(provider="local"))

    def test_unknown_provider(self):
        with pytest.raises(ConfigurationError):
            ArchiveStoreFactory.create(ArchiveStoreConfig(provider="tape"))

    def test_builder_wires_backup_service(self, tmp_path):
        config = ConfigManager.from_dict(minimal(
            backup={"path": str(tmp_path / "mirror"), "temp_dir": str(tmp_path / "tmp")},
        ))
        builder = EngineBuilder(config)
        builder._object_store = FakeObjectStore()

        service = builder.backup_service()

        assert isinstance(service.archive_store, LocalArchiveStore)
        assert service.archive_store.root == tmp_path / "archives"
        assert service.orchestrator.max_concurrent == 10
        assert service.backup_path == tmp_path / "mirror"

    def test_orchestrator_overrides(self, tmp_path):
        config = ConfigManager.from_dict(minimal(backup={"path": str(tmp_path / "mirror")}))
        builder = EngineBuilder(config)
        builder._object_store = FakeObjectStore()

        orchestrator = builder.orchestrator(max_concurrent=2, max_concurrent_containers=3)

        assert orchestrator.max_concurrent == 2
        assert orchestrator.max_concurrent_containers == 3
