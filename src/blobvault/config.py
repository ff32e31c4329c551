"""
Configuration system for the blob store, archive store and backup settings.

Provides:
- YAML-based configuration with ``${VAR}`` / ``${VAR:default}`` substitution
- Environment variable configuration (optionally from a ``.env`` file)
- Validation of credentials, concurrency limits, provider and time zone
- Factories wiring configuration into stores, the sync engine and services
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import pytz
import yaml
from dotenv import load_dotenv

from .archive.base import ArchiveStore
from .archive.providers.gcs import GCSArchiveStore
from .archive.providers.local import LocalArchiveStore
from .archive.providers.s3 import S3ArchiveStore
from .exceptions import ConfigurationError
from .services.backup import BackupService
from .services.restore import RestoreService
from .storage.object_store import ObjectStore
from .storage.providers.azure import AzureBlobObjectStore
from .storage.retry import RetryPolicy
from .sync.materializer import LocalMaterializer
from .sync.orchestrator import ALL_CONTAINERS, ContainerScope, SyncOrchestrator
from .sync.sync_state import SyncStateStore
from .utils.logging import mask_secret

logger = logging.getLogger(__name__)

ARCHIVE_PROVIDERS = {"s3", "gcs", "local"}


@dataclass
class AzureConfig:
    """Configuration for the Azure Blob Storage account being mirrored."""
    connection_string: Optional[str] = None
    account_name: Optional[str] = None
    account_key: Optional[str] = None
    account_url: Optional[str] = None
    container_name: str = ALL_CONTAINERS
    max_connections: int = 50
    page_size: int = 5000
    retry_attempts: int = 3
    retry_delay_seconds: float = 5.0
    retry_max_delay_seconds: float = 30.0
    request_timeout_seconds: float = 120.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with credentials masked."""
        return {
            "connection_string": mask_secret(self.connection_string),
            "account_name": self.account_name,
            "account_key": mask_secret(self.account_key),
            "account_url": self.account_url,
            "container_name": self.container_name,
            "max_connections": self.max_connections,
            "page_size": self.page_size,
            "retry_attempts": self.retry_attempts,
            "retry_delay_seconds": self.retry_delay_seconds,
            "retry_max_delay_seconds": self.retry_max_delay_seconds,
            "request_timeout_seconds": self.request_timeout_seconds,
        }


@dataclass
class ArchiveStoreConfig:
    """Configuration for the archival store."""
    provider: str = "local"  # 's3', 'gcs', 'local'
    bucket: Optional[str] = None
    prefix: str = ""
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    storage_class: Optional[str] = None
    path: Optional[str] = None  # local provider only
    credentials: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary with credentials masked."""
        return {
            "provider": self.provider,
            "bucket": self.bucket,
            "prefix": self.prefix,
            "region": self.region,
            "endpoint_url": self.endpoint_url,
            "storage_class": self.storage_class,
            "path": self.path,
            "credentials": {k: mask_secret(str(v)) for k, v in self.credentials.items()},
        }


@dataclass
class BackupConfig:
    """Local mirror, concurrency and retention settings."""
    backup_path: Path = Path("/backup")
    temp_dir: Path = Path("/tmp/blobvault")
    state_file: Optional[Path] = None
    retention_days: int = 7
    timezone: str = "UTC"
    max_concurrent: int = 10
    max_concurrent_containers: int = 5

    @property
    def state_path(self) -> Path:
        return self.state_file or self.backup_path / SyncStateStore.DEFAULT_FILE_NAME

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "backup_path": str(self.backup_path),
            "temp_dir": str(self.temp_dir),
            "state_file": str(self.state_path),
            "retention_days": self.retention_days,
            "timezone": self.timezone,
            "max_concurrent": self.max_concurrent,
            "max_concurrent_containers": self.max_concurrent_containers,
        }


@dataclass
class AppConfig:
    """Complete application configuration."""
    azure: AzureConfig = field(default_factory=AzureConfig)
    archive: ArchiveStoreConfig = field(default_factory=ArchiveStoreConfig)
    backup: BackupConfig = field(default_factory=BackupConfig)
    log_level: str = "INFO"

    @property
    def scope(self) -> ContainerScope:
        return ContainerScope.parse(self.azure.container_name)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "azure": self.azure.to_dict(),
            "archive": self.archive.to_dict(),
            "backup": self.backup.to_dict(),
            "log_level": self.log_level,
        }


def _to_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")


def _to_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}")


class ConfigManager:
    """Loads, validates and saves application configuration."""

    ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

    @staticmethod
    def load_yaml(config_path: Path) -> Dict[str, Any]:
        """
        Load configuration from YAML file.

        Raises:
            ConfigurationError: If the file is missing or not valid YAML
        """
        config_path = Path(config_path)

        if not config_path.exists():
            raise ConfigurationError(f"Config file not found: {config_path}")

        try:
            with open(config_path, "r") as f:
                config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(config, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")

        logger.info(f"Loaded configuration from {config_path}")
        return config

    @staticmethod
    def save_yaml(config: Dict[str, Any], config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w") as f:
            yaml.safe_dump(config, f, default_flow_style=False)

        logger.info(f"Saved configuration to {config_path}")

    @staticmethod
    def _substitute_env_vars(config: Any) -> Any:
        """
        Recursively substitute environment variables in config.

        Format: ${VAR_NAME} or ${VAR_NAME:default_value}
        """
        if isinstance(config, dict):
            return {k: ConfigManager._substitute_env_vars(v) for k, v in config.items()}
        elif isinstance(config, list):
            return [ConfigManager._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            def replacer(match):
                var_spec = match.group(1)
                if ":" in var_spec:
                    var_name, default = var_spec.split(":", 1)
                    return os.getenv(var_name.strip(), default.strip())
                return os.getenv(var_spec, match.group(0))

            return ConfigManager.ENV_PATTERN.sub(replacer, config)
        else:
            return config

    @staticmethod
    def from_dict(config_dict: Dict[str, Any]) -> AppConfig:
        """
        Create AppConfig from a configuration dictionary.

        Expected shape::

            azure: {connection_string, account_name, account_key, account_url,
                    container, max_connections, page_size, retry: {...}}
            archive: {provider, bucket, prefix, region, endpoint_url,
                      storage_class, path, credentials: {...}}
            backup: {path, temp_dir, state_file, retention_days, timezone,
                     max_concurrent, max_concurrent_containers}
            log_level: INFO
        """
        config_dict = ConfigManager._substitute_env_vars(config_dict or {})
        azure_dict = config_dict.get("azure") or {}
        retry_dict = azure_dict.get("retry") or {}
        archive_dict = config_dict.get("archive") or {}
        backup_dict = config_dict.get("backup") or {}

        azure = AzureConfig(
            connection_string=azure_dict.get("connection_string") or None,
            account_name=azure_dict.get("account_name") or None,
            account_key=azure_dict.get("account_key") or None,
            account_url=azure_dict.get("account_url") or None,
            container_name=azure_dict.get("container") or ALL_CONTAINERS,
            max_connections=_to_int(azure_dict.get("max_connections", 50), "azure.max_connections"),
            page_size=_to_int(azure_dict.get("page_size", 5000), "azure.page_size"),
            retry_attempts=_to_int(retry_dict.get("attempts", 3), "azure.retry.attempts"),
            retry_delay_seconds=_to_float(retry_dict.get("delay_seconds", 5), "azure.retry.delay_seconds"),
            retry_max_delay_seconds=_to_float(
                retry_dict.get("max_delay_seconds", 30), "azure.retry.max_delay_seconds"
            ),
            request_timeout_seconds=_to_float(
                retry_dict.get("timeout_seconds", 120), "azure.retry.timeout_seconds"
            ),
        )

        archive = ArchiveStoreConfig(
            provider=str(archive_dict.get("provider") or "local").lower(),
            bucket=archive_dict.get("bucket") or None,
            prefix=archive_dict.get("prefix") or "",
            region=archive_dict.get("region") or None,
            endpoint_url=archive_dict.get("endpoint_url") or None,
            storage_class=archive_dict.get("storage_class") or None,
            path=archive_dict.get("path") or None,
            credentials=dict(archive_dict.get("credentials") or {}),
        )

        backup_path = Path(backup_dict.get("path") or "/backup")
        state_file = backup_dict.get("state_file")
        backup = BackupConfig(
            backup_path=backup_path,
            temp_dir=Path(backup_dict.get("temp_dir") or "/tmp/blobvault"),
            state_file=Path(state_file) if state_file else None,
            retention_days=_to_int(backup_dict.get("retention_days", 7), "backup.retention_days"),
            timezone=backup_dict.get("timezone") or "UTC",
            max_concurrent=_to_int(backup_dict.get("max_concurrent", 10), "backup.max_concurrent"),
            max_concurrent_containers=_to_int(
                backup_dict.get("max_concurrent_containers", 5), "backup.max_concurrent_containers"
            ),
        )

        config = AppConfig(
            azure=azure,
            archive=archive,
            backup=backup,
            log_level=str(config_dict.get("log_level") or "INFO").upper(),
        )
        ConfigManager.validate(config)
        return config

    @staticmethod
    def from_yaml(config_path: Path) -> AppConfig:
        """Load and validate configuration from a YAML file."""
        return ConfigManager.from_dict(ConfigManager.load_yaml(config_path))

    @staticmethod
    def from_env(env_file: Optional[Path] = None) -> AppConfig:
        """
        Create configuration from environment variables.

        A ``.env`` file is loaded first when present; variables already set
        in the environment win.

        Expected environment variables:
        - AZURE_CONNECTION_STRING or AZURE_ACCOUNT_NAME + AZURE_ACCOUNT_KEY
        - AZURE_CONTAINER_NAME: container name or ALL (default)
        - MAX_CONCURRENT_OPERATIONS (10), MAX_CONCURRENT_CONTAINERS (5)
        - BACKUP_PATH, TEMP_DIR, BACKUP_RETENTION_DAYS (7), TZ, LOG_LEVEL
        - ARCHIVE_PROVIDER (s3, gcs, local), ARCHIVE_BUCKET, ARCHIVE_PREFIX,
          ARCHIVE_ENDPOINT_URL, ARCHIVE_REGION, ARCHIVE_STORAGE_CLASS,
          ARCHIVE_PATH
        - ARCHIVE_ACCESS_KEY_ID / ARCHIVE_SECRET_ACCESS_KEY (s3),
          ARCHIVE_PROJECT_ID / ARCHIVE_CREDENTIALS_PATH (gcs)
        """
        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv()

        credentials = {
            "aws_access_key_id": os.getenv("ARCHIVE_ACCESS_KEY_ID"),
            "aws_secret_access_key": os.getenv("ARCHIVE_SECRET_ACCESS_KEY"),
            "project_id": os.getenv("ARCHIVE_PROJECT_ID"),
            "credentials_path": os.getenv("ARCHIVE_CREDENTIALS_PATH"),
        }

        config_dict = {
            "azure": {
                "connection_string": os.getenv("AZURE_CONNECTION_STRING"),
                "account_name": os.getenv("AZURE_ACCOUNT_NAME"),
                "account_key": os.getenv("AZURE_ACCOUNT_KEY"),
                "account_url": os.getenv("AZURE_ACCOUNT_URL"),
                "container": os.getenv("AZURE_CONTAINER_NAME", ALL_CONTAINERS),
                "max_connections": os.getenv("AZURE_MAX_CONNECTIONS", "50"),
            },
            "archive": {
                "provider": os.getenv("ARCHIVE_PROVIDER", "local"),
                "bucket": os.getenv("ARCHIVE_BUCKET"),
                "prefix": os.getenv("ARCHIVE_PREFIX", ""),
                "region": os.getenv("ARCHIVE_REGION"),
                "endpoint_url": os.getenv("ARCHIVE_ENDPOINT_URL"),
                "storage_class": os.getenv("ARCHIVE_STORAGE_CLASS"),
                "path": os.getenv("ARCHIVE_PATH"),
                "credentials": {k: v for k, v in credentials.items() if v},
            },
            "backup": {
                "path": os.getenv("BACKUP_PATH", "/backup"),
                "temp_dir": os.getenv("TEMP_DIR", "/tmp/blobvault"),
                "state_file": os.getenv("SYNC_STATE_FILE"),
                "retention_days": os.getenv("BACKUP_RETENTION_DAYS", "7"),
                "timezone": os.getenv("TZ", "UTC"),
                "max_concurrent": os.getenv("MAX_CONCURRENT_OPERATIONS", "10"),
                "max_concurrent_containers": os.getenv("MAX_CONCURRENT_CONTAINERS", "5"),
            },
            "log_level": os.getenv("LOG_LEVEL", "INFO"),
        }
        return ConfigManager.from_dict(config_dict)

    @staticmethod
    def validate(config: AppConfig) -> None:
        """
        Validate a configuration.

        Raises:
            ConfigurationError: On the first problem found
        """
        azure = config.azure
        if not azure.connection_string and not (azure.account_name and azure.account_key):
            raise ConfigurationError(
                "Azure credentials are required: set AZURE_CONNECTION_STRING or "
                "AZURE_ACCOUNT_NAME and AZURE_ACCOUNT_KEY"
            )
        if azure.max_connections < 1 or azure.page_size < 1 or azure.retry_attempts < 1:
            raise ConfigurationError("Azure connection, page size and retry limits must be positive")

        backup = config.backup
        if backup.max_concurrent < 1:
            raise ConfigurationError("MAX_CONCURRENT_OPERATIONS must be at least 1")
        if backup.max_concurrent_containers < 1:
            raise ConfigurationError("MAX_CONCURRENT_CONTAINERS must be at least 1")
        if backup.retention_days < 0:
            raise ConfigurationError("BACKUP_RETENTION_DAYS must not be negative")

        try:
            pytz.timezone(backup.timezone)
        except pytz.UnknownTimeZoneError:
            raise ConfigurationError(f"Unknown time zone: {backup.timezone}")

        archive = config.archive
        if archive.provider not in ARCHIVE_PROVIDERS:
            raise ConfigurationError(f"Unknown archive provider: {archive.provider}")
        if archive.provider in ("s3", "gcs") and not archive.bucket:
            raise ConfigurationError(f"ARCHIVE_BUCKET is required for the {archive.provider} provider")


class ArchiveStoreFactory:
    """Factory for creating archive stores."""

    @staticmethod
    def create(config: ArchiveStoreConfig, default_path: Optional[Path] = None) -> ArchiveStore:
        """
        Create an archive store from config.

        Args:
            config: ArchiveStoreConfig object
            default_path: Directory for the local provider when ``path`` is unset

        Raises:
            ConfigurationError: If the provider is unknown
        """
        provider = config.provider.lower()
        creds = config.credentials or {}

        if provider == "s3":
            return S3ArchiveStore(
                bucket=config.bucket,
                prefix=config.prefix,
                region=config.region or "us-east-1",
                endpoint_url=config.endpoint_url,
                aws_access_key_id=creds.get("aws_access_key_id"),
                aws_secret_access_key=creds.get("aws_secret_access_key"),
                storage_class=config.storage_class or "STANDARD",
            )

        elif provider == "gcs":
            return GCSArchiveStore(
                bucket=config.bucket,
                prefix=config.prefix,
                project_id=creds.get("project_id"),
                credentials_path=creds.get("credentials_path"),
                storage_class=config.storage_class or "STANDARD",
            )

        elif provider == "local":
            path = config.path or default_path
            if path is None:
                raise ConfigurationError("ARCHIVE_PATH is required for the local provider")
            return LocalArchiveStore(path)

        else:
            raise ConfigurationError(f"Unknown archive provider: {provider}")


class EngineBuilder:
    """Builds configured stores, the sync orchestrator and services."""

    def __init__(self, config: AppConfig):
        self.config = config
        self._object_store: Optional[ObjectStore] = None
        self._archive_store: Optional[ArchiveStore] = None

    @classmethod
    def from_config_file(cls, config_path: Path) -> "EngineBuilder":
        return cls(ConfigManager.from_yaml(config_path))

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "EngineBuilder":
        return cls(ConfigManager.from_env(env_file))

    def retry_policy(self) -> RetryPolicy:
        azure = self.config.azure
        return RetryPolicy(
            max_attempts=azure.retry_attempts,
            base_delay=azure.retry_delay_seconds,
            max_delay=azure.retry_max_delay_seconds,
            attempt_timeout=azure.request_timeout_seconds,
        )

    def object_store(self) -> ObjectStore:
        if self._object_store is None:
            azure = self.config.azure
            logger.info(
                f"Connecting to Azure account {azure.account_name or '<from connection string>'} "
                f"(key {mask_secret(azure.account_key)})"
            )
            self._object_store = AzureBlobObjectStore(
                connection_string=azure.connection_string,
                account_name=azure.account_name,
                account_key=azure.account_key,
                account_url=azure.account_url,
                retry_policy=self.retry_policy(),
                max_connections=azure.max_connections,
                page_size=azure.page_size,
            )
        return self._object_store

    def archive_store(self) -> ArchiveStore:
        if self._archive_store is None:
            self._archive_store = ArchiveStoreFactory.create(
                self.config.archive,
                default_path=self.config.backup.backup_path.parent / "archives",
            )
            logger.info(f"Created {self.config.archive.provider} archive store")
        return self._archive_store

    def materializer(self) -> LocalMaterializer:
        return LocalMaterializer(self.config.backup.backup_path)

    def state_store(self) -> SyncStateStore:
        return SyncStateStore(self.config.backup.state_path)

    def orchestrator(
        self,
        max_concurrent: Optional[int] = None,
        max_concurrent_containers: Optional[int] = None,
    ) -> SyncOrchestrator:
        backup = self.config.backup
        return SyncOrchestrator(
            store=self.object_store(),
            materializer=self.materializer(),
            state_store=self.state_store(),
            max_concurrent=max_concurrent or backup.max_concurrent,
            max_concurrent_containers=max_concurrent_containers or backup.max_concurrent_containers,
        )

    def backup_service(self, orchestrator: Optional[SyncOrchestrator] = None) -> BackupService:
        backup = self.config.backup
        return BackupService(
            orchestrator=orchestrator or self.orchestrator(),
            archive_store=self.archive_store(),
            backup_path=backup.backup_path,
            temp_dir=backup.temp_dir,
            retention_days=backup.retention_days,
            timezone=backup.timezone,
        )

    def restore_service(self, max_concurrent: Optional[int] = None) -> RestoreService:
        return RestoreService(
            archive_store=self.archive_store(),
            object_store=self.object_store(),
            temp_dir=self.config.backup.temp_dir,
            max_concurrent=max_concurrent or self.config.backup.max_concurrent,
            timezone=self.config.backup.timezone,
        )

    def close(self) -> None:
        if self._object_store is not None:
            self._object_store.close()
        if self._archive_store is not None:
            self._archive_store.close()
