"""
Azure Blob Storage object store implementation.

Features:
- Account-wide container enumeration for the "all containers" scope
- Flat, cursor-paginated blob listing where every page is retried on its own
- Streaming whole-blob downloads
- Overwriting uploads for restores
- Connection pool sized to the store's safe concurrency
- One retry layer: the SDK pipeline sends each request once and RetryPolicy
  decides on retries
"""

import binascii
import logging
import threading
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceExistsError,
    ServiceRequestError,
    ServiceResponseError,
)
from azure.core.pipeline.transport import RequestsTransport
from azure.storage.blob import BlobServiceClient

from ...exceptions import (
    FetchError,
    ListingError,
    RetryExhaustedError,
    SyncCancelledError,
    UploadError,
)
from ..object_store import FetchedObject, ObjectStore, RemoteObject
from ..retry import RetryPolicy

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


def is_retryable_azure_error(error: BaseException) -> bool:
    """Network failures, timeouts, throttling and 5xx responses are transient."""
    if isinstance(error, (ServiceRequestError, ServiceResponseError)):
        return True
    if isinstance(error, HttpResponseError):
        return error.status_code in RETRYABLE_STATUS_CODES
    return False


def _content_hash(blob: Any) -> str:
    settings = getattr(blob, "content_settings", None)
    md5 = getattr(settings, "content_md5", None) if settings is not None else None
    if not md5:
        return ""
    return binascii.hexlify(bytes(md5)).decode("ascii")


class AzureBlobObjectStore(ObjectStore):
    """Azure Blob Storage implementation of ObjectStore."""

    DEFAULT_PAGE_SIZE = 5000
    DEFAULT_MAX_CONNECTIONS = 50

    def __init__(
        self,
        connection_string: Optional[str] = None,
        account_name: Optional[str] = None,
        account_key: Optional[str] = None,
        account_url: Optional[str] = None,
        retry_policy: Optional[RetryPolicy] = None,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        page_size: int = DEFAULT_PAGE_SIZE,
        client: Optional[BlobServiceClient] = None,
    ):
        """
        Initialize Azure Blob Storage store.

        Args:
            connection_string: Connection string (preferred)
            account_name: Storage account name
            account_key: Storage account key
            account_url: Override for the account endpoint (e.g. Azurite)
            retry_policy: Backoff policy for every request
            max_connections: HTTP connection pool size; also the store's
                safe concurrency
            page_size: Objects requested per listing page
            client: Ready-made, authenticated client (credentials are then
                not needed)

        Raises:
            ValueError: If no client and no usable credentials are provided
        """
        if client is None and not connection_string and not (account_name and account_key):
            raise ValueError("Provide either connection_string or account_name/account_key")
        if max_connections < 1:
            raise ValueError("max_connections must be at least 1")

        base_policy = retry_policy or RetryPolicy()
        self.retry_policy = base_policy.with_classifier(
            (AzureError,), is_retryable_azure_error
        )
        self.account_name = account_name
        self.max_safe_concurrency = max_connections
        self.page_size = page_size
        self._client = client or self._build_client(
            connection_string, account_name, account_key, account_url, base_policy, max_connections
        )

    @staticmethod
    def _build_client(
        connection_string: Optional[str],
        account_name: Optional[str],
        account_key: Optional[str],
        account_url: Optional[str],
        policy: RetryPolicy,
        max_connections: int,
    ) -> BlobServiceClient:
        session = requests.Session()
        adapter = HTTPAdapter(
            pool_connections=max_connections, pool_maxsize=max_connections
        )
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        transport = RequestsTransport(session=session, session_owner=False)

        # RetryPolicy owns every retry; the SDK pipeline issues each request once.
        options = {
            "retry_total": 0,
            "transport": transport,
            "connection_timeout": policy.attempt_timeout,
            "read_timeout": policy.attempt_timeout,
        }

        if connection_string:
            client = BlobServiceClient.from_connection_string(connection_string, **options)
        else:
            url = account_url or f"https://{account_name}.blob.core.windows.net"
            client = BlobServiceClient(
                account_url=url,
                credential={"account_name": account_name, "account_key": account_key},
                **options,
            )
        logger.info(f"Created Azure Blob Storage client for account {client.account_name}")
        return client

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def _read_page(
        self,
        make_pager: Callable[[], Any],
        token: Optional[str],
    ) -> Tuple[List[Any], Optional[str]]:
        pages = make_pager().by_page(continuation_token=token)
        page = next(pages, None)
        items = list(page) if page is not None else []
        return items, pages.continuation_token

    def _iter_pages(
        self,
        make_pager: Callable[[], Any],
        description: str,
        container: Optional[str],
        cancel_event: Optional[threading.Event],
    ) -> Iterator[Any]:
        token: Optional[str] = None
        page_number = 0
        while True:
            page_number += 1
            try:
                items, token = self.retry_policy.call(
                    self._read_page,
                    make_pager,
                    token,
                    description=f"{description} page {page_number}",
                    cancel_event=cancel_event,
                )
            except SyncCancelledError:
                raise
            except (RetryExhaustedError, AzureError) as e:
                raise ListingError(f"Failed to list {description}: {e}", container=container) from e

            for item in items:
                yield item

            if not token:
                break

    def list_containers(
        self,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[str]:
        """List container names in the storage account."""
        timeout = int(self.retry_policy.attempt_timeout)

        def make_pager():
            return self._client.list_containers(
                results_per_page=self.page_size, timeout=timeout, retry_total=0
            )

        for container in self._iter_pages(make_pager, "containers", None, cancel_event):
            yield container.name

    def list_objects(
        self,
        container: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[RemoteObject]:
        """List blobs in a container, skipping directory markers."""
        container_client = self._client.get_container_client(container)
        timeout = int(self.retry_policy.attempt_timeout)

        def make_pager():
            return container_client.list_blobs(
                results_per_page=self.page_size, timeout=timeout, retry_total=0
            )

        logger.debug(f"Listing blobs in {container}")
        for blob in self._iter_pages(make_pager, f"blobs in {container}", container, cancel_event):
            if blob.name.endswith("/"):
                continue
            yield RemoteObject(
                container=container,
                key=blob.name,
                last_modified=blob.last_modified,
                content_hash=_content_hash(blob),
                size=blob.size or 0,
            )

    # ------------------------------------------------------------------
    # Transfers
    # ------------------------------------------------------------------

    def _stream(
        self,
        downloader: Any,
        container: str,
        key: str,
        cancel_event: Optional[threading.Event],
    ) -> Iterator[bytes]:
        try:
            for chunk in downloader.chunks():
                if cancel_event is not None and cancel_event.is_set():
                    raise SyncCancelledError(f"Download of {container}/{key} cancelled")
                yield chunk
        except AzureError as e:
            raise FetchError(
                f"Stream of {container}/{key} failed: {e}", container=container, key=key
            ) from e

    def fetch_object(
        self,
        container: str,
        key: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> FetchedObject:
        """Start a streaming download of a blob."""
        container_client = self._client.get_container_client(container)
        timeout = int(self.retry_policy.attempt_timeout)

        try:
            downloader = self.retry_policy.call(
                container_client.download_blob,
                key,
                timeout=timeout,
                retry_total=0,
                description=f"download {container}/{key}",
                cancel_event=cancel_event,
            )
        except SyncCancelledError:
            raise
        except (RetryExhaustedError, AzureError) as e:
            raise FetchError(
                f"Failed to download {container}/{key}: {e}", container=container, key=key
            ) from e

        return FetchedObject(
            container=container,
            key=key,
            chunks=self._stream(downloader, container, key, cancel_event),
            size=downloader.size,
        )

    def ensure_container(self, container: str) -> None:
        """Create a container unless it already exists."""
        try:
            self._client.create_container(container)
            logger.info(f"Created container {container}")
        except ResourceExistsError:
            logger.debug(f"Container {container} already exists")
        except AzureError as e:
            raise UploadError(f"Failed to create container {container}: {e}", container=container) from e

    def upload_object(
        self,
        container: str,
        key: str,
        local_path: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """Upload a local file as a block blob, overwriting any existing blob."""
        local_path = Path(local_path)
        container_client = self._client.get_container_client(container)
        timeout = int(self.retry_policy.attempt_timeout)

        def upload() -> int:
            with open(local_path, "rb") as f:
                container_client.upload_blob(
                    name=key, data=f, overwrite=True, timeout=timeout, retry_total=0
                )
            return local_path.stat().st_size

        try:
            size = self.retry_policy.call(
                upload,
                description=f"upload {container}/{key}",
                cancel_event=cancel_event,
            )
        except SyncCancelledError:
            raise
        except (RetryExhaustedError, AzureError, OSError) as e:
            raise UploadError(
                f"Failed to upload {local_path} to {container}/{key}: {e}",
                container=container,
                key=key,
            ) from e

        logger.debug(f"Uploaded {local_path} -> {container}/{key} ({size} bytes)")
        return size

    def close(self) -> None:
        """Close the underlying client."""
        self._client.close()
        logger.info("Disconnected from Azure Blob Storage")
