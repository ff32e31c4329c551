"""
Shared fixtures: an in-memory, instrumented ObjectStore and engine wiring.
"""

import threading
import time
from collections import Counter
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, Iterator, Optional, Set, Tuple

import pytest

from blobvault.exceptions import FetchError, ListingError, SyncCancelledError, UploadError
from blobvault.storage.object_store import FetchedObject, ObjectStore, RemoteObject
from blobvault.sync.materializer import LocalMaterializer
from blobvault.sync.orchestrator import SyncOrchestrator
from blobvault.sync.sync_state import SyncStateStore

BASE_TIME = datetime(2024, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeObjectStore(ObjectStore):
    """In-memory store that records fetches and observed concurrency."""

    def __init__(self, fetch_delay: float = 0.0, chunk_size: int = 4):
        self.objects: Dict[str, Dict[str, Tuple[bytes, datetime]]] = {}
        self.fetch_delay = fetch_delay
        self.chunk_size = chunk_size
        self.fetch_calls: Counter = Counter()
        self.uploads: Dict[Tuple[str, str], bytes] = {}
        self.failing_fetches: Set[Tuple[str, str]] = set()
        self.failing_streams: Set[Tuple[str, str]] = set()
        self.truncated_streams: Set[Tuple[str, str]] = set()
        self.failing_listings: Set[str] = set()
        self.failing_uploads: Set[Tuple[str, str]] = set()
        self.list_containers_error: Optional[Exception] = None
        self.created_containers: Set[str] = set()

        self._lock = threading.Lock()
        self.in_flight = 0
        self.peak_in_flight = 0
        self.container_in_flight: Counter = Counter()
        self.container_peak: Counter = Counter()

    # Test helpers

    def put(self, container: str, key: str, data: bytes, last_modified: Optional[datetime] = None):
        self.objects.setdefault(container, {})[key] = (data, last_modified or BASE_TIME)

    def touch(self, container: str, key: str, data: Optional[bytes] = None, delta: int = 60):
        old_data, old_time = self.objects[container][key]
        self.objects[container][key] = (
            data if data is not None else old_data,
            old_time + timedelta(seconds=delta),
        )

    def remove(self, container: str, key: str):
        del self.objects[container][key]

    # ObjectStore

    def list_containers(self, cancel_event=None) -> Iterator[str]:
        if self.list_containers_error is not None:
            raise self.list_containers_error
        for name in sorted(self.objects):
            yield name

    def list_objects(self, container: str, cancel_event=None) -> Iterator[RemoteObject]:
        if container in self.failing_listings:
            raise ListingError(f"listing of {container} failed", container=container)
        for key, (data, modified) in sorted(self.objects.get(container, {}).items()):
            yield RemoteObject(container, key, modified, content_hash="", size=len(data))

    def fetch_object(self, container: str, key: str, cancel_event=None) -> FetchedObject:
        if cancel_event is not None and cancel_event.is_set():
            raise SyncCancelledError("cancelled")
        with self._lock:
            self.fetch_calls[(container, key)] += 1
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            self.container_in_flight[container] += 1
            self.container_peak[container] = max(
                self.container_peak[container], self.container_in_flight[container]
            )
        try:
            if self.fetch_delay:
                time.sleep(self.fetch_delay)
            if (container, key) in self.failing_fetches:
                raise FetchError(f"fetch of {container}/{key} failed", container=container, key=key)
            data, _modified = self.objects[container][key]
        finally:
            with self._lock:
                self.in_flight -= 1
                self.container_in_flight[container] -= 1

        return FetchedObject(container, key, self._chunks(container, key, data), len(data))

    def _chunks(self, container: str, key: str, data: bytes) -> Iterator[bytes]:
        for start in range(0, len(data), self.chunk_size):
            if start > 0 and (container, key) in self.truncated_streams:
                return
            if start > 0 and (container, key) in self.failing_streams:
                raise FetchError(f"stream of {container}/{key} broke", container=container, key=key)
            yield data[start:start + self.chunk_size]

    def ensure_container(self, container: str) -> None:
        self.created_containers.add(container)

    def upload_object(self, container: str, key: str, local_path: Path, cancel_event=None) -> int:
        if (container, key) in self.failing_uploads:
            raise UploadError(f"upload of {container}/{key} failed", container=container, key=key)
        data = Path(local_path).read_bytes()
        with self._lock:
            self.uploads[(container, key)] = data
        return len(data)


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def backup_root(tmp_path):
    root = tmp_path / "backup"
    root.mkdir()
    return root


@pytest.fixture
def materializer(backup_root):
    return LocalMaterializer(backup_root)


@pytest.fixture
def state_store(tmp_path):
    return SyncStateStore(tmp_path / "state" / "sync_metadata.json")


@pytest.fixture
def orchestrator(store, materializer, state_store):
    return SyncOrchestrator(store, materializer, state_store, max_concurrent=4, max_concurrent_containers=2)
