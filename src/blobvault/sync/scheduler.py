"""
Bounded-concurrency fetch scheduling.

Provides:
- AdmissionGate: semaphore-style admission control with in-flight tracking
- FetchScheduler: runs one fetch-and-materialize task per must-fetch object
  of a container, never more than N at once

Two independent gates bound the work of a pass: every container owns a fetch
gate of size N, and the orchestrator owns a container gate of size M. The
worst-case number of concurrent fetches is N * M.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from typing import Iterator, List, Optional, Sequence

from ..exceptions import (
    FetchError,
    MaterializeError,
    SyncCancelledError,
)
from ..storage.object_store import ObjectStore
from .change_set import PlannedFetch
from .materializer import LocalMaterializer
from .models import ErrorKind, FetchResult, SyncErrorDetail
from .sync_state import SyncRecord

logger = logging.getLogger(__name__)


class AdmissionGate:
    """Admits at most ``limit`` holders at a time."""

    POLL_SECONDS = 0.1

    def __init__(self, limit: int, name: str = "gate"):
        if limit < 1:
            raise ValueError(f"{name}: limit must be at least 1, got {limit}")
        self.limit = limit
        self.name = name
        self._semaphore = threading.BoundedSemaphore(limit)
        self._lock = threading.Lock()
        self._in_flight = 0
        self._peak = 0

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    @property
    def peak(self) -> int:
        """Highest number of simultaneous holders observed."""
        with self._lock:
            return self._peak

    def acquire(self, cancel_event: Optional[threading.Event] = None) -> bool:
        """
        Block until admitted.

        Returns:
            True once admitted, False if ``cancel_event`` was set first.
        """
        if cancel_event is None:
            self._semaphore.acquire()
        else:
            while not self._semaphore.acquire(timeout=self.POLL_SECONDS):
                if cancel_event.is_set():
                    return False
            if cancel_event.is_set():
                self._semaphore.release()
                return False

        with self._lock:
            self._in_flight += 1
            self._peak = max(self._peak, self._in_flight)
        return True

    def release(self) -> None:
        with self._lock:
            self._in_flight -= 1
        self._semaphore.release()

    @contextmanager
    def admit(self, cancel_event: Optional[threading.Event] = None) -> Iterator[None]:
        """
        Context manager holding one admission.

        Raises:
            SyncCancelledError: If cancelled while waiting for admission.
        """
        if not self.acquire(cancel_event):
            raise SyncCancelledError(f"{self.name}: cancelled while waiting for admission")
        try:
            yield
        finally:
            self.release()


class FetchScheduler:
    """Runs the fetch-and-materialize tasks of one container."""

    def __init__(
        self,
        store: ObjectStore,
        materializer: LocalMaterializer,
        max_concurrent: int = 10,
    ):
        """
        Initialize scheduler.

        Args:
            store: Remote object store
            materializer: Local materializer
            max_concurrent: Maximum in-flight fetches per container (N)
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.store = store
        self.materializer = materializer
        self.max_concurrent = max_concurrent

    def run(
        self,
        container: str,
        planned: Sequence[PlannedFetch],
        cancel_event: Optional[threading.Event] = None,
    ) -> List[FetchResult]:
        """
        Fetch and materialize every planned object.

        A failing object never cancels its siblings; the call returns only
        after every task has finished, with one result per planned object.

        Args:
            container: Container name
            planned: Must-fetch objects from the change set
            cancel_event: Pass cancellation event; once set no new fetch is
                admitted and queued tasks return cancelled results

        Returns:
            One FetchResult per planned object.
        """
        if not planned:
            return []

        gate = AdmissionGate(self.max_concurrent, name=f"fetch:{container}")
        results: List[FetchResult] = []

        logger.info(
            f"[{container}] Fetching {len(planned)} objects "
            f"(max {self.max_concurrent} concurrent)"
        )

        with ThreadPoolExecutor(
            max_workers=self.max_concurrent,
            thread_name_prefix=f"fetch-{container}",
        ) as executor:
            futures = {
                executor.submit(self._fetch_one, item, gate, cancel_event): item
                for item in planned
            }
            for future in as_completed(futures):
                item = futures[future]
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.error(
                        f"[{container}] Unexpected failure fetching {item.remote.key}: {e}",
                        exc_info=True,
                    )
                    results.append(
                        FetchResult(
                            remote=item.remote,
                            error=SyncErrorDetail(
                                container=container,
                                key=item.remote.key,
                                kind=ErrorKind.FETCH,
                                message=f"{type(e).__name__}: {e}",
                            ),
                        )
                    )

        logger.debug(f"[{container}] Peak concurrent fetches: {gate.peak}")
        return results

    def _fetch_one(
        self,
        item: PlannedFetch,
        gate: AdmissionGate,
        cancel_event: Optional[threading.Event],
    ) -> FetchResult:
        remote = item.remote
        container, key = remote.container, remote.key

        def failed(kind: ErrorKind, error: Exception) -> FetchResult:
            return FetchResult(
                remote=remote,
                error=SyncErrorDetail(container=container, key=key, kind=kind, message=str(error)),
            )

        try:
            with gate.admit(cancel_event):
                fetched = self.store.fetch_object(container, key, cancel_event=cancel_event)
                _path, written = self.materializer.materialize(
                    container,
                    key,
                    fetched.chunks,
                    cancel_event=cancel_event,
                    expected_size=fetched.size,
                )
        except SyncCancelledError as e:
            return failed(ErrorKind.CANCELLED, e)
        except FetchError as e:
            logger.error(f"[{container}] Error downloading {key}: {e}")
            return failed(ErrorKind.FETCH, e)
        except MaterializeError as e:
            logger.error(f"[{container}] Error materializing {key}: {e}")
            return failed(ErrorKind.MATERIALIZE, e)

        logger.info(f"[{container}] Downloaded: {key} ({item.reason})")
        record = SyncRecord(
            key=key,
            last_modified=remote.last_modified,
            content_hash=remote.content_hash,
            size=written,
        )
        return FetchResult(remote=remote, record=record, bytes_written=written)
