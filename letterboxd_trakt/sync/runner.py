"""
Background execution of check and sync passes.

Passes run on an APScheduler BackgroundScheduler whose executor has a
single worker thread, so only one pass touches the Trakt client at a time.
"""

import threading
from typing import Dict, Iterable, Optional

from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler

from letterboxd_trakt.config import SyncConfig
from letterboxd_trakt.db.store import RecordStore
from letterboxd_trakt.sync.engine import SyncEngine
from letterboxd_trakt.sync.models import PassKind, PassResult, SyncProgress
from letterboxd_trakt.utils.logging import get_logger

logger = get_logger(__name__)


class PassAlreadyRunningError(RuntimeError):
    """A pass of the requested kind is already queued or running."""


class PassRunner:
    """
    Owns the shared sync engine and schedules passes on it.

    Each pass kind has its own cancel event and progress snapshot.
    """

    def __init__(
        self,
        config: SyncConfig,
        store: Optional[RecordStore] = None,
        engine: Optional[SyncEngine] = None,
        scheduler: Optional[BackgroundScheduler] = None,
    ):
        self.config = config
        self.store = store or RecordStore()
        self.engine = engine or SyncEngine(config, store=self.store)
        self.scheduler = scheduler or BackgroundScheduler(
            executors={"default": ThreadPoolExecutor(max_workers=1)},
            job_defaults={"coalesce": False, "max_instances": 1, "misfire_grace_time": None},
        )

        self._lock = threading.Lock()
        self._cancel_events: Dict[PassKind, threading.Event] = {
            kind: threading.Event() for kind in PassKind
        }
        self._running: Dict[PassKind, bool] = {kind: False for kind in PassKind}
        self._progress: Dict[PassKind, dict] = {
            kind: {"completed": 0, "total": 0} for kind in PassKind
        }
        self._last_result: Dict[PassKind, Optional[PassResult]] = {
            kind: None for kind in PassKind
        }

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Pass runner started")

    def shutdown(self, wait: bool = True) -> None:
        """Cancel running passes and stop the scheduler."""
        for event in self._cancel_events.values():
            event.set()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=wait)
            logger.info("Pass runner shutdown")
        self.engine.close()

    def start_check(self, access_token: Optional[str] = None) -> None:
        """
        Queue a check pass over every stored record.

        Raises:
            PassAlreadyRunningError: If a check pass is already queued or running
        """
        self._submit(PassKind.CHECK, access_token, None)

    def start_sync(self, record_ids: Iterable[int], access_token: Optional[str] = None) -> None:
        """
        Queue a sync pass over the selected records, in the given order.

        Raises:
            PassAlreadyRunningError: If a sync pass is already queued or running
        """
        self._submit(PassKind.SYNC, access_token, list(record_ids))

    def cancel(self, kind: PassKind) -> bool:
        """
        Ask a pass to stop after its current record.

        Returns:
            True if a pass of that kind was running
        """
        with self._lock:
            running = self._running[kind]
            if running:
                self._cancel_events[kind].set()
        if running:
            logger.info("Cancellation requested", kind=kind.value)
        return running

    def is_running(self, kind: PassKind) -> bool:
        with self._lock:
            return self._running[kind]

    def status(self) -> dict:
        with self._lock:
            return {
                kind.value: {
                    "running": self._running[kind],
                    "cancelling": self._running[kind] and self._cancel_events[kind].is_set(),
                    "progress": dict(self._progress[kind]),
                    "last_result": self._last_result[kind].to_dict() if self._last_result[kind] else None,
                }
                for kind in PassKind
            }

    def _submit(self, kind: PassKind, access_token: Optional[str], record_ids) -> None:
        with self._lock:
            if self._running[kind]:
                raise PassAlreadyRunningError(f"A {kind.value} pass is already running")
            self._running[kind] = True
            self._cancel_events[kind].clear()
            self._progress[kind] = {"completed": 0, "total": 0}

        self.scheduler.add_job(
            self.run_pass,
            trigger="date",
            args=[kind, access_token, record_ids],
            id=f"{kind.value}_pass",
            name=f"{kind.value.title()} pass",
            replace_existing=True,
        )

    def run_pass(self, kind: PassKind, access_token: Optional[str], record_ids=None) -> Optional[PassResult]:
        """Execute a pass synchronously. Runs on the scheduler's worker thread."""
        try:
            self.engine.initialize(access_token)

            if kind == PassKind.CHECK:
                records = self.store.list_records()
                result = self.engine.check_all(
                    records,
                    on_progress=lambda p: self._on_progress(kind, p),
                    cancel_event=self._cancel_events[kind],
                )
            else:
                records = self.store.get_records(record_ids or [])
                result = self.engine.sync_all(
                    records,
                    on_progress=lambda p: self._on_progress(kind, p),
                    cancel_event=self._cancel_events[kind],
                )

            with self._lock:
                self._last_result[kind] = result
            return result

        except Exception as e:
            logger.exception("Pass failed to run", kind=kind.value, error=str(e))
            return None
        finally:
            with self._lock:
                self._running[kind] = False
                self._cancel_events[kind].clear()

    def _on_progress(self, kind: PassKind, progress: SyncProgress) -> None:
        with self._lock:
            self._progress[kind] = {"completed": progress.completed, "total": progress.total}
