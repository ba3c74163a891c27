"""
Main sync engine for Letterboxd Trakt Sync.

Runs the two long-running passes over imported diary entries:
the check pass classifies records against Trakt history, the sync pass
writes the selected records to Trakt.
"""

import threading
import uuid
from datetime import datetime
from typing import Callable, Iterable, Optional

from letterboxd_trakt.api.base import APIError, NotAuthenticatedError
from letterboxd_trakt.api.trakt import RateLimiter, TraktClient
from letterboxd_trakt.config import SyncConfig
from letterboxd_trakt.db.store import RecordStore
from letterboxd_trakt.sync.dates import WatchedDateError, to_trakt_timestamp
from letterboxd_trakt.sync.matcher import HistoryMatcher
from letterboxd_trakt.sync.models import (
    Classification,
    PassKind,
    PassResult,
    SyncProgress,
    SyncStatus,
    WatchRecord,
)
from letterboxd_trakt.sync.ratings import convert_rating, is_submittable_rating
from letterboxd_trakt.utils.logging import SyncLogger, get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[SyncProgress], None]


def _new_run_id() -> str:
    return str(uuid.uuid4())[:8]


def create_trakt_client(config: SyncConfig) -> TraktClient:
    """Build the Trakt gateway described by the configuration."""
    return TraktClient(
        client_id=config.trakt_client_id or "",
        access_token=config.trakt_access_token,
        base_url=config.trakt_api_url,
        timeout=config.request_timeout,
        rate_limiter=RateLimiter(
            min_interval=config.min_request_interval_ms / 1000,
            batch_size=config.batch_size,
            batch_cooldown=config.batch_cooldown_ms / 1000,
        ),
        max_throttle_retries=config.max_throttle_retries,
        backoff_base=config.backoff_base_seconds,
    )


class SyncEngine:
    """
    Sync engine that coordinates check and sync passes.

    Responsibilities:
    - Classify records against the user's Trakt history
    - Write history plays and ratings for selected records
    - Keep per-record status current in the record store
    - Stop cleanly between records when a pass is cancelled
    """

    def __init__(
        self,
        config: SyncConfig,
        trakt_client: Optional[TraktClient] = None,
        store: Optional[RecordStore] = None,
    ):
        """
        Initialize sync engine.

        Args:
            config: Sync configuration
            trakt_client: Shared Trakt gateway, built from config if omitted
            store: Record store, passes run in memory only if omitted
        """
        self.config = config
        self.trakt_client = trakt_client or create_trakt_client(config)
        self.matcher = HistoryMatcher(self.trakt_client)
        self.store = store

    def initialize(self, access_token: Optional[str] = None) -> bool:
        """
        Set the bearer credential on the Trakt client.

        Args:
            access_token: Token to use, falls back to the configured one

        Returns:
            True if a credential is now present
        """
        token = access_token or self.config.trakt_access_token
        self.trakt_client.initialize(token)
        if not self.trakt_client.is_initialized:
            logger.warning("No Trakt access token available")
            return False
        return True

    def classify(self, record: WatchRecord) -> Classification:
        """
        Reconcile one record and store the outcome on it.

        Raises:
            NotAuthenticatedError: If the Trakt client has no credential
        """
        classification = self.matcher.classify(record)

        if classification.status == SyncStatus.UNCHECKED:
            record.transition(SyncStatus.UNCHECKED)
        else:
            record.transition(classification.status)
            record.remote_watched_date = classification.remote_watched_date

        return classification

    def check_all(
        self,
        records: Iterable[WatchRecord],
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> PassResult:
        """
        Run a check pass.

        Failed records go back to UNCHECKED first, then every UNCHECKED
        record is classified in order.

        Args:
            records: Records to check
            on_progress: Called after each record
            cancel_event: Set by the caller to stop after the current record

        Returns:
            PassResult with check details
        """
        records = list(records)
        for record in records:
            if record.status == SyncStatus.FAILED:
                record.transition(SyncStatus.UNCHECKED)
                self._persist(record)

        pending = [r for r in records if r.status == SyncStatus.UNCHECKED]

        result = self._start_pass(PassKind.CHECK)
        sync_logger = SyncLogger(result.run_id, result.kind.value)
        sync_logger.info("Starting check pass", records=len(pending))

        try:
            for index, record in enumerate(pending):
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    sync_logger.info("Check pass cancelled", remaining=len(pending) - index)
                    break

                try:
                    classification = self.classify(record)
                except NotAuthenticatedError:
                    raise
                except Exception as e:
                    sync_logger.exception("Unexpected error checking record", title=record.title, error=str(e))
                    record.transition(SyncStatus.UNCHECKED)
                    classification = Classification(status=SyncStatus.UNCHECKED, error=str(e))
                self._persist(record)

                result.records_processed += 1
                if classification.status == SyncStatus.READY_TO_SYNC:
                    result.records_ready += 1
                elif classification.status == SyncStatus.ALREADY_PRESENT:
                    result.records_already_present += 1
                else:
                    result.records_unchecked += 1

                sync_logger.debug(
                    "Checked record",
                    title=record.title,
                    year=record.year,
                    status=record.status.value,
                )
                self._report(on_progress, PassKind.CHECK, index + 1, len(pending), record)

            sync_logger.info(
                "Check pass completed",
                processed=result.records_processed,
                ready=result.records_ready,
                already_present=result.records_already_present,
                unchecked=result.records_unchecked,
                cancelled=result.cancelled,
            )

        except NotAuthenticatedError as e:
            sync_logger.error("Check pass halted, not authenticated", error=str(e))
            result.success = False
            result.error_message = str(e)
        except Exception as e:
            sync_logger.exception("Check pass failed", error=str(e))
            result.success = False
            result.error_message = str(e)

        return self._finish_pass(result)

    def sync_all(
        self,
        records: Iterable[WatchRecord],
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> PassResult:
        """
        Run a sync pass over the selected records, in order.

        Records already SYNCED are skipped without any Trakt call, so
        running the same selection again resumes where the last pass
        stopped.

        Args:
            records: Selected records
            on_progress: Called after each record, skipped ones included
            cancel_event: Set by the caller to stop after the current record

        Returns:
            PassResult with sync details
        """
        records = list(records)

        result = self._start_pass(PassKind.SYNC)
        sync_logger = SyncLogger(result.run_id, result.kind.value)
        sync_logger.info("Starting sync pass", records=len(records))

        try:
            for index, record in enumerate(records):
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    sync_logger.info("Sync pass cancelled", remaining=len(records) - index)
                    break

                if record.status == SyncStatus.SYNCED:
                    result.records_skipped += 1
                else:
                    try:
                        self._sync_record(record, sync_logger)
                    except NotAuthenticatedError:
                        raise
                    except Exception as e:
                        sync_logger.exception("Unexpected error syncing record", title=record.title, error=str(e))
                        if record.status != SyncStatus.SYNCED:
                            record.transition(SyncStatus.FAILED, f"Unexpected error: {e}")
                    self._persist(record)
                    result.records_processed += 1

                    if record.status == SyncStatus.SYNCED:
                        result.records_synced += 1
                    else:
                        result.records_failed += 1

                self._report(on_progress, PassKind.SYNC, index + 1, len(records), record)

            sync_logger.info(
                "Sync pass completed",
                processed=result.records_processed,
                synced=result.records_synced,
                skipped=result.records_skipped,
                failed=result.records_failed,
                cancelled=result.cancelled,
            )

        except NotAuthenticatedError as e:
            sync_logger.error("Sync pass halted, not authenticated", error=str(e))
            result.success = False
            result.error_message = str(e)
        except Exception as e:
            sync_logger.exception("Sync pass failed", error=str(e))
            result.success = False
            result.error_message = str(e)

        return self._finish_pass(result)

    def _sync_record(self, record: WatchRecord, sync_logger: SyncLogger) -> None:
        """
        Sync a single record and leave it SYNCED or FAILED.

        Args:
            record: WatchRecord to sync
            sync_logger: Logger for this pass

        Raises:
            NotAuthenticatedError: If the Trakt client has no credential
        """
        rating = convert_rating(record.local_rating)
        submit_rating = is_submittable_rating(rating)

        if not record.local_watched_date and not submit_rating:
            sync_logger.debug("Nothing to sync", title=record.title, year=record.year)
            record.transition(SyncStatus.SYNCED)
            return

        watched_at = None
        if record.local_watched_date:
            try:
                watched_at = to_trakt_timestamp(record.local_watched_date)
            except WatchedDateError as e:
                self._fail(record, str(e), sync_logger)
                return

        reselected_existing = record.status == SyncStatus.ALREADY_PRESENT

        try:
            match = self.matcher.find_movie(record)
            if match is None:
                self._fail(
                    record,
                    f"Movie not found on Trakt: {record.title} ({record.year})",
                    sync_logger,
                )
                return
            history = self.trakt_client.get_movie_history(match.trakt_id)
        except NotAuthenticatedError:
            raise
        except APIError as e:
            self._fail(record, f"Failed to check Trakt history: {e}", sync_logger)
            return

        classification = self.matcher.compare_history(record, match, history)
        add_play = True
        if classification.status == SyncStatus.ALREADY_PRESENT and not (
            reselected_existing and self.config.resubmit_existing
        ):
            # Same-day play exists, only a missing rating is still written
            add_play = False
            rating_pending = submit_rating and record.remote_rating != int(rating)
            sync_logger.info(
                "Already in Trakt history",
                title=record.title,
                year=record.year,
                trakt_watched=classification.remote_watched_date,
                rating_pending=rating_pending,
            )
            record.remote_watched_date = classification.remote_watched_date
            if not rating_pending:
                record.transition(SyncStatus.SYNCED)
                return

        ids = {"trakt": match.trakt_id}

        try:
            if watched_at and add_play:
                response = self.trakt_client.add_to_history([
                    {"ids": ids, "watched_at": watched_at},
                ])
                if response.not_found:
                    self._fail(
                        record,
                        f"Trakt could not find movie {match.trakt_id} when adding history",
                        sync_logger,
                    )
                    return

            if submit_rating:
                item = {"ids": ids, "rating": int(rating)}
                if watched_at:
                    item["rated_at"] = watched_at
                response = self.trakt_client.add_ratings([item])
                if response.not_found:
                    self._fail(
                        record,
                        f"Trakt could not find movie {match.trakt_id} when adding rating",
                        sync_logger,
                    )
                    return

        except NotAuthenticatedError:
            raise
        except APIError as e:
            self._fail(record, f"Failed to sync movie: {e}", sync_logger)
            return

        if add_play and watched_at:
            record.remote_watched_date = watched_at
        else:
            record.remote_watched_date = classification.remote_watched_date
        if submit_rating:
            record.remote_rating = int(rating)
        record.transition(SyncStatus.SYNCED)

        sync_logger.info(
            "Synced record",
            title=record.title,
            year=record.year,
            trakt_id=match.trakt_id,
            watched_at=watched_at,
            rating=int(rating) if submit_rating else None,
        )

    def _fail(self, record: WatchRecord, reason: str, sync_logger: SyncLogger) -> None:
        sync_logger.warning("Failed to sync record", title=record.title, year=record.year, error=reason)
        record.transition(SyncStatus.FAILED, reason)

    def _persist(self, record: WatchRecord) -> None:
        if self.store is not None and record.id is not None:
            self.store.save_record(record)

    def _report(
        self,
        on_progress: Optional[ProgressCallback],
        kind: PassKind,
        completed: int,
        total: int,
        record: WatchRecord,
    ) -> None:
        if on_progress is not None:
            on_progress(SyncProgress(kind=kind, completed=completed, total=total, record=record))

    def _start_pass(self, kind: PassKind) -> PassResult:
        result = PassResult(run_id=_new_run_id(), kind=kind, started_at=datetime.utcnow())
        if self.store is not None:
            self.store.start_run(result.run_id, kind, result.started_at)
        return result

    def _finish_pass(self, result: PassResult) -> PassResult:
        result.completed_at = datetime.utcnow()
        if self.store is not None:
            self.store.finish_run(result)
        return result

    def close(self) -> None:
        """Close the Trakt client."""
        self.trakt_client.close()
