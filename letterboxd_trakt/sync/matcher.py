"""
History matching for Letterboxd Trakt Sync.

Decides, for one diary entry, whether Trakt already has that viewing.
Remote state is only read here, never written.
"""

from typing import List, Optional

from letterboxd_trakt.api.base import APIError, NotAuthenticatedError
from letterboxd_trakt.api.trakt import TraktClient
from letterboxd_trakt.sync.dates import WatchedDateError, utc_day
from letterboxd_trakt.sync.models import (
    Classification,
    HistoryEntry,
    RemoteMovieMatch,
    SyncStatus,
    WatchRecord,
)
from letterboxd_trakt.utils.logging import get_logger

logger = get_logger(__name__)


class HistoryMatcher:
    """
    Matches diary entries against the user's Trakt history.

    Matching steps:
    1. Search Trakt by title and year, trusting Trakt's ranking
    2. Fetch the user's plays of the first match
    3. Compare watched dates on the UTC calendar day
    """

    def __init__(self, trakt_client: TraktClient):
        self.trakt_client = trakt_client

    def find_movie(self, record: WatchRecord) -> Optional[RemoteMovieMatch]:
        """
        Search Trakt for a record.

        Args:
            record: WatchRecord to look up

        Returns:
            First search result, None if Trakt has no match
        """
        matches = self.trakt_client.search_movie(record.title, record.year)
        if not matches:
            logger.debug("No match found on Trakt", title=record.title, year=record.year)
            return None
        return matches[0]

    def classify(self, record: WatchRecord) -> Classification:
        """
        Reconcile one record against Trakt.

        Transport and parse failures leave the record UNCHECKED so the next
        check pass retries it.

        Args:
            record: WatchRecord to classify

        Returns:
            Classification for the record

        Raises:
            NotAuthenticatedError: If the Trakt client has no credential
        """
        try:
            match = self.find_movie(record)
            if match is None:
                return Classification(status=SyncStatus.READY_TO_SYNC)

            history = self.trakt_client.get_movie_history(match.trakt_id)
        except NotAuthenticatedError:
            raise
        except (APIError, KeyError, TypeError, AttributeError) as e:
            logger.warning(
                "Failed to check Trakt history",
                title=record.title,
                year=record.year,
                error=str(e),
            )
            return Classification(status=SyncStatus.UNCHECKED, error=str(e))

        return self.compare_history(record, match, history)

    def compare_history(
        self,
        record: WatchRecord,
        match: RemoteMovieMatch,
        history: List[HistoryEntry],
    ) -> Classification:
        """
        Classify a record given the plays Trakt already has for it.

        Args:
            record: Local record
            match: Trakt movie the record resolved to
            history: Plays of that movie, most recent first

        Returns:
            Classification with the most recent remote watch date
        """
        if not history:
            return Classification(status=SyncStatus.READY_TO_SYNC, match=match)

        remote_watched = history[0].watched_at

        if not record.local_watched_date:
            return Classification(
                status=SyncStatus.ALREADY_PRESENT,
                match=match,
                remote_watched_date=remote_watched,
            )

        try:
            local_day = utc_day(record.local_watched_date)
        except WatchedDateError as e:
            logger.warning("Cannot compare watched date", title=record.title, error=str(e))
            return Classification(
                status=SyncStatus.READY_TO_SYNC,
                match=match,
                remote_watched_date=remote_watched,
            )

        for entry in history:
            try:
                if utc_day(entry.watched_at) == local_day:
                    return Classification(
                        status=SyncStatus.ALREADY_PRESENT,
                        match=match,
                        remote_watched_date=remote_watched,
                    )
            except WatchedDateError:
                logger.debug("Skipping history entry with bad date", watched_at=entry.watched_at)

        # Different day, a rewatch
        logger.debug(
            "Rewatch detected",
            title=record.title,
            local_date=record.local_watched_date,
            remote_date=remote_watched,
        )
        return Classification(
            status=SyncStatus.READY_TO_SYNC,
            match=match,
            remote_watched_date=remote_watched,
        )
