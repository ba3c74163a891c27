"""
Trakt API client for Letterboxd Trakt Sync.

Documentation: https://trakt.docs.apiary.io/

Every request goes through a single RateLimiter which enforces a minimum
spacing between calls and a longer cooldown after each batch of calls.
429 responses are retried with exponential backoff.
"""

import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from letterboxd_trakt.api.base import (
    APIError,
    BaseClient,
    NotAuthenticatedError,
    ThrottledError,
)
from letterboxd_trakt.sync.models import HistoryEntry, RemoteMovieMatch, SyncResponse
from letterboxd_trakt.utils.logging import get_logger

logger = get_logger(__name__)

TRAKT_API_URL = "https://api.trakt.tv"
TRAKT_API_VERSION = "2"


class RateLimiter:
    """
    Pacing state shared by every call made through one TraktClient.

    The limiter holds a re-entrant lock for the duration of a paced call,
    so callers on different threads queue up behind each other.
    """

    def __init__(
        self,
        min_interval: float = 3.0,
        batch_size: int = 10,
        batch_cooldown: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.min_interval = min_interval
        self.batch_size = batch_size
        self.batch_cooldown = batch_cooldown
        self.clock = clock
        self.sleep = sleep

        self.last_call_completed: Optional[float] = None
        self.call_count = 0
        self._lock = threading.RLock()

    def wait(self) -> None:
        """Block until the next call is allowed to start."""
        if self.last_call_completed is not None:
            elapsed = self.clock() - self.last_call_completed
            if elapsed < self.min_interval:
                self.sleep(self.min_interval - elapsed)

        if self.batch_size and self.call_count >= self.batch_size:
            logger.info(
                "Batch limit reached, cooling down",
                calls=self.call_count,
                cooldown_seconds=self.batch_cooldown,
            )
            self.sleep(self.batch_cooldown)
            self.call_count = 0

        self.call_count += 1

    def mark_complete(self) -> None:
        self.last_call_completed = self.clock()

    @contextmanager
    def slot(self) -> Iterator[None]:
        """Hold the pacing lock around one outbound call."""
        with self._lock:
            self.wait()
            try:
                yield
            finally:
                self.mark_complete()


class TraktClient(BaseClient):
    """
    Client for the Trakt v2 API.

    Acts as the single gateway for all Trakt traffic: credentials, pacing
    and throttling backoff are handled here.
    """

    def __init__(
        self,
        client_id: str,
        access_token: Optional[str] = None,
        base_url: str = TRAKT_API_URL,
        timeout: int = 30,
        rate_limiter: Optional[RateLimiter] = None,
        max_throttle_retries: int = 3,
        backoff_base: float = 4.0,
    ):
        """
        Initialize Trakt client.

        Args:
            client_id: Trakt application client id (trakt-api-key)
            access_token: OAuth bearer token, may be set later via initialize()
            base_url: Trakt API base URL
            timeout: Request timeout in seconds
            rate_limiter: Shared pacing state, a default one is created if omitted
            max_throttle_retries: Retries after a 429 before giving up
            backoff_base: First backoff delay in seconds, doubled per retry
        """
        super().__init__(base_url, timeout=timeout)
        self.client_id = client_id
        self.access_token = access_token
        self.rate_limiter = rate_limiter or RateLimiter()
        self.max_throttle_retries = max_throttle_retries
        self.backoff_base = backoff_base

        self.session.headers.update({
            "Content-Type": "application/json",
            "trakt-api-version": TRAKT_API_VERSION,
            "trakt-api-key": client_id,
        })

    def initialize(self, access_token: Optional[str]) -> None:
        """Set the bearer credential used by every subsequent call."""
        self.access_token = access_token or None

    @property
    def is_initialized(self) -> bool:
        return bool(self.access_token)

    def call(
        self,
        endpoint: str,
        payload: Optional[Dict[str, Any]] = None,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make a paced Trakt API call.

        Args:
            endpoint: API path, e.g. ``/sync/history``
            payload: JSON body for POST requests
            method: HTTP method
            params: Query string parameters

        Returns:
            Decoded response body

        Raises:
            NotAuthenticatedError: If no access token is set
            ThrottledError: If Trakt still answers 429 after all retries
            APIError: For any other failure, without retrying
        """
        if not self.access_token:
            raise NotAuthenticatedError("Trakt client not initialized")

        retrying = Retrying(
            retry=retry_if_exception_type(ThrottledError),
            wait=wait_exponential(multiplier=self.backoff_base, exp_base=2),
            stop=stop_after_attempt(self.max_throttle_retries + 1),
            sleep=self.rate_limiter.sleep,
            before_sleep=self._log_backoff,
            reraise=True,
        )
        return retrying(self._paced_request, method, endpoint, payload, params)

    def _paced_request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]],
        params: Optional[Dict[str, Any]],
    ) -> Any:
        kwargs: Dict[str, Any] = {
            "headers": {"Authorization": f"Bearer {self.access_token}"},
        }
        if params:
            kwargs["params"] = params
        if payload is not None:
            kwargs["json"] = payload

        with self.rate_limiter.slot():
            logger.debug("Trakt request", method=method, endpoint=endpoint)
            return self._request(method, endpoint, **kwargs)

    def _log_backoff(self, retry_state: RetryCallState) -> None:
        delay = retry_state.next_action.sleep if retry_state.next_action else None
        logger.warning(
            "Rate limited by Trakt, backing off",
            attempt=retry_state.attempt_number,
            delay_seconds=delay,
        )

    def test_connection(self) -> bool:
        """
        Test connection to Trakt with the current token.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            settings = self.get_user_settings()
            return isinstance(settings, dict) and "user" in settings
        except APIError as e:
            logger.error("Failed to connect to Trakt", error=str(e))
            return False

    def get_user_settings(self) -> Dict[str, Any]:
        """Get the authenticated user's profile and settings."""
        return self.call("/users/settings") or {}

    def search_movie(self, title: str, year: Optional[str]) -> List[RemoteMovieMatch]:
        """
        Search Trakt for a movie.

        Args:
            title: Movie title
            year: Release year, ignored if not a number

        Returns:
            Matches in Trakt's relevance order
        """
        params: Dict[str, Any] = {"query": title}
        try:
            params["year"] = int(str(year).strip())
        except (TypeError, ValueError):
            pass

        results = self.call("/search/movie", params=params) or []

        matches = []
        for result in results:
            movie = result.get("movie") or {}
            ids = movie.get("ids") or {}
            if ids.get("trakt") is None:
                continue
            matches.append(RemoteMovieMatch(
                trakt_id=ids["trakt"],
                title=movie.get("title", title),
                year=movie.get("year"),
                slug=ids.get("slug"),
                imdb_id=ids.get("imdb"),
                tmdb_id=ids.get("tmdb"),
            ))
        return matches

    def get_movie_history(self, trakt_id: int) -> List[HistoryEntry]:
        """
        Get the user's plays of a movie, most recent first.

        Args:
            trakt_id: Trakt movie id

        Returns:
            History entries
        """
        results = self.call(f"/sync/history/movies/{trakt_id}") or []
        return [
            HistoryEntry(
                watched_at=item["watched_at"],
                history_id=item.get("id"),
                action=item.get("action"),
            )
            for item in results
            if item.get("watched_at")
        ]

    def add_to_history(self, movies: List[Dict[str, Any]]) -> SyncResponse:
        """
        Add plays to the user's history.

        Args:
            movies: Items with ``ids`` and optional ``watched_at``

        Returns:
            SyncResponse with added and not found counts
        """
        response = self.call("/sync/history", {"movies": movies}, method="POST")
        return self._parse_sync_response(response)

    def add_ratings(self, movies: List[Dict[str, Any]]) -> SyncResponse:
        """
        Rate movies.

        Args:
            movies: Items with ``ids``, ``rating`` and optional ``rated_at``

        Returns:
            SyncResponse with added and not found counts
        """
        response = self.call("/sync/ratings", {"movies": movies}, method="POST")
        return self._parse_sync_response(response)

    def _parse_sync_response(self, response: Any) -> SyncResponse:
        if not isinstance(response, dict):
            return SyncResponse()
        added = response.get("added") or {}
        not_found = response.get("not_found") or {}
        return SyncResponse(
            added=added.get("movies", 0) if isinstance(added, dict) else 0,
            not_found=list(not_found.get("movies", [])) if isinstance(not_found, dict) else [],
        )
