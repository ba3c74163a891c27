"""
Data models for sync operations.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any


class SyncStatus(str, Enum):
    """Per-record sync state."""
    UNCHECKED = "unchecked"
    READY_TO_SYNC = "ready_to_sync"
    ALREADY_PRESENT = "already_present"
    SYNCED = "synced"
    FAILED = "failed"


class PassKind(str, Enum):
    """The two long-running operations over a record list."""
    CHECK = "check"
    SYNC = "sync"


# Synced is terminal, everything else may be re-checked or re-synced
ALLOWED_TRANSITIONS = {
    SyncStatus.UNCHECKED: {
        SyncStatus.UNCHECKED,
        SyncStatus.READY_TO_SYNC,
        SyncStatus.ALREADY_PRESENT,
        SyncStatus.SYNCED,
        SyncStatus.FAILED,
    },
    SyncStatus.READY_TO_SYNC: {
        SyncStatus.UNCHECKED,
        SyncStatus.READY_TO_SYNC,
        SyncStatus.ALREADY_PRESENT,
        SyncStatus.SYNCED,
        SyncStatus.FAILED,
    },
    SyncStatus.ALREADY_PRESENT: {
        SyncStatus.UNCHECKED,
        SyncStatus.READY_TO_SYNC,
        SyncStatus.ALREADY_PRESENT,
        SyncStatus.SYNCED,
        SyncStatus.FAILED,
    },
    SyncStatus.FAILED: {
        SyncStatus.UNCHECKED,
        SyncStatus.READY_TO_SYNC,
        SyncStatus.ALREADY_PRESENT,
        SyncStatus.SYNCED,
        SyncStatus.FAILED,
    },
    SyncStatus.SYNCED: set(),
}


class InvalidTransitionError(ValueError):
    """Raised when a record is moved along a transition that does not exist."""


@dataclass
class WatchRecord:
    """One imported Letterboxd diary entry and its Trakt state."""
    title: str
    year: str
    local_rating: Optional[str] = None
    local_watched_date: Optional[str] = None

    remote_rating: Optional[int] = None
    remote_watched_date: Optional[str] = None

    status: SyncStatus = SyncStatus.UNCHECKED
    last_error: Optional[str] = None

    # Store primary key, None until persisted
    id: Optional[int] = None

    @property
    def key(self) -> tuple:
        """Composite identity used to collapse duplicates."""
        return (self.title, self.year)

    def transition(self, status: SyncStatus, error: Optional[str] = None) -> None:
        """
        Move the record to a new status.

        Args:
            status: Target status
            error: Failure reason, only kept for FAILED

        Raises:
            InvalidTransitionError: If the transition is not allowed
        """
        if status not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Cannot move '{self.title}' ({self.year}) "
                f"from {self.status.value} to {status.value}"
            )
        self.status = status
        self.last_error = error if status == SyncStatus.FAILED else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "year": self.year,
            "local_rating": self.local_rating,
            "local_watched_date": self.local_watched_date,
            "remote_rating": self.remote_rating,
            "remote_watched_date": self.remote_watched_date,
            "status": self.status.value,
            "last_error": self.last_error,
        }


@dataclass
class RemoteMovieMatch:
    """A movie returned by a Trakt search."""
    trakt_id: int
    title: str
    year: Optional[int]
    slug: Optional[str] = None
    imdb_id: Optional[str] = None
    tmdb_id: Optional[int] = None


@dataclass
class HistoryEntry:
    """A single play in the user's Trakt history."""
    watched_at: str
    history_id: Optional[int] = None
    action: Optional[str] = None


@dataclass
class SyncResponse:
    """Counts returned by the Trakt sync write endpoints."""
    added: int = 0
    not_found: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class Classification:
    """Outcome of reconciling one record against Trakt."""
    status: SyncStatus
    match: Optional[RemoteMovieMatch] = None
    remote_watched_date: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SyncProgress:
    """Progress payload handed to pass callbacks."""
    kind: PassKind
    completed: int
    total: int
    record: Optional[WatchRecord] = None


@dataclass
class PassResult:
    """Result of a complete check or sync pass."""
    run_id: str
    kind: PassKind
    started_at: datetime
    completed_at: Optional[datetime] = None

    # Counts
    records_processed: int = 0
    records_synced: int = 0
    records_skipped: int = 0
    records_failed: int = 0
    records_ready: int = 0
    records_already_present: int = 0
    records_unchecked: int = 0

    # Status
    cancelled: bool = False
    success: bool = True
    error_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "kind": self.kind.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "processed": self.records_processed,
            "synced": self.records_synced,
            "skipped": self.records_skipped,
            "failed": self.records_failed,
            "ready": self.records_ready,
            "already_present": self.records_already_present,
            "unchecked": self.records_unchecked,
            "cancelled": self.cancelled,
            "success": self.success,
            "error": self.error_message,
        }
