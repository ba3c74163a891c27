"""
Persistence of watch records and pass history.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from letterboxd_trakt.db.database import get_db_session
from letterboxd_trakt.db.models import SyncLog, SyncRun, WatchRecordRow
from letterboxd_trakt.sync.models import PassKind, PassResult, SyncStatus, WatchRecord


def _to_record(row: WatchRecordRow) -> WatchRecord:
    return WatchRecord(
        id=row.id,
        title=row.title,
        year=row.year,
        local_rating=row.local_rating,
        local_watched_date=row.local_watched_date,
        remote_rating=row.remote_rating,
        remote_watched_date=row.remote_watched_date,
        status=SyncStatus(row.status),
        last_error=row.last_error,
    )


def _apply(row: WatchRecordRow, record: WatchRecord) -> None:
    row.title = record.title
    row.year = record.year
    row.local_rating = record.local_rating
    row.local_watched_date = record.local_watched_date
    row.remote_rating = record.remote_rating
    row.remote_watched_date = record.remote_watched_date
    row.status = record.status.value
    row.last_error = record.last_error


class RecordStore:
    """
    Reads and writes WatchRecords and SyncRuns through the shared
    SQLAlchemy session factory.
    """

    def replace_all(self, records: Iterable[WatchRecord]) -> List[WatchRecord]:
        """
        Replace the imported record set.

        Args:
            records: Records in import order, duplicates already collapsed

        Returns:
            The stored records with ids assigned
        """
        stored = []
        with get_db_session() as session:
            session.query(WatchRecordRow).delete()
            rows = []
            for position, record in enumerate(records):
                row = WatchRecordRow(position=position)
                _apply(row, record)
                session.add(row)
                rows.append((row, record))
            session.flush()
            for row, record in rows:
                record.id = row.id
                stored.append(record)
        return stored

    def list_records(self, status: Optional[SyncStatus] = None) -> List[WatchRecord]:
        with get_db_session() as session:
            query = session.query(WatchRecordRow)
            if status is not None:
                query = query.filter(WatchRecordRow.status == status.value)
            return [_to_record(row) for row in query.order_by(WatchRecordRow.position.asc()).all()]

    def get_records(self, ids: Iterable[int]) -> List[WatchRecord]:
        """
        Load records by id, keeping the order of ``ids``.

        Unknown ids are ignored.
        """
        wanted = list(ids)
        with get_db_session() as session:
            rows = session.query(WatchRecordRow).filter(WatchRecordRow.id.in_(wanted)).all()
            by_id = {row.id: _to_record(row) for row in rows}
        return [by_id[i] for i in wanted if i in by_id]

    def save_record(self, record: WatchRecord) -> None:
        """Write back the mutable fields of a record."""
        if record.id is None:
            raise ValueError(f"Record '{record.title}' has not been stored yet")
        with get_db_session() as session:
            row = session.get(WatchRecordRow, record.id)
            if row is None:
                raise LookupError(f"No stored record with id {record.id}")
            _apply(row, record)

    def clear(self) -> int:
        """Delete every record. Returns the number removed."""
        with get_db_session() as session:
            return session.query(WatchRecordRow).delete()

    def status_counts(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in SyncStatus}
        with get_db_session() as session:
            for row in session.query(WatchRecordRow.status).all():
                counts[row.status] = counts.get(row.status, 0) + 1
        return counts

    def start_run(self, run_id: str, kind: PassKind, started_at: datetime) -> None:
        with get_db_session() as session:
            session.add(SyncRun(
                run_id=run_id,
                kind=kind.value,
                started_at=started_at,
                status="running",
            ))

    def finish_run(self, result: PassResult) -> None:
        with get_db_session() as session:
            run = session.query(SyncRun).filter(SyncRun.run_id == result.run_id).first()
            if run is None:
                return

            if not result.success:
                run.status = "failed"
            elif result.cancelled:
                run.status = "cancelled"
            else:
                run.status = "completed"
            run.completed_at = result.completed_at
            run.records_processed = result.records_processed
            run.records_synced = result.records_synced
            run.records_skipped = result.records_skipped
            run.records_failed = result.records_failed
            run.cancelled = result.cancelled
            run.error_message = result.error_message

    def recent_runs(self, limit: int = 20) -> List[dict]:
        with get_db_session() as session:
            runs = session.query(SyncRun).order_by(SyncRun.started_at.desc()).limit(limit).all()
            return [{
                'run_id': r.run_id,
                'kind': r.kind,
                'started_at': r.started_at.isoformat() if r.started_at else None,
                'completed_at': r.completed_at.isoformat() if r.completed_at else None,
                'status': r.status,
                'processed': r.records_processed,
                'synced': r.records_synced,
                'skipped': r.records_skipped,
                'failed': r.records_failed,
                'error': r.error_message,
            } for r in runs]

    def recent_logs(self, limit: int = 100, level: Optional[str] = None) -> List[dict]:
        with get_db_session() as session:
            query = session.query(SyncLog)
            if level:
                query = query.filter(SyncLog.level == level.upper())
            logs = query.order_by(SyncLog.created_at.desc()).limit(limit).all()
            return [{
                'id': l.id,
                'level': l.level,
                'message': l.message,
                'details': l.details,
                'sync_run_id': l.sync_run_id,
                'created_at': l.created_at.isoformat() if l.created_at else None,
            } for l in logs]
