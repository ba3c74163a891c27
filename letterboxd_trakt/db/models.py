"""
SQLAlchemy database models for Letterboxd Trakt Sync.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Boolean, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class WatchRecordRow(Base):
    """An imported diary entry and its Trakt sync state."""
    __tablename__ = 'watch_record'
    __table_args__ = (UniqueConstraint('title', 'year', name='uq_watch_record_title_year'),)

    id = Column(Integer, primary_key=True)
    position = Column(Integer, nullable=False, default=0, index=True)  # import order
    title = Column(String(500), nullable=False)
    year = Column(String(10), nullable=False, default='')
    local_rating = Column(String(10), nullable=True)
    local_watched_date = Column(String(50), nullable=True)
    remote_rating = Column(Integer, nullable=True)
    remote_watched_date = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default='unchecked', index=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SyncLog(Base):
    """Detailed logs for check and sync passes."""
    __tablename__ = 'sync_log'

    id = Column(Integer, primary_key=True)
    level = Column(String(20), nullable=False)  # DEBUG, INFO, WARNING, ERROR
    message = Column(Text, nullable=False)
    details = Column(JSON, nullable=True)
    sync_run_id = Column(String(50), index=True, nullable=True)  # Group logs by pass
    created_at = Column(DateTime, default=datetime.utcnow, index=True)


class SyncRun(Base):
    """A single check or sync pass."""
    __tablename__ = 'sync_run'

    id = Column(Integer, primary_key=True)
    run_id = Column(String(50), unique=True, index=True, nullable=False)
    kind = Column(String(10), nullable=False)  # check, sync
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    status = Column(String(20), default='running')  # running, completed, cancelled, failed
    records_processed = Column(Integer, default=0)
    records_synced = Column(Integer, default=0)
    records_skipped = Column(Integer, default=0)
    records_failed = Column(Integer, default=0)
    cancelled = Column(Boolean, default=False)
    error_message = Column(Text, nullable=True)
