"""
Logging configuration for Letterboxd Trakt Sync.
Provides both console logging and database logging.
"""

import logging
import sys
import os
from typing import Any, Dict, Optional
import structlog
from structlog.types import Processor

_configured = False


def get_log_level() -> str:
    """Get log level from environment."""
    return os.getenv("LOG_LEVEL", "INFO").upper()


def setup_logging(level: Optional[str] = None) -> None:
    """Configure structured logging for the application."""
    global _configured

    # Shared processors for both console and structlog
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    # Configure structlog
    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or get_log_level()).upper(), logging.INFO))

    if _configured:
        return

    # Configure standard library logging
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()),
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("waitress").setLevel(logging.WARNING)

    _configured = True


class DatabaseLogHandler(logging.Handler):
    """
    Stores pass log lines in the sync_log table for the /api/logs endpoint.

    Only records emitted inside a pass (bound to a ``sync_run_id``) are
    kept. The table is pruned to ``max_logs`` rows every ``prune_every``
    writes.
    """

    def __init__(self, max_logs: int = 1000, prune_every: int = 50):
        super().__init__()
        self.max_logs = max_logs
        self.prune_every = prune_every
        self._writes = 0

    @staticmethod
    def _event_dict(record: logging.LogRecord) -> Optional[Dict[str, Any]]:
        return record.msg if isinstance(record.msg, dict) else None

    def filter(self, record: logging.LogRecord) -> bool:
        event_dict = self._event_dict(record)
        return bool(event_dict and event_dict.get("sync_run_id")) and super().filter(record)

    def emit(self, record: logging.LogRecord) -> None:
        from letterboxd_trakt.db.database import get_db_session
        from letterboxd_trakt.db.models import SyncLog

        event_dict = self._event_dict(record) or {}
        skip = {"event", "sync_run_id", "level", "timestamp", "logger"}

        try:
            with get_db_session() as session:
                session.add(SyncLog(
                    level=record.levelname,
                    message=str(event_dict.get("event", record.getMessage())),
                    details={k: str(v) for k, v in event_dict.items() if k not in skip} or None,
                    sync_run_id=event_dict.get("sync_run_id"),
                ))

                self._writes += 1
                if self._writes % self.prune_every == 0:
                    cutoff = session.query(SyncLog.id)\
                        .order_by(SyncLog.id.desc())\
                        .offset(self.max_logs)\
                        .limit(1)\
                        .scalar()
                    if cutoff is not None:
                        session.query(SyncLog)\
                            .filter(SyncLog.id <= cutoff)\
                            .delete(synchronize_session=False)

        except Exception:
            self.handleError(record)


def init_db_logging(level: int = logging.INFO) -> DatabaseLogHandler:
    """Attach the database handler to the root logger. Call after init_db()."""
    handler = DatabaseLogHandler()
    handler.setLevel(level)
    logging.getLogger().addHandler(handler)
    return handler


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)


class SyncLogger:
    """
    Logger for one check or sync pass.

    Every line carries the pass run id and kind, which is what
    DatabaseLogHandler keys on.
    """

    def __init__(self, sync_run_id: str, kind: Optional[str] = None):
        self.logger = get_logger("sync")
        self.context = {"sync_run_id": sync_run_id}
        if kind:
            self.context["pass_kind"] = kind

    def _log(self, level: str, message: str, **kwargs: Any) -> None:
        with structlog.contextvars.bound_contextvars(**self.context):
            getattr(self.logger, level)(message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._log("info", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._log("warning", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._log("error", message, **kwargs)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._log("debug", message, **kwargs)

    def exception(self, message: str, **kwargs: Any) -> None:
        """Log an error with the current traceback."""
        self._log("exception", message, **kwargs)
