"""
Database engine, session factory and unit-of-work handling.
"""
import logging
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from tillpoint.core.config import Settings

logger = logging.getLogger(__name__)

Base = declarative_base()

AFTER_COMMIT_KEY = "after_commit"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Owns one engine and hands out units of work bound to it."""

    def __init__(self, url: str, statement_timeout_ms: Optional[int] = None, **engine_options):
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql://", 1)

        options = {"pool_pre_ping": True}
        if url.startswith("sqlite"):
            options["connect_args"] = {"check_same_thread": False}
        options.update(engine_options)

        self.engine = create_engine(url, **options)
        self.statement_timeout_ms = statement_timeout_ms
        self.session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )

        if self.dialect == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Build a Database from application settings."""
        options = {"echo": settings.database_echo}
        if not settings.database_url.startswith("sqlite"):
            options["pool_size"] = settings.database_pool_size
            options["max_overflow"] = settings.database_max_overflow
        return cls(
            settings.database_url,
            statement_timeout_ms=settings.statement_timeout_ms,
            **options,
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def unit_of_work(self) -> Iterator[Session]:
        """
        Yield a session whose writes commit together or not at all.

        Commits when the block exits normally, rolls back on any exception
        and re-raises it, and always closes the session.
        """
        session = self.session_factory()
        try:
            if self.dialect == "postgresql" and self.statement_timeout_ms:
                session.execute(text(f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}"))
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            callbacks = session.info.pop(AFTER_COMMIT_KEY, [])
            session.close()

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"After-commit hook {getattr(callback, '__name__', callback)} failed: {e}")

    def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        # Importing the models registers them on Base.metadata
        import tillpoint.models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def check_connection(self) -> bool:
        """Check if the database connection is working."""
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Database connection check failed: {e}")
            return False

    def dispose(self) -> None:
        self.engine.dispose()


def after_commit(session: Session, callback: Callable[[], None]) -> None:
    """
    Run ``callback`` once the unit of work owning ``session`` commits.

    Callbacks are dropped on rollback. A failing callback is logged; the
    commit it follows has already happened.
    """
    session.info.setdefault(AFTER_COMMIT_KEY, []).append(callback)


def lock_for_update(query, skip_locked: bool = False):
    """
    Apply row-level locking to a query.

    SQLite ignores SELECT ... FOR UPDATE; callers pair this with a guarded
    UPDATE so correctness holds either way.
    """
    return query.with_for_update(skip_locked=skip_locked)
