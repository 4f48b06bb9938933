"""
Database Configuration
Supports SQLite (dev) and PostgreSQL/MySQL (production)
"""
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from soukhya.config import settings
from soukhya.database.models import Base
from soukhya.errors import PersistenceError

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Database connection manager with support for multiple backends"""

    def __init__(self):
        self.engine = None
        self.SessionLocal = None
        self._initialized = False

    def init_db(self, database_url: str = None):
        """Initialize database connection"""
        if self._initialized:
            return

        if database_url is None:
            database_url = settings.DATABASE_URL

        # Handle PostgreSQL URL format from some cloud providers
        if database_url.startswith("postgres://"):
            database_url = database_url.replace("postgres://", "postgresql://", 1)

        if database_url.startswith("sqlite"):
            engine_args = {
                "connect_args": {"check_same_thread": False},
                "echo": settings.SQL_DEBUG,
            }
            if ":memory:" in database_url or database_url == "sqlite://":
                engine_args["poolclass"] = StaticPool
            else:
                self._ensure_sqlite_dir(database_url)
            self.engine = create_engine(database_url, **engine_args)

            # Enable foreign keys for SQLite
            @event.listens_for(self.engine, "connect")
            def set_sqlite_pragma(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
        else:
            self.engine = create_engine(
                database_url,
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_pre_ping=True,
                echo=settings.SQL_DEBUG
            )

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine
        )

        Base.metadata.create_all(bind=self.engine)

        self._initialized = True
        logger.info(f"Database initialized: {database_url.split('@')[-1]}")

    @staticmethod
    def _ensure_sqlite_dir(database_url: str):
        path = database_url.split("///", 1)[-1]
        if path:
            Path(path).parent.mkdir(parents=True, exist_ok=True)

    def get_session(self) -> Session:
        """Get a new database session"""
        if not self._initialized:
            self.init_db()
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations"""
        session = self.get_session()
        try:
            with atomic(session):
                yield session
        finally:
            session.close()

    def close(self):
        """Close database connection"""
        if self.engine:
            self.engine.dispose()
        self.engine = None
        self.SessionLocal = None
        self._initialized = False


# Global database manager instance
db_manager = DatabaseManager()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency for database sessions"""
    db = db_manager.get_session()
    try:
        yield db
    finally:
        db.close()


def init_database(database_url: Optional[str] = None):
    """Initialize the database"""
    db_manager.init_db(database_url)


@contextmanager
def atomic(session: Session, operation: str = "database operation"):
    """
    Run a block as one transaction.

    Commits when the block finishes, rolls back on any exception. Driver
    errors are logged and re-raised as PersistenceError so the client only
    ever sees a generic message.
    """
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"{operation} failed, transaction rolled back: {e}")
        raise PersistenceError(f"Failed to complete {operation}") from e
    except Exception:
        session.rollback()
        raise
