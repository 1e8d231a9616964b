"""
Database Manager for the Presence Backend
=========================================
Handles database connection, initialization, and session management.

Features:
- SQLite by default, any SQLAlchemy URL via DATABASE_URL
- Automatic table creation
- Default configuration seeding
- Offset pagination helper for list endpoints
"""

import math
import logging
from datetime import datetime, date, time
from typing import Optional, Generator, Tuple, List
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, Session, Query
from sqlalchemy.pool import StaticPool

from .models import Base, SystemConfig, Person, Classroom, AttendanceRecord, DEFAULT_CONFIG
from .. import config

# Configure logging
logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Manages database connections and provides session context.

    Usage:
        db = DatabaseManager("sqlite:///presence.db")
        with db.get_session() as session:
            person = session.query(Person).filter_by(email="a@school.id").first()
    """

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        """
        Initialize database manager.

        Args:
            database_url: SQLAlchemy URL. Defaults to config.DATABASE_URL
            echo: If True, log all SQL statements (useful for debugging)
        """
        self.database_url = database_url or config.DATABASE_URL
        self.echo = echo
        self.engine = None
        self.SessionLocal = None
        self._initialized = False

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        return self.database_url in ("sqlite://", "sqlite:///:memory:")

    def initialize(self) -> bool:
        """
        Initialize database connection and create tables.

        Returns:
            True if initialization successful, False otherwise
        """
        if self._initialized:
            return True

        try:
            engine_kwargs = {"echo": self.echo}
            if self.is_sqlite:
                # check_same_thread=False needed for FastAPI's threadpool
                engine_kwargs["connect_args"] = {"check_same_thread": False}
                if self.is_memory:
                    # One shared connection, otherwise every session sees an empty db
                    engine_kwargs["poolclass"] = StaticPool
            else:
                engine_kwargs["pool_pre_ping"] = True

            self.engine = create_engine(self.database_url, **engine_kwargs)

            if self.is_sqlite:
                # Enable foreign key support (SQLite has it disabled by default)
                @event.listens_for(self.engine, "connect")
                def set_sqlite_pragma(dbapi_connection, connection_record):
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA foreign_keys=ON")
                    if not self.is_memory:
                        cursor.execute("PRAGMA journal_mode=WAL")  # Better concurrent access
                    cursor.close()

            # expire_on_commit=False so returned rows stay readable after the session closes
            self.SessionLocal = sessionmaker(
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
                bind=self.engine
            )

            # Create all tables
            Base.metadata.create_all(bind=self.engine)
            logger.info(f"Database initialized at: {self.engine.url.render_as_string(hide_password=True)}")

            self._initialized = True

            # Seed default configuration
            self._seed_default_config()
            return True

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            self._initialized = False
            return False

    def _seed_default_config(self):
        """Insert default configuration values if not present."""
        with self.get_session() as session:
            for key, (value, description) in DEFAULT_CONFIG.items():
                existing = session.query(SystemConfig).filter_by(key=key).first()
                if not existing:
                    session.add(SystemConfig(key=key, value=value, description=description))
                    logger.debug(f"Added default config: {key}={value}")
            session.commit()
            logger.info("Default configuration seeded")

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """
        Get a database session with automatic cleanup.

        Usage:
            with db.get_session() as session:
                # do database operations
                session.commit()

        Yields:
            SQLAlchemy Session object
        """
        if not self._initialized and not self.initialize():
            raise RuntimeError(f"Database unavailable: {self.database_url}")

        session = self.SessionLocal()
        try:
            yield session
        except Exception as e:
            session.rollback()
            logger.debug(f"Database session rolled back: {e}")
            raise
        finally:
            session.close()

    def get_config(self, key: str, default: str = None) -> Optional[str]:
        """
        Get a configuration value by key.

        Args:
            key: Configuration key name
            default: Default value if key not found

        Returns:
            Configuration value as string
        """
        with self.get_session() as session:
            entry = session.query(SystemConfig).filter_by(key=key).first()
            return entry.value if entry else default

    def get_config_int(self, key: str, default: int = 0) -> int:
        """Get config value as integer."""
        value = self.get_config(key)
        try:
            return int(value) if value else default
        except ValueError:
            return default

    def get_config_time(self, key: str, default: time) -> time:
        """Get config value as a time of day (HH:MM or HH:MM:SS)."""
        value = self.get_config(key)
        try:
            return time.fromisoformat(value) if value else default
        except ValueError:
            logger.warning(f"Invalid time for config {key}: {value!r}, using {default}")
            return default

    def set_config(self, key: str, value: str, description: str = None):
        """
        Set a configuration value.

        Args:
            key: Configuration key name
            value: Configuration value
            description: Optional description
        """
        with self.get_session() as session:
            entry = session.query(SystemConfig).filter_by(key=key).first()
            if entry:
                entry.value = value
                entry.updated_at = datetime.now()
                if description:
                    entry.description = description
            else:
                session.add(SystemConfig(key=key, value=value, description=description))
            session.commit()
            logger.info(f"Config updated: {key}={value}")

    def get_stats(self) -> dict:
        """
        Get database statistics.

        Returns:
            Dictionary with counts and status info
        """
        with self.get_session() as session:
            return {
                "database_url": self.engine.url.render_as_string(hide_password=True),
                "total_persons": session.query(Person).count(),
                "total_classes": session.query(Classroom).count(),
                "records_today": session.query(AttendanceRecord).filter_by(
                    attendance_date=date.today()
                ).count(),
                "initialized": self._initialized
            }

    def close(self):
        """Close database connection."""
        if self.engine:
            self.engine.dispose()
            logger.info("Database connection closed")


def paginate(query: Query, page: int, limit: int) -> Tuple[List, int]:
    """
    Apply offset pagination to a query.

    Returns:
        (items, last_page)
    """
    page = max(page, 1)
    limit = max(limit, 1)
    total = query.order_by(None).count()
    items = query.limit(limit).offset((page - 1) * limit).all()
    return items, math.ceil(total / limit)


# Global singleton instance
_db_manager: Optional[DatabaseManager] = None


def get_db_manager() -> DatabaseManager:
    """
    Get the global database manager instance.
    Creates and initializes if not already done.

    Returns:
        DatabaseManager singleton instance
    """
    global _db_manager

    if _db_manager is None:
        _db_manager = DatabaseManager()
        _db_manager.initialize()

    return _db_manager
