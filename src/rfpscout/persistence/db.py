"""
Database connection and session management.

A ``Database`` owns one engine and session factory. Components receive the
instance they should use; nothing here is process-global, so a working store
and a durable store can be open side by side.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base, FitVerdictRow, Listing, RunRecord


# =============================================================================
# SQLite Configuration
# =============================================================================


def _configure_sqlite(engine: Engine, *, wal: bool) -> None:
    """Configure SQLite for better performance and reliability.

    Enables:
    - Foreign key enforcement
    - WAL mode for file databases
    - Synchronous mode for durability
    """
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute("PRAGMA cache_size=-64000")  # 64MB cache
        cursor.close()


def sqlite_url(path: Path | str) -> str:
    """SQLAlchemy URL for a SQLite file."""
    return f"sqlite:///{Path(path).as_posix()}"


# =============================================================================
# Database
# =============================================================================


class Database:
    """Engine plus session factory for one store."""

    def __init__(self, url: str, echo: bool = False) -> None:
        """Create the engine.

        Args:
            url: SQLAlchemy database URL
            echo: Whether to log SQL statements
        """
        self.url = url
        self.path: Path | None = None

        if url.startswith("sqlite"):
            in_memory = url in ("sqlite://", "sqlite:///:memory:")
            if in_memory:
                self.engine = create_engine(
                    "sqlite://",
                    echo=echo,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            else:
                self.path = Path(url.replace("sqlite:///", "", 1))
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.engine = create_engine(
                    url,
                    echo=echo,
                    connect_args={"check_same_thread": False},
                )
            # The store file is shipped whole by the transport; WAL would
            # leave committed pages in a side file.
            _configure_sqlite(self.engine, wal=False)
        else:
            self.engine = create_engine(
                url,
                echo=echo,
                pool_size=5,
                max_overflow=10,
                pool_pre_ping=True,
            )

        self._session_factory = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def for_path(cls, path: Path | str, echo: bool = False) -> "Database":
        """Open (and initialize) a SQLite store at ``path``."""
        db = cls(sqlite_url(path), echo=echo)
        db.create_all()
        return db

    @classmethod
    def in_memory(cls) -> "Database":
        db = cls("sqlite://")
        db.create_all()
        return db

    def create_all(self) -> None:
        """Create all tables if they don't exist."""
        Base.metadata.create_all(bind=self.engine)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Get a database session that commits on success.

        Usage:
            with db.session() as session:
                session.execute(...)

        Yields:
            SQLAlchemy Session instance
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def counts(self) -> dict[str, int]:
        """Row counts per table, used by status reporting."""
        with self.session() as session:
            return {
                "listings": session.scalar(select(func.count()).select_from(Listing)) or 0,
                "verdicts": session.scalar(select(func.count()).select_from(FitVerdictRow)) or 0,
                "runs": session.scalar(select(func.count()).select_from(RunRecord)) or 0,
            }

    def dispose(self) -> None:
        """Dispose of the engine.

        Must be called before the underlying file is copied or replaced.
        """
        self.engine.dispose()

    def __repr__(self) -> str:
        return f"<Database(url='{self.url}')>"
