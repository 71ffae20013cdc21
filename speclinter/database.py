"""SQLAlchemy models and session management for the SpecLinter store."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Float,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .errors import NotInitializedError, PersistenceError

logger = logging.getLogger("speclinter.database")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class FeatureRecord(Base):
    """A stored feature specification."""

    __tablename__ = "features"

    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    spec: Mapped[str] = mapped_column(Text, nullable=False)
    grade: Mapped[str] = mapped_column(String(2), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class TaskRecord(Base):
    """A stored task; ``id`` is unique within its feature only."""

    __tablename__ = "tasks"
    __table_args__ = (UniqueConstraint("feature_name", "sequence"),)

    feature_name: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("features.name", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    )
    id: Mapped[str] = mapped_column(String(40), primary_key=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    summary: Mapped[str] = mapped_column(Text, nullable=False)
    implementation: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    acceptance_criteria: Mapped[list] = mapped_column(JSON, nullable=False)
    test_file: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    coverage_target: Mapped[str] = mapped_column(String(20), nullable=False, default="")
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    gherkin: Mapped[str] = mapped_column(Text, nullable=False, default="")
    dependencies: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    blocks: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    relevant_patterns: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class GherkinRunRecord(Base):
    """Results of one Gherkin test run for a feature or a single task."""

    __tablename__ = "test_results"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    feature_name: Mapped[str] = mapped_column(
        String(255),
        ForeignKey("features.name", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    task_id: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
    passed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    coverage: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    details: Mapped[Optional[list]] = mapped_column(JSON, default=list)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _set_sqlite_pragmas(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


class Database:
    """Owns the SQLite engine and hands out transactional sessions."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker[Session]] = None

    @property
    def is_initialized(self) -> bool:
        return self._session_factory is not None

    def initialize(self) -> None:
        """Open the database file and create missing tables."""
        if self.is_initialized:
            return
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(
                f"sqlite:///{self.db_path}",
                connect_args={"check_same_thread": False},
            )
            event.listen(engine, "connect", _set_sqlite_pragmas)
            Base.metadata.create_all(engine)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceError(f"Could not open database at {self.db_path}: {e}") from e

        self._engine = engine
        self._session_factory = sessionmaker(engine, expire_on_commit=False)
        logger.info(f"Database ready at {self.db_path}")

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Provide a transactional session scope.

        Usage:
            with database.session() as session:
                session.add(...)

        The session commits on exit; any error rolls the whole scope back.
        """
        if self._session_factory is None:
            raise NotInitializedError("Storage not initialized.")

        session = self._session_factory()
        try:
            yield session
            session.commit()
        except (SQLAlchemyError, OSError) as e:
            session.rollback()
            raise PersistenceError(f"Storage operation failed: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        """Dispose of the engine and release all connections."""
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None
