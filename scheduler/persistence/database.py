"""SQLAlchemy models and engine setup for stored timetables and their slots."""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uid() -> str:
    return str(uuid.uuid4())


class TimetableRecord(Base):
    """A timetable owned by the administration backend, with its inputs."""
    __tablename__ = "timetables"

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    # Regenerated when the timetable is re-created under the same id
    uid = Column(String(36), nullable=False, default=_new_uid)
    # Bumped on every input change, materialization and manual slot change
    revision = Column(Integer, nullable=False, default=0)
    input_json = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    slots = relationship(
        "ScheduleSlotRecord",
        back_populates="timetable",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ScheduleSlotRecord(Base):
    """One assigned lesson: (day, period, room, teacher, class, course)."""
    __tablename__ = "schedule_slots"
    __table_args__ = (
        UniqueConstraint("timetable_id", "lesson_id", name="uq_slot_lesson"),
        Index("ix_slot_day_period", "timetable_id", "day", "period"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    timetable_id = Column(String(64), ForeignKey("timetables.id", ondelete="CASCADE"), nullable=False, index=True)
    lesson_id = Column(String(200), nullable=False)
    day = Column(Integer, nullable=False)  # 0 = Monday ... 6 = Sunday
    period = Column(Integer, nullable=False)  # period index within the day
    room_id = Column(String(64), nullable=False)
    teacher_id = Column(String(64), nullable=False, index=True)
    class_id = Column(String(64), nullable=False)
    course_id = Column(String(64), nullable=False)

    timetable = relationship("TimetableRecord", back_populates="slots")


# =============================================================================
# Engine Setup
# =============================================================================

def create_db_engine(url: str = "sqlite://", echo: bool = False) -> Engine:
    """
    Create an engine and make sure the tables exist.

    SQLite connections are shared across the solve worker threads; an
    in-memory database uses a single static connection so every session
    sees the same data.
    """
    kwargs: dict = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool

    engine = create_engine(url, **kwargs)
    if url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)

    Base.metadata.create_all(engine)
    return engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SerializedSession(Session):
    """
    Session that holds a shared lock from creation until close.

    With a ``StaticPool`` every session runs on the same DBAPI connection,
    so one session closing (and rolling back) in the middle of another
    session's transaction would undo that transaction's writes. Holding the
    lock for the session's lifetime makes units of work run one at a time.
    """

    def __init__(self, *args, unit_lock: threading.RLock, **kwargs):
        self._unit_lock = unit_lock
        self._unit_lock.acquire()
        self._holds_unit_lock = True
        try:
            super().__init__(*args, **kwargs)
        except Exception:
            self._release_unit_lock()
            raise

    def close(self) -> None:
        try:
            super().close()
        finally:
            self._release_unit_lock()

    def _release_unit_lock(self) -> None:
        if self._holds_unit_lock:
            self._holds_unit_lock = False
            self._unit_lock.release()


def create_session_factory(engine: Engine) -> sessionmaker:
    """
    Session factory for the engine.

    Engines on a single shared connection get ``SerializedSession``s so
    concurrent solve jobs and readers cannot interleave transactions.
    """
    if isinstance(engine.pool, StaticPool):
        return sessionmaker(
            bind=engine,
            class_=SerializedSession,
            expire_on_commit=False,
            unit_lock=threading.RLock(),
        )
    return sessionmaker(bind=engine, expire_on_commit=False)
