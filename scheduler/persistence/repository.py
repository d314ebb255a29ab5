"""Timetable and slot storage access."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from scheduler.data.models import ScheduleInput
from scheduler.errors import ScheduleChangeError
from scheduler.output.schema import ScheduleSlot

from .database import ScheduleSlotRecord, TimetableRecord

logger = logging.getLogger(__name__)


class TimetableRepository:
    """Stores timetables with their inputs and reads back their slots."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def save(self, timetable_id: str, schedule_input: ScheduleInput, name: Optional[str] = None) -> TimetableRecord:
        """
        Create a timetable, or replace the inputs of an existing one.

        Replacing inputs bumps the revision, so solves started on the old
        inputs can no longer be materialized.
        """
        input_json = schedule_input.model_dump_json()
        with self.session_factory() as session:
            record = session.get(TimetableRecord, timetable_id)
            if record is None:
                record = TimetableRecord(
                    id=timetable_id,
                    name=name or schedule_input.config.school_name or timetable_id,
                    input_json=input_json,
                    revision=0,
                )
                session.add(record)
                logger.info("Registered timetable %s", timetable_id)
            else:
                record.input_json = input_json
                record.revision += 1
                if name:
                    record.name = name
                logger.info("Updated inputs of timetable %s (revision %d)", timetable_id, record.revision)
            session.commit()
            return record

    def get(self, timetable_id: str) -> Optional[TimetableRecord]:
        with self.session_factory() as session:
            return session.get(TimetableRecord, timetable_id)

    def delete(self, timetable_id: str) -> bool:
        """Delete a timetable and, by cascade, its slots."""
        with self.session_factory() as session:
            record = session.get(TimetableRecord, timetable_id)
            if record is None:
                return False
            session.delete(record)
            session.commit()
        logger.info("Deleted timetable %s", timetable_id)
        return True

    def list_slots(self, timetable_id: str) -> list[ScheduleSlot]:
        """Stored slots ordered by day, period, room and lesson."""
        with self.session_factory() as session:
            records = session.execute(
                select(ScheduleSlotRecord)
                .where(ScheduleSlotRecord.timetable_id == timetable_id)
                .order_by(
                    ScheduleSlotRecord.day,
                    ScheduleSlotRecord.period,
                    ScheduleSlotRecord.room_id,
                    ScheduleSlotRecord.lesson_id,
                )
            ).scalars().all()
            return [ScheduleSlot.from_record(r) for r in records]

    def update_slot(self, timetable_id: str, slot: ScheduleSlot, expected_revision: int) -> int:
        """
        Overwrite one stored slot and bump the timetable revision.

        Returns:
            The new revision

        Raises:
            ScheduleChangeError: The timetable changed since ``expected_revision``
                or the lesson has no stored slot
        """
        with self.session_factory() as session:
            try:
                record = session.execute(
                    select(TimetableRecord).where(TimetableRecord.id == timetable_id).with_for_update()
                ).scalar_one_or_none()
                if record is None or record.revision != expected_revision:
                    raise ScheduleChangeError(timetable_id, slot.lesson_id, "timetable changed since validation")

                row = session.execute(
                    select(ScheduleSlotRecord).where(
                        ScheduleSlotRecord.timetable_id == timetable_id,
                        ScheduleSlotRecord.lesson_id == slot.lesson_id,
                    )
                ).scalar_one_or_none()
                if row is None:
                    raise ScheduleChangeError(timetable_id, slot.lesson_id, "lesson is not scheduled")

                row.day = slot.day
                row.period = slot.period
                row.room_id = slot.room_id
                row.teacher_id = slot.teacher_id
                record.revision += 1
                revision = record.revision
                session.commit()
            except Exception:
                session.rollback()
                raise

        logger.info("Changed slot of %s in %s (revision %d)", slot.lesson_id, timetable_id, revision)
        return revision

    @staticmethod
    def load_input(record: TimetableRecord) -> ScheduleInput:
        return ScheduleInput.model_validate_json(record.input_json)
