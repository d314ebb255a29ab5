"""
Slot materialization: write a solution as the timetable's slot set.

The old slots are deleted and the new ones inserted in one transaction, so
readers see either the complete old set or the complete new set.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from scheduler.constraints import CONFLICT_RULES
from scheduler.errors import MaterializationConflictError
from scheduler.persistence.database import ScheduleSlotRecord, TimetableRecord

from .schema import MaterializationResult, UnassignedLesson

if TYPE_CHECKING:
    from scheduler.problem_builder import TimetableProblem
    from scheduler.search import TimetableSolution

logger = logging.getLogger(__name__)


class SlotMaterializer:
    """
    Persists solutions through a SQLAlchemy session factory.

    Example:
        >>> materializer = SlotMaterializer(session_factory)
        >>> result = materializer.materialize(solution)
        >>> result.slots_written
        27
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def materialize(self, solution: TimetableSolution, allow_conflicts: bool = False) -> MaterializationResult:
        """
        Replace the timetable's slots with the solution's assigned lessons.

        Unassigned lessons are not written; they come back in
        ``unscheduled``. A solution that still has teacher, room, class or
        capacity conflicts is not written unless ``allow_conflicts`` is set.

        Raises:
            MaterializationConflictError: The timetable was deleted,
                re-created or changed since the problem was built
        """
        problem = solution.problem
        unscheduled = [UnassignedLesson.from_lesson(l) for l in solution.unassigned_lessons]

        conflicts = {name: solution.breakdown[name] for name in CONFLICT_RULES if solution.breakdown.get(name)}
        if conflicts and not allow_conflicts:
            reason = "hard conflicts remain: " + ", ".join(f"{k}={v}" for k, v in conflicts.items())
            logger.warning("Not materializing %s: %s", problem.timetable_id, reason)
            return MaterializationResult(
                timetableId=problem.timetable_id,
                persisted=False,
                unscheduled=unscheduled,
                reason=reason,
            )

        with self.session_factory() as session:
            try:
                record = self._lock_timetable(session, problem)
                session.execute(
                    delete(ScheduleSlotRecord).where(ScheduleSlotRecord.timetable_id == problem.timetable_id)
                )
                rows = self._build_rows(problem)
                session.add_all(rows)
                record.revision += 1
                revision = record.revision
                session.commit()
            except Exception:
                session.rollback()
                raise

        logger.info(
            "Materialized %d slots for %s (revision %d, %d unscheduled)",
            len(rows), problem.timetable_id, revision, len(unscheduled),
        )
        return MaterializationResult(
            timetableId=problem.timetable_id,
            persisted=True,
            slotsWritten=len(rows),
            revision=revision,
            unscheduled=unscheduled,
        )

    def _lock_timetable(self, session: Session, problem: TimetableProblem) -> TimetableRecord:
        record = session.execute(
            select(TimetableRecord).where(TimetableRecord.id == problem.timetable_id).with_for_update()
        ).scalar_one_or_none()

        if record is None:
            raise MaterializationConflictError(problem.timetable_id, "timetable no longer exists")
        if problem.timetable_uid is not None and record.uid != problem.timetable_uid:
            raise MaterializationConflictError(problem.timetable_id, "timetable was re-created")
        if problem.revision is not None and record.revision != problem.revision:
            raise MaterializationConflictError(
                problem.timetable_id,
                f"timetable changed (revision {problem.revision} -> {record.revision})",
            )
        return record

    def _build_rows(self, problem: TimetableProblem) -> list[ScheduleSlotRecord]:
        return [
            ScheduleSlotRecord(
                timetable_id=problem.timetable_id,
                lesson_id=lesson.id,
                day=lesson.day,
                period=lesson.period,
                room_id=lesson.room_id,
                teacher_id=lesson.teacher_id,
                class_id=lesson.class_id,
                course_id=lesson.course_id,
            )
            for lesson in problem.assigned_lessons
        ]
