"""Exceptions raised by the scheduling engine."""

from __future__ import annotations

from typing import Optional


class SchedulerError(Exception):
    """Base class for all scheduler errors."""
    pass


class InvalidProblemError(SchedulerError):
    """
    Raised when the scheduling inputs cannot form a problem.

    All detected issues are collected before raising so the caller can fix
    them in one pass.
    """

    def __init__(self, issues: list[str]):
        self.issues = list(issues)
        message = "Invalid scheduling problem:\n" + "\n".join(f"  - {i}" for i in self.issues)
        super().__init__(message)


class JobNotFoundError(SchedulerError):
    """Raised when a solve job id is unknown."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Solve job '{job_id}' not found")


class ResultNotReadyError(SchedulerError):
    """Raised when a result is requested before the job has finished."""

    def __init__(self, job_id: str, status: str):
        self.job_id = job_id
        self.status = status
        super().__init__(f"Solve job '{job_id}' has no result yet (status: {status})")


class TimetableNotFoundError(SchedulerError):
    """Raised when a timetable id is not registered."""

    def __init__(self, timetable_id: str):
        self.timetable_id = timetable_id
        super().__init__(f"Timetable '{timetable_id}' not found")


class MaterializationConflictError(SchedulerError):
    """
    Raised when a solution can no longer be written to its timetable.

    The timetable was deleted or re-created (different uid) or its inputs
    changed (different revision) while the solve was running.
    """

    def __init__(self, timetable_id: str, reason: Optional[str] = None):
        self.timetable_id = timetable_id
        self.reason = reason or "timetable changed during solve"
        super().__init__(f"Cannot materialize timetable '{timetable_id}': {self.reason}")


class TeacherNotFoundError(SchedulerError):
    """Raised when a workload analysis names a teacher the timetable does not have."""

    def __init__(self, teacher_id: str):
        self.teacher_id = teacher_id
        super().__init__(f"Teacher '{teacher_id}' not found")


class ScheduleChangeError(SchedulerError):
    """Raised when a manual change to a stored slot cannot be made."""

    def __init__(self, timetable_id: str, lesson_id: str, reason: str):
        self.timetable_id = timetable_id
        self.lesson_id = lesson_id
        self.reason = reason
        super().__init__(f"Cannot change lesson '{lesson_id}' in timetable '{timetable_id}': {reason}")


class ScheduleChangeConflictError(ScheduleChangeError):
    """
    Raised when applying a change would create a double booking or put a
    class in a room too small for it.

    ``validation`` holds the findings the change would introduce.
    """

    def __init__(self, timetable_id: str, lesson_id: str, validation):
        self.validation = validation
        blocking = ", ".join(f"{c.category.value} {c.type.value}" for c in validation.blocking_conflicts)
        super().__init__(timetable_id, lesson_id, f"change would create conflicts ({blocking})")
