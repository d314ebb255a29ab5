"""
Service facade used by the administration backend.

Ties storage, problem building, background solving, materialization and
the read-side analyses together behind the operations the backend calls:

- start_solve / get_solve_status / cancel_solve / get_result
- detect_conflicts
- analyze_workload
- validate_schedule_change / apply_schedule_change
"""

from __future__ import annotations

import logging
from functools import partial
from typing import Optional, Union

from sqlalchemy.orm import sessionmaker

from .constraints import ConstraintLimits, ConstraintWeights
from .data.catalog import ResourceCatalog
from .data.models import ScheduleInput
from .errors import ScheduleChangeConflictError, ScheduleChangeError, TimetableNotFoundError
from .jobs import JobInfo, SolverManager
from .output.conflicts import ChangeValidation, ConflictDetector, ConflictReport
from .output.materializer import SlotMaterializer
from .output.schema import ScheduleSlot, SolveResult
from .output.workload import WorkloadAnalysis, WorkloadAnalyzer
from .persistence.database import TimetableRecord, create_db_engine, create_session_factory
from .persistence.repository import TimetableRepository
from .problem_builder import ProblemBuilder, TimetableProblem
from .search import LocalSearchSolver, SolverConfig

logger = logging.getLogger(__name__)


class TimetableService:
    """
    Scheduling operations over stored timetables.

    Example:
        >>> service = TimetableService("sqlite:///timetables.db")
        >>> service.register_timetable("T1", schedule_input)
        >>> job_id = service.start_solve("T1", time_budget=20)
        >>> service.get_result(job_id, wait=30).final_score
        '0hard/14soft'
    """

    def __init__(
        self,
        database_url: str = "sqlite://",
        max_workers: int = 2,
        session_factory: Optional[sessionmaker] = None,
    ):
        if session_factory is None:
            session_factory = create_session_factory(create_db_engine(database_url))
        self.session_factory = session_factory
        self.repository = TimetableRepository(session_factory)
        self.materializer = SlotMaterializer(session_factory)
        self.manager = SolverManager(max_workers=max_workers)

    def __enter__(self) -> "TimetableService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def shutdown(self) -> None:
        self.manager.shutdown(wait=True)

    # -------------------------------------------------------------------------
    # Timetables
    # -------------------------------------------------------------------------

    def register_timetable(
        self,
        timetable_id: str,
        schedule_input: ScheduleInput,
        name: Optional[str] = None,
    ) -> TimetableRecord:
        """Store (or replace) the inputs of a timetable."""
        return self.repository.save(timetable_id, schedule_input, name)

    def delete_timetable(self, timetable_id: str) -> bool:
        return self.repository.delete(timetable_id)

    def list_slots(self, timetable_id: str) -> list[ScheduleSlot]:
        self._record(timetable_id)
        return self.repository.list_slots(timetable_id)

    def build_problem(self, timetable_id: str) -> TimetableProblem:
        """
        Build a fresh problem from the stored inputs.

        Raises:
            TimetableNotFoundError: Unknown timetable
            InvalidProblemError: Inputs cannot form a problem
        """
        record = self._record(timetable_id)
        schedule_input = self.repository.load_input(record)
        return ProblemBuilder(schedule_input).build(timetable_id, record.uid, record.revision)

    # -------------------------------------------------------------------------
    # Solving
    # -------------------------------------------------------------------------

    def start_solve(
        self,
        timetable_id: str,
        time_budget: Optional[float] = None,
        allow_conflicts: bool = False,
        from_current: bool = False,
    ) -> str:
        """
        Start a background solve; the completed result is materialized.

        Args:
            timetable_id: Stored timetable to solve
            time_budget: Seconds to search; defaults to the configured budget
            allow_conflicts: Persist even if hard conflicts remain
            from_current: Start the search from the stored slots instead of
                constructing a schedule from scratch; lessons without a usable
                stored slot are still constructed

        Returns:
            Job id for status, cancel and result calls

        Raises:
            TimetableNotFoundError: Unknown timetable
            InvalidProblemError: Inputs cannot form a problem
        """
        problem = self.build_problem(timetable_id)
        if from_current:
            seeded = problem.assign_from(self.repository.list_slots(timetable_id))
            logger.info(
                "Warm start for %s: %d of %d lessons from stored slots",
                timetable_id, seeded, len(problem.lessons),
            )
        config = problem.catalog.config
        solver = LocalSearchSolver(
            SolverConfig.from_settings(config.solver),
            ConstraintWeights.from_settings(config.weights),
            ConstraintLimits.from_settings(config.limits),
        )
        finalize = partial(self.materializer.materialize, allow_conflicts=allow_conflicts)
        return self.manager.submit(problem, time_budget, finalize=finalize, solver=solver)

    def get_solve_status(self, job_id: str) -> JobInfo:
        return self.manager.status(job_id)

    def cancel_solve(self, job_id: str) -> JobInfo:
        return self.manager.cancel(job_id)

    def get_result(self, job_id: str, wait: Optional[float] = None) -> SolveResult:
        """
        Result of a finished solve.

        Raises:
            JobNotFoundError: Unknown job
            ResultNotReadyError: Job still running
            MaterializationConflictError: The timetable changed during the solve
        """
        outcome = self.manager.result(job_id, wait=wait)
        return SolveResult.from_solution(
            outcome.solution,
            job_id=job_id,
            status=outcome.status.value,
            materialization=outcome.finalized,
        )

    # -------------------------------------------------------------------------
    # Analyses
    # -------------------------------------------------------------------------

    def detect_conflicts(self, timetable_id: str) -> ConflictReport:
        catalog = self._catalog(timetable_id)
        slots = self.repository.list_slots(timetable_id)
        return ConflictDetector(catalog).detect(slots, timetable_id)

    def analyze_workload(
        self,
        timetable_id: str,
        teacher_id: Optional[str] = None,
    ) -> Union[WorkloadAnalysis, list[WorkloadAnalysis]]:
        """
        Workload of one teacher, or of every teacher when ``teacher_id`` is None.

        Raises:
            TimetableNotFoundError: Unknown timetable
            TeacherNotFoundError: Unknown teacher
        """
        catalog = self._catalog(timetable_id)
        slots = self.repository.list_slots(timetable_id)
        analyzer = WorkloadAnalyzer(catalog)
        if teacher_id is None:
            return analyzer.analyze_all(slots, timetable_id)
        return analyzer.analyze(slots, teacher_id, timetable_id)

    # -------------------------------------------------------------------------
    # Manual Changes
    # -------------------------------------------------------------------------

    def validate_schedule_change(
        self,
        timetable_id: str,
        lesson_id: str,
        room_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
        day: Optional[int] = None,
        period: Optional[int] = None,
    ) -> ChangeValidation:
        """
        Check whether moving one stored lesson would create conflicts.

        Arguments left as None keep the lesson's current value. Nothing is
        written.

        Args:
            timetable_id: Stored timetable holding the lesson
            lesson_id: Lesson to move
            room_id: New room
            teacher_id: New teacher
            day: New day (0 = Monday)
            period: New period index

        Returns:
            Findings the change would add and remove; ``valid`` is False when
            it adds a double booking or a capacity finding

        Raises:
            TimetableNotFoundError: Unknown timetable
            ScheduleChangeError: Unknown lesson, room, teacher, day or period
        """
        catalog = self._catalog(timetable_id)
        slots = self.repository.list_slots(timetable_id)
        proposed = self._proposed_slot(catalog, slots, timetable_id, lesson_id, room_id, teacher_id, day, period)
        return ConflictDetector(catalog).check_change(slots, proposed, timetable_id)

    def apply_schedule_change(
        self,
        timetable_id: str,
        lesson_id: str,
        room_id: Optional[str] = None,
        teacher_id: Optional[str] = None,
        day: Optional[int] = None,
        period: Optional[int] = None,
    ) -> ChangeValidation:
        """
        Validate a change to one stored lesson and write it if it is valid.

        The write bumps the timetable revision, so solves started before the
        change are not materialized over it.

        Raises:
            TimetableNotFoundError: Unknown timetable
            ScheduleChangeError: Unknown lesson, room, teacher, day or period,
                or the timetable changed while the change was being checked
            ScheduleChangeConflictError: The change would create conflicts
        """
        record = self._record(timetable_id)
        catalog = ResourceCatalog.from_input(self.repository.load_input(record))
        slots = self.repository.list_slots(timetable_id)
        proposed = self._proposed_slot(catalog, slots, timetable_id, lesson_id, room_id, teacher_id, day, period)

        validation = ConflictDetector(catalog).check_change(slots, proposed, timetable_id)
        if not validation.valid:
            raise ScheduleChangeConflictError(timetable_id, lesson_id, validation)

        revision = self.repository.update_slot(timetable_id, proposed, expected_revision=record.revision)
        return validation.model_copy(update={"applied": True, "revision": revision})

    def _proposed_slot(
        self,
        catalog: ResourceCatalog,
        slots: list[ScheduleSlot],
        timetable_id: str,
        lesson_id: str,
        room_id: Optional[str],
        teacher_id: Optional[str],
        day: Optional[int],
        period: Optional[int],
    ) -> ScheduleSlot:
        current = next((s for s in slots if s.lesson_id == lesson_id), None)
        if current is None:
            raise ScheduleChangeError(timetable_id, lesson_id, "lesson is not scheduled")
        if room_id is not None and catalog.room(room_id) is None:
            raise ScheduleChangeError(timetable_id, lesson_id, f"unknown room '{room_id}'")
        if teacher_id is not None and catalog.teacher(teacher_id) is None:
            raise ScheduleChangeError(timetable_id, lesson_id, f"unknown teacher '{teacher_id}'")
        if day is not None and not 0 <= day < catalog.num_days:
            raise ScheduleChangeError(timetable_id, lesson_id, f"day {day} is not a school day")
        if period is not None and catalog.period(period) is None:
            raise ScheduleChangeError(timetable_id, lesson_id, f"unknown period {period}")

        return current.model_copy(update={
            "room_id": current.room_id if room_id is None else room_id,
            "teacher_id": current.teacher_id if teacher_id is None else teacher_id,
            "day": current.day if day is None else day,
            "period": current.period if period is None else period,
        })

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _record(self, timetable_id: str) -> TimetableRecord:
        record = self.repository.get(timetable_id)
        if record is None:
            raise TimetableNotFoundError(timetable_id)
        return record

    def _catalog(self, timetable_id: str) -> ResourceCatalog:
        record = self._record(timetable_id)
        return ResourceCatalog.from_input(self.repository.load_input(record))
