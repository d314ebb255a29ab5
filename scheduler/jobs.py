"""
Background solve jobs.

Each submitted problem runs on a worker thread with its own time budget and
cancellation event. Callers poll the job by id for its status and current
best score, cancel it, and collect the result once it is terminal.
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, wait as wait_futures
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from .constraints import ConstraintEngine, HardSoftScore
from .errors import JobNotFoundError, ResultNotReadyError
from .problem_builder import TimetableProblem
from .search import LocalSearchSolver, SolveStats, TerminationReason, TimetableSolution

logger = logging.getLogger(__name__)


# =============================================================================
# Job State
# =============================================================================

class JobStatus(str, Enum):
    """Lifecycle of a solve job."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.CANCELLED, JobStatus.FAILED)


@dataclass
class JobInfo:
    """Point-in-time view of a job."""
    job_id: str
    timetable_id: str
    status: JobStatus
    best_score: Optional[HardSoftScore]
    submitted_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobId": self.job_id,
            "timetableId": self.timetable_id,
            "status": self.status.value,
            "bestScore": str(self.best_score) if self.best_score is not None else None,
            "submittedAt": self.submitted_at.isoformat(),
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "error": self.error,
        }


@dataclass
class JobResult:
    """Outcome of a finished job."""
    job_id: str
    status: JobStatus
    solution: TimetableSolution
    finalized: Any = None  # Whatever the finalize hook returned


@dataclass
class SolveJob:
    job_id: str
    problem: TimetableProblem
    time_budget: Optional[float]
    finalize: Optional[Callable[[TimetableSolution], Any]] = None
    status: JobStatus = JobStatus.PENDING
    best_score: Optional[HardSoftScore] = None
    solution: Optional[TimetableSolution] = None
    finalized: Any = None
    error: Optional[BaseException] = None
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    cancel_event: threading.Event = field(default_factory=threading.Event)
    lock: threading.Lock = field(default_factory=threading.Lock)
    future: Optional[Future] = None

    def record_best(self, score: HardSoftScore) -> None:
        with self.lock:
            self.best_score = score

    def info(self) -> JobInfo:
        with self.lock:
            return JobInfo(
                job_id=self.job_id,
                timetable_id=self.problem.timetable_id,
                status=self.status,
                best_score=self.best_score,
                submitted_at=self.submitted_at,
                started_at=self.started_at,
                finished_at=self.finished_at,
                error=str(self.error) if self.error is not None else None,
            )


# =============================================================================
# Manager
# =============================================================================

class SolverManager:
    """
    Runs solves in the background and tracks them by job id.

    ``finalize`` is called with the solution of a job that ran to completion
    (not cancelled); if it raises, the job is marked FAILED and ``result``
    re-raises the error.

    Example:
        >>> manager = SolverManager()
        >>> job_id = manager.submit(problem, time_budget=10)
        >>> manager.status(job_id).status
        <JobStatus.RUNNING: 'running'>
        >>> manager.result(job_id, wait=15).solution.score
        HardSoftScore(hard=0, soft=12)
    """

    def __init__(self, solver: Optional[LocalSearchSolver] = None, max_workers: int = 2):
        self.solver = solver or LocalSearchSolver()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="solve")
        self._jobs: dict[str, SolveJob] = {}
        self._lock = threading.Lock()

    def submit(
        self,
        problem: TimetableProblem,
        time_budget: Optional[float] = None,
        finalize: Optional[Callable[[TimetableSolution], Any]] = None,
        solver: Optional[LocalSearchSolver] = None,
    ) -> str:
        """
        Queue a problem for solving.

        Args:
            problem: Problem built for this job alone
            time_budget: Seconds to search; defaults to the solver's budget
            finalize: Hook run on the completed solution (e.g. materialization)
            solver: Solver to use instead of the manager's default

        Returns:
            The new job id
        """
        job = SolveJob(
            job_id=str(uuid.uuid4()),
            problem=problem,
            time_budget=time_budget,
            finalize=finalize,
        )
        with self._lock:
            self._jobs[job.job_id] = job
        job.future = self._executor.submit(self._run, job, solver or self.solver)
        logger.info("Submitted solve job %s for timetable %s", job.job_id, problem.timetable_id)
        return job.job_id

    def status(self, job_id: str) -> JobInfo:
        return self._get(job_id).info()

    def cancel(self, job_id: str) -> JobInfo:
        """
        Ask a job to stop. A running job finishes with its best solution so
        far; cancelling a finished job changes nothing.
        """
        job = self._get(job_id)
        job.cancel_event.set()
        logger.info("Cancellation requested for job %s", job_id)
        return job.info()

    def wait(self, job_id: str, timeout: Optional[float] = None) -> JobInfo:
        """Block until the job is terminal or the timeout passes."""
        job = self._get(job_id)
        if job.future is not None:
            wait_futures([job.future], timeout=timeout)
        return job.info()

    def result(self, job_id: str, wait: Optional[float] = None) -> JobResult:
        """
        Get the outcome of a finished job.

        Args:
            job_id: Job to look up
            wait: Seconds to wait for the job to finish first

        Raises:
            JobNotFoundError: Unknown job id
            ResultNotReadyError: Job still pending or running
            Exception: Whatever made the job fail
        """
        job = self._get(job_id)
        if wait is not None and job.future is not None:
            wait_futures([job.future], timeout=wait)

        with job.lock:
            status = job.status
            if not status.is_terminal:
                raise ResultNotReadyError(job_id, status.value)
            if status == JobStatus.FAILED:
                raise job.error
            return JobResult(
                job_id=job_id,
                status=status,
                solution=job.solution,
                finalized=job.finalized,
            )

    def jobs(self) -> list[JobInfo]:
        with self._lock:
            jobs = list(self._jobs.values())
        return [job.info() for job in jobs]

    def shutdown(self, wait: bool = True) -> None:
        """Cancel every job and stop the worker threads."""
        with self._lock:
            jobs = list(self._jobs.values())
        for job in jobs:
            job.cancel_event.set()
        self._executor.shutdown(wait=wait)

    def _get(self, job_id: str) -> SolveJob:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    # -------------------------------------------------------------------------
    # Worker
    # -------------------------------------------------------------------------

    def _run(self, job: SolveJob, solver: LocalSearchSolver) -> None:
        with job.lock:
            job.status = JobStatus.RUNNING
            job.started_at = datetime.now(timezone.utc)

        try:
            if job.cancel_event.is_set():
                solution = _unsolved(job.problem, solver)
            else:
                solution = solver.solve(
                    job.problem,
                    time_budget=job.time_budget,
                    cancel_event=job.cancel_event,
                    on_best=job.record_best,
                )
            status = JobStatus.CANCELLED if job.cancel_event.is_set() else JobStatus.COMPLETED

            finalized = None
            if status == JobStatus.COMPLETED and job.finalize is not None:
                finalized = job.finalize(solution)

            with job.lock:
                job.solution = solution
                job.finalized = finalized
                job.best_score = solution.score
                job.status = status
        except Exception as exc:
            logger.exception("Solve job %s failed", job.job_id)
            with job.lock:
                job.error = exc
                job.status = JobStatus.FAILED
        finally:
            with job.lock:
                job.finished_at = datetime.now(timezone.utc)

        logger.info("Solve job %s finished with status %s", job.job_id, job.status.value)


def _unsolved(problem: TimetableProblem, solver: LocalSearchSolver) -> TimetableSolution:
    """Solution for a job cancelled before it started: the problem as given."""
    engine = ConstraintEngine(problem, solver.weights, solver.limits)
    return TimetableSolution(
        problem=problem,
        score=engine.score,
        breakdown=engine.breakdown(),
        stats=SolveStats(termination=TerminationReason.CANCELLED),
    )
