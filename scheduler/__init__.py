"""Timetable Scheduler - local-search school timetabling with conflict and workload analysis."""

from .errors import (
    SchedulerError,
    InvalidProblemError,
    JobNotFoundError,
    MaterializationConflictError,
    TimetableNotFoundError,
    TeacherNotFoundError,
    ResultNotReadyError,
    ScheduleChangeError,
    ScheduleChangeConflictError,
)
from .problem_builder import ProblemBuilder, TimetableProblem, build_problem
from .search import LocalSearchSolver, SolverConfig, TimetableSolution
from .jobs import SolverManager, JobStatus, JobInfo
from .service import TimetableService

__all__ = [
    # Errors
    "SchedulerError",
    "InvalidProblemError",
    "JobNotFoundError",
    "MaterializationConflictError",
    "TimetableNotFoundError",
    "TeacherNotFoundError",
    "ResultNotReadyError",
    "ScheduleChangeError",
    "ScheduleChangeConflictError",
    # Problem
    "ProblemBuilder",
    "TimetableProblem",
    "build_problem",
    # Solving
    "LocalSearchSolver",
    "SolverConfig",
    "TimetableSolution",
    "SolverManager",
    "JobStatus",
    "JobInfo",
    # Facade
    "TimetableService",
]
