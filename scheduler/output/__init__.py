"""Result schema, materialization and read-side analyses."""

from .schema import (
    ScheduleSlot,
    UnassignedLesson,
    SkippedRequirementInfo,
    MaterializationResult,
    SolveResult,
)
from .materializer import SlotMaterializer
from .conflicts import (
    ConflictSeverity,
    ConflictCategory,
    ConflictType,
    Conflict,
    ConflictReport,
    ConflictDetector,
    ChangeValidation,
    capacity_severity,
)
from .workload import (
    WorkloadStatus,
    WorkloadThresholds,
    WorkloadAnalysis,
    WorkloadAnalyzer,
    RecommendationType,
    Ranking,
)

__all__ = [
    # Schema
    "ScheduleSlot",
    "UnassignedLesson",
    "SkippedRequirementInfo",
    "MaterializationResult",
    "SolveResult",
    # Materializer
    "SlotMaterializer",
    # Conflicts
    "ConflictSeverity",
    "ConflictCategory",
    "ConflictType",
    "Conflict",
    "ConflictReport",
    "ConflictDetector",
    "ChangeValidation",
    "capacity_severity",
    # Workload
    "WorkloadStatus",
    "WorkloadThresholds",
    "WorkloadAnalysis",
    "WorkloadAnalyzer",
    "RecommendationType",
    "Ranking",
]
