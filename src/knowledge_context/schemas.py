# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Data model for context retrieval and assembly.

Stored knowledge is projected into frozen Pydantic models (candidate items,
contradictions, the task context) so a built context can be shared between
the contradiction detector, the collector and the budget manager without
anyone mutating it. In-process bookkeeping (budgets, sections, signals)
uses plain dataclasses.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskType(str, Enum):
    """Coarse classification of the current unit of work.

    Declaration order matters: task type detection breaks ties in favour of
    the type declared first.
    """

    BUGFIX = "bugfix"
    FEATURE = "feature"
    REFACTOR = "refactor"
    TESTING = "testing"
    DOCUMENTATION = "documentation"
    PERFORMANCE = "performance"
    CONFIGURATION = "configuration"
    EXPLORATION = "exploration"
    UNKNOWN = "unknown"


class OutcomeStatus(str, Enum):
    """Whether a past decision later proved right."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REVISED = "revised"


class Severity(str, Enum):
    """Contradiction severity. Critical entries always sort first."""

    CRITICAL = "critical"
    WARNING = "warning"


class TrajectoryPattern(str, Enum):
    EXPLORATION = "exploration"
    CONFIDENT = "confident"
    FAILING = "failing"
    STUCK = "stuck"
    NORMAL = "normal"


class SectionCategory(str, Enum):
    """Assembled context sections, in the order they are considered."""

    CONTRADICTIONS = "contradictions"
    CRITICAL_WARNINGS = "critical_warnings"
    STRATEGIES = "strategies"
    DECISIONS = "decisions"
    LEARNINGS = "learnings"
    FILES = "files"
    ISSUES = "issues"
    ERROR_FIXES = "error_fixes"


SECTION_ORDER: tuple[SectionCategory, ...] = tuple(SectionCategory)


# ============================================================================
# Candidate items
# ============================================================================


class _Candidate(BaseModel):
    """Read-only projection of a stored row plus its provenance score."""

    model_config = ConfigDict(frozen=True)

    score: float = Field(default=0.0, description="Provenance-derived base score")


class RelevantFile(_Candidate):
    path: str
    fragility: int = Field(default=0, ge=0, le=10)
    purpose: Optional[str] = None

    @property
    def identity(self) -> str:
        return self.path


class RelevantDecision(_Candidate):
    id: int
    title: str
    decision: str = ""
    outcome_status: OutcomeStatus = OutcomeStatus.PENDING

    @field_validator("outcome_status", mode="before")
    @classmethod
    def coerce_outcome(cls, v: Any) -> Any:
        """Unknown or missing outcomes are treated as pending."""
        if isinstance(v, OutcomeStatus):
            return v
        try:
            return OutcomeStatus(v)
        except ValueError:
            return OutcomeStatus.PENDING

    @property
    def identity(self) -> int:
        return self.id


class RelevantLearning(_Candidate):
    id: int
    category: str = "pattern"
    title: str
    content: str = ""
    confidence: int = Field(default=5, ge=0, le=10)

    @property
    def identity(self) -> int:
        return self.id


class RelevantIssue(_Candidate):
    id: int
    title: str
    severity: int = Field(default=5, ge=0, le=10)
    type: str = "bug"

    @property
    def identity(self) -> int:
        return self.id


class ErrorFix(BaseModel):
    """A known error signature and how it was fixed before."""

    model_config = ConfigDict(frozen=True)

    signature: str
    fix_description: str = ""
    fix_files: str = ""
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class SemanticMatch(BaseModel):
    """A retrieval result found via embedding similarity."""

    model_config = ConfigDict(frozen=True)

    id: int
    kind: Literal["learning", "decision"]
    title: str
    content: str = ""
    category: Optional[str] = None
    confidence: float
    similarity: float


class Contradiction(BaseModel):
    """A conflict between the current action and a prior failed/revised decision."""

    model_config = ConfigDict(frozen=True)

    source_type: Literal["decision", "learning"]
    source_id: int
    title: str
    summary: str
    severity: Severity

    @property
    def key(self) -> tuple[str, int]:
        return (self.source_type, self.source_id)


class TaskContext(BaseModel):
    """Everything retrieved for one analyzed tool call.

    Immutable once built; attaching contradictions or semantic matches
    yields a copy.
    """

    model_config = ConfigDict(frozen=True)

    task_type: TaskType = TaskType.UNKNOWN
    domains: list[str] = Field(default_factory=list, max_length=5)
    keywords: list[str] = Field(default_factory=list, max_length=10)
    files: list[str] = Field(default_factory=list)
    relevant_files: list[RelevantFile] = Field(default_factory=list)
    relevant_decisions: list[RelevantDecision] = Field(default_factory=list)
    relevant_learnings: list[RelevantLearning] = Field(default_factory=list)
    relevant_issues: list[RelevantIssue] = Field(default_factory=list)
    error_fixes: list[ErrorFix] = Field(default_factory=list)
    semantic_matches: list[SemanticMatch] = Field(default_factory=list)
    contradictions: list[Contradiction] = Field(default_factory=list)
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_empty(self) -> bool:
        """True when no candidate item of any kind was found."""
        return not (
            self.relevant_files
            or self.relevant_decisions
            or self.relevant_learnings
            or self.relevant_issues
            or self.error_fixes
        )

    def with_contradictions(self, contradictions: list[Contradiction]) -> "TaskContext":
        return self.model_copy(update={"contradictions": list(contradictions)})


# ============================================================================
# Budget and assembly
# ============================================================================


@dataclass
class BudgetAllocation:
    """Per-category token sub-budgets.

    Issues have no category of their own and draw from ``reserve``.
    """

    contradictions: int = 250
    critical_warnings: int = 300
    strategies: int = 200
    decisions: int = 300
    learnings: int = 300
    file_context: int = 300
    error_fixes: int = 150
    reserve: int = 200

    def __post_init__(self) -> None:
        for f in fields(self):
            if getattr(self, f.name) < 0:
                raise ValueError(f"{f.name} budget must be non-negative")

    @property
    def total(self) -> int:
        return sum(getattr(self, f.name) for f in fields(self))

    def to_dict(self) -> dict[str, int]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class ContextSection:
    """One rendered section of the injected context."""

    category: SectionCategory
    content: str
    tokens: int


# ============================================================================
# Session signals
# ============================================================================


@dataclass
class TrajectoryAnalysis:
    pattern: TrajectoryPattern
    message: str
    confidence: float
    suggestion: Optional[str] = None


@dataclass
class StrategyEntry:
    name: str
    description: str
    success_rate: float
    times_used: int = 0


@dataclass
class WorkflowPrediction:
    predicted_tool: str
    confidence: float
    trigger_sequence: str


@dataclass
class TaskTypeStats:
    task_type: str
    total: int
    success_rate: float


@dataclass
class AgentProfile:
    """Aggregate behaviour of past sessions for this scope."""

    task_type_stats: list[TaskTypeStats] = field(default_factory=list)
    best_strategy: Optional[str] = None
    worst_task_type: Optional[TaskTypeStats] = None


@dataclass
class ImpactStat:
    """Outcome counts for injected context of one type over the last 30 days."""

    helped: int = 0
    irrelevant: int = 0
    harmful: int = 0
    total: int = 0


def default_trajectory() -> TrajectoryAnalysis:
    return TrajectoryAnalysis(
        pattern=TrajectoryPattern.NORMAL,
        message="Analysis unavailable",
        confidence=0.0,
    )


@dataclass
class IntelligenceSignals:
    """Flat bundle of peripheral signals handed to the budget manager."""

    strategies: list[StrategyEntry] = field(default_factory=list)
    stale_item_ids: set[str] = field(default_factory=set)
    budget_overrides: Optional[BudgetAllocation] = None
    prediction: Optional[WorkflowPrediction] = None
    trajectory: TrajectoryAnalysis = field(default_factory=default_trajectory)
    profile: Optional[AgentProfile] = None
    impact_stats: dict[str, ImpactStat] = field(default_factory=dict)
