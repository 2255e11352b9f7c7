# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Budget manager: scores candidates and packs them into the token budget.

Sections, in the order they are considered:
1. Contradictions: prior failures the current action repeats
2. Critical warnings: fragile files, failed decisions, session alerts
3. Strategies: proven approaches
4. Decisions: relevant non-failed decisions
5. Learnings: relevant knowledge
6. Files: related, non-fragile files
7. Issues: open issues (drawn from the reserve budget)
8. Error fixes: known error signatures and fixes

Within a section items are scored, sorted and appended whole while they
fit the category budget. Sections are then joined until the next one would
overflow the total budget; assembly stops there and cheaper later sections
are not substituted in.
"""

import logging
from typing import Callable, Iterable, Mapping, Optional, Sequence, TypeVar

from knowledge_context.budget.allocation import (
    DEFAULT_TOTAL_BUDGET,
    apply_weight_adjustments,
    compute_dynamic_budget,
)
from knowledge_context.contradictions import CONTRADICTIONS_HEADING
from knowledge_context.schemas import (
    BudgetAllocation,
    Contradiction,
    ContextSection,
    ErrorFix,
    IntelligenceSignals,
    OutcomeStatus,
    RelevantDecision,
    RelevantFile,
    RelevantIssue,
    RelevantLearning,
    SectionCategory,
    Severity,
    StrategyEntry,
    TaskContext,
    TrajectoryPattern,
)
from knowledge_context.tokens import CharTokenEstimator, TokenEstimator

logger = logging.getLogger(__name__)

T = TypeVar("T")

SECTION_SEPARATOR = "\n\n"
FRAGILE_THRESHOLD = 7
SHOW_FRAGILITY_FROM = 5
STALE_TAG = " [stale]"
ALERT_MIN_CONFIDENCE = 0.5
PREDICTION_MIN_CONFIDENCE = 0.7
STRUGGLING_SUCCESS_RATE = 0.5
STRUGGLING_MIN_SESSIONS = 3

CRITICAL_HEADING = "Critical warnings:"
FRAGILE_HEADING = "Fragile files in scope:"
FAILED_HEADING = "Failed decisions (avoid repeating):"
ALERTS_HEADING = "Session alerts:"
STRATEGIES_HEADING = "Proven strategies:"
DECISIONS_HEADING = "Relevant decisions:"
LEARNINGS_HEADING = "Relevant knowledge:"
FILES_HEADING = "Related files:"
ISSUES_HEADING = "Open issues:"
ERROR_FIXES_HEADING = "Known error fixes:"


# ============================================================================
# Scoring
# ============================================================================


def score_file(item: RelevantFile) -> float:
    score = item.score
    if item.fragility >= 7:
        score += 0.3
    if item.fragility >= 9:
        score += 0.2
    return score


def score_decision(item: RelevantDecision) -> float:
    score = item.score
    if item.outcome_status is OutcomeStatus.FAILED:
        score += 0.5
    elif item.outcome_status is OutcomeStatus.REVISED:
        score += 0.2
    return score


def score_learning(item: RelevantLearning) -> float:
    score = item.score + item.confidence / 10 * 0.3
    if item.category == "gotcha":
        score += 0.3
    return score


def score_issue(item: RelevantIssue) -> float:
    score = item.score + item.severity / 10 * 0.4
    if item.type == "security":
        score += 0.3
    return score


def score_strategy(item: StrategyEntry) -> float:
    return item.success_rate * 0.6 + min(item.times_used / 20, 1.0) * 0.4


def score_error_fix(item: ErrorFix) -> float:
    return item.confidence


def _ranked(items: Iterable[T], scorer: Callable[[T], float]) -> list[T]:
    return sorted(items, key=scorer, reverse=True)


# ============================================================================
# Serialization
# ============================================================================


def _stale(tag: str, stale_ids: set[str]) -> str:
    return STALE_TAG if tag in stale_ids else ""


def serialize_file(item: RelevantFile) -> str:
    parts = [item.path]
    if item.fragility >= SHOW_FRAGILITY_FROM:
        parts.append(f"frag:{item.fragility}")
    if item.purpose:
        parts.append(item.purpose[:40])
    return f"  F[{'|'.join(parts)}]"


def serialize_decision(item: RelevantDecision, stale_ids: set[str] = frozenset()) -> str:
    prefix = "  !! " if item.outcome_status is OutcomeStatus.FAILED else "  "
    status = "" if item.outcome_status is OutcomeStatus.PENDING else f" [{item.outcome_status.value}]"
    return f"{prefix}D[{item.title[:40]}{status}]{_stale(f'decisions:{item.id}', stale_ids)}"


def serialize_learning(item: RelevantLearning, stale_ids: set[str] = frozenset()) -> str:
    return (
        f"  K[{item.category}|{item.title[:50]}|conf:{item.confidence}]"
        f"{_stale(f'learnings:{item.id}', stale_ids)}"
    )


def serialize_issue(item: RelevantIssue, stale_ids: set[str] = frozenset()) -> str:
    return f"  I[#{item.id}|sev:{item.severity}|{item.title[:40]}]{_stale(f'issues:{item.id}', stale_ids)}"


def serialize_error_fix(item: ErrorFix) -> str:
    fix = item.fix_description[:50] or "see fix files"
    return f"  EF[{item.signature[:30]}|fix:{fix}]"


def serialize_strategy(item: StrategyEntry) -> str:
    return f"  ST[{item.name}|{item.description[:50]}|rate:{round(item.success_rate * 100)}%]"


def serialize_contradiction(item: Contradiction) -> str:
    return f"{'!! ' if item.severity is Severity.CRITICAL else '!  '}{item.summary}"


def session_alerts(context: TaskContext, signals: Optional[IntelligenceSignals]) -> list[str]:
    """Warnings derived from the session's own behaviour."""
    if signals is None:
        return []
    alerts: list[str] = []

    trajectory = signals.trajectory
    if (
        trajectory.pattern in (TrajectoryPattern.STUCK, TrajectoryPattern.FAILING)
        and trajectory.confidence > ALERT_MIN_CONFIDENCE
    ):
        alert = f"  TR[{trajectory.pattern.value}|{trajectory.message}"
        if trajectory.suggestion:
            alert += f"|{trajectory.suggestion}"
        alerts.append(alert + "]")

    prediction = signals.prediction
    if prediction is not None and prediction.confidence > PREDICTION_MIN_CONFIDENCE:
        alerts.append(
            f"  Predicted next: {prediction.predicted_tool} ({round(prediction.confidence * 100)}%)"
        )

    worst = signals.profile.worst_task_type if signals.profile else None
    if (
        worst is not None
        and worst.task_type == context.task_type.value
        and worst.success_rate < STRUGGLING_SUCCESS_RATE
        and worst.total >= STRUGGLING_MIN_SESSIONS
    ):
        alerts.append(
            f"  PR[{worst.task_type} tasks succeed {round(worst.success_rate * 100)}%"
            f"|{worst.total} sessions]"
        )
    return alerts


# ============================================================================
# Assembly
# ============================================================================


class BudgetManager:
    """Packs scored context into a bounded text block.

    Example:
        >>> manager = BudgetManager(total_budget=2000)
        >>> text = manager.build_context_output(context, contradictions, signals)

    Attributes:
        total_budget: Maximum estimated tokens of the joined output.
        base_allocation: Category budgets before dynamic adjustments. When
            None, persisted overrides from the signals or the defaults apply.
        weights: Calibration accuracy multipliers (``prediction``,
            ``suggestion``, ``enrichment``).
    """

    def __init__(
        self,
        total_budget: int = DEFAULT_TOTAL_BUDGET,
        base_allocation: Optional[BudgetAllocation] = None,
        weights: Optional[Mapping[str, float]] = None,
        estimator: Optional[TokenEstimator] = None,
    ):
        self.total_budget = total_budget
        self.base_allocation = base_allocation
        self.weights = dict(weights or {})
        self.estimator = estimator or CharTokenEstimator()

    def _count_tokens(self, text: str) -> int:
        return self.estimator.estimate(text)

    def allocation_for(self, signals: Optional[IntelligenceSignals]) -> BudgetAllocation:
        """Category budgets for this injection."""
        allocation = compute_dynamic_budget(signals or IntelligenceSignals(), self.base_allocation)
        return apply_weight_adjustments(allocation, self.weights)

    def _fit_lines(self, lines: Iterable[str], budget: int, preamble: Sequence[str] = ()) -> list[str]:
        """Greedily keep whole lines while preamble + lines fit ``budget``."""
        chosen: list[str] = []
        for line in lines:
            if self._count_tokens("\n".join([*preamble, *chosen, line])) > budget:
                break
            chosen.append(line)
        return chosen

    def _section(
        self, category: SectionCategory, heading: str, lines: Iterable[str], budget: int
    ) -> Optional[ContextSection]:
        chosen = self._fit_lines(lines, budget, (heading,))
        if not chosen:
            return None
        content = "\n".join([heading, *chosen])
        return ContextSection(category=category, content=content, tokens=self._count_tokens(content))

    def _critical_section(
        self,
        context: TaskContext,
        signals: Optional[IntelligenceSignals],
        budget: int,
        stale_ids: set[str],
    ) -> Optional[ContextSection]:
        fragile = [f for f in context.relevant_files if f.fragility >= FRAGILE_THRESHOLD]
        failed = [d for d in context.relevant_decisions if d.outcome_status is OutcomeStatus.FAILED]

        # Each group gets half of what remains after the section heading
        half = max(0, (budget - self._count_tokens(CRITICAL_HEADING) - 1) // 2)
        fragile_lines = self._fit_lines(
            (serialize_file(f) for f in _ranked(fragile, score_file)), half, (FRAGILE_HEADING,)
        )
        failed_lines = self._fit_lines(
            (serialize_decision(d, stale_ids) for d in _ranked(failed, score_decision)),
            half,
            (FAILED_HEADING,),
        )

        blocks = [CRITICAL_HEADING]
        if fragile_lines:
            blocks += [FRAGILE_HEADING, *fragile_lines]
        if failed_lines:
            blocks += [FAILED_HEADING, *failed_lines]

        alert_lines = self._fit_lines(session_alerts(context, signals), budget, (*blocks, ALERTS_HEADING))
        if alert_lines:
            blocks += [ALERTS_HEADING, *alert_lines]

        if len(blocks) == 1:
            return None
        content = "\n".join(blocks)
        return ContextSection(
            category=SectionCategory.CRITICAL_WARNINGS,
            content=content,
            tokens=self._count_tokens(content),
        )

    def build_sections(
        self,
        context: TaskContext,
        contradictions: Sequence[Contradiction] = (),
        signals: Optional[IntelligenceSignals] = None,
    ) -> list[Optional[ContextSection]]:
        """Render every category within its own budget, in priority order."""
        allocation = self.allocation_for(signals)
        stale_ids = signals.stale_item_ids if signals else set()

        regular_decisions = [
            d for d in context.relevant_decisions if d.outcome_status is not OutcomeStatus.FAILED
        ]
        related_files = [f for f in context.relevant_files if f.fragility < FRAGILE_THRESHOLD]

        return [
            self._section(
                SectionCategory.CONTRADICTIONS,
                CONTRADICTIONS_HEADING,
                (serialize_contradiction(c) for c in contradictions),
                allocation.contradictions,
            ),
            self._critical_section(context, signals, allocation.critical_warnings, stale_ids),
            self._section(
                SectionCategory.STRATEGIES,
                STRATEGIES_HEADING,
                (serialize_strategy(s) for s in _ranked(signals.strategies if signals else [], score_strategy)),
                allocation.strategies,
            ),
            self._section(
                SectionCategory.DECISIONS,
                DECISIONS_HEADING,
                (serialize_decision(d, stale_ids) for d in _ranked(regular_decisions, score_decision)),
                allocation.decisions,
            ),
            self._section(
                SectionCategory.LEARNINGS,
                LEARNINGS_HEADING,
                (serialize_learning(k, stale_ids) for k in _ranked(context.relevant_learnings, score_learning)),
                allocation.learnings,
            ),
            self._section(
                SectionCategory.FILES,
                FILES_HEADING,
                (serialize_file(f) for f in _ranked(related_files, score_file)),
                allocation.file_context,
            ),
            self._section(
                SectionCategory.ISSUES,
                ISSUES_HEADING,
                (serialize_issue(i, stale_ids) for i in _ranked(context.relevant_issues, score_issue)),
                allocation.reserve,
            ),
            self._section(
                SectionCategory.ERROR_FIXES,
                ERROR_FIXES_HEADING,
                (serialize_error_fix(e) for e in _ranked(context.error_fixes, score_error_fix)),
                allocation.error_fixes,
            ),
        ]

    def assemble(
        self,
        context: TaskContext,
        contradictions: Sequence[Contradiction] = (),
        signals: Optional[IntelligenceSignals] = None,
    ) -> list[ContextSection]:
        """Select the sections that fit the total budget.

        Stops at the first section that would overflow. Never raises; on an
        unexpected error the result is empty.
        """
        try:
            return self._select(self.build_sections(context, contradictions, signals))
        except Exception as e:
            logger.warning(f"Context assembly failed, injecting nothing: {e}")
            return []

    def _select(self, candidates: Sequence[Optional[ContextSection]]) -> list[ContextSection]:
        selected: list[ContextSection] = []
        for section in candidates:
            if section is None:
                continue
            joined = SECTION_SEPARATOR.join([*(s.content for s in selected), section.content])
            if self._count_tokens(joined) > self.total_budget:
                logger.debug(f"Budget exhausted before section '{section.category.value}'")
                break
            selected.append(section)
        return selected

    def build_context_output(
        self,
        context: TaskContext,
        contradictions: Sequence[Contradiction] = (),
        signals: Optional[IntelligenceSignals] = None,
    ) -> str:
        """Assembled context text, or "" when nothing fits."""
        return self.to_text(self.assemble(context, contradictions, signals))

    @staticmethod
    def to_text(sections: Sequence[ContextSection]) -> str:
        return SECTION_SEPARATOR.join(s.content for s in sections)
