# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Contradiction detection against prior failed or revised decisions.

Two variants:
- detect_contradictions: hot path, re-reads an already built TaskContext
  (plus optional semantic matches). No I/O.
- detect_deep_contradictions: keyword overlap against failed/revised
  decisions fetched fresh from storage, for background use.

Both return at most three entries, critical before warning, unique by
(source type, source id).
"""

import logging
import re
from typing import Iterable, Optional

from knowledge_context.schemas import (
    Contradiction,
    OutcomeStatus,
    RelevantDecision,
    SemanticMatch,
    Severity,
    TaskContext,
)
from knowledge_context.storage import BestEffortStore, Storage, best_effort

logger = logging.getLogger(__name__)

MAX_CONTRADICTIONS = 3
DETAIL_LENGTH = 80
SEMANTIC_MIN_SIMILARITY = 0.7
SEMANTIC_MAX_CONFIDENCE = 2
DEEP_CANDIDATES = 10
DEEP_MIN_OVERLAP = 2
MIN_TOKEN_LENGTH = 3
MAX_ACTION_LENGTH = 200
MAX_SUMMARY_LENGTH = 500

CONTRADICTIONS_HEADING = "CONTRADICTIONS DETECTED:"

_SEVERITY_RANK = {Severity.CRITICAL: 0, Severity.WARNING: 1}


def _from_decision(decision_id: int, title: str, detail: str, outcome: OutcomeStatus) -> Optional[Contradiction]:
    detail = (detail or title)[:DETAIL_LENGTH]
    if outcome is OutcomeStatus.FAILED:
        return Contradiction(
            source_type="decision",
            source_id=decision_id,
            title=title,
            summary=f"Previously tried and FAILED: {detail}",
            severity=Severity.CRITICAL,
        )
    if outcome is OutcomeStatus.REVISED:
        return Contradiction(
            source_type="decision",
            source_id=decision_id,
            title=title,
            summary=f"Previously REVISED: {detail}",
            severity=Severity.WARNING,
        )
    return None


def _finalize(found: Iterable[Contradiction], max_results: int) -> list[Contradiction]:
    unique: dict[tuple[str, int], Contradiction] = {}
    for contradiction in found:
        unique.setdefault(contradiction.key, contradiction)
    ordered = sorted(unique.values(), key=lambda c: _SEVERITY_RANK[c.severity])
    return ordered[:max_results]


def detect_contradictions(
    context: TaskContext,
    semantic_matches: Optional[Iterable[SemanticMatch]] = None,
    max_results: int = MAX_CONTRADICTIONS,
    semantic_min_similarity: float = SEMANTIC_MIN_SIMILARITY,
    semantic_max_confidence: float = SEMANTIC_MAX_CONFIDENCE,
) -> list[Contradiction]:
    """Flag failed/revised decisions among the context's candidates.

    Args:
        context: The built task context.
        semantic_matches: Optional semantic matches. A decision match not
            already flagged is raised as a warning when it is very similar
            and its stored confidence is low, since semantic matches carry
            no outcome status.
        max_results: Maximum contradictions returned.
        semantic_min_similarity: Similarity a semantic match needs.
        semantic_max_confidence: Highest confidence a semantic match may have.

    Returns:
        Contradictions, critical first.
    """
    found: list[Contradiction] = []
    for decision in context.relevant_decisions:
        contradiction = _from_decision(decision.id, decision.title, decision.decision, decision.outcome_status)
        if contradiction is not None:
            found.append(contradiction)

    seen = {c.key for c in found}
    for match in semantic_matches or ():
        if match.kind != "decision" or ("decision", match.id) in seen:
            continue
        if match.similarity >= semantic_min_similarity and match.confidence <= semantic_max_confidence:
            seen.add(("decision", match.id))
            found.append(
                Contradiction(
                    source_type="decision",
                    source_id=match.id,
                    title=match.title,
                    summary=f"Semantically similar to a low-confidence decision: {match.content[:DETAIL_LENGTH]}",
                    severity=Severity.WARNING,
                )
            )

    return _finalize(found, max_results)


def _tokens(text: str) -> set[str]:
    return {t for t in re.split(r"\s+", text.lower()) if len(t) >= MIN_TOKEN_LENGTH}


async def detect_deep_contradictions(
    store: "Storage | BestEffortStore",
    scope_id: int,
    keywords: Iterable[str],
    max_results: int = MAX_CONTRADICTIONS,
) -> list[Contradiction]:
    """Match keywords against the most recent failed/revised decisions.

    A decision qualifies when at least two of the keywords appear among the
    tokens of its title and body. Returns an empty list when storage is
    unavailable.
    """
    wanted = {k.lower() for k in keywords if k}
    if len(wanted) < DEEP_MIN_OVERLAP:
        return []

    outcome = await best_effort(store).all(
        """SELECT id, title, decision, outcome_status FROM decisions
           WHERE project_id = ? AND status = 'active'
             AND outcome_status IN ('failed', 'revised')
           ORDER BY decided_at DESC
           LIMIT ?""",
        (scope_id, DEEP_CANDIDATES),
    )

    found: list[Contradiction] = []
    for row in outcome.unwrap_or([]):
        title = row.get("title") or ""
        body = row.get("decision") or ""
        if len(wanted & _tokens(f"{title} {body}")) < DEEP_MIN_OVERLAP:
            continue
        decision = RelevantDecision(
            id=int(row["id"]), title=title, decision=body, outcome_status=row.get("outcome_status")
        )
        contradiction = _from_decision(decision.id, decision.title, decision.decision, decision.outcome_status)
        if contradiction is not None:
            found.append(contradiction)

    return _finalize(found, max_results)


async def persist_contradiction(
    store: "Storage | BestEffortStore",
    scope_id: int,
    session_id: Optional[int],
    contradiction: Contradiction,
    current_action: str,
) -> bool:
    """Record a contradiction alert. Returns False if the write failed."""
    outcome = await best_effort(store).run(
        """INSERT INTO contradiction_alerts
           (project_id, session_id, source_type, source_id, current_action,
            contradiction_summary, severity)
           VALUES (?, ?, ?, ?, ?, ?, ?)""",
        (
            scope_id,
            session_id,
            contradiction.source_type,
            contradiction.source_id,
            current_action[:MAX_ACTION_LENGTH],
            contradiction.summary[:MAX_SUMMARY_LENGTH],
            contradiction.severity.value,
        ),
    )
    if not outcome.ok:
        logger.warning(f"Could not persist contradiction alert: {outcome.error}")
    return outcome.ok


def serialize_contradictions(contradictions: Iterable[Contradiction]) -> str:
    """Render contradictions as an alert block, or "" when there are none."""
    lines = [
        f"{'!! ' if c.severity is Severity.CRITICAL else '!  '}{c.summary}"
        for c in contradictions
    ]
    if not lines:
        return ""
    return "\n".join([CONTRADICTIONS_HEADING, *lines])
