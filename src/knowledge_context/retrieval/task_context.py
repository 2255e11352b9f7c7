# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Task context builder: hybrid retrieval of candidate knowledge for a tool call.

From the lexical analysis of a call, fans out independent lookups with
asyncio.gather:
- direct file matches, full-text and substring file search
- decisions affecting touched files (failed first), full-text decisions
- full-text learnings and open issues, with substring fallbacks
- error-fix pairs when the task looks like a bugfix
- nearest neighbours from the semantic cache

Every lookup is best-effort: a missing table, a missing FTS module or a
failing store empties that list and leaves the others alone. Full-text
failures fall back to substring search.

Scores by provenance: direct 1.0, failed-affecting decision 1.0, other
affecting decision 0.8, issue full-text 0.7, full-text 0.6, substring
0.4-0.5, semantic similarity x 0.6.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, TypeVar

from knowledge_context.analysis.lexical import LexicalAnalysis, analyze_call
from knowledge_context.analysis.tools import DEFAULT_TOOLS, ToolVocabulary
from knowledge_context.observability.metrics import ContextMetrics
from knowledge_context.retrieval.semantic_cache import SemanticCache
from knowledge_context.schemas import (
    ErrorFix,
    RelevantDecision,
    RelevantFile,
    RelevantIssue,
    RelevantLearning,
    SemanticMatch,
    TaskContext,
    TaskType,
)
from knowledge_context.storage import BestEffortStore, QueryOutcome, Row, Storage, best_effort

logger = logging.getLogger(__name__)

MAX_SEARCH_TERMS = 10
MAX_DIRECT_FILES = 5
MAX_AFFECTING_FILES = 3
MAX_FALLBACK_TERMS = 3

MAX_FILES = 8
MAX_DECISIONS = 5
MAX_LEARNINGS = 5
MAX_ISSUES = 3
MAX_ERROR_FIXES = 3
MAX_SEMANTIC_MATCHES = 10

SCORE_DIRECT = 1.0
SCORE_AFFECTING_FAILED = 1.0
SCORE_AFFECTING = 0.8
SCORE_ISSUE_FTS = 0.7
SCORE_FTS = 0.6
SCORE_ISSUE_FALLBACK = 0.5
SCORE_FALLBACK = 0.4
SEMANTIC_SCORE_WEIGHT = 0.6

MIN_ERROR_FIX_CONFIDENCE = 0.5

T = TypeVar("T")


@dataclass
class BuildMetrics:
    """Timing and degradation stats of one context build."""

    lookup_time_ms: float = 0.0
    total_time_ms: float = 0.0
    fallbacks: list[str] = field(default_factory=list)
    degraded: list[str] = field(default_factory=list)
    semantic_matches: int = 0


def fts_query(terms: list[str]) -> str:
    """Build an FTS5 MATCH expression that matches any of the terms."""
    quoted = ['"' + t.replace('"', '""') + '"' for t in terms if t]
    return " OR ".join(quoted)


def _like_clause(columns: tuple[str, ...], terms: list[str]) -> tuple[str, list[str]]:
    """Substring predicate over ``columns`` for each term, OR-ed together."""
    parts: list[str] = []
    params: list[str] = []
    for term in terms:
        for column in columns:
            parts.append(f"{column} LIKE ?")
            params.append(f"%{term}%")
    return "(" + " OR ".join(parts) + ")", params


def _merge(target: list[T], items: list[T], cap: int) -> None:
    """Append items whose identity is not yet present, up to ``cap``."""
    seen = {item.identity for item in target}  # type: ignore[attr-defined]
    for item in items:
        if len(target) >= cap:
            return
        identity = item.identity  # type: ignore[attr-defined]
        if identity not in seen:
            seen.add(identity)
            target.append(item)


def _scale(value: Any) -> int:
    """Stored 0-10 rating clamped into range; unreadable values count as 0."""
    try:
        rating = int(value or 0)
    except (TypeError, ValueError):
        return 0
    return max(0, min(10, rating))


def _unit(value: Any) -> float:
    try:
        confidence = float(value or 0.0)
    except (TypeError, ValueError):
        return 0.0
    return max(0.0, min(1.0, confidence))


def _file(row: Row, score: float) -> RelevantFile:
    return RelevantFile(
        path=row["path"],
        fragility=_scale(row.get("fragility")),
        purpose=row.get("purpose"),
        score=score,
    )


def _decision(row: Row, score: float) -> RelevantDecision:
    return RelevantDecision(
        id=int(row["id"]),
        title=row.get("title") or "",
        decision=row.get("decision") or "",
        outcome_status=row.get("outcome_status"),
        score=score,
    )


def _learning(row: Row, score: float) -> RelevantLearning:
    return RelevantLearning(
        id=int(row["id"]),
        category=row.get("category") or "pattern",
        title=row.get("title") or "",
        content=row.get("content") or "",
        confidence=_scale(row.get("confidence")),
        score=score,
    )


def _issue(row: Row, score: float) -> RelevantIssue:
    return RelevantIssue(
        id=int(row["id"]),
        title=row.get("title") or "",
        severity=_scale(row.get("severity")),
        type=row.get("type") or "bug",
        score=score,
    )


class TaskContextBuilder:
    """Builds the TaskContext for tool calls of one scope.

    Holds the single "current" context of the session: every build replaces
    it wholesale.

    Example:
        >>> builder = TaskContextBuilder(store, scope_id=1)
        >>> ctx = await builder.analyze("memory_check", {"files": ["src/auth/jwt.ts"]})
        >>> [f.path for f in ctx.relevant_files]
    """

    def __init__(
        self,
        store: "Storage | BestEffortStore",
        scope_id: int,
        semantic_cache: Optional[SemanticCache] = None,
        tools: ToolVocabulary = DEFAULT_TOOLS,
        metrics: Optional[ContextMetrics] = None,
    ):
        self.db = best_effort(store)
        self.scope_id = scope_id
        self.semantic_cache = semantic_cache
        self.tools = tools
        self.metrics = metrics
        self.last_metrics = BuildMetrics()
        self._current: Optional[TaskContext] = None

    @property
    def current(self) -> Optional[TaskContext]:
        return self._current

    def set_current(self, context: Optional[TaskContext]) -> None:
        self._current = context

    def clear(self) -> None:
        self._current = None

    async def analyze(self, tool_name: str, args: Mapping[str, Any]) -> TaskContext:
        """Analyze a tool call and build its context."""
        return await self.build(analyze_call(tool_name, args, self.tools))

    async def build(self, analysis: LexicalAnalysis) -> TaskContext:
        """Run every lookup for an analyzed call and store the result as current."""
        start = time.perf_counter()
        build_metrics = BuildMetrics()

        terms = list(dict.fromkeys(analysis.keywords + analysis.domains))[:MAX_SEARCH_TERMS]
        search_text = " ".join(terms)
        wants_fixes = (
            analysis.task_type is TaskType.BUGFIX
            or "error" in search_text
            or "fix" in search_text
        )

        lookup_start = time.perf_counter()
        files, decisions, learnings, issues, error_fixes, semantic = await asyncio.gather(
            self._find_files(terms, analysis.files, build_metrics),
            self._find_decisions(terms, analysis.files, build_metrics),
            self._find_learnings(terms, build_metrics),
            self._find_issues(terms, build_metrics),
            self._find_error_fixes(build_metrics) if wants_fixes else _empty(),
            self._find_semantic(search_text, build_metrics),
        )
        build_metrics.lookup_time_ms = (time.perf_counter() - lookup_start) * 1000

        # Semantic matches only fill remaining slots behind keyword matches
        _merge(
            learnings,
            [
                RelevantLearning(
                    id=m.id,
                    category=m.category or "pattern",
                    title=m.title,
                    content=m.content,
                    confidence=max(0, min(10, int(round(m.confidence)))),
                    score=m.similarity * SEMANTIC_SCORE_WEIGHT,
                )
                for m in semantic
                if m.kind == "learning"
            ],
            MAX_LEARNINGS,
        )
        _merge(
            decisions,
            [
                RelevantDecision(
                    id=m.id,
                    title=m.title,
                    decision=m.content,
                    score=m.similarity * SEMANTIC_SCORE_WEIGHT,
                )
                for m in semantic
                if m.kind == "decision"
            ],
            MAX_DECISIONS,
        )

        context = TaskContext(
            task_type=analysis.task_type,
            domains=analysis.domains[:5],
            keywords=terms,
            files=analysis.files,
            relevant_files=files,
            relevant_decisions=decisions,
            relevant_learnings=learnings,
            relevant_issues=issues,
            error_fixes=error_fixes,
            semantic_matches=semantic,
        )

        build_metrics.semantic_matches = len(semantic)
        build_metrics.total_time_ms = (time.perf_counter() - start) * 1000
        self.last_metrics = build_metrics
        if self.metrics is not None:
            self.metrics.record_latency("analyze", build_metrics.total_time_ms)
            self.metrics.increment_counter("lookups_degraded", len(build_metrics.degraded))
            self.metrics.increment_counter("lookups_fallback", len(build_metrics.fallbacks))
            self.metrics.increment_counter("semantic_cache_hits", len(semantic))

        self._current = context
        return context

    async def _full_text_or_fallback(
        self,
        name: str,
        terms: list[str],
        full_text: Callable[[str], Awaitable[QueryOutcome[list[Row]]]],
        fallback: Callable[[list[str]], Awaitable[QueryOutcome[list[Row]]]],
        build_metrics: BuildMetrics,
    ) -> tuple[list[Row], bool]:
        """Run a full-text lookup, falling back to substring search on failure.

        Returns:
            Rows and whether they came from the fallback.
        """
        if not terms:
            return [], False
        outcome = await full_text(fts_query(terms))
        if outcome.ok:
            return outcome.unwrap_or([]), False

        logger.debug(f"Full-text {name} lookup unavailable ({outcome.kind.value}), using substring search")
        build_metrics.fallbacks.append(name)
        fallback_outcome = await fallback(terms[:MAX_FALLBACK_TERMS])
        if not fallback_outcome.ok:
            build_metrics.degraded.append(name)
        return fallback_outcome.unwrap_or([]), True

    async def _find_files(
        self, terms: list[str], touched: list[str], build_metrics: BuildMetrics
    ) -> list[RelevantFile]:
        direct = await asyncio.gather(
            *(
                self.db.get(
                    "SELECT path, fragility, purpose FROM files WHERE project_id = ? AND path = ?",
                    (self.scope_id, path),
                )
                for path in touched[:MAX_DIRECT_FILES]
            )
        )
        results: list[RelevantFile] = [
            _file(outcome.value, SCORE_DIRECT) for outcome in direct if outcome.ok and outcome.value
        ]

        async def full_text(match: str) -> QueryOutcome[list[Row]]:
            return await self.db.all(
                """SELECT f.path, f.fragility, f.purpose
                   FROM fts_files JOIN files f ON fts_files.rowid = f.id
                   WHERE fts_files MATCH ? AND f.project_id = ?
                   ORDER BY bm25(fts_files) LIMIT 5""",
                (match, self.scope_id),
            )

        async def fallback(like_terms: list[str]) -> QueryOutcome[list[Row]]:
            clause, params = _like_clause(("path", "purpose"), like_terms)
            return await self.db.all(
                f"""SELECT path, fragility, purpose FROM files
                    WHERE project_id = ? AND {clause}
                    ORDER BY fragility DESC LIMIT 5""",
                (self.scope_id, *params),
            )

        rows, used_fallback = await self._full_text_or_fallback(
            "files", terms, full_text, fallback, build_metrics
        )
        score = SCORE_FALLBACK if used_fallback else SCORE_FTS
        _merge(results, [_file(r, score) for r in rows], MAX_FILES)
        return results[:MAX_FILES]

    async def _find_decisions(
        self, terms: list[str], touched: list[str], build_metrics: BuildMetrics
    ) -> list[RelevantDecision]:
        affecting = await asyncio.gather(
            *(
                self.db.all(
                    """SELECT id, title, decision, outcome_status FROM decisions
                       WHERE project_id = ? AND status = 'active' AND affects LIKE '%' || ? || '%'
                       ORDER BY CASE outcome_status WHEN 'failed' THEN 0 ELSE 1 END, decided_at DESC
                       LIMIT 3""",
                    (self.scope_id, path),
                )
                for path in touched[:MAX_AFFECTING_FILES]
            )
        )
        results: list[RelevantDecision] = []
        for outcome in affecting:
            _merge(
                results,
                [
                    _decision(
                        r,
                        SCORE_AFFECTING_FAILED if r.get("outcome_status") == "failed" else SCORE_AFFECTING,
                    )
                    for r in outcome.unwrap_or([])
                ],
                MAX_DECISIONS,
            )
        # Failed decisions first across all touched files
        results.sort(key=lambda d: d.outcome_status.value != "failed")

        async def full_text(match: str) -> QueryOutcome[list[Row]]:
            return await self.db.all(
                """SELECT d.id, d.title, d.decision, d.outcome_status
                   FROM fts_decisions JOIN decisions d ON fts_decisions.rowid = d.id
                   WHERE fts_decisions MATCH ? AND d.project_id = ? AND d.status = 'active'
                   ORDER BY bm25(fts_decisions) LIMIT 3""",
                (match, self.scope_id),
            )

        async def fallback(like_terms: list[str]) -> QueryOutcome[list[Row]]:
            clause, params = _like_clause(("title", "decision"), like_terms)
            return await self.db.all(
                f"""SELECT id, title, decision, outcome_status FROM decisions
                    WHERE project_id = ? AND status = 'active' AND {clause}
                    ORDER BY decided_at DESC LIMIT 3""",
                (self.scope_id, *params),
            )

        rows, used_fallback = await self._full_text_or_fallback(
            "decisions", terms, full_text, fallback, build_metrics
        )
        score = SCORE_FALLBACK if used_fallback else SCORE_FTS
        _merge(results, [_decision(r, score) for r in rows], MAX_DECISIONS)
        return results[:MAX_DECISIONS]

    async def _find_learnings(self, terms: list[str], build_metrics: BuildMetrics) -> list[RelevantLearning]:
        async def full_text(match: str) -> QueryOutcome[list[Row]]:
            return await self.db.all(
                """SELECT l.id, l.category, l.title, l.content, l.confidence
                   FROM fts_learnings JOIN learnings l ON fts_learnings.rowid = l.id
                   WHERE fts_learnings MATCH ? AND (l.project_id = ? OR l.project_id IS NULL)
                     AND l.archived_at IS NULL
                   ORDER BY bm25(fts_learnings) LIMIT 5""",
                (match, self.scope_id),
            )

        async def fallback(like_terms: list[str]) -> QueryOutcome[list[Row]]:
            clause, params = _like_clause(("title", "content"), like_terms)
            return await self.db.all(
                f"""SELECT id, category, title, content, confidence FROM learnings
                    WHERE (project_id = ? OR project_id IS NULL) AND archived_at IS NULL
                      AND {clause}
                    ORDER BY confidence DESC LIMIT 5""",
                (self.scope_id, *params),
            )

        rows, used_fallback = await self._full_text_or_fallback(
            "learnings", terms, full_text, fallback, build_metrics
        )
        score = SCORE_FALLBACK if used_fallback else SCORE_FTS
        results: list[RelevantLearning] = []
        _merge(results, [_learning(r, score) for r in rows], MAX_LEARNINGS)
        return results

    async def _find_issues(self, terms: list[str], build_metrics: BuildMetrics) -> list[RelevantIssue]:
        async def full_text(match: str) -> QueryOutcome[list[Row]]:
            return await self.db.all(
                """SELECT i.id, i.title, i.severity, i.type
                   FROM fts_issues JOIN issues i ON fts_issues.rowid = i.id
                   WHERE fts_issues MATCH ? AND i.project_id = ? AND i.status = 'open'
                   ORDER BY i.severity DESC LIMIT 3""",
                (match, self.scope_id),
            )

        async def fallback(like_terms: list[str]) -> QueryOutcome[list[Row]]:
            clause, params = _like_clause(("title", "description"), like_terms)
            return await self.db.all(
                f"""SELECT id, title, severity, type FROM issues
                    WHERE project_id = ? AND status = 'open' AND {clause}
                    ORDER BY severity DESC LIMIT 3""",
                (self.scope_id, *params),
            )

        rows, used_fallback = await self._full_text_or_fallback(
            "issues", terms, full_text, fallback, build_metrics
        )
        score = SCORE_ISSUE_FALLBACK if used_fallback else SCORE_ISSUE_FTS
        results: list[RelevantIssue] = []
        _merge(results, [_issue(r, score) for r in rows], MAX_ISSUES)
        return results

    async def _find_error_fixes(self, build_metrics: BuildMetrics) -> list[ErrorFix]:
        outcome = await self.db.all(
            """SELECT error_signature, fix_description, fix_files, confidence
               FROM error_fix_pairs
               WHERE project_id = ? AND confidence >= ?
               ORDER BY times_fixed DESC, confidence DESC
               LIMIT 3""",
            (self.scope_id, MIN_ERROR_FIX_CONFIDENCE),
        )
        if not outcome.ok:
            build_metrics.degraded.append("error_fixes")
        return [
            ErrorFix(
                signature=r.get("error_signature") or "",
                fix_description=r.get("fix_description") or "",
                fix_files=r.get("fix_files") or "",
                confidence=_unit(r.get("confidence")),
            )
            for r in outcome.unwrap_or([])
        ][:MAX_ERROR_FIXES]

    async def _find_semantic(self, text: str, build_metrics: BuildMetrics) -> list[SemanticMatch]:
        if self.semantic_cache is None or not text:
            return []
        try:
            return await self.semantic_cache.query(text, max_results=MAX_SEMANTIC_MATCHES)
        except Exception as e:
            logger.warning(f"Semantic lookup failed, using keyword retrieval only: {e}")
            build_metrics.degraded.append("semantic")
            return []


async def _empty() -> list[Any]:
    return []
