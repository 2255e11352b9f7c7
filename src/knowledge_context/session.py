# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Session pipeline: one object per agent session owning all mutable state.

Per tool call:
1. Record the call in the focus window and check for divergence
2. Build the task context (full-text, substring and semantic lookups)
3. Detect contradictions and collect intelligence signals
4. Compute the dynamic budget and assemble the bounded context block
5. Remember which files were injected for quality tracking

Nothing here is module-level; ``reset()`` tears the session state down.
"""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from knowledge_context.analysis.tools import ToolVocabulary
from knowledge_context.budget.manager import BudgetManager
from knowledge_context.config import ContextConfig, load_config
from knowledge_context.contradictions import (
    detect_contradictions,
    detect_deep_contradictions,
    persist_contradiction,
)
from knowledge_context.focus.quality import QualityTracker
from knowledge_context.focus.shifter import FocusShifter
from knowledge_context.intelligence.collector import IntelligenceCollector
from knowledge_context.intelligence.prediction_cache import PredictionCache
from knowledge_context.observability.metrics import ContextMetrics
from knowledge_context.retrieval.embeddings import EmbeddingProvider
from knowledge_context.retrieval.semantic_cache import SemanticCache
from knowledge_context.retrieval.task_context import TaskContextBuilder
from knowledge_context.schemas import (
    Contradiction,
    ContextSection,
    IntelligenceSignals,
    TaskContext,
    TaskType,
)
from knowledge_context.storage import Storage
from knowledge_context.tokens import CharTokenEstimator, TokenEstimator

logger = logging.getLogger(__name__)


@dataclass
class ContextInjection:
    """What the downstream consumer receives for one tool call."""

    text: str
    sections: list[ContextSection] = field(default_factory=list)
    contradictions: list[Contradiction] = field(default_factory=list)
    task_context: TaskContext = field(default_factory=lambda: TaskContext(task_type=TaskType.UNKNOWN))
    signals: IntelligenceSignals = field(default_factory=IntelligenceSignals)
    focus_shifted: bool = False

    @property
    def tokens(self) -> int:
        return sum(s.tokens for s in self.sections)

    @property
    def is_empty(self) -> bool:
        return not self.text


class ContextSession:
    """Context engine for a single session of one scope.

    Example:
        >>> session = ContextSession(store, scope_id=1, embedder=embedder)
        >>> await session.warm()
        >>> injection = await session.on_tool_call("memory_check", {"files": ["src/auth/jwt.ts"]})
        >>> print(injection.text)

    Callers record one tool call at a time; the window and quality counters
    assume a single writer.
    """

    def __init__(
        self,
        store: Storage,
        scope_id: int,
        config: Optional[ContextConfig] = None,
        embedder: Optional[EmbeddingProvider] = None,
        session_id: Optional[int] = None,
        collector: Optional[IntelligenceCollector] = None,
        weights: Optional[Mapping[str, float]] = None,
        estimator: Optional[TokenEstimator] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or ContextConfig()
        self.store = store
        self.scope_id = scope_id
        self.session_id = session_id
        self.tools = ToolVocabulary(prefix=self.config.tool_prefix)
        self.metrics = ContextMetrics()
        self.estimator = estimator or CharTokenEstimator()

        self.semantic_cache: Optional[SemanticCache] = None
        if embedder is not None:
            self.semantic_cache = SemanticCache(
                embedder,
                max_size=self.config.cache_max_size,
                similarity_threshold=self.config.similarity_threshold,
            )

        self.builder = TaskContextBuilder(
            store, scope_id, self.semantic_cache, tools=self.tools, metrics=self.metrics
        )
        self.shifter = FocusShifter(
            store,
            scope_id,
            window_size=self.config.focus_window_size,
            divergence_threshold=self.config.focus_divergence_threshold,
            min_calls=self.config.focus_min_calls,
            cooldown_seconds=self.config.focus_cooldown_seconds,
            clock=clock,
            tools=self.tools,
            session_id=session_id,
            history_size=self.config.trajectory_window,
        )
        self.quality = QualityTracker(
            refresh_cooldown_seconds=self.config.quality_refresh_cooldown_seconds,
            miss_threshold=self.config.quality_miss_threshold,
            min_accesses=self.config.quality_min_accesses,
            low_hit_rate=self.config.quality_low_hit_rate,
            low_hit_min_accesses=self.config.quality_low_hit_min_accesses,
            history_size=self.config.quality_history_size,
            clock=clock,
        )
        self.prediction_cache = PredictionCache(
            max_size=self.config.prediction_cache_max_size,
            ttl_seconds=self.config.prediction_cache_ttl_seconds,
            clock=clock,
        )
        self.collector = collector or IntelligenceCollector.from_store(
            store,
            scope_id,
            self.prediction_cache,
            tools=self.tools,
            trajectory_window=self.config.trajectory_window,
            metrics=self.metrics,
        )
        self.manager = BudgetManager(
            total_budget=self.config.total_budget, weights=weights, estimator=self.estimator
        )

    @classmethod
    def from_project(
        cls, project_root: Union[str, Path], store: Storage, scope_id: int, **kwargs: Any
    ) -> "ContextSession":
        """Session configured from the project's .agent/context.yaml."""
        return cls(store, scope_id, config=load_config(project_root), **kwargs)

    @property
    def current_context(self) -> Optional[TaskContext]:
        return self.builder.current

    def set_calibration_weights(self, weights: Optional[Mapping[str, float]]) -> None:
        """Accuracy multipliers from an external calibration signal."""
        self.manager.weights = dict(weights or {})

    async def warm(self) -> int:
        """Warm the semantic cache. Returns the number of cached items."""
        if self.semantic_cache is None:
            return 0
        with self.metrics.timed("warm"):
            size = await self.semantic_cache.warm(self.store, self.scope_id)
        logger.info(f"Semantic cache warmed with {size} items for scope {self.scope_id}")
        return size

    async def on_tool_call(self, tool_name: str, args: Mapping[str, Any]) -> ContextInjection:
        """Run the full pipeline for one tool call.

        Never raises; an unexpected failure yields an empty injection.
        """
        try:
            return await self._inject(tool_name, args)
        except Exception as e:
            logger.warning(f"Context injection failed for '{tool_name}': {e}")
            return ContextInjection(text="")

    async def _inject(self, tool_name: str, args: Mapping[str, Any]) -> ContextInjection:
        self.shifter.record_tool_call(tool_name, args)
        shifted = await self.shifter.check_and_update_focus()

        context = await self.builder.analyze(tool_name, args)
        contradictions = detect_contradictions(
            context,
            context.semantic_matches,
            max_results=self.config.max_contradictions,
            semantic_min_similarity=self.config.semantic_contradiction_similarity,
            semantic_max_confidence=self.config.semantic_contradiction_max_confidence,
        )
        context = context.with_contradictions(contradictions)
        self.builder.set_current(context)

        signals = await self.collector.collect(context.keywords, self.shifter.recent_calls())

        with self.metrics.timed("assemble"):
            sections = self.manager.assemble(context, contradictions, signals)
        text = self.manager.to_text(sections)
        self.metrics.record_injection(len(sections), self.estimator.estimate(text))

        self.quality.set_context_files(f.path for f in context.relevant_files if f.path in text)

        return ContextInjection(
            text=text,
            sections=sections,
            contradictions=contradictions,
            task_context=context,
            signals=signals,
            focus_shifted=shifted,
        )

    async def deep_contradictions(self) -> list[Contradiction]:
        """Keyword-overlap check of the current context against stored failures."""
        context = self.builder.current
        if context is None:
            return []
        return await detect_deep_contradictions(
            self.store, self.scope_id, context.keywords, self.config.max_contradictions
        )

    async def persist_contradictions(self, contradictions: list[Contradiction], current_action: str) -> int:
        """Record contradiction alerts. Returns how many were written."""
        written = 0
        for contradiction in contradictions:
            if await persist_contradiction(
                self.store, self.scope_id, self.session_id, contradiction, current_action
            ):
                written += 1
        return written

    def record_file_access(self, path: str) -> bool:
        """Record a file access; True when the injected context predicted it."""
        return self.quality.record_file_access(path)

    def should_refresh_context(self) -> bool:
        return self.quality.should_refresh_context()

    def reset(self) -> None:
        """Drop every piece of session state."""
        self.shifter.reset()
        self.quality.reset()
        self.builder.clear()
        self.prediction_cache.clear()
        if self.semantic_cache is not None:
            self.semantic_cache.reset()
        self.metrics.reset()
