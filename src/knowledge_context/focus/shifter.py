# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Focus divergence detection over a sliding window of tool calls.

The shifter keeps the last few tool calls, derives a FocusSnapshot (files,
keywords, domains) from them and compares it with a baseline taken from the
first calls of the session. Similarity is weighted Jaccard:

    keywords x 0.6 + domains x 0.4

When it drops below the threshold (with enough calls recorded and outside
the cooldown) the new focus is persisted and becomes the baseline, so later
divergence is measured from the most recent stable point.
"""

import json
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional

from knowledge_context.analysis.lexical import analyze_call, extract_domains
from knowledge_context.analysis.tools import DEFAULT_TOOLS, ToolVocabulary
from knowledge_context.analysis.trajectory import ToolCallRecord
from knowledge_context.storage import BestEffortStore, Storage, best_effort

logger = logging.getLogger(__name__)

BASELINE_CALLS = 2
KEYWORD_WEIGHT = 0.6
DOMAIN_WEIGHT = 0.4
TRAJECTORY_HISTORY = 10
MAX_PERSISTED_TERMS = 10
FOCUS_DESCRIPTION = "Auto-detected from tool usage pattern"

Clock = Callable[[], float]


def jaccard(a: frozenset[str], b: frozenset[str]) -> float:
    """Jaccard similarity; two empty sets are identical."""
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


@dataclass(frozen=True)
class FocusSnapshot:
    files: frozenset[str] = field(default_factory=frozenset)
    keywords: frozenset[str] = field(default_factory=frozenset)
    domains: frozenset[str] = field(default_factory=frozenset)

    def similarity(self, other: "FocusSnapshot") -> float:
        return (
            jaccard(self.keywords, other.keywords) * KEYWORD_WEIGHT
            + jaccard(self.domains, other.domains) * DOMAIN_WEIGHT
        )


@dataclass(frozen=True)
class _WindowEntry:
    tool_name: str
    files: tuple[str, ...]
    keywords: tuple[str, ...]


class FocusShifter:
    """Detects when the session's topic moves away from its baseline.

    Example:
        >>> shifter = FocusShifter(store, scope_id=1)
        >>> shifter.record_tool_call("memory_query", {"query": "billing invoices"})
        >>> if await shifter.check_and_update_focus():
        ...     print(shifter.current_focus_area())
    """

    def __init__(
        self,
        store: "Storage | BestEffortStore",
        scope_id: int,
        window_size: int = 5,
        divergence_threshold: float = 0.3,
        min_calls: int = 3,
        cooldown_seconds: float = 60.0,
        clock: Clock = time.monotonic,
        tools: ToolVocabulary = DEFAULT_TOOLS,
        session_id: Optional[int] = None,
        history_size: int = TRAJECTORY_HISTORY,
    ):
        self.db = best_effort(store)
        self.scope_id = scope_id
        self.session_id = session_id
        self.divergence_threshold = divergence_threshold
        self.min_calls = min_calls
        self.cooldown_seconds = cooldown_seconds
        self.tools = tools
        self._clock = clock
        self._window: deque[_WindowEntry] = deque(maxlen=window_size)
        self._history: deque[ToolCallRecord] = deque(maxlen=history_size)
        self._baseline: Optional[FocusSnapshot] = None
        self._calls_recorded = 0
        self._last_update: Optional[float] = None

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_tool_call(self, tool_name: str, args: Mapping[str, Any]) -> None:
        """Add a tool call to the window. Callers record one call at a time."""
        analysis = analyze_call(tool_name, args, self.tools)
        self._window.append(
            _WindowEntry(
                tool_name=tool_name,
                files=tuple(analysis.files),
                keywords=tuple(analysis.keywords),
            )
        )
        self._history.append(ToolCallRecord(tool_name=tool_name, files=tuple(analysis.files)))
        self._calls_recorded += 1

        if self._calls_recorded <= BASELINE_CALLS:
            self._baseline = self.snapshot()

    def snapshot(self) -> FocusSnapshot:
        """Aggregate the current window."""
        return FocusSnapshot(
            files=frozenset(f for e in self._window for f in e.files),
            keywords=frozenset(k for e in self._window for k in e.keywords),
            domains=frozenset(self.current_domains()),
        )

    @property
    def baseline(self) -> Optional[FocusSnapshot]:
        return self._baseline

    # ------------------------------------------------------------------
    # Divergence
    # ------------------------------------------------------------------

    def _in_cooldown(self) -> bool:
        return (
            self._last_update is not None
            and self._clock() - self._last_update < self.cooldown_seconds
        )

    def has_focus_shifted(self) -> bool:
        """True when the window has diverged from the baseline."""
        if self._baseline is None or len(self._window) < self.min_calls:
            return False
        if self._in_cooldown():
            return False
        return self.snapshot().similarity(self._baseline) < self.divergence_threshold

    async def check_and_update_focus(self) -> bool:
        """Persist a new focus and re-anchor the baseline on divergence.

        Returns:
            True when a divergence was detected and the new focus has a name.
        """
        if not self.has_focus_shifted():
            return False

        area = self.current_focus_area()
        if area is None:
            return False

        current = self.snapshot()
        await self._persist_focus(area, current)

        self._baseline = current
        self._last_update = self._clock()
        logger.info(f"Focus shifted to: {area}")
        return True

    async def _persist_focus(self, area: str, snapshot: FocusSnapshot) -> None:
        cleared = await self.db.run(
            "UPDATE focus SET cleared_at = CURRENT_TIMESTAMP WHERE project_id = ? AND cleared_at IS NULL",
            (self.scope_id,),
        )
        inserted = await self.db.run(
            """INSERT INTO focus (project_id, session_id, area, description, files, keywords)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (
                self.scope_id,
                self.session_id,
                area,
                FOCUS_DESCRIPTION,
                json.dumps(sorted(snapshot.files)[:MAX_PERSISTED_TERMS]),
                json.dumps(self.current_keywords()[:MAX_PERSISTED_TERMS]),
            ),
        )
        if not (cleared.ok and inserted.ok):
            logger.warning(f"Could not persist focus '{area}': {inserted.error or cleared.error}")

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def current_keywords(self) -> list[str]:
        return _ordered(k for e in self._window for k in e.keywords)

    def current_files(self) -> list[str]:
        return _ordered(f for e in self._window for f in e.files)

    def current_domains(self) -> list[str]:
        return extract_domains(self.current_files())

    def current_focus_area(self) -> Optional[str]:
        """Human label of the current window, None when there is nothing to name."""
        domains = self.current_domains()
        if domains:
            return ", ".join(domains[:3])
        keywords = self.current_keywords()
        if keywords:
            return ", ".join(keywords[:5])
        return None

    def recent_tool_names(self) -> list[str]:
        return [e.tool_name for e in self._window]

    def recent_calls(self) -> list[ToolCallRecord]:
        """Longer call history used for trajectory analysis."""
        return list(self._history)

    def reset(self) -> None:
        self._window.clear()
        self._history.clear()
        self._baseline = None
        self._calls_recorded = 0
        self._last_update = None


def _ordered(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))
