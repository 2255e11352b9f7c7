# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Trajectory pattern recognition over recent tool calls.

Labels the session as stuck, failing, exploring, confident or normal from a
short window of (tool name, files) records. Detectors run in that priority
order and the first match wins. Nothing is persisted; the label is
recomputed on every call.
"""

from dataclasses import dataclass, field
from typing import Optional, Sequence

from knowledge_context.analysis.tools import DEFAULT_TOOLS, ToolVocabulary
from knowledge_context.schemas import TrajectoryAnalysis, TrajectoryPattern

MAX_CALLS = 10
MIN_CALLS = 3
STUCK_CHECK_COUNT = 3
FAILING_WINDOW = 5
FAILING_ERROR_COUNT = 2
EXPLORATION_MIN_READS = 5
CONFIDENT_WINDOW = 5


@dataclass(frozen=True)
class ToolCallRecord:
    """A single recorded tool invocation."""

    tool_name: str
    files: tuple[str, ...] = field(default_factory=tuple)


def _detect_stuck(calls: Sequence[ToolCallRecord], tools: ToolVocabulary) -> Optional[TrajectoryAnalysis]:
    counts: dict[str, int] = {}
    for call in calls:
        if call.tool_name in tools.check_tools:
            for path in call.files:
                counts[path] = counts.get(path, 0) + 1

    for path, count in counts.items():
        if count >= STUCK_CHECK_COUNT:
            name = path.rsplit("/", 1)[-1]
            return TrajectoryAnalysis(
                pattern=TrajectoryPattern.STUCK,
                message=f"{name} checked {count} times, agent may be stuck",
                confidence=0.7,
                suggestion="Consider alternative approaches or broader exploration",
            )
    return None


def _detect_failing(calls: Sequence[ToolCallRecord], tools: ToolVocabulary) -> Optional[TrajectoryAnalysis]:
    errors = [
        c for c in calls[:FAILING_WINDOW] if tools.is_error_signal(c.tool_name, list(c.files))
    ]
    if len(errors) >= FAILING_ERROR_COUNT:
        return TrajectoryAnalysis(
            pattern=TrajectoryPattern.FAILING,
            message="Multiple error signals early in session",
            confidence=0.6,
            suggestion="Consider querying for known error fixes before proceeding",
        )
    return None


def _detect_exploration(calls: Sequence[ToolCallRecord], tools: ToolVocabulary) -> Optional[TrajectoryAnalysis]:
    if len(calls) < EXPLORATION_MIN_READS:
        return None
    first = calls[:MAX_CALLS]
    reads = sum(1 for c in first if c.tool_name in tools.read_tools)
    writes = sum(1 for c in first if c.tool_name in tools.write_tools)
    if reads >= EXPLORATION_MIN_READS and writes == 0:
        return TrajectoryAnalysis(
            pattern=TrajectoryPattern.EXPLORATION,
            message=f"{reads} reads, 0 writes: exploration phase",
            confidence=0.6,
            suggestion="May need more directed context. Try a context lookup with a plan intent.",
        )
    return None


def _detect_confident(calls: Sequence[ToolCallRecord], tools: ToolVocabulary) -> Optional[TrajectoryAnalysis]:
    for i in range(min(len(calls) - 1, CONFIDENT_WINDOW)):
        if calls[i].tool_name in tools.check_tools and calls[i + 1].tool_name in tools.write_tools:
            return TrajectoryAnalysis(
                pattern=TrajectoryPattern.CONFIDENT,
                message="Quick check-then-edit pattern, agent knows what to do",
                confidence=0.7,
            )
    return None


_DETECTORS = (_detect_stuck, _detect_failing, _detect_exploration, _detect_confident)


def analyze_trajectory(
    recent_calls: Sequence[ToolCallRecord],
    tools: ToolVocabulary = DEFAULT_TOOLS,
    max_calls: int = MAX_CALLS,
) -> TrajectoryAnalysis:
    """Label the session trajectory from its most recent tool calls.

    Args:
        recent_calls: Calls in chronological order. Only the last
            ``max_calls`` are considered.
        tools: Tool-name classes of the host.
        max_calls: Window size.

    Returns:
        The first matching pattern, or ``normal``.
    """
    calls = list(recent_calls)[-max_calls:]
    if len(calls) < MIN_CALLS:
        return TrajectoryAnalysis(
            pattern=TrajectoryPattern.NORMAL,
            message="Too early to analyze",
            confidence=0.0,
        )

    for detector in _DETECTORS:
        analysis = detector(calls, tools)
        if analysis is not None:
            return analysis

    return TrajectoryAnalysis(
        pattern=TrajectoryPattern.NORMAL,
        message="Normal workflow",
        confidence=0.5,
    )
