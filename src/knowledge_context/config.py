# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Context engine configuration.

This module provides:
- ContextConfig dataclass holding every threshold, cooldown and budget
- load_config() to parse the ``context:`` section of .agent/context.yaml

Values read from the file are type-checked and clamped to hard limits, so a
hostile or broken repository config cannot disable the budget or make the
engine scan unbounded caches.
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Union

import yaml

CONFIG_RELATIVE_PATH = Path(".agent") / "context.yaml"

# Hard limits, not overridable from the config file: (min, max)
LIMITS: dict[str, tuple[float, float]] = {
    "total_budget": (200, 16000),
    "cache_max_size": (2, 5000),
    "similarity_threshold": (0.0, 1.0),
    "semantic_contradiction_similarity": (0.0, 1.0),
    "semantic_contradiction_max_confidence": (0, 10),
    "max_contradictions": (1, 10),
    "focus_window_size": (2, 50),
    "focus_divergence_threshold": (0.0, 1.0),
    "focus_min_calls": (1, 50),
    "focus_cooldown_seconds": (0, 3600),
    "quality_refresh_cooldown_seconds": (0, 3600),
    "quality_miss_threshold": (1, 100),
    "quality_min_accesses": (1, 100),
    "quality_low_hit_rate": (0.0, 1.0),
    "quality_low_hit_min_accesses": (1, 100),
    "quality_history_size": (1, 500),
    "trajectory_window": (3, 100),
    "prediction_cache_ttl_seconds": (0, 3600),
    "prediction_cache_max_size": (1, 10000),
}


@dataclass
class ContextConfig:
    """Tunables for retrieval, tracking and assembly.

    Attributes:
        total_budget: Maximum estimated tokens of the assembled context.
        cache_max_size: Items held by the semantic cache (split evenly
            between learnings and decisions).
        similarity_threshold: Minimum cosine similarity of a semantic match.
        semantic_contradiction_similarity: Similarity a semantic decision
            match needs to be raised as a contradiction.
        semantic_contradiction_max_confidence: Highest stored confidence of
            such a match.
        max_contradictions: Contradictions returned per task.
        focus_window_size: Sliding window of recent tool calls.
        focus_divergence_threshold: Weighted Jaccard below which focus shifts.
        focus_min_calls: Calls needed before divergence is considered.
        focus_cooldown_seconds: Minimum time between automatic focus updates.
        quality_refresh_cooldown_seconds: Minimum time between refreshes.
        quality_miss_threshold: Consecutive misses that force a refresh.
        quality_min_accesses: Accesses needed before misses count.
        quality_low_hit_rate: Hit rate below which a refresh is recommended.
        quality_low_hit_min_accesses: Accesses needed for the hit-rate rule.
        quality_history_size: Accessed files remembered.
        trajectory_window: Tool calls considered by the trajectory analyzer.
        prediction_cache_ttl_seconds: Lifetime of a cached next-action
            prediction.
        prediction_cache_max_size: Cached trigrams.
        tool_prefix: Common prefix of the knowledge-store tool names.
    """

    total_budget: int = 2000
    cache_max_size: int = 500
    similarity_threshold: float = 0.3
    semantic_contradiction_similarity: float = 0.7
    semantic_contradiction_max_confidence: int = 2
    max_contradictions: int = 3
    focus_window_size: int = 5
    focus_divergence_threshold: float = 0.3
    focus_min_calls: int = 3
    focus_cooldown_seconds: float = 60.0
    quality_refresh_cooldown_seconds: float = 30.0
    quality_miss_threshold: int = 3
    quality_min_accesses: int = 3
    quality_low_hit_rate: float = 0.3
    quality_low_hit_min_accesses: int = 5
    quality_history_size: int = 20
    trajectory_window: int = 10
    prediction_cache_ttl_seconds: float = 60.0
    prediction_cache_max_size: int = 100
    tool_prefix: str = "memory_"


def _coerce(name: str, raw: Any, default: Any) -> Any:
    """Validate one numeric setting; fall back to the default on bad types."""
    # bool is an int subclass, reject it explicitly
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return default
    low, high = LIMITS[name]
    value = max(low, min(raw, high))
    return int(value) if isinstance(default, int) else float(value)


def load_config(project_root: Union[str, Path]) -> ContextConfig:
    """Load context configuration from .agent/context.yaml.

    Args:
        project_root: Path to the project root directory

    Returns:
        ContextConfig with settings from the config file or defaults
    """
    config_path = Path(project_root) / CONFIG_RELATIVE_PATH

    if not config_path.exists():
        return ContextConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (yaml.YAMLError, IOError):
        return ContextConfig()

    section = data.get("context", {}) if isinstance(data, dict) else {}
    if not isinstance(section, dict):
        return ContextConfig()

    defaults = ContextConfig()
    values: dict[str, Any] = {}
    for f in fields(ContextConfig):
        if f.name not in section:
            continue
        default = getattr(defaults, f.name)
        if f.name in LIMITS:
            values[f.name] = _coerce(f.name, section[f.name], default)
        elif isinstance(section[f.name], type(default)):
            values[f.name] = section[f.name]

    return ContextConfig(**values)
