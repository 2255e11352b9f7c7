# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Peripheral session signals and their collector."""

from knowledge_context.intelligence.collector import IntelligenceCollector
from knowledge_context.intelligence.prediction_cache import PredictionCache
from knowledge_context.intelligence.providers import (
    SIGNAL_PROVIDER_VERSION,
    BehavioralProfile,
    BudgetOverrideLoader,
    ImpactStatsProvider,
    NextActionPredictor,
    StalenessTracker,
    StoredAgentProfile,
    StoredBudgetOverrides,
    StoredImpactStats,
    StoredStalenessTracker,
    StoredStrategyCatalog,
    StoredWorkflowPredictor,
    StrategyCatalog,
)

__all__ = [
    "SIGNAL_PROVIDER_VERSION",
    "BehavioralProfile",
    "BudgetOverrideLoader",
    "ImpactStatsProvider",
    "IntelligenceCollector",
    "NextActionPredictor",
    "PredictionCache",
    "StalenessTracker",
    "StoredAgentProfile",
    "StoredBudgetOverrides",
    "StoredImpactStats",
    "StoredStalenessTracker",
    "StoredStrategyCatalog",
    "StoredWorkflowPredictor",
    "StrategyCatalog",
]
