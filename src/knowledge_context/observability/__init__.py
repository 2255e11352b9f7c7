# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Pipeline metrics."""

from knowledge_context.observability.metrics import ContextMetrics, LatencyStats

__all__ = ["ContextMetrics", "LatencyStats"]
