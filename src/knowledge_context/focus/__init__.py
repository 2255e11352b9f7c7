# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Focus divergence and injection quality tracking."""

from knowledge_context.focus.quality import QualityMetrics, QualityTracker
from knowledge_context.focus.shifter import FocusShifter, FocusSnapshot, jaccard

__all__ = ["FocusShifter", "FocusSnapshot", "QualityMetrics", "QualityTracker", "jaccard"]
