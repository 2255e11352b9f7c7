# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Lexical and trajectory analysis of tool calls (no I/O)."""

from knowledge_context.analysis.lexical import (
    LexicalAnalysis,
    analyze_call,
    detect_task_type,
    extract_domains,
    extract_files,
    extract_keywords,
)
from knowledge_context.analysis.tools import DEFAULT_TOOLS, ToolVocabulary
from knowledge_context.analysis.trajectory import ToolCallRecord, analyze_trajectory

__all__ = [
    "DEFAULT_TOOLS",
    "LexicalAnalysis",
    "ToolCallRecord",
    "ToolVocabulary",
    "analyze_call",
    "analyze_trajectory",
    "detect_task_type",
    "extract_domains",
    "extract_files",
    "extract_keywords",
]
