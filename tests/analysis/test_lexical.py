# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Tests for lexical analysis of tool-call arguments."""

import pytest

from knowledge_context.analysis.lexical import (
    analyze_call,
    detect_task_type,
    extract_domains,
    extract_files,
    extract_keywords,
    extract_path_terms,
    tokenize,
)
from knowledge_context.analysis.tools import ToolVocabulary
from knowledge_context.schemas import TaskType


class TestTokenize:
    """Tests for free-text tokenization."""

    def test_drops_stop_words_and_short_tokens(self):
        """Stop words and tokens under three characters are removed."""
        assert tokenize("Fix the JWT refresh-token race!") == ["fix", "jwt", "refresh", "token", "race"]

    def test_empty_text(self):
        assert tokenize("") == []


class TestExtractPathTerms:
    """Tests for topical terms derived from file paths."""

    def test_splits_camel_case_and_strips_extension(self):
        """camelCase directories and hyphenated names split into terms."""
        assert extract_path_terms("src/authService/token-store.ts") == ["auth", "service", "token", "store"]

    def test_skips_structural_directories(self):
        assert extract_path_terms("node_modules/lib/billing.py") == ["billing"]


class TestExtractKeywords:
    """Tests for keyword extraction."""

    def test_check_tool_adds_edit_hint(self):
        """A file check implies the agent is about to edit."""
        keywords = extract_keywords("memory_check", {"files": ["src/auth/jwt.ts"]})

        assert keywords == ["auth", "jwt", "edit"]

    def test_issue_tool_adds_issue_hint(self):
        keywords = extract_keywords("memory_issue", {"title": "Login crash"})

        assert keywords == ["login", "crash", "issue"]

    def test_keywords_are_deduplicated_in_order(self):
        keywords = extract_keywords(
            "memory_query", {"query": "login token", "path": "src/login/token.ts"}
        )

        assert keywords == ["login", "token"]

    def test_custom_tool_prefix(self):
        """Hints follow the configured tool prefix."""
        tools = ToolVocabulary(prefix="kb_")

        assert extract_keywords("kb_check", {}, tools) == ["edit"]
        assert extract_keywords("memory_check", {}, tools) == []

    def test_ignores_non_string_fields(self):
        assert extract_keywords("memory_query", {"query": 42, "files": [None, 3]}) == []


class TestExtractFiles:
    """Tests for touched-file extraction."""

    def test_collects_all_path_sources(self):
        """path, files and a JSON ``input`` payload all contribute."""
        files = extract_files(
            {
                "path": "a.py",
                "files": ["a.py", "b.py"],
                "input": '{"file_path": "c.py"}',
            }
        )

        assert files == ["a.py", "b.py", "c.py"]

    def test_file_path_alias(self):
        assert extract_files({"file_path": "src/x.ts"}) == ["src/x.ts"]

    def test_malformed_input_is_ignored(self):
        """Unparseable JSON never raises."""
        assert extract_files({"input": "not json {"}) == []


class TestDetectTaskType:
    """Tests for task-type classification."""

    def test_bugfix(self):
        assert detect_task_type(["fix", "login", "crash"]) is TaskType.BUGFIX

    def test_majority_wins_over_single_hit(self):
        assert detect_task_type(["fix", "bug", "add"]) is TaskType.BUGFIX

    def test_prefix_matching(self):
        """Keywords match when they start with a pattern."""
        assert detect_task_type(["refactoring"]) is TaskType.REFACTOR

    def test_tie_goes_to_first_declared_type(self):
        assert detect_task_type(["add", "refactor"]) is TaskType.FEATURE

    def test_shared_pattern_goes_to_first_declared_type(self):
        """'build' belongs to both feature and configuration."""
        assert detect_task_type(["build"]) is TaskType.FEATURE

    @pytest.mark.parametrize("keywords", [[], ["jwt", "token"]])
    def test_unknown_without_hits(self, keywords):
        assert detect_task_type(keywords) is TaskType.UNKNOWN


class TestExtractDomains:
    """Tests for domain tags."""

    def test_skips_structural_and_short_directories(self):
        domains = extract_domains(["src/auth/jwt.ts", "tests/billing/invoice_test.py", "lib/ui/x.ts"])

        assert domains == ["auth", "billing"]

    def test_nested_source_directories(self):
        assert extract_domains(["src/lib/auth/index.ts"]) == ["auth"]

    def test_capped_at_five(self):
        domains = extract_domains(["alpha/beta/gamma/delta/epsilon/zeta/f.py"])

        assert domains == ["alpha", "beta", "gamma", "delta", "epsilon"]


class TestAnalyzeCall:
    """Tests for the full lexical pass."""

    def test_full_analysis(self):
        analysis = analyze_call(
            "memory_query", {"query": "fix login crash", "path": "src/auth/login.ts"}
        )

        assert analysis.keywords == ["fix", "login", "crash", "auth"]
        assert analysis.files == ["src/auth/login.ts"]
        assert analysis.domains == ["auth"]
        assert analysis.task_type is TaskType.BUGFIX

    def test_empty_arguments(self):
        analysis = analyze_call("memory_query", {})

        assert analysis.keywords == []
        assert analysis.files == []
        assert analysis.task_type is TaskType.UNKNOWN
