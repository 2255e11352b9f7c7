# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""
Tests for the task context builder.

Covers full-text retrieval, the substring fallback when full-text indexes
are missing, semantic merging and degradation on a store without tables.
"""

import pytest

from knowledge_context.observability.metrics import ContextMetrics
from knowledge_context.retrieval.semantic_cache import SemanticCache
from knowledge_context.retrieval.task_context import TaskContextBuilder, fts_query
from knowledge_context.schemas import OutcomeStatus, TaskType


class TestFtsQuery:
    def test_terms_are_quoted_and_or_joined(self):
        assert fts_query(["jwt", 'say "hi"']) == '"jwt" OR "say ""hi"""'

    def test_empty_terms_skipped(self):
        assert fts_query(["", "jwt"]) == '"jwt"'


class TestFullTextRetrieval:
    """Tests against a store with full-text indexes."""

    @pytest.mark.asyncio
    async def test_direct_file_match_scores_highest(self, store, seed, scope_id):
        await seed.file("src/auth/jwt.ts", fragility=8, purpose="JWT verification")
        await seed.file("src/auth/session.ts", fragility=2, purpose="Session cookies for jwt users")
        builder = TaskContextBuilder(store, scope_id)

        context = await builder.analyze("memory_check", {"files": ["src/auth/jwt.ts"]})

        assert context.relevant_files[0].path == "src/auth/jwt.ts"
        assert context.relevant_files[0].score == 1.0
        assert [f.path for f in context.relevant_files].count("src/auth/jwt.ts") == 1
        session = next(f for f in context.relevant_files if f.path == "src/auth/session.ts")
        assert session.score == 0.6

    @pytest.mark.asyncio
    async def test_affecting_decisions_failed_first(self, store, seed, scope_id):
        pending = await seed.decision("Cache JWKS keys", affects="src/auth/jwt.ts", decided_at="2025-02-01")
        failed = await seed.decision(
            "Verify tokens in middleware", outcome_status="failed", affects="src/auth/jwt.ts",
            decided_at="2025-01-01",
        )
        builder = TaskContextBuilder(store, scope_id)

        context = await builder.analyze("memory_check", {"files": ["src/auth/jwt.ts"]})

        assert [d.id for d in context.relevant_decisions[:2]] == [failed, pending]
        assert context.relevant_decisions[0].score == 1.0
        assert context.relevant_decisions[0].outcome_status is OutcomeStatus.FAILED
        assert context.relevant_decisions[1].score == 0.8

    @pytest.mark.asyncio
    async def test_learnings_and_issues(self, store, seed, scope_id):
        learning = await seed.learning("JWT refresh gotcha", "Refresh tokens race on parallel requests")
        issue = await seed.issue("JWT expiry not enforced", severity=8)
        await seed.issue("JWT clock skew", status="closed")
        builder = TaskContextBuilder(store, scope_id)

        context = await builder.analyze("memory_query", {"query": "jwt expiry"})

        assert [(k.id, k.score) for k in context.relevant_learnings] == [(learning, 0.6)]
        assert [(i.id, i.score) for i in context.relevant_issues] == [(issue, 0.7)]

    @pytest.mark.asyncio
    async def test_global_learnings_included(self, store, seed, scope_id):
        learning = await seed.learning("Prefer jwt libraries", global_scope=True)
        builder = TaskContextBuilder(store, scope_id)

        context = await builder.analyze("memory_query", {"query": "jwt"})

        assert [k.id for k in context.relevant_learnings] == [learning]

    @pytest.mark.asyncio
    async def test_error_fixes_for_bugfix_tasks(self, store, seed, scope_id):
        await seed.error_fix("TypeError: token undefined", "Guard missing token", confidence=0.8)
        await seed.error_fix("Flaky retry", "Unclear", confidence=0.3)
        builder = TaskContextBuilder(store, scope_id)

        context = await builder.analyze("memory_query", {"query": "fix jwt crash"})

        assert context.task_type is TaskType.BUGFIX
        assert [e.signature for e in context.error_fixes] == ["TypeError: token undefined"]

    @pytest.mark.asyncio
    async def test_no_error_fixes_for_other_tasks(self, store, seed, scope_id):
        await seed.error_fix("TypeError: token undefined", "Guard missing token")
        builder = TaskContextBuilder(store, scope_id)

        context = await builder.analyze("memory_query", {"query": "explore jwt"})

        assert context.error_fixes == []

    @pytest.mark.asyncio
    async def test_candidate_caps(self, store, seed, scope_id):
        for i in range(12):
            await seed.file(f"src/auth/jwt{i}.ts", purpose="jwt helper")
            await seed.learning(f"jwt note {i}")
        builder = TaskContextBuilder(store, scope_id)

        context = await builder.analyze("memory_query", {"query": "jwt helper note"})

        assert len(context.relevant_files) <= 8
        assert len(context.relevant_learnings) <= 5

    @pytest.mark.asyncio
    async def test_current_context_replaced_and_cleared(self, store, scope_id):
        builder = TaskContextBuilder(store, scope_id)

        first = await builder.analyze("memory_query", {"query": "jwt"})
        second = await builder.analyze("memory_query", {"query": "billing"})

        assert builder.current is second
        assert builder.current is not first
        builder.clear()
        assert builder.current is None


class TestSubstringFallback:
    """Tests against a store without full-text indexes."""

    @pytest.mark.asyncio
    async def test_learnings_fall_back_to_substring(self, store_without_fts, seed_without_fts, scope_id):
        learning = await seed_without_fts.learning("JWT refresh gotcha", "Refresh tokens race")
        issue = await seed_without_fts.issue("JWT expiry not enforced")
        builder = TaskContextBuilder(store_without_fts, scope_id)

        context = await builder.analyze("memory_query", {"query": "jwt"})

        assert [(k.id, k.score) for k in context.relevant_learnings] == [(learning, 0.4)]
        assert [(i.id, i.score) for i in context.relevant_issues] == [(issue, 0.5)]
        assert "learnings" in builder.last_metrics.fallbacks
        assert builder.last_metrics.degraded == []

    @pytest.mark.asyncio
    async def test_files_fall_back_to_substring(self, store_without_fts, seed_without_fts, scope_id):
        await seed_without_fts.file("src/billing/invoice.ts", fragility=3)
        builder = TaskContextBuilder(store_without_fts, scope_id)

        context = await builder.analyze("memory_query", {"query": "invoice"})

        assert [(f.path, f.score) for f in context.relevant_files] == [("src/billing/invoice.ts", 0.4)]


class TestDegradation:
    """Tests for a store that cannot answer anything."""

    @pytest.mark.asyncio
    async def test_missing_tables_yield_empty_context(self, empty_store, scope_id):
        metrics = ContextMetrics()
        builder = TaskContextBuilder(empty_store, scope_id, metrics=metrics)

        context = await builder.analyze("memory_check", {"files": ["src/auth/jwt.ts"], "query": "fix jwt"})

        assert context.is_empty
        assert context.task_type is TaskType.BUGFIX
        assert "error_fixes" in builder.last_metrics.degraded
        assert metrics.get_stats()["counters"]["lookups_degraded"] >= 1
        assert metrics.get_stats()["latencies"]["analyze"]["count"] == 1


class TestSemanticMerge:
    """Tests for merging semantic matches behind keyword matches."""

    @pytest.mark.asyncio
    async def test_semantic_only_learning_fills_remaining_slots(self, store, seed, embedder, scope_id):
        keyword_hit = await seed.learning(
            "Billing invoice rounding", embedding=embedder.blob("billing invoice")
        )
        semantic_only = await seed.learning(
            "Payment retries", "Retry payments with backoff", embedding=embedder.blob("billing invoice stripe")
        )
        cache = SemanticCache(embedder)
        await cache.warm(store, scope_id)
        builder = TaskContextBuilder(store, scope_id, semantic_cache=cache)

        context = await builder.analyze("memory_query", {"query": "billing invoice"})

        ids = [k.id for k in context.relevant_learnings]
        assert ids == [keyword_hit, semantic_only]
        merged = context.relevant_learnings[1]
        similarity = next(m.similarity for m in context.semantic_matches if m.id == semantic_only)
        assert merged.score == pytest.approx(similarity * 0.6)
        assert builder.last_metrics.semantic_matches == 2

    @pytest.mark.asyncio
    async def test_semantic_decision_is_pending(self, store, seed, embedder, scope_id):
        decision = await seed.decision(
            "Adopt webhooks", "Poll less", outcome_status="failed", embedding=embedder.blob("stripe invoice")
        )
        cache = SemanticCache(embedder)
        await cache.warm(store, scope_id)
        builder = TaskContextBuilder(store, scope_id, semantic_cache=cache)

        context = await builder.analyze("memory_query", {"query": "stripe invoice"})

        merged = next(d for d in context.relevant_decisions if d.id == decision)
        assert merged.outcome_status is OutcomeStatus.PENDING
        assert merged.score == pytest.approx(0.6, rel=1e-5)


class TestOutOfRangeRows:
    """Stored ratings outside their ranges are clamped, not fatal."""

    @pytest.mark.asyncio
    async def test_ratings_clamped(self, store, seed, scope_id):
        await seed.file("src/auth/jwt.ts", fragility=12, purpose="JWT verification")
        learning = await seed.learning("JWT refresh race", confidence=40)
        await seed.issue("JWT refresh leak", severity=15)
        await seed.error_fix("TypeError: jwt undefined", "Guard the token", confidence=3.5)
        builder = TaskContextBuilder(store, scope_id)

        context = await builder.analyze(
            "memory_query", {"query": "fix jwt refresh", "path": "src/auth/jwt.ts"}
        )

        assert context.relevant_files[0].fragility == 10
        assert [(k.id, k.confidence) for k in context.relevant_learnings] == [(learning, 10)]
        assert context.relevant_issues[0].severity == 10
        assert context.error_fixes[0].confidence == 1.0
