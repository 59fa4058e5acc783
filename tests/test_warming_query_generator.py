"""
Tests for warming query generation, validation and deduplication.
"""
from datetime import datetime

import pytest

from caching.warming_query_generator import (
    BUSINESS_HOURS_QUERIES, DOMAIN_QUERIES, FREQUENT_QUERIES, MAX_QUERY_LENGTH, OFF_HOURS_QUERIES,
    infer_query_type, text_similarity
)
from caching.warming_strategy_manager import WarmingQuery
from utils.exceptions import StrategyNotFoundError


def record(ttl_manager, cache_key, text, count, content_type="search", hit=True, session="s1"):
    for _ in range(count):
        ttl_manager.record_access(cache_key, session, 10.0, hit, original_key=text, content_type=content_type)


def query(text, priority=5, value=1.0):
    return WarmingQuery(text=text, type="search", priority=priority, estimated_value=value, source="manual")


class TestUsagePatternQueries:

    @pytest.mark.asyncio
    async def test_only_frequent_recent_patterns(self, query_generator, ttl_manager, pattern_ager):
        record(ttl_manager, "search:opt:a", "popular query", 12)
        record(ttl_manager, "search:opt:b", "rare query", 3)
        record(ttl_manager, "search:opt:c", "old popular query", 12)
        pattern_ager(ttl_manager, "search:opt:c", 200)

        queries = await query_generator.generate_usage_pattern_queries(
            {"min_access_count": 10, "lookback_hours": 168, "max_queries": 50}
        )

        assert [q.text for q in queries] == ["popular query"]
        assert queries[0].source == "usage_pattern"
        assert queries[0].type == "search"
        assert 1 <= queries[0].priority <= 10

    @pytest.mark.asyncio
    async def test_sorted_by_value_and_truncated(self, query_generator, ttl_manager, pattern_ager):
        record(ttl_manager, "k1", "first", 10)
        record(ttl_manager, "k2", "second", 100)
        record(ttl_manager, "k3", "third", 10)
        pattern_ager(ttl_manager, "k3", 5)

        queries = await query_generator.generate_usage_pattern_queries(
            {"min_access_count": 10, "lookback_hours": 168, "max_queries": 2}
        )

        assert [q.text for q in queries] == ["second", "first"]

    @pytest.mark.asyncio
    async def test_patterns_without_request_text_ignored(self, query_generator, ttl_manager):
        for _ in range(20):
            ttl_manager.record_access("anon", "s", 1.0, True)

        assert await query_generator.generate_usage_pattern_queries({"min_access_count": 1}) == []


class TestStaticQueries:

    @pytest.mark.asyncio
    async def test_frequency_queries(self, query_generator):
        queries = await query_generator.generate_frequency_queries({"max_queries": 30})

        assert [q.text for q in queries] == FREQUENT_QUERIES
        assert queries[0].priority == 8 and queries[0].estimated_value == 9
        assert queries[-1].priority == 4 and queries[-1].estimated_value == 0

    @pytest.mark.asyncio
    async def test_predictive_business_hours(self, query_generator):
        queries = await query_generator.generate_predictive_queries({}, current_time=datetime(2024, 3, 5, 10))

        assert [q.text for q in queries] == BUSINESS_HOURS_QUERIES

    @pytest.mark.asyncio
    async def test_predictive_off_hours(self, query_generator):
        queries = await query_generator.generate_predictive_queries({}, current_time=datetime(2024, 3, 5, 22))

        assert [q.text for q in queries] == OFF_HOURS_QUERIES
        assert all(q.source == "predictive" for q in queries)

    @pytest.mark.asyncio
    async def test_domain_queries_carry_context(self, query_generator):
        queries = await query_generator.generate_domain_queries(
            {"domains": ["technical", "unknown"], "queries_per_domain": 2}
        )

        assert [q.text for q in queries] == DOMAIN_QUERIES["technical"][:2]
        assert all(q.context == "technical" for q in queries)

    @pytest.mark.asyncio
    async def test_unknown_strategy(self, query_generator):
        with pytest.raises(StrategyNotFoundError):
            await query_generator.generate_for_strategy("nope", {})

    @pytest.mark.asyncio
    async def test_dispatch(self, query_generator):
        queries = await query_generator.generate_for_strategy("frequency_analysis", {"max_queries": 3})

        assert len(queries) == 3


class TestProactiveRefreshQueries:

    @pytest.mark.asyncio
    async def test_flagged_popular_pattern(self, query_generator, ttl_manager):
        record(ttl_manager, "search:opt:hot", "hot query", 6)
        ttl_manager.flag_for_refresh("search:opt:hot")

        queries = await query_generator.generate_proactive_refresh_queries(
            {"refresh_threshold": 0.8, "min_usage_count": 5}
        )

        assert [q.text for q in queries] == ["hot query"]
        assert queries[0].force_refresh
        assert queries[0].source == "proactive_refresh"

    @pytest.mark.asyncio
    async def test_aged_pattern_qualifies(self, query_generator, ttl_manager, pattern_ager):
        record(ttl_manager, "search:opt:aged", "aged query", 6)
        pattern_ager(ttl_manager, "search:opt:aged", 0.9)

        queries = await query_generator.generate_proactive_refresh_queries({})

        assert [q.text for q in queries] == ["aged query"]

    @pytest.mark.asyncio
    async def test_unpopular_or_fresh_patterns_skipped(self, query_generator, ttl_manager):
        record(ttl_manager, "search:opt:fresh", "fresh query", 6)
        record(ttl_manager, "search:opt:rare", "rare query", 2)
        ttl_manager.flag_for_refresh("search:opt:rare")

        assert await query_generator.generate_proactive_refresh_queries({}) == []


class TestContextualQueries:

    @pytest.mark.asyncio
    async def test_weekday_business_hours_coding_under_load(self, query_generator):
        queries = await query_generator.generate_contextual_queries(
            current_time=datetime(2024, 3, 5, 10),
            user_activity="coding",
            system_load=0.9,
            recent_queries=["React state", "python api client"]
        )

        texts = [q.text for q in queries]
        assert "daily standup notes" in texts
        assert "function examples" in texts
        assert "performance optimization" in texts
        assert "React hooks patterns" in texts
        assert "API error handling" in texts

    @pytest.mark.asyncio
    async def test_weekend_idle(self, query_generator):
        queries = await query_generator.generate_contextual_queries(current_time=datetime(2024, 3, 9, 10))

        assert queries == []

    @pytest.mark.asyncio
    async def test_personalized(self, query_generator):
        queries = await query_generator.generate_personalized_queries(user_id="u1", max_queries=2)

        assert len(queries) == 2
        assert all(q.user_id == "u1" for q in queries)


class TestValidationAndDedup:

    def test_validate_queries(self, query_generator):
        queries = [
            query("fine"),
            query("   "),
            query("x" * (MAX_QUERY_LENGTH + 1)),
            query("bad priority", priority=11),
            query("negative", value=-1),
            WarmingQuery(text="from nowhere", type="search", priority=5, estimated_value=1, source="crawler"),
        ]

        valid, invalid = query_generator.validate_queries(queries)

        assert [q.text for q in valid] == ["fine"]
        assert [item["reason"] for item in invalid] == [
            "Empty query text", "Query text too long", "Invalid priority range", "Negative estimated value",
            "Unknown query source",
        ]

    def test_near_duplicates_dropped_first_wins(self, query_generator):
        queries = [
            query("react hooks implementation guide today", value=1),
            query("React hooks implementation guide today", value=2),
            query("database connection pooling"),
        ]

        result = query_generator.deduplicate_queries(queries)

        assert [q.text for q in result] == ["react hooks implementation guide today", "database connection pooling"]
        assert result[0].estimated_value == 1

    @pytest.mark.parametrize("threshold", [0.3, 0.5, 0.8])
    def test_no_pair_above_threshold_survives(self, query_generator, threshold):
        texts = [
            "react hooks implementation", "react hooks usage", "react state hooks implementation",
            "typescript interface definition", "typescript interface", "deployment configuration",
            "deployment configuration guide", "hooks",
        ]

        result = query_generator.deduplicate_queries([query(t) for t in texts], threshold)

        normalized = [q.text.lower().strip() for q in result]
        for i, first in enumerate(normalized):
            for second in normalized[i + 1:]:
                assert text_similarity(first, second) <= threshold

    def test_text_similarity(self):
        assert text_similarity("a b", "a b") == 1.0
        assert text_similarity("a b", "c d") == 0.0
        assert text_similarity("", "") == 0.0
        assert text_similarity("a b c", "a b d") == pytest.approx(0.5)

    @pytest.mark.parametrize("text,expected", [
        ("classify this ticket", "classification"),
        ("project context notes", "contextual"),
        ("embed this paragraph", "embedding"),
        ("how do I deploy", "search"),
    ])
    def test_infer_query_type(self, text, expected):
        assert infer_query_type(text) == expected

    def test_generation_statistics(self, query_generator, ttl_manager):
        record(ttl_manager, "k1", "first", 5)

        stats = query_generator.get_generation_statistics()

        assert stats["total_patterns_analyzed"] == 1
        assert stats["recent_patterns"] == 1
