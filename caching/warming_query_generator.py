"""
Cache Warming Query Generation
Builds candidate warming queries for each strategy and filters them.

Features:
- Usage-pattern queries scored by access count, recency and hit rate
- Frequency, predictive (time of day) and domain topic lists
- Proactive refresh queries for popular entries past their stale threshold
- Personalized and contextual query generation
- Validation and Jaccard-similarity deduplication
"""

import logging
import math
from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple

from caching.adaptive_ttl_manager import AdaptiveTTLManager, SECONDS_PER_DAY, SECONDS_PER_HOUR, hours_since
from caching.warming_strategy_manager import QUERY_SOURCES, WarmingQuery
from utils.exceptions import StrategyNotFoundError

logger = logging.getLogger(__name__)

MAX_QUERY_LENGTH = 500
DEFAULT_SIMILARITY_THRESHOLD = 0.8
BUSINESS_HOURS = range(9, 18)

FREQUENT_QUERIES = [
    "React hooks implementation",
    "TypeScript interface definition",
    "Next.js API routes setup",
    "Database connection configuration",
    "Authentication middleware",
    "Error handling patterns",
    "Testing framework setup",
    "Performance optimization techniques",
    "Security best practices",
    "Deployment configuration",
]

BUSINESS_HOURS_QUERIES = [
    "code review best practices",
    "API documentation",
    "debugging techniques",
    "performance monitoring",
    "integration testing",
]

OFF_HOURS_QUERIES = [
    "architecture patterns",
    "design principles",
    "technology roadmap",
    "learning resources",
    "industry trends",
]

DOMAIN_QUERIES = {
    "technical": [
        "function implementation",
        "class definition",
        "module structure",
        "dependency management",
        "build configuration",
    ],
    "business": [
        "product requirements",
        "user stories",
        "feature specifications",
        "acceptance criteria",
        "business logic",
    ],
    "operational": [
        "deployment process",
        "monitoring setup",
        "backup procedures",
        "scaling strategies",
        "maintenance tasks",
    ],
}

PERSONALIZED_QUERIES = [
    "recent code changes",
    "my pull requests",
    "assigned issues",
    "team notifications",
    "project status",
]

RELATED_QUERIES = {
    "react": "React hooks patterns",
    "typescript": "TypeScript advanced types",
    "api": "API error handling",
}


def infer_query_type(query_text: str) -> str:
    """Guess the content type of a query from its wording."""
    if "classify" in query_text or "type" in query_text:
        return "classification"
    if "context" in query_text or "memory" in query_text:
        return "contextual"
    if "embed" in query_text or "vector" in query_text:
        return "embedding"
    return "search"


def text_similarity(text1: str, text2: str) -> float:
    """Jaccard similarity of the whitespace-separated word sets."""
    words1 = set(text1.split())
    words2 = set(text2.split())
    union = words1 | words2
    if not union:
        return 0.0
    return len(words1 & words2) / len(union)


def estimate_query_value(pattern: Dict[str, Any]) -> float:
    """Value of re-warming a pattern: access count, recency and hit rate."""
    access_score = math.log10(pattern["access_count"] + 1) * 2
    recency_score = max(0.0, 10 - hours_since(pattern["last_accessed"]))
    hit_rate_score = pattern["hit_rate"] * 5
    return access_score + recency_score + hit_rate_score


def calculate_priority_from_pattern(pattern: Dict[str, Any]) -> int:
    priority = 5.0
    priority += math.log10(pattern["access_count"] + 1)
    priority += max(0.0, 5 - hours_since(pattern["last_accessed"]) / 24)
    priority += pattern["hit_rate"] * 2
    return min(10, max(1, round(priority)))


class WarmingQueryGenerator:
    """Generates warming queries from usage patterns and static topic lists."""

    def __init__(self, ttl_manager: AdaptiveTTLManager):
        self.ttl_manager = ttl_manager

    async def generate_for_strategy(self, strategy_name: str, config: Dict[str, Any]) -> List[WarmingQuery]:
        """Dispatch to the generator for a strategy."""
        generators = {
            "usage_patterns": self.generate_usage_pattern_queries,
            "frequency_analysis": self.generate_frequency_queries,
            "predictive_warming": self.generate_predictive_queries,
            "domain_specific": self.generate_domain_queries,
            "proactive_refresh": self.generate_proactive_refresh_queries,
        }
        generator = generators.get(strategy_name)
        if generator is None:
            raise StrategyNotFoundError(strategy_name)
        return await generator(config)

    def _pattern_query(self, pattern: Dict[str, Any], source: str, force_refresh: bool = False) -> WarmingQuery:
        text = pattern["original_key"]
        return WarmingQuery(
            text=text,
            type=pattern.get("content_type") or infer_query_type(text),
            priority=calculate_priority_from_pattern(pattern),
            estimated_value=estimate_query_value(pattern),
            source=source,
            context=pattern.get("context"),
            force_refresh=force_refresh
        )

    async def generate_usage_pattern_queries(self, config: Dict[str, Any]) -> List[WarmingQuery]:
        """Queries for patterns accessed at least min_access_count times within the lookback window."""
        min_access_count = config.get("min_access_count", 10)
        lookback_hours = config.get("lookback_hours", 168)
        max_queries = config.get("max_queries", 50)

        queries = []
        for pattern in self.ttl_manager.export_patterns().values():
            if not pattern["original_key"]:
                continue
            if pattern["access_count"] < min_access_count:
                continue
            if hours_since(pattern["last_accessed"]) > lookback_hours:
                continue
            queries.append(self._pattern_query(pattern, "usage_pattern"))

        queries.sort(key=lambda q: q.estimated_value, reverse=True)
        return queries[:max_queries]

    async def generate_frequency_queries(self, config: Dict[str, Any]) -> List[WarmingQuery]:
        max_queries = config.get("max_queries", 30)
        return [
            WarmingQuery(
                text=text,
                type="search",
                priority=8 - index // 2,
                estimated_value=9 - index,
                source="frequency_analysis"
            )
            for index, text in enumerate(FREQUENT_QUERIES[:max_queries])
        ]

    async def generate_predictive_queries(self, config: Dict[str, Any],
                                          current_time: Optional[datetime] = None) -> List[WarmingQuery]:
        """Time-of-day conditioned queries: work topics in business hours, research topics otherwise."""
        max_queries = config.get("max_queries", 20)
        hour = (current_time or datetime.now()).hour
        candidates = BUSINESS_HOURS_QUERIES if hour in BUSINESS_HOURS else OFF_HOURS_QUERIES

        return [
            WarmingQuery(
                text=text,
                type="search",
                priority=7 - index,
                estimated_value=7 - index,
                source="predictive"
            )
            for index, text in enumerate(candidates[:max_queries])
        ]

    async def generate_domain_queries(self, config: Dict[str, Any]) -> List[WarmingQuery]:
        domains = config.get("domains", [])
        queries_per_domain = config.get("queries_per_domain", 10)

        queries = []
        for domain in domains:
            for text in DOMAIN_QUERIES.get(domain, [])[:queries_per_domain]:
                queries.append(WarmingQuery(
                    text=text,
                    type="search",
                    priority=6,
                    estimated_value=6,
                    source="manual",
                    context=domain
                ))
        return queries

    async def generate_proactive_refresh_queries(self, config: Dict[str, Any]) -> List[WarmingQuery]:
        """
        Refresh queries for popular entries. A pattern qualifies when it has at
        least min_usage_count accesses and was either flagged on the read path
        or has gone refresh_threshold of its base TTL without an access.
        """
        refresh_threshold = config.get("refresh_threshold", 0.8)
        min_usage_count = config.get("min_usage_count", 5)

        queries = []
        for pattern in self.ttl_manager.export_patterns().values():
            if not pattern["original_key"] or pattern["access_count"] < min_usage_count:
                continue

            base_seconds = SECONDS_PER_DAY
            content_type = pattern.get("content_type")
            if content_type in self.ttl_manager.policies:
                base_seconds = self.ttl_manager.get_policy(content_type).base_seconds

            age_fraction = hours_since(pattern["last_accessed"]) * SECONDS_PER_HOUR / base_seconds
            if pattern["refresh_recommended"] or age_fraction > refresh_threshold:
                queries.append(self._pattern_query(pattern, "proactive_refresh", force_refresh=True))

        queries.sort(key=lambda q: q.estimated_value, reverse=True)
        return queries

    async def generate_personalized_queries(self, user_id: Optional[str] = None,
                                            session_id: Optional[str] = None,
                                            max_queries: int = 10) -> List[WarmingQuery]:
        return [
            WarmingQuery(
                text=text,
                type="search",
                priority=8 - index,
                estimated_value=8 - index,
                source="manual",
                user_id=user_id,
                session_id=session_id
            )
            for index, text in enumerate(PERSONALIZED_QUERIES[:max_queries])
        ]

    async def generate_contextual_queries(self, current_time: Optional[datetime] = None,
                                          user_activity: Optional[str] = None,
                                          system_load: Optional[float] = None,
                                          recent_queries: Optional[List[str]] = None) -> List[WarmingQuery]:
        """Queries suggested by the current time, user activity, system load and recent queries."""
        now = current_time or datetime.now()
        queries: List[WarmingQuery] = []

        # Weekday business hours
        if now.hour in BUSINESS_HOURS and now.weekday() < 5:
            queries.extend(
                WarmingQuery(text=text, type="search", priority=7 - index,
                             estimated_value=7 - index, source="predictive")
                for index, text in enumerate(["daily standup notes", "code review checklist", "deployment status"])
            )

        if user_activity == "coding":
            queries.extend(
                WarmingQuery(text=text, type="search", priority=6 - index,
                             estimated_value=6 - index, source="predictive")
                for index, text in enumerate(["function examples", "best practices", "common patterns"])
            )

        if system_load is not None and system_load > 0.8:
            queries.append(WarmingQuery(
                text="performance optimization",
                type="search",
                priority=9,
                estimated_value=9,
                source="predictive"
            ))

        if recent_queries:
            queries.extend(self._generate_related_queries(recent_queries))

        return queries

    def _generate_related_queries(self, recent_queries: List[str]) -> List[WarmingQuery]:
        related = []
        for index, query in enumerate(recent_queries):
            terms = query.lower().split()
            for term, text in RELATED_QUERIES.items():
                if term in terms:
                    related.append(WarmingQuery(
                        text=text,
                        type="search",
                        priority=5 - index,
                        estimated_value=5 - index,
                        source="predictive"
                    ))
        return related

    def validate_queries(self, queries: List[WarmingQuery]) -> Tuple[List[WarmingQuery], List[Dict[str, Any]]]:
        """Split queries into valid ones and rejected ones with a reason."""
        valid: List[WarmingQuery] = []
        invalid: List[Dict[str, Any]] = []

        for query in queries:
            reason = None
            if not query.text or not query.text.strip():
                reason = "Empty query text"
            elif len(query.text) > MAX_QUERY_LENGTH:
                reason = "Query text too long"
            elif query.priority < 1 or query.priority > 10:
                reason = "Invalid priority range"
            elif query.estimated_value < 0:
                reason = "Negative estimated value"
            elif query.source not in QUERY_SOURCES:
                reason = "Unknown query source"

            if reason:
                logger.debug(f"Dropping warming query {query.text[:50]!r}: {reason}")
                invalid.append({"query": query, "reason": reason})
            else:
                valid.append(query)

        return valid, invalid

    def deduplicate_queries(self, queries: List[WarmingQuery],
                            similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> List[WarmingQuery]:
        """Drop queries too similar to an earlier one. The first occurrence wins."""
        deduplicated: List[WarmingQuery] = []
        processed: List[str] = []

        for query in queries:
            normalized = query.text.lower().strip()
            if any(text_similarity(normalized, seen) > similarity_threshold for seen in processed):
                continue
            deduplicated.append(query)
            processed.append(normalized)

        return deduplicated

    def get_generation_statistics(self) -> Dict[str, Any]:
        patterns = list(self.ttl_manager.export_patterns().values())
        if not patterns:
            return {
                "total_patterns_analyzed": 0,
                "high_value_patterns": 0,
                "recent_patterns": 0,
                "average_pattern_age_hours": 0,
            }

        ages = [hours_since(p["last_accessed"]) for p in patterns]
        return {
            "total_patterns_analyzed": len(patterns),
            "high_value_patterns": sum(1 for p in patterns if estimate_query_value(p) > 10),
            "recent_patterns": sum(1 for age in ages if age < 24),
            "average_pattern_age_hours": sum(ages) / len(patterns),
        }
