from .insights import InMemoryInsightsIndex, InsightsIndex, VectorStoreInsightsIndex
from .models import (
    CommitRange,
    FileInsightSummary,
    RetrievalFilter,
    RetrievalQuery,
    RetrievalResult,
    RetrievedChunk,
    ReviewInsight,
    ScoringOverrides,
    parse_query,
)
from .query_builder import FilterBuildResult, QueryBuilder, Selectivity, glob_to_pattern
from .scoring import HybridScore, HybridScorer, ScoringConfig, ScoringFactors, ScoringWeights
from .service import RetrievalService, RetrievalStage, RetrievalStats

__all__ = [
    "CommitRange",
    "FileInsightSummary",
    "FilterBuildResult",
    "HybridScore",
    "HybridScorer",
    "InMemoryInsightsIndex",
    "InsightsIndex",
    "QueryBuilder",
    "RetrievalFilter",
    "RetrievalQuery",
    "RetrievalResult",
    "RetrievalService",
    "RetrievalStage",
    "RetrievalStats",
    "RetrievedChunk",
    "ReviewInsight",
    "ScoringConfig",
    "ScoringFactors",
    "ScoringOverrides",
    "ScoringWeights",
    "Selectivity",
    "VectorStoreInsightsIndex",
    "glob_to_pattern",
    "parse_query",
]
