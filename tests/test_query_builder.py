"""Tests for retrieval filter → store filter translation."""

import re
from datetime import datetime, timezone

import pytest

from code_review_rag.chunking.models import ChunkType
from code_review_rag.retrieval.models import CommitRange, RetrievalFilter
from code_review_rag.retrieval.query_builder import QueryBuilder, glob_to_pattern
from code_review_rag.store.filters import matches_filter


@pytest.fixture
def builder():
    return QueryBuilder()


def payload(**overrides):
    base = {
        "file": "lib/services/auth_service.dart",
        "language": "dart",
        "chunkType": "function",
        "complexityScore": 4,
        "createdAt": "2024-06-01T00:00:00+00:00",
        "dependencies": ["http"],
        "imports": [],
        "commit": "abc123",
        "branch": "main",
    }
    base.update(overrides)
    return base


class TestGlobs:
    @pytest.mark.parametrize(
        "glob,path,expected",
        [
            ("lib/**/*.dart", "lib/a.dart", True),
            ("lib/**/*.dart", "lib/x/y/a.dart", True),
            ("lib/**/*.dart", "lib/a.ts", False),
            ("lib/**/*.dart", "test/lib/a.dart", False),
            ("src/*.{ts,tsx}", "src/a.tsx", True),
            ("src/*.{ts,tsx}", "src/x/a.ts", False),
            ("**/*_test.dart", "test/auth_test.dart", True),
            ("**/*_test.dart", "auth_test.dart", True),
            ("file?.py", "file1.py", True),
            ("file?.py", "file12.py", False),
            ("docs/**", "docs/a/b/c.md", True),
            ("a+b.txt", "a+b.txt", True),
        ],
    )
    def test_glob_matching(self, glob, path, expected):
        assert (re.search(glob_to_pattern(glob), path) is not None) is expected


class TestBuildFilter:
    def test_empty_filter(self, builder):
        result = builder.build_filter(RetrievalFilter())
        assert result.filter == {}
        assert result.warnings == ["No filters specified"]
        assert builder.build_filter(None).filter == {}

    def test_single_and_multiple_files(self, builder):
        single = builder.build_filter(RetrievalFilter(files=["lib/a.dart"])).filter
        assert single["must"] == [{"key": "file", "match": {"value": "lib/a.dart"}}]

        several = builder.build_filter(RetrievalFilter(files=["lib/a.dart", "lib/b.dart"])).filter
        assert several["must"] == [{"key": "file", "match": {"any": ["lib/a.dart", "lib/b.dart"]}}]

    def test_inclusions_and_exclusions(self, builder):
        result = builder.build_filter(
            RetrievalFilter(
                languages=["dart"],
                chunk_types=[ChunkType.FUNCTION, ChunkType.METHOD],
                exclude_patterns=["**/*.g.dart"],
            )
        )
        f = result.filter
        assert {"key": "language", "match": {"any": ["dart"]}} in f["must"]
        assert {"key": "chunkType", "match": {"any": ["function", "method"]}} in f["must"]
        assert f["must_not"][0]["key"] == "file"
        assert "languages: dart" in result.applied_filters
        assert "chunk_types: function, method" in result.applied_filters

        assert matches_filter(payload(), f)
        assert not matches_filter(payload(file="lib/models/user.g.dart"), f)
        assert not matches_filter(payload(chunkType="class"), f)

    def test_ranges(self, builder):
        f = builder.build_filter(
            RetrievalFilter(
                created_after=datetime(2024, 1, 1, tzinfo=timezone.utc),
                created_before=datetime(2024, 12, 31, tzinfo=timezone.utc),
                min_complexity=2,
                max_complexity=5,
            )
        ).filter
        assert {"key": "complexityScore", "range": {"gte": 2, "lte": 5}} in f["must"]
        assert matches_filter(payload(), f)
        assert not matches_filter(payload(complexityScore=9), f)
        assert not matches_filter(payload(createdAt="2023-06-01T00:00:00+00:00"), f)

    def test_presence_flags(self, builder):
        f = builder.build_filter(RetrievalFilter(has_dependencies=True, has_imports=False)).filter
        assert f["must_not"] == [{"is_empty": {"key": "dependencies"}}]
        assert f["must"] == [{"is_empty": {"key": "imports"}}]
        assert matches_filter(payload(), f)
        assert not matches_filter(payload(dependencies=[]), f)

    def test_exact_fields(self, builder):
        f = builder.build_filter(RetrievalFilter(commit="abc123", branch="main", author="dev")).filter
        keys = [c["key"] for c in f["must"]]
        assert keys == ["commit", "branch", "author"]

    def test_custom_clauses(self, builder):
        result = builder.build_filter(
            RetrievalFilter(custom={"repository": "app", "complexityScore": {"range": {"lt": 10}}})
        )
        assert {"key": "repository", "match": {"value": "app"}} in result.filter["must"]
        assert {"key": "complexityScore", "range": {"lt": 10}} in result.filter["must"]
        assert 'custom.repository: "app"' in result.applied_filters


class TestWarnings:
    def test_conflicting_fields(self, builder):
        result = builder.build_filter(RetrievalFilter(languages=["dart"], exclude_languages=["dart"]))
        assert "Conflicting filters on field: language" in result.warnings
        assert "must" in result.filter and "must_not" in result.filter

    def test_inverted_bounds(self, builder):
        result = builder.build_filter(
            RetrievalFilter(
                min_complexity=8,
                max_complexity=2,
                created_after=datetime(2025, 1, 1, tzinfo=timezone.utc),
                created_before=datetime(2024, 1, 1, tzinfo=timezone.utc),
            )
        )
        assert any("min_complexity exceeds max_complexity" in w for w in result.warnings)
        assert any("created_after is later than created_before" in w for w in result.warnings)

    def test_commit_range_is_reported_not_applied(self, builder):
        result = builder.build_filter(RetrievalFilter(commit_range=CommitRange(start="a1", end="b2")))
        assert result.filter == {}
        assert "commit_range: a1..b2" in result.applied_filters
        assert any("Commit range" in w for w in result.warnings)


class TestConvenienceBuilders:
    def test_directory_filter(self, builder):
        f = builder.build_directory_filter("lib/services/").filter
        assert matches_filter(payload(), f)
        assert not matches_filter(payload(file="lib/models/user.dart"), f)

    def test_file_filter_keeps_extra_constraints(self, builder):
        f = builder.build_file_filter("lib/a.dart", RetrievalFilter(languages=["dart"])).filter
        assert {"key": "file", "match": {"value": "lib/a.dart"}} in f["must"]
        assert {"key": "language", "match": {"any": ["dart"]}} in f["must"]

    def test_language_and_commit_filters(self, builder):
        assert builder.build_language_filter("go").filter["must"] == [{"key": "language", "match": {"any": ["go"]}}]
        assert builder.build_commit_filter("abc").filter["must"] == [{"key": "commit", "match": {"value": "abc"}}]


class TestSelectivity:
    def test_empty_is_low(self, builder):
        assert builder.estimate_selectivity({}).selectivity == "low"

    def test_score_accumulates(self, builder):
        f = builder.build_filter(
            RetrievalFilter(languages=["dart"], created_after=datetime(2024, 1, 1, tzinfo=timezone.utc))
        ).filter
        sel = builder.estimate_selectivity(f)
        assert sel.score == 45
        assert sel.selectivity == "medium"
        assert sel.estimated_results == "moderate"
        assert "Language filter applied" in sel.reasoning

    def test_capped_at_100(self, builder):
        f = builder.build_filter(RetrievalFilter(files=[f"lib/{i}.dart" for i in range(20)])).filter
        sel = builder.estimate_selectivity(f)
        assert sel.score == 100
        assert sel.selectivity == "high"
