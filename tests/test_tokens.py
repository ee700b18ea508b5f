"""Tests for token estimation, budget allocation and truncation."""

import pytest

from code_review_rag.errors import TokenBudgetError
from code_review_rag.prompt.tokens import (
    MARKER_TOKENS,
    TRUNCATION_MARKER,
    TokenBudget,
    check_token_budget,
    create_token_budget,
    estimate_tokens,
    fits_in_budget,
    truncate_text,
    validate_token_budget,
)

DEFAULT_FRACTIONS = {"preamble": 0.1, "context": 0.6, "diffs": 0.2, "insights": 0.1, "instructions": 0.1}


class TestEstimate:
    @pytest.mark.parametrize("text,tokens", [("", 0), ("abc", 1), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)])
    def test_ceil_of_quarter(self, text, tokens):
        assert estimate_tokens(text) == tokens

    def test_fits(self):
        assert fits_in_budget("abcd", 1)
        assert not fits_in_budget("abcde", 1)


class TestBudget:
    def test_default_fractions(self):
        budget = create_token_budget(1000, DEFAULT_FRACTIONS)
        assert budget.allocated == {"preamble": 100, "context": 500, "diffs": 200, "insights": 100, "instructions": 100}
        assert budget.remaining == 0
        assert validate_token_budget(budget) == []

    def test_overdraw_comes_out_of_context(self):
        budget = create_token_budget(2000, {"preamble": 0.2, "context": 0.6, "diffs": 0.2, "instructions": 0.2})
        assert budget.allocated == {"preamble": 400, "context": 800, "diffs": 400, "insights": 0, "instructions": 400}
        assert budget.remaining == 0

    def test_context_clamped_at_zero(self):
        budget = create_token_budget(1000, {"preamble": 0.5, "context": 0.1, "diffs": 0.5, "insights": 0.2})
        assert budget.allocated["context"] == 0
        assert budget.allocated_total == 1200
        with pytest.raises(TokenBudgetError):
            check_token_budget(budget)

    def test_remainder_goes_to_context(self):
        budget = create_token_budget(1000, {"preamble": 0.1, "context": 0.2, "instructions": 0.05})
        assert budget.allocated["context"] == 850
        assert budget.allocated_total == 1000

    def test_rounding_remainder(self):
        budget = create_token_budget(999, {"preamble": 0.33, "context": 0.33, "diffs": 0.33})
        assert budget.allocated == {"preamble": 329, "context": 341, "diffs": 329, "insights": 0, "instructions": 0}

    @pytest.mark.parametrize("total", [100, 101, 777, 8000, 200_000])
    @pytest.mark.parametrize(
        "fractions",
        [
            DEFAULT_FRACTIONS,
            {"preamble": 0.3, "context": 1.0, "diffs": 0.3, "insights": 0.2, "instructions": 0.2},
            {"context": 0.0},
            {"preamble": 0.25, "context": 0.25, "diffs": 0.25, "insights": 0.25},
        ],
    )
    def test_never_overdrawn(self, total, fractions):
        budget = create_token_budget(total, fractions)
        assert budget.allocated_total <= total
        assert all(v >= 0 for v in budget.allocated.values())
        check_token_budget(budget)

    def test_inconsistent_budget(self):
        budget = TokenBudget(total=100, allocated={"context": 150, "diffs": -10})
        errors = validate_token_budget(budget)
        assert any("exceed total budget" in e for e in errors)
        assert any("Negative allocation for diffs" in e for e in errors)
        with pytest.raises(TokenBudgetError) as info:
            check_token_budget(budget)
        assert info.value.details["budget"]["total"] == 100

    def test_str(self):
        assert str(TokenBudget(10, {"context": 4})) == "Total: 10, Allocated: {context: 4}, Remaining: 6"


class TestTruncate:
    def test_short_text_untouched(self):
        result = truncate_text("hello world", 10)
        assert result.text == "hello world"
        assert not result.was_truncated

    def test_cuts_at_newline_and_appends_marker(self):
        text = "line one\n" * 50
        result = truncate_text(text, 50)

        assert result.was_truncated
        assert result.text.endswith(TRUNCATION_MARKER)
        body = result.text[: -len(TRUNCATION_MARKER)]
        assert set(body.split("\n")) == {"line one"}
        assert result.truncated_tokens <= 50
        assert result.original_tokens == estimate_tokens(text)

    def test_cuts_at_space(self):
        text = "word " * 100
        result = truncate_text(text, 30)
        body = result.text[: -len(TRUNCATION_MARKER)]
        assert body.endswith("word")
        assert estimate_tokens(result.text) <= 30

    def test_hard_cut_without_boundary(self):
        text = "x" * 1000
        result = truncate_text(text, 40)
        assert result.text == "x" * ((40 - MARKER_TOKENS) * 4) + TRUNCATION_MARKER

    def test_tiny_budget_has_no_marker(self):
        result = truncate_text("y" * 100, MARKER_TOKENS)
        assert result.text == "y" * (MARKER_TOKENS * 4)
        assert result.was_truncated

    def test_zero_budget(self):
        result = truncate_text("anything", 0)
        assert result.text == ""
        assert result.truncated_tokens == 0

    @pytest.mark.parametrize("max_tokens", [1, 5, 12, 50, 333])
    def test_result_fits(self, max_tokens):
        text = "def f(x):\n    return x. " * 200
        assert estimate_tokens(truncate_text(text, max_tokens).text) <= max_tokens
