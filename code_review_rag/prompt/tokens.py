"""
Token estimation, budget allocation and boundary-aware truncation.

Tokens are approximated as ``ceil(chars / 4)``. The approximation is
consistent, which is all the budget arithmetic needs: every size check
uses the same estimator.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Mapping

from ..errors import TokenBudgetError

LOG = logging.getLogger("code_review_rag.prompt.tokens")

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "\n\n[Content truncated due to token budget]"
SECTIONS = ("preamble", "context", "diffs", "insights", "instructions")
BOUNDARY_WINDOW = 0.8


def estimate_tokens(text: str) -> int:
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


MARKER_TOKENS = estimate_tokens(TRUNCATION_MARKER)


@dataclass
class TokenBudget:
    """Section allocations; ``sum(allocated) <= total`` once validated."""

    total: int
    allocated: Dict[str, int] = field(default_factory=dict)

    @property
    def allocated_total(self) -> int:
        return sum(self.allocated.values())

    @property
    def remaining(self) -> int:
        return self.total - self.allocated_total

    def to_dict(self) -> Dict[str, object]:
        return {"total": self.total, "allocated": dict(self.allocated), "remaining": self.remaining}

    def __str__(self) -> str:
        parts = ", ".join(f"{k}: {v}" for k, v in self.allocated.items())
        return f"Total: {self.total}, Allocated: {{{parts}}}, Remaining: {self.remaining}"


def create_token_budget(total: int, fractions: Mapping[str, float]) -> TokenBudget:
    """
    Split ``total`` across the prompt sections.

    Every section gets ``floor(total × fraction)``. The signed remainder
    is then applied to context, which is clamped at zero: rounding slack
    is added to it, and an overdraw from fractions summing past 1 is
    taken out of it. The result can still exceed ``total`` when the
    non-context fractions alone do; ``check_token_budget`` rejects that.
    """
    allocated = {
        section: max(0, math.floor(total * fractions.get(section, 0.0))) for section in SECTIONS
    }
    remainder = total - sum(allocated.values())
    allocated["context"] = max(0, allocated["context"] + remainder)
    return TokenBudget(total=total, allocated=allocated)


def validate_token_budget(budget: TokenBudget) -> List[str]:
    errors = []
    if budget.allocated_total > budget.total:
        errors.append(f"Allocated tokens ({budget.allocated_total}) exceed total budget ({budget.total})")
    if budget.remaining < 0:
        errors.append(f"Negative remaining tokens: {budget.remaining}")
    for section, tokens in budget.allocated.items():
        if tokens < 0:
            errors.append(f"Negative allocation for {section}: {tokens}")
        if tokens > budget.total:
            errors.append(f"Allocation for {section} ({tokens}) exceeds total budget ({budget.total})")
    return errors


def check_token_budget(budget: TokenBudget) -> None:
    """
    Raises:
        TokenBudgetError: if the allocation is inconsistent
    """
    errors = validate_token_budget(budget)
    if errors:
        raise TokenBudgetError("Invalid token budget allocation", {"errors": errors, "budget": budget.to_dict()})


@dataclass
class Truncation:
    text: str
    original_tokens: int
    truncated_tokens: int
    was_truncated: bool


def _cut_point(text: str, target_chars: int) -> int:
    head = text[:target_chars]
    floor = target_chars * BOUNDARY_WINDOW
    for boundary in ("\n", " "):
        index = head.rfind(boundary)
        if index > floor:
            return index
    index = head.rfind(".")
    if index > floor:
        return index + 1
    return target_chars


def truncate_text(text: str, max_tokens: int) -> Truncation:
    """
    Fit ``text`` into ``max_tokens``.

    Cuts at the last newline, else space, else period inside the final
    20% of the allowed length, then appends the truncation marker. Room
    for the marker is reserved, so the result never exceeds
    ``max_tokens``. Below the marker's own size the text is cut hard.
    """
    original = estimate_tokens(text)
    if original <= max_tokens:
        return Truncation(text, original, original, False)
    if max_tokens <= 0:
        return Truncation("", original, 0, True)

    if max_tokens <= MARKER_TOKENS:
        cut = text[: max_tokens * CHARS_PER_TOKEN]
        return Truncation(cut, original, estimate_tokens(cut), True)

    target = (max_tokens - MARKER_TOKENS) * CHARS_PER_TOKEN
    body = text[: _cut_point(text, target)].rstrip()
    result = body + TRUNCATION_MARKER
    LOG.debug("Truncated %d tokens to %d", original, estimate_tokens(result))
    return Truncation(result, original, estimate_tokens(result), True)


def fits_in_budget(text: str, max_tokens: int) -> bool:
    return estimate_tokens(text) <= max_tokens
