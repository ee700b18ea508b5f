from .composer import PromptComposer
from .models import (
    ComposedPrompt,
    CompositionIssue,
    DiffEntry,
    PromptCompositionResult,
    PromptMetadata,
    PromptOptions,
    PromptPreview,
    PromptSections,
    RepositoryInfo,
    TokenAllocations,
)
from .sections import prioritize_chunks
from .tokens import (
    TRUNCATION_MARKER,
    TokenBudget,
    Truncation,
    check_token_budget,
    create_token_budget,
    estimate_tokens,
    fits_in_budget,
    truncate_text,
    validate_token_budget,
)

__all__ = [
    "ComposedPrompt",
    "CompositionIssue",
    "DiffEntry",
    "PromptComposer",
    "PromptCompositionResult",
    "PromptMetadata",
    "PromptOptions",
    "PromptPreview",
    "PromptSections",
    "RepositoryInfo",
    "TRUNCATION_MARKER",
    "TokenAllocations",
    "TokenBudget",
    "Truncation",
    "check_token_budget",
    "create_token_budget",
    "estimate_tokens",
    "fits_in_budget",
    "prioritize_chunks",
    "truncate_text",
    "validate_token_budget",
]
