"""
Prompt composer.

Turns a ``RetrievalResult`` into a single prompt that fits a token budget:

    validate options → allocate budget → build sections → assemble
        → check total → (truncate) → done

Composition never raises. Failures come back as a result with typed
errors (``invalid_input``, ``token_budget_exceeded``,
``composition_failed``); truncation is reported as a warning and in the
prompt metadata.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from ..config.settings import PromptSettings
from ..errors import TokenBudgetError, ValidationFailure
from ..retrieval.models import RetrievalResult
from . import sections as builders
from .models import (
    ComposedPrompt,
    CompositionIssue,
    PromptCompositionResult,
    PromptMetadata,
    PromptOptions,
    PromptPreview,
    PromptSections,
)
from .tokens import TokenBudget, check_token_budget, create_token_budget, estimate_tokens, truncate_text

LOG = logging.getLogger("code_review_rag.prompt.composer")

LOW_BUDGET_TOKENS = 500
HIGH_UTILIZATION = 80.0
SECTION_SEPARATOR = "\n\n"

OptionsInput = Union[PromptOptions, Dict[str, Any], None]


class PromptComposer:
    """Composes review prompts from retrieval results."""

    def __init__(self, settings: Optional[PromptSettings] = None, logger: Optional[logging.Logger] = None):
        self.settings = settings or PromptSettings()
        self.log = logger or LOG

    def parse_options(self, options: OptionsInput) -> PromptOptions:
        """
        Raises:
            ValidationFailure: with per-field errors
        """
        if isinstance(options, PromptOptions):
            return options
        try:
            return PromptOptions.from_settings(self.settings, **(options or {}))
        except ValidationError as exc:
            raise ValidationFailure.from_pydantic("prompt options", exc) from exc

    def allocate(self, options: PromptOptions) -> TokenBudget:
        budget = create_token_budget(options.token_budget, options.token_allocations.model_dump())
        check_token_budget(budget)
        return budget

    def build_sections(self, result: RetrievalResult, options: PromptOptions, budget: TokenBudget):
        """Build every section within its allocation; returns ``(sections, truncated_names)``."""
        built = {
            "preamble": builders.build_preamble(options, budget.allocated["preamble"]),
            "context": builders.build_context(result.chunks, budget.allocated["context"]),
            "diffs": (
                builders.build_diffs(options, budget.allocated["diffs"]) if options.include_diffs else None
            ),
            "insights": (
                builders.build_insights(result.insights, result.chunks, budget.allocated["insights"])
                if options.include_insights
                else None
            ),
            "instructions": builders.build_instructions(options, budget.allocated["instructions"]),
        }
        texts = {name: (t.text if t is not None else "") for name, t in built.items()}
        truncated = [name for name, t in built.items() if t is not None and t.was_truncated]
        return PromptSections(**texts), truncated

    @staticmethod
    def assemble(sections: PromptSections) -> str:
        return SECTION_SEPARATOR.join(text for _, text in sections.items() if text.strip())

    def compose(self, result: RetrievalResult, options: OptionsInput = None) -> PromptCompositionResult:
        try:
            opts = self.parse_options(options)
        except ValidationFailure as exc:
            self.log.warning("Rejected prompt options: %s", exc.message)
            return PromptCompositionResult(
                success=False,
                errors=[CompositionIssue("invalid_input", exc.message, exc.errors)],
            )

        try:
            budget = self.allocate(opts)
        except TokenBudgetError as exc:
            self.log.error("Invalid token budget: %s", exc.details)
            return PromptCompositionResult(
                success=False,
                errors=[CompositionIssue("token_budget_exceeded", exc.message, exc.details)],
            )

        self.log.info(
            "Composing prompt: budget=%d format=%s chunks=%d insight_files=%d",
            opts.token_budget, opts.response_format, len(result.chunks), len(result.insights),
        )
        try:
            prompt, warnings = self._compose(result, opts, budget)
        except Exception as exc:
            self.log.exception("Prompt composition failed")
            return PromptCompositionResult(
                success=False,
                errors=[CompositionIssue("composition_failed", str(exc) or type(exc).__name__)],
            )

        self.log.info(
            "Composed prompt: %d tokens, truncated=%s", prompt.token_count, prompt.metadata.truncated
        )
        return PromptCompositionResult(success=True, prompt=prompt, warnings=warnings)

    def _compose(self, result: RetrievalResult, opts: PromptOptions, budget: TokenBudget):
        sections, truncated_sections = self.build_sections(result, opts, budget)
        text = self.assemble(sections)
        token_count = estimate_tokens(text)

        original_count = None
        if token_count > opts.token_budget:
            self.log.warning("Prompt exceeds budget (%d > %d), truncating", token_count, opts.token_budget)
            original_count = token_count
            text = truncate_text(text, opts.token_budget).text
            token_count = estimate_tokens(text)

        warnings = []
        if truncated_sections or original_count is not None:
            warnings.append(
                CompositionIssue(
                    "truncated_content",
                    "Prompt content was truncated to fit the token budget",
                    {"sections": truncated_sections, "original_token_count": original_count},
                )
            )
        if not result.chunks:
            warnings.append(CompositionIssue("missing_context", "No code context was retrieved for this prompt"))
        if opts.token_budget < LOW_BUDGET_TOKENS:
            warnings.append(
                CompositionIssue("low_budget", f"Token budget of {opts.token_budget} leaves little room for context")
            )

        metadata = PromptMetadata(
            truncated=bool(truncated_sections) or original_count is not None,
            budget_used=token_count,
            budget_remaining=max(0, opts.token_budget - token_count),
            original_token_count=original_count,
            truncated_sections=truncated_sections,
            allocations=dict(budget.allocated),
        )
        return ComposedPrompt(text=text, token_count=token_count, sections=sections, metadata=metadata), warnings

    def preview(self, result: RetrievalResult, options: OptionsInput = None) -> PromptPreview:
        """
        Estimate per-section token use without assembling a prompt.

        Raises:
            ValidationFailure: invalid options
            TokenBudgetError: inconsistent allocation
        """
        opts = self.parse_options(options)
        budget = self.allocate(opts)
        sections, _ = self.build_sections(result, opts, budget)
        breakdown = {name: estimate_tokens(text) for name, text in sections.items()}
        total = sum(breakdown.values())
        utilization = total / opts.token_budget * 100

        warnings = []
        if utilization > 100:
            warnings.append(f"Estimated tokens ({total}) exceed budget ({opts.token_budget})")
        elif utilization > HIGH_UTILIZATION:
            warnings.append(f"High budget utilization: {utilization:.1f}%")
        if not result.chunks:
            warnings.append("No code context retrieved")
        return PromptPreview(
            estimated_token_count=total,
            sections_breakdown=breakdown,
            budget_utilization=utilization,
            warnings=warnings,
        )
