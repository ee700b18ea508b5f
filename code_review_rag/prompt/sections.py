"""
Prompt section builders.

Each builder renders one section and truncates it to its own token
allocation, returning a ``Truncation`` so the composer can report which
sections were cut. Builders read only their arguments, so they can run in
any order.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from typing import Dict, List, Sequence

from ..chunking.models import ChunkType
from ..retrieval.models import FileInsightSummary, ReviewInsight, RetrievedChunk
from .models import PromptOptions
from .tokens import Truncation, truncate_text

LOG = logging.getLogger("code_review_rag.prompt.sections")

DEFAULT_PREAMBLE = "You are an experienced software engineer reviewing code changes for correctness, clarity and risk."
PREVIEW_LINES = 10
MAX_KEY_ITEMS = 5
SEVERITY_ORDER = ("critical", "high", "medium", "low")

TYPE_PRIORITY: Dict[ChunkType, int] = {
    ChunkType.FUNCTION: 5,
    ChunkType.CLASS: 4,
    ChunkType.METHOD: 3,
    ChunkType.MODULE: 2,
    ChunkType.BLOCK: 1,
}

PATTERN_MARKERS = [
    (("async", "await"), "async/await pattern"),
    (("try", "catch"), "error handling"),
    (("try", "except"), "error handling"),
]


def _fit(section: str, text: str, max_tokens: int) -> Truncation:
    result = truncate_text(text, max_tokens)
    if result.was_truncated:
        LOG.warning(
            "%s section truncated from %d to %d tokens", section, result.original_tokens, result.truncated_tokens
        )
    return result


def prioritize_chunks(chunks: Sequence[RetrievedChunk]) -> List[RetrievedChunk]:
    """Order by chunk type (function, class, method, module, block, rest), then score."""
    return sorted(chunks, key=lambda c: (TYPE_PRIORITY.get(c.chunk_type, 0), c.score), reverse=True)


# ─── Preamble ─────────────────────────────────────────────────────────────


def build_preamble(options: PromptOptions, max_tokens: int) -> Truncation:
    parts = [f"## System Instructions\n{options.system_prompt or DEFAULT_PREAMBLE}\n"]
    if options.guidelines:
        parts.append(f"## Code Review Guidelines\n{options.guidelines}\n")
    if options.repository_info is not None:
        repo = options.repository_info
        lines = [f"- Repository: {repo.name}", f"- Branch: {repo.branch}"]
        if repo.language:
            lines.append(f"- Primary Language: {repo.language}")
        parts.append("## Repository Context\n" + "\n".join(lines) + "\n")
    if options.custom_context:
        lines = []
        for key, value in options.custom_context.items():
            rendered = value if isinstance(value, str) else json.dumps(value, indent=2, default=str)
            lines.append(f"- {key}: {rendered}")
        parts.append("## Additional Context\n" + "\n".join(lines) + "\n")
    return _fit("preamble", "\n".join(parts), max_tokens)


# ─── Context ──────────────────────────────────────────────────────────────


def _short_path(file_path: str) -> str:
    return "/".join(file_path.split("/")[-3:])


def detect_patterns(content: str) -> List[str]:
    lowered = content.lower()
    found = []
    for markers, label in PATTERN_MARKERS:
        if all(m in lowered for m in markers) and label not in found:
            found.append(label)
    return found


def build_context(chunks: Sequence[RetrievedChunk], max_tokens: int) -> Truncation:
    """
    Render retrieved chunks grouped by file, highest priority first.

    Each chunk shows its type, line range and the first ten lines of its
    content. Key functions, classes and detected code patterns are listed
    after the chunks.
    """
    if not chunks:
        return _fit("context", "## Code Context\n\nNo relevant code context found for this query.\n", max_tokens)

    ordered = prioritize_chunks(chunks)
    by_file: Dict[str, List[RetrievedChunk]] = {}
    for chunk in ordered:
        by_file.setdefault(chunk.file_path, []).append(chunk)

    parts = ["## Code Context\n", f"Found {len(ordered)} relevant code chunks:\n"]
    functions: List[str] = []
    classes: List[str] = []
    patterns: List[str] = []

    for file_path, file_chunks in by_file.items():
        parts.append(f"### {_short_path(file_path)}\n")
        for chunk in file_chunks:
            kind = chunk.chunk_type.value
            name = chunk.metadata.get("name")
            heading = f"#### {kind.upper()} {name} " if name else f"#### {kind.upper()} "
            parts.append(f"{heading}({chunk.start_line}-{chunk.end_line}, score {chunk.score:.2f})\n")
            lines = chunk.content.split("\n")
            preview = "\n".join(lines[:PREVIEW_LINES])
            if len(lines) > PREVIEW_LINES:
                preview += f"\n... ({len(lines) - PREVIEW_LINES} more lines)"
            parts.append(f"```{chunk.language}\n{preview}\n```\n")

            location = f"{chunk.file_path}:{chunk.start_line}"
            if chunk.chunk_type in (ChunkType.FUNCTION, ChunkType.METHOD):
                functions.append(f"{kind}: {name + ' ' if name else ''}{location}")
            elif chunk.chunk_type == ChunkType.CLASS:
                classes.append(f"class: {name + ' ' if name else ''}{location}")
            for pattern in detect_patterns(chunk.content):
                entry = f"{pattern} in {chunk.file_path}"
                if entry not in patterns:
                    patterns.append(entry)

    for title, items in (
        ("Key Functions", functions),
        ("Key Classes", classes),
        ("Code Patterns Detected", patterns),
    ):
        if items:
            parts.append(f"### {title}:\n" + "\n".join(f"- {i}" for i in items[:MAX_KEY_ITEMS]) + "\n")

    return _fit("context", "\n".join(parts), max_tokens)


# ─── Diffs ────────────────────────────────────────────────────────────────


def build_diffs(options: PromptOptions, max_tokens: int) -> Truncation:
    parts = ["## Code Changes\n"]
    if options.commit_range is not None:
        parts.append(f"Changes from {options.commit_range.start} to {options.commit_range.end}:\n")
    if not options.diffs:
        parts.append("No diff data was supplied for this review.\n")
        return _fit("diffs", "\n".join(parts), max_tokens)

    additions = sum(d.additions for d in options.diffs)
    deletions = sum(d.deletions for d in options.diffs)
    parts.append(f"{len(options.diffs)} files changed (+{additions} -{deletions}).\n")
    for diff in options.diffs:
        parts.append(f"### {diff.change_type.upper()}: {diff.file}")
        if diff.patch:
            parts.append(f"```diff\n{diff.patch.rstrip()}\n```\n")
        else:
            parts.append("")
    return _fit("diffs", "\n".join(parts), max_tokens)


# ─── Insights ─────────────────────────────────────────────────────────────


def _severity_rank(severity: str) -> int:
    return SEVERITY_ORDER.index(severity) if severity in SEVERITY_ORDER else len(SEVERITY_ORDER)


def build_insights(
    summaries: Sequence[FileInsightSummary],
    chunks: Sequence[RetrievedChunk],
    max_tokens: int,
) -> Truncation:
    """Counts by severity and category, followed by the findings attached to chunks."""
    total = sum(s.total_insights for s in summaries)
    if not total:
        return _fit("insights", "## Prior Review Insights\n\nNo prior insights available for this code.\n", max_tokens)

    severities: Counter = Counter()
    categories: Counter = Counter()
    for summary in summaries:
        severities.update(summary.severities)
        categories.update(summary.categories)

    parts = ["## Prior Review Insights\n", f"Found {total} prior review findings across {len(summaries)} files.\n"]
    parts.append("### Issues by Severity:")
    parts.extend(f"- {sev.upper()}: {severities[sev]} issues" for sev in SEVERITY_ORDER if severities[sev])
    parts.append("")
    parts.append("### Issues by Category:")
    parts.extend(f"- {cat}: {count} issues" for cat, count in categories.most_common(MAX_KEY_ITEMS))
    parts.append("")

    attached: Dict[tuple, ReviewInsight] = {}
    for chunk in chunks:
        for insight in chunk.insights:
            attached.setdefault((insight.file, insight.line, insight.summary), insight)
    if attached:
        parts.append("### Findings in Retrieved Code:")
        for insight in sorted(attached.values(), key=lambda i: (_severity_rank(i.severity), i.file, i.line)):
            line = f"- [{insight.severity.upper()}] {insight.file}:{insight.line} ({insight.category}) {insight.summary}"
            if insight.suggestion:
                line += f" Suggestion: {insight.suggestion}"
            parts.append(line)
        parts.append("")

    return _fit("insights", "\n".join(parts), max_tokens)


# ─── Instructions ─────────────────────────────────────────────────────────

JSON_RESPONSE_TEMPLATE = """```json
{
  "summary": "Brief summary of findings",
  "issues": [
    {
      "file": "path/to/file",
      "line": 123,
      "category": "security|performance|style|bug|complexity|documentation|maintainability",
      "severity": "low|medium|high|critical",
      "comment": "Description of the issue",
      "suggestion": "How to fix it (optional)"
    }
  ],
  "recommendations": ["General suggestions"],
  "overall_assessment": "good|needs_improvement|requires_attention"
}
```"""

FORMAT_INSTRUCTIONS = {
    "markdown": [
        "Please provide your response in markdown format with:",
        "- A summary section",
        "- Detailed issues with file/line references",
        "- Code examples where relevant",
        "- Actionable recommendations",
    ],
    "text": [
        "Please provide a clear, structured text response covering:",
        "- Summary of findings",
        "- Specific issues with file and line references",
        "- Suggested improvements",
        "- Overall assessment",
    ],
}


def build_instructions(options: PromptOptions, max_tokens: int) -> Truncation:
    parts = ["## Response Instructions\n"]
    if options.response_format == "json":
        parts.append("Please provide your response in the following JSON format:")
        parts.append(JSON_RESPONSE_TEMPLATE)
        if options.json_schema:
            parts.append("\nUse this JSON schema for validation:")
            parts.append(f"```json\n{json.dumps(options.json_schema, indent=2)}\n```")
    else:
        parts.extend(FORMAT_INSTRUCTIONS[options.response_format])

    parts.append(f"\nLimit your response to a maximum of {options.max_issues} issues.")
    parts.append("Focus on the most important findings.")
    parts.append("\nBe specific with file paths and line numbers when referencing code.")
    parts.append("Provide actionable suggestions for improvement.")
    return _fit("instructions", "\n".join(parts), max_tokens)
