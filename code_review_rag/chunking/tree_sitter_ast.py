"""
TypeScript and JavaScript chunking on a tree-sitter syntax tree.

Classes, interfaces, enums, namespaces, type aliases, functions and
methods of sufficient size become chunks; a leading run of import
statements becomes a module chunk. Function values bound to a name
(``const f = () => {}``, object keys, class fields) count as functions.
Anonymous callbacks are not chunks, but named declarations inside them
are still found. Function bodies are not descended into.
"""

from __future__ import annotations

import functools
import logging
from pathlib import PurePosixPath
from typing import Optional

import tree_sitter_javascript
import tree_sitter_typescript
from tree_sitter import Language, Node, Parser

from ..errors import ParseFailure, UnsupportedLanguageError
from .heuristics import MAX_CALL_TARGETS, extract_imports, has_comments, is_import_line
from .line_based import LineChunker
from .models import ChunkType, CodeChunk, detect_language
from .strategy import ResolvedOptions
from .syntax import SyntaxChunker

LOG = logging.getLogger("code_review_rag.chunking.tree_sitter_ast")

DECLARATIONS: dict[str, ChunkType] = {
    "class_declaration": ChunkType.CLASS,
    "abstract_class_declaration": ChunkType.CLASS,
    "class": ChunkType.CLASS,
    "interface_declaration": ChunkType.CLASS,
    "enum_declaration": ChunkType.ENUM,
    "internal_module": ChunkType.MODULE,
    "module": ChunkType.MODULE,
    "type_alias_declaration": ChunkType.TYPEDEF,
    "function_declaration": ChunkType.FUNCTION,
    "generator_function_declaration": ChunkType.FUNCTION,
    "method_definition": ChunkType.METHOD,
}

FUNCTION_VALUES = frozenset({"arrow_function", "function_expression", "function", "generator_function"})
FIELD_DEFINITIONS = frozenset({"public_field_definition", "field_definition"})
BRANCHES = frozenset(
    {
        "if_statement",
        "for_statement",
        "for_in_statement",
        "while_statement",
        "do_statement",
        "switch_case",
        "catch_clause",
        "ternary_expression",
    }
)
SHORT_CIRCUIT = frozenset({"&&", "||", "??"})

_CONTAINERS = (ChunkType.CLASS, ChunkType.ENUM, ChunkType.MODULE)


@functools.lru_cache(maxsize=None)
def grammar(dialect: str) -> Language:
    """Compiled grammar for ``typescript``, ``tsx`` or ``javascript``."""
    if dialect == "typescript":
        return Language(tree_sitter_typescript.language_typescript())
    if dialect == "tsx":
        return Language(tree_sitter_typescript.language_tsx())
    if dialect == "javascript":
        return Language(tree_sitter_javascript.language())
    raise ValueError(f"No tree-sitter grammar for {dialect}")


def dialect_for(file_path: str, language: str) -> str:
    if language == "typescript":
        return "tsx" if PurePosixPath(file_path).suffix.lower() == ".tsx" else "typescript"
    return language


def node_text(node: Optional[Node]) -> str:
    if node is None or node.text is None:
        return ""
    return node.text.decode("utf-8", "replace")


def first_error_line(root: Node) -> int:
    stack = [root]
    while stack:
        node = stack.pop()
        if node.type == "ERROR" or node.is_missing:
            return node.start_point[0] + 1
        stack.extend(reversed(node.children))
    return 1


def declared_name(node: Node) -> str:
    """Own name of a declaration, or the name it is bound to."""
    own = node_text(node.child_by_field_name("name"))
    if own:
        return own.strip("'\"")
    parent = node.parent
    if parent is None:
        return ""
    if parent.type == "variable_declarator":
        return node_text(parent.child_by_field_name("name"))
    if parent.type == "pair":
        return node_text(parent.child_by_field_name("key")).strip("'\"")
    if parent.type == "assignment_expression":
        return node_text(parent.child_by_field_name("left"))
    if parent.type in FIELD_DEFINITIONS:
        return node_text(parent.child_by_field_name("name") or parent.child_by_field_name("property"))
    return ""


def outer_span(node: Node) -> Node:
    """The statement a declaration's lines belong to."""
    outer = node
    parent = node.parent
    if parent is not None and (parent.type in FIELD_DEFINITIONS or parent.type in ("variable_declarator", "pair")):
        outer = parent
        holder = parent.parent
        if parent.type == "variable_declarator" and holder is not None and holder.named_child_count == 1:
            outer = holder
    if outer.parent is not None and outer.parent.type == "export_statement":
        outer = outer.parent
    return outer


def complexity(node: Node) -> int:
    count = 1
    stack = list(node.named_children)
    while stack:
        current = stack.pop()
        if current.type in BRANCHES:
            count += 1
        elif current.type == "binary_expression":
            operator = current.child_by_field_name("operator")
            if operator is not None and operator.type in SHORT_CIRCUIT:
                count += 1
        stack.extend(current.named_children)
    return count


def call_targets(node: Node) -> list[str]:
    names: list[str] = []
    stack = [node]
    while stack:
        current = stack.pop()
        if current.type in ("call_expression", "new_expression"):
            target = current.child_by_field_name("function") or current.child_by_field_name("constructor")
            if target is not None and target.type == "member_expression":
                target = target.child_by_field_name("property")
            if target is not None and target.type in ("identifier", "property_identifier", "type_identifier"):
                names.append(node_text(target))
        stack.extend(reversed(current.named_children))
    return list(dict.fromkeys(n for n in names if n != "require"))


def is_import(node: Node) -> bool:
    if node.type == "import_statement":
        return True
    if node.type == "export_statement":
        return node.child_by_field_name("source") is not None
    if node.type in ("lexical_declaration", "variable_declaration"):
        return is_import_line(node_text(node).strip())
    return False


class TreeSitterChunker(SyntaxChunker):
    """Declaration extraction from a tree-sitter parse."""

    def __init__(
        self,
        strategy_name: str,
        languages: frozenset[str],
        line_chunker: LineChunker,
        chunk_size: int = 100,
        overlap: int = 5,
        settings=None,
    ):
        super().__init__(line_chunker, settings)
        self.strategy_name = strategy_name
        self.supported_languages = languages
        self.default_chunk_size = chunk_size
        self.default_overlap = overlap

    def extract(
        self,
        content: str,
        lines: list[str],
        file_path: str,
        resolved: ResolvedOptions,
    ) -> list[CodeChunk]:
        language = detect_language(file_path)
        if language not in self.supported_languages:
            raise UnsupportedLanguageError(language, self.strategy_name)

        # Parser instances are not shared; files are chunked on worker threads.
        parser = Parser(grammar(dialect_for(file_path, language)))
        root = parser.parse(content.encode("utf-8")).root_node
        if root.has_error:
            line = first_error_line(root)
            raise ParseFailure(
                f"Cannot parse {file_path}: syntax error near line {line}",
                {"file": file_path, "line": line},
            )

        imports = extract_imports(content, language)
        chunks: list[CodeChunk] = []

        header = self._import_block(root)
        if header is not None and header[1] - header[0] + 1 >= resolved.min_lines:
            start, end = header
            chunks.append(
                CodeChunk.create(
                    file_path=file_path,
                    content="\n".join(lines[start - 1 : end]),
                    language=language,
                    start_line=start,
                    end_line=end,
                    chunk_type=ChunkType.MODULE,
                    dependencies=imports,
                    metadata={"strategy": self.strategy_name, "imports": imports},
                )
            )

        def walk(node: Node, depth: int, container: Optional[ChunkType], parent: Optional[str]) -> None:
            if depth >= resolved.max_depth:
                return
            for child in node.named_children:
                kind = self._kind(child, container)
                if kind is None:
                    walk(child, depth + 1, container, parent)
                    continue
                name = declared_name(child) or "<anonymous>"
                span = outer_span(child)
                start, end = span.start_point[0] + 1, span.end_point[0] + 1
                if end - start + 1 >= resolved.min_lines:
                    chunks.append(
                        self._node_chunk(child, kind, name, start, end, depth, lines, file_path, language, imports, parent)
                    )
                if kind in (ChunkType.FUNCTION, ChunkType.METHOD):
                    continue
                if kind in _CONTAINERS:
                    walk(child, depth + 1, kind, name)
                else:
                    walk(child, depth + 1, container, parent)

        walk(root, 0, None, None)
        LOG.debug("%s extracted %d declarations from %s", self.strategy_name, len(chunks), file_path)
        return chunks

    @staticmethod
    def _kind(node: Node, container: Optional[ChunkType]) -> Optional[ChunkType]:
        kind = DECLARATIONS.get(node.type)
        if kind is ChunkType.METHOD:
            return ChunkType.METHOD if container is ChunkType.CLASS else ChunkType.FUNCTION
        if kind is not None:
            return kind
        if node.type in FUNCTION_VALUES and declared_name(node):
            field = node.parent is not None and node.parent.type in FIELD_DEFINITIONS
            return ChunkType.METHOD if field and container is ChunkType.CLASS else ChunkType.FUNCTION
        return None

    def _node_chunk(
        self,
        node: Node,
        kind: ChunkType,
        name: str,
        start: int,
        end: int,
        depth: int,
        lines: list[str],
        file_path: str,
        language: str,
        imports: list[str],
        parent: Optional[str],
    ) -> CodeChunk:
        text = "\n".join(lines[start - 1 : end])
        calls = [t for t in call_targets(node) if t != name][:MAX_CALL_TARGETS]
        metadata = {
            "strategy": self.strategy_name,
            "name": name,
            "node_type": node.type,
            "imports": imports,
            "has_comments": has_comments(text),
            "depth": depth,
        }
        if parent:
            metadata["parent"] = parent
        return CodeChunk.create(
            file_path=file_path,
            content=text,
            language=language,
            start_line=start,
            end_line=end,
            chunk_type=kind,
            complexity_score=complexity(node),
            dependencies=list(dict.fromkeys(imports + calls)),
            metadata=metadata,
        )

    @staticmethod
    def _import_block(root: Node) -> Optional[tuple[int, int]]:
        """1-based span of the leading import/export statements."""
        start = end = None
        for child in root.named_children:
            if child.type in ("comment", "hash_bang_line"):
                continue
            if not is_import(child):
                break
            if start is None:
                start = child.start_point[0] + 1
            end = child.end_point[0] + 1
        if start is None or end is None:
            return None
        return start, end


def build_tree_sitter_chunkers(line_chunkers: dict[str, LineChunker], settings=None) -> list[TreeSitterChunker]:
    return [
        TreeSitterChunker(
            "typescript-ast", frozenset({"typescript"}), line_chunkers["typescript-line-based"], 100, 5, settings
        ),
        TreeSitterChunker(
            "javascript-ast", frozenset({"javascript"}), line_chunkers["typescript-line-based"], 100, 5, settings
        ),
    ]
