"""
Python chunking on the built-in ast module.

Classes, functions and methods become chunks; a leading run of import
statements becomes a module chunk. Function bodies are not descended
into, so nested helpers stay inside their enclosing function's chunk.
"""

from __future__ import annotations

import ast
from typing import Optional

from ..errors import ParseFailure
from .models import ChunkType, CodeChunk
from .strategy import ResolvedOptions
from .syntax import SyntaxChunker


def _get_end_lineno(node: ast.AST, default: int = 1) -> int:
    """Safely get end_lineno from AST node."""
    return getattr(node, "end_lineno", None) or getattr(node, "lineno", default) or default


def _start_lineno(node: ast.AST) -> int:
    decorators = getattr(node, "decorator_list", None) or []
    return min([node.lineno] + [d.lineno for d in decorators])  # type: ignore[attr-defined]


class ComplexityCounter(ast.NodeVisitor):
    """Counts decision points below a node."""

    def __init__(self) -> None:
        self.count = 0

    def _branch(self, node: ast.AST) -> None:
        self.count += 1
        self.generic_visit(node)

    visit_If = _branch
    visit_For = _branch
    visit_AsyncFor = _branch
    visit_While = _branch
    visit_ExceptHandler = _branch
    visit_IfExp = _branch

    def visit_BoolOp(self, node: ast.BoolOp) -> None:
        self.count += len(node.values) - 1
        self.generic_visit(node)

    def visit_comprehension(self, node: ast.comprehension) -> None:
        self.count += len(node.ifs)
        self.generic_visit(node)

    def visit_match_case(self, node: ast.AST) -> None:
        self.count += 1
        self.generic_visit(node)


def _call_name(func: ast.AST) -> Optional[str]:
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        base = _call_name(func.value)
        return f"{base}.{func.attr}" if base else func.attr
    return None


def call_targets(node: ast.AST) -> list[str]:
    seen: list[str] = []
    for child in ast.walk(node):
        if isinstance(child, ast.Call):
            name = _call_name(child.func)
            if name and name not in seen:
                seen.append(name)
    return seen


def module_imports(tree: ast.Module) -> list[str]:
    names: list[str] = []
    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names.extend(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom):
            names.append("." * node.level + (node.module or ""))
    return list(dict.fromkeys(n for n in names if n))


class DeclarationVisitor(ast.NodeVisitor):
    """Collects declaration spans with their scope."""

    def __init__(self, max_depth: int):
        self.max_depth = max_depth
        self.found: list[tuple[ast.AST, ChunkType, str, Optional[str]]] = []
        self._scope: list[tuple[str, ChunkType]] = []

    def visit_ClassDef(self, node: ast.ClassDef) -> None:
        if len(self._scope) >= self.max_depth:
            return
        self.found.append((node, ChunkType.CLASS, node.name, self._parent_name()))
        self._scope.append((node.name, ChunkType.CLASS))
        self.generic_visit(node)
        self._scope.pop()

    def visit_FunctionDef(self, node: ast.FunctionDef) -> None:
        self._visit_function(node)

    def visit_AsyncFunctionDef(self, node: ast.AsyncFunctionDef) -> None:
        self._visit_function(node)

    def _visit_function(self, node: ast.FunctionDef | ast.AsyncFunctionDef) -> None:
        if len(self._scope) >= self.max_depth:
            return
        in_class = bool(self._scope) and self._scope[-1][1] == ChunkType.CLASS
        kind = ChunkType.METHOD if in_class else ChunkType.FUNCTION
        self.found.append((node, kind, node.name, self._parent_name()))

    def _parent_name(self) -> Optional[str]:
        return ".".join(name for name, _ in self._scope) or None


class PythonAstChunker(SyntaxChunker):
    """Python declarations via ``ast``."""

    strategy_name = "python-ast"
    supported_languages = frozenset({"python"})
    default_chunk_size = 120
    default_overlap = 6

    def extract(
        self,
        content: str,
        lines: list[str],
        file_path: str,
        resolved: ResolvedOptions,
    ) -> list[CodeChunk]:
        try:
            tree = ast.parse(content, filename=file_path)
        except (SyntaxError, ValueError) as exc:
            raise ParseFailure(f"Cannot parse {file_path}: {exc}", {"file": file_path}) from exc

        imports = module_imports(tree)
        chunks: list[CodeChunk] = []

        header = self._import_header(tree)
        if header is not None:
            start, end = header
            if end - start + 1 >= resolved.min_lines:
                chunks.append(
                    CodeChunk.create(
                        file_path=file_path,
                        content="\n".join(lines[start - 1 : end]),
                        language="python",
                        start_line=start,
                        end_line=end,
                        chunk_type=ChunkType.MODULE,
                        dependencies=imports,
                        metadata={"strategy": self.strategy_name, "imports": imports},
                    )
                )

        visitor = DeclarationVisitor(resolved.max_depth)
        visitor.visit(tree)
        for node, kind, name, parent in visitor.found:
            start = _start_lineno(node)
            end = _get_end_lineno(node, start)
            if end - start + 1 < resolved.min_lines:
                continue
            counter = ComplexityCounter()
            counter.visit(node)
            metadata = {
                "strategy": self.strategy_name,
                "name": name,
                "imports": imports,
                "has_comments": any(ln.lstrip().startswith("#") for ln in lines[start - 1 : end]),
            }
            if parent:
                metadata["parent"] = parent
            if ast.get_docstring(node):  # type: ignore[arg-type]
                metadata["has_docstring"] = True
            chunks.append(
                CodeChunk.create(
                    file_path=file_path,
                    content="\n".join(lines[start - 1 : end]),
                    language="python",
                    start_line=start,
                    end_line=end,
                    chunk_type=kind,
                    complexity_score=1 + counter.count,
                    dependencies=[t for t in call_targets(node) if t != name],
                    metadata=metadata,
                )
            )
        return chunks

    @staticmethod
    def _import_header(tree: ast.Module) -> Optional[tuple[int, int]]:
        """Line span of the leading import statements, after any docstring."""
        body = list(tree.body)
        if body and isinstance(body[0], ast.Expr) and isinstance(getattr(body[0], "value", None), ast.Constant):
            body = body[1:]
        run = []
        for stmt in body:
            if isinstance(stmt, (ast.Import, ast.ImportFrom)):
                run.append(stmt)
            else:
                break
        if not run:
            return None
        return run[0].lineno, _get_end_lineno(run[-1], run[-1].lineno)
