"""
File sources for indexing.

A source lists the files of a repository and reads their text. Binary
and oversized files are filtered here, so the chunker only ever sees
text.
"""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..config.settings import IndexingSettings
from ..retrieval.query_builder import glob_to_pattern

LOG = logging.getLogger("code_review_rag.indexing.source")

SKIPPED_DIRECTORIES = {
    ".git",
    ".hg",
    ".svn",
    "node_modules",
    ".dart_tool",
    "__pycache__",
    ".venv",
    "venv",
    ".tox",
    ".mypy_cache",
    ".pytest_cache",
}
SNIFF_BYTES = 8192


def compile_globs(patterns: Iterable[str]) -> List[re.Pattern]:
    return [re.compile(glob_to_pattern(p)) for p in patterns]


def is_binary(sample: bytes) -> bool:
    return b"\0" in sample


class FileSource(ABC):
    """Repository files addressed by root-relative ``/``-separated paths."""

    @abstractmethod
    def list_files(self) -> List[str]:
        ...

    @abstractmethod
    def read_text(self, path: str) -> Optional[str]:
        """File content, or ``None`` when the file is binary, oversized or unreadable."""


class FileSystemSource(FileSource):
    def __init__(
        self,
        root: str | Path,
        settings: Optional[IndexingSettings] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.root = Path(root)
        self.settings = settings or IndexingSettings()
        self.log = logger or LOG
        self._include = compile_globs(self.settings.include_patterns)
        self._exclude = compile_globs(self.settings.exclude_patterns)

    def selected(self, path: str) -> bool:
        if self._include and not any(p.match(path) for p in self._include):
            return False
        return not any(p.match(path) for p in self._exclude)

    def list_files(self) -> List[str]:
        if not self.root.is_dir():
            raise ValueError(f"Repository root is not a directory: {self.root}")
        files = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            dirnames[:] = sorted(d for d in dirnames if d not in SKIPPED_DIRECTORIES)
            for name in sorted(filenames):
                rel = Path(dirpath, name).relative_to(self.root).as_posix()
                if self.selected(rel):
                    files.append(rel)
        self.log.debug("Listed %d files under %s", len(files), self.root)
        return files

    def read_text(self, path: str) -> Optional[str]:
        full = self.root / path
        try:
            size = full.stat().st_size
            if size > self.settings.max_file_size_bytes:
                self.log.info("Skipping %s: %d bytes exceeds limit", path, size)
                return None
            data = full.read_bytes()
        except OSError as exc:
            self.log.warning("Cannot read %s: %s", path, exc)
            return None
        if is_binary(data[:SNIFF_BYTES]):
            self.log.debug("Skipping binary file %s", path)
            return None
        return data.decode("utf-8", errors="replace")


class MemorySource(FileSource):
    """Files held in a dict; used for tests and for indexing generated text."""

    def __init__(self, files: Dict[str, str], max_file_size_bytes: Optional[int] = None):
        self.files = dict(files)
        self.max_file_size_bytes = max_file_size_bytes

    def list_files(self) -> List[str]:
        return sorted(self.files)

    def read_text(self, path: str) -> Optional[str]:
        content = self.files.get(path)
        if content is None or "\0" in content:
            return None
        if self.max_file_size_bytes is not None and len(content.encode("utf-8")) > self.max_file_size_bytes:
            return None
        return content
