from .incremental import ChangeSet, HashState, IncrementalIndexer, UpdateResult, compute_file_hashes, detect_changes
from .indexer import CancellationToken, IndexIssue, IndexOptions, IndexResult, RepositoryIndexer
from .source import FileSource, FileSystemSource, MemorySource

__all__ = [
    "CancellationToken",
    "ChangeSet",
    "FileSource",
    "FileSystemSource",
    "HashState",
    "IncrementalIndexer",
    "IndexIssue",
    "IndexOptions",
    "IndexResult",
    "MemorySource",
    "RepositoryIndexer",
    "UpdateResult",
    "compute_file_hashes",
    "detect_changes",
]
