"""Sync engine for pyditrive - large file push/pull reconciliation."""

from .engine import SyncEngine, parse_policy_answer
from .ignore import (
    IGNORE_FILE_NAME,
    IgnoreFileManager,
    IgnoreRule,
    escape_pattern,
    is_ignored,
    load_ignore_file,
    parse,
)
from .operations import SyncOperations
from .scanner import LargeFileScanner, LocalFile, find_candidates
from .tracker import ManagedFile, ManagedFileRecord, ManagedFileTracker

__all__ = [
    "SyncEngine",
    "SyncOperations",
    "parse_policy_answer",
    "IgnoreFileManager",
    "IgnoreRule",
    "IGNORE_FILE_NAME",
    "escape_pattern",
    "is_ignored",
    "load_ignore_file",
    "parse",
    "LargeFileScanner",
    "LocalFile",
    "find_candidates",
    "ManagedFile",
    "ManagedFileRecord",
    "ManagedFileTracker",
]
