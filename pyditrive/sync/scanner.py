"""Directory scanning for large file candidates."""

import logging
import stat
from dataclasses import dataclass
from pathlib import Path

from ..utils import METADATA_FILE_NAME, REPO_CONFIG_FILE_NAME, VCS_DIR_NAME

logger = logging.getLogger(__name__)

# File names that are never payload, whatever their size
RESERVED_FILE_NAMES = frozenset({METADATA_FILE_NAME, REPO_CONFIG_FILE_NAME})


@dataclass
class LocalFile:
    """Represents a local file with metadata."""

    path: Path
    """Absolute path to the file"""

    relative_path: str
    """Relative path (using forward slashes for cross-platform compatibility)"""

    size: int
    """File size in bytes"""


class LargeFileScanner:
    """Finds files above a size threshold in a repository.

    The version control directory is pruned before it is descended into, and
    the tracker and repository configuration files are never reported.
    Sizes come from a single ``stat`` per file; contents are never opened.

    Examples:
        >>> scanner = LargeFileScanner(threshold_bytes=10 * 1024 * 1024)
        >>> for f in scanner.scan(Path("/repo")):  # doctest: +SKIP
        ...     print(f.relative_path, f.size)
    """

    def __init__(self, threshold_bytes: int):
        """Initialize scanner.

        Args:
            threshold_bytes: Files strictly larger than this are candidates
        """
        if threshold_bytes < 0:
            raise ValueError(f"Threshold must not be negative: {threshold_bytes}")
        self.threshold_bytes = threshold_bytes

    def is_large(self, size: int) -> bool:
        return size > self.threshold_bytes

    def scan(self, root: Path) -> list[LocalFile]:
        """Scan a tree depth-first for large files.

        Entries that cannot be read are logged and skipped. Failing to list
        the root itself is fatal.

        Args:
            root: Repository root

        Returns:
            Large files in traversal order

        Raises:
            OSError: If the root directory cannot be listed
        """
        files: list[LocalFile] = []
        self._scan_directory(root, root, files)
        return files

    def _scan_directory(self, directory: Path, root: Path, files: list[LocalFile]) -> None:
        if directory == root:
            # Errors on the root propagate
            entries = sorted(directory.iterdir())
        else:
            try:
                entries = sorted(directory.iterdir())
            except OSError as e:
                logger.warning(f"Skipping unreadable directory {directory}: {e}")
                return

        for item in entries:
            try:
                if item.is_symlink() and item.is_dir():
                    logger.debug(f"Not following directory symlink: {item}")
                    continue
                if item.is_dir():
                    if item.name == VCS_DIR_NAME:
                        continue
                    self._scan_directory(item, root, files)
                    continue
                if item.name in RESERVED_FILE_NAMES:
                    continue

                info = item.stat()
            except OSError as e:
                logger.warning(f"Skipping unreadable entry {item}: {e}")
                continue

            if not stat.S_ISREG(info.st_mode):
                continue
            if self.is_large(info.st_size):
                files.append(
                    LocalFile(
                        path=item,
                        relative_path=item.relative_to(root).as_posix(),
                        size=info.st_size,
                    )
                )


def find_candidates(root: Path, threshold_bytes: int) -> list[Path]:
    """Return the paths of all files under ``root`` larger than the threshold."""
    return [f.path for f in LargeFileScanner(threshold_bytes).scan(root)]
