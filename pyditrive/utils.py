"""Utility functions for pyditrive."""

import hashlib
from pathlib import Path

# =============================================================================
# Constants
# =============================================================================

# Reserved per-directory metadata store
METADATA_FILE_NAME: str = ".ditrive"

# Reserved repository configuration file
REPO_CONFIG_FILE_NAME: str = ".ditrive-config.json"

# Version control internal directory, never traversed
VCS_DIR_NAME: str = ".git"

# Read buffer for hashing and streaming transfers (8 KB)
DEFAULT_BUFFER_SIZE: int = 8192

# Chunk size for streamed uploads (8 MB)
DEFAULT_UPLOAD_CHUNK_SIZE: int = 8 * 1024 * 1024

# Retry configuration for transient errors
DEFAULT_MAX_RETRIES: int = 3
DEFAULT_RETRY_DELAY: float = 1.0  # seconds

MIB: int = 1024 * 1024


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5 MB", "256 B")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / 1024 / 1024:.1f} MB"
    else:
        return f"{size_bytes / 1024 / 1024 / 1024:.1f} GB"


# =============================================================================
# Hash calculation utilities
# =============================================================================


def calculate_file_hash(path: Path, buffer_size: int = DEFAULT_BUFFER_SIZE) -> str:
    """Calculate the SHA-256 content hash of a file.

    The whole byte stream is digested, so two files share a hash only when
    their contents are identical.

    Args:
        path: File to hash
        buffer_size: Read buffer size in bytes

    Returns:
        Lowercase hex digest (64 characters)

    Raises:
        OSError: If the file cannot be read

    Examples:
        >>> calculate_file_hash(Path("empty.bin"))  # doctest: +SKIP
        'e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        while True:
            chunk = f.read(buffer_size)
            if not chunk:
                break
            hasher.update(chunk)
    return hasher.hexdigest()


# =============================================================================
# Path utilities
# =============================================================================


def to_posix_path(path: str) -> str:
    """Normalize path separators to forward slashes.

    Examples:
        >>> to_posix_path("assets\\\\video.mp4")
        'assets/video.mp4'
    """
    return path.replace("\\", "/")


def relative_posix_path(path: Path, base_path: Path) -> str:
    """Return ``path`` relative to ``base_path`` using forward slashes.

    Falls back to the full path when ``path`` is not below ``base_path``.
    """
    try:
        return path.relative_to(base_path).as_posix()
    except ValueError:
        return to_posix_path(str(path))
