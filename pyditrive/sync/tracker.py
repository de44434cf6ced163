"""Per-directory tracking of files offloaded to the object store.

Every directory that holds managed files gets a ``.ditrive`` JSON file next
to them, mapping file names to :class:`ManagedFileRecord`. The tracker is the
only writer of these stores.

Two on-disk shapes are read:

* legacy: ``{"big.bin": "<remote id>"}``
* current: ``{"big.bin": {"id": ..., "hash": ..., "size": ..., "uploaded_at": ...}}``
"""

import json
import logging
import os
import tempfile
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

from ..exceptions import DitriveConcurrentModificationError
from ..utils import METADATA_FILE_NAME, VCS_DIR_NAME, calculate_file_hash

logger = logging.getLogger(__name__)

# Attempts for a read-modify-write cycle before giving up
MAX_UPDATE_ATTEMPTS = 3


def is_valid_filename(name: str) -> bool:
    """Check that a store key names a file directly inside its directory.

    Keys come from committed stores and are joined to the directory on pull,
    so separators and relative components are rejected.

    Examples:
        >>> is_valid_filename("video.mp4")
        True
        >>> is_valid_filename("../escaped.bin")
        False
    """
    if not name or name in (".", ".."):
        return False
    return "/" not in name and "\\" not in name


@dataclass
class ManagedFileRecord:
    """What the tracker knows about one offloaded file."""

    remote_id: str = ""
    """Identifier of the file in the object store"""

    content_hash: str = ""
    """SHA-256 of the uploaded content (empty = unknown)"""

    size_bytes: int = 0
    """File size at upload time"""

    uploaded_at: int = 0
    """Upload time (Unix timestamp, seconds)"""

    @property
    def has_hash(self) -> bool:
        return bool(self.content_hash)

    def to_dict(self) -> dict:
        """Convert record to its on-disk JSON shape."""
        return {
            "id": self.remote_id,
            "hash": self.content_hash,
            "size": self.size_bytes,
            "uploaded_at": self.uploaded_at,
        }

    @classmethod
    def from_value(cls, value: Any) -> Optional["ManagedFileRecord"]:
        """Decode a stored JSON value.

        A bare string is the legacy shape and holds only the remote id. An
        object is the current shape. Anything else cannot be decoded.

        Args:
            value: Value loaded from the store

        Returns:
            The decoded record, or None if the value has neither shape
        """
        if isinstance(value, str):
            return cls(remote_id=value)
        if isinstance(value, dict):
            return cls._from_object(value)
        return None

    @classmethod
    def _from_object(cls, data: dict) -> Optional["ManagedFileRecord"]:
        remote_id = data.get("id")
        content_hash = data.get("hash", "")
        size = data.get("size", 0)
        uploaded_at = data.get("uploaded_at", 0)

        if not isinstance(remote_id, str):
            return None
        if not isinstance(content_hash, str):
            return None
        if isinstance(size, bool) or not isinstance(size, int) or size < 0:
            return None
        if isinstance(uploaded_at, bool) or not isinstance(uploaded_at, int):
            return None

        return cls(
            remote_id=remote_id,
            content_hash=content_hash,
            size_bytes=size,
            uploaded_at=uploaded_at,
        )


@dataclass
class ManagedFile:
    """A tracked file in the repository (one entry of the managed-file index)."""

    path: Path
    """Absolute path where the file belongs"""

    record: ManagedFileRecord

    @property
    def exists(self) -> bool:
        return self.path.exists()


class ManagedFileTracker:
    """Reads and writes the ``.ditrive`` stores of a repository.

    The design assumes one writer per directory at a time. Writes are atomic
    and each read-modify-write checks that the store did not change in
    between, raising :class:`DitriveConcurrentModificationError` if it keeps
    changing.
    """

    def __init__(self, repo_path: Path, store_name: str = METADATA_FILE_NAME):
        """Initialize the tracker.

        Args:
            repo_path: Repository root
            store_name: Reserved file name of the per-directory store
        """
        self.repo_path = repo_path
        self.store_name = store_name

    def store_path(self, directory: Path) -> Path:
        """Path of the metadata store for a directory."""
        return directory / self.store_name

    def _read_raw(self, directory: Path) -> Optional[bytes]:
        try:
            return self.store_path(directory).read_bytes()
        except FileNotFoundError:
            return None

    def _decode(self, raw: Optional[bytes], store: Path) -> dict[str, ManagedFileRecord]:
        if raw is None:
            return {}

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to parse {store}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Failed to parse {store}: expected a JSON object")
            return {}

        mappings: dict[str, ManagedFileRecord] = {}
        for filename, value in data.items():
            if not is_valid_filename(filename):
                logger.warning(f"Ignoring invalid file name {filename!r} in {store}")
                continue
            record = ManagedFileRecord.from_value(value)
            if record is None:
                logger.warning(
                    f"Invalid record for '{filename}' in {store}, using defaults"
                )
                record = ManagedFileRecord()
            mappings[filename] = record
        return mappings

    def read(self, directory: Path) -> dict[str, ManagedFileRecord]:
        """Read the records of a directory.

        Args:
            directory: Directory whose store should be read

        Returns:
            Mapping of file name to record (empty if there is no store)
        """
        return self._decode(self._read_raw(directory), self.store_path(directory))

    def write(self, directory: Path, mappings: dict[str, ManagedFileRecord]) -> None:
        """Persist the full mapping for a directory.

        An empty mapping removes the store.
        """
        store = self.store_path(directory)
        if not mappings:
            if store.exists():
                store.unlink()
                logger.debug(f"Removed empty store {store}")
            return

        content = json.dumps(
            {name: mappings[name].to_dict() for name in sorted(mappings)},
            indent=2,
        )
        fd, tmp_name = tempfile.mkstemp(
            dir=directory, prefix=f"{self.store_name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.write("\n")
            os.replace(tmp_name, store)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.debug(f"Updated {store}")

    def _update(
        self,
        directory: Path,
        mutate: Callable[[dict[str, ManagedFileRecord]], bool],
    ) -> None:
        """Read-modify-write a directory's store.

        Args:
            directory: Directory whose store is updated
            mutate: Changes the mapping in place; returns False when nothing
                changed and no write is needed
        """
        store = self.store_path(directory)
        for attempt in range(MAX_UPDATE_ATTEMPTS):
            raw = self._read_raw(directory)
            mappings = self._decode(raw, store)
            if not mutate(mappings):
                return
            if self._read_raw(directory) != raw:
                logger.debug(
                    f"{store} changed during update (attempt {attempt + 1}), retrying"
                )
                continue
            self.write(directory, mappings)
            return
        raise DitriveConcurrentModificationError(
            f"{store} kept changing while being updated"
        )

    def add(self, directory: Path, filename: str, record: ManagedFileRecord) -> None:
        """Add or replace the record for a file."""

        def mutate(mappings: dict[str, ManagedFileRecord]) -> bool:
            mappings[filename] = record
            return True

        self._update(directory, mutate)

    def remove(self, directory: Path, filename: str) -> bool:
        """Remove the record for a file.

        Returns:
            True if a record was removed
        """
        removed = False

        def mutate(mappings: dict[str, ManagedFileRecord]) -> bool:
            nonlocal removed
            removed = mappings.pop(filename, None) is not None
            return removed

        self._update(directory, mutate)
        if removed:
            logger.debug(f"Removed mapping for '{filename}'")
        return removed

    def get_record(self, path: Path) -> Optional[ManagedFileRecord]:
        """Get the record for a file, if it is managed."""
        return self.read(path.parent).get(path.name)

    def is_managed(self, path: Path) -> bool:
        """Check whether a file has a record in its directory's store."""
        return self.get_record(path) is not None

    def needs_update(self, path: Path) -> bool:
        """Check whether a file must be (re-)uploaded.

        Only a stored hash equal to the file's current SHA-256 proves the
        remote copy is current. Untracked files and records without a hash
        always need an update.

        Raises:
            OSError: If the file exists in the store but cannot be read
        """
        record = self.get_record(path)
        if record is None or not record.has_hash:
            return True
        return calculate_file_hash(path) != record.content_hash

    def iter_store_directories(self) -> Iterator[Path]:
        """Yield every directory below the root that has a store.

        The version control directory is not descended into. Unreadable
        directories are logged and skipped.
        """

        def on_error(error: OSError) -> None:
            logger.warning(f"Skipping unreadable directory: {error}")

        for current, dirs, files in os.walk(self.repo_path, onerror=on_error):
            dirs[:] = sorted(d for d in dirs if d != VCS_DIR_NAME)
            if self.store_name in files:
                yield Path(current)

    def enumerate_all(self) -> list[ManagedFile]:
        """Snapshot every tracked file in the repository.

        Each call rescans the tree; the result includes files whose local
        copy is missing.
        """
        result: list[ManagedFile] = []
        for directory in self.iter_store_directories():
            mappings = self.read(directory)
            for filename in sorted(mappings):
                result.append(ManagedFile(directory / filename, mappings[filename]))
        return result
