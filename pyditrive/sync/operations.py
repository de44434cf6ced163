"""Sync operations wrapper for unified upload/download interface."""

import logging
import time
from pathlib import Path, PurePosixPath
from typing import Callable, Optional

from ..api import DriveClient
from ..utils import calculate_file_hash
from .scanner import LocalFile
from .tracker import ManagedFileRecord

logger = logging.getLogger(__name__)


class SyncOperations:
    """Unified operations for upload/download with common interface."""

    def __init__(self, client: DriveClient):
        """Initialize sync operations.

        Args:
            client: Drive API client
        """
        self.client = client

    def upload_file(
        self,
        local_file: LocalFile,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> ManagedFileRecord:
        """Upload a local file into the folder mirroring its directory.

        Args:
            local_file: Local file to upload
            progress_callback: Optional progress callback
                function(bytes_uploaded, total_bytes)

        Returns:
            Record describing the uploaded content
        """
        relative_dir = str(PurePosixPath(local_file.relative_path).parent)
        folder_id = self.client.get_folder_for_path(relative_dir)

        # Hash before uploading so the record describes what was sent
        content_hash = calculate_file_hash(local_file.path)
        result = self.client.upload_file(
            local_file.path, folder_id, progress_callback=progress_callback
        )

        return ManagedFileRecord(
            remote_id=result["id"],
            content_hash=content_hash,
            size_bytes=int(result.get("size", local_file.size)),
            uploaded_at=int(time.time()),
        )

    def download_file(
        self,
        record: ManagedFileRecord,
        local_path: Path,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> int:
        """Download a managed file to local storage.

        Args:
            record: Record of the file to download
            local_path: Local path where file should be saved
            progress_callback: Optional progress callback
                function(bytes_downloaded, total_bytes)

        Returns:
            Number of bytes written
        """
        # Ensure parent directory exists
        local_path.parent.mkdir(parents=True, exist_ok=True)

        return self.client.download_file(
            record.remote_id, local_path, progress_callback=progress_callback
        )
