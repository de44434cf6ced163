"""API client for the Google Drive object store."""

from __future__ import annotations

import logging
import os
import random
import time
from collections.abc import Iterator
from pathlib import Path, PurePosixPath
from typing import Any, Callable, Protocol

import httpx

from .exceptions import (
    DitriveAPIError,
    DitriveAuthenticationError,
    DitriveDownloadError,
    DitriveInvalidResponseError,
    DitriveNetworkError,
    DitriveNotFoundError,
    DitrivePermissionError,
    DitriveRateLimitError,
    DitriveUploadError,
)
from .utils import (
    DEFAULT_BUFFER_SIZE,
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY,
    DEFAULT_UPLOAD_CHUNK_SIZE,
)

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"

ProgressCallback = Callable[[int, int], None]


class CredentialProvider(Protocol):
    """Anything that can hand out a valid bearer token."""

    def get_valid_credential(self) -> str: ...


def _escape_query_value(value: str) -> str:
    """Escape a string literal for a Drive search query."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


class DriveClient:
    """Client for storing files in Google Drive.

    Files are stored below a per-repository folder, ``<root>/<repo name>``,
    mirroring the repository's directory layout. Folder lookups are cached
    by ``(parent id, name)`` for the lifetime of the client.
    """

    API_URL = "https://www.googleapis.com/drive/v3"
    UPLOAD_URL = "https://www.googleapis.com/upload/drive/v3"

    def __init__(
        self,
        credentials: CredentialProvider,
        root_folder_id: str,
        repo_name: str,
        repo_folder_id: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize Drive client.

        Args:
            credentials: Source of bearer tokens
            root_folder_id: Drive folder holding all repositories
            repo_name: Name of this repository's folder below the root
            repo_folder_id: Known id of the repository folder (skips lookup)
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds (default: 1.0)
            timeout: Request timeout in seconds (default: 60.0)
            transport: Optional httpx transport (used by tests)
        """
        self.credentials = credentials
        self.root_folder_id = root_folder_id
        self.repo_name = repo_name
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport
        self._repo_folder_id = repo_folder_id or None
        self._folder_cache: dict[tuple[str, str], str] = {}
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> DriveClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.credentials.get_valid_credential()}"}

    def _should_retry(self, exception: Exception, attempt: int) -> bool:
        """Determine if a request should be retried.

        Args:
            exception: The exception that occurred
            attempt: Current attempt number (0-based)

        Returns:
            True if the request should be retried, False otherwise
        """
        if attempt >= self.max_retries:
            return False

        # Transient failures
        if isinstance(exception, (DitriveNetworkError, DitriveRateLimitError)):
            return True

        if isinstance(exception, httpx.HTTPStatusError):
            return 500 <= exception.response.status_code < 600

        return False

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # +/- 25% jitter
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    @staticmethod
    def _error_message(response: httpx.Response) -> str | None:
        try:
            if not response.content:
                return None
            data = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None
        error = data.get("error")
        if isinstance(error, dict):
            return error.get("message")
        return data.get("message") or error or data.get("error_description")

    def _handle_http_error(
        self, e: httpx.HTTPStatusError, attempt: int
    ) -> tuple[Exception, bool]:
        """Map an HTTP error to a pyditrive exception.

        Args:
            e: The HTTP error exception
            attempt: Current attempt number

        Returns:
            Tuple of (exception to raise, should_retry)
        """
        status_code = e.response.status_code
        detail = self._error_message(e.response)

        if status_code == 401:
            raise DitriveAuthenticationError(
                "Drive rejected the credentials - run 'ditrive login' again"
            ) from e
        elif status_code == 403:
            if detail and "rate limit" in detail.lower():
                error = DitriveRateLimitError(f"Rate limit exceeded: {detail}")
                return (error, attempt < self.max_retries)
            raise DitrivePermissionError(
                f"Access forbidden{': ' + detail if detail else ''}"
            ) from e
        elif status_code == 404:
            raise DitriveNotFoundError(
                f"Resource not found{': ' + detail if detail else ''}"
            ) from e
        elif status_code == 429:
            error = DitriveRateLimitError("Rate limit exceeded - please try again later")
            return (error, attempt < self.max_retries)

        error_msg = f"API request failed with status {status_code}"
        if detail:
            error_msg = f"{error_msg}: {detail}"
        should_retry = 500 <= status_code < 600 and attempt < self.max_retries
        return (DitriveAPIError(error_msg), should_retry)

    def _retry_delay_for(self, error: Exception, response: httpx.Response, attempt: int) -> float:
        if isinstance(error, DitriveRateLimitError):
            retry_after = response.headers.get("Retry-After")
            if retry_after and retry_after.isdigit():
                return float(retry_after)
        return self._calculate_retry_delay(attempt)

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request with retry logic and return the response.

        Args:
            method: HTTP method
            url: Absolute URL, or an endpoint relative to the Drive API
            **kwargs: Additional arguments passed to httpx

        Raises:
            DitriveAPIError: If the request fails after all retries
        """
        if not url.startswith("http"):
            url = f"{self.API_URL}/{url.lstrip('/')}"
        client = self._get_client()
        last_exception: Exception | None = None

        for attempt in range(self.max_retries + 1):
            headers = {**kwargs.pop("headers", {}), **self._auth_headers()}
            try:
                response = client.request(method, url, headers=headers, **kwargs)
                response.raise_for_status()
                return response
            except httpx.HTTPStatusError as e:
                error, should_retry = self._handle_http_error(e, attempt)
                last_exception = error
                if should_retry:
                    time.sleep(self._retry_delay_for(error, e.response, attempt))
                    kwargs["headers"] = headers
                    continue
                raise error from e
            except httpx.RequestError as e:
                error = DitriveNetworkError(f"Network error: {e}")
                last_exception = error
                if self._should_retry(error, attempt):
                    time.sleep(self._calculate_retry_delay(attempt))
                    kwargs["headers"] = headers
                    continue
                raise error from e

        if last_exception:
            raise last_exception
        raise DitriveAPIError("Request failed after all retry attempts")

    def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        """Make an API request and return the decoded JSON body."""
        response = self._send(method, url, **kwargs)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise DitriveInvalidResponseError("Invalid JSON response from Drive") from e

    # =========================
    # Folder Operations
    # =========================

    def find_folder(self, name: str, parent_id: str) -> str | None:
        """Find a folder by name inside a parent folder.

        Args:
            name: Folder name (exact match)
            parent_id: Parent folder id

        Returns:
            Folder id of the first match, or None
        """
        query = (
            f"name='{_escape_query_value(name)}' "
            f"and '{_escape_query_value(parent_id)}' in parents "
            f"and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        )
        result = self._request(
            "GET",
            "/files",
            params={"q": query, "fields": "files(id,name)", "pageSize": 10},
        )
        files = result.get("files") or []
        for entry in files:
            if entry.get("name") == name and entry.get("id"):
                return entry["id"]
        return None

    def create_folder(self, name: str, parent_id: str) -> str:
        """Create a folder and return its id."""
        result = self._request(
            "POST",
            "/files",
            params={"fields": "id,name"},
            json={"name": name, "parents": [parent_id], "mimeType": FOLDER_MIME_TYPE},
        )
        folder_id = result.get("id")
        if not folder_id:
            raise DitriveInvalidResponseError("No folder ID returned")
        logger.info(f"Created folder '{name}' with ID: {folder_id}")
        return folder_id

    def get_or_create_folder(self, name: str, parent_id: str) -> str:
        """Resolve a folder by name below a parent, creating it if needed.

        Results are cached by ``(parent_id, name)``.
        """
        cache_key = (parent_id, name)
        cached = self._folder_cache.get(cache_key)
        if cached is not None:
            return cached

        folder_id = self.find_folder(name, parent_id)
        if folder_id is None:
            folder_id = self.create_folder(name, parent_id)
        else:
            logger.debug(f"Found folder '{name}' in {parent_id}: {folder_id}")

        self._folder_cache[cache_key] = folder_id
        return folder_id

    @property
    def repo_folder_id(self) -> str:
        """Id of this repository's folder, resolved on first use."""
        if self._repo_folder_id is None:
            self._repo_folder_id = self.get_or_create_folder(
                self.repo_name, self.root_folder_id
            )
            logger.info(
                f"Using Drive folder {self._repo_folder_id} for repo '{self.repo_name}'"
            )
        return self._repo_folder_id

    def get_folder_for_path(self, relative_dir: str) -> str:
        """Resolve the folder mirroring a repository directory.

        Args:
            relative_dir: Directory relative to the repository root
                (``""`` or ``"."`` for the root)

        Returns:
            Folder id, with intermediate folders created as needed
        """
        folder_id = self.repo_folder_id
        for part in PurePosixPath(relative_dir.replace("\\", "/")).parts:
            if part in ("", ".", "/"):
                continue
            folder_id = self.get_or_create_folder(part, folder_id)
        return folder_id

    # =========================
    # File Operations
    # =========================

    def get_file_metadata(self, file_id: str) -> dict[str, Any]:
        """Get id, name and size of a file."""
        return self._request("GET", f"/files/{file_id}", params={"fields": "id,name,size"})

    def file_exists(self, file_id: str) -> bool:
        """Check if a file exists in Drive."""
        try:
            self.get_file_metadata(file_id)
        except DitriveNotFoundError:
            return False
        return True

    def upload_file(
        self,
        file_path: Path,
        folder_id: str,
        progress_callback: ProgressCallback | None = None,
        chunk_size: int = DEFAULT_UPLOAD_CHUNK_SIZE,
    ) -> dict[str, Any]:
        """Upload a file into a folder with a resumable upload session.

        Args:
            file_path: Local file to upload
            folder_id: Destination folder id
            progress_callback: Optional callback function(bytes_uploaded, total_bytes)
            chunk_size: Size of the chunks streamed from disk

        Returns:
            Dictionary with ``id`` and ``size`` of the stored file

        Raises:
            DitriveUploadError: If the upload fails
        """
        try:
            file_size = file_path.stat().st_size
        except OSError as e:
            raise DitriveUploadError(f"Cannot read {file_path}: {e}") from e

        response = self._send(
            "POST",
            f"{self.UPLOAD_URL}/files",
            params={"uploadType": "resumable", "fields": "id,name,size"},
            headers={
                "X-Upload-Content-Type": "application/octet-stream",
                "X-Upload-Content-Length": str(file_size),
            },
            json={"name": file_path.name, "parents": [folder_id]},
        )
        session_url = response.headers.get("Location")
        if not session_url:
            raise DitriveUploadError("Drive did not return an upload session URL")

        def file_reader() -> Iterator[bytes]:
            uploaded = 0
            with open(file_path, "rb") as f:
                while True:
                    chunk = f.read(chunk_size)
                    if not chunk:
                        break
                    uploaded += len(chunk)
                    if progress_callback:
                        progress_callback(uploaded, file_size)
                    yield chunk

        client = self._get_client()
        try:
            upload_response = client.put(
                session_url,
                content=file_reader(),
                headers={
                    **self._auth_headers(),
                    "Content-Length": str(file_size),
                    "Content-Type": "application/octet-stream",
                },
            )
            upload_response.raise_for_status()
            result = upload_response.json()
        except httpx.HTTPStatusError as e:
            detail = self._error_message(e.response)
            raise DitriveUploadError(
                f"Upload of {file_path.name} failed with status "
                f"{e.response.status_code}{': ' + detail if detail else ''}"
            ) from e
        except httpx.RequestError as e:
            raise DitriveNetworkError(f"Network error during upload: {e}") from e
        except OSError as e:
            raise DitriveUploadError(f"Failed to read {file_path}: {e}") from e
        except ValueError as e:
            raise DitriveInvalidResponseError("Invalid JSON response from Drive") from e

        file_id = result.get("id")
        if not file_id:
            raise DitriveUploadError("No file ID returned")

        size = int(result.get("size") or file_size)
        logger.info(f"Uploaded {file_path.name} ({size} bytes) to Drive as {file_id}")
        return {"id": file_id, "size": size}

    def download_file(
        self,
        file_id: str,
        destination: Path,
        progress_callback: ProgressCallback | None = None,
    ) -> int:
        """Download a file's content to a local path.

        Content is written to a temporary ``.part`` file that is renamed
        into place once complete, so an interrupted download never leaves a
        truncated file at ``destination``.

        Args:
            file_id: Drive file id
            destination: Local path to write
            progress_callback: Optional callback function(bytes_downloaded, total_bytes)

        Returns:
            Number of bytes written

        Raises:
            DitriveDownloadError: If the download fails
        """
        destination.parent.mkdir(parents=True, exist_ok=True)
        part_path = destination.with_name(destination.name + ".part")
        url = f"{self.API_URL}/files/{file_id}"
        client = self._get_client()
        bytes_downloaded = 0
        replaced = False

        try:
            with client.stream(
                "GET", url, params={"alt": "media"}, headers=self._auth_headers()
            ) as response:
                response.raise_for_status()
                total_size = int(response.headers.get("Content-Length", 0))

                with open(part_path, "wb") as f:
                    for chunk in response.iter_bytes(chunk_size=DEFAULT_BUFFER_SIZE):
                        if chunk:
                            f.write(chunk)
                            bytes_downloaded += len(chunk)
                            if progress_callback:
                                progress_callback(bytes_downloaded, total_size)
            os.replace(part_path, destination)
            replaced = True
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                raise DitriveNotFoundError(f"File {file_id} not found in Drive") from e
            raise DitriveDownloadError(
                f"Download of {file_id} failed with status {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise DitriveNetworkError(f"Network error during download: {e}") from e
        except OSError as e:
            raise DitriveDownloadError(f"Failed to write file: {e}") from e
        finally:
            # Also covers KeyboardInterrupt mid-stream
            if not replaced:
                part_path.unlink(missing_ok=True)

        logger.info(f"Downloaded {file_id} to {destination} ({bytes_downloaded} bytes)")
        return bytes_downloaded
