"""pyditrive - keep large files of a git repository in Google Drive."""

__version__ = "0.1.0"

from .api import DriveClient  # noqa: E402
from .exceptions import (  # noqa: E402
    DitriveAPIError,
    DitriveAuthenticationError,
    DitriveAuthError,
    DitriveCancelledError,
    DitriveConcurrentModificationError,
    DitriveConfigError,
    DitriveDownloadError,
    DitriveError,
    DitriveGitError,
    DitriveGitHubError,
    DitriveInvalidResponseError,
    DitriveNetworkError,
    DitriveNotFoundError,
    DitrivePermissionError,
    DitriveRateLimitError,
    DitriveUploadError,
)
from .utils import calculate_file_hash  # noqa: E402

__all__ = [
    "__version__",
    "DriveClient",
    "DitriveAPIError",
    "DitriveAuthenticationError",
    "DitriveAuthError",
    "DitriveCancelledError",
    "DitriveConcurrentModificationError",
    "DitriveConfigError",
    "DitriveDownloadError",
    "DitriveError",
    "DitriveGitError",
    "DitriveGitHubError",
    "DitriveInvalidResponseError",
    "DitriveNetworkError",
    "DitriveNotFoundError",
    "DitrivePermissionError",
    "DitriveRateLimitError",
    "DitriveUploadError",
    "calculate_file_hash",
]
