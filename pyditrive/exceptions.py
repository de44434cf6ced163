"""Custom exceptions for pyditrive."""


class DitriveError(Exception):
    """Base exception for all pyditrive errors."""


class DitriveConfigError(DitriveError):
    """Configuration is missing or invalid."""


class DitriveAPIError(DitriveError):
    """A remote API request failed."""


class DitriveAuthenticationError(DitriveAPIError):
    """Invalid or expired credentials."""


class DitrivePermissionError(DitriveAPIError):
    """Access to a remote resource was forbidden."""


class DitriveNotFoundError(DitriveAPIError):
    """A remote resource does not exist."""


class DitriveRateLimitError(DitriveAPIError):
    """The remote API rate limit was exceeded."""


class DitriveNetworkError(DitriveAPIError):
    """The request did not reach the remote API."""


class DitriveInvalidResponseError(DitriveAPIError):
    """The remote API returned something that could not be parsed."""


class DitriveUploadError(DitriveAPIError):
    """Uploading a file to the object store failed."""


class DitriveDownloadError(DitriveAPIError):
    """Downloading a file from the object store failed."""


class DitriveGitHubError(DitriveAPIError):
    """A GitHub API request failed."""


class DitriveAuthError(DitriveError):
    """Acquiring or refreshing a Drive credential failed."""


class DitriveGitError(DitriveError):
    """A git command failed or the path is not a git repository."""


class DitriveConcurrentModificationError(DitriveError):
    """A metadata store was modified by someone else during an update."""


class DitriveCancelledError(DitriveError):
    """The operator cancelled the operation."""

    def __init__(self, message: str = "Operation cancelled by user"):
        super().__init__(message)
