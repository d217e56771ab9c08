"""Custom exceptions for CogCommit."""

from typing import Optional

from cogcommit.sync.retry import NonRetryableError, RetryableError


class CogCommitError(Exception):
    """Base class for CogCommit errors."""


class NotAuthenticatedError(CogCommitError):
    """Raised when no valid access token is available, even after a refresh."""

    def __init__(self, message: str = "Not authenticated. Run 'cogcommit login' first."):
        super().__init__(message)


class CloudNotConfiguredError(CogCommitError):
    """Raised when the remote URL or public key is missing."""

    def __init__(self) -> None:
        super().__init__(
            "Cloud not configured. Set COGCOMMIT_REMOTE_URL and "
            "COGCOMMIT_REMOTE_ANON_KEY environment variables."
        )


class RemoteError(NonRetryableError):
    """A remote call failed permanently (validation, permissions, not found)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message, status_code=status_code)


class TransientRemoteError(RetryableError):
    """A remote call failed with a status worth retrying."""


class CommitNotFoundError(CogCommitError):
    """Raised when a local commit id does not exist."""

    def __init__(self, commit_id: str):
        self.commit_id = commit_id
        super().__init__(f"Commit not found: {commit_id}")


class NotInConflictError(CogCommitError):
    """Raised when a resolution is requested for a commit that is not in conflict."""

    def __init__(self, commit_id: str, status: str):
        self.commit_id = commit_id
        self.status = status
        super().__init__(f"Commit {commit_id} is not in conflict (status: {status})")


class MissingCloudIdError(CogCommitError):
    """Raised when keeping the cloud copy of a commit that was never pushed."""

    def __init__(self, commit_id: str):
        self.commit_id = commit_id
        super().__init__(f"No cloud ID for commit {commit_id}")


class SyncInProgressError(CogCommitError):
    """Raised when a blocking sync is requested while another one is running."""

    def __init__(self) -> None:
        super().__init__("Sync already in progress")
