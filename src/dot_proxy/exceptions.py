"""Exception taxonomy for dot.

Every error carries the process exit code the command line reports for it, so
that callers above the coordinator never need to inspect error messages.
"""

from enum import IntEnum
from typing import Optional, Sequence


class ExitCode(IntEnum):
    """Process exit codes reported by the ``dot`` command."""

    OK = 0
    ERROR = 1
    USAGE = 2
    ROLLED_BACK = 3
    UNSAFE_STATE = 4
    PARTIAL_PUSH = 5
    PARTIAL_CLONE = 6
    PARTIAL_FAILURE = 7
    INTERRUPTED = 130


class DotError(Exception):
    """Base exception for all dot errors."""

    exit_code = ExitCode.ERROR

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(DotError):
    """Raised when the configuration file is missing, unreadable or invalid."""


class InvalidRemoteUrl(DotError):
    """Raised when a remote URL does not parse into host/owner/project."""

    def __init__(self, url: str, detail: str = "") -> None:
        self.url = url
        message = f"Invalid remote URL: {url!r}"
        if detail:
            message += f" ({detail})"
        super().__init__(message)


class InvalidDirectoryPath(DotError):
    """Raised when a hidden directory path is not a clean relative path."""

    exit_code = ExitCode.USAGE

    def __init__(self, path: str, detail: str) -> None:
        self.path = path
        super().__init__(f"Invalid directory path {path!r}: {detail}")


class OrganizationNotAuthorized(DotError):
    """Raised before any index write when the organization is not allowed."""

    def __init__(self, organization: Optional[str]) -> None:
        self.organization = organization
        if organization:
            message = f"Organization '{organization}' is not in authorized_organizations"
        else:
            message = "No default organization configured"
        super().__init__(message)


class RepositoryAlreadyExists(DotError):
    """Raised when a remote repository or index registration already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Repository already exists: {name}")


class RepositoryKeyConflict(DotError):
    """Raised when a key is already registered under a different path."""

    def __init__(self, repository_key: str, existing_path: str, requested_path: str) -> None:
        self.repository_key = repository_key
        self.existing_path = existing_path
        self.requested_path = requested_path
        super().__init__(
            f"Repository key {repository_key} is registered for '{existing_path}', "
            f"not '{requested_path}'"
        )


class IndexStoreError(DotError):
    """Raised when the index repository cannot be read or written."""


class IndexConflict(IndexStoreError):
    """Raised when an index push keeps being rejected past the retry budget."""

    def __init__(self, project_key: str, attempts: int) -> None:
        self.project_key = project_key
        self.attempts = attempts
        super().__init__(
            f"Index update for {project_key} rejected {attempts} time(s); "
            "another client keeps updating the index"
        )


class OperationFailed(DotError):
    """A single-repository action failed."""

    def __init__(self, repository: str, reason: str) -> None:
        self.repository = repository
        self.reason = reason
        super().__init__(f"{repository}: {reason}")


class HostingError(DotError):
    """Raised by the hosting API client for unexpected responses."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.status = status
        super().__init__(message)


class RateLimited(HostingError):
    """Raised when the hosting API asks the client to slow down."""

    def __init__(self, message: str, retry_after: float = 0.0, status: Optional[int] = None) -> None:
        self.retry_after = retry_after
        super().__init__(message, status)


class TransactionError(DotError):
    """Base class for multi-repository transaction failures."""

    def __init__(self, message: str, report=None) -> None:
        self.report = report
        super().__init__(message)


class TransactionRolledBack(TransactionError):
    """A step failed and every applied step was undone."""

    exit_code = ExitCode.ROLLED_BACK


class RollbackFailed(TransactionError):
    """Rolling back left repositories in an inconsistent state."""

    exit_code = ExitCode.UNSAFE_STATE

    def __init__(self, message: str, inconsistent: Sequence[str] = (), report=None) -> None:
        self.inconsistent = list(inconsistent)
        super().__init__(message, report)


class PartialPushFailure(TransactionError):
    """Some repositories were pushed before another push failed."""

    exit_code = ExitCode.PARTIAL_PUSH

    def __init__(self, message: str, pushed: Sequence[str] = (), report=None) -> None:
        self.pushed = list(pushed)
        super().__init__(message, report)


class PartialFailure(TransactionError):
    """Non-atomic run where at least one repository failed."""

    exit_code = ExitCode.PARTIAL_FAILURE


class PartialClone(DotError):
    """The main repository was cloned but some hidden directories were not."""

    exit_code = ExitCode.PARTIAL_CLONE

    def __init__(self, failed: dict, outcome=None) -> None:
        self.failed = dict(failed)
        self.outcome = outcome
        super().__init__(
            "Failed to clone hidden directories: " + ", ".join(sorted(self.failed))
        )
