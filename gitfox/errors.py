"""Exception types shared by the review pipeline."""


class AuthConfigurationError(RuntimeError):
    """Credentials are missing or invalid. Fatal for the whole process."""


class InvalidTransitionError(RuntimeError):
    """A review state change that the lifecycle does not allow."""


# === Source control ===


class SourceControlError(Exception):
    """Base class for failures of the source-control API."""

    transient = False

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(SourceControlError):
    """Repository, pull request or commit does not exist (or is hidden)."""


class RateLimitedError(SourceControlError):
    """The API rate limit is exhausted."""


class SourceControlAuthError(SourceControlError):
    """Token rejected or lacking permission."""


class SourceControlTransientError(SourceControlError):
    """Timeout, connection failure or 5xx response."""

    transient = True


class UpstreamFetchFailure(Exception):
    """Changed files could not be retrieved; the review cannot continue."""

    def __init__(self, repository: str, pr_number: int, cause: Exception) -> None:
        super().__init__(
            f"Could not fetch changed files for {repository}#{pr_number}: {cause}"
        )
        self.cause = cause


# === Analysis backend ===


class AnalysisError(Exception):
    """Base class for failures of the text-analysis backend."""

    transient = False


class AnalysisTransientError(AnalysisError):
    """Timeout, rate limit or 5xx from the backend."""

    transient = True


class AnalysisRequestError(AnalysisError):
    """The backend rejected the request; retrying will not help."""
