"""Exception hierarchy for gitwatcher."""

from .models import Stage


class GitWatcherError(Exception):
    """Base exception for all gitwatcher errors."""


class ConfigurationError(GitWatcherError):
    """Invalid or missing configuration (e.g. no GitHub token)."""


class InvalidScheduleError(GitWatcherError):
    """A cron expression could not be parsed or can never fire."""


class StateError(GitWatcherError):
    """State file read/write error or unknown repository."""


class LockError(GitWatcherError):
    """Raised when the global daemon lock cannot be acquired."""


class GitCommandError(GitWatcherError):
    """A git subprocess failed or timed out."""

    def __init__(self, command: str, exit_code: int, stderr: str) -> None:
        super().__init__(f"git {command} exited with code {exit_code}: {stderr}")
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr


class StageError(GitWatcherError):
    """A sync pipeline stage failed. Subclasses name the failure."""

    stage: Stage | None = None

    def __init__(self, message: str, stage: Stage | None = None) -> None:
        super().__init__(message)
        if stage is not None:
            self.stage = stage


class StatusError(StageError):
    """Working tree status could not be computed."""

    stage = Stage.INSPECT


class GenerationError(StageError):
    """The generation backend was unreachable or returned no content."""


class CommitError(StageError):
    """Staging or committing failed."""

    stage = Stage.COMMIT


class AuthError(StageError):
    """Push credentials are missing or were rejected."""

    stage = Stage.PUSH


class PushError(StageError):
    """The remote rejected the push."""

    stage = Stage.PUSH


class NoCommonAncestorError(StageError):
    """The current branch and the integration branch share no history."""

    stage = Stage.REVIEW


class ReviewPlatformError(StageError):
    """The review platform answered with a non-success status."""

    stage = Stage.REVIEW

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
