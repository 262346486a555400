"""Errors raised by pytrain.

Every error carries an optional hint with the next step the user should take.
"""

from typing import Optional


class TrainError(Exception):
    """Base class for all pytrain errors."""

    def __init__(self, message: str, hint: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.hint = hint

    def __str__(self) -> str:
        return self.message


class GitError(TrainError):
    """A git command exited non-zero for a reason other than a detected conflict."""

    def __init__(self, message: str, command: str = "", stderr: str = "",
                 hint: Optional[str] = None):
        super().__init__(message, hint)
        self.command = command
        self.stderr = stderr


class GitLabError(TrainError):
    """A GitLab API call failed or returned a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 hint: Optional[str] = None):
        super().__init__(message, hint)
        self.status_code = status_code


class StackError(TrainError):
    """The stack references a branch or parent that does not exist, or would form a cycle."""


class StackNotFoundError(StackError):
    """No stack matches the request, or there is no current stack."""


class AuthError(TrainError):
    """A credential needed for GitLab is missing."""


class PersistenceError(TrainError):
    """A stack document could not be read, written or parsed."""


class InvalidStateError(TrainError):
    """The repository is mid-rebase, mid-merge, mid-cherry-pick or conflicted."""


class CancelledByUser(Exception):
    """The user interrupted a prompt. Not a failure."""
