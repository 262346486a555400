"""Common types used across the codebase."""

from typing import Optional, Protocol, Sequence, Union, NewType

BranchName = NewType('BranchName', str)
CommitHash = NewType('CommitHash', str)

# A git command either as a single string (split like a shell would) or as argv
GitArgs = Union[str, Sequence[str]]

class GitInterface(Protocol):
    """Protocol for the git command executor."""

    def run_cmd(self, command: GitArgs, output: Optional[str] = None) -> str:
        """Run a git command and return stdout, raising GitError on failure."""
        ...

    def must_git(self, command: GitArgs, output: Optional[str] = None) -> str:
        """Run a git command, failing on error."""
        ...
