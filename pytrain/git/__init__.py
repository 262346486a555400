"""Git command executor and small queries built on it."""

import os
import shlex
import logging
from pathlib import Path
from typing import List, Optional
import git
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from ..typing import BranchName, CommitHash, GitArgs, GitInterface
from ..config.models import TrainConfig
from ..errors import GitError

# Get module logger
logger = logging.getLogger(__name__)

# Continuation commands must never wait on an editor
GIT_ENV = {"GIT_EDITOR": "true", "GIT_TERMINAL_PROMPT": "0"}

def split_args(command: GitArgs) -> List[str]:
    """Turn a command string or argv sequence into argv."""
    if isinstance(command, str):
        return shlex.split(command.strip())
    return [str(part) for part in command]

def format_args(args: List[str]) -> str:
    """Render argv for logs and error messages."""
    return " ".join(shlex.quote(a) for a in args)

class RealGit:
    """Git executor backed by GitPython."""
    def __init__(self, config: TrainConfig, repo_path: Optional[str] = None):
        """Initialize with config and optional work-tree path (defaults to cwd)."""
        self.config: TrainConfig = config
        self.repo_path = repo_path

    def _repo(self) -> git.Repo:
        return git.Repo(self.repo_path or os.getcwd(), search_parent_directories=True)

    def run_cmd(self, command: GitArgs, output: Optional[str] = None) -> str:
        """Run git command and return its stdout."""
        args = split_args(command)
        if not args:
            raise GitError("Empty git command")
        cmd_str = format_args(args)

        if self.config.tool.pretend and args[0] == 'push':
            logger.info(f"> git {cmd_str} (pretend)")
            return ""

        if self.config.user.log_git_commands:
            logger.info(f"> git {cmd_str}")
        else:
            logger.debug(f"> git {cmd_str}")
        try:
            repo = self._repo()
            method = getattr(repo.git, args[0].replace('-', '_'))
            result = method(*args[1:], env=GIT_ENV)
            return result if isinstance(result, str) else str(result)
        except GitCommandError as e:
            stderr = (e.stderr or "").strip()
            # GitPython wraps stderr as "stderr: '...'"
            if stderr.startswith("stderr:"):
                stderr = stderr[len("stderr:"):].strip().strip("'")
            raise GitError(f"git {cmd_str} failed: {stderr or e.status}",
                           command=cmd_str, stderr=stderr) from e
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise GitError("Not in a git repository", command=cmd_str,
                           hint="Run this command from inside a git work tree") from e

    def must_git(self, command: GitArgs, output: Optional[str] = None) -> str:
        """Run git command, failing on error."""
        return self.run_cmd(command, output)

def get_current_branch(git_cmd: GitInterface) -> BranchName:
    """Name of the checked out branch ('HEAD' when detached)."""
    return BranchName(git_cmd.must_git("rev-parse --abbrev-ref HEAD").strip())

def get_head(git_cmd: GitInterface, ref: str = "HEAD") -> CommitHash:
    """Full hash of `ref`."""
    return CommitHash(git_cmd.must_git(["rev-parse", ref]).strip())

def get_git_dir(git_cmd: GitInterface) -> Path:
    """Absolute path of the repository's control directory."""
    return Path(git_cmd.must_git("rev-parse --absolute-git-dir").strip())

def has_uncommitted_changes(git_cmd: GitInterface) -> bool:
    """True when tracked files are modified or staged."""
    return bool(git_cmd.must_git("status --porcelain --untracked-files=no").strip())

def branch_exists(git_cmd: GitInterface, branch: str) -> bool:
    """True if a local branch with this name exists."""
    try:
        git_cmd.run_cmd(["rev-parse", "--verify", "--quiet", f"refs/heads/{branch}"])
        return True
    except GitError:
        return False

def remote_branch_exists(git_cmd: GitInterface, remote: str, branch: str) -> bool:
    """True if `branch` exists on `remote` according to ls-remote."""
    out = git_cmd.must_git(["ls-remote", "--heads", remote, branch])
    return bool(out.strip())

def is_ancestor(git_cmd: GitInterface, ancestor: str, descendant: str) -> bool:
    """True if `ancestor` is reachable from `descendant`."""
    try:
        git_cmd.run_cmd(["merge-base", "--is-ancestor", ancestor, descendant])
        return True
    except GitError:
        return False

def unique_commits(git_cmd: GitInterface, base: str, branch: str) -> List[CommitHash]:
    """Commits on `branch` not on `base`, oldest first."""
    out = git_cmd.must_git(["rev-list", "--reverse", f"{base}..{branch}"])
    return [CommitHash(line.strip()) for line in out.splitlines() if line.strip()]
