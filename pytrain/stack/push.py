"""Decide whether a rejected push may be retried with force-with-lease."""

import logging

from ..config.models import ForcePushMode, TrainConfig
from ..errors import GitError
from ..git import remote_branch_exists
from ..pretty import Prompter
from ..typing import GitInterface
from .models import Stack

logger = logging.getLogger(__name__)

# More commits ahead than this is treated as unrelated divergence
MAX_AHEAD = 20

class PushSafetyGate:
    """Force-push policy for branches managed by a stack."""

    def __init__(self, config: TrainConfig, git_cmd: GitInterface, prompter: Prompter):
        self.config = config
        self.git_cmd = git_cmd
        self.prompter = prompter

    @property
    def remote(self) -> str:
        return self.config.repo.remote

    def should_force_push(self, branch: str, stack: Stack) -> bool:
        if not remote_branch_exists(self.git_cmd, self.remote, branch):
            return True
        if not stack.is_tracked(branch):
            logger.warning(f"Refusing to force push {branch}: it is not part of stack '{stack.name}'")
            return False

        mode = self.config.conflict.force_push
        if mode == ForcePushMode.NEVER:
            logger.warning(f"Force push of {branch} is disabled by configuration")
            return False
        if mode == ForcePushMode.PROMPT:
            if not self.prompter.interactive:
                logger.warning(f"Not force pushing {branch}: confirmation needed but no terminal")
                return False
            if not self.prompter.confirm(
                    f"Branch {branch} was rewritten. Force push (with lease) to {self.remote}?",
                    default=True):
                logger.info(f"Skipping force push of {branch}")
                return False

        try:
            ahead = int(self.git_cmd.must_git(
                ["rev-list", "--count", f"{self.remote}/{branch}..{branch}"]).strip())
        except (GitError, ValueError) as e:
            logger.info(f"Could not count commits ahead of {self.remote}/{branch} ({e}); pushing anyway")
            return True
        if ahead > MAX_AHEAD:
            logger.warning(f"{branch} is {ahead} commits ahead of {self.remote}/{branch}; "
                           "refusing to force push, check the branch by hand")
            return False
        return True
