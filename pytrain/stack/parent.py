"""Guess which stack branch a new branch was built on."""

import logging
from typing import Optional

from ..errors import GitError
from ..git import unique_commits
from ..typing import GitInterface
from .models import Stack, hierarchy_order

logger = logging.getLogger(__name__)

def detect_smart_parent(git_cmd: GitInterface, branch: str, stack: Stack) -> str:
    """Parent for `branch`: the stack branch sharing the most of its commits.

    Commits are counted relative to base_branch. Ties keep the first
    candidate in hierarchy order; no overlap at all means base_branch.
    """
    commits = set(unique_commits(git_cmd, stack.base_branch, branch))
    if not commits:
        return stack.base_branch

    best: Optional[str] = None
    best_count = 0
    for candidate in hierarchy_order(stack):
        if candidate == branch:
            continue
        try:
            candidate_commits = set(unique_commits(git_cmd, stack.base_branch, candidate))
        except GitError as e:
            logger.warning(f"Skipping {candidate} while detecting parent: {e}")
            continue
        shared = len(commits & candidate_commits)
        logger.debug(f"{candidate} shares {shared} commit(s) with {branch}")
        if shared > best_count:
            best, best_count = candidate, shared
    return best or stack.base_branch
