"""Re-apply descendant branches on top of their updated parents."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config.models import TrainConfig
from ..conflict import ConflictResolver, GitState
from ..errors import GitError, InvalidStateError
from ..git import branch_exists, get_head, is_ancestor
from ..typing import GitInterface
from ..util import create_backup_name
from .models import Stack, children_of, descendants_in_order

logger = logging.getLogger(__name__)

@dataclass
class PropagationResult:
    """Outcome of one propagation pass."""
    rebased: List[str] = field(default_factory=list)
    up_to_date: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    # Descendants not attempted because an ancestor failed
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def merge(self, other: "PropagationResult") -> None:
        self.rebased.extend(other.rebased)
        self.up_to_date.extend(other.up_to_date)
        self.failed.update(other.failed)
        self.skipped.extend(other.skipped)

class RebasePropagator:
    """Keeps every descendant of a changed branch rebased on its parent."""

    def __init__(self, config: TrainConfig, git_cmd: GitInterface, resolver: ConflictResolver):
        self.config = config
        self.git_cmd = git_cmd
        self.resolver = resolver

    def propagate(self, stack: Stack, changed_branch: str,
                  previous_tip: Optional[str] = None) -> PropagationResult:
        """Rebase all descendants of `changed_branch`, parents before children.

        `previous_tip` is where `changed_branch` pointed before it changed;
        children are moved off that commit rather than replaying it. Every other
        branch is moved off the tip its parent had before the parent was rebased.
        Branches are processed depth first with an explicit work list. A
        failed branch has its whole subtree skipped while siblings continue.
        Unresolved conflicts raise InvalidStateError since nothing else can
        run until they are dealt with.
        """
        result = PropagationResult()
        children = children_of(stack)
        previous: Dict[str, str] = {}
        if previous_tip:
            previous[changed_branch] = previous_tip

        seen = {changed_branch}
        work = list(reversed(children.get(changed_branch, [])))
        while work:
            name = work.pop()
            if name in seen:
                continue
            seen.add(name)
            parent = stack.branches[name].parent
            try:
                previous[name] = get_head(self.git_cmd, name)
                rebased = self.smart_rebase(stack, name, parent, previous.get(parent))
            except GitError as e:
                logger.error(f"Failed to rebase {name} onto {parent}: {e}")
                result.failed[name] = str(e)
                blocked = descendants_in_order(stack, name)
                if blocked:
                    logger.warning(f"Skipping descendants of {name}: {', '.join(blocked)}")
                result.skipped.extend(blocked)
                continue
            (result.rebased if rebased else result.up_to_date).append(name)
            work.extend(reversed(children.get(name, [])))
        return result

    def smart_rebase(self, stack: Stack, branch: str, onto: str,
                     old_base: Optional[str] = None) -> bool:
        """Rebase `branch` onto `onto`. Returns False if it was already up to date."""
        state = self.resolver.get_state()
        if state != GitState.CLEAN:
            raise InvalidStateError(
                f"Cannot rebase {branch}: repository is {state.value}",
                hint="Run `train resolve check` and finish or abort the current operation first")

        entry = stack.get_branch(branch)
        if is_ancestor(self.git_cmd, onto, branch):
            logger.info(f"{branch} is up to date with {onto}")
            entry.touch(get_head(self.git_cmd, branch))
            return False

        if self.config.conflict.backup_before_rebase:
            backup = create_backup_name(branch, lambda name: branch_exists(self.git_cmd, name))
            self.git_cmd.must_git(["branch", backup, branch])
            logger.info(f"Backed up {branch} to {backup}")

        self.git_cmd.must_git(["checkout", branch])
        if old_base and old_base != get_head(self.git_cmd, onto) and is_ancestor(self.git_cmd, old_base, branch):
            args = ["rebase", "--onto", onto, old_base, branch]
        else:
            args = ["rebase", onto, branch]
        logger.info(f"Rebasing {branch} onto {onto}")
        try:
            self.git_cmd.must_git(args)
        except GitError as e:
            info = self.resolver.detect_conflicts()
            if info is None:
                if self.resolver.current_operation() is not None:
                    self.resolver.abort_current_operation()
                raise GitError(f"Rebase of {branch} onto {onto} failed: {e.stderr or e}",
                               command=e.command, stderr=e.stderr,
                               hint="Inspect the branch by hand, then re-run sync") from e
            self.resolver.resolve(info)

        entry.touch(get_head(self.git_cmd, branch))
        return True
