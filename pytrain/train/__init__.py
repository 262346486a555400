"""Stack use-cases: create, save, amend, add, push, sync, status and friends."""

import concurrent.futures
import logging
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from ..config.models import TrainConfig
from ..conflict import ConflictResolver, GitState
from ..errors import (GitError, GitLabError, InvalidStateError, StackError, TrainError)
from ..git import (branch_exists, get_current_branch, get_git_dir, get_head, has_uncommitted_changes,
                   unique_commits)
from ..gitlab import GitLabClient, MergeRequest, find_gitlab_token, host_of
from ..gitlab.targets import MergeRequestSyncResult, ReviewTargetResolver
from ..pretty import Prompter, print_header
from ..stack import (PropagationResult, PushSafetyGate, RebasePropagator, Stack,
                     StackRepository, children_of, detect_smart_parent, hierarchy_order)
from ..stack.models import depth_of
from ..typing import GitInterface
from ..util import create_backup_name, sanitize_branch_name, short_id

logger = logging.getLogger(__name__)

TIME_FORMAT = "%Y-%m-%d %H:%M"

# Substrings git prints when a push needs --force
REJECTED_PUSH_MARKERS = ("non-fast-forward", "fetch first", "stale info")

def _split_z(output: str) -> List[str]:
    """Paths from NUL separated git output."""
    return [path for path in output.split("\0") if path]

@dataclass
class PushResult:
    """Outcome of pushing every branch of a stack."""
    pushed: List[str] = field(default_factory=list)
    force_pushed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

class StackManager:
    """Entry point for every stack operation.

    Each use-case loads the current stack, works on its own copy and writes
    it back. The cached copy is only replaced after a successful save.
    """

    def __init__(self, config: TrainConfig, git_cmd: GitInterface,
                 repository: Optional[StackRepository] = None,
                 prompter: Optional[Prompter] = None,
                 gitlab: Optional[GitLabClient] = None):
        self.config = config
        self.git_cmd = git_cmd
        self.prompter = prompter or Prompter()
        self.repository = repository or StackRepository(get_git_dir(git_cmd) / "train")
        self.resolver = ConflictResolver(config, git_cmd, self.prompter)
        self.propagator = RebasePropagator(config, git_cmd, self.resolver)
        self.push_gate = PushSafetyGate(config, git_cmd, self.prompter)
        self._gitlab = gitlab
        self._gitlab_checked = gitlab is not None
        self.current_stack: Optional[Stack] = None

    @property
    def remote(self) -> str:
        return self.config.repo.remote

    # Persistence

    def load_current(self) -> Stack:
        """A private copy of the current stack."""
        if self.current_stack is None:
            self.current_stack = self.repository.load_current()
        return self.current_stack.model_copy(deep=True)

    def _save(self, stack: Stack) -> None:
        stack.touch()
        stack.validate_forest()
        self.repository.save(stack)
        self.current_stack = stack.model_copy(deep=True)

    # Collaborators

    def gitlab_client(self) -> Optional[GitLabClient]:
        """The GitLab client, or None when no token is configured."""
        if not self._gitlab_checked:
            self._gitlab_checked = True
            url = self.config.repo.gitlab_url
            token = find_gitlab_token(host_of(url))
            if token:
                self._gitlab = GitLabClient(url, token, self.config.repo.gitlab_project_id)
            else:
                logger.warning("No GitLab token found (set GITLAB_TOKEN); merge requests are skipped")
        return self._gitlab

    def _ensure_project(self, client: GitLabClient, stack: Stack) -> None:
        """Point the client at the stack's project, detecting and caching it once."""
        if client.project_id:
            return
        if self.config.repo.gitlab_project_id:
            client.project_id = self.config.repo.gitlab_project_id
            return
        if stack.gitlab_project is not None:
            client.project_id = str(stack.gitlab_project.id)
            return
        remote_url = self.git_cmd.must_git(["remote", "get-url", self.remote]).strip()
        stack.gitlab_project = client.detect_project(remote_url)
        logger.info(f"Detected GitLab project {stack.gitlab_project.path_with_namespace}")

    def _target_resolver(self, stack: Stack) -> Optional[ReviewTargetResolver]:
        client = self.gitlab_client()
        if client is None:
            return None
        try:
            self._ensure_project(client, stack)
        except TrainError as e:
            logger.error(f"Cannot use GitLab: {e}")
            if e.hint:
                logger.info(e.hint)
            return None
        return ReviewTargetResolver(self.config, self.git_cmd, client)

    # Preconditions

    def _require_clean_state(self) -> None:
        state = self.resolver.get_state()
        if state != GitState.CLEAN:
            raise InvalidStateError(f"Repository is {state.value}",
                                    hint="Run `train resolve check` to finish or abort it")

    def _require_clean_tree(self) -> None:
        self._require_clean_state()
        if has_uncommitted_changes(self.git_cmd):
            raise InvalidStateError("You have uncommitted changes",
                                    hint="Commit them with `train save` or stash them first")

    def _current_branch(self) -> str:
        branch = get_current_branch(self.git_cmd)
        if branch == "HEAD":
            raise StackError("HEAD is detached", hint="Check out a branch first")
        return branch

    def _return_to(self, branch: str) -> None:
        """Check `branch` out again, reporting rather than raising on failure."""
        if self.resolver.get_state() != GitState.CLEAN:
            logger.warning(f"Not returning to {branch}: resolve the current operation first")
            return
        try:
            if get_current_branch(self.git_cmd) != branch:
                self.git_cmd.must_git(["checkout", branch])
        except GitError as e:
            logger.error(f"Could not return to {branch}: {e}")
            logger.info(f"Check it out by hand with `git checkout {branch}`")

    def determine_base_branch(self) -> str:
        if self.config.repo.base_branch:
            return self.config.repo.base_branch
        for candidate in ("main", "master"):
            if branch_exists(self.git_cmd, candidate):
                return candidate
        if not self.prompter.interactive:
            raise StackError("Could not find a base branch (main or master)",
                             hint="Set repo.base_branch in .train.yaml")
        return self.prompter.prompt("Base branch for the new stack")

    # Use-cases

    def create_stack(self, name: str) -> Stack:
        print_header(f"Creating Stack: {name}")
        self._require_clean_tree()

        current = self._current_branch()
        base = self.determine_base_branch()
        if current == base:
            raise StackError(f"You are on the base branch '{base}'",
                             hint="Check out the first feature branch of the stack and run create again")
        sanitized = sanitize_branch_name(name)
        if not sanitized:
            raise StackError(f"'{name}' is not a usable stack name")

        stack = Stack(name=sanitized, base_branch=base, current_branch=current)
        stack.add_branch(current, base, get_head(self.git_cmd))

        client = self.gitlab_client()
        if client is not None:
            try:
                self._ensure_project(client, stack)
            except TrainError as e:
                logger.warning(f"GitLab project could not be detected: {e}")

        self._save(stack)
        logger.info(f"Created stack '{sanitized}' with base branch '{base}'")
        logger.info(f"Current branch '{current}' added to stack")
        return stack

    def _finish_propagation(self, stack: Stack, result: PropagationResult, action: str) -> None:
        self._save(stack)
        if result.rebased:
            logger.info(f"Rebased {', '.join(result.rebased)}")
        if not result.ok:
            raise TrainError(
                f"{action} succeeded but {len(result.failed)} branch(es) failed to rebase: "
                f"{', '.join(result.failed)}",
                hint="Fix the failing branches by hand, then run `train sync`")

    def _propagate(self, stack: Stack, branch: str, previous_tip: str) -> PropagationResult:
        try:
            return self.propagator.propagate(stack, branch, previous_tip)
        except InvalidStateError:
            self._save(stack)
            raise
        finally:
            self._return_to(branch)

    def commit_changes(self, message: str) -> Stack:
        print_header("Saving Changes")
        stack = self.load_current()
        self._require_clean_state()
        current = self._current_branch()
        branch = stack.get_branch(current)

        if not self.git_cmd.must_git("status --porcelain").strip():
            logger.info("No changes to commit")
            return stack

        previous_tip = get_head(self.git_cmd)
        if self.config.conflict.backup_before_rebase:
            self._backup(current)
        self.git_cmd.must_git("add -A")
        self.git_cmd.must_git(["commit", "-m", message])
        branch.touch(get_head(self.git_cmd))
        stack.current_branch = current
        logger.info(f"Committed changes: {branch.commit_hash[:8]}")

        result = self._propagate(stack, current, previous_tip)
        self._finish_propagation(stack, result, "Commit")
        return stack

    def amend_changes(self, message: Optional[str] = None) -> Stack:
        """Amend the tip of the current branch.

        Changes to files that an earlier stack branch introduced are committed
        on that branch instead, and everything below it is rebased.
        """
        print_header("Amending Changes")
        stack = self.load_current()
        self._require_clean_state()
        current = self._current_branch()
        branch = stack.get_branch(current)
        own_commits = bool(unique_commits(self.git_cmd, branch.parent, current))

        owners = self.files_from_earlier_branches(stack, current, _split_z(
            self.git_cmd.must_git("diff HEAD --name-only -z")))
        if owners:
            return self._amend_earlier_branches(stack, current, owners, message, own_commits)

        if not own_commits:
            raise StackError(f"{current} has no commits of its own to amend",
                             hint="Use `train save` to create the first commit")
        return self._amend_tip(stack, current, message)

    def _amend_tip(self, stack: Stack, current: str, message: Optional[str]) -> Stack:
        branch = stack.get_branch(current)
        previous_tip = get_head(self.git_cmd)
        logger.info(f"Original state can be recovered via git reflog (commit: {previous_tip[:8]})")
        if self.config.conflict.backup_before_rebase:
            self._backup(current)
        self.git_cmd.must_git("add -A")
        if message:
            self.git_cmd.must_git(["commit", "--amend", "-m", message])
        else:
            self.git_cmd.must_git("commit --amend --no-edit")
        branch.touch(get_head(self.git_cmd))
        stack.current_branch = current
        logger.info(f"New commit hash: {branch.commit_hash[:8]}")

        result = self._propagate(stack, current, previous_tip)
        self._finish_propagation(stack, result, "Amend")
        return stack

    def _branch_files(self, stack: Stack, name: str) -> Set[str]:
        """Paths the branch's own commits touch."""
        parent = stack.get_branch(name).parent
        return set(_split_z(self.git_cmd.must_git(["diff", "--name-only", "-z", f"{parent}...{name}"])))

    def files_from_earlier_branches(self, stack: Stack, branch: str,
                                    files: List[str]) -> Dict[str, List[str]]:
        """Ancestor branch -> the changed files it owns.

        A file belongs to the nearest branch up the parent chain whose own
        commits touched it. Files owned by `branch` itself, or by no stack
        branch, are not listed.
        """
        pending = set(files) - self._branch_files(stack, branch)
        owners: Dict[str, List[str]] = {}
        for ancestor in stack.ancestors(branch):
            if ancestor == stack.base_branch or not pending:
                break
            owned = sorted(pending & self._branch_files(stack, ancestor))
            if owned:
                owners[ancestor] = owned
                pending -= set(owned)
        return owners

    def _amend_earlier_branches(self, stack: Stack, current: str, owners: Dict[str, List[str]],
                                message: Optional[str], own_commits: bool) -> Stack:
        routed = [path for paths in owners.values() for path in paths]
        work_tree = self.resolver.work_tree
        contents: Dict[str, Optional[bytes]] = {}
        for path in routed:
            file = work_tree / path
            contents[path] = file.read_bytes() if file.exists() else None

        # Put the routed files back to HEAD; whatever remains stays on this branch
        self.git_cmd.must_git(["checkout", "HEAD", "--", *routed])
        remaining = bool(self.git_cmd.must_git("status --porcelain").strip())
        if remaining and not own_commits:
            for path, data in contents.items():
                if data is None:
                    (work_tree / path).unlink()
                else:
                    (work_tree / path).write_bytes(data)
            raise StackError(f"{current} has no commits of its own to amend",
                             hint="Use `train save` to commit the remaining changes")

        logger.info(f"Original state can be recovered via git reflog (commit: {get_head(self.git_cmd)[:8]})")
        subject = message or self.git_cmd.must_git("log -1 --format=%s").strip()
        if remaining:
            self.git_cmd.must_git(["stash", "push", "--include-untracked", "-m",
                                   f"git-train: amend of {current}"])
            logger.info("Stashed remaining changes")

        result = PropagationResult()
        try:
            for owner in sorted(owners, key=lambda name: depth_of(stack, name)):
                result.merge(self._commit_on_earlier_branch(
                    stack, owner, owners[owner], contents, f"propagate: {subject} (from {current})"))
            self.git_cmd.must_git(["checkout", current])
            if remaining:
                self.git_cmd.must_git("stash pop")
                logger.info("Restored stashed changes")
        except TrainError:
            if remaining:
                logger.warning(f"Your remaining changes for {current} are in `git stash`")
            raise

        if own_commits and (remaining or message):
            self._amend_tip(stack, current, message)
        elif message:
            logger.warning(f"{current} has no commits of its own; the new message was not used")
        stack.current_branch = current
        self._finish_propagation(stack, result, "Amend")
        return stack

    def _commit_on_earlier_branch(self, stack: Stack, owner: str, paths: List[str],
                                  contents: Dict[str, Optional[bytes]], message: str) -> PropagationResult:
        logger.info(f"Applying changes to earlier branch: {owner}")
        previous_tip = get_head(self.git_cmd, owner)
        if self.config.conflict.backup_before_rebase:
            self._backup(owner)
        self.git_cmd.must_git(["checkout", owner])
        work_tree = self.resolver.work_tree
        written: List[str] = []
        for path in paths:
            data = contents[path]
            if data is None:
                self.git_cmd.must_git(["rm", "-q", "--ignore-unmatch", "--", path])
            else:
                (work_tree / path).write_bytes(data)
                written.append(path)
        if written:
            self.git_cmd.must_git(["add", "-A", "--", *written])
        if not self.git_cmd.must_git("diff --cached --name-only").strip():
            logger.warning(f"No changes to commit on {owner}")
            return PropagationResult()
        self.git_cmd.must_git(["commit", "-m", message])
        stack.get_branch(owner).touch(get_head(self.git_cmd))
        logger.info(f"Committed on {owner}: {message}")
        return self._propagate(stack, owner, previous_tip)

    def _backup(self, branch: str) -> str:
        backup = create_backup_name(branch, lambda name: branch_exists(self.git_cmd, name))
        self.git_cmd.must_git(["branch", backup, branch])
        logger.info(f"Created backup branch: {backup}")
        return backup

    def add_branch(self, parent: Optional[str] = None) -> Stack:
        print_header("Adding Branch to Stack")
        stack = self.load_current()
        current = self._current_branch()
        if stack.is_tracked(current):
            logger.warning(f"Branch '{current}' is already part of the stack")
            return stack
        self._require_clean_tree()

        if parent is None:
            parent = detect_smart_parent(self.git_cmd, current, stack)
            logger.info(f"Detected parent: {parent}")
        stack.add_branch(current, parent, get_head(self.git_cmd))
        stack.current_branch = current
        self._save(stack)
        logger.info(f"Added branch '{current}' to stack with parent '{parent}'")
        return stack

    def collect_merge_requests(self, stack: Stack) -> Dict[str, MergeRequest]:
        """Live merge requests by branch name, fetched concurrently when configured."""
        client = self.gitlab_client()
        branches = {name: b.mr_id for name, b in stack.branches.items() if b.mr_id is not None}
        if client is None or not branches:
            return {}
        try:
            self._ensure_project(client, stack)
        except TrainError as e:
            logger.warning(f"Cannot fetch merge requests: {e}")
            return {}

        result: Dict[str, MergeRequest] = {}
        concurrency = self.config.tool.concurrency
        if concurrency > 0:
            with concurrent.futures.ThreadPoolExecutor(max_workers=concurrency) as executor:
                futures: Dict[str, Future[MergeRequest]] = {
                    name: executor.submit(client.get_merge_request, iid)
                    for name, iid in branches.items()
                }
                concurrent.futures.wait(list(futures.values()))
            for name, future in futures.items():
                try:
                    result[name] = future.result()
                except GitLabError as e:
                    logger.warning(f"Could not fetch MR for {name}: {e}")
        else:
            for name, iid in branches.items():
                try:
                    result[name] = client.get_merge_request(iid)
                except GitLabError as e:
                    logger.warning(f"Could not fetch MR for {name}: {e}")
        return result

    def status_lines(self, stack: Stack, merge_requests: Dict[str, MergeRequest],
                     current: Optional[str]) -> List[str]:
        lines: List[str] = []
        for name in hierarchy_order(stack):
            branch = stack.branches[name]
            try:
                indent = "  " * (depth_of(stack, name) - 1)
            except StackError:
                indent = ""
            marker = "*" if name == current else " "
            line = f"{indent}{marker} {name} ({branch.commit_hash[:8]})"
            mr = merge_requests.get(name)
            if mr is not None:
                line += f"  !{mr.iid} {mr.status_label()} -> {mr.target_branch}"
            elif branch.mr_id is not None:
                line += f"  !{branch.mr_id}"
            lines.append(line)
        return lines

    def show_status(self) -> Stack:
        print_header("Stack Status")
        stack = self.load_current()
        print(f"Stack: {stack.name} ({short_id(stack.id)})")
        print(f"Base branch: {stack.base_branch}")
        if stack.gitlab_project is not None:
            print(f"GitLab project: {stack.gitlab_project.path_with_namespace} (ID: {stack.gitlab_project.id})")
            print(f"Project URL: {stack.gitlab_project.web_url}")
        print(f"Created: {stack.created_at.strftime(TIME_FORMAT)}")
        print(f"Updated: {stack.updated_at.strftime(TIME_FORMAT)}")
        print("")
        print(f"{stack.base_branch}")
        current = get_current_branch(self.git_cmd)
        for line in self.status_lines(stack, self.collect_merge_requests(stack), current):
            print(f"  {line}")

        state = self.resolver.get_state()
        if state != GitState.CLEAN:
            print(f"\nRepository is {state.value}")
        status_output = self.git_cmd.must_git("status --porcelain")
        if status_output.strip():
            print("\nWorking directory status:")
            print(status_output)
        return stack

    def list_stacks(self) -> List[Stack]:
        print_header("Available Stacks")
        stacks = self.repository.list()
        if not stacks:
            print("No stacks found")
            return stacks
        current_id = self.repository.current_id()
        for stack in stacks:
            is_current = " (current)" if stack.id == current_id else ""
            project = f" | Project: {stack.gitlab_project.path_with_namespace}" if stack.gitlab_project else ""
            print(f"▶ {stack.name} ({short_id(stack.id)}){is_current}")
            print(f"   └─ Base: {stack.base_branch} | Branches: {len(stack.branches)} | "
                  f"Updated: {stack.updated_at.strftime(TIME_FORMAT)}{project}")
        return stacks

    def switch_stack(self, identifier: str) -> Stack:
        stack = self.repository.find_by_identifier(identifier)
        self.repository.set_current(stack)
        self.current_stack = stack
        logger.info(f"Switched to stack '{stack.name}' ({short_id(stack.id)})")
        self.show_status()
        return stack

    def delete_stack(self, identifier: str, force: bool = False) -> bool:
        stack = self.repository.find_by_identifier(identifier)
        logger.warning(f"This will permanently delete stack '{stack.name}' ({short_id(stack.id)})")
        logger.info(f"Stack contains {len(stack.branches)} branches:")
        for name in hierarchy_order(stack):
            logger.info(f"  - {name}")
        if stack.id == self.repository.current_id():
            logger.warning("This is the current active stack")

        if not force:
            if not self.prompter.interactive:
                raise StackError("Refusing to delete without confirmation",
                                 hint="Pass --force to delete non-interactively")
            answer = self.prompter.prompt("Type 'yes' to confirm deletion")
            if answer.strip().lower() != "yes":
                logger.info("Stack deletion cancelled")
                return False

        self.repository.delete(stack)
        if self.current_stack is not None and self.current_stack.id == stack.id:
            self.current_stack = None
        logger.info(f"Stack '{stack.name}' has been deleted")
        logger.info("Git branches were not deleted; clean them up by hand if needed")
        return True

    def _push_branch(self, branch: str, stack: Stack, result: PushResult) -> None:
        refspec = f"{branch}:{branch}"
        logger.info(f"Pushing {branch}")
        try:
            self.git_cmd.must_git(["push", self.remote, refspec])
            result.pushed.append(branch)
            return
        except GitError as e:
            error = e.stderr or str(e)
            if not any(m in error for m in REJECTED_PUSH_MARKERS):
                logger.error(f"Failed to push {branch}: {error}")
                result.failed[branch] = error
                return
        logger.warning(f"{branch} was rejected (non-fast-forward), checking whether a force push is safe")
        if not self.push_gate.should_force_push(branch, stack):
            result.failed[branch] = "force push refused"
            return
        try:
            self.git_cmd.must_git(["push", "--force-with-lease", self.remote, refspec])
            result.force_pushed.append(branch)
            logger.info(f"Force-pushed {branch} (with lease)")
        except GitError as e:
            logger.error(f"Force push of {branch} failed, the remote may have moved: {e.stderr or e}")
            result.failed[branch] = e.stderr or str(e)

    def push_stack(self) -> PushResult:
        print_header("Pushing Stack")
        stack = self.load_current()
        result = PushResult()
        for name in hierarchy_order(stack):
            self._push_branch(name, stack, result)

        mr_result: Optional[MergeRequestSyncResult] = None
        if self.config.tool.pretend:
            logger.info("Pretend mode: not creating or updating merge requests")
        else:
            resolver = self._target_resolver(stack)
            if resolver is not None:
                branches = [name for name in hierarchy_order(stack) if name not in result.failed]
                mr_result = resolver.sync_merge_requests(stack, branches)

        self._save(stack)
        self._report_push(result, mr_result)
        return result

    def _report_push(self, result: PushResult, mr_result: Optional[MergeRequestSyncResult]) -> None:
        done = result.pushed + result.force_pushed
        if done:
            logger.info(f"Pushed {len(done)} branch(es): {', '.join(done)}")
        failures = dict(result.failed)
        if mr_result is not None:
            failures.update({f"MR {name}": error for name, error in mr_result.failed.items()})
        if failures:
            for name, error in failures.items():
                logger.error(f"  ✘ {name}: {error}")
            raise TrainError(
                f"Stack partially pushed: {len(failures)} failure(s)",
                hint="Run `train sync` to bring branches up to date, then push again")
        logger.info("Stack pushed to remote successfully")

    def check_and_recover_git_state(self) -> None:
        """Leave the repository Clean or raise InvalidStateError."""
        state = self.resolver.get_state()
        if state == GitState.CLEAN:
            return
        logger.warning(f"Repository is {state.value}")
        info = self.resolver.detect_conflicts()
        if not self.prompter.interactive:
            raise InvalidStateError(
                f"Repository is {state.value}",
                hint="Run `train resolve continue` or `train resolve abort`, then re-run the command")

        if info is not None:
            self.resolver.log_conflict_summary(info)
            auto, interactive = "Try to resolve conflicts automatically", "Resolve conflicts interactively"
            abort, defer = "Abort the current operation", "Continue with manual resolution later"
            choice = self.prompter.choose("How would you like to proceed?",
                                          [auto, interactive, abort, defer], default=interactive)
            if choice == auto:
                if not self.resolver.auto_resolve(info):
                    raise InvalidStateError("Automatic conflict resolution failed",
                                            hint="Run `train resolve interactive` or resolve by hand")
                pending = self.resolver.continue_operation()
                if pending is not None:
                    self.resolver.resolve(pending)
            elif choice == interactive:
                pending = self.resolver.resolve_interactively(info)
                if pending is not None:
                    self.resolver.resolve(pending)
            elif choice == abort:
                self.resolver.abort_current_operation()
            else:
                raise InvalidStateError("Manual conflict resolution deferred",
                                        hint="Re-run `train sync` when ready")
        else:
            cont, abort = "Continue the operation", "Abort the operation"
            choice = self.prompter.choose(f"A {state.value} operation is in progress", [cont, abort],
                                          default=cont)
            if choice == cont:
                pending = self.resolver.continue_operation()
                if pending is not None:
                    self.resolver.resolve(pending)
            else:
                self.resolver.abort_current_operation()

        self._require_clean_state()
        logger.info("Repository is clean")

    def sync_with_remote(self) -> PropagationResult:
        """Refresh the base branch, rebase the whole stack on it and fix MR targets."""
        print_header("Syncing with Remote")
        self.check_and_recover_git_state()
        stack = self.load_current()
        original = self._current_branch()
        self._require_clean_tree()

        try:
            logger.info(f"Updating base branch: {stack.base_branch}")
            self.git_cmd.must_git(["checkout", stack.base_branch])
            try:
                self.git_cmd.must_git(["pull", "--ff-only", self.remote, stack.base_branch])
            except GitError as e:
                raise GitError(f"Could not update {stack.base_branch}: {e.stderr or e}",
                               command=e.command, stderr=e.stderr,
                               hint=f"Make sure local {stack.base_branch} has no commits of its own, then re-run sync") from e

            try:
                result = self.propagator.propagate(stack, stack.base_branch)
            except InvalidStateError:
                self._save(stack)
                raise

            mr_result: Optional[MergeRequestSyncResult] = None
            with_mr = [name for name in hierarchy_order(stack)
                       if stack.branches[name].mr_id is not None and name not in result.failed
                       and name not in result.skipped]
            if with_mr:
                resolver = self._target_resolver(stack)
                if resolver is not None:
                    logger.info("Updating merge request targets")
                    mr_result = resolver.sync_merge_requests(stack, with_mr)
        finally:
            self._return_to(original)

        self._save(stack)
        failures = list(result.failed) + [f"MR {name}" for name in (mr_result.failed if mr_result else {})]
        if failures:
            raise TrainError(f"Sync finished with failures: {', '.join(failures)}",
                             hint="Resolve the issues above and re-run `train sync`")
        logger.info("Stack synchronized with remote")
        return result

    # Navigation

    def switch_to_branch(self, branch: str) -> None:
        if has_uncommitted_changes(self.git_cmd):
            logger.warning("Working directory is not clean. Stashing changes...")
            self.git_cmd.must_git(["stash", "push", "-m", "git-train navigation stash"])
        self.git_cmd.must_git(["checkout", branch])
        logger.info(f"Switched to branch: {branch}")

    def branch_info_lines(self, stack: Stack, name: str) -> List[str]:
        branch = stack.get_branch(name)
        lines = [
            f"Branch: {branch.name}",
            f"Parent: {branch.parent}",
            f"Commit: {branch.commit_hash[:8]}",
            f"Created: {branch.created_at.strftime(TIME_FORMAT)}",
            f"Updated: {branch.updated_at.strftime(TIME_FORMAT)}",
        ]
        if branch.mr_id is not None:
            lines.append(f"Merge Request: !{branch.mr_id}")
            if stack.gitlab_project is not None:
                lines.append(f"MR URL: {stack.gitlab_project.web_url}/-/merge_requests/{branch.mr_id}")
        else:
            lines.append("Merge Request: Not created")
        children = children_of(stack).get(name)
        if children:
            lines.append(f"Children: {', '.join(children)}")
        try:
            lines.append(f"Commit info: {self.git_cmd.must_git(['show', '--oneline', '-s', branch.commit_hash]).strip()}")
        except GitError:
            pass
        return lines

    def create_merge_request_for(self, name: str) -> Optional[MergeRequest]:
        stack = self.load_current()
        stack.get_branch(name)
        resolver = self._target_resolver(stack)
        if resolver is None:
            logger.error("GitLab client not available. Configure GitLab integration first.")
            return None
        mr = resolver.create_or_update(name, stack)
        self._save(stack)
        return mr

    def navigate(self) -> None:
        """Interactive menu over the branches of the current stack."""
        if not self.prompter.interactive:
            raise StackError("Navigation needs an interactive terminal")
        refresh, leave = "Refresh", "Exit"
        while True:
            stack = self.load_current()
            print_header(f"Navigate Stack: {stack.name}")
            current = get_current_branch(self.git_cmd)
            merge_requests = self.collect_merge_requests(stack)
            order = hierarchy_order(stack)
            labels = self.status_lines(stack, merge_requests, current)
            choice = self.prompter.choose("Select a branch", labels + [refresh, leave])
            if choice == leave:
                logger.info("Exiting navigation")
                return
            if choice == refresh:
                continue
            name = order[labels.index(choice)]
            self._branch_menu(stack, name, merge_requests.get(name))

    def _branch_menu(self, stack: Stack, name: str, mr: Optional[MergeRequest]) -> None:
        switch, info, create, view, back = ("Switch to branch", "Show branch info",
                                            "Create or update merge request",
                                            "View merge request", "Back")
        actions = [switch, info, create] + ([view] if mr is not None else []) + [back]
        action = self.prompter.choose(f"{name}:", actions, default=switch)
        try:
            if action == switch:
                self.switch_to_branch(name)
            elif action == info:
                for line in self.branch_info_lines(stack, name):
                    print(line)
            elif action == create:
                self.create_merge_request_for(name)
            elif action == view and mr is not None:
                print(f"Title: {mr.title}")
                print(f"State: {mr.status_label()}")
                print(f"Source: {mr.source_branch}")
                print(f"Target: {mr.target_branch}")
                print(f"URL: {mr.web_url}")
                if mr.description:
                    print("\nDescription:")
                    print(mr.description)
        except (GitError, GitLabError) as e:
            logger.error(f"{action} failed for {name}: {e}")

    # Conflict commands

    def resolve_check(self) -> GitState:
        state = self.resolver.get_state()
        print(f"Repository state: {state.value}")
        operation = self.resolver.current_operation()
        if operation is not None and operation != state:
            print(f"In progress: {operation.value}")
        info = self.resolver.detect_conflicts()
        if info is not None:
            for conflict in info.files:
                print(f"  {conflict.path} ({conflict.status.value})")
        return state

    def resolve_interactive(self) -> None:
        info = self.resolver.detect_conflicts()
        if info is None:
            logger.info("No conflicts to resolve")
            return
        pending = self.resolver.resolve_interactively(info)
        if pending is not None:
            self.resolver.resolve(pending)

    def resolve_auto(self) -> bool:
        info = self.resolver.detect_conflicts()
        if info is None:
            logger.info("No conflicts to resolve")
            return True
        if not self.resolver.auto_resolve(info):
            logger.warning("Conflicts could not be resolved automatically")
            return False
        pending = self.resolver.continue_operation()
        if pending is not None:
            self.resolver.log_conflict_summary(pending)
            raise InvalidStateError("The operation stopped on new conflicts",
                                    hint="Run `train resolve auto` or `train resolve interactive` again")
        return True

    def resolve_abort(self) -> None:
        self.resolver.abort_current_operation()

    def resolve_continue(self) -> None:
        info = self.resolver.detect_conflicts()
        if info is not None:
            remaining = self.resolver.unresolved(info)
            if remaining.files:
                raise InvalidStateError(
                    f"Conflict markers remain in {', '.join(remaining.paths)}",
                    hint="Edit those files, then run `train resolve continue` again")
            self.resolver.stage(info.paths)
        pending = self.resolver.continue_operation()
        if pending is not None:
            self.resolver.log_conflict_summary(pending)
            raise InvalidStateError("The operation stopped on new conflicts",
                                    hint="Resolve them and run `train resolve continue` again")
