"""Merge request targets and metadata for stack branches."""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..config.models import TrainConfig
from ..errors import GitError, GitLabError, TrainError
from ..git import remote_branch_exists
from ..stack.models import Stack
from ..typing import GitInterface
from . import GitLabClient
from .markdown import build_stack_table, update_description
from .types import MergeRequest, MergeRequestState

logger = logging.getLogger(__name__)

def merge_request_title(stack: Stack, branch: str) -> str:
    return f"[Stack: {stack.name}] {branch}"

def merge_request_description(stack: Stack, branch: str, target: str) -> str:
    parent = stack.branches[branch].parent
    return (f"Part of stack: {stack.name}\n\n"
            f"Base branch: {stack.base_branch}\n"
            f"Original parent: {parent}\n"
            f"Current target: {target}\n\n"
            f"Stack ID: {stack.id}")

@dataclass
class MergeRequestSyncResult:
    """Outcome of syncing merge requests for a batch of branches."""
    created: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    retargeted: Dict[str, str] = field(default_factory=dict)
    failed: Dict[str, str] = field(default_factory=dict)
    merge_requests: Dict[int, MergeRequest] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

class ReviewTargetResolver:
    """Computes where each branch's merge request should point and keeps it there."""

    def __init__(self, config: TrainConfig, git_cmd: GitInterface, client: GitLabClient):
        self.config = config
        self.git_cmd = git_cmd
        self.client = client

    def _exists_on_remote(self, branch: str) -> bool:
        try:
            return remote_branch_exists(self.git_cmd, self.config.repo.remote, branch)
        except GitError as e:
            logger.warning(f"Could not check {branch} on {self.config.repo.remote}: {e}")
            return True

    def determine_optimal_target(self, branch_name: str, stack: Stack) -> str:
        """Nearest ancestor that can still receive a merge.

        Merged ancestors are replaced by what they were merged into, closed
        ones by their own parent, and tracked ancestors that are neither on
        the remote nor have a merge request are skipped.
        """
        branch = stack.branches.get(branch_name)
        current = branch.parent if branch else stack.base_branch
        visited = set()
        while True:
            if current == stack.base_branch:
                return current
            if current in visited:
                logger.warning(f"Target resolution for {branch_name} looped at {current}; using {stack.base_branch}")
                return stack.base_branch
            visited.add(current)

            ancestor = stack.branches.get(current)
            if ancestor is None:
                return current

            if ancestor.mr_id is not None:
                try:
                    mr = self.client.get_merge_request(ancestor.mr_id)
                except GitLabError as e:
                    logger.warning(f"Could not fetch MR !{ancestor.mr_id} of {current}: {e}; keeping it as target")
                    return current
                if mr.state == MergeRequestState.MERGED:
                    logger.debug(f"{current} was merged into {mr.target_branch}")
                    current = mr.target_branch
                    continue
                if mr.state == MergeRequestState.CLOSED:
                    logger.debug(f"{current} was closed, skipping to {ancestor.parent}")
                    current = ancestor.parent
                    continue
                return current

            if self._exists_on_remote(current):
                return current
            logger.debug(f"{current} is not on {self.config.repo.remote}, skipping to {ancestor.parent}")
            current = ancestor.parent

    def create_or_update(self, branch_name: str, stack: Stack,
                         result: Optional[MergeRequestSyncResult] = None) -> MergeRequest:
        """Create the branch's merge request or bring it in line with the stack."""
        if result is None:
            result = MergeRequestSyncResult()
        branch = stack.get_branch(branch_name)
        target = self.determine_optimal_target(branch_name, stack)
        title = merge_request_title(stack, branch_name)

        if branch.mr_id is None:
            description = merge_request_description(stack, branch_name, target)
            mr = self.client.create_merge_request(branch_name, target, title, description)
            branch.mr_id = mr.iid
            branch.touch()
            logger.info(f"Created MR !{mr.iid} for {branch_name} -> {target}: {mr.web_url}")
            result.created.append(branch_name)
            result.merge_requests[mr.iid] = mr
            return mr

        live = self.client.get_merge_request(branch.mr_id)
        if live.state != MergeRequestState.OPENED:
            logger.info(f"MR !{live.iid} for {branch_name} is {live.state.value}; leaving it alone")
            result.merge_requests[live.iid] = live
            return live

        # The description belongs to the author; only the stack table in it is ours
        new_target = target if live.target_branch != target else None
        if new_target is None and live.title == title:
            result.merge_requests[live.iid] = live
            return live

        mr = self.client.update_merge_request(live.iid, title=title, target_branch=new_target)
        if new_target:
            logger.info(f"Retargeted MR !{mr.iid} for {branch_name}: {live.target_branch} -> {new_target}")
            result.retargeted[branch_name] = new_target
        else:
            logger.info(f"Updated MR !{mr.iid} for {branch_name}")
        result.updated.append(branch_name)
        result.merge_requests[mr.iid] = mr
        return mr

    def sync_merge_requests(self, stack: Stack, branches: Iterable[str]) -> MergeRequestSyncResult:
        """create_or_update every branch, then refresh the stack table in each open MR.

        A failure on one branch is recorded and the rest carry on.
        """
        result = MergeRequestSyncResult()
        for name in branches:
            try:
                self.create_or_update(name, stack, result)
            except TrainError as e:
                logger.error(f"Failed to sync MR for {name}: {e}")
                result.failed[name] = str(e)
        self.update_descriptions(stack, result)
        return result

    def update_descriptions(self, stack: Stack, result: MergeRequestSyncResult) -> None:
        """Write the stack table into every open merge request of the stack."""
        for name, branch in stack.branches.items():
            if branch.mr_id is None or branch.mr_id in result.merge_requests:
                continue
            try:
                result.merge_requests[branch.mr_id] = self.client.get_merge_request(branch.mr_id)
            except GitLabError as e:
                logger.warning(f"Could not fetch MR !{branch.mr_id} for {name}: {e}")

        table = build_stack_table(stack, result.merge_requests)
        for iid, mr in list(result.merge_requests.items()):
            if mr.state != MergeRequestState.OPENED:
                continue
            new_description = update_description(mr.description, table)
            if new_description == (mr.description or "").strip():
                continue
            try:
                result.merge_requests[iid] = self.client.update_merge_request(iid, description=new_description)
                logger.debug(f"Updated stack table in MR !{iid}")
            except GitLabError as e:
                logger.error(f"Failed to update description of MR !{iid}: {e}")
                result.failed[mr.source_branch] = str(e)
