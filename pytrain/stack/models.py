"""Stack data model.

Children are never stored; they are derived from the parent pointers.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from ..errors import StackError
from ..gitlab.types import GitLabProject
from ..util import utc_now

class StackBranch(BaseModel):
    """One branch of a stack."""
    name: str
    parent: str
    commit_hash: str
    mr_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def touch(self, commit_hash: Optional[str] = None) -> None:
        if commit_hash is not None:
            self.commit_hash = commit_hash
        self.updated_at = utc_now()

class Stack(BaseModel):
    """A named forest of branches rooted at base_branch."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    base_branch: str
    branches: Dict[str, StackBranch] = Field(default_factory=dict)
    current_branch: Optional[str] = None
    gitlab_project: Optional[GitLabProject] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def touch(self) -> None:
        self.updated_at = utc_now()

    def is_tracked(self, name: str) -> bool:
        return name in self.branches

    def get_branch(self, name: str) -> StackBranch:
        branch = self.branches.get(name)
        if branch is None:
            raise StackError(f"Branch '{name}' is not part of stack '{self.name}'",
                             hint="Run `train add` on that branch first")
        return branch

    def add_branch(self, name: str, parent: str, commit_hash: str) -> StackBranch:
        """Track a new branch under `parent`."""
        if name == self.base_branch:
            raise StackError(f"Cannot add base branch '{name}' to its own stack")
        if name in self.branches:
            raise StackError(f"Branch '{name}' is already in stack '{self.name}'")
        if parent != self.base_branch and parent not in self.branches:
            raise StackError(f"Parent '{parent}' is not part of stack '{self.name}'",
                             hint=f"Use `{self.base_branch}` or one of: {', '.join(sorted(self.branches))}")
        branch = StackBranch(name=name, parent=parent, commit_hash=commit_hash)
        self.branches[name] = branch
        self.touch()
        return branch

    def ancestors(self, name: str) -> List[str]:
        """Parents of `name` up to and including base_branch, nearest first."""
        result: List[str] = []
        seen = {name}
        current = self.get_branch(name).parent
        while True:
            if current in seen:
                raise StackError(f"Cycle in stack '{self.name}' through '{current}'")
            result.append(current)
            if current == self.base_branch:
                return result
            seen.add(current)
            branch = self.branches.get(current)
            if branch is None:
                raise StackError(f"Unknown parent '{current}' in stack '{self.name}'")
            current = branch.parent

    def validate_forest(self) -> None:
        """Raise StackError unless every parent chain ends at base_branch."""
        for name, branch in self.branches.items():
            if branch.name != name:
                raise StackError(f"Branch entry '{name}' is named '{branch.name}'")
            self.ancestors(name)

def children_of(stack: Stack) -> Dict[str, List[str]]:
    """Map each parent to its children, sorted by name."""
    result: Dict[str, List[str]] = {}
    for name, branch in stack.branches.items():
        result.setdefault(branch.parent, []).append(name)
    for children in result.values():
        children.sort()
    return result

def descendants_in_order(stack: Stack, root: str) -> List[str]:
    """Depth-first pre-order of everything below `root`, parents before children."""
    children = children_of(stack)
    order: List[str] = []
    seen = set()
    work = list(reversed(children.get(root, [])))
    while work:
        name = work.pop()
        if name in seen:
            continue
        seen.add(name)
        order.append(name)
        work.extend(reversed(children.get(name, [])))
    return order

def hierarchy_order(stack: Stack) -> List[str]:
    """All branches depth-first from base_branch, then any unreachable ones by name."""
    order = descendants_in_order(stack, stack.base_branch)
    seen = set(order)
    order.extend(sorted(name for name in stack.branches if name not in seen))
    return order

def depth_of(stack: Stack, name: str) -> int:
    """Number of edges between `name` and base_branch."""
    return len(stack.ancestors(name))
