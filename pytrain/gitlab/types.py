"""Type definitions for GitLab API responses."""

from enum import Enum
from typing import Any, Optional
from pydantic import BaseModel, field_validator

class MergeRequestState(str, Enum):
    OPENED = "opened"
    CLOSED = "closed"
    MERGED = "merged"
    LOCKED = "locked"
    UNKNOWN = "unknown"

class GitLabProject(BaseModel):
    id: int
    name: str = ""
    path: str = ""
    path_with_namespace: str = ""
    web_url: str = ""

    class Config:
        """Pydantic config."""
        extra = "ignore"

class MergeRequest(BaseModel):
    id: int
    iid: int
    title: str
    description: Optional[str] = None
    source_branch: str
    target_branch: str
    state: MergeRequestState = MergeRequestState.UNKNOWN
    web_url: str = ""

    class Config:
        """Pydantic config."""
        extra = "ignore"

    @field_validator("state", mode="before")
    @classmethod
    def _unknown_state(cls, value: Any) -> Any:
        if isinstance(value, MergeRequestState):
            return value
        try:
            return MergeRequestState(str(value).lower())
        except ValueError:
            return MergeRequestState.UNKNOWN

    def status_label(self) -> str:
        """Short display form of the state."""
        if self.state == MergeRequestState.MERGED:
            return "✔ MERGED"
        if self.state == MergeRequestState.CLOSED:
            return "✘ CLOSED"
        if self.state == MergeRequestState.OPENED:
            return "● OPEN"
        return f"? {self.state.value.upper()}"
