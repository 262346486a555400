"""Pydantic models for config types."""

import os
import shutil
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field

DEFAULT_GITLAB_URL = "https://gitlab.com"

class AutoResolveStrategy(str, Enum):
    """How much the tool may resolve conflicts on its own."""
    NEVER = "never"
    SIMPLE = "simple"
    SMART = "smart"

class ForcePushMode(str, Enum):
    """Policy for force pushing rebased branches."""
    AUTO = "auto"
    PROMPT = "prompt"
    NEVER = "never"

def default_editor() -> str:
    """Pick an editor from the environment or the first one found on PATH."""
    for var in ("EDITOR", "VISUAL"):
        value = os.environ.get(var)
        if value:
            return value
    for candidate in ("cursor", "code", "vim", "nano"):
        if shutil.which(candidate):
            return candidate
    return "vi"

class RepoConfig(BaseModel):
    """Repository configuration."""
    remote: str = "origin"
    base_branch: Optional[str] = None
    gitlab_url: str = DEFAULT_GITLAB_URL
    gitlab_project_id: Optional[str] = None

    class Config:
        """Pydantic config."""
        extra = "allow"

class UserConfig(BaseModel):
    """User configuration."""
    log_git_commands: bool = False

    class Config:
        """Pydantic config."""
        extra = "allow"

class EditorConfig(BaseModel):
    """External editor used for conflict resolution."""
    command: str = Field(default_factory=default_editor)
    args: List[str] = Field(default_factory=lambda: ["--wait"])

    def command_line(self) -> str:
        """Editor command line as click.edit expects it."""
        # Terminal editors block anyway and do not understand --wait
        if os.path.basename(self.command) in ("vim", "vi", "nvim", "nano", "emacs"):
            return self.command
        return " ".join([self.command, *self.args])

    class Config:
        """Pydantic config."""
        extra = "allow"

class ConflictResolutionConfig(BaseModel):
    """Conflict and force-push policy."""
    auto_resolve_strategy: AutoResolveStrategy = AutoResolveStrategy.SMART
    backup_before_rebase: bool = False
    force_push: ForcePushMode = ForcePushMode.PROMPT

    class Config:
        """Pydantic config."""
        extra = "allow"

class ToolConfig(BaseModel):
    """Tool configuration."""
    concurrency: int = 0
    pretend: bool = False

    class Config:
        """Pydantic config."""
        extra = "allow"

class TrainConfig(BaseModel):
    """Full pytrain configuration."""
    repo: RepoConfig = Field(default_factory=RepoConfig)
    user: UserConfig = Field(default_factory=UserConfig)
    editor: EditorConfig = Field(default_factory=EditorConfig)
    conflict: ConflictResolutionConfig = Field(default_factory=ConflictResolutionConfig)
    tool: ToolConfig = Field(default_factory=ToolConfig)

    class Config:
        """Pydantic config."""
        extra = "allow"
