"""Test fixtures for end-to-end tests against real local git repositories."""

import os
import subprocess
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Generator, List, Optional

import pytest

from pytrain.config import Config
from pytrain.git import RealGit
from pytrain.pretty import Prompter
from pytrain.train import StackManager
from pytrain.tests.e2e.fake_gitlab import FakeGitLab

log = logging.getLogger(__name__)

def run_cmd(cmd: List[str], cwd: Optional[str] = None, check: bool = True) -> str:
    """Run a command and return its stdout."""
    log.debug(f"Running command: {' '.join(cmd)}")
    result = subprocess.run(cmd, check=check, cwd=cwd, capture_output=True, text=True)
    if result.stderr:
        log.debug(f"Command stderr: {result.stderr.strip()}")
    return result.stdout.strip()

class ScriptedPrompter(Prompter):
    """Prompter answering from a queue instead of a terminal."""

    def __init__(self, interactive: bool = False, answers: Optional[List[object]] = None):
        super().__init__(interactive=interactive)
        self.answers = list(answers or [])
        self.asked: List[str] = []

    def _next(self, message: str) -> object:
        self.asked.append(message)
        if not self.answers:
            raise AssertionError(f"Unexpected prompt: {message}")
        return self.answers.pop(0)

    def confirm(self, message: str, default: bool = False) -> bool:
        return bool(self._next(message))

    def prompt(self, message: str, default: Optional[str] = None) -> str:
        return str(self._next(message))

    def choose(self, message: str, choices: List[str], default: Optional[str] = None) -> str:
        answer = self._next(message)
        if isinstance(answer, int):
            return choices[answer]
        assert answer in choices, f"{answer!r} not in {choices}"
        return str(answer)

    def edit_file(self, path: str, editor: str) -> None:
        self.asked.append(f"edit {path}")

@dataclass
class RepoContext:
    """A work tree with a bare 'origin', a fake GitLab and a StackManager."""
    repo_dir: Path
    remote_dir: Path
    config: Config
    git_cmd: RealGit
    gitlab: FakeGitLab
    prompter: ScriptedPrompter
    managers: List[StackManager] = field(default_factory=list)

    def git(self, *args: str) -> str:
        return run_cmd(["git", *args], cwd=str(self.repo_dir))

    def write(self, file: str, content: str) -> None:
        (self.repo_dir / file).write_text(content)

    def make_commit(self, file: str, content: str, msg: str) -> str:
        """Write `file` and commit it on the current branch."""
        self.write(file, content)
        self.git("add", file)
        self.git("commit", "-q", "-m", msg)
        return self.git("rev-parse", "HEAD")

    def head(self, ref: str = "HEAD") -> str:
        return self.git("rev-parse", ref)

    def current_branch(self) -> str:
        return self.git("rev-parse", "--abbrev-ref", "HEAD")

    def manager(self) -> StackManager:
        """A fresh StackManager, as a new CLI invocation would build it."""
        manager = StackManager(self.config, self.git_cmd, prompter=self.prompter, gitlab=self.gitlab)  # type: ignore[arg-type]
        self.managers.append(manager)
        return manager

def create_repo(tmp_path: Path) -> RepoContext:
    remote_dir = tmp_path / "remote.git"
    repo_dir = tmp_path / "work"
    repo_dir.mkdir()
    run_cmd(["git", "init", "-q", "--bare", "-b", "main", str(remote_dir)])
    run_cmd(["git", "init", "-q", "-b", "main"], cwd=str(repo_dir))
    for key, value in (("user.name", "Train Tester"), ("user.email", "train@example.com"),
                       ("commit.gpgsign", "false"), ("pull.rebase", "false")):
        run_cmd(["git", "config", key, value], cwd=str(repo_dir))
    run_cmd(["git", "remote", "add", "origin", str(remote_dir)], cwd=str(repo_dir))

    config = Config({
        'repo': {'remote': 'origin', 'base_branch': 'main'},
        'user': {'log_git_commands': True},
        'editor': {'command': 'true'},
        'conflict': {'auto_resolve_strategy': 'never', 'force_push': 'auto'},
    })
    ctx = RepoContext(repo_dir=repo_dir, remote_dir=remote_dir, config=config,
                      git_cmd=RealGit(config, str(repo_dir)), gitlab=FakeGitLab(),
                      prompter=ScriptedPrompter(interactive=False))
    ctx.make_commit("README.md", "hello\n", "Initial commit")
    ctx.git("push", "-q", "origin", "main")
    return ctx

@pytest.fixture
def repo_ctx(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[RepoContext, None, None]:
    """Fresh repository per test; cwd is the work tree."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.delenv("GITLAB_TOKEN", raising=False)
    ctx = create_repo(tmp_path)
    monkeypatch.chdir(ctx.repo_dir)
    yield ctx
