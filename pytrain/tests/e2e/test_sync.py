"""End-to-end tests for sync, merge request retargeting and conflicts."""

import logging

import pytest

from pytrain.config.models import AutoResolveStrategy
from pytrain.conflict import GitState
from pytrain.errors import InvalidStateError
from pytrain.gitlab import MergeRequestState
from pytrain.tests.e2e.fixtures import RepoContext, run_cmd

log = logging.getLogger(__name__)

def _stack(ctx: RepoContext, push: bool = False) -> None:
    ctx.git("checkout", "-q", "-b", "feature-1")
    ctx.make_commit("f1.txt", "one\n", "Feature 1")
    ctx.manager().create_stack("train")
    ctx.git("checkout", "-q", "-b", "feature-2")
    ctx.make_commit("f2.txt", "two\n", "Feature 2")
    ctx.manager().add_branch()
    if push:
        ctx.manager().push_stack()

def _advance_main(ctx: RepoContext, file: str, content: str) -> str:
    """Commit on main and publish it, leaving the current branch checked out."""
    branch = ctx.current_branch()
    ctx.git("checkout", "-q", "main")
    tip = ctx.make_commit(file, content, f"Update {file} on main")
    ctx.git("push", "-q", "origin", "main")
    ctx.git("checkout", "-q", branch)
    return tip

def test_sync_rebases_stack_on_new_base(repo_ctx: RepoContext) -> None:
    ctx = repo_ctx
    _stack(ctx)
    main_tip = _advance_main(ctx, "base.txt", "base\n")

    result = ctx.manager().sync_with_remote()

    assert result.rebased == ["feature-1", "feature-2"]
    run_cmd(["git", "merge-base", "--is-ancestor", main_tip, "feature-1"], cwd=str(ctx.repo_dir))
    run_cmd(["git", "merge-base", "--is-ancestor", "feature-1", "feature-2"], cwd=str(ctx.repo_dir))
    assert ctx.git("rev-list", "--count", "main..feature-2") == "2"
    assert ctx.current_branch() == "feature-2"

def test_sync_twice_changes_nothing(repo_ctx: RepoContext) -> None:
    ctx = repo_ctx
    _stack(ctx)
    _advance_main(ctx, "base.txt", "base\n")
    ctx.manager().sync_with_remote()
    heads = (ctx.head("feature-1"), ctx.head("feature-2"))

    result = ctx.manager().sync_with_remote()

    assert result.rebased == []
    assert result.up_to_date == ["feature-1", "feature-2"]
    assert (ctx.head("feature-1"), ctx.head("feature-2")) == heads

def test_sync_retargets_after_parent_merged(repo_ctx: RepoContext) -> None:
    ctx = repo_ctx
    _stack(ctx, push=True)
    first = ctx.gitlab.by_source("feature-1")
    second = ctx.gitlab.by_source("feature-2")
    assert second.target_branch == "feature-1"

    ctx.gitlab.set_state(first.iid, MergeRequestState.MERGED)
    ctx.gitlab.calls.clear()
    ctx.manager().sync_with_remote()

    assert ctx.gitlab.merge_requests[second.iid].target_branch == "main"
    # Merged merge requests are left as they were
    assert ("update", first.iid) not in ctx.gitlab.calls

def test_sync_retargets_past_closed_parent(repo_ctx: RepoContext) -> None:
    ctx = repo_ctx
    _stack(ctx, push=True)
    first = ctx.gitlab.by_source("feature-1")
    second = ctx.gitlab.by_source("feature-2")

    ctx.gitlab.set_state(first.iid, MergeRequestState.CLOSED)
    ctx.manager().sync_with_remote()

    assert ctx.gitlab.merge_requests[second.iid].target_branch == "main"

def test_conflict_with_auto_resolve_disabled(repo_ctx: RepoContext) -> None:
    ctx = repo_ctx
    ctx.git("checkout", "-q", "-b", "feature-1")
    ctx.make_commit("README.md", "feature\n", "Change README on feature")
    ctx.manager().create_stack("train")
    ctx.git("checkout", "-q", "main")
    ctx.make_commit("README.md", "main\n", "Change README on main")
    ctx.git("checkout", "-q", "feature-1")

    manager = ctx.manager()
    with pytest.raises(InvalidStateError):
        manager.sync_with_remote()

    assert manager.resolver.get_state() == GitState.CONFLICTED
    assert manager.resolver.current_operation() == GitState.REBASING
    info = manager.resolver.detect_conflicts()
    assert info is not None
    assert info.paths == ["README.md"]

    # Anything else refuses to run until the rebase is dealt with
    with pytest.raises(InvalidStateError):
        ctx.manager().commit_changes("blocked")

    manager.resolve_abort()
    assert manager.resolver.get_state() == GitState.CLEAN
    assert manager.resolver.detect_conflicts() is None
    assert ctx.current_branch() == "feature-1"

def test_whitespace_conflict_is_auto_resolved(repo_ctx: RepoContext) -> None:
    ctx = repo_ctx
    ctx.config.conflict.auto_resolve_strategy = AutoResolveStrategy.SIMPLE
    ctx.make_commit("notes.txt", "alpha\nbeta gamma\nomega\n", "Add notes")
    ctx.git("push", "-q", "origin", "main")
    ctx.git("checkout", "-q", "-b", "feature-1")
    ctx.write("f1.txt", "one\n")
    ctx.git("add", "f1.txt")
    ctx.make_commit("notes.txt", "alpha\nbeta  gamma\nomega\n", "Feature 1")
    ctx.manager().create_stack("train")
    _advance_main(ctx, "notes.txt", "alpha\nbeta\tgamma\nomega\n")

    result = ctx.manager().sync_with_remote()

    assert result.rebased == ["feature-1"]
    assert ctx.manager().resolver.get_state() == GitState.CLEAN
    notes = (ctx.repo_dir / "notes.txt").read_text()
    assert "<<<<<<<" not in notes
    assert (ctx.repo_dir / "f1.txt").exists()
    run_cmd(["git", "merge-base", "--is-ancestor", "main", "feature-1"], cwd=str(ctx.repo_dir))

def test_clean_repository_has_no_conflicts(repo_ctx: RepoContext) -> None:
    manager = repo_ctx.manager()
    assert manager.resolver.detect_conflicts() is None
    assert manager.resolver.get_state() == GitState.CLEAN
    assert manager.resolve_check() == GitState.CLEAN

def test_manual_resolution_then_continue(repo_ctx: RepoContext) -> None:
    ctx = repo_ctx
    ctx.git("checkout", "-q", "-b", "feature-1")
    ctx.make_commit("README.md", "feature\n", "Change README on feature")
    ctx.manager().create_stack("train")
    ctx.git("checkout", "-q", "main")
    ctx.make_commit("README.md", "main\n", "Change README on main")
    ctx.git("checkout", "-q", "feature-1")

    manager = ctx.manager()
    with pytest.raises(InvalidStateError):
        manager.sync_with_remote()

    # Markers still in the file
    with pytest.raises(InvalidStateError):
        manager.resolve_continue()

    ctx.write("README.md", "main and feature\n")
    manager.resolve_continue()
    assert manager.resolver.get_state() == GitState.CLEAN
    assert ctx.current_branch() == "feature-1"

    result = ctx.manager().sync_with_remote()
    assert result.up_to_date == ["feature-1"]
    assert (ctx.repo_dir / "README.md").read_text() == "main and feature\n"

def test_conflict_in_non_ascii_path_can_be_resolved(repo_ctx: RepoContext) -> None:
    ctx = repo_ctx
    name = "café notes.txt"
    ctx.make_commit(name, "base\n", "Add notes")
    ctx.git("push", "-q", "origin", "main")
    ctx.git("checkout", "-q", "-b", "feature-1")
    ctx.make_commit(name, "feature\n", "Change notes on feature")
    ctx.manager().create_stack("train")
    _advance_main(ctx, name, "main\n")

    manager = ctx.manager()
    with pytest.raises(InvalidStateError):
        manager.sync_with_remote()

    info = manager.resolver.detect_conflicts()
    assert info is not None
    assert info.paths == [name]
    assert manager.resolver.unresolved(info).paths == [name]

    ctx.write(name, "main and feature\n")
    manager.resolve_continue()
    assert manager.resolver.get_state() == GitState.CLEAN
    assert ctx.git("show", f"feature-1:{name}") == "main and feature"

def _interrupted_sync(ctx: RepoContext) -> None:
    """Leave feature-1 mid-rebase with README.md conflicted."""
    ctx.git("checkout", "-q", "-b", "feature-1")
    ctx.make_commit("README.md", "feature\n", "Change README on feature")
    ctx.manager().create_stack("train")
    ctx.git("checkout", "-q", "main")
    ctx.make_commit("README.md", "main\n", "Change README on main")
    ctx.git("checkout", "-q", "feature-1")
    with pytest.raises(InvalidStateError):
        ctx.manager().sync_with_remote()

def test_sync_refuses_leftover_conflict_without_terminal(repo_ctx: RepoContext) -> None:
    ctx = repo_ctx
    _interrupted_sync(ctx)

    with pytest.raises(InvalidStateError) as exc_info:
        ctx.manager().sync_with_remote()
    assert "conflicted" in str(exc_info.value)
    assert "train resolve" in (exc_info.value.hint or "")
    assert ctx.prompter.asked == []
    assert ctx.manager().resolver.get_state() == GitState.CONFLICTED

def test_sync_preflight_abort_choice_cleans_up(repo_ctx: RepoContext) -> None:
    ctx = repo_ctx
    _interrupted_sync(ctx)
    ctx.prompter.interactive = True
    ctx.prompter.answers = [2]

    manager = ctx.manager()
    manager.check_and_recover_git_state()

    assert ctx.prompter.asked == ["How would you like to proceed?"]
    assert manager.resolver.get_state() == GitState.CLEAN
    assert ctx.current_branch() == "feature-1"
    assert (ctx.repo_dir / "README.md").read_text() == "feature\n"

def test_sync_preflight_defer_choice_keeps_conflict(repo_ctx: RepoContext) -> None:
    ctx = repo_ctx
    _interrupted_sync(ctx)
    ctx.prompter.interactive = True
    ctx.prompter.answers = [3]

    with pytest.raises(InvalidStateError) as exc_info:
        ctx.manager().sync_with_remote()
    assert "deferred" in str(exc_info.value)
    assert ctx.prompter.answers == []
    assert ctx.manager().resolver.get_state() == GitState.CONFLICTED
    assert "<<<<<<<" in (ctx.repo_dir / "README.md").read_text()
