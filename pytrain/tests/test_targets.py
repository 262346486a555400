"""Unit tests for merge request target resolution and syncing."""

from unittest.mock import MagicMock

import pytest

from pytrain.config import Config
from pytrain.errors import GitLabError, StackError
from pytrain.gitlab import MergeRequestState
from pytrain.gitlab.markdown import STACK_TABLE_END, STACK_TABLE_START
from pytrain.gitlab.targets import ReviewTargetResolver, merge_request_title
from pytrain.stack import Stack
from pytrain.tests.e2e.fake_gitlab import FakeGitLab


def make_stack() -> Stack:
    """main <- a <- b <- c"""
    stack = Stack(name="demo", base_branch="main")
    stack.add_branch("a", "main", "a" * 40)
    stack.add_branch("b", "a", "b" * 40)
    stack.add_branch("c", "b", "c" * 40)
    return stack


def make_resolver(on_remote=("a", "b", "c")):
    git_mock = MagicMock()
    git_mock.must_git.side_effect = lambda cmd, *args, **kwargs: \
        f"abc\trefs/heads/{cmd[-1]}" if cmd[0] == "ls-remote" and cmd[-1] in on_remote else ""
    fake = FakeGitLab()
    return ReviewTargetResolver(Config({}), git_mock, fake), fake


def open_mrs(stack: Stack, fake: FakeGitLab) -> None:
    for name in ("a", "b", "c"):
        branch = stack.branches[name]
        mr = fake.create_merge_request(name, branch.parent, merge_request_title(stack, name))
        branch.mr_id = mr.iid


class TestDetermineOptimalTarget:
    """Tests for ReviewTargetResolver.determine_optimal_target."""

    def test_open_parent(self) -> None:
        stack = make_stack()
        resolver, fake = make_resolver()
        open_mrs(stack, fake)
        assert resolver.determine_optimal_target("a", stack) == "main"
        assert resolver.determine_optimal_target("c", stack) == "b"

    def test_merged_parent_uses_its_target(self) -> None:
        stack = make_stack()
        resolver, fake = make_resolver()
        open_mrs(stack, fake)
        fake.set_state(stack.branches["b"].mr_id, MergeRequestState.MERGED)
        fake.merge_requests[stack.branches["b"].mr_id].target_branch = "a"
        assert resolver.determine_optimal_target("c", stack) == "a"

    def test_merged_chain_reaches_base(self) -> None:
        stack = make_stack()
        resolver, fake = make_resolver()
        open_mrs(stack, fake)
        fake.set_state(stack.branches["a"].mr_id, MergeRequestState.MERGED)
        fake.set_state(stack.branches["b"].mr_id, MergeRequestState.MERGED)
        assert resolver.determine_optimal_target("c", stack) == "main"

    def test_closed_parent_skipped(self) -> None:
        stack = make_stack()
        resolver, fake = make_resolver()
        open_mrs(stack, fake)
        fake.set_state(stack.branches["b"].mr_id, MergeRequestState.CLOSED)
        assert resolver.determine_optimal_target("c", stack) == "a"

    def test_parent_not_pushed_skipped(self) -> None:
        stack = make_stack()
        resolver, _ = make_resolver(on_remote=("a",))
        assert resolver.determine_optimal_target("c", stack) == "a"

    def test_parent_on_remote_without_mr(self) -> None:
        stack = make_stack()
        resolver, _ = make_resolver()
        assert resolver.determine_optimal_target("c", stack) == "b"

    def test_fetch_error_keeps_parent(self) -> None:
        stack = make_stack()
        resolver, fake = make_resolver()
        open_mrs(stack, fake)
        fake.fail_on["get"] = GitLabError("boom", status_code=500)
        assert resolver.determine_optimal_target("c", stack) == "b"

    def test_loop_falls_back_to_base(self) -> None:
        stack = make_stack()
        resolver, fake = make_resolver()
        open_mrs(stack, fake)
        # b claims to have been merged into itself
        fake.set_state(stack.branches["b"].mr_id, MergeRequestState.MERGED)
        fake.merge_requests[stack.branches["b"].mr_id].target_branch = "b"
        assert resolver.determine_optimal_target("c", stack) == "main"


class TestSyncMergeRequests:
    """Tests for create_or_update and sync_merge_requests."""

    def test_creates_with_table(self) -> None:
        stack = make_stack()
        resolver, fake = make_resolver()
        result = resolver.sync_merge_requests(stack, ["a", "b", "c"])

        assert result.ok
        assert result.created == ["a", "b", "c"]
        assert [fake.by_source(n).target_branch for n in ("a", "b", "c")] == ["main", "a", "b"]
        for name in ("a", "b", "c"):
            description = fake.by_source(name).description or ""
            assert STACK_TABLE_START in description and STACK_TABLE_END in description
            assert "| #3 | `c` |" in description
        assert stack.branches["c"].mr_id == fake.by_source("c").iid

    def test_second_sync_changes_nothing(self) -> None:
        stack = make_stack()
        resolver, fake = make_resolver()
        resolver.sync_merge_requests(stack, ["a", "b", "c"])
        fake.calls.clear()

        result = resolver.sync_merge_requests(stack, ["a", "b", "c"])
        assert result.created == [] and result.updated == []
        assert all(call[0] == "get" for call in fake.calls)

    def test_retargets_open_mr(self) -> None:
        stack = make_stack()
        resolver, fake = make_resolver()
        resolver.sync_merge_requests(stack, ["a", "b", "c"])
        fake.set_state(stack.branches["b"].mr_id, MergeRequestState.MERGED)

        result = resolver.sync_merge_requests(stack, ["a", "b", "c"])
        assert result.retargeted == {"c": "a"}
        assert fake.by_source("c").target_branch == "a"
        # The merged MR itself is never edited
        assert fake.by_source("b").target_branch == "a"

    def test_user_text_preserved(self) -> None:
        stack = make_stack()
        resolver, fake = make_resolver()
        resolver.sync_merge_requests(stack, ["a"])
        mr = fake.by_source("a")
        fake.merge_requests[mr.iid].description = "Reviewer notes\n\n" + (mr.description or "")

        resolver.sync_merge_requests(stack, ["a", "b"])
        description = fake.by_source("a").description or ""
        assert description.startswith("Reviewer notes")
        assert "`b`" in description
        assert description.count(STACK_TABLE_START) == 1

    def test_failure_is_per_branch(self) -> None:
        stack = make_stack()
        resolver, fake = make_resolver()
        resolver.sync_merge_requests(stack, ["a"])
        fake.fail_on["create"] = GitLabError("quota", status_code=429)

        result = resolver.sync_merge_requests(stack, ["a", "b", "c"])
        assert not result.ok
        assert set(result.failed) == {"b", "c"}
        assert stack.branches["b"].mr_id is None

    def test_missing_branch(self) -> None:
        resolver, _ = make_resolver()
        with pytest.raises(StackError):
            resolver.create_or_update("nope", make_stack())
