"""Unit tests for rebase propagation order and failure handling."""

from typing import List, Optional, Tuple
from unittest.mock import MagicMock, patch

import pytest

from pytrain.config import Config
from pytrain.errors import GitError, InvalidStateError
from pytrain.stack import RebasePropagator, Stack


def make_stack() -> Stack:
    """main <- a <- (b <- d, c)"""
    stack = Stack(name="demo", base_branch="main")
    stack.add_branch("a", "main", "a" * 40)
    stack.add_branch("b", "a", "b" * 40)
    stack.add_branch("c", "a", "c" * 40)
    stack.add_branch("d", "b", "d" * 40)
    return stack


def make_propagator() -> RebasePropagator:
    git_mock = MagicMock()
    git_mock.must_git.side_effect = lambda cmd, *args, **kwargs: f"{cmd[-1]}-tip\n"
    return RebasePropagator(Config({}), git_mock, MagicMock())


class Recorder:
    """Stands in for smart_rebase, failing on the given branches."""

    def __init__(self, fail: Tuple[str, ...] = (), conflict: Optional[str] = None):
        self.calls: List[Tuple[str, str, Optional[str]]] = []
        self.fail = fail
        self.conflict = conflict

    def __call__(self, stack: Stack, branch: str, onto: str, old_base: Optional[str] = None) -> bool:
        self.calls.append((branch, onto, old_base))
        if branch in self.fail:
            raise GitError(f"rebase of {branch} failed")
        if branch == self.conflict:
            raise InvalidStateError("conflicts")
        return True


def test_parents_before_children() -> None:
    propagator = make_propagator()
    recorder = Recorder()
    with patch.object(propagator, "smart_rebase", recorder):
        result = propagator.propagate(make_stack(), "main")
    assert [c[0] for c in recorder.calls] == ["a", "b", "d", "c"]
    assert [c[1] for c in recorder.calls] == ["main", "a", "b", "a"]
    assert result.rebased == ["a", "b", "d", "c"]
    assert result.ok


def test_previous_tips_passed_down() -> None:
    propagator = make_propagator()
    recorder = Recorder()
    with patch.object(propagator, "smart_rebase", recorder):
        propagator.propagate(make_stack(), "a", previous_tip="old-a")
    assert recorder.calls == [("b", "a", "old-a"), ("d", "b", "b-tip"), ("c", "a", "old-a")]


def test_failure_skips_subtree_only() -> None:
    propagator = make_propagator()
    recorder = Recorder(fail=("b",))
    with patch.object(propagator, "smart_rebase", recorder):
        result = propagator.propagate(make_stack(), "main")
    assert [c[0] for c in recorder.calls] == ["a", "b", "c"]
    assert list(result.failed) == ["b"]
    assert result.skipped == ["d"]
    assert result.rebased == ["a", "c"]
    assert not result.ok


def test_conflict_stops_everything() -> None:
    propagator = make_propagator()
    recorder = Recorder(conflict="b")
    with patch.object(propagator, "smart_rebase", recorder):
        with pytest.raises(InvalidStateError):
            propagator.propagate(make_stack(), "main")
    assert [c[0] for c in recorder.calls] == ["a", "b"]


def test_leaf_has_nothing_to_do() -> None:
    propagator = make_propagator()
    recorder = Recorder()
    with patch.object(propagator, "smart_rebase", recorder):
        result = propagator.propagate(make_stack(), "d")
    assert recorder.calls == []
    assert result.rebased == [] and result.ok


def test_parent_cycle_visits_each_branch_once() -> None:
    stack = make_stack()
    stack.branches["a"].parent = "d"
    propagator = make_propagator()
    recorder = Recorder()
    with patch.object(propagator, "smart_rebase", recorder):
        result = propagator.propagate(stack, "a")
    assert [c[0] for c in recorder.calls] == ["b", "d", "c"]
    assert result.rebased == ["b", "d", "c"]
