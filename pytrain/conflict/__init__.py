"""Repository state detection and conflict resolution.

Git does not expose its in-progress operations transactionally, so the state
is read from marker files in the git directory and from porcelain status
lines. A marker file is only trusted after a second check agrees with it;
markers left behind by an interrupted git process are removed.
"""

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..config.models import AutoResolveStrategy, TrainConfig
from ..errors import GitError, InvalidStateError
from ..git import get_git_dir
from ..pretty import Prompter
from ..typing import GitInterface

logger = logging.getLogger(__name__)


class GitState(str, Enum):
    """Classification of the work tree."""
    CLEAN = "clean"
    REBASING = "rebasing"
    MERGING = "merging"
    CHERRY_PICKING = "cherry-picking"
    CONFLICTED = "conflicted"


class ConflictStatus(str, Enum):
    """Kind of unmerged path."""
    BOTH_MODIFIED = "both modified"
    ADDED_BY_US = "added by us"
    ADDED_BY_THEM = "added by them"
    DELETED_BY_US = "deleted by us"
    DELETED_BY_THEM = "deleted by them"


# Two-character porcelain codes for unmerged paths
STATUS_CODES: Dict[str, ConflictStatus] = {
    "UU": ConflictStatus.BOTH_MODIFIED,
    "AA": ConflictStatus.BOTH_MODIFIED,
    "DD": ConflictStatus.BOTH_MODIFIED,
    "AU": ConflictStatus.ADDED_BY_US,
    "UA": ConflictStatus.ADDED_BY_THEM,
    "DU": ConflictStatus.DELETED_BY_US,
    "UD": ConflictStatus.DELETED_BY_THEM,
}

# Marker file, extra files removed when the marker is stale
MARKERS: Dict[GitState, Tuple[str, Tuple[str, ...]]] = {
    GitState.REBASING: ("REBASE_HEAD", ()),
    GitState.MERGING: ("MERGE_HEAD", ("MERGE_MODE",)),
    GitState.CHERRY_PICKING: ("CHERRY_PICK_HEAD", ()),
}

CONTINUE_COMMANDS: Dict[GitState, List[str]] = {
    GitState.REBASING: ["rebase", "--continue"],
    GitState.MERGING: ["commit", "--no-edit"],
    GitState.CHERRY_PICKING: ["cherry-pick", "--continue"],
}

ABORT_COMMANDS: Dict[GitState, List[str]] = {
    GitState.REBASING: ["rebase", "--abort"],
    GitState.MERGING: ["merge", "--abort"],
    GitState.CHERRY_PICKING: ["cherry-pick", "--abort"],
}

OURS_MARKER = "<<<<<<<"
BASE_MARKER = "|||||||"
SEPARATOR_MARKER = "======="
THEIRS_MARKER = ">>>>>>>"

IMPORT_PREFIXES = ("import ", "from ", "#include", "use ", "require ")


@dataclass
class ConflictFile:
    """One unmerged path."""
    path: str
    status: ConflictStatus


@dataclass
class ConflictInfo:
    """Conflicted paths plus the operation that produced them, if known."""
    files: List[ConflictFile] = field(default_factory=list)
    operation: Optional[GitState] = None

    @property
    def paths(self) -> List[str]:
        return [f.path for f in self.files]


def parse_conflict_line(record: str) -> Optional[ConflictFile]:
    """Parse one `status --porcelain=v1 -z` record, None if it is not a conflict."""
    if len(record) < 4:
        return None
    status = STATUS_CODES.get(record[:2])
    if status is None:
        return None
    return ConflictFile(path=record[3:], status=status)


def parse_conflicts(status_output: str) -> List[ConflictFile]:
    """All conflicts in a NUL separated `status --porcelain=v1 -z` listing.

    Paths are verbatim in this format; renames and copies carry their
    source path as an extra record.
    """
    result: List[ConflictFile] = []
    records = iter(status_output.split("\0"))
    for record in records:
        if "R" in record[:2] or "C" in record[:2]:
            next(records, None)
            continue
        conflict = parse_conflict_line(record)
        if conflict:
            result.append(conflict)
    return result


def _marker(line: str, marker: str) -> bool:
    return line.startswith(marker) and (len(line) == len(marker) or line[len(marker)] in " \r\n")


def has_conflict_markers(text: str) -> bool:
    """True if `text` still contains an unresolved conflict block."""
    lines = text.splitlines()
    return any(_marker(line, OURS_MARKER) for line in lines) and \
        any(_marker(line, THEIRS_MARKER) for line in lines)


def _normalize_ws(lines: List[str]) -> str:
    return "".join("".join(line.split()) for line in lines)


def _is_import_block(lines: List[str]) -> bool:
    content = [line.strip() for line in lines if line.strip()]
    return bool(content) and all(line.startswith(IMPORT_PREFIXES) for line in content)


def resolve_hunk(ours: List[str], theirs: List[str],
                 strategy: AutoResolveStrategy) -> Optional[List[str]]:
    """Resolution for a single conflict block, None if it needs a human.

    simple: sides differ only in whitespace or line endings, keep ours.
    smart: simple, or both sides are import lines only, keep the sorted union.
    """
    if strategy == AutoResolveStrategy.NEVER:
        return None
    if _normalize_ws(ours) == _normalize_ws(theirs):
        return ours
    if strategy == AutoResolveStrategy.SMART and _is_import_block(ours) and _is_import_block(theirs):
        ending = "\r\n" if any(line.endswith("\r\n") for line in ours) else "\n"
        merged = sorted({line.rstrip("\r\n") for line in ours + theirs if line.strip()})
        return [line + ending for line in merged]
    return None


def auto_resolve_text(text: str, strategy: AutoResolveStrategy) -> Optional[str]:
    """Resolve every conflict block in `text`, None if any block is unresolvable."""
    out: List[str] = []
    ours: List[str] = []
    theirs: List[str] = []
    section = None
    for line in text.splitlines(keepends=True):
        bare = line.rstrip("\r\n")
        if section is None:
            if _marker(bare, OURS_MARKER):
                section, ours, theirs = "ours", [], []
            else:
                out.append(line)
        elif section == "ours" and _marker(bare, BASE_MARKER):
            section = "base"
        elif section in ("ours", "base") and _marker(bare, SEPARATOR_MARKER):
            section = "theirs"
        elif section == "theirs" and _marker(bare, THEIRS_MARKER):
            resolved = resolve_hunk(ours, theirs, strategy)
            if resolved is None:
                return None
            out.extend(resolved)
            section = None
        elif section == "ours":
            ours.append(line)
        elif section == "theirs":
            theirs.append(line)
    if section is not None:
        return None
    return "".join(out)


class ConflictResolver:
    """State machine over the repository's in-progress operations."""

    def __init__(self, config: TrainConfig, git_cmd: GitInterface,
                 prompter: Optional[Prompter] = None):
        self.config = config
        self.git_cmd = git_cmd
        self.prompter = prompter or Prompter()
        self._git_dir: Optional[Path] = None
        self._work_tree: Optional[Path] = None

    @property
    def git_dir(self) -> Path:
        if self._git_dir is None:
            self._git_dir = get_git_dir(self.git_cmd)
        return self._git_dir

    @property
    def work_tree(self) -> Path:
        if self._work_tree is None:
            self._work_tree = Path(self.git_cmd.must_git("rev-parse --show-toplevel").strip())
        return self._work_tree

    def _path(self, path: str) -> Path:
        return self.work_tree / path

    def is_operation_actually_active(self, operation: GitState) -> bool:
        """Confirm an operation marker with a second, independent check."""
        git_dir = self.git_dir
        if operation == GitState.REBASING:
            if (git_dir / "rebase-merge").is_dir() or (git_dir / "rebase-apply").is_dir():
                return True
            try:
                self.git_cmd.run_cmd("rebase --show-current-patch")
                return True
            except GitError:
                return False
        if operation == GitState.MERGING:
            return (git_dir / "MERGE_HEAD").exists() and (git_dir / "MERGE_MSG").exists()
        if operation == GitState.CHERRY_PICKING:
            if (git_dir / "sequencer").is_dir():
                return True
            try:
                self.git_cmd.run_cmd("rev-parse --verify --quiet CHERRY_PICK_HEAD")
                return True
            except GitError:
                return False
        return False

    def _cleanup_stale(self, operation: GitState) -> None:
        marker, extras = MARKERS[operation]
        for name in (marker, *extras):
            path = self.git_dir / name
            if path.exists():
                logger.warning(f"Removing stale {name} left by an interrupted git command")
                os.remove(path)

    def current_operation(self) -> Optional[GitState]:
        """The in-progress rebase, merge or cherry-pick, if any."""
        git_dir = self.git_dir
        for operation, (marker, _) in MARKERS.items():
            present = (git_dir / marker).exists()
            if operation == GitState.REBASING:
                present = present or (git_dir / "rebase-merge").is_dir() \
                    or (git_dir / "rebase-apply").is_dir()
            if not present:
                continue
            if self.is_operation_actually_active(operation):
                return operation
            self._cleanup_stale(operation)
        return None

    def _status_conflicts(self) -> List[ConflictFile]:
        return parse_conflicts(self.git_cmd.must_git("status --porcelain=v1 -z"))

    def get_state(self) -> GitState:
        """Current state. Unmerged paths win over the operation that caused them."""
        if self._status_conflicts():
            return GitState.CONFLICTED
        return self.current_operation() or GitState.CLEAN

    def detect_conflicts(self) -> Optional[ConflictInfo]:
        """Conflicted paths, None when there are none."""
        files = self._status_conflicts()
        if not files:
            return None
        return ConflictInfo(files=files, operation=self.current_operation())

    def log_conflict_summary(self, info: ConflictInfo) -> None:
        what = info.operation.value if info.operation else "an unknown operation"
        logger.warning(f"Found {len(info.files)} conflicted file(s) while {what}:")
        for conflict in info.files:
            logger.warning(f"  {conflict.path} ({conflict.status.value})")

    def auto_resolve(self, info: ConflictInfo) -> bool:
        """Resolve and stage all conflicts without asking, or touch nothing.

        Only both-modified text files are candidates.
        """
        strategy = self.config.conflict.auto_resolve_strategy
        if strategy == AutoResolveStrategy.NEVER:
            return False
        resolved: Dict[str, str] = {}
        for conflict in info.files:
            if conflict.status != ConflictStatus.BOTH_MODIFIED:
                return False
            try:
                with open(self._path(conflict.path), "r", encoding="utf-8", newline="") as f:
                    text = f.read()
            except (OSError, UnicodeDecodeError):
                return False
            new_text = auto_resolve_text(text, strategy)
            if new_text is None:
                logger.debug(f"Cannot auto-resolve {conflict.path}")
                return False
            resolved[conflict.path] = new_text
        for path, text in resolved.items():
            with open(self._path(path), "w", encoding="utf-8", newline="") as f:
                f.write(text)
            logger.info(f"Auto-resolved conflicts in {path}")
        self.stage(info.paths)
        return True

    def unresolved(self, info: ConflictInfo) -> ConflictInfo:
        """The subset of `info` whose files still contain conflict markers."""
        remaining: List[ConflictFile] = []
        for conflict in info.files:
            try:
                with open(self._path(conflict.path), "r", encoding="utf-8", errors="replace") as f:
                    if has_conflict_markers(f.read()):
                        remaining.append(conflict)
            except FileNotFoundError:
                continue
        return ConflictInfo(files=remaining, operation=info.operation)

    def stage(self, paths: List[str]) -> None:
        """Stage exactly these paths, deletions included."""
        if paths:
            self.git_cmd.must_git(["add", "-A", "--", *paths])

    def continue_operation(self) -> Optional[ConflictInfo]:
        """Run the continuation command for the current operation.

        Returns the next set of conflicts if the operation stopped again.
        """
        operation = self.current_operation()
        if operation is None:
            logger.warning("No operation to continue")
            return None
        try:
            self.git_cmd.must_git(CONTINUE_COMMANDS[operation])
        except GitError:
            info = self.detect_conflicts()
            if info is None:
                raise
            return info
        logger.info(f"Finished {operation.value}")
        return None

    def abort_current_operation(self) -> None:
        operation = self.current_operation()
        if operation is None:
            logger.warning("No operation to abort")
            return
        self.git_cmd.must_git(ABORT_COMMANDS[operation])
        logger.info(f"Aborted {operation.value}")

    def resolve_interactively(self, info: ConflictInfo) -> Optional[ConflictInfo]:
        """Walk the user through editing the conflicted files.

        On success the original conflicted paths are staged and the operation
        is continued. Returns the next conflicts if it stopped again.
        """
        if not self.prompter.interactive:
            raise InvalidStateError(
                f"Conflicts in {', '.join(info.paths)} need manual resolution",
                hint="Resolve the conflicts, run `train resolve continue`, then re-run the command")
        self.log_conflict_summary(info)
        edit, abort = "Open conflicted files in the editor", "Abort the operation"
        choice = self.prompter.choose("How do you want to proceed?", [edit, abort], default=edit)
        pending = info
        while True:
            if choice == abort:
                self.abort_current_operation()
                raise InvalidStateError("Operation aborted by user with conflicts unresolved",
                                        hint="Re-run the command when you are ready to resolve them")
            editor = self.config.editor.command_line()
            for conflict in pending.files:
                if self._path(conflict.path).exists():
                    logger.info(f"Opening {conflict.path} in {editor}")
                    self.prompter.edit_file(str(self._path(conflict.path)), editor)
            if not self.prompter.confirm("Have you resolved all conflicts?", default=True):
                choice = self.prompter.choose("What next?", [edit, abort], default=edit)
                continue
            pending = self.unresolved(info)
            if not pending.files:
                break
            self.log_conflict_summary(pending)
            choice = self.prompter.choose("Conflicts remain. What next?", [edit, abort], default=edit)
        self.stage(info.paths)
        return self.continue_operation()

    def resolve(self, info: ConflictInfo) -> None:
        """Drive conflicts to completion of the suspended operation.

        Tries the auto-resolution hook first, then the interactive protocol
        unless the strategy forbids it. Raises InvalidStateError when the
        conflicts cannot be resolved.
        """
        pending: Optional[ConflictInfo] = info
        while pending is not None:
            if self.auto_resolve(pending):
                pending = self.continue_operation()
                continue
            if self.config.conflict.auto_resolve_strategy == AutoResolveStrategy.NEVER:
                self.log_conflict_summary(pending)
                raise InvalidStateError(
                    f"Conflicts in {', '.join(pending.paths)} and auto-resolution is disabled",
                    hint="Resolve the conflicts manually, run `train resolve continue`, then re-run sync")
            pending = self.resolve_interactively(pending)
