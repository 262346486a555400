"""On-disk storage of stack documents.

Layout inside `<git-dir>/train/`:
    <stack-id>.json   one pretty-printed Stack document per stack
    current.json      the id of the active stack, as plain text

There is no file locking; one interactive user per repository is assumed.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError

from ..errors import PersistenceError, StackError, StackNotFoundError
from .models import Stack

logger = logging.getLogger(__name__)

CURRENT_FILE = "current.json"

class StackRepository:
    """Reads and writes stack documents for one repository."""

    def __init__(self, train_dir: Path):
        self.train_dir = Path(train_dir)

    def _ensure_dir(self) -> None:
        try:
            self.train_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create {self.train_dir}: {e}") from e

    def _stack_file(self, stack_id: str) -> Path:
        return self.train_dir / f"{stack_id}.json"

    def _write(self, path: Path, text: str) -> None:
        """Write via a temp file and rename so readers never see half a document."""
        self._ensure_dir()
        tmp: Optional[str] = None
        try:
            fd, tmp = tempfile.mkstemp(dir=self.train_dir, prefix=f".{path.name}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
            os.replace(tmp, path)
        except OSError as e:
            if tmp is not None and os.path.exists(tmp):
                os.unlink(tmp)
            raise PersistenceError(f"Failed to write {path}: {e}") from e

    def _read(self, path: Path) -> Stack:
        """Load and check one document; a broken parent graph counts as malformed."""
        try:
            stack = Stack.model_validate_json(path.read_text(encoding="utf-8"))
            stack.validate_forest()
            return stack
        except OSError as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e
        except (ValidationError, StackError) as e:
            raise PersistenceError(f"Malformed stack document {path}: {e}",
                                   hint=f"Fix or remove {path}") from e

    def save(self, stack: Stack) -> None:
        """Write the stack and make it the current one."""
        path = self._stack_file(stack.id)
        self._write(path, stack.model_dump_json(indent=2))
        self.set_current(stack)
        logger.debug(f"Saved stack state to {path}")

    def current_id(self) -> Optional[str]:
        try:
            value = (self.train_dir / CURRENT_FILE).read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Failed to read current stack pointer: {e}") from e
        return value or None

    def load_current(self) -> Stack:
        stack_id = self.current_id()
        if stack_id is None:
            raise StackNotFoundError(
                "No current stack found",
                hint="Use `train list` to see available stacks and `train switch` to activate one")
        path = self._stack_file(stack_id)
        if not path.exists():
            raise StackNotFoundError(
                f"Stack file not found for current stack id '{stack_id}'",
                hint="It may have been deleted. Use `train list` and `train switch`")
        return self._read(path)

    def list(self) -> List[Stack]:
        """All stored stacks ordered by name. Unreadable documents are skipped with a warning."""
        if not self.train_dir.is_dir():
            return []
        stacks: List[Stack] = []
        for path in sorted(self.train_dir.glob("*.json")):
            if path.name == CURRENT_FILE:
                continue
            try:
                stacks.append(self._read(path))
            except PersistenceError as e:
                logger.warning(f"Skipping {path.name}: {e}")
        stacks.sort(key=lambda s: s.name)
        return stacks

    def find_by_identifier(self, identifier: str) -> Stack:
        """Match by exact name, else by unique id prefix."""
        stacks = self.list()
        for stack in stacks:
            if stack.name == identifier:
                return stack
        matches = [s for s in stacks if identifier and s.id.startswith(identifier)]
        if len(matches) == 1:
            return matches[0]
        if len(matches) > 1:
            raise StackNotFoundError(f"Stack id prefix '{identifier}' is ambiguous",
                                     hint="Use a longer prefix or the stack name")
        raise StackNotFoundError(f"Stack '{identifier}' not found",
                                 hint="Use `train list` to see available stacks")

    def set_current(self, stack: Stack) -> None:
        self._write(self.train_dir / CURRENT_FILE, stack.id)

    def delete(self, stack: Stack) -> None:
        """Remove the document and clear the pointer if it pointed here."""
        path = self._stack_file(stack.id)
        try:
            if path.exists():
                path.unlink()
            if self.current_id() == stack.id:
                (self.train_dir / CURRENT_FILE).unlink()
        except OSError as e:
            raise PersistenceError(f"Failed to delete stack '{stack.name}': {e}") from e
