from datetime import datetime, timezone
from typing import Callable, Optional

MAX_BACKUP_SUFFIX = 100


def utc_now() -> datetime:
    """Current time, timezone aware."""
    return datetime.now(timezone.utc)


def sanitize_branch_name(name: str) -> str:
    """Make a user supplied label safe for file names and branch names.

    Letters, digits, '-' and '_' are kept, spaces become '-', anything else
    becomes '_'. Leading and trailing '-' are stripped and the result is
    lower-cased.
    """
    out = []
    for ch in name:
        if ch.isascii() and (ch.isalnum() or ch in "-_"):
            out.append(ch)
        elif ch == " ":
            out.append("-")
        else:
            out.append("_")
    return "".join(out).strip("-").lower()


def create_backup_name(prefix: str, exists: Callable[[str], bool],
                       now: Optional[datetime] = None) -> str:
    """Return `<prefix>_backup_<timestamp>` not yet taken according to `exists`.

    A numeric suffix is appended when the plain name is taken.
    """
    stamp = (now or datetime.now()).strftime("%Y-%m-%d_%H-%M-%S")
    base = f"{prefix}_backup_{stamp}"
    if not exists(base):
        return base
    for n in range(1, MAX_BACKUP_SUFFIX + 1):
        candidate = f"{base}_{n}"
        if not exists(candidate):
            return candidate
    raise RuntimeError(f"Could not find a free backup name for {prefix}")


def short_id(stack_id: str, length: int = 8) -> str:
    """Abbreviated stack id for display."""
    return stack_id[:length]
