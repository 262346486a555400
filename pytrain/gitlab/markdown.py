"""Stack overview table embedded in merge request descriptions."""

from typing import Dict, Optional

from ..stack.models import Stack, hierarchy_order
from .types import MergeRequest

STACK_TABLE_START = "<!-- git-train-stack-start -->"
STACK_TABLE_END = "<!-- git-train-stack-end -->"

def build_stack_table(stack: Stack, merge_requests: Dict[int, MergeRequest]) -> str:
    """Markdown table of every stack branch, depth first, with MR links."""
    lines = [
        STACK_TABLE_START,
        "",
        "### MR Train",
        "",
        "| Position | Branch | Merge Request |",
        "|---|---|---|",
    ]
    order = hierarchy_order(stack)
    for position, name in enumerate(order, start=1):
        branch = stack.branches[name]
        if branch.mr_id is None:
            link = "N/A"
        elif branch.mr_id in merge_requests:
            mr = merge_requests[branch.mr_id]
            # Trailing '+' renders as a rich link in GitLab
            link = f"[{mr.title}]({mr.web_url}+)"
        else:
            link = "N/A (MR not found)"
        lines.append(f"| #{position} | `{name}` | {link} |")
    if not order:
        lines.append("| | | |")
    lines += ["", "---", f"*Stack `{stack.name}` managed by git-train*", "", STACK_TABLE_END]
    return "\n".join(lines)

def update_description(current: Optional[str], table: str) -> str:
    """Replace the table between the markers, or append it."""
    text = (current or "").strip()
    start = text.find(STACK_TABLE_START)
    end = text.find(STACK_TABLE_END)
    if start != -1 and end != -1 and end > start:
        return (text[:start] + table + text[end + len(STACK_TABLE_END):]).strip()
    if not text:
        return table
    return f"{text}\n\n{table}"
