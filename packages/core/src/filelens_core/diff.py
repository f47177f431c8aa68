"""Line-level change detection between two revisions of a file.

The diff is positional: line ``i`` of the old text is compared with line
``i`` of the new text, with no LCS alignment. An insertion in the middle of
a file therefore reports every following line as modified. That overstates
the changed set but keeps the comparison single-pass, and the incremental
prompt is built around exactly this output shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field

ADD = "add"
MODIFY = "modify"
DELETE = "delete"


@dataclass(frozen=True)
class DiffChange:
    type: str  # "add" | "modify" | "delete"
    line_number: int  # 1-based
    old_line: str | None = None
    new_line: str | None = None
    context_before: tuple[str, ...] = ()
    context_after: tuple[str, ...] = ()


@dataclass(frozen=True)
class DiffResult:
    changes: tuple[DiffChange, ...] = field(default_factory=tuple)
    added_lines: tuple[int, ...] = ()
    modified_lines: tuple[int, ...] = ()
    deleted_lines: tuple[int, ...] = ()

    @property
    def total_changes(self) -> int:
        return len(self.changes)

    @property
    def has_changes(self) -> bool:
        return self.total_changes > 0


def _context(lines: list[str], index: int, size: int) -> tuple[tuple[str, ...], tuple[str, ...]]:
    before = lines[max(0, index - size) : index]
    after = lines[index + 1 : min(len(lines), index + size + 1)]
    return tuple(before), tuple(after)


def compute_diff(old_text: str, new_text: str, context_size: int = 3) -> DiffResult:
    """Compare two texts position by position and classify every differing line."""
    old_lines = old_text.split("\n")
    new_lines = new_text.split("\n")

    changes: list[DiffChange] = []
    added: list[int] = []
    modified: list[int] = []
    deleted: list[int] = []

    for i in range(max(len(old_lines), len(new_lines))):
        old_line = old_lines[i] if i < len(old_lines) else None
        new_line = new_lines[i] if i < len(new_lines) else None
        line_number = i + 1

        if old_line is None:
            before, after = _context(new_lines, i, context_size)
            added.append(line_number)
            changes.append(DiffChange(ADD, line_number, new_line=new_line, context_before=before, context_after=after))
        elif new_line is None:
            # Deleted lines only exist on the old side, so context comes from there.
            before, after = _context(old_lines, i, context_size)
            deleted.append(line_number)
            changes.append(
                DiffChange(DELETE, line_number, old_line=old_line, context_before=before, context_after=after)
            )
        elif old_line != new_line:
            before, after = _context(new_lines, i, context_size)
            modified.append(line_number)
            changes.append(
                DiffChange(
                    MODIFY,
                    line_number,
                    old_line=old_line,
                    new_line=new_line,
                    context_before=before,
                    context_after=after,
                )
            )

    return DiffResult(
        changes=tuple(changes),
        added_lines=tuple(added),
        modified_lines=tuple(modified),
        deleted_lines=tuple(deleted),
    )


def build_snippet(new_text: str, diff: DiffResult, context_size: int = 5) -> str:
    """Render only the changed neighbourhoods of ``new_text``, annotated with line numbers.

    Changed lines are prefixed with ``+``, context lines with a blank, and
    gaps between non-adjacent neighbourhoods become a ``...`` line. Deleted
    lines have no position in the new text and are not targeted.
    """
    lines = new_text.split("\n")
    changed = set(diff.added_lines) | set(diff.modified_lines)

    wanted: set[int] = set()
    for line_number in changed:
        start = max(1, line_number - context_size)
        end = min(len(lines), line_number + context_size)
        wanted.update(range(start, end + 1))

    out: list[str] = []
    previous: int | None = None
    for line_number in sorted(wanted):
        if previous is not None and line_number - previous > 1:
            out.append("...")
        prefix = "+ " if line_number in changed else "  "
        out.append(f"{prefix}{line_number}: {lines[line_number - 1]}")
        previous = line_number

    return "\n".join(out)


def _levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Percentage similarity of two strings based on edit distance (100.0 = identical)."""
    longer = a if len(a) > len(b) else b
    if not longer:
        return 100.0
    return (len(longer) - _levenshtein(a, b)) / len(longer) * 100
