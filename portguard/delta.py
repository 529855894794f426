# portguard - Side-by-side comparison of baseline and current port lists
from __future__ import annotations

import difflib

from portguard.models import (
    CHANGE_MARKERS,
    MARKER_ADDED,
    MARKER_CHANGED,
    MARKER_COMMON,
    MARKER_REMOVED,
    Delta,
    DeltaLine,
)

DEFAULT_WIDTH = 40
MIN_WIDTH = 15


def column_width(width: int) -> int:
    return (width - 3) // 2


def _render(line: DeltaLine, col: int) -> str:
    left = line.left[:col]
    if line.marker == MARKER_REMOVED:
        return f"{left:<{col}} {line.marker}".rstrip()
    return f"{left:<{col}} {line.marker} {line.right}".rstrip()


def side_by_side(
    left: list[str],
    right: list[str],
    width: int = DEFAULT_WIDTH,
    header: tuple[str, str] | None = None,
) -> Delta:
    """Compare two line lists the way ``diff -y --width=N`` lays them out.

    Lines only in ``left`` are marked ``<``, lines only in ``right`` ``>``,
    paired replacements ``|``. The optional header row is always rendered as
    a common line so differing record tags never count as a change.
    """
    if width < MIN_WIDTH:
        raise ValueError(f"delta width must be at least {MIN_WIDTH}")
    out: list[DeltaLine] = []
    if header:
        out.append(DeltaLine(header[0], MARKER_COMMON, header[1]))
    matcher = difflib.SequenceMatcher(None, left, right, autojunk=False)
    for op, i1, i2, j1, j2 in matcher.get_opcodes():
        if op == "equal":
            out.extend(DeltaLine(a, MARKER_COMMON, a) for a in left[i1:i2])
        elif op == "delete":
            out.extend(DeltaLine(a, MARKER_REMOVED, "") for a in left[i1:i2])
        elif op == "insert":
            out.extend(DeltaLine("", MARKER_ADDED, b) for b in right[j1:j2])
        else:
            olds, news = left[i1:i2], right[j1:j2]
            paired = min(len(olds), len(news))
            out.extend(DeltaLine(a, MARKER_CHANGED, b) for a, b in zip(olds[:paired], news[:paired]))
            out.extend(DeltaLine(a, MARKER_REMOVED, "") for a in olds[paired:])
            out.extend(DeltaLine("", MARKER_ADDED, b) for b in news[paired:])
    col = column_width(width)
    text = "".join(_render(line, col) + "\n" for line in out)
    return Delta(lines=out, width=width, text=text)


def parse_delta(text: str, width: int = DEFAULT_WIDTH) -> Delta:
    """Rebuild a Delta from its persisted text by reading the marker column."""
    col = column_width(width)
    lines: list[DeltaLine] = []
    for raw in text.splitlines():
        if not raw.strip():
            continue
        marker = raw[col + 1] if len(raw) > col + 1 else MARKER_COMMON
        if marker not in CHANGE_MARKERS:
            marker = MARKER_COMMON
        left = raw[:col].strip()
        right = raw[col + 3:].strip() if len(raw) > col + 3 else ""
        if marker == MARKER_COMMON and not right and left:
            right = left
        lines.append(DeltaLine(left, marker, right))
    return Delta(lines=lines, width=width, text=text)


def has_change_markers(text: str, width: int = DEFAULT_WIDTH) -> bool:
    return parse_delta(text, width).has_changes
