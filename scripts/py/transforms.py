from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Iterator


FENCE_MARKER = "```"

HEADING_RE = re.compile(r"^(#{1,6})\s+(.*)$")
HEADING_START_RE = re.compile(r"^#{1,6}\s")
ORDERED_ITEM_RE = re.compile(r"^\d+\. ")
LIST_ITEM_RE = re.compile(r"^(?:[-*]|\d+\.)\s")

Transform = Callable[[str], str]


@dataclass(frozen=True)
class ScannedLine:
    text: str
    in_fence: bool
    opens_fence: bool
    closes_fence: bool
    next: str

    @property
    def stripped(self) -> str:
        return self.text.strip()

    @property
    def next_stripped(self) -> str:
        return self.next.strip()

    @property
    def is_fence_marker(self) -> bool:
        return self.opens_fence or self.closes_fence

    @property
    def protected(self) -> bool:
        return self.in_fence or self.is_fence_marker


def scan_lines(lines: list[str]) -> Iterator[ScannedLine]:
    """Yield each line with the line after it and its fence state.

    ``in_fence`` is true only for lines strictly between an opening and a
    closing marker; the markers themselves report ``opens_fence`` or
    ``closes_fence``. An unclosed fence runs to the end of the text.
    """
    in_fence = False
    last = len(lines) - 1
    for idx, line in enumerate(lines):
        marker = line.strip().startswith(FENCE_MARKER)
        yield ScannedLine(
            text=line,
            in_fence=in_fence and not marker,
            opens_fence=marker and not in_fence,
            closes_fence=marker and in_fence,
            next=lines[idx + 1] if idx < last else "",
        )
        if marker:
            in_fence = not in_fence


def compose(*fns: Transform) -> Transform:
    """Left-to-right pipeline: ``compose(f, g)(x) == g(f(x))``."""

    def run(value: str) -> str:
        for fn in fns:
            value = fn(value)
        return value

    return run


def shift_heading_levels(text: str) -> str:
    out: list[str] = []
    for row in scan_lines(text.split("\n")):
        match = None if row.protected else HEADING_RE.match(row.stripped)
        if not match:
            out.append(row.text)
            continue
        level = min(len(match.group(1)) + 1, 6)
        out.append("#" * level + " " + match.group(2))
    return "\n".join(out)


def _is_structural_line(line: str) -> bool:
    return (
        line.startswith("#")
        or line.startswith("- ")
        or line.startswith("* ")
        or bool(ORDERED_ITEM_RE.match(line))
        or "|" in line
        or line.strip().startswith("<!--")
        or line.startswith("   ")
        or line.startswith("\t")
    )


def _is_structural_next(stripped: str) -> bool:
    return (
        stripped.startswith("#")
        or stripped.startswith("- ")
        or stripped.startswith("* ")
        or bool(ORDERED_ITEM_RE.match(stripped))
        or "|" in stripped
        or stripped.startswith("<!--")
        or stripped.startswith(FENCE_MARKER)
    )


def force_line_breaks(text: str) -> str:
    """Append a markdown hard break between two consecutive prose lines."""
    out: list[str] = []
    for row in scan_lines(text.split("\n")):
        line = row.text
        if (
            row.protected
            or not row.stripped
            or _is_structural_line(line)
            or not row.next_stripped
            or _is_structural_next(row.next_stripped)
            or line.endswith("  ")
        ):
            out.append(line)
            continue
        out.append(line + "  ")
    return "\n".join(out)


def remove_trailing_spaces(text: str) -> str:
    out: list[str] = []
    for row in scan_lines(text.split("\n")):
        line = row.text
        if row.protected or not line.endswith(" "):
            out.append(line)
        elif not line.endswith("  "):
            out.append(line.rstrip())
        elif not row.next_stripped:
            out.append(line.rstrip())
        else:
            # hard break inside a paragraph
            out.append(line)
    return "\n".join(out)


def _kept_blank_lines(run: int, at_start: bool, at_end: bool) -> int:
    # A run of n empty lines spans n+1 newlines between two text lines and
    # one fewer per text edge it touches; 3+ newlines collapse to 2.
    edges = int(at_start) + int(at_end)
    newlines = run + 1 - edges
    if newlines < 3:
        return run
    return 1 + edges


def compact_blank_lines(text: str) -> str:
    """Collapse every run of three or more newlines to exactly two."""
    rows = list(scan_lines(text.split("\n")))
    out: list[str] = []
    idx = 0
    while idx < len(rows):
        row = rows[idx]
        if row.text != "" or row.in_fence:
            out.append(row.text)
            idx += 1
            continue

        end = idx
        while end < len(rows) and rows[end].text == "" and not rows[end].in_fence:
            end += 1
        kept = _kept_blank_lines(end - idx, at_start=idx == 0, at_end=end == len(rows))
        out.extend([""] * kept)
        idx = end
    return "\n".join(out)


def _is_list_item(stripped: str) -> bool:
    return bool(LIST_ITEM_RE.match(stripped))


def ensure_markdown_spacing(text: str) -> str:
    """Separate headings, list starts and opening fences from the text above.

    Headings also get a blank line after them. The previous line exempts the
    insertion when it is blank, a frontmatter delimiter, an HTML comment or a
    fence marker.
    """
    out: list[str] = []
    for row in scan_lines(text.split("\n")):
        if row.in_fence or row.closes_fence:
            out.append(row.text)
            continue

        stripped = row.stripped
        prev = out[-1].strip() if out else ""
        is_heading = not row.opens_fence and bool(HEADING_START_RE.match(stripped))
        is_list_start = _is_list_item(stripped) and not _is_list_item(prev) and prev != ""

        if (
            (is_heading or is_list_start or row.opens_fence)
            and prev != ""
            and not prev.startswith("---")
            and not prev.startswith("<!--")
            and not prev.startswith(FENCE_MARKER)
        ):
            out.append("")

        out.append(row.text)

        if is_heading and row.next_stripped != "":
            out.append("")
    return "\n".join(out)
