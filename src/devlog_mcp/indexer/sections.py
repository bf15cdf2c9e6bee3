"""Heading-based section editing for document bodies."""

import re
from dataclasses import dataclass

from devlog_mcp.errors import AmbiguousAnchorError, AnchorNotFoundError

HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)\s*$")
FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")

# Level used when a new section heading is given without '#' markers
DEFAULT_SECTION_LEVEL = 2


@dataclass
class Heading:
    """A heading line in a document body."""

    index: int  # 0-based line index within the body
    level: int
    text: str  # Heading text without '#' markers
    raw: str  # Full heading line, stripped


def find_headings(body: str) -> list[Heading]:
    """Find all markdown headings outside fenced code blocks."""
    headings: list[Heading] = []
    in_fence = False

    for index, line in enumerate(body.split("\n")):
        if FENCE_PATTERN.match(line):
            in_fence = not in_fence
            continue
        if in_fence:
            continue

        match = HEADING_PATTERN.match(line)
        if match:
            headings.append(
                Heading(
                    index=index,
                    level=len(match.group(1)),
                    text=match.group(2).strip(),
                    raw=line.strip(),
                )
            )

    return headings


def match_anchor(headings: list[Heading], anchor: str) -> list[Heading]:
    """
    Return the headings that exactly match an anchor.

    An anchor written with '#' markers ("## Changes") must match the whole
    heading line; a bare anchor ("Changes") matches the heading text at any level.
    """
    wanted = anchor.strip()
    if wanted.startswith("#"):
        return [h for h in headings if h.raw == wanted]
    return [h for h in headings if h.text == wanted]


def locate_anchor(body: str, anchor: str, line_offset: int = 0) -> Heading:
    """
    Find the single heading matching an anchor.

    Args:
        body: Document body
        anchor: Heading text, with or without '#' markers
        line_offset: Lines preceding the body, added to reported line numbers

    Raises:
        AnchorNotFoundError: If nothing matches
        AmbiguousAnchorError: If more than one heading matches
    """
    matches = match_anchor(find_headings(body), anchor)
    if not matches:
        raise AnchorNotFoundError(anchor)
    if len(matches) > 1:
        raise AmbiguousAnchorError(anchor, [h.index + 1 + line_offset for h in matches])
    return matches[0]


def section_end(body: str, heading: Heading) -> int:
    """Line index where the heading's section ends (next heading of same or higher level)."""
    lines = body.split("\n")
    for other in find_headings(body):
        if other.index > heading.index and other.level <= heading.level:
            return other.index
    return len(lines)


def format_heading(heading: str) -> str:
    """Normalize a section heading, adding '## ' if no markers are given."""
    heading = heading.strip()
    if heading.startswith("#"):
        return heading
    return f"{'#' * DEFAULT_SECTION_LEVEL} {heading}"


def _section_lines(heading: str, content: str) -> list[str]:
    lines = [format_heading(heading)]
    content = content.strip("\n")
    if content:
        lines.extend(content.split("\n"))
    return lines


def _trim_trailing_blank(lines: list[str]) -> list[str]:
    while lines and not lines[-1].strip():
        lines.pop()
    return lines


def insert_section(
    body: str,
    heading: str,
    content: str,
    after: str | None = None,
    before: str | None = None,
    line_offset: int = 0,
) -> str:
    """
    Insert a new titled section into a body.

    With `after`, the section goes right after the anchored section ends.
    With `before`, it goes immediately before the anchor heading.
    With neither, it is appended at the end of the body.

    Raises:
        ValueError: If both `after` and `before` are given
        AnchorNotFoundError / AmbiguousAnchorError: On anchor problems
    """
    if after and before:
        raise ValueError("Use either 'after' or 'before', not both")

    new_lines = _section_lines(heading, content)

    if not after and not before:
        if not body.strip():
            return "\n".join(new_lines) + "\n"
        return body.rstrip("\n") + "\n\n" + "\n".join(new_lines) + "\n"

    lines = body.split("\n")

    if after:
        anchor = locate_anchor(body, after, line_offset)
        position = section_end(body, anchor)
        head = _trim_trailing_blank(lines[:position])
        tail = lines[position:]
        if not tail:
            return "\n".join(head + [""] + new_lines) + "\n"
        return "\n".join(head + [""] + new_lines + [""] + tail)

    anchor = locate_anchor(body, before, line_offset)
    head = lines[: anchor.index]
    tail = lines[anchor.index :]
    if head and head[-1].strip():
        head.append("")
    return "\n".join(head + new_lines + [""] + tail)


def append_to_section(body: str, heading: str, content: str, line_offset: int = 0) -> str:
    """
    Append content to the end of an existing section.

    Creates the section at the end of the body when it does not exist yet.

    Raises:
        AmbiguousAnchorError: If the heading matches more than one section
    """
    matches = match_anchor(find_headings(body), heading)
    if not matches:
        return insert_section(body, heading, content)
    if len(matches) > 1:
        raise AmbiguousAnchorError(heading, [h.index + 1 + line_offset for h in matches])

    lines = body.split("\n")
    position = section_end(body, matches[0])
    head = _trim_trailing_blank(lines[:position])
    tail = lines[position:]
    addition = content.strip("\n").split("\n")
    if not tail:
        return "\n".join(head + addition) + "\n"
    return "\n".join(head + addition + [""] + tail)
