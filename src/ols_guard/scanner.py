"""Depth-tracking block scanner.

The scanner walks the document once and yields ``BlockRange`` values for
top-level blocks selected by a pattern.  Two selection modes exist:

* ``HeaderPattern`` picks blocks by their own header line
  (``tuning {``, ``errorlog logs/error.log {``).
* ``AttributePredicate`` picks blocks of a keyword whose body contains a
  matching attribute line (``listener ... { ... secure 1 ... }``).

Only net brace deltas per line are tracked; there is no parse tree.  A
header whose opening brace sits on a following line is treated the same
as one with the brace inline.  A header that is never followed by a
brace is dropped and scanning continues at top level.

The freeze boundary lookup (``first_boundary_line``) is intentionally a
separate, plain line match.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, Optional, Pattern, Union

from .document import ConfigDocument, brace_delta


@dataclass(frozen=True)
class BlockRange:
    """1-based inclusive line range of one block."""

    start: int
    end: int
    header: str = ""

    def __contains__(self, line_number: int) -> bool:
        return self.start <= line_number <= self.end

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class HeaderPattern:
    """Select blocks whose header is ``<keyword> [token] {``.

    *token* is compared literally.  Without a token any single identifying
    word after the keyword is accepted.
    """

    keyword: str
    token: Optional[str] = None
    _regex: Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.token is None:
            rest = r"(?:\s+[^\s{]+)?"
        else:
            rest = r"\s+" + re.escape(self.token)
        regex = re.compile(r"^\s*" + re.escape(self.keyword) + rest + r"\s*(?:\{.*)?$")
        object.__setattr__(self, "_regex", regex)

    def header_matches(self, line: str) -> bool:
        return bool(self._regex.match(line.rstrip("\r\n")))

    def attribute_matches(self, line: str) -> bool:
        return True

    @property
    def requires_attribute(self) -> bool:
        return False

    def describe(self) -> str:
        return self.keyword if self.token is None else f"{self.keyword} {self.token}"


@dataclass(frozen=True)
class AttributePredicate:
    """Select ``keyword`` blocks containing a line matching *attribute*.

    *attribute* is a regular expression searched on each body line, e.g.
    ``r"(^|\\s)secure\\s+1(\\s|$)"``.
    """

    keyword: str
    attribute: str
    _header: Pattern[str] = field(init=False, repr=False, compare=False)
    _attribute: Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        header = re.compile(r"^\s*" + re.escape(self.keyword) + r"(?:\s|\{|$)")
        object.__setattr__(self, "_header", header)
        object.__setattr__(self, "_attribute", re.compile(self.attribute))

    def header_matches(self, line: str) -> bool:
        return bool(self._header.match(line.rstrip("\r\n")))

    def attribute_matches(self, line: str) -> bool:
        return bool(self._attribute.search(line.rstrip("\r\n")))

    @property
    def requires_attribute(self) -> bool:
        return True

    def describe(self) -> str:
        return f"{self.keyword}[{self.attribute}]"


BlockPattern = Union[HeaderPattern, AttributePredicate]

SECURE_LISTENER = AttributePredicate("listener", r"(^|\s)secure\s+1(\s|$)")


class _ScanState(Enum):
    TOP = "top"
    PENDING = "pending"
    CAPTURING = "capturing"


def scan_blocks(document: ConfigDocument, pattern: BlockPattern) -> Iterator[BlockRange]:
    """Yield top-level ranges selected by *pattern*, in document order."""
    state = _ScanState.TOP
    outer = 0
    depth = 0
    start = 0
    header = ""
    matched = False

    for number, line in enumerate(document.lines, start=1):
        delta = brace_delta(line)

        if state is _ScanState.PENDING:
            stripped = line.strip()
            if not stripped:
                continue
            if stripped.startswith("{"):
                state = _ScanState.CAPTURING
                depth = delta
                matched = False
                if depth <= 0:
                    state = _ScanState.TOP
                    if not pattern.requires_attribute:
                        yield BlockRange(start, number, header)
                continue
            # Header never opened: not a block.
            state = _ScanState.TOP

        if state is _ScanState.CAPTURING:
            if pattern.requires_attribute and not matched and pattern.attribute_matches(line):
                matched = True
            depth += delta
            if depth <= 0:
                state = _ScanState.TOP
                if matched or not pattern.requires_attribute:
                    yield BlockRange(start, number, header)
            continue

        if outer == 0 and delta >= 0 and pattern.header_matches(line):
            start = number
            header = line.strip()
            matched = False
            if "{" in line:
                depth = delta
                if depth <= 0:
                    if not pattern.requires_attribute:
                        yield BlockRange(start, number, header)
                    continue
                state = _ScanState.CAPTURING
            else:
                state = _ScanState.PENDING
            continue

        outer = max(0, outer + delta)


def first_block(document: ConfigDocument, pattern: BlockPattern) -> Optional[BlockRange]:
    return next(scan_blocks(document, pattern), None)


def top_level_line_numbers(document: ConfigDocument) -> Iterator[int]:
    """Line numbers that sit outside every block."""
    depth = 0
    for number, line in enumerate(document.lines, start=1):
        delta = brace_delta(line)
        if depth == 0 and "{" not in line and "}" not in line:
            yield number
        depth = max(0, depth + delta)


def first_boundary_line(document: ConfigDocument, keyword: str) -> Optional[int]:
    """First line opening a ``keyword [token]`` block, anywhere in the file.

    The ``{`` may sit on the header line or start the next non-blank line;
    the header line number is returned either way.
    """
    head = r"^\s*" + re.escape(keyword) + r"(?:\s+[^\s{]+)?\s*"
    opener = re.compile(head + r"\{")
    bare = re.compile(head + r"$")
    pending: Optional[int] = None
    for number, line in enumerate(document.lines, start=1):
        if pending is not None:
            if not line.strip():
                continue
            if line.lstrip().startswith("{"):
                return pending
            pending = None
        if opener.match(line):
            return number
        if bare.match(line):
            pending = number
    return None
