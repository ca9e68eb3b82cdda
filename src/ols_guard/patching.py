"""Idempotent edit primitives over ``ConfigDocument``.

Each primitive returns a ``PatchResult`` holding the new document and a
record per changed directive.  Lines that are not targeted keep their
exact bytes.  An empty value or a missing target block is a skip, not an
error; the reason is carried on the result and logged.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

from .document import ConfigDocument, line_key
from .errors import PatchSkipped
from .scanner import AttributePredicate, BlockRange, HeaderPattern, first_block, scan_blocks, top_level_line_numbers

logger = logging.getLogger(__name__)

KEY_WIDTH = 20
BLOCK_INDENT = "  "


@dataclass(frozen=True)
class ChangeRecord:
    label: str
    value: str
    lines: Tuple[int, ...] = ()

    def __str__(self) -> str:
        return f"{self.label} => {self.value}"


@dataclass(frozen=True)
class PatchResult:
    document: ConfigDocument
    changes: Tuple[ChangeRecord, ...] = ()
    skipped: Optional[PatchSkipped] = None

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def format_directive(key: str, value: str, *, indent: str = "", newline: str = "\n") -> str:
    return f"{indent}{key:<{KEY_WIDTH}} {value}{newline}"


def _terminator(line: str) -> str:
    if line.endswith("\r\n"):
        return "\r\n"
    if line.endswith("\n"):
        return "\n"
    return ""


def _indent_of(line: str) -> str:
    return line[: len(line) - len(line.lstrip(" \t"))]


def _directive_value(line: str) -> str:
    parts = line.strip().split(None, 1)
    return parts[1].strip() if len(parts) > 1 else ""


def _is_directive(line: str, key: str) -> bool:
    return line_key(line) == key and "{" not in line and "}" not in line


def _replace_value(line: str, key: str, value: str) -> str:
    """Rewrite *line* with *value*, keeping indentation and terminator."""
    if _directive_value(line) == value:
        return line
    return format_directive(key, value, indent=_indent_of(line), newline=_terminator(line) or "\n")


def _body_indent(lines: Sequence[str], block: BlockRange) -> str:
    for idx in range(block.start, block.end - 1):
        body = lines[idx]
        if body.strip() and "{" not in body and "}" not in body:
            return _indent_of(body)
    return _indent_of(lines[block.start - 1]) + BLOCK_INDENT


def _skip(document: ConfigDocument, message: str, **context) -> PatchResult:
    logger.info("Skipped: %s", message)
    return PatchResult(document=document, skipped=PatchSkipped(message, **context))


def _upsert_in_range(
    lines: List[str],
    block: BlockRange,
    key: str,
    value: str,
    newline: str,
) -> Optional[int]:
    """Edit *lines* in place; return the touched 1-based line or None."""
    if block.end == block.start:
        logger.warning("Block at line %d opens and closes on one line; not editing", block.start)
        return None
    for number in range(block.start + 1, block.end):
        current = lines[number - 1]
        if _is_directive(current, key):
            updated = _replace_value(current, key, value)
            if updated == current:
                return None
            lines[number - 1] = updated
            return number
    inserted = format_directive(key, value, indent=_body_indent(lines, block), newline=newline)
    lines.insert(block.end - 1, inserted)
    return block.end


def set_top_level(document: ConfigDocument, key: str, value: str) -> PatchResult:
    """Set top-level ``key`` to *value*, inserting at line 1 when absent."""
    if not value:
        return _skip(document, f"{key}: empty value", key=key)

    lines = list(document.lines)
    for number in top_level_line_numbers(document):
        current = lines[number - 1]
        if not _is_directive(current, key):
            continue
        updated = _replace_value(current, key, value)
        if updated == current:
            return PatchResult(document=document)
        lines[number - 1] = updated
        record = ChangeRecord(label=key, value=value, lines=(number,))
        logger.info("%s", record)
        return PatchResult(document=document.with_lines(lines), changes=(record,))

    lines.insert(0, format_directive(key, value, newline=document.newline))
    record = ChangeRecord(label=key, value=value, lines=(1,))
    logger.info("%s (inserted)", record)
    return PatchResult(document=document.with_lines(lines), changes=(record,))


def set_in_block(
    document: ConfigDocument,
    pattern: HeaderPattern,
    key: str,
    value: str,
    *,
    label: Optional[str] = None,
) -> PatchResult:
    """Set ``key`` inside the first block matching *pattern*."""
    label = label or f"{pattern.describe()}.{key}"
    if not value:
        return _skip(document, f"{label}: empty value", key=key)
    block = first_block(document, pattern)
    if block is None:
        return _skip(document, f"{label}: no '{pattern.describe()}' block", key=key)

    lines = list(document.lines)
    touched = _upsert_in_range(lines, block, key, value, document.newline)
    if touched is None:
        return PatchResult(document=document)
    record = ChangeRecord(label=label, value=value, lines=(touched,))
    logger.info("%s", record)
    return PatchResult(document=document.with_lines(lines), changes=(record,))


def set_in_filtered_blocks(
    document: ConfigDocument,
    predicate: AttributePredicate,
    key: str,
    value: str,
    *,
    label: Optional[str] = None,
) -> PatchResult:
    """Upsert ``key`` in every block selected by *predicate*.

    Edits go to a working copy; ranges are handled bottom-up so earlier
    line numbers stay valid.  The new document is only returned once
    every range has been processed.
    """
    label = label or f"{predicate.keyword}.{key}"
    if not value:
        return _skip(document, f"{label}: empty value", key=key)
    ranges = list(scan_blocks(document, predicate))
    if not ranges:
        return _skip(document, f"{label}: no block matching {predicate.describe()}", key=key)

    working = list(document.lines)
    records: List[ChangeRecord] = []
    for block in reversed(ranges):
        touched = _upsert_in_range(working, block, key, value, document.newline)
        if touched is None:
            continue
        records.append(ChangeRecord(label=label, value=value, lines=(block.start, block.end)))

    records.reverse()
    for record in records:
        logger.info("%s (lines %d-%d)", record, record.lines[0], record.lines[1])
    if not records:
        return PatchResult(document=document)
    return PatchResult(document=document.with_lines(working), changes=tuple(records))


def strip_keys_in_filtered_blocks(
    document: ConfigDocument,
    predicate: AttributePredicate,
    keys: Iterable[str],
    *,
    label: Optional[str] = None,
) -> PatchResult:
    """Delete every ``keys`` directive inside blocks selected by *predicate*."""
    wanted = frozenset(keys)
    label = label or f"{predicate.keyword}.strip"
    if not wanted:
        return _skip(document, f"{label}: no keys given")
    ranges = list(scan_blocks(document, predicate))
    if not ranges:
        return _skip(document, f"{label}: no block matching {predicate.describe()}")

    working = list(document.lines)
    records: List[ChangeRecord] = []
    for block in reversed(ranges):
        removed = [
            number
            for number in range(block.start + 1, block.end)
            if line_key(working[number - 1]) in wanted and "{" not in working[number - 1]
        ]
        if not removed:
            continue
        for number in reversed(removed):
            del working[number - 1]
        records.append(
            ChangeRecord(label=label, value="removed " + ",".join(sorted(wanted)), lines=(block.start, block.end))
        )

    records.reverse()
    for record in records:
        logger.info("%s (lines %d-%d)", record, record.lines[0], record.lines[1])
    if not records:
        return PatchResult(document=document)
    return PatchResult(document=document.with_lines(working), changes=tuple(records))
