"""In-memory model of the managed brace-nested configuration."""
from __future__ import annotations

from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Iterable, Sequence, Tuple

from .errors import StructuralCorruption


def fingerprint_bytes(data: bytes) -> str:
    return sha256(data).hexdigest()


def fingerprint_file(path: Path) -> str:
    return fingerprint_bytes(path.read_bytes())


def brace_delta(line: str) -> int:
    return line.count("{") - line.count("}")


def split_lines(text: str) -> Tuple[str, ...]:
    r"""Split on ``\n`` only, keeping terminators (``\r\n`` stays whole)."""
    parts = text.split("\n")
    lines = [part + "\n" for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return tuple(lines)


def line_key(line: str) -> str:
    """First whitespace-delimited token of *line* ('' for blank lines)."""
    parts = line.split(None, 1)
    return parts[0] if parts else ""


@dataclass(frozen=True)
class ConfigDocument:
    """Ordered, immutable line sequence addressed by 1-based line number.

    Lines keep their terminators so that ``text`` reproduces the source
    byte for byte.  Every edit produces a new document.
    """

    lines: Tuple[str, ...]

    @classmethod
    def from_text(cls, text: str) -> "ConfigDocument":
        return cls(split_lines(text))

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "ConfigDocument":
        return cls(tuple(lines))

    @classmethod
    def load(cls, path: Path) -> "ConfigDocument":
        try:
            text = path.read_bytes().decode("utf-8")
        except UnicodeDecodeError as exc:
            raise StructuralCorruption(
                f"{path} is not valid UTF-8",
                stage="load",
                path=str(path),
                offset=exc.start,
            ) from exc
        return cls.from_text(text)

    @property
    def text(self) -> str:
        return "".join(self.lines)

    @property
    def data(self) -> bytes:
        return self.text.encode("utf-8")

    @property
    def byte_size(self) -> int:
        return len(self.data)

    @property
    def line_count(self) -> int:
        return len(self.lines)

    @property
    def newline(self) -> str:
        for line in self.lines:
            if line.endswith("\r\n"):
                return "\r\n"
            if line.endswith("\n"):
                return "\n"
        return "\n"

    def fingerprint(self) -> str:
        return fingerprint_bytes(self.data)

    def line(self, number: int) -> str:
        if number < 1 or number > len(self.lines):
            raise IndexError(f"line {number} out of range 1..{len(self.lines)}")
        return self.lines[number - 1]

    def slice(self, start: int, end: int) -> Tuple[str, ...]:
        """Lines ``start..end`` inclusive (1-based)."""
        return self.lines[start - 1 : end]

    def head(self, count: int) -> "ConfigDocument":
        return ConfigDocument(self.lines[:count])

    def tail_from(self, number: int) -> "ConfigDocument":
        return ConfigDocument(self.lines[number - 1 :])

    def concat(self, other: "ConfigDocument") -> "ConfigDocument":
        lines = list(self.lines)
        if lines and other.lines and not lines[-1].endswith(("\n", "\r")):
            lines[-1] = lines[-1] + self.newline
        return ConfigDocument(tuple(lines) + other.lines)

    def with_lines(self, lines: Sequence[str]) -> "ConfigDocument":
        return ConfigDocument(tuple(lines))

    def count(self, char: str) -> int:
        return sum(line.count(char) for line in self.lines)
