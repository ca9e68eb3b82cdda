"""Structural integrity checks run before and after every mutating stage."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .document import ConfigDocument
from .errors import StructuralCorruption

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: str = ""
    open_braces: int = 0
    close_braces: int = 0
    byte_size: int = 0
    has_listener: bool = False


class IntegrityValidator:
    """Brace balance and minimum size are fatal; a missing listener only warns."""

    def __init__(self, *, min_bytes: int = 1024, listener_keyword: str = "listener") -> None:
        self._min_bytes = min_bytes
        self._listener_re = re.compile(r"^\s*" + re.escape(listener_keyword) + r"(\s|\{|$)")
        self._listener_keyword = listener_keyword

    def validate(self, document: ConfigDocument) -> ValidationResult:
        open_braces = document.count("{")
        close_braces = document.count("}")
        size = document.byte_size
        if open_braces != close_braces:
            return ValidationResult(
                ok=False,
                reason=f"Unbalanced braces (open: {open_braces}, close: {close_braces})",
                open_braces=open_braces,
                close_braces=close_braces,
                byte_size=size,
            )
        if size < self._min_bytes:
            return ValidationResult(
                ok=False,
                reason=f"Config too small ({size} bytes < {self._min_bytes})",
                open_braces=open_braces,
                close_braces=close_braces,
                byte_size=size,
            )
        has_listener = any(self._listener_re.match(line) for line in document.lines)
        if not has_listener:
            logger.warning("No %s blocks found in config", self._listener_keyword)
        return ValidationResult(
            ok=True,
            open_braces=open_braces,
            close_braces=close_braces,
            byte_size=size,
            has_listener=has_listener,
        )

    def require(self, document: ConfigDocument, *, stage: Optional[str] = None) -> ValidationResult:
        """Validate and raise ``StructuralCorruption`` on a fatal result."""
        result = self.validate(document)
        if not result.ok:
            where = f" after {stage}" if stage else ""
            logger.error("Integrity check failed%s: %s", where, result.reason)
            raise StructuralCorruption(
                result.reason,
                stage=stage,
                open_braces=result.open_braces,
                close_braces=result.close_braces,
                byte_size=result.byte_size,
            )
        logger.debug("Integrity check passed%s", f" after {stage}" if stage else "")
        return result
