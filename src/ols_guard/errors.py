"""Failure taxonomy shared by the transaction and freeze flows."""
from __future__ import annotations

from typing import Any, Dict, Optional


class ConfigGuardError(RuntimeError):
    """Base class; ``fatal`` errors map to exit status 1."""

    fatal = True

    def __init__(self, message: str, *, stage: Optional[str] = None, **context: Any):
        super().__init__(message)
        self.stage = stage
        self.context: Dict[str, Any] = dict(context)


class LockContention(ConfigGuardError):
    fatal = False


class PreconditionMissing(ConfigGuardError):
    pass


class StructuralCorruption(ConfigGuardError):
    pass


class PatchSkipped(ConfigGuardError):
    fatal = False


class RestartFailure(ConfigGuardError):
    pass


class ExtractionAnomaly(ConfigGuardError):
    pass
