"""Environment resolution and enums for ols_guard configuration."""
from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import Optional


def _find_project_root() -> Path:
    """Directory holding ``pyproject.toml`` above this module."""
    here = Path(__file__).resolve()
    for parent in here.parents:
        if (parent / "pyproject.toml").is_file():
            return parent
    return here.parents[2]


PROJECT_ROOT = _find_project_root()


def _resolve_env_file(name: Optional[str] = None, root: Optional[Path] = None) -> Path:
    """Dotenv file selected by ``ENV``.

    ``ENV=prod`` and ``ENV=.prod`` both select ``<root>/.prod``; a bare name
    that only exists without the dot is accepted too.  Falls back to
    ``<root>/.env`` (which may not exist).
    """
    root = root or PROJECT_ROOT
    name = (os.getenv("ENV", ".env") if name is None else name) or ".env"
    dotted = name if name.startswith(".") else f".{name}"
    for candidate in dict.fromkeys((dotted, name)):
        path = Path(candidate)
        path = path if path.is_absolute() else root / path
        if path.exists():
            return path
    return root / ".env"


ENV_FILE = _resolve_env_file()


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RunMode(str, Enum):
    """Mode selector passed in by ``olsctl``.

    RUN      - optimizer transaction (patch, validate, restart on change).
    FREEZE   - capture the top-of-config prefix.
    UNFREEZE - drop the captured prefix.
    STATUS   - report freeze state.
    ENFORCE  - re-merge the frozen prefix over the live document.
    VERIFY   - read-only health checks.
    """

    RUN = "run"
    FREEZE = "freeze"
    UNFREEZE = "unfreeze"
    STATUS = "status"
    ENFORCE = "enforce"
    VERIFY = "verify"


class AioMode(str, Enum):
    """``useAIO`` values understood by the tuning block."""

    OFF = "0"
    LIBAIO = "1"
    POSIX = "2"
    IO_URING = "3"
