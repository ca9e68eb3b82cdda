"""Persisted kernel limits for high connection counts."""
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Dict, Mapping

from .fileio import atomic_write_text

logger = logging.getLogger(__name__)

KERNEL_LIMITS: Dict[str, str] = {
    "net.core.somaxconn": "65535",
    "fs.file-max": "2097152",
}


def render_dropin(limits: Mapping[str, str]) -> str:
    return "".join(f"{key} = {value}\n" for key, value in limits.items())


def apply_kernel_limits(dropin: Path, limits: Mapping[str, str] = KERNEL_LIMITS) -> bool:
    """Write the sysctl drop-in and reload it; failures are logged, not raised.

    Returns True when the drop-in was written and ``sysctl --system`` exited 0.
    """
    logger.info("Applying kernel limits...")
    try:
        atomic_write_text(dropin, render_dropin(limits), mode=0o644)
    except OSError as exc:
        logger.warning("Cannot write %s: %s", dropin, exc)
        return False

    reloaded = True
    try:
        proc = subprocess.run(
            ["sysctl", "--system"],
            capture_output=True,
            text=True,
            timeout=30,
            check=False,
        )
        reloaded = proc.returncode == 0
        if not reloaded:
            logger.warning("sysctl --system exited %d: %s", proc.returncode, proc.stderr.strip())
    except (OSError, subprocess.TimeoutExpired) as exc:
        logger.warning("sysctl --system failed: %s", exc)
        reloaded = False

    logger.info("Kernel tunables applied (persisted in %s)", dropin)
    return reloaded
