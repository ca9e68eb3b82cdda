"""Service control collaborators used to restart the web server."""
from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


class ServiceController(Protocol):
    def available(self) -> bool: ...

    def restart(self) -> bool: ...

    def is_active(self) -> bool: ...


@dataclass
class CommandService:
    """Restart through an arbitrary command, e.g. ``lswsctrl restart``."""

    restart_argv: Sequence[str]
    status_argv: Optional[Sequence[str]] = None
    timeout_s: float = 120.0
    last_result: Dict[str, Any] = field(default_factory=dict)

    def _run(self, argv: Sequence[str]) -> Dict[str, Any]:
        command = list(argv)
        try:
            proc = subprocess.run(
                command,
                capture_output=True,
                text=True,
                timeout=self.timeout_s,
                check=False,
            )
        except subprocess.TimeoutExpired:
            return {"ok": False, "command": command, "timeout_s": self.timeout_s, "error": "timeout"}
        except OSError as exc:
            return {"ok": False, "command": command, "error": str(exc)}
        return {
            "ok": proc.returncode == 0,
            "command": command,
            "exit_code": proc.returncode,
            "stdout": proc.stdout.strip(),
            "stderr": proc.stderr.strip(),
        }

    def available(self) -> bool:
        return bool(self.restart_argv) and shutil.which(self.restart_argv[0]) is not None

    def restart(self) -> bool:
        self.last_result = self._run(self.restart_argv)
        if not self.last_result["ok"]:
            logger.error("Restart failed: %s", self.last_result)
        return bool(self.last_result["ok"])

    def is_active(self) -> bool:
        if not self.status_argv:
            return True
        return bool(self._run(self.status_argv)["ok"])


def systemd_service(unit: str, *, timeout_s: float = 120.0) -> CommandService:
    return CommandService(
        restart_argv=("systemctl", "restart", unit),
        status_argv=("systemctl", "is-active", "--quiet", unit),
        timeout_s=timeout_s,
    )


def build_service(settings) -> CommandService:
    """Pick the configured restart command, or systemd for ``service_name``."""
    if settings.restart_command:
        argv: List[str] = shlex.split(settings.restart_command)
        return CommandService(
            restart_argv=argv,
            status_argv=("systemctl", "is-active", "--quiet", settings.service_name),
            timeout_s=settings.restart_timeout_s,
        )
    return systemd_service(settings.service_name, timeout_s=settings.restart_timeout_s)
