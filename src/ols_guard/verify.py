"""Read-only post-run health checks.

The verifier does not take the host lock, so it can observe a document
that a concurrent optimizer or enforce run is rewriting.  That race is
accepted: the result is advisory and the next scheduled pass re-checks.
"""
from __future__ import annotations

import logging
import os
import shutil
import socket
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .document import ConfigDocument
from .errors import StructuralCorruption
from .service import ServiceController
from .validator import IntegrityValidator

logger = logging.getLogger(__name__)

PROC_ROOT = Path("/proc")
CORE_DUMP_DIR = Path("/tmp")
CORE_DUMP_MAX_AGE_S = 24 * 3600


class Severity(str, Enum):
    OK = "ok"
    WARN = "warn"
    ERROR = "error"


@dataclass(frozen=True)
class CheckResult:
    name: str
    severity: Severity
    message: str


@dataclass
class VerifyReport:
    checks: List[CheckResult] = field(default_factory=list)

    def add(self, name: str, severity: Severity, message: str) -> None:
        log = {Severity.OK: logger.info, Severity.WARN: logger.warning, Severity.ERROR: logger.error}
        log[severity]("[%s] %s", severity.value.upper(), message)
        self.checks.append(CheckResult(name=name, severity=severity, message=message))

    @property
    def errors(self) -> int:
        return sum(1 for c in self.checks if c.severity is Severity.ERROR)

    @property
    def warnings(self) -> int:
        return sum(1 for c in self.checks if c.severity is Severity.WARN)

    @property
    def exit_code(self) -> int:
        return 1 if self.errors else 0


def port_listening(port: int, host: str = "127.0.0.1", timeout_s: float = 1.0) -> bool:
    try:
        with socket.create_connection((host, port), timeout=timeout_s):
            return True
    except OSError:
        return False


def count_zombies(proc_root: Path = PROC_ROOT) -> int:
    count = 0
    for stat in proc_root.glob("[0-9]*/stat"):
        try:
            text = stat.read_text()
        except OSError:
            continue
        # state follows the parenthesised command name
        tail = text.rsplit(")", 1)[-1].split()
        if tail and tail[0] == "Z":
            count += 1
    return count


def recent_core_dumps(directory: Path = CORE_DUMP_DIR, *, max_age_s: float = CORE_DUMP_MAX_AGE_S) -> int:
    horizon = time.time() - max_age_s
    count = 0
    for path in directory.glob("core.*"):
        try:
            if path.stat().st_mtime >= horizon:
                count += 1
        except OSError:
            continue
    return count


class EnvironmentVerifier:
    def __init__(
        self,
        settings,
        *,
        service: ServiceController,
        validator: Optional[IntegrityValidator] = None,
        proc_root: Path = PROC_ROOT,
        core_dump_dir: Path = CORE_DUMP_DIR,
    ) -> None:
        self._settings = settings
        self._service = service
        self._validator = validator or IntegrityValidator(
            min_bytes=settings.min_config_bytes,
            listener_keyword=settings.listener_keyword,
        )
        self._proc_root = proc_root
        self._core_dump_dir = core_dump_dir

    def run(self) -> VerifyReport:
        report = VerifyReport()
        if hasattr(os, "geteuid") and os.geteuid() != 0:
            report.add("root", Severity.WARN, "Not running as root - some checks may be limited")

        if self._service.is_active():
            report.add("service", Severity.OK, f"{self._settings.service_name} service is active")
        else:
            report.add("service", Severity.ERROR, f"{self._settings.service_name} service is not active")

        self._check_config(report)
        self._check_ports(report, self._settings.verify_ports)

        zombies = count_zombies(self._proc_root)
        if zombies:
            report.add("zombies", Severity.WARN, f"Found {zombies} defunct/zombie process(es)")

        self._check_disks(report, self._settings.verify_disk_paths)

        cores = recent_core_dumps(self._core_dump_dir)
        if cores:
            report.add("core_dumps", Severity.WARN, f"Found {cores} recent core dump(s) in {self._core_dump_dir}")

        logger.info("Verification summary: errors=%d warnings=%d", report.errors, report.warnings)
        return report

    def _check_config(self, report: VerifyReport) -> None:
        path: Path = self._settings.config_path
        if not path.is_file():
            report.add("config", Severity.ERROR, f"Config file not found: {path}")
            return
        if not os.access(path, os.R_OK):
            report.add("config", Severity.ERROR, f"Config file not readable: {path}")
            return
        report.add("config", Severity.OK, "Config file exists and is readable")

        try:
            document = ConfigDocument.load(path)
        except StructuralCorruption as exc:
            report.add("syntax", Severity.ERROR, f"Config invalid: {exc}")
            return
        result = self._validator.validate(document)
        if result.ok:
            report.add("syntax", Severity.OK, "Config syntax appears valid (balanced braces, reasonable size)")
        else:
            report.add("syntax", Severity.ERROR, f"Config invalid: {result.reason}")

    def _check_ports(self, report: VerifyReport, ports: Sequence[int]) -> None:
        listening = [port for port in ports if port_listening(port)]
        for port in listening:
            report.add(f"port_{port}", Severity.OK, f"Port {port} is listening")
        if ports and not listening:
            names = " nor ".join(str(p) for p in ports)
            report.add("ports", Severity.ERROR, f"Neither port {names} is listening")

    def _check_disks(self, report: VerifyReport, paths: Iterable[Path]) -> None:
        threshold = self._settings.verify_disk_threshold_pct
        for path in paths:
            if not path.is_dir():
                continue
            usage = shutil.disk_usage(path)
            pct = int(usage.used * 100 / usage.total) if usage.total else 0
            if pct >= threshold:
                report.add(
                    "disk",
                    Severity.WARN,
                    f"Disk usage on {path} is {pct}% (threshold: {threshold}%)",
                )
