"""Freeze the top of the config against regeneration by the panel.

``freeze`` captures every line before the first live-boundary block
(``virtualhost ... {``) and records the document fingerprint.  Each
``enforce`` pass that sees a different fingerprint rebuilds the document
as frozen prefix + current live suffix, installs it and restarts the
service.  ``unfreeze`` forgets the captured state.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Optional

from .backups import BackupManager, BackupSnapshot, KeepYoungerThan
from .document import ConfigDocument, fingerprint_file, split_lines
from .errors import ExtractionAnomaly, LockContention, PreconditionMissing, RestartFailure
from .fileio import atomic_write_text, install_text
from .locking import host_lock
from .scanner import first_boundary_line
from .service import ServiceController
from .validator import IntegrityValidator

logger = logging.getLogger(__name__)


class FreezeOutcome(str, Enum):
    FROZEN = "frozen"
    UNFROZEN = "unfrozen"
    NOT_FROZEN = "not_frozen"
    UNCHANGED = "unchanged"
    ENFORCED = "enforced"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class FreezeResult:
    outcome: FreezeOutcome
    message: str = ""
    snapshot: Optional[Path] = None
    prefix_lines: int = 0
    fingerprint: str = ""


@dataclass(frozen=True)
class FreezeStatus:
    frozen: bool
    marker: Path
    prefix_path: Path
    prefix_lines: int = 0
    prefix_bytes: int = 0


class FreezeManager:
    def __init__(
        self,
        settings,
        *,
        service: ServiceController,
        validator: Optional[IntegrityValidator] = None,
        backups: Optional[BackupManager] = None,
    ) -> None:
        self._settings = settings
        self._config_path: Path = settings.config_path
        self._marker: Path = settings.freeze_marker
        self._prefix_file: Path = settings.frozen_prefix_file
        self._fingerprint_file: Path = settings.frozen_fingerprint_file
        self._service = service
        self._validator = validator or IntegrityValidator(
            min_bytes=settings.min_config_bytes,
            listener_keyword=settings.listener_keyword,
        )
        self._backups = backups or BackupManager(
            settings.freeze_backup_dir,
            settings.freeze_backup_prefix,
        )
        self._retention = KeepYoungerThan(timedelta(hours=settings.freeze_backup_max_age_h))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def frozen(self) -> bool:
        return self._marker.exists()

    def _require_config(self) -> None:
        if not self._config_path.is_file():
            raise PreconditionMissing(f"Config not found at {self._config_path}", stage="require")

    def _backup(self) -> BackupSnapshot:
        self._backups.prune(self._retention)
        return self._backups.snapshot(self._config_path)

    def _boundary(self, document: ConfigDocument) -> Optional[int]:
        return first_boundary_line(document, self._settings.live_boundary_keyword)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def freeze(self) -> FreezeResult:
        try:
            with host_lock(self._settings.lock_file):
                return self._freeze_locked()
        except LockContention as exc:
            logger.info("Another run is in progress, exiting: %s", exc)
            return FreezeResult(outcome=FreezeOutcome.SKIPPED, message=str(exc))

    def _freeze_locked(self) -> FreezeResult:
        self._require_config()
        snapshot = self._backup()
        logger.info("Saved current config: %s", snapshot.path)

        document = ConfigDocument.load(self._config_path)
        boundary = self._boundary(document)
        keyword = self._settings.live_boundary_keyword
        if boundary is None:
            logger.warning("No '%s {' block found; freezing the whole document", keyword)
            prefix = document
        else:
            logger.info("Extracting top-of-config (before line %d, first '%s {')", boundary, keyword)
            prefix = document.head(boundary - 1)
        if not prefix.text.strip():
            raise ExtractionAnomaly(
                "Failed to extract top-of-config (prefix is empty)",
                stage="freeze",
                boundary=boundary,
            )

        fingerprint = document.fingerprint()
        atomic_write_text(self._prefix_file, prefix.text)
        atomic_write_text(self._fingerprint_file, fingerprint + "\n")
        atomic_write_text(self._marker, "")
        logger.info("FROZEN. Future runs will enforce frozen top-of-config.")
        logger.info("  Frozen file: %s", self._prefix_file)
        logger.info("  Lines preserved: %d", prefix.line_count)
        return FreezeResult(
            outcome=FreezeOutcome.FROZEN,
            snapshot=snapshot.path,
            prefix_lines=prefix.line_count,
            fingerprint=fingerprint,
        )

    def unfreeze(self) -> FreezeResult:
        for path in (self._marker, self._prefix_file, self._fingerprint_file):
            path.unlink(missing_ok=True)
        logger.info("Unfrozen. Top-of-config will no longer be enforced.")
        return FreezeResult(outcome=FreezeOutcome.UNFROZEN)

    def status(self) -> FreezeStatus:
        if not self.frozen:
            return FreezeStatus(frozen=False, marker=self._marker, prefix_path=self._prefix_file)
        lines = size = 0
        if self._prefix_file.exists():
            data = self._prefix_file.read_bytes()
            size = len(data)
            lines = len(split_lines(data.decode("utf-8")))
        return FreezeStatus(
            frozen=True,
            marker=self._marker,
            prefix_path=self._prefix_file,
            prefix_lines=lines,
            prefix_bytes=size,
        )

    def enforce(self) -> FreezeResult:
        if not self.frozen:
            logger.info("Not frozen. Nothing to do.")
            return FreezeResult(outcome=FreezeOutcome.NOT_FROZEN)
        try:
            with host_lock(self._settings.lock_file):
                return self._enforce_locked()
        except LockContention as exc:
            logger.info("Another run is in progress, exiting: %s", exc)
            return FreezeResult(outcome=FreezeOutcome.SKIPPED, message=str(exc))

    def _enforce_locked(self) -> FreezeResult:
        self._require_config()
        if not (self._prefix_file.exists() and self._fingerprint_file.exists()):
            raise PreconditionMissing(
                "Frozen files missing (marker exists but files are gone); run freeze again",
                stage="enforce",
                prefix_file=str(self._prefix_file),
                fingerprint_file=str(self._fingerprint_file),
            )

        current = fingerprint_file(self._config_path)
        recorded = self._fingerprint_file.read_text().strip()
        if current == recorded:
            logger.info("No changes (fingerprint match). Config unchanged.")
            return FreezeResult(outcome=FreezeOutcome.UNCHANGED, fingerprint=current)

        logger.info("Config change detected - enforcing frozen top...")
        snapshot = self._backup()
        logger.info("Saved changed config to: %s", snapshot.path)

        live = ConfigDocument.load(self._config_path)
        prefix = ConfigDocument.load(self._prefix_file)
        boundary = self._boundary(live)
        if boundary is None:
            logger.warning(
                "No '%s {' block found in current config; this might indicate a problem",
                self._settings.live_boundary_keyword,
            )
            suffix = ConfigDocument(())
        else:
            suffix = live.tail_from(boundary)

        candidate = prefix.concat(suffix)
        floor = int(live.line_count * self._settings.merge_min_ratio)
        if candidate.line_count < floor:
            logger.error(
                "Merged config is suspiciously small (%d vs %d lines); not applying",
                candidate.line_count,
                live.line_count,
            )
            raise ExtractionAnomaly(
                f"Merged config is suspiciously small ({candidate.line_count} vs {live.line_count} lines)",
                stage="merge",
                candidate_lines=candidate.line_count,
                live_lines=live.line_count,
            )
        self._validator.require(candidate, stage="merge")

        logger.info("Writing merged config and setting owner/group")
        install_text(
            self._config_path,
            candidate.text,
            owner=self._settings.restore_owner,
            group=self._settings.restore_group,
            mode=self._settings.restore_mode,
        )

        logger.info("Restarting %s", self._settings.service_name)
        if not self._service.restart():
            logger.error("Service restart failed! Rolling back to %s", snapshot.path)
            self._backups.restore(snapshot, self._config_path)
            if not self._service.restart():
                logger.warning("Best-effort restart with the restored config also failed")
            raise RestartFailure("Service restart failed; pre-enforce config restored", stage="restart")

        enforced = fingerprint_file(self._config_path)
        atomic_write_text(self._fingerprint_file, enforced + "\n")
        logger.info("Enforcement complete. Top-of-config preserved.")
        return FreezeResult(
            outcome=FreezeOutcome.ENFORCED,
            snapshot=snapshot.path,
            prefix_lines=prefix.line_count,
            fingerprint=enforced,
        )
