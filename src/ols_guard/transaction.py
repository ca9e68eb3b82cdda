"""Transactional optimizer run: lock, snapshot, patch, validate, restart.

State flow::

    IDLE -> LOCK_ACQUIRED -> PRE_VALIDATED -> PATCHED* -> POST_VALIDATED
         -> UNCHANGED | RESTARTED
    PATCHED / POST_VALIDATED -> ROLLED_BACK      (validation or restart failure)
    LOCK_ACQUIRED -> ABORTED                     (precondition or pre-validation failure)
    IDLE -> SKIPPED                              (another run holds the lock)

Lock contention is deliberately a successful no-op: overlapping scheduled
runs are expected, and the run already in progress does the work.
"""
from __future__ import annotations

import difflib
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from .backups import BackupManager, BackupSnapshot, KeepNewest
from .document import ConfigDocument
from .errors import (
    ConfigGuardError,
    LockContention,
    PreconditionMissing,
    RestartFailure,
    StructuralCorruption,
)
from .fileio import atomic_write_text
from .locking import host_lock
from .patching import ChangeRecord
from .service import ServiceController
from .stages import PatchStage, lsphp_summary
from .validator import IntegrityValidator

logger = logging.getLogger(__name__)

DIFF_PREVIEW_LINES = 30


class TxState(str, Enum):
    IDLE = "idle"
    LOCK_ACQUIRED = "lock_acquired"
    PRE_VALIDATED = "pre_validated"
    PATCHED = "patched"
    POST_VALIDATED = "post_validated"
    UNCHANGED = "unchanged"
    RESTARTED = "restarted"
    ROLLED_BACK = "rolled_back"
    ABORTED = "aborted"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class TransactionResult:
    state: TxState
    exit_code: int
    before_fingerprint: str = ""
    after_fingerprint: str = ""
    snapshot: Optional[Path] = None
    changes: Tuple[ChangeRecord, ...] = ()
    failed_stage: Optional[str] = None
    error: str = ""
    history: Tuple[TxState, ...] = ()

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


def diff_preview(before: str, after: str, *, limit: int = DIFF_PREVIEW_LINES) -> List[str]:
    """Changed lines only (``+``/``-``), without the unified diff headers."""
    rows = []
    for row in difflib.unified_diff(before.splitlines(), after.splitlines(), lineterm=""):
        if row.startswith(("+++", "---")) or not row.startswith(("+", "-")):
            continue
        rows.append(row)
        if len(rows) >= limit:
            break
    return rows


@dataclass
class _Run:
    history: List[TxState] = field(default_factory=lambda: [TxState.IDLE])
    before: str = ""
    snapshot: Optional[BackupSnapshot] = None
    changes: List[ChangeRecord] = field(default_factory=list)

    def enter(self, state: TxState) -> None:
        logger.debug("transaction: %s -> %s", self.history[-1].value, state.value)
        self.history.append(state)


class TransactionController:
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
        self._service = service
        self._validator = validator or IntegrityValidator(
            min_bytes=settings.min_config_bytes,
            listener_keyword=settings.listener_keyword,
        )
        self._backups = backups or BackupManager(settings.backup_dir, settings.backup_prefix)

    def run(self, stages: Sequence[PatchStage]) -> TransactionResult:
        try:
            with host_lock(self._settings.lock_file):
                return self._run_locked(stages)
        except LockContention as exc:
            logger.info("Another run is in progress, exiting: %s", exc)
            return TransactionResult(
                state=TxState.SKIPPED,
                exit_code=0,
                history=(TxState.IDLE, TxState.SKIPPED),
            )

    def _result(self, run: _Run, state: TxState, exit_code: int, **kwargs) -> TransactionResult:
        run.enter(state)
        return TransactionResult(
            state=state,
            exit_code=exit_code,
            before_fingerprint=run.before,
            snapshot=run.snapshot.path if run.snapshot else None,
            changes=tuple(run.changes),
            history=tuple(run.history),
            **kwargs,
        )

    def _check_preconditions(self) -> None:
        if not self._config_path.is_file():
            raise PreconditionMissing(f"Config not found: {self._config_path}", stage="preconditions")
        if not self._service.available():
            raise PreconditionMissing("Service controller not found", stage="preconditions")

    def _rollback(self, run: _Run, snapshot: BackupSnapshot, exc: ConfigGuardError) -> TransactionResult:
        logger.error("Stage '%s' failed: %s; restoring %s", exc.stage, exc, snapshot.path)
        self._backups.restore(snapshot, self._config_path)
        return self._result(run, TxState.ROLLED_BACK, 1, failed_stage=exc.stage, error=str(exc))

    def _run_locked(self, stages: Sequence[PatchStage]) -> TransactionResult:
        run = _Run()
        run.enter(TxState.LOCK_ACQUIRED)
        logger.info("Optimizer start: %s", self._config_path)

        try:
            self._check_preconditions()
        except PreconditionMissing as exc:
            logger.error("%s", exc)
            return self._result(run, TxState.ABORTED, 1, failed_stage=exc.stage, error=str(exc))

        snapshot = self._backups.snapshot(self._config_path)
        run.snapshot = snapshot
        self._backups.prune(KeepNewest(self._settings.backup_keep), protect=[snapshot])

        try:
            document = ConfigDocument.load(self._config_path)
            run.before = document.fingerprint()
            self._validator.require(document, stage="pre-validation")
        except StructuralCorruption as exc:
            logger.error("Config was already broken on entry; not touching it")
            return self._result(run, TxState.ABORTED, 1, failed_stage=exc.stage, error=str(exc))
        run.enter(TxState.PRE_VALIDATED)

        try:
            for stage in stages:
                document = self._apply_stage(run, stage, document)
            self._validator.require(ConfigDocument.load(self._config_path), stage="final")
        except ConfigGuardError as exc:
            return self._rollback(run, snapshot, exc)
        except Exception:
            logger.exception("Unexpected failure while patching; restoring %s", snapshot.path)
            self._backups.restore(snapshot, self._config_path)
            raise
        run.enter(TxState.POST_VALIDATED)

        final = ConfigDocument.load(self._config_path)
        after = final.fingerprint()
        if after == run.before:
            logger.info("No effective changes (fingerprint equal). Restart not required.")
            return self._result(run, TxState.UNCHANGED, 0, after_fingerprint=after)

        logger.info("Changes detected. Diff (first lines):")
        original = snapshot.path.read_text(encoding="utf-8")
        for row in diff_preview(original, final.text):
            logger.info("  %s", row)

        logger.info("Restarting service...")
        if not self._service.restart():
            self._backups.restore(snapshot, self._config_path)
            if not self._service.restart():
                logger.warning("Best-effort restart with the restored config also failed")
            exc = RestartFailure("Service restart failed; previous configuration restored", stage="restart")
            logger.error("%s", exc)
            return self._result(run, TxState.ROLLED_BACK, 1, failed_stage=exc.stage, error=str(exc))

        atomic_write_text(self._settings.fingerprint_file, after + "\n")
        logger.info("Service restarted successfully")
        logger.info("lsphp children/conns: %s", lsphp_summary(final))
        return self._result(run, TxState.RESTARTED, 0, after_fingerprint=after)

    def _apply_stage(self, run: _Run, stage: PatchStage, document: ConfigDocument) -> ConfigDocument:
        logger.info("Applying %s settings...", stage.name)
        staged = document
        for step in stage.steps:
            result = step(staged)
            staged = result.document
            run.changes.extend(result.changes)
        if staged != document:
            atomic_write_text(self._config_path, staged.text)
        run.enter(TxState.PATCHED)
        on_disk = ConfigDocument.load(self._config_path)
        self._validator.require(on_disk, stage=stage.name)
        return on_disk
