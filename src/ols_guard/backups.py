"""Timestamped snapshots of the managed document and their retention."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterable, List, Union

from .document import fingerprint_bytes
from .errors import PreconditionMissing
from .fileio import atomic_copy, atomic_write_bytes

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S-%f"


@dataclass(frozen=True)
class BackupSnapshot:
    path: Path
    created_at: datetime
    fingerprint: str

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class KeepNewest:
    count: int


@dataclass(frozen=True)
class KeepYoungerThan:
    max_age: timedelta


RetentionPolicy = Union[KeepNewest, KeepYoungerThan]


class BackupManager:
    """Snapshots live in *directory* as ``<prefix><timestamp><suffix>``.

    The timestamp sorts lexically in creation order.  Snapshots are never
    modified; ``restore`` reads one back without deleting it.
    """

    def __init__(
        self,
        directory: Path,
        prefix: str,
        *,
        suffix: str = ".conf",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.directory = directory
        self.prefix = prefix
        self.suffix = suffix
        self._clock = clock

    def _name_for(self, moment: datetime) -> str:
        return f"{self.prefix}{moment.strftime(TIMESTAMP_FORMAT)}{self.suffix}"

    def snapshot(self, source: Path) -> BackupSnapshot:
        if not source.exists():
            raise PreconditionMissing(f"Config not found: {source}", stage="snapshot")
        data = source.read_bytes()
        st = source.stat()
        moment = datetime.fromtimestamp(self._clock())
        path = self.directory / self._name_for(moment)
        while path.exists():
            moment += timedelta(microseconds=1)
            path = self.directory / self._name_for(moment)
        atomic_write_bytes(path, data, mode=st.st_mode & 0o7777, owner=(st.st_uid, st.st_gid))
        logger.info("Backup created: %s", path)
        return BackupSnapshot(path=path, created_at=moment, fingerprint=fingerprint_bytes(data))

    def snapshots(self) -> List[Path]:
        """Snapshots matching the naming convention, newest first."""
        if not self.directory.is_dir():
            return []
        found = [p for p in self.directory.glob(f"{self.prefix}*{self.suffix}") if p.is_file()]
        return sorted(found, key=lambda p: (p.stat().st_mtime, p.name), reverse=True)

    def prune(
        self,
        policy: RetentionPolicy,
        *,
        protect: Iterable[Union[Path, BackupSnapshot]] = (),
    ) -> List[Path]:
        protected = {
            (item.path if isinstance(item, BackupSnapshot) else item).resolve() for item in protect
        }
        existing = self.snapshots()
        if isinstance(policy, KeepNewest):
            doomed = existing[max(policy.count, 0):]
        else:
            horizon = self._clock() - policy.max_age.total_seconds()
            doomed = [p for p in existing if p.stat().st_mtime < horizon]

        removed: List[Path] = []
        for path in doomed:
            if path.resolve() in protected:
                continue
            path.unlink(missing_ok=True)
            removed.append(path)
        if removed:
            logger.info("Removed %d old backup(s) from %s", len(removed), self.directory)
        return removed

    def restore(self, snapshot: BackupSnapshot, target: Path) -> None:
        atomic_copy(snapshot.path, target)
        logger.warning("Restored %s from %s", target, snapshot.path)

