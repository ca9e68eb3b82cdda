from __future__ import annotations

import os
import time
from datetime import timedelta
from pathlib import Path

import pytest

from ols_guard.backups import BackupManager, KeepNewest, KeepYoungerThan
from ols_guard.errors import PreconditionMissing


def _age(path: Path, seconds_ago: float) -> None:
    stamp = time.time() - seconds_ago
    os.utime(path, (stamp, stamp))


def test_snapshot_names_sort_in_creation_order(tmp_path: Path):
    source = tmp_path / "httpd_config.conf"
    source.write_text("a\n")
    manager = BackupManager(tmp_path / "backups", "httpd_config_")

    first = manager.snapshot(source)
    source.write_text("b\n")
    second = manager.snapshot(source)

    assert first.path.name < second.path.name
    assert first.path.read_text() == "a\n"
    assert second.path.read_text() == "b\n"
    assert first.fingerprint != second.fingerprint


def test_snapshot_requires_source(tmp_path: Path):
    manager = BackupManager(tmp_path, "x_")
    with pytest.raises(PreconditionMissing):
        manager.snapshot(tmp_path / "missing.conf")


def test_keep_newest_prunes_oldest_and_spares_protected(tmp_path: Path):
    source = tmp_path / "httpd_config.conf"
    source.write_text("x\n")
    manager = BackupManager(tmp_path / "backups", "httpd_config_")
    snaps = [manager.snapshot(source) for _ in range(5)]
    for idx, snap in enumerate(snaps):
        _age(snap.path, 100 - idx)

    removed = manager.prune(KeepNewest(2), protect=[snaps[0]])

    assert sorted(removed) == sorted([snaps[1].path, snaps[2].path])
    assert snaps[0].path.exists()
    assert [p.name for p in manager.snapshots()] == [snaps[4].name, snaps[3].name, snaps[0].name]


def test_keep_younger_than_removes_by_age_only_matching_names(tmp_path: Path):
    directory = tmp_path / "conf"
    directory.mkdir()
    live = directory / "httpd_config.conf"
    live.write_text("live\n")
    manager = BackupManager(directory, "httpd_config_backup-")
    old = manager.snapshot(live)
    fresh = manager.snapshot(live)
    _age(old.path, 2 * 86400)
    _age(live, 5 * 86400)

    removed = manager.prune(KeepYoungerThan(timedelta(hours=24)))

    assert removed == [old.path]
    assert fresh.path.exists()
    assert live.exists()


def test_restore_reads_without_deleting(tmp_path: Path):
    source = tmp_path / "httpd_config.conf"
    source.write_text("original\n")
    manager = BackupManager(tmp_path / "backups", "httpd_config_")
    snap = manager.snapshot(source)
    source.write_text("broken {\n")

    manager.restore(snap, source)

    assert source.read_text() == "original\n"
    assert snap.path.exists()
