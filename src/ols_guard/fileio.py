"""Atomic replace helpers for the managed document and its side files."""
from __future__ import annotations

import grp
import logging
import os
import pwd
import tempfile
from pathlib import Path
from typing import Optional, Tuple

logger = logging.getLogger(__name__)


def _fsync_dir(directory: Path) -> None:
    try:
        dir_fd = os.open(str(directory), os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


def _stat_identity(st: os.stat_result) -> Tuple[int, int]:
    return st.st_uid, st.st_gid


def _chown_if_needed(path: Path, owner: Tuple[int, int]) -> None:
    if _stat_identity(path.stat()) == tuple(owner):
        return
    try:
        os.chown(path, owner[0], owner[1])
    except PermissionError:
        if os.geteuid() == 0:
            raise
        logger.warning("Cannot set owner %d:%d on %s without root", owner[0], owner[1], path)


def atomic_write_bytes(
    path: Path,
    data: bytes,
    *,
    mode: Optional[int] = None,
    owner: Optional[Tuple[int, int]] = None,
) -> None:
    """Write *data* to a sibling temp file, then ``os.replace`` it over *path*.

    When *mode* or *owner* is None the existing target's value is kept.
    *owner* is a ``(uid, gid)`` pair applied before the rename.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        current = path.stat()
        if mode is None:
            mode = current.st_mode & 0o7777
        if owner is None:
            owner = _stat_identity(current)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp_path, mode)
        if owner is not None:
            _chown_if_needed(tmp_path, owner)
        os.replace(tmp_path, path)
        _fsync_dir(path.parent)
    finally:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)


def atomic_write_text(path: Path, text: str, **kwargs) -> None:
    atomic_write_bytes(path, text.encode("utf-8"), **kwargs)


def atomic_copy(source: Path, target: Path) -> None:
    """``cp -a`` for one file: content, mode and owner come from *source*."""
    st = source.stat()
    atomic_write_bytes(target, source.read_bytes(), mode=st.st_mode & 0o7777, owner=_stat_identity(st))


def resolve_identity(owner: str, group: str) -> Tuple[int, int]:
    """Map owner/group names to ids, falling back to root when absent."""
    try:
        uid = pwd.getpwnam(owner).pw_uid
    except KeyError:
        logger.warning("User '%s' not found, using root", owner)
        uid = 0
    try:
        gid = grp.getgrnam(group).gr_gid
    except KeyError:
        logger.warning("Group '%s' not found, using root", group)
        gid = 0
    return uid, gid


def install_text(path: Path, text: str, *, owner: str, group: str, mode: int) -> None:
    """Atomically install *text* at *path* with the given identity and mode.

    Ownership is only changed when running as root; unprivileged runs keep
    the caller's identity so the write still succeeds.
    """
    identity: Optional[Tuple[int, int]] = None
    if os.geteuid() == 0:
        identity = resolve_identity(owner, group)
    atomic_write_text(path, text, mode=mode, owner=identity)
