"""Host resource discovery and the RAM tier -> tuning preset table.

The preset table is configuration: ``DEFAULT_PRESETS`` mirrors the
production tiers, and ``load_presets`` reads a YAML override such as::

    presets:
      - name: small
        max_ram_gb: 4
        worker_cap: 8
        in_mem_buf_size: 256M
        total_in_mem_cache_size: 256M
        total_mmap_cache_size: 256M
      - name: large
        worker_cap: 16
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

import yaml
from pydantic import BaseModel, Field, ValidationError

from .config_env import AioMode

logger = logging.getLogger(__name__)

MEMINFO_PATH = Path("/proc/meminfo")
FILESYSTEMS_PATH = Path("/proc/filesystems")


class TuningPreset(BaseModel):
    """One RAM tier.  ``max_ram_gb`` is exclusive; None means unbounded."""

    name: str
    max_ram_gb: Optional[int] = Field(default=None, ge=1)
    worker_cap: int = Field(ge=1)
    in_mem_buf_size: Optional[str] = None
    total_in_mem_cache_size: Optional[str] = None
    total_mmap_cache_size: Optional[str] = None


DEFAULT_PRESETS: tuple[TuningPreset, ...] = (
    TuningPreset(
        name="conservative",
        max_ram_gb=4,
        worker_cap=8,
        in_mem_buf_size="256M",
        total_in_mem_cache_size="256M",
        total_mmap_cache_size="256M",
    ),
    TuningPreset(name="moderate", max_ram_gb=8, worker_cap=12),
    TuningPreset(name="max", worker_cap=16),
)


class PresetError(ValueError):
    pass


def load_presets(path: Path) -> tuple[TuningPreset, ...]:
    try:
        payload = yaml.safe_load(path.read_text())
    except FileNotFoundError as exc:
        raise PresetError(f"Preset file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise PresetError(f"Invalid YAML in {path}: {exc}") from exc

    if isinstance(payload, dict):
        payload = payload.get("presets")
    if not isinstance(payload, list) or not payload:
        raise PresetError(f"Preset file must hold a non-empty 'presets' list: {path}")
    try:
        presets = [TuningPreset.model_validate(item) for item in payload]
    except ValidationError as exc:
        raise PresetError(f"Invalid preset in {path}: {exc}") from exc
    return tuple(_order_presets(presets))


def _order_presets(presets: Sequence[TuningPreset]) -> List[TuningPreset]:
    bounded = sorted((p for p in presets if p.max_ram_gb is not None), key=lambda p: p.max_ram_gb)
    unbounded = [p for p in presets if p.max_ram_gb is None]
    if len(unbounded) > 1:
        raise PresetError("Only one preset may omit max_ram_gb")
    return bounded + unbounded


def select_preset(presets: Sequence[TuningPreset], ram_gb: int) -> TuningPreset:
    ordered = _order_presets(presets)
    for preset in ordered:
        if preset.max_ram_gb is None or ram_gb < preset.max_ram_gb:
            return preset
    return ordered[-1]


class HostDiscovery:
    """Reads RAM size and kernel feature availability from ``/proc``."""

    def __init__(self, *, meminfo: Path = MEMINFO_PATH, filesystems: Path = FILESYSTEMS_PATH) -> None:
        self._meminfo = meminfo
        self._filesystems = filesystems

    def available_memory_gb(self) -> int:
        try:
            text = self._meminfo.read_text()
        except OSError:
            logger.warning("Cannot read %s; assuming 0GB RAM", self._meminfo)
            return 0
        for line in text.splitlines():
            if line.startswith("MemTotal:"):
                parts = line.split()
                try:
                    return int(parts[1]) // (1024 * 1024)
                except (IndexError, ValueError):
                    break
        return 0

    def feature_available(self, name: str) -> bool:
        try:
            text = self._filesystems.read_text()
        except OSError:
            return False
        return any(name in line.split() for line in text.splitlines())


@dataclass(frozen=True)
class ResolvedTuning:
    preset: str
    ram_gb: int
    httpd_workers: int
    in_mem_buf_size: str
    total_in_mem_cache_size: str
    total_mmap_cache_size: str
    use_aio: AioMode


def resolve_tuning(settings, discovery: HostDiscovery, presets: Optional[Sequence[TuningPreset]] = None) -> ResolvedTuning:
    """Clamp workers to the RAM tier and downgrade io_uring when missing."""
    if presets is None:
        presets = load_presets(settings.presets_file) if settings.presets_file else DEFAULT_PRESETS
    ram_gb = discovery.available_memory_gb()
    preset = select_preset(presets, ram_gb)
    workers = max(1, min(settings.httpd_workers, preset.worker_cap))
    logger.info("RAM %dGB -> preset=%s workers=%d", ram_gb, preset.name, workers)

    use_aio = AioMode(settings.use_aio)
    if use_aio is AioMode.IO_URING and not discovery.feature_available("io_uring"):
        logger.warning("io_uring not available, switching to libaio (1)")
        use_aio = AioMode.LIBAIO

    return ResolvedTuning(
        preset=preset.name,
        ram_gb=ram_gb,
        httpd_workers=workers,
        in_mem_buf_size=preset.in_mem_buf_size or settings.in_mem_buf_size,
        total_in_mem_cache_size=preset.total_in_mem_cache_size or settings.total_in_mem_cache_size,
        total_mmap_cache_size=preset.total_mmap_cache_size or settings.total_mmap_cache_size,
        use_aio=use_aio,
    )
