from __future__ import annotations

from pathlib import Path

import pytest

from ols_guard.config import AioMode, OlsGuardSettings
from ols_guard.resources import (
    DEFAULT_PRESETS,
    HostDiscovery,
    PresetError,
    load_presets,
    resolve_tuning,
    select_preset,
)


def _discovery(tmp_path: Path, *, mem_kb: int, filesystems: str) -> HostDiscovery:
    meminfo = tmp_path / "meminfo"
    meminfo.write_text(f"MemTotal:       {mem_kb} kB\nMemFree:        1024 kB\n")
    fs = tmp_path / "filesystems"
    fs.write_text(filesystems)
    return HostDiscovery(meminfo=meminfo, filesystems=fs)


@pytest.mark.parametrize(
    ("ram_gb", "expected"),
    [(0, "conservative"), (3, "conservative"), (4, "moderate"), (7, "moderate"), (8, "max"), (64, "max")],
)
def test_select_preset_tiers(ram_gb: int, expected: str):
    assert select_preset(DEFAULT_PRESETS, ram_gb).name == expected


def test_discovery_reads_proc_files(tmp_path: Path):
    discovery = _discovery(tmp_path, mem_kb=16 * 1024 * 1024, filesystems="nodev\tproc\nnodev\tio_uring\n")
    assert discovery.available_memory_gb() == 16
    assert discovery.feature_available("io_uring")
    assert not discovery.feature_available("btrfs")


def test_resolve_tuning_small_host_caps_workers_and_downgrades_aio(tmp_path: Path):
    settings = OlsGuardSettings(httpd_workers=16, use_aio="3")
    discovery = _discovery(tmp_path, mem_kb=2 * 1024 * 1024, filesystems="nodev\tproc\n")

    tuning = resolve_tuning(settings, discovery)

    assert tuning.preset == "conservative"
    assert tuning.httpd_workers == 8
    assert tuning.in_mem_buf_size == "256M"
    assert tuning.total_mmap_cache_size == "256M"
    assert tuning.use_aio is AioMode.LIBAIO


def test_resolve_tuning_keeps_configured_buffers_on_large_host(tmp_path: Path):
    settings = OlsGuardSettings(httpd_workers=6)
    discovery = _discovery(tmp_path, mem_kb=32 * 1024 * 1024, filesystems="nodev\tio_uring\n")

    tuning = resolve_tuning(settings, discovery)

    assert tuning.httpd_workers == 6
    assert tuning.in_mem_buf_size == settings.in_mem_buf_size
    assert tuning.use_aio is AioMode.IO_URING


def test_load_presets_from_yaml(tmp_path: Path):
    path = tmp_path / "presets.yaml"
    path.write_text(
        "presets:\n"
        "  - name: big\n"
        "    worker_cap: 32\n"
        "  - name: tiny\n"
        "    max_ram_gb: 2\n"
        "    worker_cap: 2\n"
        "    in_mem_buf_size: 64M\n"
    )
    presets = load_presets(path)
    assert [p.name for p in presets] == ["tiny", "big"]
    assert select_preset(presets, 1).in_mem_buf_size == "64M"
    assert select_preset(presets, 100).worker_cap == 32


def test_load_presets_rejects_bad_entries(tmp_path: Path):
    path = tmp_path / "presets.yaml"
    path.write_text("presets:\n  - name: broken\n    worker_cap: 0\n")
    with pytest.raises(PresetError, match="Invalid preset"):
        load_presets(path)
