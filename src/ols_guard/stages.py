"""Ordered patch stages applied by the optimizer transaction."""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import partial
from typing import Callable, Tuple

from .document import ConfigDocument
from .patching import (
    PatchResult,
    set_in_block,
    set_in_filtered_blocks,
    set_top_level,
    strip_keys_in_filtered_blocks,
)
from .resources import ResolvedTuning
from .scanner import SECURE_LISTENER, HeaderPattern, first_block

PatchStep = Callable[[ConfigDocument], PatchResult]

TOP_LEVEL = "top-level"
LOGGING = "logging"
TUNING = "tuning"
TLS_POLICY = "tls-policy"


@dataclass(frozen=True)
class PatchStage:
    name: str
    steps: Tuple[PatchStep, ...]


def _top(key: str, value: str) -> PatchStep:
    return partial(set_top_level, key=key, value=value)


def _block(pattern: HeaderPattern, key: str, value: str, label: str) -> PatchStep:
    return partial(set_in_block, pattern=pattern, key=key, value=value, label=label)


def build_stages(settings, tuning: ResolvedTuning) -> Tuple[PatchStage, ...]:
    """Top-level, logging, tuning, then TLS policy on secure listeners."""
    top = PatchStage(
        name=TOP_LEVEL,
        steps=(
            _top("serverName", settings.server_name),
            _top("adminEmails", settings.admin_emails),
            _top("httpdWorkers", str(tuning.httpd_workers)),
            _top("cpuAffinity", settings.cpu_affinity),
            _top("enableLVE", settings.enable_lve),
            _top("inMemBufSize", tuning.in_mem_buf_size),
        ),
    )

    errorlog = HeaderPattern("errorlog", settings.error_log_path)
    accesslog = HeaderPattern("accesslog", settings.access_log_path)
    logging_stage = PatchStage(
        name=LOGGING,
        steps=(
            _block(errorlog, "logLevel", settings.server_log_level, "errorlog.logLevel"),
            _block(errorlog, "rollingSize", f"{settings.error_log_rolling_size_mb}M", "errorlog.rollingSize"),
            _block(accesslog, "rollingSize", f"{settings.access_log_rolling_size_mb}M", "accesslog.rollingSize"),
            _block(accesslog, "keepDays", str(settings.access_log_keep_days), "accesslog.keepDays"),
            _block(accesslog, "compressArchive", settings.access_log_compress, "accesslog.compressArchive"),
        ),
    )

    tuning_block = HeaderPattern("tuning")
    tuning_values = (
        ("maxConnections", settings.max_connections),
        ("maxSSLConnections", settings.max_ssl_connections),
        ("sndBufSize", settings.snd_buf_size),
        ("rcvBufSize", settings.rcv_buf_size),
        ("totalInMemCacheSize", tuning.total_in_mem_cache_size),
        ("maxMMapFileSize", settings.max_mmap_file_size),
        ("totalMMapCacheSize", tuning.total_mmap_cache_size),
        ("useAIO", tuning.use_aio.value),
        ("AIOBlockSize", settings.aio_block_size),
    )
    tuning_stage = PatchStage(
        name=TUNING,
        steps=tuple(_block(tuning_block, key, value, f"tuning.{key}") for key, value in tuning_values),
    )

    tls_stage = PatchStage(
        name=TLS_POLICY,
        steps=(
            partial(
                strip_keys_in_filtered_blocks,
                predicate=SECURE_LISTENER,
                keys=settings.tls_strip_keys,
                label="listener.ssl",
            ),
            partial(
                set_in_filtered_blocks,
                predicate=SECURE_LISTENER,
                key="sslProtocol",
                value=settings.tls_protocols,
                label="listener.ssl sslProtocol",
            ),
        ),
    )
    return (top, logging_stage, tuning_stage, tls_stage)


_CHILDREN_RE = re.compile(r"env\s+PHP_LSAPI_CHILDREN=(\S+)")


def lsphp_summary(document: ConfigDocument) -> str:
    """Children/connection setting of the ``extprocessor lsphp`` block."""
    block = first_block(document, HeaderPattern("extprocessor", "lsphp"))
    if block is None:
        return "default"
    max_conns = ""
    for line in document.slice(block.start, block.end):
        match = _CHILDREN_RE.search(line)
        if match:
            return match.group(1)
        parts = line.split()
        if len(parts) >= 2 and parts[0] == "maxConns" and not max_conns:
            max_conns = parts[1]
    if max_conns:
        return f"via maxConns={max_conns}"
    return "default"
