"""
ols_guard Configuration

Loads OLS_ prefixed environment variables using pydantic-settings.
Directive values default to the production tuning profile; any value set
to an empty string is skipped by the patch stages instead of written.
"""
from __future__ import annotations

from pydantic import Field, field_validator

from .config_base import OlsGuardSettingsBase
from .config_env import ENV_FILE, AioMode, RunMode

__all__ = ["ENV_FILE", "AioMode", "OlsGuardSettings", "RunMode"]


class OlsGuardSettings(OlsGuardSettingsBase):
    """Full configuration: operational base plus directive targets."""

    # --- Top-level directives ---
    server_name: str = Field(default="your.host.name", description="serverName")
    admin_emails: str = Field(default="mail@host.name", description="adminEmails")
    httpd_workers: int = Field(
        default=16,
        ge=1,
        description="Requested httpdWorkers; clamped to the RAM tier cap",
    )
    cpu_affinity: str = Field(default="1", description="cpuAffinity")
    enable_lve: str = Field(default="0", description="enableLVE")
    in_mem_buf_size: str = Field(default="384M", description="inMemBufSize")

    # --- Tuning block ---
    max_connections: str = Field(default="100000", description="tuning.maxConnections")
    max_ssl_connections: str = Field(default="100000", description="tuning.maxSSLConnections")
    snd_buf_size: str = Field(default="512k", description="tuning.sndBufSize")
    rcv_buf_size: str = Field(default="512k", description="tuning.rcvBufSize")
    total_in_mem_cache_size: str = Field(default="512M", description="tuning.totalInMemCacheSize")
    max_mmap_file_size: str = Field(default="64M", description="tuning.maxMMapFileSize")
    total_mmap_cache_size: str = Field(default="512M", description="tuning.totalMMapCacheSize")
    use_aio: AioMode = Field(
        default=AioMode.IO_URING,
        description=(
            "tuning.useAIO: 0=off, 1=libaio, 2=posix, 3=io_uring. "
            "io_uring falls back to libaio when the kernel lacks it."
        ),
    )
    aio_block_size: str = Field(
        default="3",
        description="tuning.AIOBlockSize: 0=64K, 1=128K, 2=256K, 3=512K, 4=1M",
    )

    # --- Log blocks ---
    server_log_level: str = Field(default="NOTICE", description="errorlog.logLevel")
    error_log_rolling_size_mb: int = Field(default=100, ge=1, description="errorlog.rollingSize (MB)")
    access_log_rolling_size_mb: int = Field(default=500, ge=1, description="accesslog.rollingSize (MB)")
    access_log_keep_days: int = Field(default=14, ge=1, description="accesslog.keepDays")
    access_log_compress: str = Field(default="1", description="accesslog.compressArchive")
    error_log_path: str = Field(default="logs/error.log", description="errorlog block token")
    access_log_path: str = Field(default="logs/access.log", description="accesslog block token")

    # --- TLS on secure listeners ---
    tls_protocols: str = Field(default="13,12", description="sslProtocol on 'secure 1' listeners")
    tls_strip_keys: tuple[str, ...] = Field(
        default=("sslCert", "sslKey", "sslCertChain"),
        description="Keys removed from secure listeners (certs come from vhosts)",
    )

    @field_validator("log_level", "server_log_level", mode="before")
    @classmethod
    def _normalise_level(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("use_aio", mode="before")
    @classmethod
    def _normalise_aio(cls, v):
        if isinstance(v, int):
            return str(v)
        if isinstance(v, str):
            return v.strip()
        return v
