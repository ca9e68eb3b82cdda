"""Base settings class with paths, thresholds and service identity.

Filesystem locations, retention, validation floors, ownership and the
service restart hook live here.  OlsGuardSettings inherits from this
class and adds the directive values written into the managed document.
"""
from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .config_env import ENV_FILE


class OlsGuardSettingsBase(BaseSettings):
    """Operational half of the ols_guard configuration."""

    model_config = SettingsConfigDict(
        env_prefix="OLS_",
        env_file=ENV_FILE,
        extra="ignore",
    )

    # --- Managed document ---
    config_path: Path = Field(
        default=Path("/usr/local/lsws/conf/httpd_config.conf"),
        description="Path of the managed server configuration",
    )
    min_config_bytes: int = Field(
        default=1024,
        ge=0,
        description="Documents smaller than this are treated as truncated",
    )
    listener_keyword: str = Field(
        default="listener",
        description="Block keyword whose absence triggers the listener warning",
    )
    live_boundary_keyword: str = Field(
        default="virtualhost",
        description=(
            "Block keyword marking the start of the regenerated section. "
            "Everything before its first occurrence is the frozen prefix."
        ),
    )

    # --- Optimizer transaction ---
    backup_dir: Path = Field(
        default=Path("/usr/local/lsws/conf/backups"),
        description="Directory for optimizer snapshots",
    )
    backup_prefix: str = Field(default="httpd_config_", description="Optimizer snapshot name prefix")
    backup_keep: int = Field(
        default=10,
        ge=1,
        description="Number of optimizer snapshots retained (newest first)",
    )
    fingerprint_file: Path = Field(
        default=Path("/usr/local/lsws/conf/.ols_config_sha256"),
        description="Last applied fingerprint written after a successful restart",
    )
    lock_file: Path = Field(
        default=Path("/tmp/ols_guard.lock"),
        description="Host-wide lock shared by optimizer and freeze runs",
    )
    log_file: Optional[Path] = Field(
        default=Path("/var/log/ols_optimize.log"),
        description="Optimizer log file (None disables file logging)",
    )

    # --- Freeze ---
    freeze_dir: Path = Field(
        default=Path("/usr/local/src"),
        description="Directory holding the marker, frozen prefix and fingerprint",
    )
    freeze_backup_dir: Path = Field(
        default=Path("/usr/local/lsws/conf"),
        description="Directory for freeze/enforce snapshots",
    )
    freeze_backup_prefix: str = Field(
        default="httpd_config_backup-",
        description="Freeze snapshot name prefix",
    )
    freeze_backup_max_age_h: float = Field(
        default=24.0,
        gt=0,
        description="Freeze snapshots older than this many hours are pruned",
    )
    merge_min_ratio: float = Field(
        default=0.5,
        gt=0,
        le=1,
        description=(
            "A merged candidate with fewer than this fraction of the live "
            "document's lines is rejected as an extraction anomaly."
        ),
    )
    freeze_log_file: Optional[Path] = Field(
        default=Path("/var/log/cpfence_ols_freeze.log"),
        description="Freeze log file (None disables file logging)",
    )
    restore_owner: str = Field(default="lsadm", description="Owner of the merged config")
    restore_group: str = Field(default="www-data", description="Group of the merged config")
    restore_mode: int = Field(default=0o640, description="File mode of the merged config")

    # --- Service ---
    service_name: str = Field(default="lshttpd", description="systemd unit restarted on change")
    restart_command: Optional[str] = Field(
        default=None,
        description=(
            "Explicit restart command (e.g. '/usr/local/lsws/bin/lswsctrl restart'). "
            "When unset, 'systemctl restart <service_name>' is used."
        ),
    )
    restart_timeout_s: float = Field(
        default=120.0,
        gt=0,
        description="Upper bound for one restart call",
    )

    # --- Host ---
    presets_file: Optional[Path] = Field(
        default=None,
        description="YAML file overriding the RAM tier -> tuning preset table",
    )
    apply_kernel_limits: bool = Field(
        default=False,
        description="Write the sysctl drop-in before patching",
    )
    sysctl_dropin: Path = Field(
        default=Path("/etc/sysctl.d/99-ols.conf"),
        description="Location of the kernel limits drop-in",
    )
    log_level: str = Field(default="INFO", description="Root log level")

    # --- Verify ---
    verify_ports: tuple[int, ...] = Field(
        default=(80, 443),
        description="At least one of these ports must accept connections",
    )
    verify_disk_paths: tuple[Path, ...] = Field(
        default=(Path("/usr/local/lsws"), Path("/tmp"), Path("/var/log")),
        description="Paths whose filesystem usage is checked",
    )
    verify_disk_threshold_pct: int = Field(
        default=90,
        ge=1,
        le=100,
        description="Disk usage percentage that raises a warning",
    )
    verify_log_file: Optional[Path] = Field(
        default=Path("/var/log/verify_ols_environment.log"),
        description="Verifier log file (None disables file logging)",
    )

    @property
    def freeze_marker(self) -> Path:
        return self.freeze_dir / ".ols_frozen"

    @property
    def frozen_prefix_file(self) -> Path:
        return self.freeze_dir / "ols_top_config_frozen.conf"

    @property
    def frozen_fingerprint_file(self) -> Path:
        return self.freeze_dir / "ols_config_frozen.sha256"
