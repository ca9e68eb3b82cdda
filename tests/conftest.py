from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
SRC_PATH = os.path.join(PROJECT_ROOT, "src")

if SRC_PATH not in sys.path:
    sys.path.insert(0, SRC_PATH)

# Keep tests deterministic: do not load host-local OLS_* values.
os.environ["ENV"] = "env.test"
for key in list(os.environ.keys()):
    if key.startswith("OLS_"):
        os.environ.pop(key, None)

from ols_guard.config import OlsGuardSettings  # noqa: E402

SAMPLE_CONFIG = """\
serverName                old.host
user                      nobody
group                     nogroup
httpdWorkers              4
cpuAffinity               0
inMemBufSize              60M

errorlog logs/error.log {
  logLevel                DEBUG
  debugLevel              0
  rollingSize             10M
  enableStderrLog         1
}

accesslog logs/access.log {
  rollingSize             10M
  keepDays                30
}

tuning {
  maxConnections          1000
  maxSSLConnections       1000
  sndBufSize              0
  rcvBufSize              0
}

extprocessor lsphp {
  type                    lsapi
  address                 uds://tmp/lshttpd/lsphp.sock
  maxConns                10
  env                     PHP_LSAPI_CHILDREN=10
}

listener Default {
  address                 *:80
  secure                  0
  map                     Example *
}

listener SSL
{
  address                 *:443
  secure                  1
  keyFile                 /usr/local/lsws/admin/conf/webadmin.key
  certFile                /usr/local/lsws/admin/conf/webadmin.crt
  sslCert                 /etc/ssl/old.crt
  sslKey                  /etc/ssl/old.key
  sslCertChain            1
}

virtualhost Example {
  vhRoot                  /var/www/example/
  configFile              conf/vhosts/example/vhconf.conf
  allowSymbolLink         1
  enableScript            1
}

virtualhost Other {
  vhRoot                  /var/www/other/
  configFile              conf/vhosts/other/vhconf.conf
}
"""


@pytest.fixture(autouse=True)
def _restore_environment() -> None:
    """Prevent environment mutations from leaking across tests."""
    snapshot = os.environ.copy()
    try:
        yield
    finally:
        os.environ.clear()
        os.environ.update(snapshot)


class FakeService:
    """Records restarts; each call pops the next scripted outcome."""

    def __init__(self, outcomes=(), *, available: bool = True, active: bool = True) -> None:
        self.outcomes = list(outcomes)
        self.restarts = 0
        self._available = available
        self._active = active

    def available(self) -> bool:
        return self._available

    def restart(self) -> bool:
        self.restarts += 1
        return self.outcomes.pop(0) if self.outcomes else True

    def is_active(self) -> bool:
        return self._active


@pytest.fixture
def make_service():
    return FakeService


@pytest.fixture
def sample_text() -> str:
    return SAMPLE_CONFIG


@pytest.fixture
def settings(tmp_path: Path) -> OlsGuardSettings:
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    return OlsGuardSettings(
        config_path=conf_dir / "httpd_config.conf",
        backup_dir=conf_dir / "backups",
        fingerprint_file=conf_dir / ".ols_config_sha256",
        lock_file=tmp_path / "ols_guard.lock",
        log_file=None,
        freeze_log_file=None,
        verify_log_file=None,
        freeze_dir=tmp_path / "freeze",
        freeze_backup_dir=conf_dir,
        min_config_bytes=64,
    )


@pytest.fixture
def config_file(settings: OlsGuardSettings, sample_text: str) -> Path:
    settings.config_path.write_text(sample_text)
    return settings.config_path
