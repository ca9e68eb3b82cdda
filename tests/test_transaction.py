from __future__ import annotations

from pathlib import Path

import pytest

from ols_guard.config import AioMode, OlsGuardSettings
from ols_guard.document import ConfigDocument, fingerprint_file, line_key
from ols_guard.locking import host_lock
from ols_guard.patching import PatchResult
from ols_guard.resources import ResolvedTuning
from ols_guard.scanner import top_level_line_numbers
from ols_guard.stages import PatchStage, build_stages, lsphp_summary
from ols_guard.transaction import TransactionController, TxState, diff_preview


def _tuning() -> ResolvedTuning:
    return ResolvedTuning(
        preset="max",
        ram_gb=16,
        httpd_workers=8,
        in_mem_buf_size="384M",
        total_in_mem_cache_size="512M",
        total_mmap_cache_size="512M",
        use_aio=AioMode.LIBAIO,
    )


def _break_braces(doc: ConfigDocument) -> PatchResult:
    return PatchResult(document=doc.with_lines(doc.lines + ("dangling {\n",)))


def _explode(doc: ConfigDocument) -> PatchResult:
    raise RuntimeError("disk on fire")


def test_run_applies_all_stages_and_restarts(settings: OlsGuardSettings, config_file: Path, make_service):
    service = make_service()
    controller = TransactionController(settings, service=service)

    result = controller.run(build_stages(settings, _tuning()))

    assert result.state is TxState.RESTARTED
    assert result.exit_code == 0
    assert service.restarts == 1
    assert result.history[:3] == (TxState.IDLE, TxState.LOCK_ACQUIRED, TxState.PRE_VALIDATED)
    assert result.history.count(TxState.PATCHED) == 4

    text = config_file.read_text()
    doc = ConfigDocument.from_text(text)
    server_lines = [doc.line(n) for n in top_level_line_numbers(doc) if line_key(doc.line(n)) == "serverName"]
    assert [line.split() for line in server_lines] == [["serverName", "your.host.name"]]
    assert doc.line(1).split() == ["enableLVE", "0"]
    assert "old.host" not in text
    assert "sslCert " not in text and "sslKey " not in text and "sslCertChain" not in text
    assert "sslProtocol" in text
    assert "useAIO" in text
    assert settings.fingerprint_file.read_text().strip() == fingerprint_file(config_file)
    assert result.after_fingerprint == fingerprint_file(config_file)
    assert result.snapshot is not None and result.snapshot.exists()
    assert any(str(c) == "tuning.maxConnections => 100000" for c in result.changes)


def test_second_run_is_unchanged_and_does_not_restart(
    settings: OlsGuardSettings, config_file: Path, make_service
):
    service = make_service()
    controller = TransactionController(settings, service=service)
    controller.run(build_stages(settings, _tuning()))
    after_first = config_file.read_bytes()

    result = controller.run(build_stages(settings, _tuning()))

    assert result.state is TxState.UNCHANGED
    assert result.exit_code == 0
    assert service.restarts == 1
    assert config_file.read_bytes() == after_first
    assert result.changes == ()


def test_broken_config_on_entry_aborts_without_touching_it(
    settings: OlsGuardSettings, sample_text: str, make_service
):
    broken = sample_text + "listener Dangling {\n"
    settings.config_path.write_text(broken)
    service = make_service()

    result = TransactionController(settings, service=service).run(build_stages(settings, _tuning()))

    assert result.state is TxState.ABORTED
    assert result.exit_code == 1
    assert result.failed_stage == "pre-validation"
    assert settings.config_path.read_text() == broken
    assert service.restarts == 0


def test_fault_after_stage_two_rolls_back(settings: OlsGuardSettings, config_file: Path, make_service):
    original = config_file.read_bytes()
    before = fingerprint_file(config_file)
    stages = list(build_stages(settings, _tuning()))
    stages.insert(2, PatchStage(name="fault", steps=(_break_braces,)))
    service = make_service()

    result = TransactionController(settings, service=service).run(stages)

    assert result.state is TxState.ROLLED_BACK
    assert result.exit_code == 1
    assert result.failed_stage == "fault"
    assert config_file.read_bytes() == original
    assert result.before_fingerprint == before
    assert not settings.fingerprint_file.exists()
    assert service.restarts == 0


def test_unexpected_exception_restores_and_propagates(
    settings: OlsGuardSettings, config_file: Path, make_service
):
    original = config_file.read_bytes()
    stages = list(build_stages(settings, _tuning()))
    stages.insert(1, PatchStage(name="explode", steps=(_explode,)))

    with pytest.raises(RuntimeError, match="disk on fire"):
        TransactionController(settings, service=make_service()).run(stages)

    assert config_file.read_bytes() == original


def test_restart_failure_restores_snapshot_and_retries(
    settings: OlsGuardSettings, config_file: Path, make_service
):
    original = config_file.read_bytes()
    service = make_service([False, True])

    result = TransactionController(settings, service=service).run(build_stages(settings, _tuning()))

    assert result.state is TxState.ROLLED_BACK
    assert result.failed_stage == "restart"
    assert result.exit_code == 1
    assert service.restarts == 2
    assert config_file.read_bytes() == original
    assert not settings.fingerprint_file.exists()


def test_lock_contention_is_a_successful_noop(settings: OlsGuardSettings, config_file: Path, make_service):
    original = config_file.read_bytes()
    service = make_service()

    with host_lock(settings.lock_file):
        result = TransactionController(settings, service=service).run(build_stages(settings, _tuning()))

    assert result.state is TxState.SKIPPED
    assert result.exit_code == 0
    assert config_file.read_bytes() == original
    assert service.restarts == 0


def test_missing_preconditions_abort(settings: OlsGuardSettings, make_service):
    result = TransactionController(settings, service=make_service()).run(())
    assert result.state is TxState.ABORTED
    assert result.exit_code == 1
    assert "Config not found" in result.error

    settings.config_path.write_text("tuning {\n}\n" * 10)
    result = TransactionController(settings, service=make_service(available=False)).run(())
    assert result.state is TxState.ABORTED
    assert "Service controller" in result.error


def test_backups_are_pruned_to_keep_count(config_file: Path, settings: OlsGuardSettings, make_service):
    settings = settings.model_copy(update={"backup_keep": 2})
    controller = TransactionController(settings, service=make_service())
    for _ in range(4):
        controller.run(())
    assert len(list(settings.backup_dir.glob("httpd_config_*.conf"))) == 2


def test_diff_preview_and_lsphp_summary(sample_text: str):
    rows = diff_preview("a\nb\n", "a\nc\n")
    assert rows == ["-b", "+c"]
    assert lsphp_summary(ConfigDocument.from_text(sample_text)) == "10"
    assert lsphp_summary(ConfigDocument.from_text("extprocessor lsphp {\n  maxConns 7\n}\n")) == "via maxConns=7"
    assert lsphp_summary(ConfigDocument.from_text("tuning {\n}\n")) == "default"
