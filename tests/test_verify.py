from __future__ import annotations

import socket
from pathlib import Path

from ols_guard.config import OlsGuardSettings
from ols_guard.verify import EnvironmentVerifier, Severity, count_zombies, port_listening, recent_core_dumps


def _proc(tmp_path: Path) -> Path:
    root = tmp_path / "proc"
    for pid, state in (("1", "S"), ("42", "Z"), ("77", "R")):
        (root / pid).mkdir(parents=True)
        (root / pid / "stat").write_text(f"{pid} (some proc) {state} 1 1 1\n")
    return root


def test_zombies_and_core_dumps_are_counted(tmp_path: Path):
    assert count_zombies(_proc(tmp_path)) == 1
    cores = tmp_path / "cores"
    cores.mkdir()
    (cores / "core.123").write_text("x")
    (cores / "other").write_text("x")
    assert recent_core_dumps(cores) == 1


def test_port_listening_detects_open_socket():
    server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        server.bind(("127.0.0.1", 0))
        server.listen(1)
        assert port_listening(server.getsockname()[1])
    finally:
        server.close()


def test_verifier_warnings_do_not_fail(
    settings: OlsGuardSettings, config_file: Path, tmp_path: Path, make_service
):
    settings = settings.model_copy(update={"verify_ports": (), "verify_disk_paths": ()})
    cores = tmp_path / "cores"
    cores.mkdir()
    (cores / "core.1").write_text("x")

    report = EnvironmentVerifier(
        settings,
        service=make_service(),
        proc_root=_proc(tmp_path),
        core_dump_dir=cores,
    ).run()

    assert report.errors == 0
    assert report.exit_code == 0
    names = {c.name: c.severity for c in report.checks}
    assert names["zombies"] is Severity.WARN
    assert names["core_dumps"] is Severity.WARN
    assert names["syntax"] is Severity.OK


def test_verifier_flags_broken_config(settings: OlsGuardSettings, tmp_path: Path, make_service):
    settings.config_path.write_text("tuning {\n" * 20)
    settings = settings.model_copy(update={"verify_ports": (), "verify_disk_paths": ()})

    report = EnvironmentVerifier(
        settings,
        service=make_service(),
        proc_root=tmp_path / "noproc",
        core_dump_dir=tmp_path,
    ).run()

    assert report.exit_code == 1
    assert any(c.name == "syntax" and c.severity is Severity.ERROR for c in report.checks)
