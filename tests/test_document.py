from __future__ import annotations

from pathlib import Path

import pytest

from ols_guard.config import OlsGuardSettings
from ols_guard.document import ConfigDocument, split_lines
from ols_guard.errors import StructuralCorruption
from ols_guard.stages import PatchStage
from ols_guard.transaction import TransactionController, TxState


def test_only_newline_ends_a_line():
    text = "serverName a\x0cb\r\nuser nobody\x85 x\nlast"
    doc = ConfigDocument.from_text(text)

    assert doc.lines == ("serverName a\x0cb\r\n", "user nobody\x85 x\n", "last")
    assert doc.line_count == 3
    assert doc.text == text
    assert split_lines("") == ()
    assert split_lines("a\n\n") == ("a\n", "\n")


def test_load_rejects_non_utf8(tmp_path: Path):
    path = tmp_path / "httpd_config.conf"
    path.write_bytes(b"serverName caf\xe9\n")

    with pytest.raises(StructuralCorruption, match="not valid UTF-8") as excinfo:
        ConfigDocument.load(path)
    assert excinfo.value.stage == "load"


def test_non_utf8_config_aborts_run_untouched(settings: OlsGuardSettings, make_service):
    raw = b"serverName caf\xe9\n" * 20
    settings.config_path.write_bytes(raw)
    service = make_service()

    result = TransactionController(settings, service=service).run([PatchStage(name="noop", steps=())])

    assert result.state is TxState.ABORTED
    assert result.exit_code == 1
    assert result.failed_stage == "load"
    assert settings.config_path.read_bytes() == raw
    assert service.restarts == 0
