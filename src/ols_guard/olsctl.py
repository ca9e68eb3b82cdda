from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Optional

from ols_guard.config import OlsGuardSettings, RunMode
from ols_guard.errors import ConfigGuardError
from ols_guard.freeze import FreezeManager
from ols_guard.kernel import apply_kernel_limits
from ols_guard.resources import HostDiscovery, PresetError, resolve_tuning
from ols_guard.service import ServiceController, build_service
from ols_guard.stages import build_stages
from ols_guard.transaction import TransactionController
from ols_guard.verify import EnvironmentVerifier

logger = logging.getLogger("ols_guard")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _print_json(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, sort_keys=True, default=str))


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="OpenLiteSpeed config optimizer and freeze control")
    parser.add_argument(
        "mode",
        nargs="?",
        default=RunMode.RUN.value,
        choices=[m.value for m in RunMode],
        help="run (default): optimize; freeze/unfreeze/status/enforce: top-of-config freeze; verify: health checks",
    )
    parser.add_argument("--config", default=None, help="Managed config path (overrides OLS_CONFIG_PATH).")
    parser.add_argument("--json", action="store_true", help="Emit JSON output")
    return parser


def _log_file_for(settings: OlsGuardSettings, mode: RunMode) -> Optional[Path]:
    if mode is RunMode.RUN:
        return settings.log_file
    if mode is RunMode.VERIFY:
        return settings.verify_log_file
    return settings.freeze_log_file


def _configure_logging(settings: OlsGuardSettings, log_file: Optional[Path]) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    file_error: Optional[OSError] = None
    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(log_file))
        except OSError as exc:
            file_error = exc
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )
    if file_error is not None:
        logger.warning("Logging to stdout only; cannot open %s: %s", log_file, file_error)


def _run_optimizer(settings: OlsGuardSettings, service: ServiceController, discovery: HostDiscovery) -> dict[str, Any]:
    tuning = resolve_tuning(settings, discovery)
    if settings.apply_kernel_limits:
        apply_kernel_limits(settings.sysctl_dropin)
    controller = TransactionController(settings, service=service)
    result = controller.run(build_stages(settings, tuning))
    payload = asdict(result)
    payload["state"] = result.state.value
    payload["history"] = [state.value for state in result.history]
    payload["changes"] = [str(change) for change in result.changes]
    payload["preset"] = tuning.preset
    return payload


def main(
    argv: list[str] | None = None,
    *,
    service: Optional[ServiceController] = None,
    discovery: Optional[HostDiscovery] = None,
) -> int:
    args = _parser().parse_args(argv)
    mode = RunMode(args.mode)
    overrides: dict[str, Any] = {}
    if args.config:
        overrides["config_path"] = Path(args.config)
    settings = OlsGuardSettings(**overrides)
    _configure_logging(settings, _log_file_for(settings, mode))

    service = service or build_service(settings)
    discovery = discovery or HostDiscovery()

    try:
        if mode is RunMode.RUN:
            payload = _run_optimizer(settings, service, discovery)
            exit_code = payload["exit_code"]
            if args.json:
                _print_json(payload)
            else:
                print(f"state={payload['state']} exit={exit_code} changes={len(payload['changes'])}")
            return exit_code

        if mode is RunMode.VERIFY:
            report = EnvironmentVerifier(settings, service=service).run()
            if args.json:
                _print_json(
                    {
                        "ok": report.exit_code == 0,
                        "errors": report.errors,
                        "warnings": report.warnings,
                        "checks": [asdict(c) for c in report.checks],
                    }
                )
            else:
                print(f"errors={report.errors} warnings={report.warnings}")
            return report.exit_code

        manager = FreezeManager(settings, service=service)
        if mode is RunMode.STATUS:
            status = manager.status()
            if args.json:
                _print_json(asdict(status))
            elif status.frozen:
                print("Status: FROZEN")
                print(f"  Marker: {status.marker}")
                print(f"  Frozen config: {status.prefix_path}")
                print(f"  Lines: {status.prefix_lines}")
            else:
                print("Status: NOT FROZEN")
            return 0

        if mode is RunMode.FREEZE:
            result = manager.freeze()
        elif mode is RunMode.UNFREEZE:
            result = manager.unfreeze()
        else:
            result = manager.enforce()
        payload = asdict(result)
        payload["outcome"] = result.outcome.value
        if args.json:
            _print_json({"ok": True, **payload})
        else:
            print(f"outcome={payload['outcome']}")
        return 0
    except (ConfigGuardError, PresetError) as exc:
        stage = getattr(exc, "stage", None)
        fatal = getattr(exc, "fatal", True)
        if fatal:
            logger.error("Fatal (%s): %s", stage or mode.value, exc)
        if args.json:
            _print_json({"ok": not fatal, "error": str(exc), "stage": stage})
        else:
            print(f"error: {exc}", file=sys.stderr)
        return 1 if fatal else 0


if __name__ == "__main__":
    raise SystemExit(main())
