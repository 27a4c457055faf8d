"""CLI entry point for the easytest fixture runner."""

import argparse
import asyncio
import json
import logging
import signal
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from easytest.directives import load_fixture
from easytest.errors import ConfigError, SettingsError
from easytest.executor import Executor
from easytest.models.result import FixtureResult
from easytest.runner import TestRunner
from easytest.settings import DEFAULT_SETTINGS_FILE, RunnerSettings, load_settings
from easytest.symbols import parse_symbol_assignments

STATUS_SYMBOLS = {
    "passed": "✅",
    "failed": "❌",
    "error": "❗",
    "skipped": "⏭️",
}

EXIT_PASSED = 0
EXIT_FAILED = 1
EXIT_ERROR = 2


def log_results_summary(
    log: logging.Logger, fixture_results: Sequence[FixtureResult]
) -> None:
    """Log a formatted summary of config results with failure details."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for fixture_result in fixture_results:
        if fixture_result.error is not None:
            log.info(
                "%s %s: error (%s)",
                STATUS_SYMBOLS["error"],
                fixture_result.path,
                fixture_result.error,
            )
            continue

        for result in fixture_result.results:
            symbol = STATUS_SYMBOLS.get(result.status, "?")
            log.info(
                "%s %s/%s: %s (%.2fs)",
                symbol,
                fixture_result.path,
                result.name,
                result.status,
                result.duration,
            )
            if result.message:
                log.info("  Message: %s", result.message)
            if result.stdout_tail:
                log.info("  stdout (tail):\n%s", _indent(result.stdout_tail))
            if result.stderr_tail:
                log.info("  stderr (tail):\n%s", _indent(result.stderr_tail))


def _indent(text: str) -> str:
    return "\n".join(f"    {line}" for line in text.splitlines())


def format_output(fixture_results: Sequence[FixtureResult]) -> dict[str, Any]:
    """Format fixture results for JSON output.

    A fixture that could not be parsed contributes a single error entry
    without a config name.
    """
    all_results: list[dict[str, Any]] = []
    for fixture_result in fixture_results:
        if fixture_result.error is not None:
            all_results.append(
                {
                    "fixture": fixture_result.path,
                    "config": None,
                    "status": "error",
                    "duration": 0.0,
                    "message": fixture_result.error,
                    "exit_code": None,
                }
            )
            continue

        for result in fixture_result.results:
            all_results.append(
                {
                    "fixture": fixture_result.path,
                    "config": result.name,
                    "status": result.status,
                    "duration": result.duration,
                    "message": result.message,
                    "exit_code": result.exit_code,
                }
            )

    return {
        "total": len(all_results),
        "passed": sum(1 for r in all_results if r["status"] == "passed"),
        "failed": sum(1 for r in all_results if r["status"] == "failed"),
        "errors": sum(1 for r in all_results if r["status"] == "error"),
        "skipped": sum(1 for r in all_results if r["status"] == "skipped"),
        "results": all_results,
    }


def exit_code_for(fixture_results: Sequence[FixtureResult]) -> int:
    """Exit code of a run: errors win over failures."""
    statuses = {
        result.status
        for fixture_result in fixture_results
        for result in fixture_result.results
    }
    if "error" in statuses or any(r.error is not None for r in fixture_results):
        return EXIT_ERROR
    if statuses & {"failed", "skipped"}:
        return EXIT_FAILED
    return EXIT_PASSED


async def resolve_settings(
    settings_path: Path | None, overrides: Mapping[str, Any]
) -> RunnerSettings:
    """Load settings from file (if any) and apply command line overrides."""
    if settings_path is not None:
        settings = await load_settings(settings_path)
    elif Path(DEFAULT_SETTINGS_FILE).is_file():
        settings = await load_settings(Path(DEFAULT_SETTINGS_FILE))
    else:
        settings = RunnerSettings()

    update = {key: value for key, value in overrides.items() if value is not None}
    if "symbols" in update:
        update["symbols"] = {**settings.symbols, **update["symbols"]}

    return RunnerSettings.model_validate({**settings.model_dump(), **update})


async def run(
    fixture_paths: Sequence[Path],
    settings: RunnerSettings,
    config_filter: str | None = None,
) -> int:
    """Run the fixtures and return the exit code."""
    log = logging.getLogger("easytest")

    runner = TestRunner(
        executor=Executor(
            timeout=settings.timeout,
            allowed_environment=tuple(settings.environment),
        ),
        symbols=dict(settings.symbols),
        binary_dir=settings.binary_dir,
        jobs=settings.jobs,
        config_filter=config_filter,
        fail_fast=settings.fail_fast,
    )

    loop = asyncio.get_running_loop()
    handled: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _abort, log, runner, sig)
        except (NotImplementedError, RuntimeError):
            continue
        handled.append(sig)

    try:
        fixture_results = await runner.run_fixtures(fixture_paths)
    finally:
        for sig in handled:
            loop.remove_signal_handler(sig)

    log_results_summary(log, fixture_results)
    print(json.dumps(format_output(fixture_results), indent=2))

    return exit_code_for(fixture_results)


def _abort(log: logging.Logger, runner: TestRunner, sig: signal.Signals) -> None:
    log.warning("Received %s, skipping remaining configs", sig.name)
    runner.abort.set()


async def show(fixture_path: Path, settings: RunnerSettings) -> int:
    """Print the parsed configuration of a fixture as JSON."""
    log = logging.getLogger("easytest")
    binary_dir = settings.binary_dir or fixture_path.parent

    try:
        fixture = await load_fixture(
            fixture_path,
            binary=str(binary_dir / fixture_path.stem),
            symbols=settings.symbols,
        )
    except (ConfigError, OSError) as e:
        log.error("Cannot parse fixture %s: %s", fixture_path, e)
        return EXIT_ERROR

    print(json.dumps(fixture.model_dump(mode="json"), indent=2))
    return EXIT_PASSED


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        prog="easytest",
        description="Run test fixtures configured by their embedded directives",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--settings",
        type=Path,
        default=None,
        help=f"YAML settings file (default: ./{DEFAULT_SETTINGS_FILE} if present)",
    )
    common.add_argument(
        "--binary-dir",
        type=Path,
        default=None,
        help="Directory holding the built binaries (default: fixture directory)",
    )
    common.add_argument(
        "--symbol",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="Placeholder replacement, may be repeated",
    )

    run_parser = subparsers.add_parser(
        "run", parents=[common], help="Run fixtures and verify their output"
    )
    run_parser.add_argument("fixtures", type=Path, nargs="+", help="Fixture files")
    run_parser.add_argument(
        "--timeout", type=float, default=None, help="Per-config timeout in seconds"
    )
    run_parser.add_argument(
        "--jobs", type=int, default=None, help="Fixtures to run in parallel"
    )
    run_parser.add_argument(
        "--filter",
        dest="config_filter",
        default=None,
        metavar="NAME",
        help="Only run configs whose name matches (glob)",
    )
    run_parser.add_argument(
        "--fail-fast",
        action="store_true",
        default=None,
        help="Skip remaining configs after the first failure",
    )

    show_parser = subparsers.add_parser(
        "show", parents=[common], help="Print the parsed configuration of a fixture"
    )
    show_parser.add_argument("fixture", type=Path, help="Fixture file")

    return parser


async def dispatch(args: argparse.Namespace) -> int:
    """Resolve settings and run the selected subcommand."""
    log = logging.getLogger("easytest")

    try:
        overrides: dict[str, Any] = {
            "binary_dir": args.binary_dir,
            "symbols": parse_symbol_assignments(args.symbol) or None,
        }
        if args.command == "run":
            overrides.update(
                timeout=args.timeout, jobs=args.jobs, fail_fast=args.fail_fast
            )
        settings = await resolve_settings(args.settings, overrides)
    except (FileNotFoundError, ValueError) as e:
        log.error("Invalid settings: %s", e)
        return EXIT_ERROR

    if args.command == "show":
        return await show(args.fixture, settings)
    return await run(args.fixtures, settings, config_filter=args.config_filter)


def main(argv: Sequence[str] | None = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    sys.exit(asyncio.run(dispatch(args)))


if __name__ == "__main__":  # pragma: no cover
    main()
