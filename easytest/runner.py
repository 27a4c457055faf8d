"""Test runner coordinating parsing, execution and verification of fixtures."""

import asyncio
import fnmatch
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from easytest.directives import load_fixture
from easytest.errors import ConfigError, ExecutionTimeoutError, SpawnFailureError
from easytest.executor import Executor
from easytest.models.fixture import SourceFixture, TestConfig
from easytest.models.result import ConfigResult, FixtureResult
from easytest.verifier import verify

log = logging.getLogger(__name__)

TAIL_LINES = 20


def tail(text: str, lines: int = TAIL_LINES) -> str:
    """Return the last ``lines`` lines of ``text``."""
    return "\n".join(text.rstrip("\n").splitlines()[-lines:])


@dataclass(frozen=True, kw_only=True)
class TestRunner:
    """Runs fixtures in parallel and the configs of each fixture in sequence.

    Setting ``abort`` stops the run between configs and between fixtures;
    everything not yet started is reported as skipped.
    """

    __test__ = False

    executor: Executor
    symbols: Mapping[str, str] = field(default_factory=dict)
    binary_dir: Path | None = None
    jobs: int = 1
    config_filter: str | None = None
    fail_fast: bool = False
    abort: asyncio.Event = field(default_factory=asyncio.Event)

    async def run_fixtures(self, paths: Sequence[Path]) -> Sequence[FixtureResult]:
        """Run every fixture, at most ``jobs`` at a time.

        Args:
            paths: Fixture source files

        Returns:
            One result per fixture, in the order of ``paths``

        """
        if not paths:
            log.info("No fixtures provided")
            return []

        log.info("Running %d fixture(s) with %d job(s)...", len(paths), self.jobs)
        semaphore = asyncio.Semaphore(self.jobs)

        async def bounded(path: Path) -> FixtureResult:
            async with semaphore:
                return await self.run_fixture(path)

        results = await asyncio.gather(
            *(bounded(path) for path in paths), return_exceptions=True
        )
        log.info("Fixture execution completed")

        return self._process_results(paths, results)

    def _process_results(
        self,
        paths: Sequence[Path],
        results: Sequence[FixtureResult | BaseException],
    ) -> Sequence[FixtureResult]:
        """Turn unexpected exceptions into error results."""
        final_results: list[FixtureResult] = []

        for path, result in zip(paths, results, strict=True):
            if isinstance(result, FixtureResult):
                final_results.append(result)
            elif isinstance(result, Exception):
                log.error("Fixture %s failed: %s", path, result, exc_info=result)
                final_results.append(FixtureResult(path=str(path), error=str(result)))
            else:
                raise result

        return final_results

    def binary_for(self, path: Path) -> str:
        """Path of the binary built from the fixture at ``path``."""
        directory = self.binary_dir if self.binary_dir is not None else path.parent
        return str(directory / path.stem)

    def select_configs(self, fixture: SourceFixture) -> Sequence[TestConfig]:
        """Configs of the fixture matching the name filter, in CONFIGS order."""
        if self.config_filter is None:
            return list(fixture.configs.values())
        return [
            config
            for name, config in fixture.configs.items()
            if fnmatch.fnmatchcase(name, self.config_filter)
        ]

    async def run_fixture(self, path: Path) -> FixtureResult:
        """Parse one fixture and run its configs one after another."""
        log.debug("Parsing fixture %s", path)
        try:
            fixture = await load_fixture(
                path, binary=self.binary_for(path), symbols=self.symbols
            )
        except (ConfigError, OSError) as e:
            log.error("Cannot parse fixture %s: %s", path, e)
            return FixtureResult(path=str(path), error=str(e))

        configs = self.select_configs(fixture)
        log.info("Fixture %s: running %d config(s)", fixture.name, len(configs))

        results: list[ConfigResult] = []
        for config in configs:
            if self.abort.is_set():
                log.info("Skipping %s/%s: run aborted", fixture.name, config.name)
                results.append(
                    ConfigResult(
                        name=config.name, status="skipped", message="Run aborted"
                    )
                )
                continue

            result = await self.run_config(fixture, config)
            results.append(result)

            if self.fail_fast and result.status in {"failed", "error"}:
                log.info("Stopping after %s/%s (fail fast)", fixture.name, config.name)
                self.abort.set()

        return FixtureResult(path=str(path), results=results)

    async def run_config(
        self, fixture: SourceFixture, config: TestConfig
    ) -> ConfigResult:
        """Execute one config and verify its output."""
        log.debug("Running %s/%s: %s", fixture.name, config.name, config.run)
        try:
            execution = await self.executor.execute(config)
        except ExecutionTimeoutError as e:
            log.error("%s/%s: %s", fixture.name, config.name, e)
            return ConfigResult(
                name=config.name, status="error", duration=e.timeout, message=str(e)
            )
        except SpawnFailureError as e:
            log.error("%s/%s: %s", fixture.name, config.name, e)
            return ConfigResult(name=config.name, status="error", message=str(e))

        verdict = verify(execution, config)
        log.info(
            "Config completed: fixture=%s config=%s passed=%s duration=%.2fs",
            fixture.name,
            config.name,
            verdict.passed,
            execution.duration,
        )

        if verdict.passed:
            return ConfigResult(
                name=config.name,
                status="passed",
                duration=execution.duration,
                exit_code=execution.exit_code,
            )

        return ConfigResult(
            name=config.name,
            status="failed",
            duration=execution.duration,
            message=verdict.reason,
            exit_code=execution.exit_code,
            stdout_tail=tail(execution.stdout),
            stderr_tail=tail(execution.stderr),
        )
