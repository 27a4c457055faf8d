"""Execution of a config's run command as a process pipeline."""

import asyncio
import logging
import os
import shlex
import signal
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from easytest.errors import ExecutionTimeoutError, SpawnFailureError
from easytest.models.fixture import TestConfig
from easytest.models.result import ExecutionResult

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0
DEFAULT_ALLOWED_ENVIRONMENT = (
    "PATH",
    "HOME",
    "LANG",
    "LC_ALL",
    "TMPDIR",
    "USER",
    "LD_LIBRARY_PATH",
)


def split_pipeline(command: str) -> Sequence[Sequence[str]]:
    """Split a run command into the argument vectors of its stages.

    Tokens follow POSIX shell quoting; an unquoted ``|`` separates stages.

    Raises:
        SpawnFailureError: If the command cannot be tokenized, contains an
            unsupported operator or has an empty stage.

    """
    lexer = shlex.shlex(command, posix=True, punctuation_chars="|")
    lexer.whitespace_split = True

    stages: list[list[str]] = [[]]
    try:
        for token in lexer:
            if token == "|":
                stages.append([])
            elif set(token) == {"|"}:
                raise SpawnFailureError(
                    f"Unsupported operator '{token}' in '{command}'"
                )
            else:
                stages[-1].append(token)
    except ValueError as e:
        raise SpawnFailureError(f"Cannot parse command '{command}': {e}") from e

    if any(not stage for stage in stages):
        raise SpawnFailureError(f"Empty pipeline stage in '{command}'")

    return stages


@dataclass(frozen=True, kw_only=True)
class Executor:
    """Runs configs as child process pipelines with isolated environments.

    Only variables named in ``allowed_environment`` are inherited from
    ``base_environment`` (the runner's own environment by default); the
    config's assignments are overlaid on top. The runner's environment is
    never modified.
    """

    timeout: float = DEFAULT_TIMEOUT
    allowed_environment: Sequence[str] = DEFAULT_ALLOWED_ENVIRONMENT
    base_environment: Mapping[str, str] | None = field(default=None, repr=False)

    def build_environment(self, config: TestConfig) -> dict[str, str]:
        """Compose the environment passed to every stage of the pipeline."""
        base = os.environ if self.base_environment is None else self.base_environment
        environment = {
            name: base[name] for name in self.allowed_environment if name in base
        }
        environment.update(config.environment_overlay())
        return environment

    async def execute(self, config: TestConfig) -> ExecutionResult:
        """Run the config's command and capture its output.

        Args:
            config: Config whose run command and environment to use

        Returns:
            Captured output with the exit code of the last stage

        Raises:
            SpawnFailureError: If any stage cannot be started
            ExecutionTimeoutError: If the pipeline outlives its timeout; all
                stages are killed and reaped before this is raised

        """
        stages = split_pipeline(config.run)
        environment = self.build_environment(config)
        timeout = config.timeout or self.timeout

        log.debug(
            "Executing config %s: %s (timeout=%gs)", config.name, config.run, timeout
        )

        processes: list[asyncio.subprocess.Process] = []
        start = time.monotonic()
        completed = False
        try:
            await self._spawn(stages, environment, processes)
            try:
                async with asyncio.timeout(timeout):
                    outputs = await asyncio.gather(
                        *(process.communicate() for process in processes)
                    )
            except TimeoutError:
                log.warning(
                    "Config %s timed out after %gs, killing pipeline",
                    config.name,
                    timeout,
                )
                raise ExecutionTimeoutError(timeout) from None
            completed = True
        finally:
            if not completed:
                await _kill(processes)

        duration = time.monotonic() - start
        stdout = outputs[-1][0] or b""
        stderr = b"".join(err or b"" for _, err in outputs)
        exit_code = await processes[-1].wait()

        log.debug(
            "Config %s exited with %d after %.2fs", config.name, exit_code, duration
        )
        return ExecutionResult(
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            exit_code=exit_code,
            duration=duration,
        )

    async def _spawn(
        self,
        stages: Sequence[Sequence[str]],
        environment: Mapping[str, str],
        processes: list[asyncio.subprocess.Process],
    ) -> None:
        """Start every stage, wiring each stdout to the next stage's stdin."""
        read_end: int | None = None

        for index, argv in enumerate(stages):
            is_last = index == len(stages) - 1
            next_read_end: int | None = None
            write_end: int | None = None
            if not is_last:
                next_read_end, write_end = os.pipe()

            try:
                process = await asyncio.create_subprocess_exec(
                    *argv,
                    stdin=asyncio.subprocess.DEVNULL if read_end is None else read_end,
                    stdout=asyncio.subprocess.PIPE if write_end is None else write_end,
                    stderr=asyncio.subprocess.PIPE,
                    env=environment,
                    start_new_session=True,
                )
            except (OSError, ValueError) as e:
                if next_read_end is not None:
                    os.close(next_read_end)
                reason = e.strerror if isinstance(e, OSError) and e.strerror else e
                raise SpawnFailureError(
                    f"Cannot execute '{argv[0]}': {reason}"
                ) from e
            finally:
                if read_end is not None:
                    os.close(read_end)
                if write_end is not None:
                    os.close(write_end)

            processes.append(process)
            read_end = next_read_end


async def _kill(processes: Sequence[asyncio.subprocess.Process]) -> None:
    """Kill the process group of every stage and reap the stages."""
    for process in processes:
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            log.debug("Cannot signal process group %d", process.pid)

    for process in processes:
        await process.wait()
