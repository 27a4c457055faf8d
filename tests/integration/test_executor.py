"""Integration tests running real process pipelines."""

import os
import time
from collections.abc import Awaitable, Callable
from pathlib import Path

import pytest

from easytest.errors import ExecutionTimeoutError, SpawnFailureError
from easytest.executor import Executor
from easytest.models.fixture import EnvironmentVariable, TestConfig


def config(run: str, **environment: str) -> TestConfig:
    """Build a config running ``run`` with the given overlay."""
    return TestConfig(
        name="probe",
        run=run,
        environment=tuple(
            EnvironmentVariable(name=name, value=value)
            for name, value in environment.items()
        ),
    )


@pytest.fixture
def executor() -> Executor:
    """Executor with a short default timeout."""
    return Executor(timeout=10.0)


async def test_captures_streams_and_exit_code(executor: Executor) -> None:
    """stdout and stderr are captured separately with the exit code."""
    result = await executor.execute(
        config("sh -c 'echo out; echo err >&2; exit 3'")
    )

    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert result.exit_code == 3
    assert result.duration >= 0


async def test_pipeline_feeds_stages(executor: Executor) -> None:
    """Each stage reads the previous stage's output."""
    result = await executor.execute(config("printf 'b\\na\\nc\\n' | sort | head -n 2"))

    assert result.stdout == "a\nb\n"
    assert result.exit_code == 0


@pytest.mark.parametrize(
    ("run", "expected"), [("false | true", 0), ("true | false", 1)]
)
async def test_exit_code_of_last_stage(
    executor: Executor, run: str, expected: int
) -> None:
    """The pipeline exit code is the last stage's."""
    result = await executor.execute(config(run))

    assert result.exit_code == expected


async def test_stderr_of_all_stages_is_captured(executor: Executor) -> None:
    """stderr of every stage is collected in stage order."""
    result = await executor.execute(
        config("sh -c 'echo first >&2; echo data' | sh -c 'cat; echo second >&2'")
    )

    assert result.stdout == "data\n"
    assert result.stderr == "first\nsecond\n"


async def test_environment_overlay_is_per_process(executor: Executor) -> None:
    """The overlay reaches the child without touching the runner."""
    assert "EASYTEST_PROBE" not in os.environ

    result = await executor.execute(
        config("sh -c 'echo \"$EASYTEST_PROBE\"'", EASYTEST_PROBE="visible")
    )

    assert result.stdout == "visible\n"
    assert "EASYTEST_PROBE" not in os.environ


async def test_unlisted_variables_are_not_inherited() -> None:
    """Variables outside the allow-list never reach the child."""
    executor = Executor(
        allowed_environment=("PATH",),
        base_environment={"PATH": os.environ["PATH"], "EASYTEST_SECRET": "hidden"},
    )

    result = await executor.execute(config("env"))

    assert "EASYTEST_SECRET" not in result.stdout
    assert f"PATH={os.environ['PATH']}" in result.stdout.splitlines()


async def test_back_to_back_configs_do_not_leak(executor: Executor) -> None:
    """Configs with conflicting values each observe only their own."""
    first = await executor.execute(
        config("sh -c 'echo $OMP_NUM_THREADS'", OMP_NUM_THREADS="4")
    )
    second = await executor.execute(config("sh -c 'echo ${OMP_NUM_THREADS:-unset}'"))
    third = await executor.execute(
        config("sh -c 'echo $OMP_NUM_THREADS'", OMP_NUM_THREADS="1")
    )

    assert (first.stdout, second.stdout, third.stdout) == ("4\n", "unset\n", "1\n")


async def test_timeout_kills_pipeline(
    tmp_path: Path, wait_gone: Callable[[int], Awaitable[bool]]
) -> None:
    """A hanging run is killed and reported within twice the timeout."""
    pid_file = tmp_path / "pid"
    executor = Executor(timeout=1.0)
    run = f"sh -c 'sleep 30 & echo $! > {pid_file}; wait' | cat"

    start = time.monotonic()
    with pytest.raises(ExecutionTimeoutError, match="within 1 seconds"):
        await executor.execute(config(run))
    elapsed = time.monotonic() - start

    assert elapsed < 2.0
    assert await wait_gone(int(pid_file.read_text()))


async def test_config_timeout_overrides_default(executor: Executor) -> None:
    """A config timeout takes precedence over the executor default."""
    slow = TestConfig(name="slow", run="sleep 30", timeout=0.2)

    with pytest.raises(ExecutionTimeoutError) as exc:
        await executor.execute(slow)

    assert exc.value.timeout == 0.2


async def test_missing_binary_is_spawn_failure(
    executor: Executor, tmp_path: Path
) -> None:
    """A binary that does not exist cannot be spawned."""
    with pytest.raises(SpawnFailureError, match="Cannot execute"):
        await executor.execute(config(str(tmp_path / "missing")))


async def test_missing_pipeline_stage_is_spawn_failure(
    executor: Executor, tmp_path: Path
) -> None:
    """A missing later stage fails the spawn after earlier stages started."""
    with pytest.raises(SpawnFailureError, match="missing-tool"):
        await executor.execute(config(f"sleep 30 | {tmp_path / 'missing-tool'}"))


async def test_null_byte_argument_is_spawn_failure(executor: Executor) -> None:
    """Arguments the OS cannot pass to a process fail the spawn."""
    with pytest.raises(SpawnFailureError, match="Cannot execute 'echo'"):
        await executor.execute(config("echo a\x00b | cat"))


async def test_non_executable_is_spawn_failure(
    executor: Executor, tmp_path: Path
) -> None:
    """A file without execute permission cannot be spawned."""
    script = tmp_path / "script"
    script.write_text("#!/bin/sh\necho hi\n")
    script.chmod(0o644)

    with pytest.raises(SpawnFailureError, match="Permission denied"):
        await executor.execute(config(str(script)))
