"""Fixtures for integration tests spawning real processes."""

import asyncio
import os
import stat
from collections.abc import Awaitable, Callable
from pathlib import Path

import pytest

FAKE_OPENMP = """\
#!/bin/sh
# Stand-in for the OpenMP sample: one line per thread, in reverse order.
n=${OMP_NUM_THREADS:-1}
i=$n
while [ "$i" -ge 1 ]; do
  echo "$i of $n"
  i=$((i - 1))
done
# A single thread means no parallel region was formed.
[ "$n" -gt 1 ] || exit 2
"""


@pytest.fixture
def openmp_fixture(tmp_path: Path, openmp_source: str) -> Path:
    """Write the sample fixture next to a fake binary built from it."""
    binary = tmp_path / "openmp"
    binary.write_text(FAKE_OPENMP)
    binary.chmod(binary.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    path = tmp_path / "openmp.c"
    path.write_text(openmp_source)
    return path


def is_running(pid: int) -> bool:
    """Check whether a process exists and is not a zombie."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False

    try:
        stat_line = Path(f"/proc/{pid}/stat").read_text()
    except FileNotFoundError:
        return False
    return stat_line.rsplit(")", 1)[1].split()[0] != "Z"


@pytest.fixture
def wait_gone() -> Callable[[int], Awaitable[bool]]:
    """Poll until a pid has exited, returning False if it survives."""

    async def wait(pid: int, timeout: float = 2.0) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if not is_running(pid):
                return True
            await asyncio.sleep(0.05)
        return not is_running(pid)

    return wait
