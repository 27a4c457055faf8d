"""Models for execution and verification results."""

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Literal

ConfigStatus = Literal["passed", "failed", "error", "skipped"]


@dataclass(frozen=True, kw_only=True)
class ExecutionResult:
    """Captured outcome of one pipeline run."""

    stdout: str
    stderr: str
    exit_code: int
    duration: float

    @property
    def output(self) -> str:
        """Combined output checked by predicates."""
        if self.stdout and self.stderr and not self.stdout.endswith("\n"):
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout + self.stderr


@dataclass(frozen=True, kw_only=True)
class Verdict:
    """Outcome of checking an execution against a config's expectations."""

    passed: bool
    reason: str | None = None


@dataclass(frozen=True, kw_only=True)
class ConfigResult:
    """Terminal state of a single config run.

    Output tails are kept only for configs that did not pass.
    """

    __test__ = False

    name: str
    status: ConfigStatus
    duration: float = 0.0
    message: str | None = None
    exit_code: int | None = None
    stdout_tail: str | None = None
    stderr_tail: str | None = None


@dataclass(frozen=True, kw_only=True)
class FixtureResult:
    """Results for every config of one fixture, or the error that stopped it."""

    path: str
    results: Sequence[ConfigResult] = field(default_factory=tuple)
    error: str | None = None
