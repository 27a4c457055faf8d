"""Models for fixtures and the test configurations embedded in them."""

from collections.abc import Mapping, Sequence
from pathlib import Path

from pydantic import Field

from easytest.models.base import Model


class EnvironmentVariable(Model):
    """Single KEY=VALUE assignment applied to a child process."""

    name: str = Field(..., min_length=1, description="Variable name")
    value: str = Field(default="", description="Variable value")


class TestConfig(Model):
    """One named run scenario of a fixture."""

    __test__ = False

    name: str = Field(..., min_length=1, description="Config name, unique per fixture")
    environment: Sequence[EnvironmentVariable] = Field(
        default_factory=tuple,
        description="Assignments overlaid on the child environment, in order",
    )
    run: str = Field(..., min_length=1, description="Resolved run command")
    pass_patterns: Sequence[str] = Field(
        default_factory=tuple, description="Output predicates, one must match"
    )
    fail_patterns: Sequence[str] = Field(
        default_factory=tuple, description="Output predicates, none may match"
    )
    expected_exit_code: int = Field(default=0, description="Exit code of a good run")
    timeout: float | None = Field(
        default=None, gt=0, description="Seconds before the run is killed"
    )

    def environment_overlay(self) -> dict[str, str]:
        """Return the assignments as a mapping, later entries winning."""
        return {variable.name: variable.value for variable in self.environment}


class SourceFixture(Model):
    """A source file together with its parsed test configurations."""

    path: Path = Field(..., description="Source file the directives came from")
    binary: str = Field(..., description="Path bound to @BINARY@")
    compile_flags: str = Field(default="", description="Resolved COMPILE_FLAGS")
    link_flags: str = Field(default="", description="Resolved LINK flags")
    configs: Mapping[str, TestConfig] = Field(
        default_factory=dict, description="Configs keyed by name, in CONFIGS order"
    )

    @property
    def name(self) -> str:
        """Short name used in reports."""
        return self.path.name
