"""Exceptions raised while parsing and executing fixtures."""

from collections.abc import Sequence


class EasytestError(Exception):
    """Base class for all easytest errors."""


class ConfigError(EasytestError):
    """Raised when a fixture's embedded configuration cannot be used."""


class MalformedConfigError(ConfigError):
    """Raised when the directive block cannot be parsed."""

    def __init__(self, message: str, *, line: int | None = None) -> None:
        self.line = line
        super().__init__(f"line {line}: {message}" if line is not None else message)


class UnresolvedPlaceholderError(ConfigError):
    """Raised when a directive references symbols missing from the table."""

    def __init__(self, names: Sequence[str], *, directive: str) -> None:
        self.names = tuple(names)
        self.directive = directive
        missing = ", ".join(f"@{name}@" for name in self.names)
        super().__init__(f"Unresolved placeholder(s) in {directive}: {missing}")


class ExecutionError(EasytestError):
    """Raised when a config could not be executed to completion."""


class SpawnFailureError(ExecutionError):
    """Raised when a pipeline stage cannot be located or executed."""


class ExecutionTimeoutError(ExecutionError):
    """Raised when a pipeline does not finish within its timeout."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Execution did not complete within {timeout:g} seconds")


class SettingsError(EasytestError, ValueError):
    """Raised when runner settings are invalid."""
