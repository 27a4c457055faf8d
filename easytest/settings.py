"""Runner settings loaded from an optional YAML file."""

import os
from collections.abc import Mapping, Sequence
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from easytest.errors import SettingsError
from easytest.executor import DEFAULT_ALLOWED_ENVIRONMENT, DEFAULT_TIMEOUT

DEFAULT_SETTINGS_FILE = "easytest.yaml"


class RunnerSettings(BaseModel):
    """Settings shared by every fixture of a run."""

    model_config = ConfigDict(extra="forbid", coerce_numbers_to_str=True)

    timeout: float = Field(
        default=DEFAULT_TIMEOUT, gt=0, description="Default per-config timeout (s)"
    )
    jobs: int = Field(
        default_factory=lambda: os.cpu_count() or 1,
        ge=1,
        description="Fixtures executed in parallel",
    )
    symbols: Mapping[str, str] = Field(
        default_factory=dict, description="Placeholder replacements"
    )
    environment: Sequence[str] = Field(
        default=DEFAULT_ALLOWED_ENVIRONMENT,
        description="Variables inherited by child processes",
    )
    binary_dir: Path | None = Field(
        default=None, description="Directory holding the built binaries"
    )
    fail_fast: bool = Field(default=False, description="Stop after the first failure")


async def load_settings(path: Path) -> RunnerSettings:
    """Load runner settings from a YAML file.

    Args:
        path: Path of the settings file

    Returns:
        Parsed settings

    Raises:
        FileNotFoundError: If the file does not exist
        SettingsError: If the file is empty, not valid YAML or does not
            match the settings schema

    """
    if not path.is_file():
        raise FileNotFoundError(f"Settings file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise SettingsError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        raise SettingsError(f"Empty settings file: {path}")
    if not isinstance(data, dict):
        raise SettingsError(f"Settings file must contain a mapping: {path}")

    try:
        return RunnerSettings.model_validate(data)
    except ValidationError as e:
        raise SettingsError(f"Invalid settings schema in {path}: {e}") from e
