"""Base model configuration for parsed fixture structures."""

from pydantic import BaseModel, ConfigDict


class Model(BaseModel):
    """Base model for immutable configuration data."""

    model_config = ConfigDict(frozen=True, extra="forbid")
