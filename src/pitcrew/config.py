from __future__ import annotations

from pathlib import Path

import yaml
from expandvars import expandvars
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pitcrew.fixtures import DEFAULT_GRACE_S


class RunConfig(BaseModel):
    """Settings for one run, usually loaded from ``pitcrew.yaml``."""

    model_config = ConfigDict(extra="forbid")

    modules: list[str] = []
    concurrency_limit: int = Field(default=1, ge=1, le=256)
    timeout_s: float | None = Field(default=None, gt=0)
    teardown_grace_s: float = Field(default=DEFAULT_GRACE_S, ge=0)
    deadline_s: float | None = Field(default=None, gt=0)
    strict_mocks: bool = True
    synchronized_mocks: bool = False

    @field_validator("modules")
    @classmethod
    def module_names_must_be_dotted_paths(cls, v: list[str]) -> list[str]:
        cleaned = []
        for name in v:
            name = name.strip()
            if not name or any(not part.isidentifier() for part in name.split(".")):
                raise ValueError(f"'{name}' is not a dotted module path")
            cleaned.append(name)
        return cleaned

    @model_validator(mode="after")
    def timeout_within_deadline(self) -> RunConfig:
        if self.deadline_s is not None and self.timeout_s is not None:
            if self.timeout_s > self.deadline_s:
                raise ValueError("timeout_s must not exceed deadline_s")
        return self


def load_config(path: Path) -> RunConfig:
    """Load and validate a run config from a YAML file.

    ``${VAR}`` and ``${VAR:-default}`` references are expanded from the
    environment before parsing.
    """
    raw_text = Path(path).read_text()
    raw = yaml.safe_load(expandvars(raw_text)) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return RunConfig(**raw)
