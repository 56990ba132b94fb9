"""Configuration models and YAML loader for TalentFlow."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator


class DatabaseConfig(BaseModel):
    """Persistent store location. ``:memory:`` keeps everything in-process."""

    path: str = "data/talentflow.db"


class TransportConfig(BaseModel):
    """Latency and failure injection for the simulated backend."""

    latency_min_ms: float = Field(default=200.0, ge=0.0)
    latency_max_ms: float = Field(default=1200.0, ge=0.0)
    failure_probability: float = Field(default=0.075, ge=0.0, le=1.0)
    seed: int | None = None

    @model_validator(mode="after")
    def latency_range_ordered(self) -> "TransportConfig":
        if self.latency_max_ms < self.latency_min_ms:
            msg = (
                f"latency_max_ms ({self.latency_max_ms}) must be >= "
                f"latency_min_ms ({self.latency_min_ms})"
            )
            raise ValueError(msg)
        return self


class CacheConfig(BaseModel):
    """Query cache freshness window."""

    stale_time_ms: float = Field(default=30000.0, ge=0.0)


class SeedConfig(BaseModel):
    """Sizes of the generated demo data set."""

    jobs: int = Field(default=25, ge=1)
    candidates: int = Field(default=1000, ge=0)
    assessments: int = Field(default=3, ge=0)
    random_seed: int | None = None


class Settings(BaseModel):
    """Top-level settings loaded from YAML."""

    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    transport: TransportConfig = Field(default_factory=TransportConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    seed: SeedConfig = Field(default_factory=SeedConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        path = Path(path)
        if not path.exists():
            msg = f"Config file not found: {path}"
            raise FileNotFoundError(msg)
        raw: dict[str, Any] = yaml.safe_load(path.read_text()) or {}
        return cls.model_validate(raw)
