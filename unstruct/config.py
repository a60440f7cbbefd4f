# unstruct/config.py
"""
unstruct configuration: process settings via Pydantic Settings, per-run options via Pydantic.

Resolution order: explicit ``ExtractOptions`` arguments > env vars (UNSTRUCT_*) > .env file > defaults.
"""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple, Type

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class UnstructConfig(BaseSettings):
    """Process-wide defaults for extraction runs."""

    model_config = SettingsConfigDict(
        env_prefix="UNSTRUCT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Generation ---
    model: str = ""
    fallback_prompt: str = ""
    api_key: str = ""
    api_base: str = ""
    lm_temperature: float = 0.0

    # --- Dispatch ---
    timeout: Optional[float] = None  # seconds, whole operation
    max_retries: int = 0
    backoff: float = 0.5  # seconds, doubled after every failed attempt
    max_concurrency: Optional[int] = None

    # --- Schema compilation ---
    flatten_groups: bool = False
    strict_annotations: bool = False

    # --- Logging ---
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    home_dir: Path = Field(default_factory=lambda: Path.home() / ".unstruct")

    @property
    def log_dir(self) -> Path:
        return self.home_dir / "logs"


@lru_cache(maxsize=1)
def get_config() -> UnstructConfig:
    """Return the global config singleton."""
    return UnstructConfig()


class GroupDefinition(BaseModel):
    """Named (prompt, model) pair referenced from annotations as ``group/<name>``."""

    model_config = ConfigDict(frozen=True)

    prompt: str
    model: str = ""


class ExtractOptions(BaseModel):
    """Options for a single extraction, dry run or plan."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    model: str = ""
    fallback_prompt: str = ""
    timeout: Optional[float] = None
    max_retries: int = 0
    backoff: float = 0.0
    max_concurrency: Optional[int] = None
    flatten_groups: bool = False
    strict_annotations: bool = False
    # key: "TypeName.field_name", value: model id
    field_models: Dict[str, str] = Field(default_factory=dict)
    groups: Dict[str, GroupDefinition] = Field(default_factory=dict)

    @field_validator("max_retries")
    @classmethod
    def _non_negative_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("max_retries must be >= 0")
        return value

    @field_validator("backoff")
    @classmethod
    def _non_negative_backoff(cls, value: float) -> float:
        if value < 0:
            raise ValueError("backoff must be >= 0")
        return value

    @field_validator("timeout")
    @classmethod
    def _positive_timeout(cls, value: Optional[float]) -> Optional[float]:
        if value is not None and value <= 0:
            raise ValueError("timeout must be > 0")
        return value

    @field_validator("max_concurrency")
    @classmethod
    def _positive_concurrency(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value < 1:
            raise ValueError("max_concurrency must be >= 1")
        return value

    @field_validator("groups", mode="before")
    @classmethod
    def _coerce_groups(cls, value: Any) -> Any:
        # Accept {"name": ("prompt", "model")} shorthand.
        if isinstance(value, dict):
            return {
                name: {"prompt": spec[0], "model": spec[1] if len(spec) > 1 else ""}
                if isinstance(spec, (tuple, list))
                else spec
                for name, spec in value.items()
            }
        return value

    @classmethod
    def from_config(cls, config: Optional[UnstructConfig] = None, **overrides: Any) -> "ExtractOptions":
        """Seed options from :class:`UnstructConfig`, then apply *overrides*."""
        cfg = config or get_config()
        values: Dict[str, Any] = {
            "model": cfg.model,
            "fallback_prompt": cfg.fallback_prompt,
            "timeout": cfg.timeout,
            "max_retries": cfg.max_retries,
            "backoff": cfg.backoff,
            "max_concurrency": cfg.max_concurrency,
            "flatten_groups": cfg.flatten_groups,
            "strict_annotations": cfg.strict_annotations,
        }
        values.update(overrides)
        return cls(**values)

    def with_group(self, name: str, prompt: str, model: str = "") -> "ExtractOptions":
        """Return a copy with the named group registered."""
        groups = dict(self.groups)
        groups[name] = GroupDefinition(prompt=prompt, model=model)
        return self.model_copy(update={"groups": groups})

    def with_field_model(self, model: str, target: Type[Any], field_name: str) -> "ExtractOptions":
        """Return a copy that routes ``target.field_name`` to *model*."""
        field_models = dict(self.field_models)
        field_models[field_model_key(target, field_name)] = model
        return self.model_copy(update={"field_models": field_models})

    def compile_key(self) -> Tuple[Any, ...]:
        """Hashable fingerprint of every option that affects schema compilation."""
        return (
            self.flatten_groups,
            self.strict_annotations,
            json.dumps(self.field_models, sort_keys=True),
            json.dumps(
                {name: group.model_dump() for name, group in self.groups.items()},
                sort_keys=True,
            ),
        )


def field_model_key(target: Type[Any], field_name: str) -> str:
    """Return the ``"TypeName.field_name"`` key used by ``field_models``."""
    return f"{target.__name__}.{field_name}"


__all__ = [
    "UnstructConfig",
    "get_config",
    "GroupDefinition",
    "ExtractOptions",
    "field_model_key",
]
