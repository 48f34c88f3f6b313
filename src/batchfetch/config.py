"""
Coalescer configuration loaded from keyword arguments or the environment.
"""

from __future__ import annotations

import os
import typing as t

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from batchfetch.grouping import (
    DEFAULT_BATCH_ENDPOINT,
    DEFAULT_BATCHABLE_PREFIXES,
    DEFAULT_GROUP_DEPTH,
)
from batchfetch.models import validate_endpoint

ENV_PREFIX = "BATCHFETCH_"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off"})


class CoalescerSettings(BaseModel):
    base_url: str = ""
    batch_endpoint: str = DEFAULT_BATCH_ENDPOINT
    debounce_seconds: float = Field(default=0.05, gt=0)
    group_depth: int = Field(default=DEFAULT_GROUP_DEPTH, ge=1)
    max_wait_seconds: float | None = None
    fail_missing_results: bool = True
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    batchable_prefixes: tuple[str, ...] = DEFAULT_BATCHABLE_PREFIXES

    @field_validator("batch_endpoint")
    @classmethod
    def check_batch_endpoint(cls, value: str) -> str:
        return validate_endpoint(value)

    @field_validator("batchable_prefixes")
    @classmethod
    def check_prefixes(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        for prefix in value:
            if not prefix.startswith("/"):
                raise ValueError(f"Batchable prefix must start with '/': {prefix!r}")
        return value

    @model_validator(mode="after")
    def check_max_wait(self) -> "CoalescerSettings":
        if self.max_wait_seconds is not None and self.max_wait_seconds < self.debounce_seconds:
            raise ValueError("max_wait_seconds must be >= debounce_seconds")
        return self

    @classmethod
    def from_env(cls, prefix: str = ENV_PREFIX, **overrides: t.Any) -> "CoalescerSettings":
        """
        Build settings from ``<prefix>*`` environment variables.

        Parameters
        ----------
        prefix : str, optional
            Environment variable prefix.
        **overrides : typing.Any
            Explicit values taking precedence over the environment. ``None``
            values are ignored.

        Returns
        -------
        CoalescerSettings
            Validated settings.
        """
        load_dotenv()
        values: dict[str, t.Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{prefix}{name.upper()}")
            if raw is None or raw == "":
                continue
            values[name] = _parse_env_value(name=name, raw=raw)
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls.model_validate(values)


def _parse_env_value(*, name: str, raw: str) -> t.Any:
    if name == "batchable_prefixes":
        return tuple(part.strip() for part in raw.split(",") if part.strip())
    if name == "fail_missing_results":
        lowered = raw.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        return raw
    if name == "max_wait_seconds" and raw.strip().lower() == "none":
        return None
    return raw
