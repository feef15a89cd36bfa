# src/async_liteorm/config.py
import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from async_liteorm.base.params import DEFAULT_MAX_PARAMS

ENV_PREFIX = "LITEORM_"

JOURNAL_MODES = ("DELETE", "TRUNCATE", "PERSIST", "MEMORY", "WAL", "OFF")


class DbSettings(BaseModel):
    """Connection settings for `Db.connect`."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    filename: str = ":memory:"
    # Bind-variable ceiling handed to every SQLParams
    max_params: int = Field(default=DEFAULT_MAX_PARAMS, ge=1)
    foreign_keys: bool = True
    journal_mode: Optional[str] = None
    # Open with isolation_level=None; otherwise the caller commits
    autocommit: bool = True

    @field_validator("journal_mode")
    @classmethod
    def _known_journal_mode(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.upper()
        if v not in JOURNAL_MODES:
            raise ValueError(f"journal_mode must be one of {JOURNAL_MODES}, got {v!r}")
        return v

    @classmethod
    def from_env(
        cls, environ: Optional[Mapping[str, str]] = None, prefix: str = ENV_PREFIX
    ) -> "DbSettings":
        """
        Build settings from ``LITEORM_FILENAME``, ``LITEORM_MAX_PARAMS``,
        ``LITEORM_FOREIGN_KEYS``, ``LITEORM_JOURNAL_MODE`` and
        ``LITEORM_AUTOCOMMIT``. Unset variables keep their defaults.
        """
        env = os.environ if environ is None else environ
        data = {}
        for name in cls.model_fields:
            value = env.get(prefix + name.upper())
            if value is not None and value != "":
                data[name] = value
        return cls.model_validate(data)
