# gemflows/utils/config.py
from __future__ import annotations

import functools
import os
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_RECIPES_BASE_URL = "https://raw.githubusercontent.com/ProggePal/palsGemFlows/main/workflows/"
DEFAULT_POSTHOG_ENDPOINT = "https://us.i.posthog.com"


# ---------- Enums ----------

class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _default_cache_dir() -> Path:
    base = os.environ.get("XDG_CACHE_HOME")
    root = Path(base) if base else Path.home() / ".cache"
    return root / "pals-gemflows"


# ---------- Settings ----------

class Settings(BaseSettings):
    """
    Central configuration for gemflows.

    Values load in this order of precedence:
      1) Environment variables
      2) .env file in project root
      3) Defaults below
    """

    # ---- Generation provider ----
    GEMINI_API_KEY: Optional[str] = Field(default=None, description="Enables the Gemini provider when set")
    GEMINI_TIMEOUT_MS: int = Field(default=120000, ge=1000, description="Per-request deadline for Gemini calls")

    # ---- Telemetry ----
    POSTHOG_API_KEY: Optional[str] = Field(default=None, description="Enables step telemetry when set")
    POSTHOG_ENDPOINT: str = Field(default=DEFAULT_POSTHOG_ENDPOINT)
    TELEMETRY_ENABLED: bool = Field(default=True)

    # ---- Recipes ----
    RECIPES_BASE_URL: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("PALSGEMFLOWS_RECIPES_BASE_URL", "RECIPES_BASE_URL"),
        description="Remote recipe catalog (GitHub raw URL)",
    )
    RECIPE_CACHE_TTL_SECONDS: int = Field(default=3600, ge=0)
    HTTP_TIMEOUT_SECONDS: float = Field(default=20.0, gt=0)
    CACHE_DIR: Path = Field(default_factory=_default_cache_dir)
    WORKFLOWS_DIR: Path = Field(default=Path("./workflows"))

    # ---- Engine ----
    MAX_PARALLEL_STEPS: int = Field(default=8, ge=1, description="Thread cap for one parallel group")

    # ---- Logging ----
    LOG_LEVEL: LogLevel = Field(default=LogLevel.INFO)
    LOG_TO_FILE: bool = Field(default=False)
    LOG_FILE: Path = Field(default=Path("./gemflows.log"))
    COLORIZED_OUTPUT: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("CACHE_DIR", "WORKFLOWS_DIR", "LOG_FILE", mode="before")
    @classmethod
    def _coerce_to_path(cls, v):
        if isinstance(v, Path):
            return v
        return Path(str(v)).expanduser() if v is not None else v

    @field_validator("WORKFLOWS_DIR", "LOG_FILE", mode="after")
    @classmethod
    def _absolutize(cls, v: Path):
        return v if v.is_absolute() else Path.cwd() / v

    @field_validator("GEMINI_API_KEY", "POSTHOG_API_KEY", "RECIPES_BASE_URL", mode="after")
    @classmethod
    def _blank_is_unset(cls, v: Optional[str]):
        if v is None:
            return None
        v = v.strip()
        return v or None

    @field_validator("POSTHOG_ENDPOINT", mode="after")
    @classmethod
    def _endpoint_default(cls, v: str):
        return v.strip().rstrip("/") or DEFAULT_POSTHOG_ENDPOINT

    def ensure_dirs(self) -> None:
        """Create required directories (idempotent)."""
        if self.LOG_TO_FILE:
            self.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)

    @property
    def recipe_cache_dir(self) -> Path:
        return self.CACHE_DIR / "recipes"

    def public_dict(self) -> dict:
        """Settings as plain JSON-friendly values with secrets masked."""
        out = {}
        for k, v in self.model_dump().items():
            if k.endswith("_API_KEY"):
                v = "***" if v else None
            elif isinstance(v, Path):
                v = str(v)
            elif isinstance(v, Enum):
                v = v.value
            out[k] = v
        return out


# --------- Public accessor (memoized) ---------

@functools.lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache settings once per process.
    Call `get_settings.cache_clear()` if you need to reload after changing env.
    """
    s = Settings()
    s.ensure_dirs()
    return s
