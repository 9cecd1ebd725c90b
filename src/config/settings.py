# src/config/settings.py - v3
"""Typed configuration loaded from the environment via pydantic-settings.

CoreSettings holds the variables the manifest core consumes: TOOLKIT_ENV,
DATABASE_URL, TOOLKIT_SAFE_DB_HOSTS, TOOLKIT_MANIFEST_DIR and
TOOLKIT_OUTPUT_ROOTS. Settings adds the logging knobs used by the CLI.
The gates, the writer and the output-path policy load CoreSettings only, so
a bad LOG_* value can never stop a run from being evaluated or recorded.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from runmanifest.logging.handlers import parse_size


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class CoreSettings(BaseSettings):
    """Safety gate and manifest output inputs (process environment and .env)."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Safety gates ===
    toolkit_env: str | None = None
    database_url: str = ""
    toolkit_safe_db_hosts: str = ""

    # === Manifest output ===
    toolkit_manifest_dir: str | None = None
    toolkit_output_roots: str = ""

    @property
    def safe_db_hosts_list(self) -> list[str]:
        """Parse comma-separated operator-approved database hosts."""
        return [h.strip() for h in self.toolkit_safe_db_hosts.split(",") if h.strip()]

    @property
    def output_roots_list(self) -> list[str]:
        """Parse comma-separated extra roots accepted by the output-path policy."""
        return [r.strip() for r in self.toolkit_output_roots.split(",") if r.strip()]


class Settings(CoreSettings):
    """Full CLI settings: core inputs plus logging."""

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 30

    # --- Validators ---

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value: object) -> object:
        return value.strip().upper() if isinstance(value, str) else value

    @field_validator("log_format", mode="before")
    @classmethod
    def normalize_log_format(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        errors: list[str] = []

        if self.log_retention < 0:
            errors.append("LOG_RETENTION must be >= 0")

        if self.log_file is not None:
            try:
                parse_size(self.log_rotation)
            except ValueError as exc:
                errors.append(f"LOG_ROTATION invalid: {exc}")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_core_settings(**overrides: object) -> CoreSettings:
    """Load only the gate and manifest-output variables."""
    return CoreSettings(**overrides)  # type: ignore[arg-type]


def load_settings(**overrides: object) -> Settings:
    """Load settings from the environment with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or per-call config).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
