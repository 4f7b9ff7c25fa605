"""Settings loading.

Settings come from a YAML file, then environment variables (a ``.env`` file
is honoured) override individual values. The merged values are validated
by the ``Settings`` model.
"""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigError

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "agile-rates" / "settings.yaml"
DEFAULT_PRODUCT_CODE = "AGILE-24-10-01"
DEFAULT_FAILURE_COOLDOWN_MINUTES = 10

ENV_OVERRIDES = {
    "AGILE_POSTCODE": "postcode",
    "AGILE_PRODUCT_CODE": "product_code",
    "AGILE_SHOW_POUNDS": "show_rates_in_pounds",
    "AGILE_DB_PATH": "db_path",
}


class StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)


class Settings(StrictModel):
    """User settings read by the refresh cycle."""

    postcode: str = ""
    show_rates_in_pounds: bool = False
    product_code: str = Field(default=DEFAULT_PRODUCT_CODE, min_length=1)
    db_path: Path | None = None
    failure_cooldown_minutes: int = Field(default=DEFAULT_FAILURE_COOLDOWN_MINUTES, ge=0)

    @field_validator("postcode", mode="before")
    @classmethod
    def postcode_as_text(cls, value):
        if value is None:
            return ""
        return str(value)

    @field_validator("db_path", mode="before")
    @classmethod
    def empty_db_path_is_default(cls, value):
        if value in (None, ""):
            return None
        return value

    @field_validator("db_path")
    @classmethod
    def expand_db_path(cls, value):
        return value.expanduser() if value is not None else None


def _describe(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in error['loc']) or 'settings'}: {error['msg']}"
        for error in exc.errors()
    )


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from YAML, then apply environment overrides."""
    load_dotenv()

    path = config_path or DEFAULT_CONFIG_PATH
    data = {}
    if path.exists():
        with open(path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"Could not parse {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must contain a mapping of settings")

    for env_name, name in ENV_OVERRIDES.items():
        if env_name in os.environ:
            data[name] = os.environ[env_name]

    try:
        return Settings.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid settings in {path}: {_describe(exc)}") from exc
